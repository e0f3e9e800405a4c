import asyncio

import pytest

from helmsman.agent import Agent, RequestParams
from helmsman.agent_tool_loop_mixin import NUDGE_MESSAGE
from helmsman.config import AgentConfig
from helmsman.events import ProgressEventType
from helmsman.exceptions import (
    LLMAPIError,
    MaxIterationsExceededError,
    MaxToolCallsExceededError,
    QueryAbortedError,
)
from helmsman.llm import ChatResponse, ChatStreamChunk, Choice, LLMProvider, Message, Role, ToolCall, Usage
from helmsman.tools.registry import Tool, ToolRegistry
from helmsman.tools.schema import InputParams, ParamField, ToolParams


class ScriptedProvider(LLMProvider):
    model = "fake-model"

    def __init__(self, replies):
        self.replies = list(replies)
        self.requests = []

    async def chat(self, request):
        self.requests.append(request)
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply

    async def chat_stream(self, request):
        if False:
            yield ChatStreamChunk()


class BlockingProvider(LLMProvider):
    model = "fake-model"

    def __init__(self):
        self.started = asyncio.Event()
        self.cancelled = False

    async def chat(self, request):
        self.started.set()
        try:
            await asyncio.sleep(10.0)
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        return _reply("late")

    async def chat_stream(self, request):
        if False:
            yield ChatStreamChunk()


class CalculateParams(ToolParams):
    expression: str = ParamField(description="Expression", min_length=1)


class FakeCalculateTool(Tool):
    name = "calculate"
    description = "Evaluate arithmetic"
    params_model = CalculateParams

    async def execute(self, params, abort_event):
        return "5"


class FakeWikipediaTool(Tool):
    name = "wikipedia"
    description = "Look things up"
    params_model = InputParams

    async def execute(self, params, abort_event):
        return f"article about {params.input}"


def _reply(content, *calls, finish_reason="stop"):
    return ChatResponse(
        choices=[Choice(message=Message.assistant(content, list(calls)), finish_reason=finish_reason)],
        usage=Usage(prompt_tokens=3, completion_tokens=2, total_tokens=5),
    )


def _calc_call(call_id="c1", arguments='{"expression":"2+3"}'):
    return ToolCall(id=call_id, name="calculate", arguments=arguments)


def _registry():
    registry = ToolRegistry()
    registry.register("calculate", FakeCalculateTool)
    registry.register("wikipedia", FakeWikipediaTool)
    return registry


def _agent(provider, **overrides):
    settings = {"system_prompt": "You are helpful.", "max_iterations": 5, "max_tool_calls": 5}
    settings.update(overrides)
    return Agent(provider=provider, config=AgentConfig(**settings), registry=_registry())


@pytest.mark.asyncio
async def test_blocking_query_runs_tool_then_answers():
    provider = ScriptedProvider([
        _reply("", _calc_call(), finish_reason="tool_calls"),
        _reply("The answer is 5."),
    ])
    agent = _agent(provider)

    response = await agent.query("2+3?")

    assert response.content == "The answer is 5."
    assert response.finish_reason == "stop"
    assert [result.content for result in response.tool_results] == ["5"]
    assert response.usage.total_tokens == 10
    assert agent.last_usage.total_tokens == 10

    memory = agent.get_memory()
    assert [message.role for message in memory] == [
        Role.SYSTEM, Role.USER, Role.ASSISTANT, Role.TOOL, Role.ASSISTANT,
    ]
    assert memory[2].tool_calls[0].arguments == '{"expression":"2+3"}'
    assert memory[3].tool_call_id == "c1"
    assert memory[3].content == "5"
    assert memory[4].content == "The answer is 5."

    first, second = provider.requests
    assert first.model == "fake-model"
    assert [tool["function"]["name"] for tool in first.tools] == ["calculate", "wikipedia"]
    assert first.tool_choice == "auto"
    assert len(second.messages) == 4


@pytest.mark.asyncio
async def test_json_in_content_is_treated_as_tool_call():
    provider = ScriptedProvider([
        _reply('{"name":"wikipedia","arguments":{"input":"Tunguska incident"}}'),
        _reply("It was an explosion in 1908."),
    ])
    agent = _agent(provider)

    response = await agent.query("What happened at Tunguska?")

    assert response.content == "It was an explosion in 1908."
    assistant = agent.get_memory()[2]
    assert assistant.content == ""
    assert len(assistant.tool_calls) == 1
    call = assistant.tool_calls[0]
    assert call.name == "wikipedia"
    assert call.arguments == '{"input":"Tunguska incident"}'
    assert call.id.startswith("call_")
    assert agent.get_memory()[3].content == "article about Tunguska incident"


@pytest.mark.asyncio
async def test_max_iterations_exceeded():
    provider = ScriptedProvider([
        _reply("", _calc_call("c1")),
        _reply("", _calc_call("c2")),
    ])
    agent = _agent(provider, max_iterations=2)

    with pytest.raises(MaxIterationsExceededError):
        await agent.query("loop forever")

    assert len(provider.requests) == 2


@pytest.mark.asyncio
async def test_invalid_arguments_are_reported_back_and_loop_continues():
    provider = ScriptedProvider([
        _reply("", _calc_call(arguments="not-json")),
        _reply("I need a valid expression."),
    ])
    agent = _agent(provider)

    response = await agent.query("compute")

    assert response.content == "I need a valid expression."
    memory = agent.get_memory()
    assert memory[2].tool_calls[0].arguments == "{}"
    assert memory[3].role == Role.TOOL
    assert memory[3].content.startswith("Error: VALIDATION_FAILED: Parameter validation failed")
    assert response.tool_results[0].success is False


@pytest.mark.asyncio
async def test_empty_reply_nudges_for_answer_without_tools():
    events = []
    provider = ScriptedProvider([_reply(""), _reply("Here you go.")])
    agent = Agent(
        provider=provider,
        config=AgentConfig(system_prompt="You are helpful."),
        registry=_registry(),
        progress_handler=events.append,
    )

    response = await agent.query("hello")

    assert response.content == "Here you go."
    assert provider.requests[1].tool_choice == "none"
    memory = agent.get_memory()
    assert memory[3].role == Role.USER
    assert memory[3].content == NUDGE_MESSAGE
    assert [event.type for event in events] == [
        ProgressEventType.ITERATION,
        ProgressEventType.NO_TOOLS,
        ProgressEventType.ITERATION,
    ]
    assert events[2].iteration == 2


@pytest.mark.asyncio
async def test_tool_call_budget_is_enforced():
    provider = ScriptedProvider([_reply("", _calc_call("a"), _calc_call("b"))])
    agent = _agent(provider, max_tool_calls=1)

    with pytest.raises(MaxToolCallsExceededError):
        await agent.query("two at once")

    memory = agent.get_memory()
    assert [message.role for message in memory] == [Role.SYSTEM, Role.USER]
    assert not any(message.tool_calls for message in memory)


@pytest.mark.asyncio
async def test_tool_outside_configured_allow_list_is_refused():
    provider = ScriptedProvider([
        _reply("", ToolCall(id="w1", name="wikipedia", arguments='{"input":"x"}')),
        _reply("done"),
    ])
    agent = _agent(provider, tools=["calculate"])

    await agent.query("look it up")

    assert [tool["function"]["name"] for tool in provider.requests[0].tools] == ["calculate"]
    assert "tool 'wikipedia' is not available" in agent.get_memory()[3].content


@pytest.mark.asyncio
async def test_abort_cancels_pending_provider_call():
    provider = BlockingProvider()
    agent = _agent(provider)
    abort_event = asyncio.Event()

    query = asyncio.create_task(agent.query("slow", abort_event))
    await provider.started.wait()
    abort_event.set()

    with pytest.raises(QueryAbortedError):
        await query
    assert provider.cancelled is True


@pytest.mark.asyncio
async def test_already_aborted_query_never_calls_provider():
    provider = ScriptedProvider([])
    agent = _agent(provider)
    abort_event = asyncio.Event()
    abort_event.set()

    with pytest.raises(QueryAbortedError):
        await agent.query("never", abort_event)
    assert provider.requests == []


@pytest.mark.asyncio
async def test_provider_error_propagates():
    agent = _agent(ScriptedProvider([LLMAPIError("API error 500", status_code=500)]))

    with pytest.raises(LLMAPIError):
        await agent.query("hi")


@pytest.mark.asyncio
async def test_tool_call_turn_without_content_is_sent_with_empty_content():
    provider = ScriptedProvider([_reply(None, _calc_call()), _reply("ok")])
    agent = _agent(provider)

    await agent.query("2+3?")

    assistant = provider.requests[1].messages[2]
    assert assistant.role == Role.ASSISTANT
    assert assistant.content == ""
    assert assistant.tool_calls


def test_system_prompt_lists_available_tools():
    agent = _agent(ScriptedProvider([]))

    system = agent.get_memory()[0]
    assert system.role == Role.SYSTEM
    assert system.content.startswith("You are helpful.\n\nAvailable tools:\n\n")
    assert "- calculate: Evaluate arithmetic\n- wikipedia: Look things up\n" in system.content
    assert '{"name": "tool_name", "arguments":' in system.content

    agent.set_system_prompt("Be brief.")
    assert agent.get_memory()[0].content.startswith("Be brief.\n\nAvailable tools:")


def test_system_prompt_unchanged_without_tools():
    agent = Agent(
        provider=ScriptedProvider([]),
        config=AgentConfig(system_prompt="Plain."),
        registry=ToolRegistry(),
    )

    assert agent.get_memory()[0].content == "Plain."


@pytest.mark.asyncio
async def test_request_params_flow_into_requests():
    provider = ScriptedProvider([_reply("ok")])
    agent = _agent(provider)
    agent.set_request_params(RequestParams(temperature=0.1, top_p=0.9, extra_body={"seed": 7}))

    params = agent.get_request_params()
    assert (params.temperature, params.top_p, params.extra_body) == (0.1, 0.9, {"seed": 7})

    await agent.query("hi")
    request = provider.requests[0]
    assert request.temperature == 0.1
    assert request.top_p == 0.9
    assert request.extra_body == {"seed": 7}


def test_clear_keeps_only_system_prompt():
    agent = _agent(ScriptedProvider([]))
    agent.set_memory([Message.user("old"), Message.assistant("reply")])
    assert [message.role for message in agent.get_memory()] == [Role.USER, Role.ASSISTANT]

    agent.clear()

    memory = agent.get_memory()
    assert len(memory) == 1
    assert memory[0].role == Role.SYSTEM


@pytest.mark.asyncio
async def test_trimmed_memory_never_sends_orphan_tool_results():
    provider = ScriptedProvider([
        _reply("", _calc_call("c0"), _calc_call("c1"), _calc_call("c2"), finish_reason="tool_calls"),
        _reply("All five."),
    ])
    agent = _agent(provider, memory_size=4)

    response = await agent.query("add three times")

    assert response.content == "All five."
    for request in provider.requests:
        answered = set()
        for message in request.messages:
            if message.role == Role.ASSISTANT:
                answered.update(call.id for call in message.tool_calls)
            if message.role == Role.TOOL:
                assert message.tool_call_id in answered
