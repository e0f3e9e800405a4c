"""Agent orchestration for Helmsman."""

import asyncio
from dataclasses import dataclass, field
from typing import Any

from helmsman.agent_stream_mixin import AgentStreamMixin
from helmsman.agent_tool_loop_mixin import AgentToolLoopMixin
from helmsman.config import AgentConfig, get_config
from helmsman.events import ProgressEventType, ProgressHandler
from helmsman.exceptions import EmptyResponseError, MaxIterationsExceededError
from helmsman.llm import LLMProvider, Message, Usage, get_provider
from helmsman.logging import get_logger
from helmsman.memory import ConversationMemory
from helmsman.tools import ToolRegistry, ToolResult, get_tool_registry

log = get_logger(__name__)

TOOL_PROMPT_HEADER = "Available tools:\n\n"
TOOL_PROMPT_FOOTER = (
    "\nWhen you need to use a tool, respond with a JSON object in this format:\n"
    '{"name": "tool_name", "arguments": {"param1": "value1", "param2": "value2"}}'
    "\n\nDo not include any other text when calling a tool, just the JSON object."
)


@dataclass
class AgentResponse:
    """Final answer of a blocking query."""

    content: str
    tool_results: list[ToolResult] = field(default_factory=list)
    usage: Usage = field(default_factory=Usage)
    finish_reason: str = ""


@dataclass
class RequestParams:
    """Per-request sampling parameters."""

    temperature: float
    top_p: float = 0.0
    extra_body: dict[str, Any] | None = None

    def __post_init__(self) -> None:
        if self.extra_body is not None:
            self.extra_body = dict(self.extra_body)


class Agent(AgentToolLoopMixin, AgentStreamMixin):
    """Main agent orchestrator."""

    def __init__(
        self,
        provider: LLMProvider | None = None,
        config: AgentConfig | None = None,
        registry: ToolRegistry | None = None,
        progress_handler: ProgressHandler | None = None,
        channel_markup: bool | None = None,
    ):
        """Initialize the agent.

        Args:
            provider: LLM provider; defaults to the global one
            config: Agent settings; defaults to ``get_config().agent``
            registry: Tool registry; defaults to the global one
            progress_handler: Optional callback for loop progress
            channel_markup: Overrides ``enable_channel_markup_parser``
        """
        self.provider = provider or get_provider()
        self.config = (config or get_config().agent).model_copy(deep=True)
        if channel_markup is not None:
            self.config.enable_channel_markup_parser = channel_markup
        self.tools = registry or get_tool_registry()
        self.progress_handler = progress_handler
        self.memory = ConversationMemory(self.config.memory_size)
        self.last_usage = Usage()
        if self.config.system_prompt:
            self.memory.set_system_prompt(self._augment_prompt(self.config.system_prompt))

    def available_tool_names(self) -> list[str]:
        """Configured allow-list (registered entries only), else every registered tool."""
        if self.config.tools:
            return [name for name in self.config.tools if self.tools.has_tool(name)]
        return self.tools.list_tools()

    def _tool_list_for_prompt(self) -> str:
        names = sorted(self.available_tool_names())
        if not names:
            return ""
        lines = [f"- {name}: {self.tools.get(name).description}\n" for name in names]
        return TOOL_PROMPT_HEADER + "".join(lines) + TOOL_PROMPT_FOOTER

    def _augment_prompt(self, prompt: str) -> str:
        tool_info = self._tool_list_for_prompt()
        if not tool_info:
            return prompt
        return f"{prompt}\n\n{tool_info}"

    def set_system_prompt(self, prompt: str) -> None:
        """Replace the system prompt; the tool listing is appended again."""
        self.config.system_prompt = prompt
        self.memory.set_system_prompt(self._augment_prompt(prompt))

    def clear(self) -> None:
        """Forget the conversation, keeping only the system prompt."""
        self.memory.replace([])
        if self.config.system_prompt:
            self.memory.set_system_prompt(self._augment_prompt(self.config.system_prompt))

    def get_memory(self) -> list[Message]:
        return [message.copy() for message in self.memory.snapshot()]

    def set_memory(self, messages: list[Message]) -> None:
        self.memory.replace(message.copy() for message in messages)

    def set_request_params(self, params: RequestParams) -> None:
        self.config.temperature = params.temperature
        self.config.top_p = params.top_p
        self.config.extra_body = dict(params.extra_body or {})

    def get_request_params(self) -> RequestParams:
        return RequestParams(
            temperature=self.config.temperature,
            top_p=self.config.top_p,
            extra_body=dict(self.config.extra_body) if self.config.extra_body else None,
        )

    async def query(self, question: str, abort_event: asyncio.Event | None = None) -> AgentResponse:
        """Run the reason/act loop until the model answers in plain text.

        Tool failures are fed back to the model; provider failures, an abort
        and exhausted iteration or tool-call budgets raise.
        """
        self.memory.append(Message.user(question))
        tool_names = self.available_tool_names()
        schemas = self.tools.get_schemas(tool_names)
        max_iterations = self.config.max_iterations
        usage = Usage()
        tool_results: list[ToolResult] = []
        total_tool_calls = 0
        tool_choice = "auto"

        for iteration in range(1, max_iterations + 1):
            self._emit_progress(
                ProgressEventType.ITERATION,
                iteration=iteration,
                max_iterations=max_iterations,
            )
            request = self._build_request(schemas, tool_choice, stream=False)
            tool_choice = "auto"
            response = await self._await_with_abort(self.provider.chat(request), abort_event)
            usage.add(response.usage)
            if not response.choices:
                raise EmptyResponseError()

            choice = response.choices[0]
            message = self._prepare_assistant_message(choice.message)
            if message.tool_calls:
                total_tool_calls = self._count_tool_calls(total_tool_calls, len(message.tool_calls))
            self.memory.append(message)

            if message.tool_calls:
                self._announce_tool_calls(message.tool_calls)
                log.info("Executing tool batch", iteration=iteration, count=len(message.tool_calls))
                tool_results.extend(await self._run_tool_batch(message.tool_calls, tool_names, abort_event))
                continue

            if not (message.content or "").strip():
                tool_choice = self._nudge_for_answer()
                continue

            self.last_usage = usage
            return AgentResponse(
                content=message.content or "",
                tool_results=tool_results,
                usage=usage,
                finish_reason=choice.finish_reason or "stop",
            )

        log.warning("Max iterations reached", max_iterations=max_iterations)
        raise MaxIterationsExceededError(max_iterations)
