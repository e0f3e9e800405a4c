import pytest

from helmsman.agent import Agent
from helmsman.config import AgentConfig
from helmsman.events import EventType
from helmsman.exceptions import LLMAPIError
from helmsman.history_agent import HistoryAgent
from helmsman.llm import ChatResponse, ChatStreamChunk, Choice, LLMProvider, Message, Role
from helmsman.session import Session, SessionManager
from helmsman.tools.registry import ToolRegistry


class ScriptedProvider(LLMProvider):
    model = "fake-model"

    def __init__(self, replies):
        self.replies = list(replies)

    async def chat(self, request):
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return ChatResponse(choices=[Choice(message=Message.assistant(reply))])

    async def chat_stream(self, request):
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        for word in reply.split(" "):
            yield ChatStreamChunk(content=word + " ")


class BrokenManager(SessionManager):
    async def save_session(self, session):
        raise OSError("disk full")


def _agent(replies):
    return Agent(
        provider=ScriptedProvider(replies),
        config=AgentConfig(system_prompt="You are helpful."),
        registry=ToolRegistry(),
    )


@pytest.mark.asyncio
async def test_successful_query_is_persisted(tmp_path):
    manager = SessionManager(db_path=tmp_path / "sessions.db")
    try:
        session = await manager.start_session("/work", "fake", "fake-model")
        history = HistoryAgent(_agent(["Hi there!", "Still here."]), manager, session)

        await history.query("Hello")
        first_stamp = history.session.messages[1]["timestamp"]
        await history.query("Are you there?")

        stored = await manager.load_session(session.id)
        assert [item["role"] for item in stored.messages] == [
            "system", "user", "assistant", "user", "assistant",
        ]
        assert stored.messages[4]["content"] == "Still here."
        assert stored.messages[1]["timestamp"] == first_stamp
        assert stored.title == "Hello"
    finally:
        await manager.close()


@pytest.mark.asyncio
async def test_failed_query_leaves_session_untouched(tmp_path):
    manager = SessionManager(db_path=tmp_path / "sessions.db")
    try:
        session = await manager.start_session("/work", "fake", "fake-model")
        history = HistoryAgent(_agent(["first", LLMAPIError("API error 500")]), manager, session)
        await history.query("one")
        saved = list(history.session.messages)

        with pytest.raises(LLMAPIError):
            await history.query("two")

        assert history.session.messages == saved
        assert len((await manager.load_session(session.id)).messages) == len(saved)
    finally:
        await manager.close()


@pytest.mark.asyncio
async def test_save_failure_does_not_fail_blocking_query(tmp_path):
    manager = BrokenManager(db_path=tmp_path / "sessions.db")
    try:
        history = HistoryAgent(_agent(["answer"]), manager, Session(id="s1", name="broken"))

        response = await history.query("question")

        assert response.content == "answer"
    finally:
        await manager.close()


@pytest.mark.asyncio
async def test_stream_persists_after_complete(tmp_path):
    manager = SessionManager(db_path=tmp_path / "sessions.db")
    try:
        session = await manager.start_session("/work", "fake", "fake-model")
        history = HistoryAgent(_agent(["streamed reply"]), manager, session)

        events = await history.query_stream("Hello").collect()

        assert events[-1].type == EventType.COMPLETE
        stored = await manager.load_session(session.id)
        assert stored.messages[-1]["role"] == "assistant"
        assert stored.messages[-1]["content"] == "streamed reply "
    finally:
        await manager.close()


@pytest.mark.asyncio
async def test_stream_save_failure_is_reported_after_complete(tmp_path):
    manager = BrokenManager(db_path=tmp_path / "sessions.db")
    try:
        history = HistoryAgent(_agent(["reply"]), manager, Session(id="s1", name="broken"))

        events = await history.query_stream("Hello").collect()

        assert [event.type for event in events][-2:] == [EventType.COMPLETE, EventType.ERROR]
        assert "failed to save conversation history" in str(events[-1].error)
    finally:
        await manager.close()


@pytest.mark.asyncio
async def test_restore_memory_from_session(tmp_path):
    manager = SessionManager(db_path=tmp_path / "sessions.db")
    try:
        session = await manager.start_session("/work", "fake", "fake-model")
        writer = HistoryAgent(_agent(["remembered"]), manager, session)
        await writer.query("remember me")

        stored = await manager.get_last_session_for_path("/work")
        reader = HistoryAgent(_agent([]), manager)
        reader.restore_memory_from_session(stored)

        memory = reader.agent.get_memory()
        assert reader.session.id == session.id
        assert [message.role for message in memory] == [Role.SYSTEM, Role.USER, Role.ASSISTANT]
        assert memory[2].content == "remembered"
    finally:
        await manager.close()
