"""Agent wrapper that mirrors the conversation into a persisted session."""

import asyncio

from helmsman.agent import Agent, AgentResponse
from helmsman.events import EventStream, EventType, StreamEvent
from helmsman.logging import get_logger
from helmsman.session import Session, SessionManager, convert_from_messages, convert_to_messages

log = get_logger(__name__)


class HistoryAgent:
    """Runs queries on ``agent`` and keeps ``session`` in step with its memory.

    Only successful queries reach the session; a failed or cancelled query
    leaves it as it was.
    """

    def __init__(self, agent: Agent, manager: SessionManager, session: Session | None = None):
        self.agent = agent
        self.manager = manager
        self.session = session

    def _mirror_memory(self) -> None:
        """Copy the agent memory into the session, keeping known timestamps."""
        if self.session is None:
            return
        previous = self.session.messages
        mirrored = convert_from_messages(self.agent.get_memory())
        for index, item in enumerate(mirrored):
            if index >= len(previous):
                break
            old = previous[index]
            if old.get("role") == item.get("role") and old.get("content") == item.get("content"):
                item["timestamp"] = old.get("timestamp", item["timestamp"])
        self.session.messages = mirrored

    async def _persist(self) -> None:
        if self.session is None:
            return
        self._mirror_memory()
        await self.manager.save_session(self.session)

    async def query(self, question: str, abort_event: asyncio.Event | None = None) -> AgentResponse:
        before = list(self.session.messages) if self.session else []
        try:
            response = await self.agent.query(question, abort_event)
        except BaseException:
            if self.session is not None:
                self.session.messages = before
            raise
        try:
            await self._persist()
        except Exception as e:
            log.warning("Failed to save conversation history", error=str(e))
        return response

    def query_stream(self, question: str, abort_event: asyncio.Event | None = None) -> EventStream:
        """Stream a query; the session is saved once the stream completes."""
        abort_event = abort_event or asyncio.Event()
        inner = self.agent.query_stream(question, abort_event)
        return EventStream().start(lambda stream: self._relay(stream, inner, abort_event))

    async def _relay(self, stream: EventStream, inner: EventStream, abort_event: asyncio.Event) -> None:
        async with inner:
            async for event in inner:
                if not await stream.send(event, abort_event):
                    return
                if event.type != EventType.COMPLETE:
                    continue
                try:
                    await self._persist()
                except Exception as e:
                    log.warning("Failed to save conversation history", error=str(e))
                    await stream.send(
                        StreamEvent.failure(RuntimeError(f"failed to save conversation history: {e}")),
                        abort_event,
                    )

    def restore_memory_from_session(self, session: Session) -> None:
        """Load ``session`` into the agent memory and make it current."""
        if not session.messages:
            self.session = session
            return
        self.agent.set_memory(convert_to_messages(session.messages))
        self.session = session

    def clear(self) -> None:
        self.agent.clear()
