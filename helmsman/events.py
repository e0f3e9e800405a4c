"""Agent event types: streaming events and progress notifications."""

import asyncio
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Callable

from helmsman.tools.registry import ToolErrorKind, ToolResult

EVENT_QUEUE_SIZE = 100


class EventType(StrEnum):
    MESSAGE = "message"
    TOOL_START = "tool_start"
    TOOL_RESULT = "tool_result"
    TOOL_CANCEL = "tool_cancel"
    TOOL_TIMEOUT = "tool_timeout"
    ERROR = "error"
    COMPLETE = "complete"


@dataclass
class ToolEvent:
    id: str
    name: str
    args: dict[str, Any] = field(default_factory=dict)
    args_raw: str = "{}"
    result: str = ""
    error: str = ""


@dataclass
class StreamEvent:
    type: EventType
    content: str = ""
    tool: ToolEvent | None = None
    error: BaseException | None = None

    @classmethod
    def message(cls, text: str) -> "StreamEvent":
        return cls(EventType.MESSAGE, content=text)

    @classmethod
    def tool_event(cls, event_type: EventType, tool: ToolEvent) -> "StreamEvent":
        return cls(event_type, tool=tool)

    @classmethod
    def failure(cls, error: BaseException) -> "StreamEvent":
        return cls(EventType.ERROR, error=error)

    @classmethod
    def complete(cls) -> "StreamEvent":
        return cls(EventType.COMPLETE)


def classify_tool_outcome(result: ToolResult) -> EventType:
    """Pick the event reporting a finished tool call."""
    if result.error is None:
        return EventType.TOOL_RESULT
    if result.error.kind is ToolErrorKind.CANCELLED:
        return EventType.TOOL_CANCEL
    if result.error.kind is ToolErrorKind.TIMEOUT:
        return EventType.TOOL_TIMEOUT
    text = result.error.message.lower()
    if "cancel" in text:
        return EventType.TOOL_CANCEL
    if "deadline" in text or "timed out" in text:
        return EventType.TOOL_TIMEOUT
    return EventType.TOOL_RESULT


class ProgressEventType(StrEnum):
    ITERATION = "iteration"
    TOOL_CALLS_START = "tool_calls_start"
    TOOL_CALL = "tool_call"
    NO_TOOLS = "no_tools"


@dataclass
class ProgressEvent:
    type: ProgressEventType
    iteration: int = 0
    max_iterations: int = 0
    tool_count: int = 0
    tool_name: str = ""


ProgressHandler = Callable[[ProgressEvent], None]


class EventStream:
    """Async iterator over the events of one streaming query.

    A producer task fills a bounded queue; the stream ends after ``complete``
    or ``error``, or quietly when the producer is cancelled. ``aclose()``
    cancels the producer.
    """

    def __init__(self, maxsize: int = EVENT_QUEUE_SIZE):
        self._queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=maxsize)
        self._task: asyncio.Task[None] | None = None
        self._closed = False

    def start(self, producer: Callable[["EventStream"], Any]) -> "EventStream":
        self._task = asyncio.create_task(self._run(producer))
        return self

    async def _run(self, producer: Callable[["EventStream"], Any]) -> None:
        await producer(self)

    async def send(self, event: StreamEvent, abort_event: asyncio.Event | None = None) -> bool:
        """Queue ``event``; gives up (returns False) once ``abort_event`` is set."""
        if abort_event is None:
            await self._queue.put(event)
            return True
        if abort_event.is_set():
            return False
        if not self._queue.full():
            self._queue.put_nowait(event)
            return True
        putter = asyncio.ensure_future(self._queue.put(event))
        aborter = asyncio.ensure_future(abort_event.wait())
        try:
            done, _ = await asyncio.wait({putter, aborter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            aborter.cancel()
            if not putter.done():
                putter.cancel()
        return putter in done

    def __aiter__(self) -> AsyncIterator[StreamEvent]:
        return self

    async def __anext__(self) -> StreamEvent:
        if self._closed:
            raise StopAsyncIteration
        if not self._queue.empty():
            return self._queue.get_nowait()
        if self._task is not None and not self._task.done():
            getter = asyncio.ensure_future(self._queue.get())
            try:
                done, _ = await asyncio.wait({getter, self._task}, return_when=asyncio.FIRST_COMPLETED)
            except asyncio.CancelledError:
                getter.cancel()
                raise
            if getter in done:
                return getter.result()
            getter.cancel()
            try:
                await getter
            except asyncio.CancelledError:
                pass
            if not self._queue.empty():
                return self._queue.get_nowait()
        self._closed = True
        await self._reap()
        raise StopAsyncIteration

    async def _reap(self) -> None:
        if self._task is None:
            return
        try:
            await self._task
        except asyncio.CancelledError:
            if not self._task.cancelled():
                raise

    async def aclose(self) -> None:
        """Cancel the producer and end the stream."""
        self._closed = True
        if self._task is not None and not self._task.done():
            self._task.cancel()
        await self._reap()

    async def collect(self) -> list[StreamEvent]:
        return [event async for event in self]

    async def __aenter__(self) -> "EventStream":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()
