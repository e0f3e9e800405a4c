"""Streaming query support for Agent."""

import asyncio
from collections.abc import AsyncIterator, Collection
from typing import Any

from helmsman.events import (
    EventStream,
    EventType,
    ProgressEventType,
    StreamEvent,
    ToolEvent,
    classify_tool_outcome,
)
from helmsman.exceptions import MaxIterationsExceededError, QueryAbortedError
from helmsman.llm import ChatRequest, ChatStreamChunk, Message, Role, ToolCall, Usage
from helmsman.logging import get_logger
from helmsman.tool_calls import StreamToolCallMerger
from helmsman.tools import ToolResult

log = get_logger(__name__)


class AgentStreamMixin:
    """``query_stream`` and the event plumbing behind it."""

    def query_stream(self, question: str, abort_event: asyncio.Event | None = None) -> EventStream:
        """Run a query in the background and stream its events.

        The stream ends with ``complete``, with a single ``error``, or quietly
        after cancellation (``abort_event`` set or ``EventStream.aclose()``).
        Unless it completes, memory is restored to what it was before the call.
        """
        abort_event = abort_event or asyncio.Event()
        snapshot = self.memory.snapshot()
        self.memory.append(Message.user(question))
        stream = EventStream()
        return stream.start(lambda s: self._run_query_stream(s, snapshot, abort_event))

    async def _run_query_stream(
        self,
        stream: EventStream,
        snapshot: tuple[Message, ...],
        abort_event: asyncio.Event,
    ) -> None:
        try:
            await self._stream_loop(stream, abort_event)
        except QueryAbortedError:
            self.memory.replace(snapshot)
            log.info("Streaming query aborted")
        except asyncio.CancelledError:
            self.memory.replace(snapshot)
            log.info("Streaming query cancelled")
            raise
        except Exception as e:
            self.memory.replace(snapshot)
            log.error("Streaming query failed", error=str(e))
            await stream.send(StreamEvent.failure(e), abort_event)

    @staticmethod
    async def _send(stream: EventStream, event: StreamEvent, abort_event: asyncio.Event) -> None:
        if not await stream.send(event, abort_event):
            raise QueryAbortedError()

    async def _stream_loop(self, stream: EventStream, abort_event: asyncio.Event) -> None:
        tool_names = self.available_tool_names()
        schemas = self.tools.get_schemas(tool_names)
        max_iterations = self.config.max_iterations
        usage = Usage()
        total_tool_calls = 0
        tool_choice = "auto"

        for iteration in range(1, max_iterations + 1):
            self._emit_progress(
                ProgressEventType.ITERATION,
                iteration=iteration,
                max_iterations=max_iterations,
            )
            request = self._build_request(schemas, tool_choice, stream=True)
            tool_choice = "auto"
            raw = await self._stream_turn(stream, request, abort_event, usage)

            message = self._prepare_assistant_message(raw)
            self.memory.append(message)

            if message.tool_calls:
                total_tool_calls = self._count_tool_calls(total_tool_calls, len(message.tool_calls))
                self._announce_tool_calls(message.tool_calls)
                await self._stream_tool_batch(stream, message.tool_calls, tool_names, abort_event)
                continue

            if not (message.content or "").strip():
                tool_choice = self._nudge_for_answer()
                continue

            self.last_usage = usage
            await self._send(stream, StreamEvent.complete(), abort_event)
            return

        raise MaxIterationsExceededError(max_iterations)

    async def _stream_turn(
        self,
        stream: EventStream,
        request: ChatRequest,
        abort_event: asyncio.Event,
        usage: Usage,
    ) -> Message:
        """Consume one provider stream, forwarding text as it arrives."""
        return await self._await_with_abort(
            self._consume_stream(stream, request, abort_event, usage),
            abort_event,
        )

    async def _consume_stream(
        self,
        stream: EventStream,
        request: ChatRequest,
        abort_event: asyncio.Event,
        usage: Usage,
    ) -> Message:
        merger = StreamToolCallMerger()
        parts: list[str] = []
        chunks: AsyncIterator[ChatStreamChunk] = self.provider.chat_stream(request)
        try:
            async for chunk in chunks:
                if chunk.content:
                    parts.append(chunk.content)
                    await self._send(stream, StreamEvent.message(chunk.content), abort_event)
                if chunk.tool_calls:
                    merger.feed_many(chunk.tool_calls)
                usage.add(chunk.usage)
        finally:
            aclose = getattr(chunks, "aclose", None)
            if aclose is not None:
                await aclose()

        content = "".join(parts)
        calls = merger.finish()
        return Message(
            role=Role.ASSISTANT,
            content=content if content or not calls else None,
            tool_calls=calls,
        )

    @staticmethod
    def _outcome_event(result: ToolResult) -> StreamEvent:
        return StreamEvent.tool_event(
            classify_tool_outcome(result),
            ToolEvent(
                id=result.id,
                name=result.name,
                result=result.render(),
                error=result.error.message if result.error else "",
            ),
        )

    async def _stream_tool_batch(
        self,
        stream: EventStream,
        calls: list[ToolCall],
        allowed: Collection[str],
        abort_event: asyncio.Event,
    ) -> list[ToolResult]:
        """Run a batch concurrently; each call reports start then its outcome."""
        for call in calls:
            await self._send(
                stream,
                StreamEvent.tool_event(
                    EventType.TOOL_START,
                    ToolEvent(
                        id=call.id,
                        name=call.name,
                        args=call.parsed_arguments,
                        args_raw=call.arguments,
                    ),
                ),
                abort_event,
            )

        tasks: list[asyncio.Task[Any]] = [
            asyncio.create_task(self.tools.execute_one(call, abort_event, allowed)) for call in calls
        ]
        try:
            for finished in asyncio.as_completed(tasks):
                result = await finished
                await self._send(stream, self._outcome_event(result), abort_event)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        results = [task.result() for task in tasks]
        self._record_tool_results(calls, results)
        return results
