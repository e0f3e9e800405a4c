"""Tool-call preparation/execution helpers for Agent."""

import asyncio
from collections.abc import Awaitable, Collection
from dataclasses import replace
from typing import Any, TypeVar

from helmsman.events import ProgressEvent, ProgressEventType
from helmsman.exceptions import MaxToolCallsExceededError, QueryAbortedError
from helmsman.llm import ChatRequest, Message, Role, ToolCall, generate_tool_call_id
from helmsman.logging import get_logger
from helmsman.tool_calls import resolve_content_tool_calls
from helmsman.tools import ToolResult

log = get_logger(__name__)

T = TypeVar("T")

NUDGE_MESSAGE = "Please provide your response based on the information gathered."


class AgentToolLoopMixin:
    """Build requests, lift tool calls out of replies and run tool batches."""

    def _emit_progress(self, event_type: ProgressEventType, **fields: Any) -> None:
        """Forward a progress event when a handler is configured."""
        if self.progress_handler is None:
            return
        try:
            self.progress_handler(ProgressEvent(event_type, **fields))
        except Exception as e:
            log.warning("Progress handler failed", event=str(event_type), error=str(e))

    def _build_request(
        self,
        tools: list[dict[str, Any]],
        tool_choice: str,
        stream: bool,
    ) -> ChatRequest:
        messages = []
        for message in self.memory.snapshot():
            # Some providers reject assistant tool-call turns without content.
            if message.role == Role.ASSISTANT and message.tool_calls and message.content is None:
                message = replace(message, content="")
            messages.append(message)
        return ChatRequest(
            messages=messages,
            model=self.provider.model,
            temperature=self.config.temperature,
            max_tokens=self.config.max_tokens,
            top_p=self.config.top_p,
            stream=stream,
            tools=tools,
            tool_choice=tool_choice if tools else None,
            extra_body=dict(self.config.extra_body),
        )

    def _prepare_assistant_message(self, message: Message) -> Message:
        """Canonical assistant turn: embedded calls lifted, ids filled, arguments normalized."""
        resolved, dialect = resolve_content_tool_calls(
            message,
            self.config.enable_channel_markup_parser,
        )
        calls: list[ToolCall] = [
            replace(call, id=call.id or generate_tool_call_id()).normalized()
            for call in resolved.tool_calls
        ]
        content = resolved.content
        if calls and content is None:
            content = ""
        if calls and dialect is not None:
            log.debug("Tool calls resolved", dialect=str(dialect), count=len(calls))
        return Message(role=Role.ASSISTANT, content=content, tool_calls=calls)

    def _count_tool_calls(self, total: int, batch: int) -> int:
        """New running total, or raise when the batch would exceed the cap."""
        limit = self.config.max_tool_calls
        if limit > 0 and total + batch > limit:
            log.warning("Tool call budget exhausted", total=total, batch=batch, limit=limit)
            raise MaxToolCallsExceededError(limit)
        return total + batch

    def _announce_tool_calls(self, calls: list[ToolCall]) -> None:
        self._emit_progress(ProgressEventType.TOOL_CALLS_START, tool_count=len(calls))
        for call in calls:
            self._emit_progress(ProgressEventType.TOOL_CALL, tool_name=call.name)

    def _nudge_for_answer(self) -> str:
        """Ask for a final answer after an empty turn; returns the next tool choice."""
        log.info("Empty assistant turn, nudging for an answer")
        self.memory.append(Message.user(NUDGE_MESSAGE))
        self._emit_progress(ProgressEventType.NO_TOOLS)
        return "none"

    def _record_tool_results(self, calls: list[ToolCall], results: list[ToolResult]) -> None:
        """Append one tool message per call, in call order."""
        for call, result in zip(calls, results):
            self.memory.append(Message.tool(call.id, result.render(), call.name))

    async def _run_tool_batch(
        self,
        calls: list[ToolCall],
        allowed: Collection[str],
        abort_event: asyncio.Event | None,
    ) -> list[ToolResult]:
        results = await self.tools.execute_many(calls, abort_event, allowed)
        self._record_tool_results(calls, results)
        return results

    @staticmethod
    async def _cancel_task(task: asyncio.Future[Any] | None) -> None:
        """Cancel task and await it to avoid pending task warnings."""
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception as e:
            log.debug("Cancelled task raised", error=str(e))

    async def _await_with_abort(
        self,
        awaitable: Awaitable[T],
        abort_event: asyncio.Event | None,
    ) -> T:
        """Await ``awaitable`` unless ``abort_event`` fires first."""
        if abort_event is None:
            return await awaitable
        if abort_event.is_set():
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise QueryAbortedError()

        work = asyncio.ensure_future(awaitable)
        abort_wait_task = asyncio.create_task(abort_event.wait())
        try:
            done, _ = await asyncio.wait(
                {work, abort_wait_task},
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            await self._cancel_task(work)
            raise
        finally:
            await self._cancel_task(abort_wait_task)

        if work in done:
            return work.result()
        await self._cancel_task(work)
        raise QueryAbortedError()
