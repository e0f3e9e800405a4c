"""Tools, their registry, and the per-call execution wrapper."""

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Collection
from enum import StrEnum
from typing import Any, Callable

from pydantic import BaseModel, Field, model_validator

from helmsman.exceptions import ToolAlreadyRegisteredError, ToolError, ToolNotFoundError
from helmsman.llm.tool_args import normalize_tool_arguments
from helmsman.llm.types import ToolCall
from helmsman.logging import get_logger
from helmsman.tools.schema import NoParams, build_function_schema, parameters_schema, validate_arguments

log = get_logger(__name__)

DEFAULT_TOOL_TIMEOUT = 300.0


class ToolErrorKind(StrEnum):
    EXECUTION_ERROR = "execution_error"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"
    VALIDATION = "validation"
    NOT_ALLOWED = "not_allowed"
    TOOL_SPECIFIC = "tool_specific"


_CODE_KINDS = {
    ToolError.EXECUTION_CANCELLED: ToolErrorKind.CANCELLED,
    ToolError.EXECUTION_TIMEOUT: ToolErrorKind.TIMEOUT,
}


class ToolFailure(BaseModel):
    """Why a tool call produced no result."""

    kind: ToolErrorKind
    message: str = ""
    code: str = ""
    details: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_error(cls, error: ToolError, kind: ToolErrorKind | None = None) -> "ToolFailure":
        return cls(
            kind=kind or _CODE_KINDS.get(error.code, ToolErrorKind.EXECUTION_ERROR),
            message=str(error),
            code=error.code,
            details=error.details,
        )


class ToolResult(BaseModel):
    """Outcome of one tool call."""

    id: str
    name: str
    content: str = ""
    error: ToolFailure | None = None

    @model_validator(mode="after")
    def _normalize_failure_message(self) -> "ToolResult":
        """Failed results always carry a message."""
        if self.error is not None and not self.error.message.strip():
            self.error.message = (self.content or "").strip() or "Tool execution failed"
        return self

    @property
    def success(self) -> bool:
        return self.error is None

    def render(self) -> str:
        """Text fed back to the model as the tool message."""
        if self.error is None:
            return self.content
        return f"Error: {self.error.message}"


class Tool(ABC):
    """Base class for all tools.

    Subclasses declare ``name``, ``description`` and a pydantic
    ``params_model``; ``execute`` returns the result text or raises
    :class:`ToolError`.
    """

    name: str = ""
    description: str = ""
    params_model: type[BaseModel] = NoParams
    timeout_seconds: float | None = None

    @abstractmethod
    async def execute(self, params: Any, abort_event: asyncio.Event) -> str:
        """Execute the tool.

        Args:
            params: Validated instance of ``params_model``
            abort_event: Set when the caller gives up on this call

        Returns:
            Result text for the model
        """

    @property
    def parameters(self) -> dict[str, Any]:
        return parameters_schema(self.params_model)

    def get_definition(self) -> dict[str, Any]:
        """OpenAI function-style definition."""
        return build_function_schema(self.name, self.description, self.params_model)

    def validate_arguments(self, arguments: dict[str, Any]) -> Any:
        return validate_arguments(self.params_model, arguments)

    def deadline_for(self, params: Any) -> float | None:
        """Per-call deadline in seconds; None uses the registry default."""
        return self.timeout_seconds


ToolFactory = Callable[[], Tool]


class ToolRegistry:
    """Name to factory map; every lookup builds a fresh tool."""

    def __init__(self, default_timeout: float = DEFAULT_TOOL_TIMEOUT):
        self._factories: dict[str, ToolFactory] = {}
        self.default_timeout = default_timeout

    def register(self, name: str, factory: ToolFactory) -> None:
        if not name:
            raise ValueError("Tool must have a name")
        if name in self._factories:
            raise ToolAlreadyRegisteredError(name)
        self._factories[name] = factory
        log.debug("Registered tool", tool=name)

    def unregister(self, name: str) -> None:
        self._factories.pop(name, None)

    def has_tool(self, name: str) -> bool:
        return name in self._factories

    def get(self, name: str) -> Tool:
        factory = self._factories.get(name)
        if factory is None:
            raise ToolNotFoundError(name)
        return factory()

    def list_tools(self) -> list[str]:
        return list(self._factories)

    def get_schema(self, name: str) -> dict[str, Any]:
        return self.get(name).get_definition()

    def get_all_schemas(self) -> list[dict[str, Any]]:
        return [self.get_schema(name) for name in self._factories]

    def get_schemas(self, names: Collection[str]) -> list[dict[str, Any]]:
        """Schemas for ``names`` that are registered, in the given order."""
        return [self.get_schema(name) for name in names if name in self._factories]

    def descriptions(self) -> dict[str, str]:
        return {name: self.get(name).description for name in self._factories}

    @staticmethod
    async def _cancel_task(task: asyncio.Task[Any] | None) -> None:
        """Cancel ``task`` and wait for it to unwind."""
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception as e:
            log.debug("Cancelled task raised", error=str(e))

    @staticmethod
    async def _bridge_abort_event(source: asyncio.Event, target: asyncio.Event) -> None:
        """Mirror the caller's abort event onto the per-call one."""
        await source.wait()
        target.set()

    @staticmethod
    def _failure(call: ToolCall, kind: ToolErrorKind, error: ToolError) -> ToolResult:
        return ToolResult(id=call.id, name=call.name, error=ToolFailure.from_error(error, kind))

    async def execute_one(
        self,
        call: ToolCall,
        abort_event: asyncio.Event | None = None,
        allowed: Collection[str] | None = None,
    ) -> ToolResult:
        """Run one tool call. Failures come back as ``ToolResult.error``."""
        if call.name not in self._factories or (allowed is not None and call.name not in allowed):
            log.warning("Tool not available", tool=call.name, call_id=call.id)
            return self._failure(
                call,
                ToolErrorKind.NOT_ALLOWED,
                ToolError(ToolError.TOOL_NOT_FOUND, f"tool '{call.name}' is not available"),
            )

        tool = self.get(call.name)
        arguments, _ = normalize_tool_arguments(call.arguments)
        try:
            params = tool.validate_arguments(arguments)
        except ToolError as e:
            log.info("Tool arguments rejected", tool=call.name, error=str(e))
            return self._failure(call, ToolErrorKind.VALIDATION, e)

        deadline = tool.deadline_for(params)
        timeout_seconds = float(deadline if deadline is not None else self.default_timeout)
        timeout_seconds = max(0.001, timeout_seconds)

        execute_task: asyncio.Task[str] | None = None
        abort_wait_task: asyncio.Task[bool] | None = None
        bridge_task: asyncio.Task[None] | None = None
        tool_abort_event = asyncio.Event()
        try:
            log.info("Executing tool", tool=call.name, call_id=call.id, args=arguments)
            if abort_event is not None:
                if abort_event.is_set():
                    tool_abort_event.set()
                bridge_task = asyncio.create_task(self._bridge_abort_event(abort_event, tool_abort_event))

            execute_task = asyncio.create_task(tool.execute(params, tool_abort_event))
            abort_wait_task = asyncio.create_task(tool_abort_event.wait())
            done, _ = await asyncio.wait(
                {execute_task, abort_wait_task},
                timeout=timeout_seconds,
                return_when=asyncio.FIRST_COMPLETED,
            )

            if execute_task in done:
                content = execute_task.result()
                log.info("Tool executed", tool=call.name, call_id=call.id)
                return ToolResult(id=call.id, name=call.name, content=str(content))

            if abort_wait_task in done:
                await self._cancel_task(execute_task)
                log.info("Tool cancelled", tool=call.name, call_id=call.id)
                return self._failure(
                    call,
                    ToolErrorKind.CANCELLED,
                    ToolError(ToolError.EXECUTION_CANCELLED, "Execution cancelled"),
                )

            tool_abort_event.set()
            await self._cancel_task(execute_task)
            timeout_label = int(timeout_seconds) if timeout_seconds.is_integer() else timeout_seconds
            log.warning("Tool timed out", tool=call.name, call_id=call.id, timeout=timeout_label)
            return self._failure(
                call,
                ToolErrorKind.TIMEOUT,
                ToolError(ToolError.EXECUTION_TIMEOUT, f"Execution timed out after {timeout_label}s"),
            )
        except asyncio.CancelledError:
            tool_abort_event.set()
            await self._cancel_task(execute_task)
            raise
        except ToolError as e:
            log.info("Tool reported error", tool=call.name, code=e.code, error=e.message)
            return ToolResult(id=call.id, name=call.name, error=ToolFailure.from_error(e))
        except Exception as e:
            log.error("Tool execution failed", tool=call.name, error=str(e))
            return self._failure(
                call,
                ToolErrorKind.EXECUTION_ERROR,
                ToolError(ToolError.EXECUTION_ERROR, str(e) or type(e).__name__),
            )
        finally:
            await self._cancel_task(abort_wait_task)
            await self._cancel_task(bridge_task)

    async def execute_many(
        self,
        calls: list[ToolCall],
        abort_event: asyncio.Event | None = None,
        allowed: Collection[str] | None = None,
    ) -> list[ToolResult]:
        """Run calls concurrently; results keep the order of ``calls``."""
        if not calls:
            return []
        tasks = [asyncio.create_task(self.execute_one(call, abort_event, allowed)) for call in calls]
        try:
            return list(await asyncio.gather(*tasks))
        except asyncio.CancelledError:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise


_registry: ToolRegistry | None = None


def get_tool_registry() -> ToolRegistry:
    """Process-wide registry, created empty on first use."""
    global _registry
    if _registry is None:
        _registry = ToolRegistry()
    return _registry


def set_tool_registry(registry: ToolRegistry | None) -> None:
    global _registry
    _registry = registry
