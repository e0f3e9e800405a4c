"""Custom exceptions for Helmsman."""

from typing import Any


class HelmsmanError(Exception):
    """Base exception for Helmsman."""

    pass


class ConfigurationError(HelmsmanError):
    """Configuration-related errors."""

    pass


class LLMError(HelmsmanError):
    """LLM-related errors."""

    pass


class LLMAPIError(LLMError):
    """LLM API errors (transport, rate limit, auth, etc.)."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class AgentError(HelmsmanError):
    """Agent loop errors that terminate a query."""

    pass


class MaxIterationsExceededError(AgentError):
    """The loop ran out of iterations before a final answer."""

    def __init__(self, max_iterations: int):
        super().__init__(f"max iterations ({max_iterations}) reached without completion")
        self.max_iterations = max_iterations


class MaxToolCallsExceededError(AgentError):
    """The cumulative tool call budget would be exceeded."""

    def __init__(self, max_tool_calls: int):
        super().__init__(f"max tool calls ({max_tool_calls}) reached without completion")
        self.max_tool_calls = max_tool_calls


class EmptyResponseError(AgentError):
    """Provider response carried no choices."""

    def __init__(self) -> None:
        super().__init__("no response from LLM")


class QueryAbortedError(AgentError):
    """Blocking query observed its abort event."""

    def __init__(self) -> None:
        super().__init__("query aborted")


class ToolError(HelmsmanError):
    """Structured error raised by a tool.

    ``code`` is one of the well-known codes below or a tool specific one;
    ``details`` is a free-form mapping rendered after the message.
    """

    INVALID_PARAMS = "INVALID_PARAMS"
    VALIDATION_FAILED = "VALIDATION_FAILED"
    EXECUTION_CANCELLED = "EXECUTION_CANCELLED"
    EXECUTION_TIMEOUT = "EXECUTION_TIMEOUT"
    EXECUTION_ERROR = "EXECUTION_ERROR"
    COMMAND_NOT_ALLOWED = "COMMAND_NOT_ALLOWED"
    FILE_NOT_FOUND = "FILE_NOT_FOUND"
    NOT_CONFIGURED = "NOT_CONFIGURED"
    TOOL_NOT_FOUND = "TOOL_NOT_FOUND"

    def __init__(self, code: str, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = dict(details or {})

    def __str__(self) -> str:
        text = f"{self.code}: {self.message}"
        if self.details:
            rendered = ", ".join(f"{key}={value}" for key, value in self.details.items())
            text = f"{text} ({rendered})"
        return text


class ToolRegistryError(HelmsmanError):
    """Tool registry errors."""

    pass


class ToolNotFoundError(ToolRegistryError):
    """Tool not found in registry."""

    def __init__(self, tool_name: str):
        super().__init__(f"Tool not found: {tool_name}")
        self.tool_name = tool_name


class ToolAlreadyRegisteredError(ToolRegistryError):
    """A tool with the same name is already registered."""

    def __init__(self, tool_name: str):
        super().__init__(f"tool '{tool_name}' is already registered")
        self.tool_name = tool_name


class SessionError(HelmsmanError):
    """Session-related errors."""

    pass


class SessionNotFoundError(SessionError):
    """Session not found."""

    def __init__(self, session_id: str):
        super().__init__(f"Session not found: {session_id}")
        self.session_id = session_id
