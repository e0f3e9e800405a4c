"""Chat data types and their OpenAI-style wire format."""

from dataclasses import dataclass, field, replace
from enum import StrEnum
from typing import Any

from helmsman.llm.tool_args import EMPTY_ARGUMENTS, normalize_tool_arguments


class Role(StrEnum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


@dataclass(frozen=True)
class ToolCall:
    """A tool invocation requested by the model.

    ``arguments`` holds canonical JSON text of an object once the call has
    been normalized.
    """

    id: str
    name: str
    arguments: str = EMPTY_ARGUMENTS
    type: str = "function"

    @property
    def parsed_arguments(self) -> dict[str, Any]:
        return normalize_tool_arguments(self.arguments)[0]

    def normalized(self) -> "ToolCall":
        return replace(self, arguments=normalize_tool_arguments(self.arguments)[1])

    def to_wire(self) -> dict[str, Any]:
        # Arguments travel as a JSON-encoded string.
        return {
            "id": self.id,
            "type": self.type or "function",
            "function": {"name": self.name, "arguments": self.arguments},
        }

    @classmethod
    def from_wire(cls, data: dict[str, Any]) -> "ToolCall":
        function = data.get("function") or {}
        _, arguments = normalize_tool_arguments(function.get("arguments"))
        return cls(
            id=str(data.get("id") or ""),
            name=str(function.get("name") or ""),
            arguments=arguments,
            type=str(data.get("type") or "function"),
        )


@dataclass
class Message:
    """A message in the conversation.

    ``content`` is None when absent, which only happens on assistant turns
    that carry nothing but tool calls.
    """

    role: str
    content: str | None = None
    tool_calls: list[ToolCall] = field(default_factory=list)
    tool_call_id: str | None = None
    name: str | None = None

    @classmethod
    def system(cls, content: str) -> "Message":
        return cls(role=Role.SYSTEM, content=content)

    @classmethod
    def user(cls, content: str) -> "Message":
        return cls(role=Role.USER, content=content)

    @classmethod
    def assistant(cls, content: str | None, tool_calls: list[ToolCall] | None = None) -> "Message":
        return cls(role=Role.ASSISTANT, content=content, tool_calls=list(tool_calls or []))

    @classmethod
    def tool(cls, tool_call_id: str, content: str, name: str | None = None) -> "Message":
        return cls(role=Role.TOOL, content=content, tool_call_id=tool_call_id, name=name)

    def copy(self) -> "Message":
        return replace(self, tool_calls=list(self.tool_calls))

    def to_wire(self) -> dict[str, Any]:
        data: dict[str, Any] = {"role": str(self.role), "content": self.content or ""}
        if self.tool_calls:
            data["tool_calls"] = [call.to_wire() for call in self.tool_calls]
        if self.tool_call_id:
            data["tool_call_id"] = self.tool_call_id
        if self.name:
            data["name"] = self.name
        return data

    @classmethod
    def from_wire(cls, data: dict[str, Any]) -> "Message":
        return cls(
            role=str(data.get("role") or ""),
            content=data.get("content"),
            tool_calls=[ToolCall.from_wire(item) for item in data.get("tool_calls") or []],
            tool_call_id=data.get("tool_call_id") or None,
            name=data.get("name") or None,
        )


@dataclass
class Usage:
    """Token usage, accumulated across provider calls."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def add(self, other: "Usage | None") -> None:
        if other is None:
            return
        self.prompt_tokens += other.prompt_tokens
        self.completion_tokens += other.completion_tokens
        self.total_tokens += other.total_tokens

    @classmethod
    def from_wire(cls, data: dict[str, Any] | None) -> "Usage | None":
        if not data:
            return None
        prompt = int(data.get("prompt_tokens") or 0)
        completion = int(data.get("completion_tokens") or 0)
        return cls(
            prompt_tokens=prompt,
            completion_tokens=completion,
            total_tokens=int(data.get("total_tokens") or prompt + completion),
        )


@dataclass
class Choice:
    message: Message
    finish_reason: str = ""


@dataclass
class ChatResponse:
    choices: list[Choice] = field(default_factory=list)
    usage: Usage | None = None
    model: str = ""


@dataclass
class ToolCallDelta:
    """A fragment of a streamed tool call; any field may be missing."""

    index: int | None = None
    id: str = ""
    type: str = ""
    name: str = ""
    arguments: str = ""


@dataclass
class ChatStreamChunk:
    content: str = ""
    tool_calls: list[ToolCallDelta] = field(default_factory=list)
    finish_reason: str = ""
    usage: Usage | None = None


@dataclass
class ChatRequest:
    """Everything a provider needs for one chat call."""

    messages: list[Message]
    model: str = ""
    temperature: float | None = None
    max_tokens: int | None = None
    top_p: float | None = None
    stream: bool = False
    tools: list[dict[str, Any]] = field(default_factory=list)
    tool_choice: str | dict[str, Any] | None = None
    extra_body: dict[str, Any] = field(default_factory=dict)

    def to_wire(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "model": self.model,
            "messages": [message.to_wire() for message in self.messages],
            "stream": self.stream,
        }
        if self.temperature is not None:
            body["temperature"] = self.temperature
        if self.max_tokens:
            body["max_tokens"] = self.max_tokens
        if self.top_p:
            body["top_p"] = self.top_p
        if self.tools:
            body["tools"] = self.tools
            if self.tool_choice is not None:
                body["tool_choice"] = self.tool_choice
        body.update(self.extra_body)
        return body


def wire_arguments_object(call: dict[str, Any]) -> dict[str, Any]:
    """Return a wire tool call whose arguments are a decoded object."""
    function = dict(call.get("function") or {})
    arguments = function.get("arguments")
    function["arguments"] = normalize_tool_arguments(arguments)[0]
    return {**call, "function": function}
