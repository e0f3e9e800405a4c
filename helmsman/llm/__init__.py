"""LLM types and providers."""

from helmsman.llm.provider import (
    LLMProvider,
    OllamaProvider,
    OpenAICompatibleProvider,
    create_provider,
    get_provider,
    set_provider,
)
from helmsman.llm.tool_args import generate_tool_call_id, normalize_tool_arguments
from helmsman.llm.types import (
    ChatRequest,
    ChatResponse,
    ChatStreamChunk,
    Choice,
    Message,
    Role,
    ToolCall,
    ToolCallDelta,
    Usage,
)

__all__ = [
    "ChatRequest",
    "ChatResponse",
    "ChatStreamChunk",
    "Choice",
    "LLMProvider",
    "Message",
    "OllamaProvider",
    "OpenAICompatibleProvider",
    "Role",
    "ToolCall",
    "ToolCallDelta",
    "Usage",
    "create_provider",
    "generate_tool_call_id",
    "get_provider",
    "normalize_tool_arguments",
    "set_provider",
]
