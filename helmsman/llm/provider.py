"""LLM providers - direct HTTP calls to OpenAI-compatible and Ollama APIs."""

import json
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, AsyncIterator

import httpx

from helmsman.exceptions import LLMAPIError, LLMError
from helmsman.llm.tool_args import generate_tool_call_id, normalize_tool_arguments
from helmsman.llm.types import (
    ChatRequest,
    ChatResponse,
    ChatStreamChunk,
    Choice,
    Message,
    ToolCall,
    ToolCallDelta,
    Usage,
    wire_arguments_object,
)
from helmsman.logging import get_logger

log = get_logger(__name__)


OLLAMA_NATIVE_BASE_URL = "http://127.0.0.1:11434"


@dataclass(frozen=True)
class ProviderPreset:
    base_url: str
    api_key_env: str = ""


OPENAI_COMPATIBLE_PRESETS: dict[str, ProviderPreset] = {
    "openai": ProviderPreset("https://api.openai.com/v1", "OPENAI_API_KEY"),
    "lmstudio": ProviderPreset("http://127.0.0.1:1234/v1"),
    "groq": ProviderPreset("https://api.groq.com/openai/v1", "GROQ_API_KEY"),
    "deepseek": ProviderPreset("https://api.deepseek.com/v1", "DEEPSEEK_API_KEY"),
    "moonshot": ProviderPreset("https://api.moonshot.ai/v1", "MOONSHOT_API_KEY"),
    "perplexity": ProviderPreset("https://api.perplexity.ai", "PERPLEXITY_API_KEY"),
    "minimax": ProviderPreset("https://api.minimax.io/v1", "MINIMAX_API_KEY"),
}


class LLMProvider(ABC):
    """Chat backend: one blocking call and one streaming call."""

    model: str = ""

    @abstractmethod
    async def chat(self, request: ChatRequest) -> ChatResponse:
        """Run one non-streaming chat completion."""

    @abstractmethod
    def chat_stream(self, request: ChatRequest) -> AsyncIterator[ChatStreamChunk]:
        """Stream one chat completion as deltas."""

    async def close(self) -> None:
        """Release transport resources."""


class _HTTPProvider(LLMProvider):
    """Shared httpx plumbing."""

    def __init__(self, model: str, base_url: str, api_key: str | None, timeout: float):
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.client = httpx.AsyncClient(timeout=timeout, follow_redirects=True)

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def close(self) -> None:
        await self.client.aclose()


class OpenAICompatibleProvider(_HTTPProvider):
    """Provider for any ``/chat/completions`` endpoint."""

    def __init__(
        self,
        model: str,
        base_url: str = OPENAI_COMPATIBLE_PRESETS["openai"].base_url,
        api_key: str | None = None,
        timeout: float = 300.0,
        name: str = "openai",
    ):
        super().__init__(model, base_url, api_key, timeout)
        self.name = name

    def _body(self, request: ChatRequest, stream: bool) -> dict[str, Any]:
        body = request.to_wire()
        body["model"] = request.model or self.model
        body["stream"] = stream
        if stream:
            body.setdefault("stream_options", {"include_usage": True})
        return body

    async def chat(self, request: ChatRequest) -> ChatResponse:
        url = f"{self.base_url}/chat/completions"
        body = self._body(request, stream=False)
        try:
            log.debug("Calling provider", provider=self.name, model=body["model"], msg_count=len(request.messages))
            response = await self.client.post(url, json=body, headers=self._headers())
            if not response.is_success:
                raise LLMAPIError(
                    f"{self.name} API error {response.status_code}: {response.text}",
                    status_code=response.status_code,
                )
            data = response.json()
        except httpx.HTTPError as e:
            raise LLMAPIError(f"{self.name} HTTP error: {e}") from e
        except json.JSONDecodeError as e:
            raise LLMError(f"{self.name} response decode error: {e}") from e

        choices = []
        for item in data.get("choices") or []:
            choices.append(
                Choice(
                    message=Message.from_wire(item.get("message") or {"role": "assistant"}),
                    finish_reason=item.get("finish_reason") or "",
                )
            )
        return ChatResponse(
            choices=choices,
            usage=Usage.from_wire(data.get("usage")),
            model=data.get("model") or body["model"],
        )

    async def chat_stream(self, request: ChatRequest) -> AsyncIterator[ChatStreamChunk]:
        url = f"{self.base_url}/chat/completions"
        body = self._body(request, stream=True)
        try:
            async with self.client.stream("POST", url, json=body, headers=self._headers()) as response:
                if not response.is_success:
                    error_text = (await response.aread()).decode("utf-8", errors="replace")
                    raise LLMAPIError(
                        f"{self.name} API error {response.status_code}: {error_text}",
                        status_code=response.status_code,
                    )
                async for line in response.aiter_lines():
                    line = line.strip()
                    if not line.startswith("data:"):
                        continue
                    payload = line[len("data:"):].strip()
                    if payload == "[DONE]":
                        break
                    try:
                        data = json.loads(payload)
                    except json.JSONDecodeError:
                        log.warning("Skipping undecodable stream line", provider=self.name)
                        continue
                    yield self._parse_chunk(data)
        except httpx.HTTPError as e:
            raise LLMAPIError(f"{self.name} streaming error: {e}") from e

    @staticmethod
    def _parse_chunk(data: dict[str, Any]) -> ChatStreamChunk:
        chunk = ChatStreamChunk(usage=Usage.from_wire(data.get("usage")))
        choices = data.get("choices") or []
        if not choices:
            return chunk
        first = choices[0]
        delta = first.get("delta") or {}
        chunk.content = delta.get("content") or ""
        chunk.finish_reason = first.get("finish_reason") or ""
        for item in delta.get("tool_calls") or []:
            function = item.get("function") or {}
            arguments = function.get("arguments")
            if isinstance(arguments, dict):
                arguments = normalize_tool_arguments(arguments)[1]
            chunk.tool_calls.append(
                ToolCallDelta(
                    index=item.get("index"),
                    id=item.get("id") or "",
                    type=item.get("type") or "",
                    name=function.get("name") or "",
                    arguments=arguments or "",
                )
            )
        return chunk


class OllamaProvider(_HTTPProvider):
    """Direct Ollama API provider (native ``/api/chat``)."""

    def __init__(
        self,
        model: str = "llama3.1",
        base_url: str = OLLAMA_NATIVE_BASE_URL,
        api_key: str | None = None,
        timeout: float = 300.0,
    ):
        super().__init__(model, base_url, api_key, timeout)

    def _convert_messages(self, messages: list[Message]) -> list[dict[str, Any]]:
        """Ollama wants tool-call arguments as objects, not strings."""
        result = []
        for message in messages:
            entry = message.to_wire()
            if "tool_calls" in entry:
                entry["tool_calls"] = [wire_arguments_object(call) for call in entry["tool_calls"]]
            if message.role == "tool" and message.name:
                entry["tool_name"] = message.name
            result.append(entry)
        return result

    def _body(self, request: ChatRequest, stream: bool) -> dict[str, Any]:
        options: dict[str, Any] = {}
        if request.temperature is not None:
            options["temperature"] = request.temperature
        if request.max_tokens:
            options["num_predict"] = request.max_tokens
        if request.top_p:
            options["top_p"] = request.top_p

        body: dict[str, Any] = {
            "model": request.model or self.model,
            "messages": self._convert_messages(request.messages),
            "stream": stream,
            "options": options,
        }
        # Ollama has no tool_choice; "none" means "don't offer tools".
        if request.tools and request.tool_choice != "none":
            body["tools"] = request.tools
        body.update(request.extra_body)
        return body

    @staticmethod
    def _tool_calls(message: dict[str, Any]) -> list[ToolCall]:
        calls = []
        for item in message.get("tool_calls") or []:
            function = item.get("function") or {}
            calls.append(
                ToolCall(
                    id=item.get("id") or generate_tool_call_id(),
                    name=function.get("name") or "",
                    arguments=normalize_tool_arguments(function.get("arguments"))[1],
                )
            )
        return calls

    @staticmethod
    def _usage(data: dict[str, Any]) -> Usage | None:
        if "prompt_eval_count" not in data and "eval_count" not in data:
            return None
        prompt = int(data.get("prompt_eval_count") or 0)
        completion = int(data.get("eval_count") or 0)
        return Usage(prompt_tokens=prompt, completion_tokens=completion, total_tokens=prompt + completion)

    async def chat(self, request: ChatRequest) -> ChatResponse:
        url = f"{self.base_url}/api/chat"
        body = self._body(request, stream=False)
        try:
            log.debug("Calling Ollama", model=body["model"], url=url, msg_count=len(body["messages"]))
            response = await self.client.post(url, json=body, headers=self._headers())
            if not response.is_success:
                raise LLMAPIError(
                    f"Ollama API error {response.status_code}: {response.text}",
                    status_code=response.status_code,
                )
            data = response.json()
        except httpx.HTTPError as e:
            raise LLMAPIError(f"Ollama HTTP error: {e}") from e
        except json.JSONDecodeError as e:
            raise LLMError(f"Ollama response decode error: {e}") from e

        raw = data.get("message") or {}
        tool_calls = self._tool_calls(raw)
        message = Message.assistant(raw.get("content") or None, tool_calls)
        if not tool_calls and message.content is None:
            message.content = ""
        return ChatResponse(
            choices=[Choice(message=message, finish_reason="tool_calls" if tool_calls else data.get("done_reason") or "stop")],
            usage=self._usage(data),
            model=body["model"],
        )

    async def chat_stream(self, request: ChatRequest) -> AsyncIterator[ChatStreamChunk]:
        url = f"{self.base_url}/api/chat"
        body = self._body(request, stream=True)
        try:
            async with self.client.stream("POST", url, json=body, headers=self._headers()) as response:
                if not response.is_success:
                    error_text = (await response.aread()).decode("utf-8", errors="replace")
                    raise LLMAPIError(
                        f"Ollama API error {response.status_code}: {error_text}",
                        status_code=response.status_code,
                    )
                async for line in response.aiter_lines():
                    if not line.strip():
                        continue
                    try:
                        data = json.loads(line)
                    except json.JSONDecodeError:
                        continue
                    raw = data.get("message") or {}
                    # Ollama sends complete calls, so every call gets an id.
                    deltas = [
                        ToolCallDelta(id=call.id, type=call.type, name=call.name, arguments=call.arguments)
                        for call in self._tool_calls(raw)
                    ]
                    yield ChatStreamChunk(
                        content=raw.get("content") or "",
                        tool_calls=deltas,
                        finish_reason=(data.get("done_reason") or "stop") if data.get("done") else "",
                        usage=self._usage(data) if data.get("done") else None,
                    )
                    if data.get("done"):
                        break
        except httpx.HTTPError as e:
            raise LLMAPIError(f"Ollama streaming error: {e}") from e


def create_provider(
    provider: str = "ollama",
    model: str = "llama3.1",
    api_key: str | None = None,
    base_url: str | None = None,
    timeout: float = 300.0,
) -> LLMProvider:
    """Build the provider for ``provider`` (``ollama`` or an OpenAI-compatible preset).

    Args:
        model: Model name
        api_key: Optional API key; presets fall back to their env variable
        base_url: Optional base URL overriding the preset
        timeout: HTTP timeout in seconds

    Returns:
        A ready provider; unknown names raise ValueError.
    """
    name = provider.strip().lower()
    if name == "ollama":
        return OllamaProvider(
            model=model,
            base_url=base_url or OLLAMA_NATIVE_BASE_URL,
            api_key=api_key,
            timeout=timeout,
        )
    preset = OPENAI_COMPATIBLE_PRESETS.get(name)
    if preset is None:
        raise ValueError(
            f"Provider '{provider}' not supported. Use 'ollama' or one of: "
            + ", ".join(sorted(OPENAI_COMPATIBLE_PRESETS))
        )
    key = api_key or (os.environ.get(preset.api_key_env, "") if preset.api_key_env else "")
    return OpenAICompatibleProvider(
        model=model,
        base_url=base_url or preset.base_url,
        api_key=key or None,
        timeout=timeout,
        name=name,
    )


_provider: LLMProvider | None = None


def get_provider() -> LLMProvider:
    """Process-wide provider built from the active config."""
    global _provider
    if _provider is None:
        from helmsman.config import get_config

        cfg = get_config()
        _provider = create_provider(
            provider=cfg.model.provider,
            model=cfg.model.model,
            api_key=cfg.model.api_key or None,
            base_url=cfg.model.base_url or None,
            timeout=cfg.model.timeout,
        )
    return _provider


def set_provider(provider: LLMProvider | None) -> None:
    global _provider
    _provider = provider
