"""Web search tool powered by the Google Custom Search API."""

import asyncio
import os
import re
from typing import Any

import httpx

from helmsman.config import get_config
from helmsman.exceptions import ToolError
from helmsman.logging import get_logger
from helmsman.tools.registry import Tool
from helmsman.tools.schema import InputParams

log = get_logger(__name__)


class GoogleSearchTool(Tool):
    """Search the web using Google Custom Search."""

    name = "google_search"
    description = "Search the web with Google and return ranked results with titles, links, and snippets."
    params_model = InputParams

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None) -> None:
        cfg = get_config().tools.google_search
        self.api_key = (cfg.api_key or os.environ.get("GOOGLE_API_KEY", "")).strip()
        self.cx = (cfg.cx or os.environ.get("GOOGLE_CX", "")).strip()
        self.base_url = cfg.base_url
        self.max_results = min(max(int(cfg.max_results), 1), 10)
        self._timeout = float(cfg.timeout)
        self.transport = transport
        self.timeout_seconds = self._timeout + 5.0

    @staticmethod
    def _clean_text(value: str, max_chars: int = 500) -> str:
        """Normalize whitespace and bound output size."""
        cleaned = re.sub(r"\s+", " ", (value or "")).strip()
        if len(cleaned) <= max_chars:
            return cleaned
        return cleaned[:max_chars].rstrip() + "... [truncated]"

    async def execute(self, params: InputParams, abort_event: asyncio.Event) -> str:
        query = params.input.strip()
        if not query:
            raise ToolError(ToolError.VALIDATION_FAILED, "Query cannot be empty")
        if not self.api_key or not self.cx:
            raise ToolError(
                ToolError.NOT_CONFIGURED,
                "Google search is not configured. Set tools.google_search.api_key and "
                "tools.google_search.cx, or GOOGLE_API_KEY and GOOGLE_CX.",
            )

        request_params: dict[str, Any] = {
            "key": self.api_key,
            "cx": self.cx,
            "q": query,
            "num": self.max_results,
        }
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, follow_redirects=True, transport=self.transport
            ) as client:
                response = await client.get(self.base_url, params=request_params)
                response.raise_for_status()
                payload = response.json()
        except httpx.HTTPStatusError as e:
            detail = f"HTTP {e.response.status_code}"
            body = (e.response.text or "").strip()
            if body:
                detail = f"{detail}: {self._clean_text(body, max_chars=300)}"
            log.error("Google search failed", query=query, error=detail)
            raise ToolError("HTTP_ERROR", "Google search request failed", {"error": detail}) from e
        except httpx.HTTPError as e:
            log.error("Google search failed", query=query, error=str(e))
            raise ToolError("HTTP_ERROR", "Google search request failed", {"error": str(e)}) from e
        except ValueError as e:
            raise ToolError("PARSE_ERROR", "Failed to parse Google response", {"error": str(e)}) from e

        items = payload.get("items", []) if isinstance(payload, dict) else []
        lines = [f"[QUERY: {query}]", f"[RESULTS: {len(items)}]", ""]
        if not items:
            lines.append("No results found.")
        for idx, item in enumerate(items, start=1):
            title = self._clean_text(str(item.get("title", "") or "Untitled"), max_chars=180)
            link = str(item.get("link", "") or "").strip()
            snippet = self._clean_text(str(item.get("snippet", "") or ""))
            lines.append(f"{idx}. {title}")
            lines.append(f"   URL: {link or '-'}")
            lines.append(f"   Snippet: {snippet or '-'}")
            lines.append("")
        return "\n".join(lines).strip()
