"""Wikipedia search tool powered by the MediaWiki API."""

import asyncio
import html
import re
from typing import Any

import httpx

from helmsman.config import get_config
from helmsman.exceptions import ToolError
from helmsman.logging import get_logger
from helmsman.tools.registry import Tool
from helmsman.tools.schema import InputParams

log = get_logger(__name__)

_SEARCHMATCH_RE = re.compile(r'<span class="searchmatch">(.*?)</span>')
_TAG_RE = re.compile(r"<[^>]+>")


def clean_snippet(snippet: str) -> str:
    """Turn MediaWiki search highlighting into markdown bold."""
    text = _SEARCHMATCH_RE.sub(r"**\1**", snippet or "")
    text = _TAG_RE.sub("", text)
    return html.unescape(text).strip()


class WikipediaTool(Tool):
    """Search Wikipedia."""

    name = "wikipedia"
    description = "Search Wikipedia and return the top articles with an extract of the best match."
    params_model = InputParams

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None) -> None:
        cfg = get_config().tools.wikipedia
        self.base_url = cfg.base_url
        self.max_results = cfg.max_results
        self.timeout_seconds = float(cfg.timeout) + 5.0
        self._timeout = float(cfg.timeout)
        self.transport = transport

    async def _get(self, client: httpx.AsyncClient, params: dict[str, Any]) -> dict[str, Any]:
        response = await client.get(self.base_url, params={**params, "format": "json"})
        response.raise_for_status()
        payload = response.json()
        return payload if isinstance(payload, dict) else {}

    async def _extract(self, client: httpx.AsyncClient, page_id: int) -> str:
        payload = await self._get(
            client,
            {
                "action": "query",
                "pageids": str(page_id),
                "prop": "extracts",
                "exintro": "true",
                "explaintext": "true",
                "exsentences": "3",
            },
        )
        page = (payload.get("query", {}).get("pages") or {}).get(str(page_id)) or {}
        return str(page.get("extract") or "").strip()

    async def execute(self, params: InputParams, abort_event: asyncio.Event) -> str:
        query = params.input.strip()
        if not query:
            raise ToolError(ToolError.VALIDATION_FAILED, "Query cannot be empty")

        async with httpx.AsyncClient(
            timeout=self._timeout,
            transport=self.transport,
            follow_redirects=True,
            headers={"User-Agent": "helmsman/0.1 (wikipedia tool)"},
        ) as client:
            try:
                payload = await self._get(
                    client,
                    {"action": "query", "list": "search", "srsearch": query, "srlimit": str(self.max_results)},
                )
            except httpx.HTTPStatusError as e:
                log.error("Wikipedia search failed", query=query, status=e.response.status_code)
                raise ToolError("HTTP_ERROR", "Failed to fetch Wikipedia data", {"status": e.response.status_code}) from e
            except httpx.HTTPError as e:
                log.error("Wikipedia search failed", query=query, error=str(e))
                raise ToolError("HTTP_ERROR", "Failed to fetch Wikipedia data", {"error": str(e)}) from e
            except ValueError as e:
                raise ToolError("PARSE_ERROR", "Failed to parse Wikipedia response", {"error": str(e)}) from e

            results = payload.get("query", {}).get("search") or []
            if not results:
                return f"No Wikipedia results found for query: {query}"

            blocks = []
            for idx, item in enumerate(results, start=1):
                lines = [
                    f"{idx}. **{item.get('title', 'Untitled')}**",
                    f"   {clean_snippet(str(item.get('snippet', '')))}",
                    f"   (Page ID: {item.get('pageid', 0)}, Size: {item.get('size', 0)} bytes)",
                ]
                if idx == 1 and item.get("pageid"):
                    try:
                        extract = await self._extract(client, int(item["pageid"]))
                    except (httpx.HTTPError, ValueError) as e:
                        log.warning("Wikipedia extract failed", page_id=item.get("pageid"), error=str(e))
                        extract = ""
                    if extract:
                        lines.append("")
                        lines.append("   **Extract:**")
                        lines.append(f"   {extract}")
                blocks.append("\n".join(lines))

        return f"Wikipedia search results for '{query}':\n\n" + "\n\n---\n\n".join(blocks)
