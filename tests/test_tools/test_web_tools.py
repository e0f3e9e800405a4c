import asyncio

import httpx
import pytest

from helmsman.exceptions import ToolError
from helmsman.tools.google_search import GoogleSearchTool
from helmsman.tools.schema import InputParams
from helmsman.tools.wikipedia import WikipediaTool, clean_snippet


def test_clean_snippet_bolds_search_matches():
    snippet = 'The <span class="searchmatch">Python</span> language &amp; <i>friends</i>'

    assert clean_snippet(snippet) == "The **Python** language & friends"


@pytest.mark.asyncio
async def test_wikipedia_formats_results_with_extract():
    def handler(request: httpx.Request) -> httpx.Response:
        params = request.url.params
        if params.get("list") == "search":
            assert params["srsearch"] == "python"
            return httpx.Response(200, json={"query": {"search": [
                {"title": "Python", "snippet": "a <span class=\"searchmatch\">python</span>", "pageid": 7, "size": 100},
                {"title": "Monty", "snippet": "comedy", "pageid": 8, "size": 50},
            ]}})
        assert params["pageids"] == "7"
        return httpx.Response(200, json={"query": {"pages": {"7": {"extract": "A snake."}}}})

    tool = WikipediaTool(transport=httpx.MockTransport(handler))
    result = await tool.execute(InputParams(input="python"), asyncio.Event())

    assert result.startswith("Wikipedia search results for 'python':\n\n1. **Python**")
    assert "   a **python**" in result
    assert "   **Extract:**\n   A snake." in result
    assert "\n\n---\n\n2. **Monty**" in result
    assert result.count("Extract") == 1


@pytest.mark.asyncio
async def test_wikipedia_reports_no_results_and_http_errors():
    empty = WikipediaTool(transport=httpx.MockTransport(lambda request: httpx.Response(200, json={"query": {}})))
    assert await empty.execute(InputParams(input="zzz"), asyncio.Event()) == (
        "No Wikipedia results found for query: zzz"
    )

    failing = WikipediaTool(transport=httpx.MockTransport(lambda request: httpx.Response(503)))
    with pytest.raises(ToolError) as exc_info:
        await failing.execute(InputParams(input="zzz"), asyncio.Event())
    assert exc_info.value.code == "HTTP_ERROR"
    assert exc_info.value.details["status"] == 503


@pytest.mark.asyncio
async def test_google_search_requires_credentials(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.delenv("GOOGLE_API_KEY", raising=False)
    monkeypatch.delenv("GOOGLE_CX", raising=False)
    tool = GoogleSearchTool()
    tool.api_key = ""

    with pytest.raises(ToolError) as exc_info:
        await tool.execute(InputParams(input="news"), asyncio.Event())

    assert exc_info.value.code == ToolError.NOT_CONFIGURED


@pytest.mark.asyncio
async def test_google_search_formats_items():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["q"] == "helmsman"
        assert request.url.params["key"] == "k"
        return httpx.Response(200, json={"items": [
            {"title": "Helmsman  docs", "link": "https://example.com", "snippet": "steer\nthe ship"},
            {"title": "", "link": "", "snippet": ""},
        ]})

    tool = GoogleSearchTool(transport=httpx.MockTransport(handler))
    tool.api_key = "k"
    tool.cx = "cx"
    result = await tool.execute(InputParams(input="helmsman"), asyncio.Event())

    assert result.splitlines() == [
        "[QUERY: helmsman]",
        "[RESULTS: 2]",
        "",
        "1. Helmsman docs",
        "   URL: https://example.com",
        "   Snippet: steer the ship",
        "",
        "2. Untitled",
        "   URL: -",
        "   Snippet: -",
    ]


@pytest.mark.asyncio
async def test_google_search_http_error_includes_body():
    tool = GoogleSearchTool(transport=httpx.MockTransport(lambda request: httpx.Response(403, text="quota exceeded")))
    tool.api_key = "k"
    tool.cx = "cx"

    with pytest.raises(ToolError) as exc_info:
        await tool.execute(InputParams(input="x"), asyncio.Event())

    assert exc_info.value.details["error"] == "HTTP 403: quota exceeded"
