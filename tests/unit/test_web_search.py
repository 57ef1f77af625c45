"""Tests for the streaming web search client."""

import json
from collections.abc import AsyncIterator, Callable

import httpx
import pytest

from knapsack.config import Settings
from knapsack.infrastructure.websearch.client import (
    DOWNLOAD_STAGE,
    JSON_STREAM_SEPARATOR,
    StreamingWebSearch,
    split_stream,
)


async def _chunks(*chunks: str) -> AsyncIterator[str]:
    for chunk in chunks:
        yield chunk


def _stream(*results: dict) -> bytes:
    return "".join(json.dumps(result) + JSON_STREAM_SEPARATOR for result in results).encode()


def _search(settings: Settings, handler: Callable[[httpx.Request], httpx.Response]) -> StreamingWebSearch:
    settings.web_search_url = "http://search/stream_search"
    return StreamingWebSearch(settings, transport=httpx.MockTransport(handler))


class TestSplitStream:
    """Tests for split_stream."""

    @pytest.mark.asyncio
    async def test_objects_split_across_chunks(self) -> None:
        """Test objects are reassembled when chunks cut through them."""
        sep = JSON_STREAM_SEPARATOR
        chunks = _chunks('{"a": ', "1}" + sep[:5], sep[5:] + '{"b": 2}' + sep + "  " + sep)
        assert [obj async for obj in split_stream(chunks)] == [{"a": 1}, {"b": 2}]

    @pytest.mark.asyncio
    async def test_trailing_partial_ignored(self) -> None:
        """Test an unterminated object is dropped."""
        chunks = _chunks('{"a": 1}' + JSON_STREAM_SEPARATOR + '{"b"')
        assert [obj async for obj in split_stream(chunks)] == [{"a": 1}]


class TestStreamingWebSearch:
    """Tests for StreamingWebSearch."""

    @pytest.mark.asyncio
    async def test_stops_at_download_stage(self, settings: Settings) -> None:
        """Test documents of the download stage are returned."""
        body = _stream(
            {"success": True, "stage": "Searching", "websearch_docs": []},
            {
                "success": True,
                "stage": DOWNLOAD_STAGE,
                "websearch_docs": [{"url": "https://a.io", "text": "page"}, {"title": "B", "text": "b"}],
            },
            {"success": True, "stage": "Summarizing", "websearch_docs": [{"title": "late"}]},
        )
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, content=body)

        search = _search(settings, handler)
        docs = await search.search("roadmap news")
        await search.close()

        assert [(doc.title, doc.content) for doc in docs] == [("https://a.io", "page"), ("B", "b")]
        assert json.loads(seen[0].content) == {"user_prompt": "roadmap news"}

    @pytest.mark.asyncio
    async def test_unsuccessful_result(self, settings: Settings) -> None:
        """Test a failed stage yields no documents."""
        body = _stream({"success": False, "message": "quota"})
        search = _search(settings, lambda _: httpx.Response(200, content=body))
        assert await search.search("q") == []
        await search.close()

    @pytest.mark.asyncio
    async def test_http_error_yields_nothing(self, settings: Settings) -> None:
        """Test a failing endpoint yields no documents."""
        search = _search(settings, lambda _: httpx.Response(503, json={"message": "down"}))
        assert await search.search("q") == []
        await search.close()

    @pytest.mark.asyncio
    async def test_broken_json(self, settings: Settings) -> None:
        """Test malformed events end the search quietly."""
        body = b"{not json" + JSON_STREAM_SEPARATOR.encode()
        search = _search(settings, lambda _: httpx.Response(200, content=body))
        assert await search.search("q") == []
        await search.close()
