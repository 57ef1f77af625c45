"""Streaming web search client."""

import json
from collections.abc import AsyncIterator
from typing import Any

import httpx
import structlog

from knapsack.application.errors import EngineError
from knapsack.config import Settings, get_settings
from knapsack.domain.models import AdditionalDocument
from knapsack.infrastructure.http.retry import RetryPolicy, retry_request

logger = structlog.get_logger()

JSON_STREAM_SEPARATOR = "[/PERPLEXED-SEPARATOR]"
DOWNLOAD_STAGE = "Downloading Webpages"


async def split_stream(chunks: AsyncIterator[str]) -> AsyncIterator[dict[str, Any]]:
    """Split a separator-delimited JSON stream into objects."""
    buffer = ""
    async for chunk in chunks:
        buffer += chunk
        boundary = buffer.find(JSON_STREAM_SEPARATOR)
        while boundary != -1:
            part = buffer[:boundary]
            buffer = buffer[boundary + len(JSON_STREAM_SEPARATOR) :]
            if part.strip():
                yield json.loads(part)
            boundary = buffer.find(JSON_STREAM_SEPARATOR)


def _documents(result: dict[str, Any]) -> list[AdditionalDocument]:
    return [
        AdditionalDocument(title=doc.get("title") or doc.get("url") or "", content=doc.get("text") or "")
        for doc in result.get("websearch_docs") or []
    ]


class StreamingWebSearch:
    """Web search over the hosted ``stream_search`` endpoint.

    The endpoint streams progress stages; the search completes as soon as
    the "Downloading Webpages" stage carries documents. A failed search
    yields no documents rather than failing the automation.
    """

    def __init__(self, settings: Settings | None = None, transport: httpx.AsyncBaseTransport | None = None) -> None:
        """Initialize the client.

        Args:
            settings: Settings, loaded from the environment when omitted.
            transport: Optional transport, used by tests.

        """
        self._settings = settings or get_settings()
        self._policy = RetryPolicy(max_retries=0, timeout=self._settings.llm_timeout)
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._settings.llm_timeout),
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def search(self, query: str) -> list[AdditionalDocument]:
        """Search the web.

        Args:
            query: Free text query.

        Returns:
            Downloaded pages, or the documents of the last successful stage.

        """
        client = await self.get_client()
        try:
            response = await retry_request(
                client,
                "POST",
                self._settings.web_search_url,
                self._policy,
                stream=True,
                json={"user_prompt": query},
            )
        except EngineError as e:
            logger.warning("Web search failed", query=query, error=str(e))
            return []

        documents: list[AdditionalDocument] = []
        try:
            async for result in split_stream(response.aiter_text()):
                if not result.get("success"):
                    logger.warning("Web search returned an error", query=query, error=result.get("message"))
                    return []
                documents = _documents(result)
                if result.get("stage") == DOWNLOAD_STAGE and documents:
                    break
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Web search stream broken", query=query, error=str(e))
        finally:
            await response.aclose()

        logger.debug("Web search finished", query=query, documents=len(documents))
        return documents
