"""Streaming completion client for the backend LLM endpoint."""

from collections.abc import AsyncIterator

import httpx
import structlog

from knapsack.application.errors import (
    CompletionClientError,
    CompletionServerError,
    HttpError,
    TooManyRequestsError,
)
from knapsack.application.ports.llm import CompletionRequest
from knapsack.config import Settings, get_settings
from knapsack.infrastructure.http.retry import RetryPolicy, retry_request

from .stream import parse_completion_stream

logger = structlog.get_logger()


def completion_error(error: HttpError) -> HttpError:
    """Map an endpoint error code to the matching completion error."""
    match error.code:
        case "TOO_MANY_REQUESTS":
            return TooManyRequestsError("Heavy usage. Please try again in a minute.")
        case "CHAT_COMPLETION_FAILED":
            return CompletionServerError(error.status)
        case "CHAT_COMPLETION_CLIENT_FAILED":
            return CompletionClientError(error.status)
        case _:
            return error


def request_body(request: CompletionRequest) -> dict[str, object]:
    """Build the JSON body of a completion request."""
    return {
        "user_email": request.user_email,
        "user_name": request.user_name,
        "prompt": request.prompt,
        "semantic_search_query": request.semantic_search_query,
        "documents": request.documents,
        "additional_documents": [doc.to_payload() for doc in request.additional_documents],
        "is_local": request.is_local,
        "thread_id": request.thread_id,
    }


class HttpCompletionClient:
    """Completion client streaming from ``llm_complete``."""

    def __init__(self, settings: Settings | None = None, transport: httpx.AsyncBaseTransport | None = None) -> None:
        """Initialize the client.

        Args:
            settings: Settings, loaded from the environment when omitted.
            transport: Optional transport, used by tests.

        """
        self._settings = settings or get_settings()
        self._policy = RetryPolicy(
            max_retries=self._settings.http_max_retries,
            base_delay=self._settings.http_base_delay,
            max_delay=self._settings.http_max_delay,
            timeout=self._settings.llm_timeout,
        )
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self._settings.backend_url.rstrip("/") + "/",
                timeout=httpx.Timeout(self._settings.llm_timeout),
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def complete(self, request: CompletionRequest) -> AsyncIterator[str]:
        """Stream a completion.

        Yields:
            The accumulated answer after each chunk.

        Raises:
            TooManyRequestsError: If the endpoint is rate limited.
            CompletionServerError: If the completion failed on the server.
            CompletionClientError: If the request was rejected.

        """
        client = await self.get_client()
        try:
            response = await retry_request(
                client,
                "POST",
                "llm_complete",
                self._policy,
                stream=True,
                json=request_body(request),
            )
        except HttpError as e:
            logger.error("Error chat completion stream", status=e.status, code=e.code, error=e.message)
            raise completion_error(e) from e

        try:
            async for text in parse_completion_stream(response.aiter_lines(), self._settings.llm_max_stream_reads):
                yield text
        finally:
            await response.aclose()

    async def stop(self) -> None:
        """Abort the completion currently running on the backend."""
        client = await self.get_client()
        await retry_request(client, "POST", "stop_llm_execution", self._policy)
