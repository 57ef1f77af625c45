"""Retrying HTTP requests.

Transient failures (timeouts, connection errors, 5xx, 408 and 429) are
retried with exponential backoff ``min(base * 2**attempt, max_delay)``.
Any other 4xx fails at once.
"""

from dataclasses import dataclass
from typing import Any

import httpx
import structlog
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt, wait_exponential

from knapsack.application.errors import HttpError, NetworkError
from knapsack.config import Settings

logger = structlog.get_logger()


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Retry and timeout limits for one request."""

    max_retries: int = 3
    base_delay: float = 0.1
    max_delay: float = 1.0
    timeout: float = 2.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryPolicy":
        """Build the policy from settings."""
        return cls(
            max_retries=settings.http_max_retries,
            base_delay=settings.http_base_delay,
            max_delay=settings.http_max_delay,
            timeout=settings.http_timeout,
        )

    def delay(self, attempt: int) -> float:
        """Backoff before retry number ``attempt + 1`` (zero-based)."""
        return min(self.base_delay * 2**attempt, self.max_delay)


def is_retryable(error: BaseException) -> bool:
    """Check whether a failed request is worth retrying."""
    if isinstance(error, NetworkError):
        return True
    if isinstance(error, HttpError):
        return error.recoverable
    return False


def error_from_response(response: httpx.Response) -> HttpError:
    """Build an HttpError from a non-success response, keeping its error code."""
    message = response.text
    code: str | None = None
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        code = body.get("error_code") or body.get("code")
        message = body.get("message") or body.get("error") or message
    return HttpError(response.status_code, str(message), code)


async def _send(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    timeout: float,
    stream: bool,
    **kwargs: Any,
) -> httpx.Response:
    request = client.build_request(method, url, timeout=timeout, **kwargs)
    try:
        response = await client.send(request, stream=stream)
    except httpx.TimeoutException as e:
        msg = f"Request timed out: {method} {url}"
        raise NetworkError(msg) from e
    except httpx.TransportError as e:
        msg = f"Request failed: {method} {url}: {e}"
        raise NetworkError(msg) from e

    if not response.is_success:
        if stream:
            await response.aread()
            await response.aclose()
        raise error_from_response(response)
    return response


def _log_retry(state: RetryCallState) -> None:
    error = state.outcome.exception() if state.outcome else None
    logger.warning(
        "Retrying request",
        attempt=state.attempt_number,
        error=str(error),
        wait=state.next_action.sleep if state.next_action else None,
    )


async def retry_request(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    policy: RetryPolicy | None = None,
    *,
    stream: bool = False,
    **kwargs: Any,
) -> httpx.Response:
    """Send a request, retrying transient failures.

    Args:
        client: HTTP client.
        method: HTTP method.
        url: Absolute URL, or a path relative to the client's base URL.
        policy: Retry limits; defaults to ``RetryPolicy()``.
        stream: Return before the body is read; the caller must close the
            response.
        **kwargs: Passed to ``httpx.AsyncClient.build_request``.

    Returns:
        The successful response.

    Raises:
        HttpError: On a non-retryable status, or when retries are exhausted.
        NetworkError: When the backend stays unreachable.

    """
    policy = policy or RetryPolicy()
    retrying = AsyncRetrying(
        stop=stop_after_attempt(policy.max_retries + 1),
        wait=wait_exponential(multiplier=policy.base_delay, min=0, max=policy.max_delay),
        retry=retry_if_exception(is_retryable),
        before_sleep=_log_retry,
        reraise=True,
    )
    return await retrying(_send, client, method, url, policy.timeout, stream, **kwargs)
