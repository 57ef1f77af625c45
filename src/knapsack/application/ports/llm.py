"""LLM completion protocol definition."""

from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Protocol

from knapsack.domain.models import AdditionalDocument


@dataclass(frozen=True, slots=True)
class CompletionRequest:
    """A single prompt with its grounding documents."""

    prompt: str
    documents: list[int] = field(default_factory=list)
    additional_documents: list[AdditionalDocument] = field(default_factory=list)
    semantic_search_query: str | None = None
    user_email: str | None = None
    user_name: str | None = None
    thread_id: int | None = None
    is_local: bool = False


class CompletionClient(Protocol):
    """Protocol for the streaming completion endpoint."""

    def complete(self, request: CompletionRequest) -> AsyncIterator[str]:
        """Stream the completion.

        Yields:
            The accumulated response text after each chunk.

        Raises:
            HttpError: If the endpoint rejects the request.

        """
        ...

    async def stop(self) -> None:
        """Abort the completion currently running on the backend."""
        ...
