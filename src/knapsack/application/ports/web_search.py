"""Web search protocol definition."""

from typing import Protocol

from knapsack.domain.models import AdditionalDocument


class WebSearch(Protocol):
    """Protocol for web search providers."""

    async def search(self, query: str) -> list[AdditionalDocument]:
        """Search the web.

        Args:
            query: Free text query.

        Returns:
            Downloaded pages as additional LLM context.

        """
        ...
