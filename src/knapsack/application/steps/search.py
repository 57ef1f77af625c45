"""Prompt and semantic search steps."""

from typing import Any

import structlog

from knapsack.domain.enums import DataSource, StepName
from knapsack.domain.models import AdditionalDocument, SourceDocument

from .base import SEARCH_RESULTS, USER_PROMPT, WEB_RESPONSE, Step, StepContext, StepHelpers

logger = structlog.get_logger()


class PromptStep(Step):
    """Send a user prompt, grounded on whatever earlier steps found."""

    name = StepName.PROMPT

    def __init__(self, user_prompt: str) -> None:
        self.user_prompt = user_prompt

    def args(self) -> dict[str, Any]:
        return {"userPrompt": self.user_prompt}

    async def execute(self, context: StepContext, helpers: StepHelpers) -> StepContext:
        results: list[SourceDocument] = context.get(SEARCH_RESULTS) or []
        web_response: list[AdditionalDocument] = context.get(WEB_RESPONSE) or []

        await helpers.run_chatbot(
            prompt=self.user_prompt,
            documents=[doc.document_id for doc in results],
            additional_documents=web_response,
            prompt_facade=self.user_prompt,
        )
        return {**context, USER_PROMPT: self.user_prompt}


class SemanticSearchStep(Step):
    """Search indexed documents, and the web when asked to."""

    name = StepName.SEMANTIC_SEARCH

    def __init__(
        self,
        sources: list[DataSource],
        user_prompt: str,
        *,
        use_local: bool = False,
        description_other_cadence: str | None = None,
    ) -> None:
        self.sources = list(sources)
        self.data_sources = tuple(sources)
        self.user_prompt = user_prompt
        self.use_local = use_local
        self.description_other_cadence = description_other_cadence

    def args(self) -> dict[str, Any]:
        return {
            "sources": [source.value for source in self.sources],
            "userPrompt": self.user_prompt,
            "useLocal": self.use_local,
            "descriptionOtherCadence": self.description_other_cadence,
        }

    async def execute(self, context: StepContext, helpers: StepHelpers) -> StepContext:
        results = await helpers.backend.semantic_search(self.user_prompt, self.sources, top=10)

        web_response: list[AdditionalDocument] = []
        if DataSource.WEB in self.sources:
            web_response = await helpers.web_search.search(self.user_prompt)

        logger.debug(
            "Semantic search finished",
            results=len(results),
            web_results=len(web_response),
        )
        return {**context, SEARCH_RESULTS: results, WEB_RESPONSE: web_response}
