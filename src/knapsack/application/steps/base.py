"""Base step implementation.

A step is one stage of an automation pipeline. It receives the context
produced by the previous step and returns a new context; it never mutates
the one it was given.
"""

import json
from abc import ABC, abstractmethod
from collections.abc import Iterable
from datetime import datetime, time, timedelta
from typing import Any, ClassVar, Protocol

from knapsack.application.errors import AuthRequiredError
from knapsack.application.ports.backend import Backend
from knapsack.application.ports.web_search import WebSearch
from knapsack.domain.enums import DataSource, StepName
from knapsack.domain.models import AdditionalDocument

StepContext = dict[str, Any]

# Context keys
USER_EMAIL = "user_email"
TRIGGER = "trigger"
EVENT_ID = "event_id"
TIMESTAMP = "timestamp"
SEARCH_RESULTS = "semantic_search_results"
WEB_RESPONSE = "web_response"
USER_PROMPT = "user_prompt"

LOGIN_REQUIRED = "You need to login with your Google account to access this functionality"


class StepHelpers(Protocol):
    """Services a step may call while executing."""

    @property
    def backend(self) -> Backend:
        """Backend used for document and mail lookups."""
        ...

    @property
    def web_search(self) -> WebSearch:
        """Web search provider."""
        ...

    def now(self) -> datetime:
        """Current time in the user's timezone."""
        ...

    async def wait_until_ready(self, user_email: str) -> None:
        """Block until the backend reports the automation can start.

        Raises:
            AutomationNotReadyError: If readiness polling is exhausted.

        """
        ...

    async def run_chatbot(
        self,
        *,
        prompt: str,
        documents: list[int],
        additional_documents: list[AdditionalDocument] | None = None,
        prompt_facade: str | None = None,
        semantic_search_query: str | None = None,
    ) -> None:
        """Submit the final LLM request of the automation."""
        ...


class Step(ABC):
    """Base class for all automation steps."""

    name: ClassVar[StepName]
    data_sources: tuple[DataSource, ...] = ()

    def args(self) -> dict[str, Any]:
        """Return the step arguments in their wire form."""
        return {}

    def serialize(self) -> dict[str, Any]:
        """Return the backend payload for this step."""
        return {"name": self.name.value, "args_json": json.dumps(self.args())}

    @abstractmethod
    async def execute(self, context: StepContext, helpers: StepHelpers) -> StepContext:
        """Run the step.

        Args:
            context: Context produced by the previous step.
            helpers: Services available to the step.

        Returns:
            The context for the next step.

        """
        ...

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Step):
            return NotImplemented
        return self.name == other.name and self.args() == other.args()

    def __hash__(self) -> int:
        return hash((self.name, json.dumps(self.args(), sort_keys=True)))

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.args()!r})"


def require_user_email(context: StepContext) -> str:
    """Return the signed-in user's email or fail the step.

    Raises:
        AuthRequiredError: If nobody is signed in.

    """
    user_email = context.get(USER_EMAIL)
    if not user_email:
        raise AuthRequiredError(LOGIN_REQUIRED)
    return str(user_email)


def context_moment(context: StepContext, helpers: StepHelpers) -> datetime:
    """Return the instant the run is about: the run's timestamp param, or now."""
    now = helpers.now()
    value = context.get(TIMESTAMP)
    if value in (None, ""):
        return now
    return datetime.fromtimestamp(float(value) / 1000, tz=now.tzinfo)


def day_bounds(moment: datetime, days_back: int = 0) -> tuple[datetime, datetime]:
    """Return local midnight ``days_back`` days ago and the end of ``moment``'s day."""
    start = datetime.combine(moment.date() - timedelta(days=days_back), time.min, tzinfo=moment.tzinfo)
    end = datetime.combine(moment.date(), time.max, tzinfo=moment.tzinfo)
    return start, end


def unique_ids(*groups: Iterable[int]) -> list[int]:
    """Merge document id groups, dropping repeats and keeping first-seen order."""
    return list(dict.fromkeys(doc_id for group in groups for doc_id in group))
