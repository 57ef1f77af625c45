"""Pytest configuration and fixtures."""

import os
from collections.abc import AsyncIterator, Callable
from datetime import UTC, datetime
from unittest.mock import AsyncMock

import pytest

# Set test environment variables before importing settings
os.environ.setdefault("KNAPSACK_USER_EMAIL", "me@example.com")
os.environ.setdefault("KNAPSACK_TIMEZONE", "UTC")

from knapsack.application.ports.backend import Backend  # noqa: E402
from knapsack.application.ports.llm import CompletionRequest  # noqa: E402
from knapsack.config import Settings  # noqa: E402
from knapsack.domain.models import FeedItem  # noqa: E402


class FakeCompletionClient:
    """Completion client replaying scripted answers.

    Each script entry is either the list of chunks to stream or an
    exception to raise.
    """

    def __init__(self, scripts: list[list[str] | Exception] | None = None) -> None:
        self.scripts = list(scripts or [])
        self.requests: list[CompletionRequest] = []
        self.stopped = 0
        self.default: list[str] = ["ok"]

    async def complete(self, request: CompletionRequest) -> AsyncIterator[str]:
        self.requests.append(request)
        script = self.scripts.pop(0) if self.scripts else self.default
        if isinstance(script, Exception):
            raise script
        text = ""
        for chunk in script:
            text += chunk
            yield text

    async def stop(self) -> None:
        self.stopped += 1


@pytest.fixture
def settings() -> Settings:
    """Return settings with fast timers and a signed-in user."""
    return Settings(
        user_email="me@example.com",
        user_name="Me",
        timezone="UTC",
        http_base_delay=0.0,
        http_max_delay=0.0,
        connection_poll_interval=0.01,
        autopilot_batch_stagger=0.0,
        autopilot_retry_base_delay=0.0,
        autopilot_retry_max_delay=0.0,
        autopilot_drain_interval=0.01,
        autopilot_drain_delay=0.0,
        automation_ready_attempts=3,
        automation_ready_interval=0.0,
    )


@pytest.fixture
def now() -> datetime:
    """Return a fixed Saturday morning."""
    return datetime(2025, 10, 18, 9, 0, tzinfo=UTC)


@pytest.fixture
def clock(now: datetime) -> Callable[[], datetime]:
    """Return a clock frozen at ``now``."""
    return lambda: now


@pytest.fixture
def backend() -> AsyncMock:
    """Return a backend mock with empty defaults."""
    mock = AsyncMock(spec=Backend)
    mock.get_automations.return_value = []
    mock.get_feed_items.return_value = []
    mock.insert_feed_item.return_value = FeedItem(
        id=1000,
        timestamp=datetime(2025, 10, 18, 8, 0, tzinfo=UTC),
        title="Email Autopilot",
    )
    mock.get_connections.return_value = []
    mock.get_sync_status.return_value = {}
    mock.get_access_token.return_value = "token"
    mock.get_automation_start_status.return_value = True
    mock.insert_automation_run.return_value = []
    mock.semantic_search.return_value = []
    mock.list_emails_within.return_value = []
    mock.list_sent_emails_within.return_value = []
    mock.search_emails_by_addresses.return_value = []
    mock.get_email_thread.return_value = []
    mock.get_recent_calendar_events.return_value = []
    mock.get_calendar_event.return_value = None
    mock.get_document_infos.return_value = []
    mock.get_drive_document_ids.return_value = []
    return mock


@pytest.fixture
def web_search() -> AsyncMock:
    """Return a web search mock finding nothing."""
    mock = AsyncMock()
    mock.search.return_value = []
    return mock


@pytest.fixture
def bus() -> AsyncMock:
    """Return a message bus mock recording published events."""
    return AsyncMock()


@pytest.fixture
def completion_client() -> FakeCompletionClient:
    """Return a scripted completion client."""
    return FakeCompletionClient()


@pytest.fixture
def published(bus: AsyncMock) -> Callable[[type], list]:
    """Return a lookup of events of one type published on the mock bus."""

    def lookup(event_type: type) -> list:
        return [call.args[0] for call in bus.publish.await_args_list if isinstance(call.args[0], event_type)]

    return lookup
