"""Tests for Events API routes."""

from collections.abc import AsyncGenerator
from datetime import UTC, datetime

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from knapsack.api.deps import get_event_log
from knapsack.api.routes.events import router
from knapsack.domain.events import AutomationFailed, RunScheduled
from knapsack.infrastructure.bus.memory import EventLog, InMemoryMessageBus


@pytest.fixture
async def event_log() -> EventLog:
    """Return an event log holding two events."""
    log = EventLog(InMemoryMessageBus())
    await log.record(
        RunScheduled(
            automation_uuid="uuid-3",
            schedule_date=datetime(2025, 10, 18, 9, 0, tzinfo=UTC),
        )
    )
    await log.record(
        AutomationFailed(
            automation_uuid="uuid-3",
            error_type="step",
            error_message="boom",
            step_index=1,
            step_name="prompt",
        )
    )
    return log


@pytest.fixture
def app(event_log: EventLog) -> FastAPI:
    """Create test FastAPI app."""
    app = FastAPI()
    app.include_router(router)
    app.dependency_overrides[get_event_log] = lambda: event_log
    return app


@pytest.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient]:
    """Create async test client."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client


class TestListEvents:
    """Tests for GET /events."""

    @pytest.mark.asyncio
    async def test_events(self, client: AsyncClient) -> None:
        """Test events are returned oldest first with their data."""
        response = await client.get("/events")

        assert response.status_code == 200
        first, second = response.json()
        assert first["type"] == "RunScheduled"
        assert first["data"]["automation_uuid"] == "uuid-3"
        assert second["type"] == "AutomationFailed"
        assert second["data"]["step_name"] == "prompt"
        assert "timestamp" not in second["data"]

    @pytest.mark.asyncio
    async def test_limit(self, client: AsyncClient) -> None:
        """Test the limit keeps the newest events."""
        response = await client.get("/events", params={"limit": 1})

        assert [event["type"] for event in response.json()] == ["AutomationFailed"]

    @pytest.mark.asyncio
    async def test_limit_validated(self, client: AsyncClient) -> None:
        """Test out of range limits are rejected."""
        response = await client.get("/events", params={"limit": 0})
        assert response.status_code == 422
