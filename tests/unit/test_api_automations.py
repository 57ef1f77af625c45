"""Tests for Automations API routes."""

from collections.abc import AsyncGenerator, Callable
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from knapsack.api.deps import get_engine
from knapsack.api.routes.automations import router
from knapsack.application.errors import AutomationError, HttpError
from knapsack.application.steps.search import PromptStep, SemanticSearchStep
from knapsack.domain.enums import CadenceType, DataSource, DayOfWeek
from knapsack.domain.models import Automation, Cadence


@pytest.fixture
def sample_automation() -> Automation:
    """Return a weekly search automation."""
    return Automation(
        id=3,
        name="Weekly recap",
        description="Recap of the week",
        steps=[SemanticSearchStep([DataSource.GMAIL, DataSource.WEB], "recap"), PromptStep("Summarize")],
        cadences=[Cadence(cadence_type=CadenceType.WEEKLY, day_of_week=DayOfWeek.FRIDAY, time="17:00")],
        is_active=True,
    )


@pytest.fixture
def mock_engine(sample_automation: Automation) -> MagicMock:
    """Return mock engine holding one automation."""
    engine = MagicMock()
    catalogue = {sample_automation.uuid: sample_automation}
    engine.automations.automations = catalogue
    engine.automations.get.side_effect = catalogue.get
    engine.automations.update = AsyncMock()
    engine.automations.delete = AsyncMock()
    engine.run_automation = AsyncMock(return_value=False)
    engine.preview_automation = AsyncMock()
    engine.settings.llm_timeout = 1
    return engine


@pytest.fixture
def app(mock_engine: MagicMock) -> FastAPI:
    """Create test FastAPI app."""
    app = FastAPI()
    app.include_router(router)
    app.dependency_overrides[get_engine] = lambda: mock_engine
    return app


@pytest.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient]:
    """Create async test client."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client


class TestListAutomations:
    """Tests for GET /automations."""

    @pytest.mark.asyncio
    async def test_list(self, client: AsyncClient, sample_automation: Automation) -> None:
        """Test automations are listed with steps, sources and cadences."""
        response = await client.get("/automations")

        assert response.status_code == 200
        [data] = response.json()
        assert data["uuid"] == sample_automation.uuid
        assert data["steps"] == ["semantic-search", "prompt"]
        assert data["data_sources"] == ["gmail", "web"]
        assert data["cadences"] == [{"cadence_type": "weekly", "day_of_week": "Friday", "time": "17:00"}]
        assert data["runs"] == 0

    @pytest.mark.asyncio
    async def test_get_unknown(self, client: AsyncClient) -> None:
        """Test an unknown uuid is a 404."""
        response = await client.get("/automations/missing")
        assert response.status_code == 404


class TestUpdateAutomation:
    """Tests for activation and deletion."""

    @pytest.mark.asyncio
    async def test_deactivate(
        self,
        client: AsyncClient,
        mock_engine: MagicMock,
        sample_automation: Automation,
    ) -> None:
        """Test deactivation is saved."""
        response = await client.put(f"/automations/{sample_automation.uuid}/active", json={"is_active": False})

        assert response.status_code == 200
        assert response.json()["is_active"] is False
        mock_engine.automations.update.assert_awaited_once_with(sample_automation)

    @pytest.mark.asyncio
    async def test_backend_failure(
        self,
        client: AsyncClient,
        mock_engine: MagicMock,
        sample_automation: Automation,
    ) -> None:
        """Test backend failures surface as a bad gateway."""
        mock_engine.automations.delete.side_effect = HttpError(500, "down")

        response = await client.delete(f"/automations/{sample_automation.uuid}")

        assert response.status_code == 502
        assert response.json()["detail"] == "down"

    @pytest.mark.asyncio
    async def test_delete(self, client: AsyncClient, sample_automation: Automation) -> None:
        """Test deletion returns no content."""
        response = await client.delete(f"/automations/{sample_automation.uuid}")
        assert response.status_code == 204


class TestRunAutomation:
    """Tests for POST /automations/{uuid}/run."""

    @pytest.mark.asyncio
    async def test_run(self, client: AsyncClient, mock_engine: MagicMock, sample_automation: Automation) -> None:
        """Test a run is started for a feed item."""
        response = await client.post(f"/automations/{sample_automation.uuid}/run", json={"feed_item_id": 4})

        assert response.status_code == 202
        assert response.json() == {"uuid": sample_automation.uuid, "needs_auth": False}
        mock_engine.run_automation.assert_awaited_once_with(sample_automation.uuid, 4)

    @pytest.mark.asyncio
    async def test_run_without_body(
        self,
        client: AsyncClient,
        mock_engine: MagicMock,
        sample_automation: Automation,
    ) -> None:
        """Test a run without a feed item."""
        mock_engine.run_automation.return_value = True

        response = await client.post(f"/automations/{sample_automation.uuid}/run")

        assert response.json()["needs_auth"] is True
        mock_engine.run_automation.assert_awaited_once_with(sample_automation.uuid, None)

    @pytest.mark.asyncio
    async def test_run_conflict(
        self,
        client: AsyncClient,
        mock_engine: MagicMock,
        sample_automation: Automation,
    ) -> None:
        """Test an automation that cannot run is a conflict."""
        mock_engine.run_automation.side_effect = AutomationError("Automation steps did not load, please try again")

        response = await client.post(f"/automations/{sample_automation.uuid}/run")

        assert response.status_code == 409


class TestPreviewAutomation:
    """Tests for POST /automations/{uuid}/preview."""

    @staticmethod
    def _answer(**kwargs: Any) -> Callable[..., Any]:
        async def preview(_uuid: str, on_finish: Callable[..., None], on_error: Callable[[Exception], None]) -> None:
            if "error" in kwargs:
                on_error(kwargs["error"])
            else:
                on_finish(kwargs["message"], kwargs["documents"])

        return preview

    @pytest.mark.asyncio
    async def test_preview(
        self,
        client: AsyncClient,
        mock_engine: MagicMock,
        sample_automation: Automation,
    ) -> None:
        """Test the preview answer is returned."""
        mock_engine.preview_automation.side_effect = self._answer(message="Your week", documents=[7])

        response = await client.post(f"/automations/{sample_automation.uuid}/preview")

        assert response.status_code == 200
        assert response.json() == {"uuid": sample_automation.uuid, "message": "Your week", "documents": [7]}

    @pytest.mark.asyncio
    async def test_preview_failure(
        self,
        client: AsyncClient,
        mock_engine: MagicMock,
        sample_automation: Automation,
    ) -> None:
        """Test a failed preview is a bad gateway."""
        mock_engine.preview_automation.side_effect = self._answer(error=HttpError(503, "LLM down"))

        response = await client.post(f"/automations/{sample_automation.uuid}/preview")

        assert response.status_code == 502
        assert response.json()["detail"] == "LLM down"

    @pytest.mark.asyncio
    async def test_preview_timeout(
        self,
        client: AsyncClient,
        mock_engine: MagicMock,
        sample_automation: Automation,
    ) -> None:
        """Test a preview with no answer times out."""
        mock_engine.settings.llm_timeout = 0.01

        response = await client.post(f"/automations/{sample_automation.uuid}/preview")

        assert response.status_code == 504
