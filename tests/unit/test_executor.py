"""Tests for the automation executor."""

import asyncio
from collections.abc import AsyncIterator, Callable
from datetime import datetime
from typing import Any
from unittest.mock import AsyncMock

import pytest

from knapsack.application.errors import AuthRequiredError, AutomationError, HttpError, StepExecutionError
from knapsack.application.services.executor import (
    FAILED_TO_RUN,
    STEPS_NOT_LOADED,
    AutomationExecutor,
    RunResult,
)
from knapsack.application.services.llm_queue import LLMQueue
from knapsack.application.steps.base import Step, StepContext, StepHelpers
from knapsack.application.steps.search import PromptStep
from knapsack.config import Settings
from knapsack.domain.enums import AutomationTrigger, StepName
from knapsack.domain.events import AuthRequired, AutomationCompleted, AutomationFailed, AutomationStarted
from knapsack.domain.models import Automation, AutomationRun


class RecordingStep(Step):
    """Step that records the context it received."""

    name = StepName.ABOUT_ME

    def __init__(self, key: str, log: list[StepContext]) -> None:
        self.key = key
        self.log = log

    def args(self) -> dict[str, Any]:
        return {"key": self.key}

    async def execute(self, context: StepContext, helpers: StepHelpers) -> StepContext:
        self.log.append(context)
        return {**context, self.key: True}


class FailingStep(Step):
    """Step that always raises."""

    name = StepName.LEAD_SCORING

    async def execute(self, context: StepContext, helpers: StepHelpers) -> StepContext:
        msg = "boom"
        raise RuntimeError(msg)


@pytest.fixture
async def llm_queue(completion_client: Any) -> AsyncIterator[LLMQueue]:
    """Return a running LLM queue."""
    queue = LLMQueue(completion_client)
    await queue.start()
    yield queue
    await queue.stop()


@pytest.fixture
def executor(
    backend: AsyncMock,
    web_search: AsyncMock,
    llm_queue: LLMQueue,
    bus: AsyncMock,
    settings: Settings,
    clock: Callable[[], datetime],
) -> AutomationExecutor:
    """Return an executor over mocked adapters."""
    return AutomationExecutor(backend, web_search, llm_queue, bus, settings, clock)


class TestExecute:
    """Tests for step pipeline execution."""

    @pytest.mark.asyncio
    async def test_steps_run_in_order_with_threaded_context(self, executor: AutomationExecutor) -> None:
        """Test each step sees the previous step's output."""
        log: list[StepContext] = []
        automation = Automation(name="a", steps=[RecordingStep("first", log), RecordingStep("second", log)])

        result = await executor.execute(automation, AutomationTrigger.CLICK, {"seed": 1})

        assert "first" not in log[0]
        assert log[1]["first"] is True
        assert result == {"seed": 1, "trigger": AutomationTrigger.CLICK, "first": True, "second": True}

    @pytest.mark.asyncio
    async def test_failing_step_stops_pipeline(self, executor: AutomationExecutor) -> None:
        """Test later steps do not run after a failure."""
        log: list[StepContext] = []
        automation = Automation(
            name="a",
            steps=[RecordingStep("first", log), FailingStep(), RecordingStep("third", log)],
        )

        with pytest.raises(StepExecutionError) as exc_info:
            await executor.execute(automation, AutomationTrigger.CLICK, {})

        assert exc_info.value.step_index == 1
        assert exc_info.value.step_name == "lead-scoring"
        assert len(log) == 1


class TestRunAutomation:
    """Tests for AutomationExecutor.run_automation."""

    @pytest.mark.asyncio
    async def test_records_answer_and_reports_completion(
        self,
        executor: AutomationExecutor,
        completion_client: Any,
        published: Callable[[type], list],
    ) -> None:
        """Test a prompt automation hands its answer to on_success."""
        completion_client.scripts = [["Good ", "morning"]]
        results: asyncio.Queue[RunResult] = asyncio.Queue()
        automation = Automation(name="Briefing", steps=[PromptStep("Brief me")])

        async def on_success(result: RunResult) -> None:
            await results.put(result)

        needs_auth = await executor.run_automation(automation, AutomationTrigger.CLICK, on_success=on_success)
        result = await asyncio.wait_for(results.get(), timeout=2)

        assert needs_auth is False
        assert result.response == "Good morning"
        assert result.prompt == "Brief me"
        assert result.user_email == "me@example.com"
        assert completion_client.requests[0].user_email == "me@example.com"
        assert len(published(AutomationStarted)) == 1
        await asyncio.sleep(0)
        assert len(published(AutomationCompleted)) == 1

    @pytest.mark.asyncio
    async def test_run_params_seed_context(self, executor: AutomationExecutor) -> None:
        """Test a scheduled run's params reach the first step."""
        log: list[StepContext] = []
        automation = Automation(name="a", steps=[RecordingStep("x", log)])
        run = AutomationRun(automation_uuid=automation.uuid, run_params='{"event_id": "evt-9"}')

        await executor.run_automation(automation, AutomationTrigger.CLICK, run=run)

        assert log[0]["event_id"] == "evt-9"
        assert log[0]["user_email"] == "me@example.com"

    @pytest.mark.asyncio
    async def test_not_signed_in(
        self,
        executor: AutomationExecutor,
        backend: AsyncMock,
        published: Callable[[type], list],
    ) -> None:
        """Test a missing Google token asks the user to sign in."""
        backend.get_access_token.side_effect = AuthRequiredError()
        automation = Automation(name="a", steps=[PromptStep("x")])

        assert await executor.run_automation(automation, AutomationTrigger.CLICK) is True
        assert len(published(AuthRequired)) == 1
        assert len(published(AutomationStarted)) == 0

    @pytest.mark.asyncio
    async def test_no_steps(self, executor: AutomationExecutor) -> None:
        """Test an automation without steps cannot run."""
        with pytest.raises(AutomationError, match=STEPS_NOT_LOADED):
            await executor.run_automation(Automation(name="a"), AutomationTrigger.CLICK)

    @pytest.mark.asyncio
    async def test_inactive_skipped_for_cadence(self, executor: AutomationExecutor) -> None:
        """Test cadence triggers ignore inactive automations."""
        log: list[StepContext] = []
        automation = Automation(name="a", steps=[RecordingStep("x", log)], is_active=False)

        await executor.run_automation(automation, AutomationTrigger.CADENCE)

        assert log == []

    @pytest.mark.asyncio
    async def test_step_failure_reported(
        self,
        executor: AutomationExecutor,
        completion_client: Any,
        published: Callable[[type], list],
    ) -> None:
        """Test a failing step calls on_error and publishes the failure."""
        errors: list[Exception] = []
        automation = Automation(name="a", steps=[FailingStep()])

        await executor.run_automation(automation, AutomationTrigger.CLICK, on_error=errors.append)

        assert isinstance(errors[0], StepExecutionError)
        failed = published(AutomationFailed)
        assert failed[0].step_index == 0
        assert failed[0].step_name == "lead-scoring"
        assert completion_client.stopped == 1

    @pytest.mark.asyncio
    async def test_empty_answer_is_failure(self, executor: AutomationExecutor, completion_client: Any) -> None:
        """Test an empty completion fails the run."""
        completion_client.scripts = [[]]
        errors: asyncio.Queue[Exception] = asyncio.Queue()
        succeeded = AsyncMock()
        automation = Automation(name="a", steps=[PromptStep("x")])

        await executor.run_automation(
            automation,
            AutomationTrigger.CLICK,
            on_success=succeeded,
            on_error=errors.put_nowait,
        )
        error = await asyncio.wait_for(errors.get(), timeout=2)

        assert isinstance(error, AutomationError)
        assert str(error) == FAILED_TO_RUN
        succeeded.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_recording_failure_reported(
        self,
        executor: AutomationExecutor,
        completion_client: Any,
        published: Callable[[type], list],
    ) -> None:
        """Test an answer that cannot be recorded fails the run instead of completing it."""
        completion_client.scripts = [["answer"]]
        errors: asyncio.Queue[Exception] = asyncio.Queue()
        automation = Automation(name="a", steps=[PromptStep("x")])
        on_success = AsyncMock(side_effect=HttpError(500, "insert failed"))

        await executor.run_automation(
            automation,
            AutomationTrigger.CLICK,
            on_success=on_success,
            on_error=errors.put_nowait,
        )
        error = await asyncio.wait_for(errors.get(), timeout=2)
        await asyncio.sleep(0)

        assert isinstance(error, HttpError)
        assert error.status == 500
        assert len(published(AutomationFailed)) == 1
        assert published(AutomationCompleted) == []

    @pytest.mark.asyncio
    async def test_malformed_run_params_reported(
        self,
        executor: AutomationExecutor,
        published: Callable[[type], list],
    ) -> None:
        """Test run params that are not JSON fail the run before any step."""
        log: list[StepContext] = []
        errors: list[Exception] = []
        automation = Automation(name="a", steps=[RecordingStep("x", log)])
        run = AutomationRun(automation_uuid=automation.uuid, run_params="{not json")

        needs_auth = await executor.run_automation(
            automation, AutomationTrigger.CLICK, run=run, on_error=errors.append
        )

        assert needs_auth is False
        assert log == []
        assert isinstance(errors[0], AutomationError)
        assert "Invalid run params" in str(errors[0])
        assert published(AutomationFailed)[0].error_type == "automation"
        assert published(AutomationStarted) == []

    @pytest.mark.asyncio
    async def test_after_run_hook(self, executor: AutomationExecutor, completion_client: Any) -> None:
        """Test the resync hook runs after an answer."""
        done = asyncio.Event()

        async def after_run() -> None:
            done.set()

        executor.set_after_run(after_run)
        await executor.run_automation(Automation(name="a", steps=[PromptStep("x")]), AutomationTrigger.CLICK)

        await asyncio.wait_for(done.wait(), timeout=2)


class TestPreviewAutomation:
    """Tests for AutomationExecutor.preview_automation."""

    @pytest.mark.asyncio
    async def test_preview_returns_text_and_documents(
        self, executor: AutomationExecutor, completion_client: Any, backend: AsyncMock
    ) -> None:
        """Test a preview answer is passed to on_finish and not recorded."""
        completion_client.scripts = [["preview"]]
        previews: asyncio.Queue[tuple[str, list[int]]] = asyncio.Queue()

        await executor.preview_automation(
            Automation(name="a", steps=[PromptStep("x")]),
            lambda text, docs: previews.put_nowait((text, docs)),
        )

        assert await asyncio.wait_for(previews.get(), timeout=2) == ("preview", [])
        backend.insert_automation_run.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_preview_failure(self, executor: AutomationExecutor) -> None:
        """Test preview failures reach on_error."""
        errors: list[Exception] = []
        await executor.preview_automation(Automation(name="a", steps=[FailingStep()]), AsyncMock(), errors.append)
        assert isinstance(errors[0], StepExecutionError)


class TestCheckAuth:
    """Tests for AutomationExecutor.check_auth."""

    @pytest.mark.asyncio
    async def test_without_email(self, executor: AutomationExecutor, backend: AsyncMock) -> None:
        """Test nobody signed in is not authorized."""
        assert await executor.check_auth(None) is False
        backend.get_access_token.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_with_token(self, executor: AutomationExecutor) -> None:
        """Test a profile token means signed in."""
        assert await executor.check_auth("me@example.com") is True
