"""Automation pipeline executor."""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import structlog

from knapsack.application.errors import (
    AuthRequiredError,
    AutomationError,
    AutomationNotReadyError,
    EngineError,
    StepExecutionError,
)
from knapsack.application.ports.backend import Backend
from knapsack.application.ports.llm import CompletionRequest
from knapsack.application.ports.message_bus import MessageBus
from knapsack.application.ports.web_search import WebSearch
from knapsack.application.steps.base import TRIGGER, USER_EMAIL, StepContext
from knapsack.config import Settings, get_settings
from knapsack.domain.enums import AutomationTrigger, ConnectionKey
from knapsack.domain.events import (
    AuthRequired,
    AutomationCompleted,
    AutomationFailed,
    AutomationStarted,
)
from knapsack.domain.models import AdditionalDocument, Automation, AutomationRun, FeedItem

from .llm_queue import LLMQueue, LLMRequest, maybe_await

logger = structlog.get_logger()

FAILED_TO_RUN = "Failed to run automation"
STEPS_NOT_LOADED = "Automation steps did not load, please try again"


@dataclass(slots=True)
class RunResult:
    """A finished automation answer, ready to be recorded."""

    automation: Automation
    user_email: str
    prompt: str
    prompt_facade: str | None
    response: str
    documents: list[int]
    run: AutomationRun | None = None
    feed_item: FeedItem | None = None
    executed_at: datetime | None = None


SuccessHandler = Callable[[RunResult], Awaitable[None]]
ErrorHandler = Callable[[Exception], Any]
PreviewHandler = Callable[[str, list[int]], Any]


@dataclass(slots=True)
class RunHelpers:
    """Services bound to one automation run, handed to every step."""

    executor: "AutomationExecutor"
    automation: Automation
    user_email: str | None
    trigger: AutomationTrigger = AutomationTrigger.CLICK
    run: AutomationRun | None = None
    feed_item: FeedItem | None = None
    on_success: SuccessHandler | None = None
    on_error: ErrorHandler | None = None
    on_preview: PreviewHandler | None = None
    requests: list[CompletionRequest] = field(default_factory=list)

    @property
    def backend(self) -> Backend:
        """Backend used for document and mail lookups."""
        return self.executor.backend

    @property
    def web_search(self) -> WebSearch:
        """Web search provider."""
        return self.executor.web_search

    def now(self) -> datetime:
        """Current time in the user's timezone."""
        return self.executor.now()

    async def wait_until_ready(self, user_email: str) -> None:
        """Poll the backend until the automation can start.

        Raises:
            AutomationNotReadyError: If every attempt reported not ready.

        """
        settings = self.executor.settings
        for attempt in range(settings.automation_ready_attempts):
            try:
                if await self.backend.get_automation_start_status(self.automation.uuid, user_email):
                    return
            except EngineError as e:
                logger.warning("Readiness check failed", automation=self.automation.uuid, attempt=attempt, error=str(e))
            await asyncio.sleep(settings.automation_ready_interval)
        raise AutomationNotReadyError

    async def run_chatbot(
        self,
        *,
        prompt: str,
        documents: list[int],
        additional_documents: list[AdditionalDocument] | None = None,
        prompt_facade: str | None = None,
        semantic_search_query: str | None = None,
    ) -> None:
        """Queue the automation's LLM request.

        Raises:
            AuthRequiredError: If nobody is signed in.

        """
        if not self.user_email:
            raise AuthRequiredError

        settings = self.executor.settings
        completion = CompletionRequest(
            prompt=prompt,
            documents=documents,
            additional_documents=additional_documents or [],
            semantic_search_query=semantic_search_query or prompt_facade or prompt,
            user_email=self.user_email,
            user_name=settings.user_name,
            thread_id=self.run.thread_id if self.run else None,
            is_local=settings.llm_is_local,
        )
        self.requests.append(completion)
        user_email = self.user_email

        async def finish(text: str) -> None:
            if not text:
                await self.executor.handle_failure(self.automation, AutomationError(FAILED_TO_RUN), self.on_error)
                return
            if self.on_preview is not None:
                await maybe_await(self.on_preview(text, documents))
                return
            try:
                if self.on_success is not None:
                    await self.on_success(
                        RunResult(
                            automation=self.automation,
                            user_email=user_email,
                            prompt=prompt,
                            prompt_facade=prompt_facade,
                            response=text,
                            documents=documents,
                            run=self.run,
                            feed_item=self.feed_item,
                            executed_at=self.executor.now(),
                        )
                    )
                await self.executor.finished(self.automation, self.trigger)
            except EngineError as e:
                await self.executor.handle_failure(self.automation, e, self.on_error)

        async def fail(error: Exception) -> None:
            await self.executor.handle_failure(self.automation, error, self.on_error)

        await self.executor.llm_queue.enqueue(LLMRequest(completion=completion, on_finish=finish, on_error=fail))


class AutomationExecutor:
    """Runs automation pipelines.

    Steps run strictly in order, each receiving the previous step's context.
    The first failing step aborts the run; the executor never retries.
    """

    def __init__(
        self,
        backend: Backend,
        web_search: WebSearch,
        llm_queue: LLMQueue,
        bus: MessageBus | None = None,
        settings: Settings | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the executor.

        Args:
            backend: Backend adapter.
            web_search: Web search adapter.
            llm_queue: Queue that serializes completions.
            bus: Optional bus for run events.
            settings: Settings, loaded from the environment when omitted.
            clock: Returns the current local time; defaults to the settings timezone.

        """
        self.backend = backend
        self.web_search = web_search
        self.llm_queue = llm_queue
        self.settings = settings or get_settings()
        self._bus = bus
        self._clock = clock or self.settings.now
        self._after_run: Callable[[], Awaitable[None]] | None = None

    def now(self) -> datetime:
        """Current time in the user's timezone."""
        return self._clock()

    def set_after_run(self, callback: Callable[[], Awaitable[None]] | None) -> None:
        """Set the hook called after an answer was recorded, used to resync automations."""
        self._after_run = callback

    async def _publish(self, event: Any) -> None:
        if self._bus is not None:
            await self._bus.publish(event)

    async def execute(
        self,
        automation: Automation,
        trigger: AutomationTrigger,
        context: StepContext,
        *,
        helpers: RunHelpers | None = None,
    ) -> StepContext:
        """Run every step of the automation in order.

        Args:
            automation: Automation to run.
            trigger: What started the run.
            context: Initial context.
            helpers: Run-scoped services; built from the context when omitted.

        Returns:
            The context returned by the last step.

        Raises:
            StepExecutionError: If a step fails. Later steps are not run.

        """
        if helpers is None:
            helpers = RunHelpers(
                executor=self,
                automation=automation,
                user_email=context.get(USER_EMAIL),
                trigger=trigger,
            )

        log = logger.bind(automation=automation.uuid, trigger=trigger.value)
        current = {**context, TRIGGER: trigger}
        for index, step in enumerate(automation.steps):
            log.debug("Running step", step=step.name.value, index=index)
            try:
                current = await step.execute(current, helpers)
            except Exception as e:
                log.warning("Step failed", step=step.name.value, index=index, error=str(e))
                raise StepExecutionError(index, step.name.value, e) from e
        return current

    async def check_auth(self, user_email: str | None) -> bool:
        """Check that the user is signed in with Google."""
        if not user_email:
            return False
        try:
            await self.backend.get_access_token(user_email, ConnectionKey.GOOGLE_PROFILE)
        except EngineError as e:
            logger.info("User is not signed in", error=str(e))
            return False
        return True

    async def run_automation(
        self,
        automation: Automation,
        trigger: AutomationTrigger,
        *,
        run: AutomationRun | None = None,
        feed_item: FeedItem | None = None,
        on_success: SuccessHandler | None = None,
        on_error: ErrorHandler | None = None,
    ) -> bool:
        """Run an automation end to end.

        Args:
            automation: Automation to run.
            trigger: What started the run.
            run: Scheduled run being executed, if any. Its params seed the context.
            feed_item: Feed item the answer belongs to, if any.
            on_success: Called with the answer once the LLM finished.
            on_error: Called with the failure, if the run fails.

        Returns:
            True if the user must sign in first, False otherwise.

        Raises:
            AutomationError: If the automation has no steps.

        """
        log = logger.bind(automation=automation.uuid, trigger=trigger.value)
        user_email = self.settings.user_email

        if not await self.check_auth(user_email):
            await self._publish(AuthRequired(automation_uuid=automation.uuid))
            return True

        if not automation.steps:
            raise AutomationError(STEPS_NOT_LOADED)

        if trigger in (AutomationTrigger.CADENCE, AutomationTrigger.STARTUP) and not automation.is_active:
            log.debug("Skipping inactive automation")
            return False

        try:
            params = run.params() if run is not None else {}
        except ValueError as e:
            msg = f"Invalid run params: {e}"
            await self.handle_failure(automation, AutomationError(msg), on_error)
            return False

        context: StepContext = {USER_EMAIL: user_email, TRIGGER: trigger, **params}
        helpers = RunHelpers(
            executor=self,
            automation=automation,
            user_email=user_email,
            trigger=trigger,
            run=run,
            feed_item=feed_item,
            on_success=on_success,
            on_error=on_error,
        )

        log.info("Running automation", steps=len(automation.steps))
        await self._publish(AutomationStarted(automation_uuid=automation.uuid, trigger=trigger.value))
        try:
            await self.execute(automation, trigger, context, helpers=helpers)
        except EngineError as e:
            await self.handle_failure(automation, e, on_error)
        return False

    async def preview_automation(
        self,
        automation: Automation,
        on_finish: PreviewHandler,
        on_error: ErrorHandler | None = None,
    ) -> None:
        """Run an automation without recording its answer.

        Args:
            automation: Automation to preview.
            on_finish: Called with the full answer and the grounding document ids.
            on_error: Called with the failure, if the preview fails.

        """
        user_email = self.settings.user_email
        context: StepContext = {USER_EMAIL: user_email, TRIGGER: AutomationTrigger.CLICK}
        helpers = RunHelpers(
            executor=self,
            automation=automation,
            user_email=user_email,
            on_error=on_error,
            on_preview=on_finish,
        )
        try:
            await self.execute(automation, AutomationTrigger.CLICK, context, helpers=helpers)
        except EngineError as e:
            await self.handle_failure(automation, e, on_error)

    async def finished(self, automation: Automation, trigger: AutomationTrigger) -> None:
        """Report a recorded answer and resync automations."""
        await self._publish(AutomationCompleted(automation_uuid=automation.uuid, trigger=trigger.value))
        if self._after_run is not None:
            await self._after_run()

    async def handle_failure(
        self,
        automation: Automation,
        error: Exception,
        on_error: ErrorHandler | None = None,
    ) -> None:
        """Report a failed run and abort any completion it started."""
        logger.error(
            "Automation failed",
            automation=automation.uuid,
            error=str(error),
            error_type=type(error).__name__,
        )
        if on_error is not None:
            await maybe_await(on_error(error))

        try:
            await self.llm_queue.stop_execution()
        except EngineError as e:
            logger.warning("Failed to stop LLM execution", error=str(e))

        await self._publish(
            AutomationFailed(
                automation_uuid=automation.uuid,
                error_type=error.error_type if isinstance(error, EngineError) else "unknown",
                error_message=str(error),
                step_index=error.step_index if isinstance(error, StepExecutionError) else None,
                step_name=error.step_name if isinstance(error, StepExecutionError) else None,
            )
        )
