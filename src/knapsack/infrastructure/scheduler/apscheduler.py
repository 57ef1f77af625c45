"""APScheduler wrapper driving the engine's periodic ticks."""

from collections.abc import Callable, Coroutine
from typing import Any

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from knapsack.application.services.scheduler import SchedulerService
from knapsack.config import Settings, get_settings

logger = structlog.get_logger()

MINUTE_TICK_JOB = "minute_tick"
RESYNC_TICK_JOB = "resync_tick"

TickFunc = Callable[[], Coroutine[Any, Any, None]]


class EngineScheduler:
    """Runs the minute tick and the resync tick on an asyncio scheduler.

    Each job allows a single running instance and coalesces missed runs, so
    a slow tick delays the next one instead of stacking up.
    """

    def __init__(self, service: SchedulerService, settings: Settings | None = None) -> None:
        """Initialize the wrapper.

        Args:
            service: Scheduler service whose ticks are run.
            settings: Settings, loaded from the environment when omitted.

        """
        self._service = service
        self._settings = settings or get_settings()
        self._scheduler: AsyncIOScheduler | None = None

    async def _minute_tick(self) -> None:
        try:
            await self._service.minute_tick()
        except Exception as e:
            logger.exception("Minute tick failed", error=str(e))

    async def _resync_tick(self) -> None:
        try:
            await self._service.resync_tick()
        except Exception as e:
            logger.exception("Resync tick failed", error=str(e))

    def _add_job(self, func: TickFunc, seconds: int, job_id: str) -> None:
        if self._scheduler is None:
            msg = "Scheduler not started"
            raise RuntimeError(msg)
        self._scheduler.add_job(
            func,
            IntervalTrigger(seconds=seconds),
            id=job_id,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        logger.info("Tick scheduled", job=job_id, seconds=seconds)

    async def start(self) -> None:
        """Start the scheduler with both tick jobs."""
        if self._scheduler is not None:
            logger.warning("Scheduler already started")
            return

        self._scheduler = AsyncIOScheduler(timezone=self._settings.tzinfo)
        self._add_job(self._minute_tick, self._settings.cadence_tick_seconds, MINUTE_TICK_JOB)
        self._add_job(self._resync_tick, self._settings.resync_interval_seconds, RESYNC_TICK_JOB)
        self._scheduler.start()
        logger.info("Scheduler started")

    async def stop(self) -> None:
        """Stop the scheduler."""
        if self._scheduler is None:
            return
        self._scheduler.shutdown(wait=False)
        self._scheduler = None
        logger.info("Scheduler stopped")

    def job_ids(self) -> list[str]:
        """Ids of the scheduled jobs.

        Raises:
            RuntimeError: If the scheduler is not started.

        """
        if self._scheduler is None:
            msg = "Scheduler not started"
            raise RuntimeError(msg)
        return [job.id for job in self._scheduler.get_jobs()]

    @property
    def is_running(self) -> bool:
        """Check if the scheduler is running."""
        return self._scheduler is not None
