"""Cadence scheduling and pending run dispatch."""

import asyncio
from collections.abc import Callable
from datetime import datetime

import structlog

from knapsack.application.errors import EngineError
from knapsack.application.ports.message_bus import MessageBus
from knapsack.config import Settings, get_settings
from knapsack.domain.enums import AutomationTrigger
from knapsack.domain.events import RunScheduled
from knapsack.domain.models import Automation, AutomationRun, FeedItem

from .automation_service import AutomationService
from .connections import ConnectionRegistry
from .executor import AutomationExecutor
from .feed import FeedStore
from .notifications import MeetingNotifier

logger = structlog.get_logger()


def _run_key(run: AutomationRun) -> str:
    return f"id:{run.id}" if run.id is not None else f"local:{run.local_id}"


class SchedulerService:
    """Decides which runs to create and dispatches the ones that are due.

    Ticks never interleave: the minute tick and the resync tick share one
    lock. A run's ``execution_date`` is set before it is dispatched and its
    key is remembered, so neither a later scan nor a reloaded copy of the
    run dispatches it again.
    """

    def __init__(
        self,
        automations: AutomationService,
        executor: AutomationExecutor,
        feed: FeedStore,
        connections: ConnectionRegistry,
        notifier: MeetingNotifier | None = None,
        bus: MessageBus | None = None,
        settings: Settings | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the scheduler service.

        Args:
            automations: Automation catalogue.
            executor: Pipeline executor.
            feed: Feed store; its items may carry runs.
            connections: Connection registry, resynced every resync tick.
            notifier: Optional meeting notifier, ticked every minute.
            bus: Optional bus for scheduling events.
            settings: Settings, loaded from the environment when omitted.
            clock: Returns the current local time.

        """
        self._automations = automations
        self._executor = executor
        self._feed = feed
        self._connections = connections
        self._notifier = notifier
        self._bus = bus
        self._settings = settings or get_settings()
        self._clock = clock or self._settings.now
        self._fired: dict[str, datetime] = {}
        self._dispatched: dict[str, AutomationRun] = {}
        self._lock = asyncio.Lock()
        self._tasks: set[asyncio.Task[None]] = set()

    async def minute_tick(self, now: datetime | None = None) -> None:
        """Notify about meetings, create cadence runs and dispatch due runs."""
        async with self._lock:
            now = now or self._clock()
            if self._notifier is not None:
                await self._notifier.tick(now)
            await self.create_cadence_runs(now)
            await self.scan_runs(now)

    async def resync_tick(self, now: datetime | None = None) -> None:
        """Resync connections, meetings and automations, then dispatch due runs."""
        async with self._lock:
            now = now or self._clock()
            await self._connections.sync_connections()
            if self._notifier is not None:
                await self._notifier.resync()
            await self._automations.schedule_runs(self._settings.user_email)
            await self.scan_runs(now)

    async def create_cadence_runs(self, now: datetime) -> list[AutomationRun]:
        """Create one run for every active automation whose cadence is due.

        An automation gets at most one run per minute, however many ticks
        land in that minute.

        Returns:
            The runs created.

        """
        minute = now.replace(second=0, microsecond=0)
        created: list[AutomationRun] = []
        for automation in self._automations.active():
            if self._fired.get(automation.uuid) == minute:
                continue
            if automation.find_cadence(minute) is None:
                continue

            run = AutomationRun(automation_uuid=automation.uuid, schedule_date=minute)
            automation.create_run(run)
            self._fired[automation.uuid] = minute
            created.append(run)

            logger.info("Run scheduled", automation=automation.uuid, schedule_date=minute.isoformat())
            if self._bus is not None:
                await self._bus.publish(RunScheduled(automation_uuid=automation.uuid, schedule_date=minute))
        return created

    def _known_runs(self) -> list[AutomationRun]:
        runs = [item.run for item in self._feed.items() if item.run is not None]
        runs.extend(run for automation in self._automations.automations.values() for run in automation.runs)
        return runs

    def _prune_dispatched(self) -> None:
        copies: dict[str, list[AutomationRun]] = {}
        for run in self._known_runs():
            copies.setdefault(_run_key(run), []).append(run)

        for key, dispatched in list(self._dispatched.items()):
            known = copies.get(key, [])
            if not known or any(run is not dispatched and run.execution_date is not None for run in known):
                del self._dispatched[key]

    def _due_runs(self, now: datetime) -> list[tuple[Automation, AutomationRun, FeedItem | None]]:
        due: dict[str, tuple[Automation, AutomationRun, FeedItem | None]] = {}
        for item in self._feed.pending_runs(now):
            run = item.run
            if run is None or _run_key(run) in self._dispatched:
                continue
            automation = self._automations.get(run.automation_uuid)
            if automation is not None and automation.is_active:
                due[_run_key(run)] = (automation, run, item)

        for automation in self._automations.active():
            for run in automation.runs:
                if run.is_due(now) and _run_key(run) not in self._dispatched:
                    due.setdefault(_run_key(run), (automation, run, None))
        return list(due.values())

    async def scan_runs(self, now: datetime) -> int:
        """Dispatch every due run exactly once.

        Reloaded copies of a dispatched run are skipped until the backend
        reports an execution time for it.

        Returns:
            Number of runs dispatched.

        """
        self._prune_dispatched()
        due = self._due_runs(now)
        for automation, run, item in due:
            run.execution_date = now
            self._dispatched[_run_key(run)] = run
            task = asyncio.create_task(self._dispatch(automation, run, item))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
        return len(due)

    async def _dispatch(self, automation: Automation, run: AutomationRun, item: FeedItem | None) -> None:
        log = logger.bind(automation=automation.uuid, run=_run_key(run))
        log.info("Dispatching run")
        if item is not None:
            await self._feed.set_loading(item.id, is_loading=True)

        needs_auth = False
        failed = False
        try:
            needs_auth = await self._executor.run_automation(
                automation,
                AutomationTrigger.CADENCE,
                run=run,
                feed_item=item,
                on_success=self._feed.success_handler,
                on_error=self._feed.error_handler_for(item.id if item is not None else None),
            )
        except EngineError as e:
            failed = True
            log.warning("Run failed", error=str(e))

        if item is not None and (needs_auth or failed):
            await self._feed.set_loading(item.id, is_loading=False)

    async def wait_dispatched(self) -> None:
        """Wait for every dispatched run to return from the executor."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
