"""Engine facade wiring every service together."""

from collections.abc import Callable
from datetime import datetime

import structlog

from knapsack.application.errors import AutomationError, EngineError
from knapsack.application.ports.backend import Backend
from knapsack.application.ports.llm import CompletionClient
from knapsack.application.ports.message_bus import MessageBus
from knapsack.application.ports.notifications import NotificationBridge
from knapsack.application.ports.web_search import WebSearch
from knapsack.config import Settings, get_settings
from knapsack.domain.enums import AutomationTrigger, ConnectionKey, ConnectionState
from knapsack.domain.events import SourcesSyncingWarning
from knapsack.domain.models import Automation, FeedItem

from .automation_service import AutomationService
from .connections import ConnectionRegistry
from .email_autopilot import EmailAutopilot
from .executor import AutomationExecutor, ErrorHandler, PreviewHandler
from .feed import Buckets, FeedStore
from .llm_queue import LLMQueue, LLMRequest
from .notifications import MeetingNotifier
from .scheduler import SchedulerService

logger = structlog.get_logger()

SOURCES_SYNCING = "Answers may be incomplete as some sources are still syncing."


class Engine:
    """Automation orchestration engine.

    Owns the lifecycle of every service: ``init()`` starts workers and loads
    state from the backend, ``shutdown()`` stops them.
    """

    def __init__(
        self,
        backend: Backend,
        completion_client: CompletionClient,
        web_search: WebSearch,
        bridge: NotificationBridge,
        bus: MessageBus,
        settings: Settings | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the engine and its services.

        Args:
            backend: Backend adapter.
            completion_client: Streaming completion client.
            web_search: Web search adapter.
            bridge: Native notification bridge.
            bus: Message bus for progress and error events.
            settings: Settings, loaded from the environment when omitted.
            clock: Returns the current local time.

        """
        self.settings = settings or get_settings()
        self.bus = bus
        self.backend = backend
        self.llm_queue = LLMQueue(completion_client, bus)
        self.automations = AutomationService(backend)
        self.executor = AutomationExecutor(backend, web_search, self.llm_queue, bus, self.settings, clock)
        self.executor.set_after_run(self._after_run)
        self.feed = FeedStore(backend, self.settings, clock)
        self.connections = ConnectionRegistry(backend, bus, self.settings, clock)
        self.notifier = MeetingNotifier(backend, bridge, self.settings, clock)
        self.scheduler = SchedulerService(
            self.automations,
            self.executor,
            self.feed,
            self.connections,
            self.notifier,
            bus,
            self.settings,
            clock,
        )
        self.autopilot = EmailAutopilot(backend, self.llm_queue, bus, self.settings, clock)
        self._started = False

    async def _after_run(self) -> None:
        await self.automations.sync()

    async def init(self) -> None:
        """Start workers and load automations, connections, feed and meetings."""
        if self._started:
            logger.warning("Engine already started")
            return

        await self.llm_queue.start()
        await self.autopilot.start()
        self._started = True

        user_email = self.settings.user_email
        if user_email:
            try:
                await self.connections.fetch_connections(user_email)
            except EngineError as e:
                logger.warning("Failed to load connections", error=str(e))
            await self.automations.schedule_runs(user_email)
        else:
            await self.automations.sync()
        try:
            await self.feed.refresh()
        except EngineError as e:
            logger.warning("Failed to load feed", error=str(e))
        await self.notifier.resync()
        logger.info("Engine started", automations=len(self.automations.automations))

    async def shutdown(self) -> None:
        """Stop every worker and background task."""
        if not self._started:
            return
        await self.scheduler.wait_dispatched()
        await self.autopilot.stop()
        await self.llm_queue.stop()
        await self.connections.close()
        self._started = False
        logger.info("Engine stopped")

    @property
    def is_running(self) -> bool:
        """Check if the engine was started."""
        return self._started

    def _require(self, automation_uuid: str) -> Automation:
        automation = self.automations.get(automation_uuid)
        if automation is None:
            msg = f"Automation not found: {automation_uuid}"
            raise AutomationError(msg)
        return automation

    async def run_automation(self, automation_uuid: str, feed_item_id: int | None = None) -> bool:
        """Run an automation on the user's request.

        Args:
            automation_uuid: Automation to run.
            feed_item_id: Feed item the answer belongs to, if any.

        Returns:
            True if the user must sign in first.

        Raises:
            AutomationError: If the automation is unknown or has no steps.

        """
        automation = self._require(automation_uuid)
        feed_item: FeedItem | None = self.feed.find(feed_item_id) if feed_item_id is not None else None
        if feed_item is not None:
            await self.feed.set_loading(feed_item.id, is_loading=True)

        if not self.connections.check_synced_sources(automation.data_sources()):
            logger.info(SOURCES_SYNCING, automation=automation.uuid)
            await self.bus.publish(SourcesSyncingWarning(automation_uuid=automation.uuid, message=SOURCES_SYNCING))

        try:
            needs_auth = await self.executor.run_automation(
                automation,
                AutomationTrigger.CLICK,
                run=feed_item.run if feed_item is not None else None,
                feed_item=feed_item,
                on_success=self.feed.success_handler,
                on_error=self.feed.error_handler_for(feed_item.id if feed_item is not None else None),
            )
        except EngineError:
            if feed_item is not None:
                await self.feed.set_loading(feed_item.id, is_loading=False)
            raise

        if needs_auth and feed_item is not None:
            await self.feed.set_loading(feed_item.id, is_loading=False)
        return needs_auth

    async def preview_automation(
        self,
        automation_uuid: str,
        on_finish: PreviewHandler,
        on_error: ErrorHandler | None = None,
    ) -> None:
        """Preview an automation; ``on_finish`` receives the answer and document ids."""
        await self.executor.preview_automation(self._require(automation_uuid), on_finish, on_error)

    async def enqueue_llm_request(self, request: LLMRequest) -> None:
        """Queue an arbitrary LLM request behind any running completion."""
        await self.llm_queue.enqueue(request)

    def get_feed_buckets(self) -> Buckets:
        """Current feed buckets."""
        return self.feed.buckets

    def get_connection_states(self) -> dict[ConnectionKey, ConnectionState]:
        """Current state of every connection."""
        return {key: connection.state for key, connection in self.connections.connections.items()}

    async def run_email_autopilot(self) -> int:
        """Start triaging recent mail; returns the number of emails submitted."""
        return await self.autopilot.run()
