"""In-memory message bus implementation."""

import asyncio
import contextlib
from collections import defaultdict, deque

import structlog

from knapsack.application.ports.message_bus import EventHandler
from knapsack.domain.events import Event

logger = structlog.get_logger()


def _handler_name(handler: EventHandler) -> str:
    return getattr(handler, "__name__", repr(handler))


class InMemoryMessageBus:
    """Single-process message bus delivering events from one worker task.

    Events are delivered in publish order. Handlers of one event run
    concurrently; a failing handler is logged and does not affect the others.
    """

    def __init__(self, max_queue_size: int = 1000) -> None:
        """Initialize the message bus.

        Args:
            max_queue_size: Maximum number of undelivered events.

        """
        self._handlers: dict[type[Event], list[EventHandler]] = defaultdict(list)
        self._queue: asyncio.Queue[Event] = asyncio.Queue(maxsize=max_queue_size)
        self._running = False
        self._worker_task: asyncio.Task[None] | None = None

    def subscribe(self, event_type: type[Event], handler: EventHandler) -> None:
        """Subscribe a handler to an event type and its subclasses."""
        self._handlers[event_type].append(handler)
        logger.debug("Handler subscribed", event_type=event_type.__name__, handler=_handler_name(handler))

    def unsubscribe(self, event_type: type[Event], handler: EventHandler) -> None:
        """Remove a handler; unknown handlers are ignored."""
        if handler in self._handlers[event_type]:
            self._handlers[event_type].remove(handler)
            logger.debug("Handler unsubscribed", event_type=event_type.__name__, handler=_handler_name(handler))

    async def publish(self, event: Event) -> None:
        """Queue an event for delivery, waiting while the queue is full."""
        await self._queue.put(event)
        logger.debug("Event published", event_type=type(event).__name__, queue_size=self._queue.qsize())

    def handlers_for(self, event: Event) -> list[EventHandler]:
        """Handlers registered for the event's class or any of its bases."""
        handlers: list[EventHandler] = []
        for cls in type(event).__mro__:
            for handler in self._handlers.get(cls, []):
                if handler not in handlers:
                    handlers.append(handler)
        return handlers

    async def _process_event(self, event: Event) -> None:
        handlers = self.handlers_for(event)
        if not handlers:
            return

        results = await asyncio.gather(*(handler(event) for handler in handlers), return_exceptions=True)
        for handler, result in zip(handlers, results, strict=True):
            if isinstance(result, Exception):
                logger.error(
                    "Handler failed",
                    event_type=type(event).__name__,
                    handler=_handler_name(handler),
                    error=str(result),
                    exc_info=result,
                )

    async def _worker(self) -> None:
        logger.info("Message bus worker started")
        while self._running:
            try:
                try:
                    event = await asyncio.wait_for(self._queue.get(), timeout=1.0)
                except TimeoutError:
                    continue
                await self._process_event(event)
                self._queue.task_done()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.exception("Error in message bus worker", error=str(e))
        logger.info("Message bus worker stopped")

    async def start(self) -> None:
        """Start the delivery worker."""
        if self._running:
            logger.warning("Message bus already running")
            return
        self._running = True
        self._worker_task = asyncio.create_task(self._worker())

    async def stop(self) -> None:
        """Deliver pending events, then stop the worker."""
        if not self._running:
            return

        if not self._queue.empty():
            try:
                await asyncio.wait_for(self._queue.join(), timeout=10.0)
            except TimeoutError:
                logger.warning("Timeout waiting for pending events", pending_count=self._queue.qsize())

        self._running = False
        if self._worker_task:
            self._worker_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._worker_task
            self._worker_task = None
        logger.info("Message bus stopped")

    @property
    def is_running(self) -> bool:
        """Check if the worker is running."""
        return self._running

    @property
    def queue_size(self) -> int:
        """Number of undelivered events."""
        return self._queue.qsize()


class EventLog:
    """Keeps the most recent events published on a bus."""

    def __init__(self, bus: InMemoryMessageBus, limit: int = 100) -> None:
        """Subscribe to every event on ``bus``."""
        self._events: deque[Event] = deque(maxlen=limit)
        self._bus = bus
        bus.subscribe(Event, self.record)

    async def record(self, event: Event) -> None:
        """Store an event."""
        self._events.append(event)

    def recent(self, limit: int | None = None) -> list[Event]:
        """Most recent events, newest last."""
        events = list(self._events)
        return events[-limit:] if limit else events

    def close(self) -> None:
        """Stop recording."""
        self._bus.unsubscribe(Event, self.record)
