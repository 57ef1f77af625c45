"""Message bus protocol definition."""

from collections.abc import Awaitable, Callable
from typing import Protocol

from knapsack.domain.events import Event

EventHandler = Callable[[Event], Awaitable[None]]


class MessageBus(Protocol):
    """Protocol for the bus carrying engine progress and error events.

    A handler subscribed to an event class also receives its subclasses;
    subscribing to ``Event`` observes everything.
    """

    async def publish(self, event: Event) -> None:
        """Publish an event to the bus."""
        ...

    def subscribe(self, event_type: type[Event], handler: EventHandler) -> None:
        """Subscribe a handler to an event type and its subclasses."""
        ...

    def unsubscribe(self, event_type: type[Event], handler: EventHandler) -> None:
        """Remove a handler."""
        ...

    async def start(self) -> None:
        """Start delivering events."""
        ...

    async def stop(self) -> None:
        """Deliver pending events and stop."""
        ...
