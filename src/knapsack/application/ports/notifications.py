"""Native notification bridge protocol definition."""

from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True, slots=True)
class NotificationButton:
    """A button on a meeting notification."""

    label: str
    handler: str


MEETING_BUTTONS: tuple[NotificationButton, ...] = (
    NotificationButton(label="Join and record", handler="meeting_start_notification_handler"),
    NotificationButton(label="Record", handler="meeting_record_notification_handler"),
    NotificationButton(label="Open Knapsack", handler="meeting_open_notification_handler"),
)


class NotificationBridge(Protocol):
    """Protocol for showing native notification windows."""

    async def show_notification(
        self,
        event_id: str,
        title: str,
        time_label: str,
        buttons: tuple[NotificationButton, ...],
    ) -> None:
        """Open a notification window for a meeting."""
        ...
