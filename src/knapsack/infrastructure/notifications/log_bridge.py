"""Notification bridge used when no native window bridge is attached."""

import structlog

from knapsack.application.ports.notifications import NotificationButton

logger = structlog.get_logger()


class LogNotificationBridge:
    """Logs meeting notifications and remembers the last ones shown."""

    def __init__(self) -> None:
        """Initialize the bridge."""
        self.shown: list[tuple[str, str, str]] = []

    async def show_notification(
        self,
        event_id: str,
        title: str,
        time_label: str,
        buttons: tuple[NotificationButton, ...],
    ) -> None:
        """Log a meeting notification."""
        self.shown.append((event_id, title, time_label))
        logger.info(
            "Meeting starting soon",
            event_id=event_id,
            title=title,
            time=time_label,
            buttons=[button.handler for button in buttons],
        )
