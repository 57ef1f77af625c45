"""Upcoming meeting notifications."""

import math
from collections.abc import Callable
from datetime import datetime

import structlog

from knapsack.application.errors import EngineError
from knapsack.application.ports.backend import Backend
from knapsack.application.ports.notifications import MEETING_BUTTONS, NotificationBridge
from knapsack.config import Settings, get_settings
from knapsack.domain.models import Meeting

logger = structlog.get_logger()


def time_label(moment: datetime) -> str:
    """Format a time as "9:05 AM"."""
    return moment.strftime("%I:%M %p").lstrip("0")


class MeetingNotifier:
    """Shows one notification per meeting shortly before it starts.

    Only one notification window is open at a time; the next one can be shown
    after the bridge reports the window was closed.
    """

    def __init__(
        self,
        backend: Backend,
        bridge: NotificationBridge,
        settings: Settings | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the notifier.

        Args:
            backend: Backend adapter used to load upcoming meetings.
            bridge: Native notification bridge.
            settings: Settings, loaded from the environment when omitted.
            clock: Returns the current local time.

        """
        self._backend = backend
        self._bridge = bridge
        self._settings = settings or get_settings()
        self._clock = clock or self._settings.now
        self._meetings: list[Meeting] = []
        self._sent: set[str] = set()
        self._is_showing = False

    @property
    def meetings(self) -> list[Meeting]:
        """Upcoming meetings being watched."""
        return list(self._meetings)

    @property
    def is_showing(self) -> bool:
        """Check whether a notification window is open."""
        return self._is_showing

    def set_meetings(self, meetings: list[Meeting]) -> None:
        """Replace the watched meetings."""
        self._meetings = list(meetings)

    async def resync(self) -> None:
        """Reload upcoming meetings from the calendar."""
        if not self._settings.user_email:
            return
        try:
            self._meetings = await self._backend.get_recent_calendar_events()
        except EngineError as e:
            logger.warning("Failed to load upcoming meetings", error=str(e))

    async def tick(self, now: datetime | None = None) -> Meeting | None:
        """Show the notification for a meeting that starts in exactly the lead time.

        Returns:
            The meeting notified about, if any.

        """
        if self._is_showing:
            return None

        now = now or self._clock()
        lead = self._settings.notification_lead_minutes
        for meeting in self._meetings:
            minutes_until = math.ceil((meeting.start - now).total_seconds() / 60)
            if minutes_until != lead or meeting.event_id in self._sent:
                continue

            start = meeting.start.astimezone(now.tzinfo) if now.tzinfo else meeting.start
            await self._bridge.show_notification(
                meeting.event_id,
                meeting.title,
                time_label(start),
                MEETING_BUTTONS,
            )
            self._sent.add(meeting.event_id)
            self._is_showing = True
            logger.info("Meeting notification shown", event_id=meeting.event_id, title=meeting.title)
            return meeting
        return None

    def notification_closed(self) -> None:
        """Allow the next notification to be shown."""
        self._is_showing = False
