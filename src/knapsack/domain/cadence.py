"""Cadence matching.

These functions are pure: they take the instant to evaluate explicitly and
never read the clock, so schedule decisions can be tested for any time.
"""

from collections.abc import Iterable
from datetime import datetime
from typing import TYPE_CHECKING

from .enums import CadenceType, DayOfWeek

if TYPE_CHECKING:
    from .models import Cadence


def _clock(value: str | None) -> str | None:
    # Backend times may carry seconds ("09:00:00"); only HH:MM is significant.
    return value[:5] if value else None


def cadence_matches(cadence: "Cadence", now: datetime) -> bool:
    """Check whether a cadence fires at the given minute.

    Args:
        cadence: Cadence to evaluate.
        now: Instant to evaluate, in the user's local time.

    Returns:
        True if an automation with this cadence is due.

    """
    current = now.strftime("%H:%M")
    match cadence.cadence_type:
        case CadenceType.EVERY_MINUTE:
            return True
        case CadenceType.HOURLY:
            return now.minute == 0
        case CadenceType.DAILY:
            return _clock(cadence.time) == current
        case CadenceType.WEEKLY:
            return cadence.day_of_week == DayOfWeek.from_weekday(now.weekday()) and _clock(cadence.time) == current
        case _:
            return False


def find_cadence(cadences: Iterable["Cadence"], now: datetime) -> "Cadence | None":
    """Return the first cadence due at ``now``, if any."""
    for cadence in cadences:
        if cadence_matches(cadence, now):
            return cadence
    return None
