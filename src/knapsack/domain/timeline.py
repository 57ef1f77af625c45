"""Feed day labels."""

from datetime import datetime, timedelta

STATIONARY = "stationary"
TUTORIAL = "Tutorial"
COMING_UP = "COMING UP"


def ordinal(day: int) -> str:
    """Return ``day`` with its English ordinal suffix (1st, 2nd, 11th...)."""
    if 11 <= day % 100 <= 13:
        suffix = "th"
    else:
        suffix = {1: "st", 2: "nd", 3: "rd"}.get(day % 10, "th")
    return f"{day}{suffix}"


def timeline_key(timestamp: datetime, now: datetime) -> str:
    """Derive the feed bucket label for a timestamp.

    Args:
        timestamp: Feed item time.
        now: Current time; its timezone decides the calendar day.

    Returns:
        "Today, Oct 18th", "Yesterday, Oct 17th", "Tutorial" for epoch-year
        items, "COMING UP" for future days, otherwise "Sat Oct 11th".

    """
    if timestamp.tzinfo is not None and now.tzinfo is not None:
        timestamp = timestamp.astimezone(now.tzinfo)

    if timestamp.year == 1970:
        return TUTORIAL

    day = timestamp.date()
    today = now.date()
    month_day = f"{timestamp:%b} {ordinal(timestamp.day)}"

    if day == today:
        return f"Today, {month_day}"
    if day == today - timedelta(days=1):
        return f"Yesterday, {month_day}"
    if day > today:
        return COMING_UP
    return f"{timestamp:%a} {month_day}"
