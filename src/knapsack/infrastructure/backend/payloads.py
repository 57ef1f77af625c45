"""Parsing backend JSON payloads into domain models.

The backend mixes conventions: feed and thread timestamps are in
milliseconds, message, email, calendar and run execution timestamps in
seconds. Keys are camelCase for stored records and snake_case for search
results.
"""

import json
from datetime import UTC, datetime
from typing import Any

import structlog

from knapsack.application.steps.base import Step
from knapsack.application.steps.codec import UnknownStepError, decode_step
from knapsack.domain.enums import CadenceType, ConnectionKey, DayOfWeek
from knapsack.domain.models import (
    Automation,
    AutomationRun,
    Cadence,
    Connection,
    EmailMessage,
    FeedItem,
    Meeting,
    Message,
    Participant,
    SourceDocument,
    Thread,
)

logger = structlog.get_logger()

# Names used by connections/is_syncing
SYNC_STATUS_NAMES: dict[str, ConnectionKey] = {
    "GoogleDrive": ConnectionKey.GOOGLE_DRIVE,
    "GoogleCalendar": ConnectionKey.GOOGLE_CALENDAR,
    "GoogleGmail": ConnectionKey.GOOGLE_GMAIL,
    "LocalFiles": ConnectionKey.LOCAL_FILES,
    "MicrosoftOneDrive": ConnectionKey.MICROSOFT_ONEDRIVE,
    "MicrosoftOutlook": ConnectionKey.MICROSOFT_OUTLOOK,
    "MicrosoftCalendar": ConnectionKey.MICROSOFT_CALENDAR,
}


def from_seconds(value: float | None) -> datetime | None:
    """Convert a unix timestamp in seconds."""
    if value is None:
        return None
    return datetime.fromtimestamp(value, UTC)


def from_millis(value: float | None) -> datetime | None:
    """Convert a unix timestamp in milliseconds."""
    if value is None:
        return None
    return datetime.fromtimestamp(value / 1000, UTC)


def to_seconds(moment: datetime) -> float:
    """Convert a datetime to a unix timestamp in seconds."""
    return moment.timestamp()


def to_millis(moment: datetime) -> int:
    """Convert a datetime to a unix timestamp in milliseconds."""
    return int(moment.timestamp() * 1000)


def parse_run(data: dict[str, Any], automation_uuid: str | None = None) -> AutomationRun:
    """Parse an automation run; run params may arrive as a JSON string."""
    return AutomationRun(
        automation_uuid=data.get("automationUuid") or automation_uuid or "",
        id=data.get("id"),
        schedule_date=from_millis(data.get("scheduleTimestamp")),
        execution_date=from_seconds(data.get("executionTimestamp")),
        run_params=data.get("runParams", data.get("run_params")),
        thread_id=data.get("threadId"),
    )


def parse_cadence(data: dict[str, Any]) -> Cadence:
    """Parse a trigger cadence."""
    day = data.get("dayOfWeek")
    return Cadence(
        cadence_type=CadenceType(data["cadenceType"]),
        day_of_week=DayOfWeek(day) if day else None,
        time=data.get("time"),
    )


def _steps(raw_steps: list[dict[str, Any]], automation: str) -> list[Step]:
    steps: list[Step] = []
    for raw in sorted(raw_steps, key=lambda step: step.get("ordering", 0)):
        try:
            steps.append(decode_step(raw["name"], raw.get("argsJson")))
        except (UnknownStepError, ValueError, KeyError) as e:
            # The remaining steps still run; an automation with no steps
            # fails when executed.
            logger.error("Missing step implementation", automation=automation, step=raw.get("name"), error=str(e))
    return steps


def parse_automation(data: dict[str, Any]) -> Automation:
    """Parse an automation with its steps, cadences and runs.

    Steps are ordered by their ``ordering`` field; unknown steps are
    dropped with an error log.
    """
    uuid = data.get("uuid") or ""
    return Automation(
        id=data.get("id"),
        uuid=uuid,
        name=data["name"],
        description=data.get("description") or "",
        steps=_steps(data.get("steps") or [], uuid or data["name"]),
        cadences=[parse_cadence(cadence) for cadence in data.get("triggerCadences") or []],
        runs=[parse_run(run, uuid) for run in data.get("runs") or []],
        is_active=bool(data.get("isActive", False)),
        is_beta=bool(data.get("isBeta", False)),
        show_library=bool(data.get("showLibrary", True)),
        icon=data.get("icon"),
    )


def parse_thread(data: dict[str, Any]) -> Thread:
    """Parse a thread with its messages, sorted by id."""
    thread = data["thread"]
    messages = [
        Message(
            id=message["id"],
            user_type="user" if (message.get("userId") or 0) > 0 else "bot",
            text=message.get("contentFacade") or message.get("content") or "",
            date=from_seconds(message.get("timestamp")) or datetime.fromtimestamp(0, UTC),
        )
        for message in data.get("messages") or []
    ]
    return Thread(
        id=thread["id"],
        date=from_millis(thread.get("timestamp")) or datetime.fromtimestamp(0, UTC),
        title=thread.get("title"),
        subtitle=thread.get("subtitle"),
        thread_type=thread.get("threadType"),
        hide_follow_up=bool(thread.get("hideFollowUp", False)),
        messages=sorted(messages, key=lambda message: message.id),
    )


def parse_feed_item(data: dict[str, Any]) -> FeedItem:
    """Parse a feed item with its threads, run and calendar event."""
    item = data["feedItem"]
    automation = data.get("automation") or {}
    run = data.get("run")
    event = data.get("calendarEvent")
    return FeedItem(
        id=item["id"],
        timestamp=from_millis(item.get("timestamp")) or datetime.fromtimestamp(0, UTC),
        title=item.get("title") or "",
        threads=[parse_thread(thread) for thread in data.get("threads") or []],
        run=parse_run(run, automation.get("uuid")) if run else None,
        calendar_event=parse_meeting(event) if event else None,
        automation_uuid=automation.get("uuid"),
        deleted=bool(item.get("deleted") or False),
    )


def _participants(raw: Any) -> list[Participant]:
    if isinstance(raw, str):
        raw = json.loads(raw) if raw else []
    participants: list[Participant] = []
    for attendee in raw or []:
        if isinstance(attendee, str):
            participants.append(Participant(email=attendee))
        elif attendee.get("email"):
            participants.append(Participant(email=attendee["email"], name=attendee.get("name")))
    return participants


def parse_meeting(data: dict[str, Any]) -> Meeting:
    """Parse a calendar event; attendees arrive as a JSON string."""
    participants = _participants(data.get("attendees_json", data.get("participants")))
    return Meeting(
        id=data.get("id", 0),
        event_id=str(data.get("event_id") or data.get("eventId") or data.get("id", "")),
        title=data.get("title") or "",
        start=from_seconds(data.get("start")) or datetime.fromtimestamp(0, UTC),
        description=data.get("description"),
        location=data.get("location"),
        participants=participants,
        google_meet_url=data.get("google_meet_url"),
        recurrence_id=data.get("recurrence_id"),
    )


def parse_document(data: dict[str, Any]) -> SourceDocument:
    """Parse a display document."""
    return SourceDocument(
        document_id=int(data.get("documentId", data.get("document_id", 0))),
        title=data.get("title") or "",
        document_type=data.get("documentType", data.get("document_type")),
        summary=data.get("summary"),
        uri=data.get("uri"),
    )


def parse_email(data: dict[str, Any]) -> EmailMessage:
    """Parse an email display document."""
    return EmailMessage(
        document_id=int(data.get("documentId", data.get("document_id", 0))),
        email_uid=data.get("emailUid", data.get("email_uid", "")),
        thread_id=data.get("threadId", data.get("thread_id")),
        subject=data.get("subject") or "",
        sender=data.get("sender") or "",
        date=from_seconds(data.get("date")) or datetime.fromtimestamp(0, UTC),
        recipients=list(data.get("recipients") or []),
        cc=list(data.get("cc") or []),
        body=data.get("body") or "",
        summary=data.get("summary") or "",
        is_starred=bool(data.get("isStarred", data.get("is_starred")) or False),
        is_read=bool(data.get("isRead", data.get("is_read")) or False),
        is_archived=bool(data.get("isArchived", data.get("is_archived")) or False),
        is_deleted=bool(data.get("isDeleted", data.get("is_deleted")) or False),
    )


def parse_connection(data: dict[str, Any]) -> Connection | None:
    """Parse a user connection, None for scopes the engine does not know."""
    connection = data.get("connection") or {}
    try:
        key = ConnectionKey(connection.get("scope", ""))
    except ValueError:
        logger.debug("Skipping unknown connection scope", scope=connection.get("scope"))
        return None
    return Connection(
        key=key,
        id=data.get("id"),
        last_synced=from_seconds(data.get("lastSynced")),
        synced_since=from_seconds(data.get("syncedSince")),
    )


def parse_sync_status(data: dict[str, Any]) -> dict[ConnectionKey, bool]:
    """Map ``is_syncing`` names to connection keys."""
    return {key: bool(data.get(name, False)) for name, key in SYNC_STATUS_NAMES.items() if name in data}
