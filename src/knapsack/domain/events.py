"""Domain events for the message bus."""

from dataclasses import dataclass, field
from datetime import UTC, datetime


@dataclass(frozen=True, slots=True, kw_only=True)
class Event:
    """Base class for all domain events."""

    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass(frozen=True, slots=True, kw_only=True)
class RunScheduled(Event):
    """Event emitted when a cadence creates a new automation run."""

    automation_uuid: str
    schedule_date: datetime


@dataclass(frozen=True, slots=True, kw_only=True)
class AutomationStarted(Event):
    """Event emitted when an automation begins executing."""

    automation_uuid: str
    trigger: str


@dataclass(frozen=True, slots=True, kw_only=True)
class AutomationCompleted(Event):
    """Event emitted when every step of an automation finished."""

    automation_uuid: str
    trigger: str


@dataclass(frozen=True, slots=True, kw_only=True)
class AutomationFailed(Event):
    """Event emitted when an automation run fails."""

    automation_uuid: str
    error_type: str
    error_message: str
    step_index: int | None = None
    step_name: str | None = None


@dataclass(frozen=True, slots=True, kw_only=True)
class AuthRequired(Event):
    """Event emitted when a run needs the user to sign in first."""

    automation_uuid: str


@dataclass(frozen=True, slots=True, kw_only=True)
class SourcesSyncingWarning(Event):
    """Event emitted when a run starts while its sources are still syncing."""

    automation_uuid: str
    message: str


@dataclass(frozen=True, slots=True, kw_only=True)
class ConnectionSynced(Event):
    """Event emitted when a connection finished syncing."""

    key: str


@dataclass(frozen=True, slots=True, kw_only=True)
class ConnectionSyncFailed(Event):
    """Event emitted when a connection sync fails."""

    key: str
    error_type: str
    error_message: str


@dataclass(frozen=True, slots=True, kw_only=True)
class ReconnectRequired(Event):
    """Event emitted when a connection was dropped and must be re-authorized."""

    key: str


@dataclass(frozen=True, slots=True, kw_only=True)
class ClassificationProgressed(Event):
    """Event emitted whenever email classification progress changes."""

    current: int
    total: int


@dataclass(frozen=True, slots=True, kw_only=True)
class AutopilotCompleted(Event):
    """Event emitted when every submitted email was classified or given up on."""

    total: int


@dataclass(frozen=True, slots=True, kw_only=True)
class LLMRequestFailed(Event):
    """Event emitted when a queued LLM request fails."""

    error_type: str
    error_message: str
