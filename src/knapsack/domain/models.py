"""Domain models - pure Python dataclasses."""

import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID, uuid4, uuid5

from .cadence import find_cadence
from .enums import (
    CadenceType,
    ConnectionKey,
    ConnectionState,
    DataSource,
    DayOfWeek,
    EmailImportance,
    Provider,
)

if TYPE_CHECKING:
    from knapsack.application.steps.base import Step

AUTOMATION_NAMESPACE = UUID("e4eaaaf2-d142-11e1-b3e4-080027620cdd")


def automation_uuid(name: str) -> str:
    """Derive the stable automation uuid from its name."""
    return str(uuid5(AUTOMATION_NAMESPACE, name))


@dataclass(frozen=True, slots=True)
class Cadence:
    """When an automation fires."""

    cadence_type: CadenceType
    day_of_week: DayOfWeek | None = None
    time: str | None = None

    def serialize(self) -> dict[str, Any]:
        """Return the backend payload for this cadence."""
        return {
            "cadence_type": self.cadence_type.value,
            "day_of_week": self.day_of_week.value if self.day_of_week else None,
            "time": self.time,
        }


@dataclass(slots=True)
class AutomationRun:
    """A scheduled or executed run of an automation.

    ``execution_date`` is set exactly once, before the run is dispatched;
    a run with an execution date is never picked up again.
    """

    automation_uuid: str
    id: int | None = None
    schedule_date: datetime | None = None
    execution_date: datetime | None = None
    run_params: dict[str, Any] | str | None = None
    thread_id: int | None = None
    documents: list[str] = field(default_factory=list)
    local_id: str = field(default_factory=lambda: uuid4().hex)

    def params(self) -> dict[str, Any]:
        """Return run parameters, decoding the JSON string form."""
        if self.run_params is None or self.run_params == "":
            return {}
        if isinstance(self.run_params, str):
            decoded = json.loads(self.run_params)
            return decoded if isinstance(decoded, dict) else {}
        return dict(self.run_params)

    def is_due(self, now: datetime) -> bool:
        """Check whether the run is scheduled and not yet executed."""
        return self.execution_date is None and self.schedule_date is not None and self.schedule_date <= now


@dataclass(slots=True)
class Automation:
    """A named, ordered pipeline of steps with cadences and run history."""

    name: str
    description: str = ""
    steps: list["Step"] = field(default_factory=list)
    cadences: list[Cadence] = field(default_factory=list)
    runs: list[AutomationRun] = field(default_factory=list)
    id: int | None = None
    uuid: str = ""
    is_active: bool = False
    is_beta: bool = False
    show_library: bool = True
    icon: str | None = None

    def __post_init__(self) -> None:
        if not self.uuid:
            self.uuid = automation_uuid(self.name)

    def set_is_active(self, is_active: bool) -> None:
        """Enable or disable cadence and startup triggering."""
        self.is_active = is_active

    def create_run(self, run: AutomationRun) -> None:
        """Append a run to the history."""
        self.runs.append(run)

    def update_run(self, run: AutomationRun, run_id: int | None = None) -> None:
        """Replace a run in the history.

        Args:
            run: Replacement run.
            run_id: Backend id of the run to replace. When None, the most
                recent run is replaced.

        """
        if not self.runs:
            self.runs.append(run)
            return
        if run_id is None:
            self.runs[-1] = run
            return
        for index, existing in enumerate(self.runs):
            if existing.id == run_id:
                self.runs[index] = run
                return

    def data_sources(self) -> list[DataSource]:
        """Return the unique sources of all steps, in first-seen order."""
        sources: list[DataSource] = []
        for step in self.steps:
            for source in step.data_sources:
                if source not in sources:
                    sources.append(source)
        return sources

    def find_cadence(self, now: datetime) -> Cadence | None:
        """Return the first cadence due at ``now``."""
        return find_cadence(self.cadences, now)

    def serialize(self) -> dict[str, Any]:
        """Return the backend payload used to create or update the automation."""
        return {
            "id": self.id,
            "uuid": self.uuid,
            "name": self.name,
            "description": self.description,
            "cadences": [cadence.serialize() for cadence in self.cadences],
            "runs": [],
            "steps": [{**step.serialize(), "ordering": index} for index, step in enumerate(self.steps)],
            "is_active": self.is_active,
            "show_library": self.show_library,
            "icon": self.icon,
        }


@dataclass(slots=True)
class Connection:
    """A provider connection and its sync state."""

    key: ConnectionKey
    id: int | None = None
    state: ConnectionState = ConnectionState.IDLE
    last_synced: datetime | None = None
    synced_since: datetime | None = None

    @property
    def provider(self) -> Provider:
        """Provider owning the connection."""
        return self.key.provider


@dataclass(frozen=True, slots=True)
class EmailMessage:
    """An email as returned by the backend."""

    document_id: int
    email_uid: str
    thread_id: str | None
    subject: str
    sender: str
    date: datetime
    recipients: list[str] = field(default_factory=list)
    cc: list[str] = field(default_factory=list)
    body: str = ""
    summary: str = ""
    is_starred: bool = False
    is_read: bool = False
    is_archived: bool = False
    is_deleted: bool = False

    @property
    def needs_attention(self) -> bool:
        """Starred, or unread and still in the inbox."""
        return self.is_starred or (not self.is_read and not self.is_archived)

    @property
    def is_handled(self) -> bool:
        """Whether the user already dealt with the email outside the autopilot."""
        return not ((self.is_starred or not self.is_read) and not self.is_archived and not self.is_deleted)


@dataclass(frozen=True, slots=True)
class EmailClassification:
    """LLM triage verdict for one email."""

    document_id: int
    classification: EmailImportance
    summary: list[str] = field(default_factory=list)
    justification: str = ""
    response_deadline: str | None = None
    confidence_score: float = 0.0
    keywords: list[str] = field(default_factory=list)
    action_required: str | None = None


@dataclass(slots=True)
class DisplayEmail:
    """A triaged email with the user's actions on it."""

    message: EmailMessage
    classification: EmailClassification | None = None
    was_ignored: bool = False
    was_reply_sent: bool = False
    drafted_reply: str | None = None

    @property
    def importance(self) -> EmailImportance:
        """Bucket of the email, UNCLASSIFIED when no verdict exists."""
        if self.classification is None:
            return EmailImportance.UNCLASSIFIED
        return self.classification.classification


@dataclass(slots=True)
class ClassificationProgress:
    """Classified email count against the total submitted."""

    current: int = 0
    total: int = 0

    def advance(self, count: int) -> None:
        """Advance by ``count``, never past the total."""
        self.current = min(self.current + count, self.total)

    @property
    def is_complete(self) -> bool:
        """Check whether every submitted email was accounted for."""
        return self.current >= self.total


@dataclass(frozen=True, slots=True)
class SourceDocument:
    """A document found by semantic search or document lookup."""

    document_id: int
    title: str = ""
    document_type: str | None = None
    summary: str | None = None
    uri: str | None = None


@dataclass(frozen=True, slots=True)
class AdditionalDocument:
    """Free text context passed to the LLM besides indexed documents."""

    title: str
    content: str

    def to_payload(self) -> dict[str, str]:
        """Return the completion request form."""
        return {"title": self.title, "content": self.content}


@dataclass(frozen=True, slots=True)
class Participant:
    """A meeting attendee."""

    email: str
    name: str | None = None


@dataclass(frozen=True, slots=True)
class Meeting:
    """A calendar event."""

    id: int
    event_id: str
    title: str
    start: datetime
    description: str | None = None
    location: str | None = None
    participants: list[Participant] = field(default_factory=list)
    google_meet_url: str | None = None
    recurrence_id: str | None = None


@dataclass(frozen=True, slots=True)
class Message:
    """A chat message in a feed thread."""

    id: int
    user_type: str
    text: str
    date: datetime


@dataclass(slots=True)
class Thread:
    """A conversation attached to a feed item."""

    id: int
    date: datetime
    title: str | None = None
    subtitle: str | None = None
    thread_type: str | None = None
    hide_follow_up: bool = False
    messages: list[Message] = field(default_factory=list)
    is_loading: bool = False


@dataclass(slots=True)
class FeedItem:
    """A tile in the day-bucketed feed."""

    id: int
    timestamp: datetime
    title: str
    threads: list[Thread] = field(default_factory=list)
    run: AutomationRun | None = None
    calendar_event: Meeting | None = None
    automation_uuid: str | None = None
    is_loading: bool = False
    is_recording: bool = False
    deleted: bool = False
