"""Domain enumerations."""

from enum import StrEnum


class CadenceType(StrEnum):
    """How often an automation fires."""

    EVERY_MINUTE = "every_minute"
    HOURLY = "hourly"
    DAILY = "daily"
    WEEKLY = "weekly"
    NEVER = "never"
    OTHER = "other"


class DayOfWeek(StrEnum):
    """Day names used by weekly cadences."""

    MONDAY = "Monday"
    TUESDAY = "Tuesday"
    WEDNESDAY = "Wednesday"
    THURSDAY = "Thursday"
    FRIDAY = "Friday"
    SATURDAY = "Saturday"
    SUNDAY = "Sunday"

    @classmethod
    def from_weekday(cls, weekday: int) -> "DayOfWeek":
        """Map ``datetime.weekday()`` (Monday is 0) to a day name."""
        return list(cls)[weekday]


class AutomationTrigger(StrEnum):
    """What caused an automation to run."""

    CLICK = "click"
    CADENCE = "cadence"
    STARTUP = "startup"


class ConnectionKey(StrEnum):
    """Provider connection scopes."""

    GOOGLE_PROFILE = "google_profile_read"
    GOOGLE_DRIVE = "google_drive_read"
    GOOGLE_CALENDAR = "google_calendar_read"
    GOOGLE_GMAIL = "google_gmail_modify"
    MICROSOFT_PROFILE = "microsoft_profile_read"
    MICROSOFT_ONEDRIVE = "microsoft_onedrive_read"
    MICROSOFT_OUTLOOK = "microsoft_outlook_read"
    MICROSOFT_CALENDAR = "microsoft_calendar_read"
    LOCAL_FILES = "local_files_read"

    @property
    def provider(self) -> "Provider":
        """Provider owning this scope."""
        return Provider(self.value.split("_", 1)[0])


class ConnectionState(StrEnum):
    """Sync state of a single connection."""

    IDLE = "idle"
    UP_TO_DATE = "up to date"
    SYNCING = "syncing"
    FAILED = "failed"


class Provider(StrEnum):
    """Connection providers."""

    GOOGLE = "google"
    MICROSOFT = "microsoft"
    LOCAL = "local"


class DataSource(StrEnum):
    """Data sources an automation step reads from."""

    GMAIL = "gmail"
    GOOGLE_CALENDAR = "google_calendar"
    DRIVE = "drive"
    LOCAL_FILES = "file"
    WEB = "web"

    @property
    def connection_key(self) -> ConnectionKey | None:
        """Connection backing this source, None for the web."""
        return _SOURCE_CONNECTIONS.get(self)


_SOURCE_CONNECTIONS: dict[DataSource, ConnectionKey] = {
    DataSource.GMAIL: ConnectionKey.GOOGLE_GMAIL,
    DataSource.GOOGLE_CALENDAR: ConnectionKey.GOOGLE_CALENDAR,
    DataSource.DRIVE: ConnectionKey.GOOGLE_DRIVE,
    DataSource.LOCAL_FILES: ConnectionKey.LOCAL_FILES,
}


class EmailImportance(StrEnum):
    """Triage class assigned to an email."""

    IMPORTANT_NEEDS_RESPONSE = "IMPORTANT_NEEDS_RESPONSE"
    IMPORTANT_NO_RESPONSE = "IMPORTANT_NO_RESPONSE"
    INFORMATIONAL = "INFORMATIONAL"
    MARKETING = "MARKETING"
    UNIMPORTANT = "UNIMPORTANT"
    UNCLASSIFIED = "UNCLASSIFIED"

    @property
    def priority(self) -> int:
        """Drain priority, higher first."""
        return _IMPORTANCE_PRIORITY[self]

    @property
    def needs_draft(self) -> bool:
        """Whether a reply draft is generated for this class."""
        return self in (EmailImportance.IMPORTANT_NEEDS_RESPONSE, EmailImportance.IMPORTANT_NO_RESPONSE)


_IMPORTANCE_PRIORITY: dict[EmailImportance, int] = {
    EmailImportance.IMPORTANT_NEEDS_RESPONSE: 5,
    EmailImportance.IMPORTANT_NO_RESPONSE: 4,
    EmailImportance.INFORMATIONAL: 3,
    EmailImportance.MARKETING: 2,
    EmailImportance.UNIMPORTANT: 1,
    EmailImportance.UNCLASSIFIED: 0,
}


class AutopilotAction(StrEnum):
    """User actions on a triaged email."""

    MARK_AS_READ = "MARK_AS_READ"
    ARCHIVE = "ARCHIVE"
    DELETE = "DELETE"
    SEND_REPLY = "SEND_REPLY"
    REPLY_ARCHIVE = "REPLY_ARCHIVE"
    REPLY_DELETE = "REPLY_DELETE"
    GENERATE_DRAFT_REPLY = "GENERATE_DRAFT_REPLY"

    @property
    def is_ignore(self) -> bool:
        """Action dismisses the email without replying."""
        return self in (AutopilotAction.MARK_AS_READ, AutopilotAction.ARCHIVE, AutopilotAction.DELETE)

    @property
    def is_reply(self) -> bool:
        """Action replies to the email."""
        return self in (AutopilotAction.SEND_REPLY, AutopilotAction.REPLY_ARCHIVE, AutopilotAction.REPLY_DELETE)

    @property
    def extra_action(self) -> str | None:
        """Mailbox side effect sent along with mark-as-read."""
        if self in (AutopilotAction.DELETE, AutopilotAction.REPLY_DELETE):
            return "delete"
        if self in (AutopilotAction.ARCHIVE, AutopilotAction.REPLY_ARCHIVE):
            return "archive"
        return None


class AutopilotStatus(StrEnum):
    """Email autopilot run status."""

    IDLE = "idle"
    FETCHING = "fetching"
    CLASSIFYING = "classifying"
    COMPLETE = "complete"
    ERROR = "error"


class StepName(StrEnum):
    """Wire tags of the automation step variants."""

    PROMPT = "prompt"
    SEMANTIC_SEARCH = "semantic-search"
    EMAIL_SUMMARY = "email-summary"
    MEETING_PREP = "meeting-prep"
    FINRA_COMPLIANCE = "finra-compliance"
    LEAD_SCORING = "lead-scoring"
    POST_SAFELY = "post-safely"
    STRATEGIC_PLAN = "strategic-plan"
    BUSINESS_COACH = "business-coach"
    ABOUT_ME = "about-me"
    SOCIAL_MEDIA_PLANNER = "social-media-planner"
