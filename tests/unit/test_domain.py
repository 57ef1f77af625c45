"""Tests for domain models, cadences, feed labels and the priority queue."""

from datetime import UTC, datetime, timedelta
from uuid import UUID

import pytest

from knapsack.application.steps.search import PromptStep, SemanticSearchStep
from knapsack.domain.cadence import cadence_matches, find_cadence
from knapsack.domain.enums import (
    AutopilotAction,
    CadenceType,
    ConnectionKey,
    DataSource,
    DayOfWeek,
    EmailImportance,
    Provider,
)
from knapsack.domain.models import (
    Automation,
    AutomationRun,
    Cadence,
    ClassificationProgress,
    EmailMessage,
    automation_uuid,
)
from knapsack.domain.priority_queue import PriorityQueue
from knapsack.domain.timeline import COMING_UP, TUTORIAL, ordinal, timeline_key

SATURDAY_9AM = datetime(2025, 10, 18, 9, 0, tzinfo=UTC)


def _email(**overrides: object) -> EmailMessage:
    fields: dict[str, object] = {
        "document_id": 1,
        "email_uid": "uid-1",
        "thread_id": "t-1",
        "subject": "Hello",
        "sender": "alice@example.com",
        "date": SATURDAY_9AM,
    }
    fields.update(overrides)
    return EmailMessage(**fields)  # type: ignore[arg-type]


class TestCadenceMatches:
    """Tests for cadence_matches."""

    def test_every_minute_always_matches(self) -> None:
        """Test every-minute cadences fire at any minute."""
        cadence = Cadence(cadence_type=CadenceType.EVERY_MINUTE)
        assert cadence_matches(cadence, SATURDAY_9AM + timedelta(minutes=7))

    def test_hourly_matches_on_the_hour(self) -> None:
        """Test hourly cadences fire at minute zero only."""
        cadence = Cadence(cadence_type=CadenceType.HOURLY)
        assert cadence_matches(cadence, SATURDAY_9AM)
        assert not cadence_matches(cadence, SATURDAY_9AM + timedelta(minutes=1))

    def test_daily_matches_time(self) -> None:
        """Test daily cadences compare HH:MM."""
        cadence = Cadence(cadence_type=CadenceType.DAILY, time="09:00")
        assert cadence_matches(cadence, SATURDAY_9AM)
        assert not cadence_matches(cadence, SATURDAY_9AM + timedelta(minutes=1))

    def test_daily_ignores_seconds_in_time(self) -> None:
        """Test backend times with seconds still match."""
        cadence = Cadence(cadence_type=CadenceType.DAILY, time="09:00:00")
        assert cadence_matches(cadence, SATURDAY_9AM)

    def test_weekly_requires_day_and_time(self) -> None:
        """Test weekly cadences need both the weekday and the time."""
        saturday = Cadence(cadence_type=CadenceType.WEEKLY, day_of_week=DayOfWeek.SATURDAY, time="09:00")
        monday = Cadence(cadence_type=CadenceType.WEEKLY, day_of_week=DayOfWeek.MONDAY, time="09:00")
        assert cadence_matches(saturday, SATURDAY_9AM)
        assert not cadence_matches(monday, SATURDAY_9AM)

    @pytest.mark.parametrize("cadence_type", [CadenceType.NEVER, CadenceType.OTHER])
    def test_never_and_other_never_match(self, cadence_type: CadenceType) -> None:
        """Test never and other cadences do not fire."""
        assert not cadence_matches(Cadence(cadence_type=cadence_type, time="09:00"), SATURDAY_9AM)

    def test_find_cadence_returns_first_match(self) -> None:
        """Test the first due cadence wins."""
        never = Cadence(cadence_type=CadenceType.NEVER)
        daily = Cadence(cadence_type=CadenceType.DAILY, time="09:00")
        hourly = Cadence(cadence_type=CadenceType.HOURLY)
        assert find_cadence([never, daily, hourly], SATURDAY_9AM) is daily
        assert find_cadence([never], SATURDAY_9AM) is None


class TestAutomation:
    """Tests for the Automation model."""

    def test_uuid_derived_from_name(self) -> None:
        """Test the uuid is the name-based uuid5."""
        automation = Automation(name="Daily Briefing")
        assert automation.uuid == automation_uuid("Daily Briefing")
        assert UUID(automation.uuid).version == 5

    def test_explicit_uuid_kept(self) -> None:
        """Test a backend uuid is not overwritten."""
        assert Automation(name="x", uuid="abc").uuid == "abc"

    def test_data_sources_unique_in_order(self) -> None:
        """Test data sources are merged across steps without repeats."""
        automation = Automation(
            name="x",
            steps=[
                SemanticSearchStep([DataSource.GMAIL, DataSource.WEB], "a"),
                SemanticSearchStep([DataSource.WEB, DataSource.DRIVE], "b"),
                PromptStep("c"),
            ],
        )
        assert automation.data_sources() == [DataSource.GMAIL, DataSource.WEB, DataSource.DRIVE]

    def test_update_run_replaces_by_id(self) -> None:
        """Test update_run replaces the run with the given backend id."""
        first = AutomationRun(automation_uuid="a", id=1)
        second = AutomationRun(automation_uuid="a", id=2)
        automation = Automation(name="x", runs=[first, second])
        replacement = AutomationRun(automation_uuid="a", id=1, thread_id=9)

        automation.update_run(replacement, run_id=1)

        assert automation.runs == [replacement, second]

    def test_update_run_without_id_replaces_last(self) -> None:
        """Test update_run without an id replaces the most recent run."""
        automation = Automation(name="x", runs=[AutomationRun(automation_uuid="a", id=1)])
        replacement = AutomationRun(automation_uuid="a", id=5)
        automation.update_run(replacement)
        assert automation.runs == [replacement]

    def test_serialize(self) -> None:
        """Test the backend payload shape."""
        automation = Automation(
            name="x",
            description="d",
            steps=[PromptStep("hi")],
            cadences=[Cadence(cadence_type=CadenceType.WEEKLY, day_of_week=DayOfWeek.MONDAY, time="08:30")],
            runs=[AutomationRun(automation_uuid="a")],
            is_active=True,
        )

        payload = automation.serialize()

        assert payload["runs"] == []
        assert payload["cadences"] == [{"cadence_type": "weekly", "day_of_week": "Monday", "time": "08:30"}]
        assert payload["steps"] == [{"name": "prompt", "args_json": '{"userPrompt": "hi"}', "ordering": 0}]
        assert payload["is_active"] is True


class TestAutomationRun:
    """Tests for AutomationRun."""

    def test_params_decodes_json_string(self) -> None:
        """Test string run params are decoded."""
        run = AutomationRun(automation_uuid="a", run_params='{"event_id": 7}')
        assert run.params() == {"event_id": 7}

    def test_params_empty(self) -> None:
        """Test missing run params give an empty mapping."""
        assert AutomationRun(automation_uuid="a").params() == {}
        assert AutomationRun(automation_uuid="a", run_params="").params() == {}

    def test_is_due(self) -> None:
        """Test only scheduled, unexecuted, past runs are due."""
        due = AutomationRun(automation_uuid="a", schedule_date=SATURDAY_9AM)
        future = AutomationRun(automation_uuid="a", schedule_date=SATURDAY_9AM + timedelta(minutes=1))
        executed = AutomationRun(automation_uuid="a", schedule_date=SATURDAY_9AM, execution_date=SATURDAY_9AM)
        unscheduled = AutomationRun(automation_uuid="a")

        assert due.is_due(SATURDAY_9AM)
        assert not future.is_due(SATURDAY_9AM)
        assert not executed.is_due(SATURDAY_9AM)
        assert not unscheduled.is_due(SATURDAY_9AM)


class TestEmailMessage:
    """Tests for EmailMessage flags."""

    def test_needs_attention(self) -> None:
        """Test starred or unread inbox mail needs attention."""
        assert _email(is_starred=True, is_read=True).needs_attention
        assert _email(is_read=False).needs_attention
        assert not _email(is_read=True).needs_attention
        assert not _email(is_read=False, is_archived=True).needs_attention

    def test_is_handled(self) -> None:
        """Test mail read, archived or deleted elsewhere counts as handled."""
        assert not _email(is_read=False).is_handled
        assert _email(is_read=True).is_handled
        assert _email(is_read=False, is_archived=True).is_handled
        assert _email(is_read=False, is_deleted=True).is_handled


class TestEnums:
    """Tests for enum helpers."""

    def test_connection_key_provider(self) -> None:
        """Test the provider is the key's prefix."""
        assert ConnectionKey.GOOGLE_GMAIL.provider == Provider.GOOGLE
        assert ConnectionKey.MICROSOFT_OUTLOOK.provider == Provider.MICROSOFT
        assert ConnectionKey.LOCAL_FILES.provider == Provider.LOCAL

    def test_data_source_connection(self) -> None:
        """Test sources map to their connection, the web to none."""
        assert DataSource.GMAIL.connection_key == ConnectionKey.GOOGLE_GMAIL
        assert DataSource.WEB.connection_key is None

    def test_importance_priorities(self) -> None:
        """Test drain priorities descend from important to unclassified."""
        priorities = [importance.priority for importance in EmailImportance]
        assert priorities == sorted(priorities, reverse=True)
        assert EmailImportance.IMPORTANT_NEEDS_RESPONSE.needs_draft
        assert not EmailImportance.MARKETING.needs_draft

    def test_action_extra_action(self) -> None:
        """Test archive and delete actions carry their mailbox side effect."""
        assert AutopilotAction.REPLY_DELETE.extra_action == "delete"
        assert AutopilotAction.ARCHIVE.extra_action == "archive"
        assert AutopilotAction.MARK_AS_READ.extra_action is None
        assert AutopilotAction.SEND_REPLY.is_reply
        assert AutopilotAction.DELETE.is_ignore


class TestClassificationProgress:
    """Tests for ClassificationProgress."""

    def test_advance_is_capped(self) -> None:
        """Test progress never passes the total."""
        progress = ClassificationProgress(total=7)
        progress.advance(3)
        progress.advance(10)
        assert progress.current == 7
        assert progress.is_complete


class TestTimeline:
    """Tests for feed day labels."""

    @pytest.mark.parametrize(
        ("day", "expected"),
        [(1, "1st"), (2, "2nd"), (3, "3rd"), (4, "4th"), (11, "11th"), (12, "12th"), (13, "13th"), (22, "22nd")],
    )
    def test_ordinal(self, day: int, expected: str) -> None:
        """Test English ordinal suffixes."""
        assert ordinal(day) == expected

    def test_today_and_yesterday(self) -> None:
        """Test the two most recent days get relative labels."""
        assert timeline_key(SATURDAY_9AM.replace(hour=1), SATURDAY_9AM) == "Today, Oct 18th"
        assert timeline_key(SATURDAY_9AM - timedelta(days=1), SATURDAY_9AM) == "Yesterday, Oct 17th"

    def test_older_day(self) -> None:
        """Test older days show the weekday."""
        assert timeline_key(SATURDAY_9AM - timedelta(days=7), SATURDAY_9AM) == "Sat Oct 11th"

    def test_future_and_tutorial(self) -> None:
        """Test future days and epoch items get fixed labels."""
        assert timeline_key(SATURDAY_9AM + timedelta(days=1), SATURDAY_9AM) == COMING_UP
        assert timeline_key(datetime(1970, 1, 1, tzinfo=UTC), SATURDAY_9AM) == TUTORIAL


class TestPriorityQueue:
    """Tests for PriorityQueue."""

    def test_higher_priority_first_fifo_within_priority(self) -> None:
        """Test ordering by priority, then arrival."""
        queue: PriorityQueue[str] = PriorityQueue()
        queue.enqueue("low", 1)
        queue.enqueue("high-a", 5)
        queue.enqueue("mid", 3)
        queue.enqueue("high-b", 5)

        assert queue.to_list() == ["high-a", "high-b", "mid", "low"]
        assert queue.peek() == "high-a"
        assert queue.dequeue() == "high-a"
        assert len(queue) == 3

    def test_empty(self) -> None:
        """Test an empty queue returns None."""
        queue: PriorityQueue[int] = PriorityQueue()
        assert queue.is_empty()
        assert queue.dequeue() is None
        assert queue.peek() is None
        queue.enqueue(1, 0)
        assert not queue.is_empty()
        assert queue.dequeue() == 1
        assert queue.is_empty()
