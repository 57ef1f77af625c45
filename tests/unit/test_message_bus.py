"""Tests for InMemoryMessageBus."""

import asyncio
from datetime import UTC, datetime

import pytest

from knapsack.domain.events import AutomationFailed, AutomationStarted, Event, RunScheduled
from knapsack.infrastructure.bus.memory import EventLog, InMemoryMessageBus


@pytest.fixture
def bus() -> InMemoryMessageBus:
    """Return a new InMemoryMessageBus instance."""
    return InMemoryMessageBus()


@pytest.fixture
def sample_event() -> AutomationStarted:
    """Return a sample event."""
    return AutomationStarted(automation_uuid="uuid-1", trigger="click")


class TestInMemoryMessageBusInit:
    """Tests for message bus initialization."""

    def test_init_not_running(self) -> None:
        """Test bus is not running after init."""
        bus = InMemoryMessageBus(max_queue_size=10)
        assert bus.is_running is False
        assert bus.queue_size == 0


class TestSubscribe:
    """Tests for subscribe/unsubscribe."""

    def test_subclass_handlers(self, bus: InMemoryMessageBus, sample_event: AutomationStarted) -> None:
        """Test handlers of base classes receive subclass events once."""

        async def specific(event: Event) -> None:
            pass

        async def everything(event: Event) -> None:
            pass

        bus.subscribe(AutomationStarted, specific)
        bus.subscribe(Event, everything)
        bus.subscribe(Event, everything)

        assert bus.handlers_for(sample_event) == [specific, everything]
        assert bus.handlers_for(AutomationFailed(automation_uuid="u", error_type="x", error_message="m")) == [
            everything
        ]

    def test_unsubscribe(self, bus: InMemoryMessageBus, sample_event: AutomationStarted) -> None:
        """Test unsubscribed and unknown handlers are handled."""

        async def handler(event: Event) -> None:
            pass

        bus.subscribe(AutomationStarted, handler)
        bus.unsubscribe(AutomationStarted, handler)
        bus.unsubscribe(AutomationStarted, handler)

        assert bus.handlers_for(sample_event) == []


class TestDelivery:
    """Tests for publishing and delivery."""

    @pytest.mark.asyncio
    async def test_events_delivered_in_order(self, bus: InMemoryMessageBus) -> None:
        """Test events reach handlers in publish order."""
        received: list[str] = []

        async def handler(event: Event) -> None:
            assert isinstance(event, AutomationStarted)
            received.append(event.automation_uuid)

        bus.subscribe(AutomationStarted, handler)
        await bus.start()
        for uuid in ("a", "b", "c"):
            await bus.publish(AutomationStarted(automation_uuid=uuid, trigger="cadence"))
        await bus.stop()

        assert received == ["a", "b", "c"]

    @pytest.mark.asyncio
    async def test_failing_handler_isolated(self, bus: InMemoryMessageBus, sample_event: AutomationStarted) -> None:
        """Test one failing handler does not stop the others."""
        received: list[Event] = []

        async def failing(event: Event) -> None:
            msg = "boom"
            raise RuntimeError(msg)

        async def working(event: Event) -> None:
            received.append(event)

        bus.subscribe(Event, failing)
        bus.subscribe(Event, working)
        await bus.start()
        await bus.publish(sample_event)
        await bus.publish(sample_event)
        await bus.stop()

        assert received == [sample_event, sample_event]

    @pytest.mark.asyncio
    async def test_start_twice_and_stop_idle(self, bus: InMemoryMessageBus) -> None:
        """Test repeated start is ignored and stopping an idle bus is a no-op."""
        await bus.stop()
        await bus.start()
        await bus.start()
        assert bus.is_running

        await bus.stop()
        assert not bus.is_running

    @pytest.mark.asyncio
    async def test_publish_queues_until_started(self, bus: InMemoryMessageBus, sample_event: AutomationStarted) -> None:
        """Test events wait in the queue until the worker runs."""
        await bus.publish(sample_event)
        assert bus.queue_size == 1

        await bus.start()
        await bus.stop()
        assert bus.queue_size == 0


class TestEventLog:
    """Tests for EventLog."""

    @pytest.mark.asyncio
    async def test_records_recent_events(self, bus: InMemoryMessageBus) -> None:
        """Test the log keeps the newest events up to its limit."""
        log = EventLog(bus, limit=2)
        await bus.start()
        for uuid in ("a", "b", "c"):
            await bus.publish(RunScheduled(automation_uuid=uuid, schedule_date=datetime.now(UTC)))
        await bus.stop()

        assert [event.automation_uuid for event in log.recent()] == ["b", "c"]
        assert [event.automation_uuid for event in log.recent(1)] == ["c"]

    @pytest.mark.asyncio
    async def test_close_stops_recording(self, bus: InMemoryMessageBus, sample_event: AutomationStarted) -> None:
        """Test a closed log records nothing new."""
        log = EventLog(bus)
        log.close()

        await log.record(sample_event)
        await bus.start()
        await bus.publish(sample_event)
        await asyncio.sleep(0)
        await bus.stop()

        assert log.recent() == [sample_event]
