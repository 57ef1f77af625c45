"""FastAPI dependencies for dependency injection."""

from typing import Annotated

from fastapi import Depends

from knapsack.application.services.engine import Engine
from knapsack.infrastructure.bus.memory import EventLog, InMemoryMessageBus
from knapsack.infrastructure.scheduler.apscheduler import EngineScheduler


# Application state container
class _AppState:
    """Container for application-level state."""

    engine: Engine | None = None
    message_bus: InMemoryMessageBus | None = None
    event_log: EventLog | None = None
    scheduler: EngineScheduler | None = None


_state = _AppState()


def get_engine() -> Engine:
    """Get the engine instance."""
    if _state.engine is None:
        msg = "Engine not initialized"
        raise RuntimeError(msg)
    return _state.engine


def set_engine(engine: Engine | None) -> None:
    """Set the engine instance."""
    _state.engine = engine


def get_message_bus() -> InMemoryMessageBus:
    """Get the global message bus instance."""
    if _state.message_bus is None:
        msg = "Message bus not initialized"
        raise RuntimeError(msg)
    return _state.message_bus


def set_message_bus(bus: InMemoryMessageBus | None) -> None:
    """Set the global message bus instance."""
    _state.message_bus = bus


def get_event_log() -> EventLog:
    """Get the recent event log."""
    if _state.event_log is None:
        msg = "Event log not initialized"
        raise RuntimeError(msg)
    return _state.event_log


def set_event_log(event_log: EventLog | None) -> None:
    """Set the recent event log."""
    _state.event_log = event_log


def get_scheduler() -> EngineScheduler | None:
    """Get the scheduler instance."""
    return _state.scheduler


def set_scheduler(scheduler: EngineScheduler | None) -> None:
    """Set the scheduler instance."""
    _state.scheduler = scheduler


# Type aliases for dependency injection
EngineDep = Annotated[Engine, Depends(get_engine)]
MessageBusDep = Annotated[InMemoryMessageBus, Depends(get_message_bus)]
EventLogDep = Annotated[EventLog, Depends(get_event_log)]
