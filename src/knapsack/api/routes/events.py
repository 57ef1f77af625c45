"""Recent engine events."""

from dataclasses import asdict
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Query
from pydantic import BaseModel

from knapsack.api.deps import EventLogDep

router = APIRouter(prefix="/events", tags=["events"])


class EventResponse(BaseModel):
    """An event published on the message bus."""

    type: str
    timestamp: datetime
    data: dict[str, Any]


@router.get("")
async def list_events(event_log: EventLogDep, limit: int = Query(default=50, ge=1, le=100)) -> list[EventResponse]:
    """Most recent events, oldest first."""
    responses: list[EventResponse] = []
    for event in event_log.recent(limit):
        data = asdict(event)
        timestamp = data.pop("timestamp")
        responses.append(EventResponse(type=type(event).__name__, timestamp=timestamp, data=data))
    return responses
