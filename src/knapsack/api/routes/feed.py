"""Feed endpoints."""

from datetime import datetime

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel

from knapsack.api.deps import EngineDep
from knapsack.application.errors import EngineError
from knapsack.domain.models import FeedItem, Thread

router = APIRouter(prefix="/feed", tags=["feed"])


class MessageResponse(BaseModel):
    """A thread message."""

    id: int
    user_type: str
    text: str
    date: datetime


class ThreadResponse(BaseModel):
    """A feed item thread."""

    id: int
    date: datetime
    title: str | None
    subtitle: str | None
    thread_type: str | None
    hide_follow_up: bool
    messages: list[MessageResponse]


class FeedItemResponse(BaseModel):
    """A feed tile."""

    id: int
    timestamp: datetime
    title: str
    automation_uuid: str | None
    is_loading: bool
    run_scheduled_at: datetime | None
    run_executed_at: datetime | None
    threads: list[ThreadResponse]


class FeedBucketResponse(BaseModel):
    """Feed items sharing a day label."""

    label: str
    items: list[FeedItemResponse]


def _thread(thread: Thread) -> ThreadResponse:
    return ThreadResponse(
        id=thread.id,
        date=thread.date,
        title=thread.title,
        subtitle=thread.subtitle,
        thread_type=thread.thread_type,
        hide_follow_up=thread.hide_follow_up,
        messages=[
            MessageResponse(id=message.id, user_type=message.user_type, text=message.text, date=message.date)
            for message in thread.messages
        ],
    )


def _item(item: FeedItem) -> FeedItemResponse:
    return FeedItemResponse(
        id=item.id,
        timestamp=item.timestamp,
        title=item.title,
        automation_uuid=item.automation_uuid,
        is_loading=item.is_loading,
        run_scheduled_at=item.run.schedule_date if item.run else None,
        run_executed_at=item.run.execution_date if item.run else None,
        threads=[_thread(thread) for thread in item.threads],
    )


@router.get("")
async def get_feed(engine: EngineDep) -> list[FeedBucketResponse]:
    """Feed buckets with their items."""
    return [
        FeedBucketResponse(label=label, items=[_item(item) for item in items])
        for label, items in engine.get_feed_buckets().items()
    ]


@router.post("/refresh")
async def refresh_feed(engine: EngineDep) -> list[FeedBucketResponse]:
    """Reload the feed from the backend."""
    try:
        await engine.feed.refresh()
    except EngineError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=e.message) from e
    return await get_feed(engine)


@router.delete("/{item_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_feed_item(item_id: int, engine: EngineDep) -> None:
    """Delete a feed item."""
    if engine.feed.find(item_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Feed item not found")
    try:
        await engine.feed.delete(item_id)
    except EngineError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=e.message) from e
