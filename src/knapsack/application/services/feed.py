"""Day-bucketed feed store."""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import replace
from datetime import datetime

import structlog

from knapsack.application.errors import EngineError
from knapsack.application.ports.backend import Backend
from knapsack.config import Settings, get_settings
from knapsack.domain.models import FeedItem, Thread
from knapsack.domain.timeline import STATIONARY, timeline_key

from .executor import RunResult

logger = structlog.get_logger()

AUTOPILOT_TITLE = "Email Autopilot"

Buckets = dict[str, list[FeedItem]]


class FeedStore:
    """Feed items grouped by day label.

    Every change builds a new bucket map under a lock and swaps it in, so a
    reader never sees a half-applied update. An item id lives in at most one
    bucket.
    """

    def __init__(
        self,
        backend: Backend,
        settings: Settings | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the store.

        Args:
            backend: Backend adapter.
            settings: Settings, loaded from the environment when omitted.
            clock: Returns the current local time.

        """
        self._backend = backend
        self._settings = settings or get_settings()
        self._clock = clock or self._settings.now
        self._buckets: Buckets = {}
        self._lock = asyncio.Lock()

    @property
    def buckets(self) -> Buckets:
        """Current snapshot of the buckets."""
        return self._buckets

    def key_for(self, item: FeedItem) -> str:
        """Bucket label of an item."""
        if item.title == AUTOPILOT_TITLE:
            return STATIONARY
        return timeline_key(item.timestamp, self._clock())

    def find(self, item_id: int) -> FeedItem | None:
        """Find an item in any bucket."""
        for items in self._buckets.values():
            for item in items:
                if item.id == item_id:
                    return item
        return None

    def items(self) -> list[FeedItem]:
        """All items across buckets."""
        return [item for items in self._buckets.values() for item in items]

    @staticmethod
    def _without(buckets: Buckets, item_id: int) -> Buckets:
        pruned: Buckets = {}
        for key, items in buckets.items():
            kept = [item for item in items if item.id != item_id]
            if kept:
                pruned[key] = kept
        return pruned

    def _placed(self, buckets: Buckets, item: FeedItem) -> Buckets:
        placed = self._without(buckets, item.id)
        key = self.key_for(item)
        placed[key] = sorted([*placed.get(key, []), item], key=lambda entry: entry.timestamp)
        return placed

    async def refresh(self) -> Buckets:
        """Reload the feed from the backend.

        The Email Autopilot tile is kept once in the stationary bucket; when a
        user is signed in and the tile does not exist yet it is created.
        """
        user_email = self._settings.user_email
        items = await self._backend.get_feed_items(user_email)

        buckets: Buckets = {}
        for item in items:
            if item.deleted:
                continue
            if item.title == AUTOPILOT_TITLE and buckets.get(STATIONARY):
                continue
            buckets = self._placed(buckets, item)

        if user_email and not buckets.get(STATIONARY):
            tile = await self._backend.insert_feed_item(AUTOPILOT_TITLE, self._clock())
            buckets = self._placed(buckets, tile)
            logger.info("Email Autopilot tile created", item_id=tile.id)

        async with self._lock:
            self._buckets = buckets
        return self._buckets

    async def insert(self, item: FeedItem) -> None:
        """Add or move an item; an existing copy with the same id is replaced."""
        async with self._lock:
            self._buckets = self._placed(self._buckets, item)

    async def _update(self, item_id: int, update: Callable[[FeedItem], FeedItem]) -> FeedItem | None:
        async with self._lock:
            item = self.find(item_id)
            if item is None:
                logger.debug("Feed item not found", item_id=item_id)
                return None
            updated = update(item)
            self._buckets = self._placed(self._buckets, updated)
            return updated

    async def _modify(self, item_id: int, **changes: object) -> FeedItem | None:
        return await self._update(item_id, lambda item: replace(item, **changes))  # type: ignore[arg-type]

    async def set_loading(self, item_id: int, *, is_loading: bool) -> FeedItem | None:
        """Set the loading flag of an item."""
        return await self._modify(item_id, is_loading=is_loading)

    async def update_threads(self, item_id: int, threads: list[Thread]) -> FeedItem | None:
        """Replace an item's threads and clear its loading flag."""
        return await self._modify(item_id, threads=list(threads), is_loading=False)

    async def insert_thread(self, item_id: int, thread: Thread) -> FeedItem | None:
        """Append a thread to an item."""
        return await self._update(item_id, lambda item: replace(item, threads=[*item.threads, thread]))

    async def update_title(self, item_id: int, title: str) -> FeedItem | None:
        """Rename an item on the backend, then locally."""
        await self._backend.update_feed_item(item_id, title)
        return await self._modify(item_id, title=title)

    async def delete(self, item_id: int) -> None:
        """Soft-delete an item on the backend, then drop it from every bucket.

        Raises:
            EngineError: If the backend refused; the item is kept.

        """
        await self._backend.delete_feed_item(item_id)
        async with self._lock:
            self._buckets = self._without(self._buckets, item_id)
        logger.info("Feed item deleted", item_id=item_id)

    def pending_runs(self, now: datetime) -> list[FeedItem]:
        """Items whose run is due and not yet executed."""
        return [item for item in self.items() if item.run is not None and item.run.is_due(now)]

    async def success_handler(self, result: RunResult) -> None:
        """Record a finished automation answer and attach its threads to the feed item."""
        feed_item = result.feed_item
        threads = await self._backend.insert_automation_run(
            automation_uuid=result.automation.uuid,
            user_email=result.user_email,
            prompt=result.prompt,
            prompt_facade=result.prompt_facade,
            result=result.response,
            documents=result.documents,
            executed_at=result.executed_at or self._clock(),
            run_id=result.run.id if result.run else None,
            thread_id=result.run.thread_id if result.run else None,
            feed_item_id=feed_item.id if feed_item else None,
        )
        if feed_item is not None:
            await self.update_threads(feed_item.id, threads)

    async def error_handler(self, error: Exception) -> None:
        """Reload the feed after a failed run so stale loading tiles are replaced."""
        logger.info("Refreshing feed after failed run", error=str(error))
        try:
            await self.refresh()
        except EngineError as e:
            logger.warning("Failed to refresh feed", error=str(e))

    def error_handler_for(self, item_id: int | None) -> Callable[[Exception], Awaitable[None]]:
        """Return an error handler that first stops the item's loading flag."""

        async def handle(error: Exception) -> None:
            if item_id is not None:
                await self.set_loading(item_id, is_loading=False)
            await self.error_handler(error)

        return handle
