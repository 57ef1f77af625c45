"""Connection sync state machine."""

import asyncio
import contextlib
from collections.abc import Callable, Iterable
from dataclasses import replace
from datetime import datetime

import structlog

from knapsack.application.errors import EngineError, SyncError
from knapsack.application.ports.backend import Backend
from knapsack.application.ports.message_bus import MessageBus
from knapsack.config import Settings, get_settings
from knapsack.domain.enums import ConnectionKey, ConnectionState, DataSource, Provider
from knapsack.domain.events import ConnectionSynced, ConnectionSyncFailed, Event, ReconnectRequired
from knapsack.domain.models import Connection

logger = structlog.get_logger()

# Scopes with a sync function; profile scopes only carry identity.
SYNCABLE_KEYS: dict[Provider, tuple[ConnectionKey, ...]] = {
    Provider.GOOGLE: (
        ConnectionKey.GOOGLE_DRIVE,
        ConnectionKey.GOOGLE_GMAIL,
        ConnectionKey.GOOGLE_CALENDAR,
    ),
    Provider.MICROSOFT: (
        ConnectionKey.MICROSOFT_ONEDRIVE,
        ConnectionKey.MICROSOFT_OUTLOOK,
        ConnectionKey.MICROSOFT_CALENDAR,
    ),
    Provider.LOCAL: (ConnectionKey.LOCAL_FILES,),
}


def is_syncable(key: ConnectionKey) -> bool:
    """Check whether a scope has a sync function."""
    return key in SYNCABLE_KEYS[key.provider]


class ConnectionRegistry:
    """Tracks every connection and drives its sync lifecycle.

    State transitions::

        idle / up to date / failed --sync--> syncing
        syncing --status poll--> up to date
        syncing --error--> failed (or removed, for a revoked grant)

    A connection that is already syncing is never synced again; the check
    and the transition happen without an await in between, so concurrent
    callers cannot both start a sync.
    """

    def __init__(
        self,
        backend: Backend,
        bus: MessageBus | None = None,
        settings: Settings | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the registry.

        Args:
            backend: Backend adapter.
            bus: Optional bus for sync events.
            settings: Settings, loaded from the environment when omitted.
            clock: Returns the current local time.

        """
        self._backend = backend
        self._bus = bus
        self._settings = settings or get_settings()
        self._clock = clock or self._settings.now
        self._connections: dict[ConnectionKey, Connection] = {}
        self._reconnect: list[ConnectionKey] = []
        self._errors: dict[ConnectionKey, SyncError] = {}
        self._poll_task: asyncio.Task[None] | None = None

    @property
    def connections(self) -> dict[ConnectionKey, Connection]:
        """Current snapshot of connections."""
        return self._connections

    @property
    def reconnect(self) -> list[ConnectionKey]:
        """Keys the user must re-authorize."""
        return list(self._reconnect)

    @property
    def errors(self) -> dict[ConnectionKey, SyncError]:
        """Last sync error per key."""
        return dict(self._errors)

    @property
    def is_polling(self) -> bool:
        """Check whether the sync status poll is active."""
        return self._poll_task is not None and not self._poll_task.done()

    def set_connections(self, connections: Iterable[Connection]) -> None:
        """Replace the snapshot."""
        self._connections = {connection.key: connection for connection in connections}

    def is_ready_to_sync(self, key: ConnectionKey) -> bool:
        """Check that the connection exists and is not already syncing."""
        connection = self._connections.get(key)
        return connection is not None and connection.state != ConnectionState.SYNCING

    def _update(self, key: ConnectionKey, **changes: object) -> None:
        connection = self._connections.get(key)
        if connection is None:
            return
        self._connections = {**self._connections, key: replace(connection, **changes)}  # type: ignore[arg-type]

    def _remove(self, key: ConnectionKey) -> None:
        self._connections = {k: c for k, c in self._connections.items() if k != key}

    async def _publish(self, event: Event) -> None:
        if self._bus is not None:
            await self._bus.publish(event)

    async def sync(self, key: ConnectionKey) -> None:
        """Start syncing one connection.

        Does nothing when the connection is missing, already syncing, or has
        no sync function. Failures are recorded, never raised.

        Args:
            key: Connection to sync.

        """
        if not self.is_ready_to_sync(key) or not is_syncable(key):
            logger.debug("Connection not ready to sync", key=key.value)
            return

        user_email = self._settings.user_email
        if not user_email:
            logger.debug("No signed-in user, skipping sync", key=key.value)
            return

        self._update(key, state=ConnectionState.SYNCING)
        self._errors.pop(key, None)
        self._ensure_polling()

        log = logger.bind(key=key.value)
        log.info("Connection sync started")
        try:
            await self._backend.sync_connection(key, user_email)
        except EngineError as e:
            await self._sync_failed(key, e)

    async def _sync_failed(self, key: ConnectionKey, cause: EngineError) -> None:
        error = SyncError(key.value, cause)
        self._errors[key] = error

        if error.evicts:
            self._remove(key)
            if key not in self._reconnect:
                self._reconnect.append(key)
        else:
            self._update(key, state=ConnectionState.FAILED)

        logger.warning("Connection sync failed", key=key.value, error=str(cause), evicted=error.evicts)
        await self._publish(ConnectionSyncFailed(key=key.value, error_type=cause.error_type, error_message=str(cause)))
        if error.evicts:
            await self._publish(ReconnectRequired(key=key.value))

    async def sync_connections(self) -> None:
        """Sync every ready connection of every provider concurrently."""
        keys = [key for key in self._connections if is_syncable(key) and self.is_ready_to_sync(key)]
        if not keys:
            return
        await asyncio.gather(*(self.sync(key) for key in keys))

    async def sync_by_key(self, key: ConnectionKey) -> None:
        """Reset a connection to idle and sync it."""
        self._update(key, state=ConnectionState.IDLE)
        await self.sync(key)

    async def fetch_connections(self, user_email: str | None = None) -> dict[ConnectionKey, Connection]:
        """Reload connections from the backend.

        A locally known ``up to date`` or ``syncing`` state wins over the
        backend's ``idle``, which only means the backend has no fresher news.

        """
        user_email = user_email or self._settings.user_email
        if not user_email:
            return self._connections

        fetched = await self._backend.get_connections(user_email)
        merged: dict[ConnectionKey, Connection] = {}
        for connection in fetched:
            known = self._connections.get(connection.key)
            if (
                known is not None
                and connection.state == ConnectionState.IDLE
                and known.state in (ConnectionState.UP_TO_DATE, ConnectionState.SYNCING)
            ):
                connection = replace(connection, state=known.state, last_synced=known.last_synced)
            merged[connection.key] = connection

        self._connections = merged
        self._reconnect = [key for key in self._reconnect if key not in merged]
        if self._any_syncing():
            self._ensure_polling()
        return self._connections

    def check_synced_sources(self, sources: Iterable[DataSource]) -> bool:
        """Check that no connection behind the sources is syncing or failed."""
        for source in sources:
            key = source.connection_key
            connection = self._connections.get(key) if key else None
            if connection is not None and connection.state in (ConnectionState.SYNCING, ConnectionState.FAILED):
                return False
        return True

    def _any_syncing(self) -> bool:
        return any(connection.state == ConnectionState.SYNCING for connection in self._connections.values())

    def _ensure_polling(self) -> None:
        if not self.is_polling:
            self._poll_task = asyncio.create_task(self._poll())

    async def poll_once(self) -> None:
        """Fetch sync flags once and mark finished connections up to date."""
        status = await self._backend.get_sync_status()
        now = self._clock()
        for key, syncing in status.items():
            connection = self._connections.get(key)
            if connection is None or connection.state != ConnectionState.SYNCING or syncing:
                continue
            self._update(key, state=ConnectionState.UP_TO_DATE, last_synced=now)
            logger.info("Connection synced", key=key.value)
            await self._publish(ConnectionSynced(key=key.value))

    async def _poll(self) -> None:
        """Poll sync status while any connection is syncing."""
        while self._any_syncing():
            await asyncio.sleep(self._settings.connection_poll_interval)
            try:
                await self.poll_once()
            except EngineError as e:
                logger.warning("Sync status poll failed", error=str(e))
        logger.debug("Sync status poll stopped")

    async def close(self) -> None:
        """Cancel the status poll."""
        if self._poll_task is not None:
            self._poll_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._poll_task
            self._poll_task = None
