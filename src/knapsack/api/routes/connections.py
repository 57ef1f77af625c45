"""Connection endpoints."""

from datetime import datetime

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel

from knapsack.api.deps import EngineDep
from knapsack.application.errors import EngineError
from knapsack.domain.enums import ConnectionKey

router = APIRouter(prefix="/connections", tags=["connections"])


class ConnectionResponse(BaseModel):
    """Sync state of a connection."""

    key: ConnectionKey
    provider: str
    state: str
    last_synced: datetime | None
    error: str | None = None


class ConnectionsResponse(BaseModel):
    """Every connection and the ones needing re-authorization."""

    connections: list[ConnectionResponse]
    reconnect: list[ConnectionKey]


def _snapshot(engine: EngineDep) -> ConnectionsResponse:
    registry = engine.connections
    errors = registry.errors
    return ConnectionsResponse(
        connections=[
            ConnectionResponse(
                key=key,
                provider=connection.provider.value,
                state=connection.state.value,
                last_synced=connection.last_synced,
                error=errors[key].message if key in errors else None,
            )
            for key, connection in registry.connections.items()
        ],
        reconnect=registry.reconnect,
    )


@router.get("")
async def list_connections(engine: EngineDep) -> ConnectionsResponse:
    """Connection states."""
    return _snapshot(engine)


@router.post("/refresh")
async def refresh_connections(engine: EngineDep) -> ConnectionsResponse:
    """Reload connections from the backend."""
    try:
        await engine.connections.fetch_connections()
    except EngineError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=e.message) from e
    return _snapshot(engine)


@router.post("/sync", status_code=status.HTTP_202_ACCEPTED)
async def sync_connections(engine: EngineDep) -> ConnectionsResponse:
    """Start syncing every connection."""
    await engine.connections.sync_connections()
    return _snapshot(engine)


@router.post("/{key}/sync", status_code=status.HTTP_202_ACCEPTED)
async def sync_connection(key: ConnectionKey, engine: EngineDep) -> ConnectionsResponse:
    """Start syncing one connection."""
    if key not in engine.connections.connections:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Connection not found")
    await engine.connections.sync_by_key(key)
    return _snapshot(engine)
