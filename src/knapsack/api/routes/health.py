"""Health check endpoints."""

from fastapi import APIRouter
from pydantic import BaseModel

from knapsack import __version__
from knapsack.api.deps import get_engine, get_scheduler

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str


class ReadyResponse(BaseModel):
    """Readiness check response."""

    status: str
    engine: str
    scheduler: str


@router.get("/health")
async def health_check() -> HealthResponse:
    """Return basic health status."""
    return HealthResponse(status="ok", version=__version__)


@router.get("/health/ready")
async def readiness_check() -> ReadyResponse:
    """Readiness check - verifies the engine and the tick scheduler are running."""
    try:
        engine_status = "ok" if get_engine().is_running else "stopped"
    except RuntimeError:
        engine_status = "not configured"

    scheduler = get_scheduler()
    if scheduler is None:
        scheduler_status = "not configured"
    elif scheduler.is_running:
        scheduler_status = "ok"
    else:
        scheduler_status = "stopped"

    overall_status = "ok" if engine_status == "ok" and scheduler_status == "ok" else "degraded"
    return ReadyResponse(status=overall_status, engine=engine_status, scheduler=scheduler_status)
