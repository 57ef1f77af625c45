"""FastAPI application factory."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from knapsack import __version__
from knapsack.application.services.engine import Engine
from knapsack.config import get_settings
from knapsack.infrastructure.backend.client import KnapsackBackend
from knapsack.infrastructure.bus.memory import EventLog, InMemoryMessageBus
from knapsack.infrastructure.llm.client import HttpCompletionClient
from knapsack.infrastructure.notifications.log_bridge import LogNotificationBridge
from knapsack.infrastructure.scheduler.apscheduler import EngineScheduler
from knapsack.infrastructure.websearch.client import StreamingWebSearch

from .deps import set_engine, set_event_log, set_message_bus, set_scheduler
from .routes import automations, autopilot, connections, events, feed, health

# Type alias to work around Starlette type system issue
_CORSMiddleware: Any = CORSMiddleware

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None]:
    """Start the bus, the engine and the tick scheduler; stop them on exit."""
    app_settings = get_settings()
    logger.info(
        "Starting Knapsack engine",
        version=__version__,
        api_host=app_settings.api_host,
        api_port=app_settings.api_port,
        backend_url=app_settings.backend_url,
    )

    message_bus = InMemoryMessageBus()
    event_log = EventLog(message_bus)
    await message_bus.start()
    set_message_bus(message_bus)
    set_event_log(event_log)

    backend = KnapsackBackend(app_settings)
    completion_client = HttpCompletionClient(app_settings)
    web_search = StreamingWebSearch(app_settings)
    engine = Engine(backend, completion_client, web_search, LogNotificationBridge(), message_bus, app_settings)
    await engine.init()
    set_engine(engine)

    scheduler = EngineScheduler(engine.scheduler, app_settings)
    await scheduler.start()
    set_scheduler(scheduler)

    yield

    logger.info("Shutting down Knapsack engine")
    await scheduler.stop()
    await engine.shutdown()
    await backend.close()
    await completion_client.close()
    await web_search.close()
    event_log.close()
    await message_bus.stop()

    set_scheduler(None)
    set_engine(None)
    set_event_log(None)
    set_message_bus(None)


def create_app() -> FastAPI:
    """Create and configure FastAPI application."""
    app = FastAPI(
        title="Knapsack",
        description="Automation orchestration engine for the Knapsack assistant",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        _CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health.router)
    app.include_router(automations.router, prefix="/api/v1")
    app.include_router(feed.router, prefix="/api/v1")
    app.include_router(connections.router, prefix="/api/v1")
    app.include_router(autopilot.router, prefix="/api/v1")
    app.include_router(events.router, prefix="/api/v1")

    return app


# Application instance for uvicorn
app = create_app()
