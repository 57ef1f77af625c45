"""Automation endpoints."""

import asyncio

import structlog
from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel, Field

from knapsack.api.deps import EngineDep
from knapsack.application.errors import AutomationError, EngineError
from knapsack.domain.models import Automation

logger = structlog.get_logger()

router = APIRouter(prefix="/automations", tags=["automations"])


class CadenceResponse(BaseModel):
    """A cadence of an automation."""

    cadence_type: str
    day_of_week: str | None
    time: str | None


class AutomationResponse(BaseModel):
    """Response model for an automation."""

    uuid: str
    id: int | None
    name: str
    description: str
    is_active: bool
    is_beta: bool
    show_library: bool
    icon: str | None
    steps: list[str]
    data_sources: list[str]
    cadences: list[CadenceResponse]
    runs: int


class RunRequest(BaseModel):
    """Request model for running an automation."""

    feed_item_id: int | None = None


class RunResponse(BaseModel):
    """Response model for a started run."""

    uuid: str
    needs_auth: bool


class PreviewResponse(BaseModel):
    """Response model for a preview."""

    uuid: str
    message: str
    documents: list[int] = Field(default_factory=list)


class ActiveUpdate(BaseModel):
    """Request model for enabling or disabling an automation."""

    is_active: bool


def _to_response(automation: Automation) -> AutomationResponse:
    return AutomationResponse(
        uuid=automation.uuid,
        id=automation.id,
        name=automation.name,
        description=automation.description,
        is_active=automation.is_active,
        is_beta=automation.is_beta,
        show_library=automation.show_library,
        icon=automation.icon,
        steps=[step.name for step in automation.steps],
        data_sources=[source.value for source in automation.data_sources()],
        cadences=[
            CadenceResponse(
                cadence_type=cadence.cadence_type.value,
                day_of_week=cadence.day_of_week.value if cadence.day_of_week else None,
                time=cadence.time,
            )
            for cadence in automation.cadences
        ],
        runs=len(automation.runs),
    )


def _require(engine: EngineDep, automation_uuid: str) -> Automation:
    automation = engine.automations.get(automation_uuid)
    if automation is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Automation not found")
    return automation


@router.get("")
async def list_automations(engine: EngineDep) -> list[AutomationResponse]:
    """List all automations."""
    return [_to_response(automation) for automation in engine.automations.automations.values()]


@router.get("/{automation_uuid}")
async def get_automation(automation_uuid: str, engine: EngineDep) -> AutomationResponse:
    """Get an automation by uuid."""
    return _to_response(_require(engine, automation_uuid))


@router.put("/{automation_uuid}/active")
async def set_active(automation_uuid: str, data: ActiveUpdate, engine: EngineDep) -> AutomationResponse:
    """Enable or disable cadence triggering of an automation."""
    automation = _require(engine, automation_uuid)
    automation.set_is_active(data.is_active)
    try:
        await engine.automations.update(automation)
    except EngineError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=e.message) from e
    return _to_response(automation)


@router.delete("/{automation_uuid}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_automation(automation_uuid: str, engine: EngineDep) -> None:
    """Delete an automation."""
    automation = _require(engine, automation_uuid)
    try:
        await engine.automations.delete(automation)
    except EngineError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=e.message) from e


@router.post("/{automation_uuid}/run", status_code=status.HTTP_202_ACCEPTED)
async def run_automation(automation_uuid: str, engine: EngineDep, data: RunRequest | None = None) -> RunResponse:
    """Start an automation; its answer is recorded on the feed."""
    _require(engine, automation_uuid)
    feed_item_id = data.feed_item_id if data else None
    try:
        needs_auth = await engine.run_automation(automation_uuid, feed_item_id)
    except AutomationError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=e.message) from e
    return RunResponse(uuid=automation_uuid, needs_auth=needs_auth)


@router.post("/{automation_uuid}/preview")
async def preview_automation(automation_uuid: str, engine: EngineDep) -> PreviewResponse:
    """Run an automation without recording it and wait for the answer."""
    _require(engine, automation_uuid)
    loop = asyncio.get_running_loop()
    answer: asyncio.Future[tuple[str, list[int]]] = loop.create_future()

    def on_finish(message: str, documents: list[int]) -> None:
        if not answer.done():
            answer.set_result((message, documents))

    def on_error(error: Exception) -> None:
        if not answer.done():
            answer.set_exception(error)

    try:
        await engine.preview_automation(automation_uuid, on_finish, on_error)
        message, documents = await asyncio.wait_for(answer, timeout=engine.settings.llm_timeout)
    except TimeoutError as e:
        raise HTTPException(status_code=status.HTTP_504_GATEWAY_TIMEOUT, detail="Preview timed out") from e
    except AutomationError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=e.message) from e
    except EngineError as e:
        logger.warning("Preview failed", automation=automation_uuid, error=e.message)
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=e.message) from e
    return PreviewResponse(uuid=automation_uuid, message=message, documents=documents)
