"""Email autopilot endpoints."""

from datetime import datetime

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel, Field

from knapsack.api.deps import EngineDep
from knapsack.application.errors import EngineError
from knapsack.domain.enums import AutopilotAction, EmailImportance, Provider
from knapsack.domain.models import DisplayEmail

router = APIRouter(prefix="/autopilot", tags=["autopilot"])


class EmailResponse(BaseModel):
    """A triaged email."""

    email_uid: str
    document_id: int
    subject: str
    sender: str
    date: datetime
    importance: EmailImportance
    summary: list[str] = Field(default_factory=list)
    was_ignored: bool
    was_reply_sent: bool
    drafted_reply: str | None


class AutopilotResponse(BaseModel):
    """Autopilot status, progress and buckets."""

    status: str
    current: int
    total: int
    buckets: dict[EmailImportance, list[EmailResponse]]


class RunResponse(BaseModel):
    """Emails submitted for classification."""

    submitted: int


class ActionRequest(BaseModel):
    """Request model for an email action."""

    action: AutopilotAction
    provider: Provider = Provider.GOOGLE
    drafted_reply: str | None = None


def _email(entry: DisplayEmail) -> EmailResponse:
    message = entry.message
    return EmailResponse(
        email_uid=message.email_uid,
        document_id=message.document_id,
        subject=message.subject,
        sender=message.sender,
        date=message.date,
        importance=entry.importance,
        summary=entry.classification.summary if entry.classification else [],
        was_ignored=entry.was_ignored,
        was_reply_sent=entry.was_reply_sent,
        drafted_reply=entry.drafted_reply,
    )


@router.get("")
async def get_autopilot(engine: EngineDep) -> AutopilotResponse:
    """Autopilot status and triaged buckets."""
    autopilot = engine.autopilot
    return AutopilotResponse(
        status=autopilot.status.value,
        current=autopilot.progress.current,
        total=autopilot.progress.total,
        buckets={
            importance: [_email(entry) for entry in entries] for importance, entries in autopilot.classified.items()
        },
    )


@router.post("/run", status_code=status.HTTP_202_ACCEPTED)
async def run_autopilot(engine: EngineDep) -> RunResponse:
    """Start triaging recent mail."""
    try:
        submitted = await engine.run_email_autopilot()
    except EngineError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=e.message) from e
    return RunResponse(submitted=submitted)


@router.post("/emails/{email_uid}/actions")
async def take_action(email_uid: str, data: ActionRequest, engine: EngineDep) -> EmailResponse:
    """Apply a user action to a triaged email."""
    try:
        entry = await engine.autopilot.take_action(email_uid, data.action, data.provider, data.drafted_reply)
    except EngineError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=e.message) from e
    if entry is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Email not found")
    return _email(entry)
