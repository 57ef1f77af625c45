"""Meeting preparation step."""

import structlog

from knapsack.domain.enums import AutomationTrigger, DataSource, StepName
from knapsack.domain.models import AdditionalDocument, Meeting, SourceDocument

from .base import EVENT_ID, TRIGGER, Step, StepContext, StepHelpers, require_user_email, unique_ids

logger = structlog.get_logger()


def _domain(address: str) -> str:
    return address.rsplit("@", 1)[-1].lower()


class MeetingPrepStep(Step):
    """Brief the user on a meeting: participants, shared mail and documents.

    The meeting is the run's ``event_id`` when given, otherwise the next
    meeting on the calendar. Without a meeting the step is a no-op.
    """

    name = StepName.MEETING_PREP
    data_sources = (DataSource.GOOGLE_CALENDAR, DataSource.GMAIL)

    async def _load_meeting(self, context: StepContext, helpers: StepHelpers) -> Meeting | None:
        event_id = context.get(EVENT_ID)
        if event_id:
            return await helpers.backend.get_calendar_event(str(event_id))
        meetings = await helpers.backend.get_recent_calendar_events()
        return meetings[0] if meetings else None

    async def execute(self, context: StepContext, helpers: StepHelpers) -> StepContext:
        user_email = require_user_email(context)

        if context.get(TRIGGER) == AutomationTrigger.CLICK:
            await helpers.wait_until_ready(user_email)

        meeting = await self._load_meeting(context, helpers)
        if meeting is None:
            logger.info("No meeting to prepare for", event_id=context.get(EVENT_ID))
            return dict(context)

        own_domain = _domain(user_email)
        addresses = [p.email for p in meeting.participants if p.email.lower() != user_email.lower()]
        external = [address for address in addresses if _domain(address) != own_domain]

        emails = await helpers.backend.search_emails_by_addresses(addresses) if addresses else []
        drive_ids = await helpers.backend.get_drive_document_ids(addresses) if addresses else []

        web_response: list[AdditionalDocument] = []
        if external:
            web_response = await helpers.web_search.search(f"{_domain(external[0])} about")

        email_ids = unique_ids(email.document_id for email in emails)
        document_ids = unique_ids(email_ids, drive_ids)
        documents: list[SourceDocument] = []
        if document_ids:
            types = ["email"] * len(email_ids) + ["drive"] * (len(document_ids) - len(email_ids))
            documents = await helpers.backend.get_document_infos(document_ids, types, user_email)

        participants = ", ".join(p.name or p.email for p in meeting.participants)
        await helpers.run_chatbot(
            prompt=(
                f"Prepare me for the meeting '{meeting.title}' at {meeting.start:%H:%M} with {participants}. "
                "Summarize who is attending, what we recently discussed and what I should raise."
            ),
            documents=[doc.document_id for doc in documents],
            additional_documents=web_response,
            semantic_search_query="Prepare for meeting",
        )
        return dict(context)
