"""Advisor steps that search every connected source for one theme."""

import asyncio
from typing import ClassVar

from knapsack.domain.enums import DataSource, StepName
from knapsack.domain.models import AdditionalDocument, SourceDocument

from .base import Step, StepContext, StepHelpers, context_moment, day_bounds, require_user_email, unique_ids

ALL_SOURCES = (
    DataSource.GMAIL,
    DataSource.DRIVE,
    DataSource.LOCAL_FILES,
    DataSource.WEB,
    DataSource.GOOGLE_CALENDAR,
)


class AdvisorStep(Step):
    """Search each indexed source separately for ``query`` and ask for advice.

    Searching per source keeps one busy source from crowding out the others
    in the top results.
    """

    data_sources = ALL_SOURCES
    prompt: ClassVar[str]
    prompt_facade: ClassVar[str | None] = None
    query: ClassVar[str]
    include_today_emails: ClassVar[bool] = False
    include_shared_drive: ClassVar[bool] = False

    async def _search(self, helpers: StepHelpers) -> list[SourceDocument]:
        indexed = [source for source in self.data_sources if source != DataSource.WEB]
        groups = await asyncio.gather(
            *(helpers.backend.semantic_search(self.query, [source], top=10) for source in indexed),
        )
        return [doc for group in groups for doc in group]

    async def execute(self, context: StepContext, helpers: StepHelpers) -> StepContext:
        user_email = require_user_email(context)

        found = await self._search(helpers)
        document_ids = unique_ids(doc.document_id for doc in found)

        if self.include_today_emails:
            start, end = day_bounds(context_moment(context, helpers))
            emails = await helpers.backend.list_emails_within(start, end, top=1000)
            document_ids = unique_ids(document_ids, (email.document_id for email in emails))

        if self.include_shared_drive:
            drive_ids = await helpers.backend.get_drive_document_ids([user_email])
            document_ids = unique_ids(document_ids, drive_ids)

        web_response: list[AdditionalDocument] = []
        if DataSource.WEB in self.data_sources:
            web_response = await helpers.web_search.search(self.query)

        await helpers.run_chatbot(
            prompt=self.prompt,
            documents=document_ids,
            additional_documents=web_response,
            prompt_facade=self.prompt_facade,
            semantic_search_query=self.query,
        )
        return dict(context)


class StrategicPlanStep(AdvisorStep):
    """Draft a strategic plan from roadmaps and objectives."""

    name = StepName.STRATEGIC_PLAN
    data_sources = (
        DataSource.GMAIL,
        DataSource.DRIVE,
        DataSource.LOCAL_FILES,
        DataSource.GOOGLE_CALENDAR,
        DataSource.WEB,
    )
    prompt = "Draft a strategic plan for the coming quarter based on my company's roadmap and objectives."
    prompt_facade = "Create a strategic plan for me."
    query = "Product Roadmap, Objectives, and Company OKRs, and top priorities."


class BusinessCoachStep(AdvisorStep):
    """Give business advice from today's mail and shared documents."""

    name = StepName.BUSINESS_COACH
    prompt = "Act as my business coach and give me actionable advice based on my recent work."
    prompt_facade = "Provide some business advices."
    query = "Provide business advices for me"
    include_today_emails = True
    include_shared_drive = True


class AboutMeStep(AdvisorStep):
    """Write a biography of the user."""

    name = StepName.ABOUT_ME
    prompt = "Write a robust professional biography of me based on my documents and emails."
    prompt_facade = "Provide a robust bio about me."
    query = "Suggest a short biography about me"


class SocialMediaPlannerStep(AdvisorStep):
    """Plan a social media campaign."""

    name = StepName.SOCIAL_MEDIA_PLANNER
    prompt = "Plan a one week social media campaign about my current projects."
    prompt_facade = "Plan my social media campaign."
    query = "Social Media Campaign"
