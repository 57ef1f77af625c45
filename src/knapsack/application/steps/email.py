"""Mailbox-driven steps."""

from knapsack.domain.enums import DataSource, StepName
from knapsack.domain.models import EmailMessage

from .base import Step, StepContext, StepHelpers, context_moment, day_bounds, require_user_email

# Recent-mail window lookups return at most this many messages.
RECENT_EMAILS_LIMIT = 20


def _describe(emails: list[EmailMessage]) -> str:
    return "\n".join(f"- {email.subject} (from {email.sender})" for email in emails)


class EmailSummaryStep(Step):
    """Summarize the emails received on the run's day."""

    name = StepName.EMAIL_SUMMARY
    data_sources = (DataSource.GMAIL,)

    async def execute(self, context: StepContext, helpers: StepHelpers) -> StepContext:
        require_user_email(context)
        start, end = day_bounds(context_moment(context, helpers))
        emails = await helpers.backend.list_emails_within(start, end, top=1000)

        await helpers.run_chatbot(
            prompt=f"Summarize the following emails received on {start:%A, %B %d}:\n{_describe(emails)}",
            documents=[email.document_id for email in emails],
            prompt_facade="Summarize the emails I received today.",
            semantic_search_query="summarize emails",
        )
        return dict(context)


class FinraComplianceStep(Step):
    """Review the user's sent mail of the day for FINRA compliance issues."""

    name = StepName.FINRA_COMPLIANCE
    data_sources = (DataSource.GMAIL,)

    async def execute(self, context: StepContext, helpers: StepHelpers) -> StepContext:
        user_email = require_user_email(context)
        start, end = day_bounds(context_moment(context, helpers))
        emails = await helpers.backend.list_sent_emails_within(user_email, start, end)

        await helpers.run_chatbot(
            prompt=(
                "Review these sent emails for FINRA compliance issues such as promissory "
                f"language, guarantees or missing disclosures:\n{_describe(emails)}"
            ),
            documents=[email.document_id for email in emails],
            prompt_facade="Check the emails I sent today for FINRA compliance.",
            semantic_search_query="finra compliance",
        )
        return dict(context)


class LeadScoringStep(Step):
    """Score sales leads from the last month of mail."""

    name = StepName.LEAD_SCORING
    data_sources = (DataSource.GMAIL,)

    async def execute(self, context: StepContext, helpers: StepHelpers) -> StepContext:
        require_user_email(context)
        start, end = day_bounds(helpers.now(), days_back=30)
        emails = await helpers.backend.list_emails_within(start, end, top=RECENT_EMAILS_LIMIT)

        await helpers.run_chatbot(
            prompt=f"Score the sales leads in these emails from hottest to coldest:\n{_describe(emails)}",
            documents=[email.document_id for email in emails],
            prompt_facade="Score the leads in my recent emails.",
            semantic_search_query="lead scoring",
        )
        return dict(context)


class PostSafelyStep(Step):
    """Check what is safe to post publicly given recent mail and the user's profile."""

    name = StepName.POST_SAFELY
    data_sources = (DataSource.GMAIL, DataSource.WEB)

    async def execute(self, context: StepContext, helpers: StepHelpers) -> StepContext:
        user_email = require_user_email(context)
        start, end = day_bounds(helpers.now(), days_back=7)
        emails = await helpers.backend.list_emails_within(start, end, top=RECENT_EMAILS_LIMIT)
        web_response = await helpers.web_search.search(f"LinkedIn {user_email}")

        await helpers.run_chatbot(
            prompt=(
                "Suggest social media posts about my recent work that do not disclose "
                f"confidential information:\n{_describe(emails)}"
            ),
            documents=[email.document_id for email in emails],
            additional_documents=web_response,
            prompt_facade="What can I safely post about this week?",
            semantic_search_query="post safely",
        )
        return dict(context)
