"""Backend protocol definition."""

from datetime import datetime
from typing import Protocol

from knapsack.domain.enums import ConnectionKey, DataSource, Provider
from knapsack.domain.models import (
    Automation,
    Connection,
    EmailMessage,
    FeedItem,
    Meeting,
    SourceDocument,
    Thread,
)


class Backend(Protocol):
    """Protocol for the local Knapsack backend.

    Every method raises ``HttpError`` when the backend answers with a
    non-success status after retries.
    """

    # Automations

    async def get_automations(self) -> list[Automation]:
        """Get all automations with their steps, cadences and runs."""
        ...

    async def update_automation(self, automation: Automation) -> None:
        """Persist an automation definition."""
        ...

    async def delete_automation(self, automation_id: int) -> None:
        """Delete an automation."""
        ...

    async def schedule_runs(self, user_email: str) -> None:
        """Ask the backend to materialize upcoming cadence runs."""
        ...

    async def get_automation_start_status(self, automation_uuid: str, user_email: str) -> bool:
        """Check whether the services an automation needs are ready."""
        ...

    async def insert_automation_run(
        self,
        *,
        automation_uuid: str,
        user_email: str,
        prompt: str,
        prompt_facade: str | None,
        result: str,
        documents: list[int],
        executed_at: datetime,
        run_id: int | None = None,
        thread_id: int | None = None,
        feed_item_id: int | None = None,
    ) -> list[Thread]:
        """Record a finished run and return the feed item's threads."""
        ...

    # Feed

    async def get_feed_items(self, user_email: str | None) -> list[FeedItem]:
        """Get all feed items."""
        ...

    async def insert_feed_item(self, title: str, timestamp: datetime) -> FeedItem:
        """Create a feed item."""
        ...

    async def update_feed_item(self, item_id: int, title: str) -> None:
        """Rename a feed item."""
        ...

    async def delete_feed_item(self, item_id: int) -> None:
        """Soft-delete a feed item."""
        ...

    # Connections

    async def get_connections(self, user_email: str) -> list[Connection]:
        """Get the user's connections."""
        ...

    async def get_sync_status(self) -> dict[ConnectionKey, bool]:
        """Get which connections are still syncing."""
        ...

    async def sync_connection(self, key: ConnectionKey, user_email: str) -> None:
        """Start syncing one connection."""
        ...

    async def get_access_token(self, user_email: str, key: ConnectionKey) -> str:
        """Get an access token for a scope, failing when the user is not signed in."""
        ...

    # Documents and mail

    async def semantic_search(
        self,
        query: str,
        sources: list[DataSource],
        top: int = 10,
        documents: list[int] | None = None,
    ) -> list[SourceDocument]:
        """Search indexed documents."""
        ...

    async def list_emails_within(self, start: datetime, end: datetime, top: int) -> list[EmailMessage]:
        """List received emails in a time window."""
        ...

    async def list_sent_emails_within(
        self,
        user_email: str,
        start: datetime,
        end: datetime,
        top: int = 10,
    ) -> list[EmailMessage]:
        """List emails the user sent in a time window."""
        ...

    async def search_emails_by_addresses(self, addresses: list[str], top: int = 15) -> list[EmailMessage]:
        """Find emails exchanged with any of the addresses."""
        ...

    async def get_email_thread(self, document_id: int) -> list[EmailMessage]:
        """Get every message of the thread containing a document."""
        ...

    async def mark_email(
        self,
        provider: Provider,
        email_uid: str,
        user_email: str,
        extra_action: str | None = None,
    ) -> None:
        """Mark an email read, optionally archiving or deleting it."""
        ...

    async def get_recent_calendar_events(self, top: int = 3) -> list[Meeting]:
        """Get upcoming meetings with more than one participant."""
        ...

    async def get_calendar_event(self, event_id: str) -> Meeting | None:
        """Get a calendar event by id."""
        ...

    async def get_document_infos(
        self,
        document_ids: list[int],
        document_types: list[str],
        user_email: str,
    ) -> list[SourceDocument]:
        """Resolve document ids to document descriptions."""
        ...

    async def get_drive_document_ids(self, emails: list[str]) -> list[int]:
        """Get Drive documents shared with any of the addresses."""
        ...
