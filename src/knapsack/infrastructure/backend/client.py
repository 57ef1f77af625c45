"""HTTP adapter for the local Knapsack backend."""

from datetime import datetime
from typing import Any

import httpx
import structlog

from knapsack.application.errors import AuthRequiredError, HttpError
from knapsack.config import Settings, get_settings
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
from knapsack.infrastructure.http.retry import RetryPolicy, retry_request

from .payloads import (
    parse_automation,
    parse_connection,
    parse_document,
    parse_email,
    parse_feed_item,
    parse_meeting,
    parse_sync_status,
    parse_thread,
    to_millis,
    to_seconds,
)

logger = structlog.get_logger()

SYNC_PATHS: dict[ConnectionKey, str] = {
    ConnectionKey.GOOGLE_DRIVE: "connections/google/drive",
    ConnectionKey.GOOGLE_GMAIL: "connections/google/gmail",
    ConnectionKey.GOOGLE_CALENDAR: "connections/google/calendar",
    ConnectionKey.MICROSOFT_ONEDRIVE: "connections/microsoft/onedrive",
    ConnectionKey.MICROSOFT_OUTLOOK: "connections/microsoft/outlook",
    ConnectionKey.MICROSOFT_CALENDAR: "connections/microsoft/calendar",
    ConnectionKey.LOCAL_FILES: "connections/local/files",
}

MARK_READ_PATHS: dict[Provider, str] = {
    Provider.GOOGLE: "connections/google/gmail/read",
    Provider.MICROSOFT: "connections/microsoft/outlook/read",
}


class KnapsackBackend:
    """Backend adapter over the local REST API.

    Every request goes through ``retry_request``; replies carrying
    ``"success": false`` are turned into ``HttpError`` with the reply's
    message and error code.
    """

    def __init__(self, settings: Settings | None = None, transport: httpx.AsyncBaseTransport | None = None) -> None:
        """Initialize the backend adapter.

        Args:
            settings: Settings, loaded from the environment when omitted.
            transport: Optional transport, used by tests.

        """
        self._settings = settings or get_settings()
        self._policy = RetryPolicy.from_settings(self._settings)
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client.

        Returns:
            Client bound to the backend base URL.

        """
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self._settings.backend_url.rstrip("/") + "/",
                timeout=httpx.Timeout(self._settings.http_timeout),
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        client = await self.get_client()
        response = await retry_request(client, method, path, self._policy, **kwargs)
        if not response.content:
            return {}
        data = response.json()
        if isinstance(data, dict) and data.get("success") is False:
            raise HttpError(
                response.status_code,
                str(data.get("message") or data.get("error") or f"{method} {path} failed"),
                data.get("error_code"),
            )
        return data

    # Automations

    async def get_automations(self) -> list[Automation]:
        """Get all automations with their steps, cadences and runs."""
        data = await self._request("GET", "automations")
        return [parse_automation(item) for item in data.get("data") or []]

    async def update_automation(self, automation: Automation) -> None:
        """Persist an automation definition, creating it when it has no id."""
        if automation.id is None:
            await self._request("POST", "automations", json=automation.serialize())
        else:
            await self._request("PUT", f"automations/{automation.id}", json=automation.serialize())
        logger.info("Automation saved", automation=automation.uuid)

    async def delete_automation(self, automation_id: int) -> None:
        """Delete an automation."""
        await self._request("DELETE", f"automations/{automation_id}")

    async def schedule_runs(self, user_email: str) -> None:
        """Ask the backend to materialize upcoming cadence runs."""
        await self._request("POST", "automations/runs/schedule", json={"user_email": user_email})

    async def get_automation_start_status(self, automation_uuid: str, user_email: str) -> bool:
        """Check whether the services an automation needs are ready."""
        client = await self.get_client()
        response = await retry_request(
            client,
            "GET",
            "automations/start_check",
            self._policy,
            params={"automation_uuid": automation_uuid, "email": user_email},
        )
        data = response.json() if response.content else {}
        return bool(data.get("success"))

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
        """Record a finished run and return the threads of its feed item."""
        data = await self._request(
            "POST",
            "automations/runs",
            json={
                "automation_uuid": automation_uuid,
                "thread_id": thread_id,
                "automation_run_id": run_id,
                "execution_timestamp": to_millis(executed_at),
                "user_prompt": prompt,
                "user_prompt_facade": prompt_facade,
                "result": result,
                "user_email": user_email,
                "documents": documents,
                "feed_item_id": feed_item_id,
            },
        )
        feed_item = data.get("feed_item")
        if not feed_item:
            return []
        return parse_feed_item(feed_item).threads

    # Feed

    async def get_feed_items(self, user_email: str | None) -> list[FeedItem]:
        """Get all feed items."""
        params = {"email": user_email} if user_email else None
        data = await self._request("GET", "feed_items", params=params)
        return [parse_feed_item(item) for item in data.get("data") or []]

    async def insert_feed_item(self, title: str, timestamp: datetime) -> FeedItem:
        """Create a feed item."""
        data = await self._request("POST", "feed_items", json={"title": title, "timestamp": to_millis(timestamp)})
        payload = data.get("data") or {}
        if "feedItem" in payload:
            return parse_feed_item(payload)
        return parse_feed_item({"feedItem": payload})

    async def update_feed_item(self, item_id: int, title: str) -> None:
        """Rename a feed item."""
        await self._request("PUT", f"feed_items/{item_id}", json={"feed_item": {"id": item_id, "title": title}})

    async def delete_feed_item(self, item_id: int) -> None:
        """Soft-delete a feed item."""
        await self._request("PUT", f"feed_items/{item_id}", json={"feed_item": {"id": item_id, "deleted": True}})

    # Connections

    async def get_connections(self, user_email: str) -> list[Connection]:
        """Get the user's connections, skipping unknown scopes."""
        data = await self._request("GET", "connections", params={"email": user_email})
        parsed = (parse_connection(item) for item in data.get("connections") or [])
        return [connection for connection in parsed if connection is not None]

    async def get_sync_status(self) -> dict[ConnectionKey, bool]:
        """Get which connections are still syncing."""
        data = await self._request("GET", "connections/is_syncing")
        return parse_sync_status(data.get("data", {}).get("is_syncing") or {})

    async def sync_connection(self, key: ConnectionKey, user_email: str) -> None:
        """Start syncing one connection.

        Raises:
            ValueError: If the connection cannot be synced.
            HttpError: With the backend message, a 400 meaning the grant is gone.

        """
        path = SYNC_PATHS.get(key)
        if path is None:
            msg = f"Connection cannot be synced: {key}"
            raise ValueError(msg)
        params = None if key == ConnectionKey.LOCAL_FILES else {"email": user_email}
        try:
            await self._request("GET", path, params=params)
        except HttpError as e:
            if e.status == 400:
                raise HttpError(400, f"400 - {e.message}", e.code) from e
            raise
        logger.debug("Sync started", connection=key.value)

    async def get_access_token(self, user_email: str, key: ConnectionKey) -> str:
        """Get an access token for a scope.

        Raises:
            AuthRequiredError: If the backend holds no token for the user.

        """
        try:
            data = await self._request(
                "GET",
                "connections/google/auth_token",
                params={"email": user_email, "scope": key.value},
            )
        except HttpError as e:
            if e.status in (400, 401, 403, 404):
                raise AuthRequiredError from e
            raise
        token = data.get("access_token")
        if not token:
            raise AuthRequiredError
        return str(token)

    # Documents and mail

    async def semantic_search(
        self,
        query: str,
        sources: list[DataSource],
        top: int = 10,
        documents: list[int] | None = None,
    ) -> list[SourceDocument]:
        """Search indexed documents."""
        data = await self._request(
            "POST",
            "semantic_search",
            json={
                "query": query,
                "top": top,
                "documents": documents,
                "data_sources": [source.value for source in sources],
            },
        )
        return [parse_document(doc) for doc in data.get("display_documents") or []]

    async def _emails(self, path: str, body: dict[str, Any]) -> list[EmailMessage]:
        data = await self._request("POST", path, json=body)
        return [parse_email(doc) for doc in data.get("display_docs") or []]

    async def list_emails_within(self, start: datetime, end: datetime, top: int) -> list[EmailMessage]:
        """List received emails in a time window."""
        return await self._emails(
            "list_emails_within_timestamps",
            {"top": top, "from_timestamp": to_seconds(start), "to_timestamp": to_seconds(end)},
        )

    async def list_sent_emails_within(
        self,
        user_email: str,
        start: datetime,
        end: datetime,
        top: int = 10,
    ) -> list[EmailMessage]:
        """List emails the user sent in a time window."""
        return await self._emails(
            "list_sent_emails_within_timestamps",
            {
                "email": user_email,
                "top": top,
                "from_timestamp": to_seconds(start),
                "to_timestamp": to_seconds(end),
            },
        )

    async def search_emails_by_addresses(self, addresses: list[str], top: int = 15) -> list[EmailMessage]:
        """Find emails exchanged with any of the addresses."""
        return await self._emails("search_emails_by_addresses", {"top": top, "addresses": addresses})

    async def get_email_thread(self, document_id: int) -> list[EmailMessage]:
        """Get every message of the thread containing a document."""
        data = await self._request("GET", f"email_thread/{document_id}")
        return [parse_email(doc) for doc in data.get("display_docs") or []]

    async def mark_email(
        self,
        provider: Provider,
        email_uid: str,
        user_email: str,
        extra_action: str | None = None,
    ) -> None:
        """Mark an email read on the provider and in the local index."""
        path = MARK_READ_PATHS.get(provider)
        if path is None:
            msg = f"Provider has no mailbox: {provider}"
            raise ValueError(msg)
        await self._request(
            "POST",
            path,
            json={"message_id": email_uid, "email": user_email, "extra_action": extra_action},
        )
        try:
            await self._request("PUT", "update_email", json={"emailUid": email_uid, "isRead": True})
        except HttpError as e:
            logger.error("Failed to update email in database", email_uid=email_uid, error=str(e))

    async def get_recent_calendar_events(self, top: int = 3) -> list[Meeting]:
        """Get upcoming meetings, skipping those with a single participant."""
        data = await self._request("POST", "recent_calendar_events", json={"top": top})
        meetings = [parse_meeting(doc) for doc in data.get("display_docs") or []]
        return [meeting for meeting in meetings if len(meeting.participants) > 1]

    async def get_calendar_event(self, event_id: str) -> Meeting | None:
        """Get a calendar event by id."""
        data = await self._request("GET", f"calendar_event/{event_id}")
        item = data.get("data")
        return parse_meeting(item) if item else None

    async def get_document_infos(
        self,
        document_ids: list[int],
        document_types: list[str],
        user_email: str,
    ) -> list[SourceDocument]:
        """Resolve document ids to document descriptions."""
        data = await self._request(
            "POST",
            "document_infos",
            json={
                "document_identifiers": [str(document_id) for document_id in document_ids],
                "document_types": document_types,
                "email": user_email,
            },
        )
        docs = data if isinstance(data, list) else data.get("data") or []
        return [parse_document(doc) for doc in docs]

    async def get_drive_document_ids(self, emails: list[str]) -> list[int]:
        """Get Drive documents shared with any of the addresses."""
        data = await self._request("GET", "connections/google/drive/ids_by_email", params={"email": ",".join(emails)})
        return [int(document_id) for document_id in data.get("ids") or []]
