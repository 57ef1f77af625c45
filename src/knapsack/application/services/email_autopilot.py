"""Email autopilot: inbox triage and reply drafting.

Recent mail is classified in small batches through the LLM queue. Each
batch retries a bounded number of times; a batch that keeps failing is
filed as unclassified so progress always reaches the total. Important mail
is then drained in priority order to generate draft replies.
"""

import asyncio
import contextlib
import json
import re
from collections.abc import Awaitable, Callable, Coroutine
from dataclasses import replace
from datetime import datetime
from typing import Any

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from knapsack.application.errors import ClassificationBatchError, EngineError
from knapsack.application.ports.backend import Backend
from knapsack.application.ports.llm import CompletionRequest
from knapsack.application.ports.message_bus import MessageBus
from knapsack.application.steps.base import day_bounds
from knapsack.config import Settings, get_settings
from knapsack.domain.enums import AutopilotAction, AutopilotStatus, EmailImportance, Provider
from knapsack.domain.events import AutopilotCompleted, ClassificationProgressed, Event
from knapsack.domain.models import (
    AdditionalDocument,
    ClassificationProgress,
    DisplayEmail,
    EmailClassification,
    EmailMessage,
)
from knapsack.domain.priority_queue import PriorityQueue

from .llm_queue import LLMQueue

logger = structlog.get_logger()

JSON_BLOCK = re.compile(r"```json\s*(.*?)\s*```", re.DOTALL)

# Classified mail is refreshed over a slightly longer window than the triage lookback.
REFRESH_DAYS = 3

CLASSIFY_PROMPT = (
    "Classify each email by importance as IMPORTANT_NEEDS_RESPONSE, IMPORTANT_NO_RESPONSE, "
    "INFORMATIONAL, MARKETING or UNIMPORTANT. Answer with a ```json block holding "
    '{"classifiedEmails": [{"documentId", "classification", "summary", "justification", '
    '"responseDeadline", "confidenceScore", "keywords", "actionRequired"}]}.'
)
DRAFT_PROMPT = (
    "Draft a reply to this email. Answer with a ```json block holding "
    '{"response_body": "<reply text>"}.'
)

Classifier = Callable[[list[EmailMessage]], Awaitable[list[EmailClassification]]]
Drafter = Callable[[DisplayEmail], Awaitable[str]]
Buckets = dict[EmailImportance, list[DisplayEmail]]


def _json_payload(text: str, *, whole_text_fallback: bool = False) -> Any:
    match = JSON_BLOCK.search(text)
    if match is None and not whole_text_fallback:
        msg = "No JSON block in LLM response"
        raise ClassificationBatchError(msg)
    raw = match.group(1) if match is not None else text
    try:
        return json.loads(raw)
    except json.JSONDecodeError as e:
        msg = f"Invalid JSON in LLM response: {e}"
        raise ClassificationBatchError(msg) from e


def parse_classifications(text: str) -> list[EmailClassification]:
    """Parse the ```json block of a classification answer.

    Raises:
        ClassificationBatchError: If the block is missing or malformed.

    """
    data = _json_payload(text)
    entries = data.get("classifiedEmails") if isinstance(data, dict) else None
    if not isinstance(entries, list):
        msg = "Classification response has no classifiedEmails list"
        raise ClassificationBatchError(msg)

    classifications: list[EmailClassification] = []
    for entry in entries:
        try:
            classifications.append(
                EmailClassification(
                    document_id=int(entry["documentId"]),
                    classification=EmailImportance(entry["classification"]),
                    summary=list(entry.get("summary") or []),
                    justification=entry.get("justification") or "",
                    response_deadline=entry.get("responseDeadline"),
                    confidence_score=float(entry.get("confidenceScore") or 0.0),
                    keywords=list(entry.get("keywords") or []),
                    action_required=entry.get("actionRequired"),
                )
            )
        except (KeyError, TypeError, ValueError) as e:
            msg = f"Malformed classification entry: {entry!r}"
            raise ClassificationBatchError(msg) from e
    return classifications


def parse_draft(text: str) -> str:
    """Extract ``response_body`` from a draft answer, with or without a json fence.

    Raises:
        ClassificationBatchError: If no reply body can be found.

    """
    data = _json_payload(text, whole_text_fallback=True)
    if not isinstance(data, dict) or not isinstance(data.get("response_body"), str):
        msg = "Draft response has no response_body"
        raise ClassificationBatchError(msg)
    return data["response_body"]


def starred_classification(message: EmailMessage) -> EmailClassification:
    """Starred mail is important by the user's own judgement."""
    return EmailClassification(
        document_id=message.document_id,
        classification=EmailImportance.IMPORTANT_NEEDS_RESPONSE,
        summary=[message.subject] if message.subject else [],
        justification="Email was starred by the user",
        confidence_score=1.0,
        keywords=["starred"],
        action_required="Review starred email",
    )


def describe(message: EmailMessage) -> str:
    """Render an email as LLM context."""
    return (
        f"documentId: {message.document_id}\n"
        f"From: {message.sender}\n"
        f"To: {', '.join(message.recipients)}\n"
        f"Subject: {message.subject}\n"
        f"Date: {message.date.isoformat()}\n\n"
        f"{message.body or message.summary}"
    )


def _log_batch_retry(state: RetryCallState) -> None:
    error = state.outcome.exception() if state.outcome else None
    logger.warning(
        "Classification batch failed",
        attempt=state.attempt_number,
        error=str(error),
        wait=state.next_action.sleep if state.next_action else None,
    )


class EmailAutopilot:
    """Classifies recent mail and keeps the triaged buckets up to date."""

    def __init__(
        self,
        backend: Backend,
        llm_queue: LLMQueue,
        bus: MessageBus | None = None,
        settings: Settings | None = None,
        clock: Callable[[], datetime] | None = None,
        classifier: Classifier | None = None,
        drafter: Drafter | None = None,
    ) -> None:
        """Initialize the autopilot.

        Args:
            backend: Backend adapter.
            llm_queue: Queue used for classification and drafting.
            bus: Optional bus for progress events.
            settings: Settings, loaded from the environment when omitted.
            clock: Returns the current local time.
            classifier: Classifies one batch; defaults to the LLM.
            drafter: Drafts one reply; defaults to the LLM.

        """
        self._backend = backend
        self._llm_queue = llm_queue
        self._bus = bus
        self._settings = settings or get_settings()
        self._clock = clock or self._settings.now
        self._classifier = classifier or self.classify_with_llm
        self._drafter = drafter or self.draft_with_llm

        self.status = AutopilotStatus.IDLE
        self.progress = ClassificationProgress()
        self._classified: Buckets = {}
        self._queue: PriorityQueue[DisplayEmail] = PriorityQueue()
        self._lock = asyncio.Lock()
        self._last_email_uid: str | None = None
        self._is_draining = False
        self._drain_task: asyncio.Task[None] | None = None
        self._tasks: set[asyncio.Task[Any]] = set()

    @property
    def classified(self) -> Buckets:
        """Current snapshot of the importance buckets."""
        return self._classified

    @property
    def pending_drafts(self) -> int:
        """Entries waiting in the drain queue."""
        return len(self._queue)

    def find(self, email_uid: str) -> DisplayEmail | None:
        """Find a triaged email by uid."""
        for entries in self._classified.values():
            for entry in entries:
                if entry.message.email_uid == email_uid:
                    return entry
        return None

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _publish(self, event: Event) -> None:
        if self._bus is not None:
            await self._bus.publish(event)

    # Classification

    async def classify_with_llm(self, messages: list[EmailMessage]) -> list[EmailClassification]:
        """Classify a batch: starred mail locally, the rest through the LLM.

        Raises:
            ClassificationBatchError: If the LLM failed or answered unusably.

        """
        results = [starred_classification(message) for message in messages if message.is_starred]
        rest = [message for message in messages if not message.is_starred]
        if not rest:
            return results

        completion = CompletionRequest(
            prompt=CLASSIFY_PROMPT,
            documents=[message.document_id for message in rest],
            additional_documents=[AdditionalDocument(title=message.subject, content=describe(message)) for message in rest],
            semantic_search_query="classify emails",
            user_email=self._settings.user_email,
            user_name=self._settings.user_name,
            is_local=self._settings.llm_is_local,
        )
        try:
            text = await self._llm_queue.submit(completion)
        except EngineError as e:
            raise ClassificationBatchError(str(e)) from e
        return results + parse_classifications(text)

    async def classify_batch(self, messages: list[EmailMessage]) -> bool:
        """Classify one batch, retrying failed attempts with exponential backoff.

        Returns:
            True if classified, False if the batch was filed as unclassified.

        """
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._settings.autopilot_max_retries + 1),
            wait=wait_exponential(
                multiplier=self._settings.autopilot_retry_base_delay,
                min=0,
                max=self._settings.autopilot_retry_max_delay,
            ),
            retry=retry_if_exception_type(EngineError),
            before_sleep=_log_batch_retry,
        )
        try:
            classifications = await retrying(self._classifier, messages)
        except RetryError:
            logger.error("Classification batch exhausted retries", size=len(messages))
            await self._file(messages, [])
            return False

        await self._file(messages, classifications)
        return True

    async def _file(self, messages: list[EmailMessage], classifications: list[EmailClassification]) -> None:
        by_id = {classification.document_id: classification for classification in classifications}
        entries = [DisplayEmail(message=message, classification=by_id.get(message.document_id)) for message in messages]
        thread_ids = {entry.message.thread_id for entry in entries if entry.message.thread_id}

        async with self._lock:
            buckets: Buckets = {
                importance: [entry for entry in existing if entry.message.thread_id not in thread_ids]
                for importance, existing in self._classified.items()
            }
            for entry in entries:
                buckets.setdefault(entry.importance, []).append(entry)
            for bucket in buckets.values():
                bucket.sort(key=lambda entry: entry.message.date, reverse=True)
            self._classified = buckets
            self.progress.advance(len(messages))

        for entry in entries:
            if entry.classification is not None:
                self._queue.enqueue(entry, entry.importance.priority)

        await self._publish(ClassificationProgressed(current=self.progress.current, total=self.progress.total))
        if self.progress.is_complete and self.status == AutopilotStatus.CLASSIFYING:
            self.status = AutopilotStatus.COMPLETE
            logger.info("Email autopilot complete", total=self.progress.total)
            await self._publish(AutopilotCompleted(total=self.progress.total))

    # Fetching

    async def _collect(self, user_email: str) -> list[EmailMessage]:
        start, end = day_bounds(self._clock(), days_back=self._settings.autopilot_lookback_days)
        recent = await self._backend.list_emails_within(start, end, top=self._settings.autopilot_max_emails)
        candidates = [message for message in recent if message.needs_attention]

        if self._last_email_uid is not None:
            uids = [message.email_uid for message in candidates]
            if self._last_email_uid in uids:
                candidates = candidates[: uids.index(self._last_email_uid)]
        if candidates:
            self._last_email_uid = candidates[0].email_uid

        latest: dict[str, EmailMessage] = {}
        for candidate in candidates:
            try:
                thread = await self._backend.get_email_thread(candidate.document_id)
            except EngineError as e:
                logger.warning("Failed to fetch email thread", document_id=candidate.document_id, error=str(e))
                continue
            for message in thread or [candidate]:
                if user_email.lower() in message.sender.lower():
                    continue
                known = latest.get(message.email_uid)
                if known is None or message.date > known.date:
                    latest[message.email_uid] = message

        return sorted(latest.values(), key=lambda message: message.date, reverse=True)

    async def run(self) -> int:
        """Fetch new mail and submit it for classification.

        Returns:
            Number of emails submitted.

        """
        if self.status in (AutopilotStatus.FETCHING, AutopilotStatus.CLASSIFYING):
            logger.debug("Email autopilot already running", status=self.status.value)
            return 0

        user_email = self._settings.user_email
        if not user_email:
            return 0

        await self.refresh_statuses()
        self.status = AutopilotStatus.FETCHING
        try:
            messages = await self._collect(user_email)
        except EngineError as e:
            self.status = AutopilotStatus.ERROR
            logger.error("Email autopilot failed to fetch mail", error=str(e))
            return 0

        if not messages:
            self.status = AutopilotStatus.COMPLETE
            return 0

        self.status = AutopilotStatus.CLASSIFYING
        self.progress.total += len(messages)
        await self._publish(ClassificationProgressed(current=self.progress.current, total=self.progress.total))
        logger.info("Classifying emails", count=len(messages), total=self.progress.total)

        size = self._settings.autopilot_batch_size
        for index in range(0, len(messages), size):
            if index:
                await asyncio.sleep(self._settings.autopilot_batch_stagger)
            self._spawn(self.classify_batch(messages[index : index + size]))
        return len(messages)

    async def refresh_statuses(self) -> None:
        """Refresh classified mail from the mailbox and mark handled mail as replied."""
        if not self._classified:
            return
        start, end = day_bounds(self._clock(), days_back=REFRESH_DAYS)
        try:
            recent = await self._backend.list_emails_within(start, end, top=self._settings.autopilot_max_emails)
        except EngineError as e:
            logger.warning("Failed to refresh classified emails", error=str(e))
            return

        by_uid = {message.email_uid: message for message in recent}

        def refreshed(entry: DisplayEmail) -> DisplayEmail:
            message = by_uid.get(entry.message.email_uid)
            if message is None:
                return entry
            return replace(entry, message=message, was_reply_sent=message.is_handled)

        async with self._lock:
            self._classified = {
                importance: [refreshed(entry) for entry in entries] for importance, entries in self._classified.items()
            }

    async def wait_idle(self) -> None:
        """Wait for every submitted batch and background call to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # Drafting

    async def draft_with_llm(self, entry: DisplayEmail) -> str:
        """Draft a reply to one email.

        Raises:
            EngineError: If the LLM failed or answered unusably.

        """
        completion = CompletionRequest(
            prompt=DRAFT_PROMPT,
            documents=[entry.message.document_id],
            additional_documents=[AdditionalDocument(title=entry.message.subject, content=describe(entry.message))],
            semantic_search_query="draft reply",
            user_email=self._settings.user_email,
            user_name=self._settings.user_name,
            is_local=self._settings.llm_is_local,
        )
        return parse_draft(await self._llm_queue.submit(completion))

    async def _update_email(self, email_uid: str, **changes: Any) -> DisplayEmail | None:
        updated: DisplayEmail | None = None
        async with self._lock:
            buckets: Buckets = {}
            for importance, entries in self._classified.items():
                bucket = []
                for entry in entries:
                    if entry.message.email_uid == email_uid:
                        entry = replace(entry, **changes)
                        updated = entry
                    bucket.append(entry)
                buckets[importance] = bucket
            self._classified = buckets
        return updated

    async def drain(self) -> int:
        """Draft replies for queued important mail, highest priority first.

        Returns:
            Number of drafts written.

        """
        if self._is_draining:
            return 0

        self._is_draining = True
        drafted = 0
        try:
            while not self._queue.is_empty():
                entry = self._queue.dequeue()
                if entry is None:
                    break
                if entry.importance.needs_draft and entry.drafted_reply is None:
                    try:
                        reply = await self._drafter(entry)
                    except EngineError as e:
                        logger.warning("Failed to draft reply", email_uid=entry.message.email_uid, error=str(e))
                    else:
                        await self._update_email(entry.message.email_uid, drafted_reply=reply)
                        drafted += 1
                await asyncio.sleep(self._settings.autopilot_drain_delay)
        finally:
            self._is_draining = False
        return drafted

    async def _drain_loop(self) -> None:
        while True:
            await self.drain()
            await asyncio.sleep(self._settings.autopilot_drain_interval)

    async def start(self) -> None:
        """Start the drain loop."""
        if self._drain_task is None:
            self._drain_task = asyncio.create_task(self._drain_loop())

    async def stop(self) -> None:
        """Stop the drain loop and cancel running batches."""
        tasks = list(self._tasks)
        if self._drain_task is not None:
            tasks.append(self._drain_task)
            self._drain_task = None
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task

    # Actions

    async def _mark(self, provider: Provider, email_uid: str, extra_action: str | None) -> None:
        user_email = self._settings.user_email
        if not user_email:
            return
        try:
            await self._backend.mark_email(provider, email_uid, user_email, extra_action)
        except EngineError as e:
            logger.warning("Failed to update email in mailbox", email_uid=email_uid, error=str(e))

    async def take_action(
        self,
        email_uid: str,
        action: AutopilotAction,
        provider: Provider = Provider.GOOGLE,
        drafted_reply: str | None = None,
    ) -> DisplayEmail | None:
        """Apply a user action to a triaged email.

        Ignore and reply actions update the entry at once and update the
        mailbox in the background.

        Returns:
            The updated entry, or None if the email is not triaged.

        """
        entry = self.find(email_uid)
        if entry is None:
            return None

        if action == AutopilotAction.GENERATE_DRAFT_REPLY:
            reply = drafted_reply if drafted_reply is not None else await self._drafter(entry)
            return await self._update_email(email_uid, drafted_reply=reply)

        if action.is_ignore:
            updated = await self._update_email(email_uid, was_ignored=True)
        else:
            updated = await self._update_email(email_uid, was_reply_sent=True)
        self._spawn(self._mark(provider, email_uid, action.extra_action))
        logger.info("Email action taken", email_uid=email_uid, action=action.value)
        return updated
