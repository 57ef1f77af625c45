"""Single-flight LLM request queue."""

import asyncio
import contextlib
import inspect
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import structlog

from knapsack.application.errors import EngineError
from knapsack.application.ports.llm import CompletionClient, CompletionRequest
from knapsack.application.ports.message_bus import MessageBus
from knapsack.domain.events import LLMRequestFailed

logger = structlog.get_logger()


async def maybe_await(result: Any) -> None:
    """Await ``result`` when a callback returned an awaitable."""
    if inspect.isawaitable(result):
        await result


@dataclass(slots=True)
class LLMRequest:
    """A queued completion with its callbacks.

    Callbacks may be plain functions or coroutines.
    ``on_finish`` receives the full response text, which may be empty.
    """

    completion: CompletionRequest
    on_stream: Callable[[str], Any] | None = None
    on_finish: Callable[[str], Any] | None = None
    on_error: Callable[[Exception], Any] | None = None


class LLMQueue:
    """FIFO queue that runs at most one completion at a time.

    The backend serves a single model instance, so concurrent completions
    would only contend for it. Requests are processed by one worker task in
    arrival order.
    """

    def __init__(self, client: CompletionClient, bus: MessageBus | None = None) -> None:
        """Initialize the queue.

        Args:
            client: Streaming completion client.
            bus: Optional bus for failure events.

        """
        self._client = client
        self._bus = bus
        self._queue: asyncio.Queue[LLMRequest] = asyncio.Queue()
        self._running = False
        self._is_processing = False
        self._worker_task: asyncio.Task[None] | None = None

    async def enqueue(self, request: LLMRequest) -> None:
        """Add a request to the end of the queue."""
        await self._queue.put(request)
        logger.debug("LLM request queued", pending=self._queue.qsize())

    async def submit(self, completion: CompletionRequest) -> str:
        """Queue a completion and wait for its full text.

        Raises:
            EngineError: If the completion fails.

        """
        future: asyncio.Future[str] = asyncio.get_running_loop().create_future()

        def finish(text: str) -> None:
            if not future.done():
                future.set_result(text)

        def fail(error: Exception) -> None:
            if not future.done():
                future.set_exception(error)

        await self.enqueue(LLMRequest(completion=completion, on_finish=finish, on_error=fail))
        return await future

    async def _process(self, request: LLMRequest) -> None:
        self._is_processing = True
        text = ""
        try:
            async for text in self._client.complete(request.completion):
                if request.on_stream is not None:
                    await maybe_await(request.on_stream(text))
        except Exception as e:
            logger.warning("LLM request failed", error=str(e), error_type=type(e).__name__)
            if self._bus is not None:
                await self._bus.publish(
                    LLMRequestFailed(
                        error_type=e.error_type if isinstance(e, EngineError) else "unknown",
                        error_message=str(e),
                    )
                )
            if request.on_error is not None:
                await maybe_await(request.on_error(e))
        else:
            if request.on_finish is not None:
                try:
                    await maybe_await(request.on_finish(text))
                except Exception as e:
                    logger.warning("LLM finish callback failed", error=str(e), error_type=type(e).__name__)
                    if request.on_error is not None:
                        await maybe_await(request.on_error(e))
        finally:
            self._is_processing = False

    async def _worker(self) -> None:
        """Background worker that runs queued requests one by one."""
        logger.info("LLM queue worker started")

        while self._running:
            try:
                try:
                    request = await asyncio.wait_for(self._queue.get(), timeout=1.0)
                except TimeoutError:
                    continue

                await self._process(request)
                self._queue.task_done()

            except asyncio.CancelledError:
                logger.info("LLM queue worker cancelled")
                break
            except Exception as e:
                logger.exception("Error in LLM queue worker", error=str(e), exc_info=e)

        logger.info("LLM queue worker stopped")

    async def start(self) -> None:
        """Start the queue worker."""
        if self._running:
            logger.warning("LLM queue already running")
            return

        self._running = True
        self._worker_task = asyncio.create_task(self._worker())

    async def stop(self) -> None:
        """Stop the queue worker, dropping requests that did not start."""
        if not self._running:
            return

        self._running = False
        if self._worker_task:
            self._worker_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._worker_task
            self._worker_task = None

    async def stop_execution(self) -> None:
        """Abort the completion currently running on the backend."""
        await self._client.stop()

    @property
    def is_running(self) -> bool:
        """Check if the worker is running."""
        return self._running

    @property
    def is_processing(self) -> bool:
        """Check if a completion is in flight."""
        return self._is_processing

    @property
    def pending(self) -> int:
        """Number of requests waiting to start."""
        return self._queue.qsize()
