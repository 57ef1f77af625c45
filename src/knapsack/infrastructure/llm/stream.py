"""Server-sent event parsing for completion streams."""

import json
from collections.abc import AsyncIterator

import structlog

logger = structlog.get_logger()

DATA_PREFIX = "data: "
DONE_MARKER = "data: [DONE]"


def chunk_text(line: str) -> str:
    """Extract the text delta of one ``data:`` line."""
    payload = json.loads(line[len(DATA_PREFIX) :])
    choices = payload.get("choices") or []
    if not choices:
        return ""
    return choices[0].get("text") or ""


async def parse_completion_stream(lines: AsyncIterator[str], max_reads: int = 10000) -> AsyncIterator[str]:
    """Accumulate completion deltas from an event stream.

    Blank lines are ignored. The stream ends at ``data: [DONE]``, at the
    first line that is not a ``data:`` event, when the source is exhausted,
    or after ``max_reads`` events. An early end is not an error: the text
    read so far stands.

    Args:
        lines: Decoded lines of the response body.
        max_reads: Upper bound on events read.

    Yields:
        The accumulated text after every non-empty delta.

    """
    text = ""
    reads = 0
    async for raw in lines:
        line = raw.strip()
        if not line:
            continue
        if not line.startswith(DATA_PREFIX):
            logger.warning("Unexpected line in completion stream, stopping", line=line[:80])
            return
        if line == DONE_MARKER:
            return
        if reads >= max_reads:
            logger.error("Too many chat messages streamed, stopping", reads=reads)
            return

        reads += 1
        delta = chunk_text(line)
        if delta:
            text += delta
            yield text
