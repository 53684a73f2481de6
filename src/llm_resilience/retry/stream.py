"""
Skip-and-continue reading of streamed provider events.

A corrupted server-sent event (e.g. two chunks concatenated by a gateway)
is not a reason to re-send the whole request. The offending event is
classified as STREAM_PARSE, logged and skipped, and reading continues.
"""

import json
from collections.abc import AsyncIterable, AsyncIterator, Callable
from typing import Any

import structlog

from llm_resilience.retry.classifier import ErrorKind, classify

logger = structlog.get_logger(__name__)

DONE_SENTINEL = "[DONE]"


async def iter_events(
    lines: AsyncIterable[str],
    decode: Callable[[str], Any] = json.loads,
    session_label: str = "unknown",
) -> AsyncIterator[Any]:
    """
    Yield decoded ``data:`` payloads from an SSE line stream.

    Args:
        lines: Lines of the event stream (e.g. ``response.aiter_lines()``)
        decode: Payload decoder; defaults to ``json.loads``
        session_label: Label attached to log events

    Yields:
        Decoded payloads, in order, without the corrupted ones
    """
    skipped = 0
    async for line in lines:
        if not line.startswith("data:"):
            continue
        payload = line[len("data:"):].strip()
        if not payload:
            continue
        if payload == DONE_SENTINEL:
            break

        try:
            event = decode(payload)
        except Exception as exc:
            error = classify(exc)
            if error.kind is not ErrorKind.STREAM_PARSE:
                raise
            skipped += 1
            logger.warning(
                "Skipping corrupted stream event",
                session_id=session_label,
                error=error.message,
                payload_preview=payload[:200],
                skipped=skipped,
            )
            continue

        yield event
