"""
Delay calculation for retries.

Pure functions mapping (response headers, attempt number, policy constants)
to a wait duration in milliseconds. Nothing here sleeps or keeps state;
anything depending on wall-clock time takes an explicit ``now``.

Header contract (highest precedence first):
    - ``retry-after-ms``: float, milliseconds
    - ``retry-after``: seconds (int/float) or an HTTP date

Unparseable, negative or non-finite hints are treated as absent.
"""

import math
import random
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime

import structlog

logger = structlog.get_logger(__name__)

RETRY_INITIAL_DELAY_MS = 2000
RETRY_BACKOFF_FACTOR = 2
JITTER_RATIO = 0.1


@dataclass(frozen=True)
class DelayDecision:
    """
    Result of a delay computation.

    Either a delay to wait (``delay_ms``) or the distinguishable "exceeded"
    signal, meaning the provider asked for more time than the remaining
    global budget and the caller should stop retrying.

    Attributes:
        delay_ms: Jittered delay to wait (None when exceeded)
        exceeded: True when the header hint exceeds the remaining budget
        hint_ms: Raw header hint, if one was usable
    """

    delay_ms: float | None
    exceeded: bool = False
    hint_ms: float | None = None

    @classmethod
    def wait(cls, delay_ms: float, hint_ms: float | None = None) -> "DelayDecision":
        return cls(delay_ms=delay_ms, hint_ms=hint_ms)

    @classmethod
    def over_budget(cls, hint_ms: float) -> "DelayDecision":
        return cls(delay_ms=None, exceeded=True, hint_ms=hint_ms)


def _header(headers: Mapping[str, str] | None, name: str) -> str | None:
    if not headers:
        return None
    # httpx.Headers is already case-insensitive; plain dicts are not
    value = headers.get(name)
    if value is None:
        for key, candidate in headers.items():
            if key.lower() == name:
                return candidate
    return value


def _parse_number(raw: str) -> float | None:
    try:
        value = float(raw.strip())
    except ValueError:
        return None
    if not math.isfinite(value) or value < 0:
        return None
    return value


def parse_retry_after(
    headers: Mapping[str, str] | None, now: datetime | None = None
) -> float | None:
    """
    Extract a wait hint in milliseconds from response headers.

    Args:
        headers: Response headers (httpx.Headers or a plain mapping)
        now: Current wall-clock time, used for HTTP-date hints

    Returns:
        Hint in milliseconds, or None if no usable hint is present.
        A hint of exactly 0 is valid and means "retry immediately".
    """
    raw_ms = _header(headers, "retry-after-ms")
    if raw_ms:
        parsed_ms = _parse_number(raw_ms)
        if parsed_ms is not None:
            logger.debug("Parsed retry-after-ms header", header_value=parsed_ms)
            return parsed_ms

    raw = _header(headers, "retry-after")
    if not raw:
        return None

    seconds = _parse_number(raw)
    if seconds is not None:
        delay_ms = math.ceil(seconds * 1000)
        logger.debug("Parsed retry-after header (seconds)", header_value=seconds, delay_ms=delay_ms)
        return delay_ms

    try:
        target = parsedate_to_datetime(raw)
    except (TypeError, ValueError, IndexError):
        return None
    if target is None:
        return None
    if target.tzinfo is None:
        target = target.replace(tzinfo=timezone.utc)

    current = now or datetime.now(timezone.utc)
    delta_ms = (target - current).total_seconds() * 1000
    if delta_ms <= 0:
        return None

    logger.debug("Parsed retry-after header (date)", header_value=raw, delay_ms=delta_ms)
    return math.ceil(delta_ms)


def add_jitter(delay_ms: float, rand: Callable[[], float] = random.random) -> float:
    """Add 0-10% positive jitter to avoid synchronized retry storms."""
    return round(delay_ms + rand() * JITTER_RATIO * delay_ms)


def backoff_delay(
    attempt: int,
    cap_ms: float,
    initial_ms: float = RETRY_INITIAL_DELAY_MS,
    factor: float = RETRY_BACKOFF_FACTOR,
) -> float:
    """Exponential backoff ``initial * factor^(attempt-1)``, capped (no jitter)."""
    if attempt < 1:
        raise ValueError("attempt must be >= 1")
    return min(initial_ms * factor ** (attempt - 1), cap_ms)


def calculate_delay(
    headers: Mapping[str, str] | None,
    attempt: int,
    remaining_budget_ms: float,
    max_backoff_ms: float,
    min_interval_ms: float,
    *,
    now: datetime | None = None,
    rand: Callable[[], float] = random.random,
) -> DelayDecision:
    """
    Compute the delay before the next attempt.

    Header hints are honoured exactly (floored at ``min_interval_ms``) unless
    they exceed the remaining budget, in which case the result is
    ``DelayDecision.over_budget`` rather than a silently clamped value.
    Without a usable hint, exponential backoff from 2s is used, capped at
    ``max_backoff_ms`` and floored at ``min_interval_ms``.

    Args:
        headers: Response headers (may be None)
        attempt: Attempt number (1-indexed)
        remaining_budget_ms: Global budget left for this operation
        max_backoff_ms: Cap for header-less backoff
        min_interval_ms: Minimum interval floor
        now: Wall-clock time for HTTP-date hints
        rand: Random source in [0, 1) for jitter

    Returns:
        DelayDecision
    """
    hint_ms = parse_retry_after(headers, now=now)

    if hint_ms is not None:
        if hint_ms > remaining_budget_ms:
            logger.error(
                "retry-after exceeds remaining retry budget",
                retry_after_ms=hint_ms,
                remaining_ms=remaining_budget_ms,
                retry_after_hours=round(hint_ms / 3_600_000, 2),
                remaining_hours=round(remaining_budget_ms / 3_600_000, 2),
            )
            return DelayDecision.over_budget(hint_ms)

        delay = max(hint_ms, min_interval_ms)
        logger.info(
            "Using retry-after value",
            retry_after_ms=hint_ms,
            delay_ms=delay,
            min_interval_ms=min_interval_ms,
        )
        return DelayDecision.wait(add_jitter(delay, rand), hint_ms=hint_ms)

    delay = max(backoff_delay(attempt, max_backoff_ms), min_interval_ms)
    logger.info(
        "No retry-after header, using exponential backoff",
        attempt=attempt,
        delay_ms=delay,
        min_interval_ms=min_interval_ms,
        max_backoff_ms=max_backoff_ms,
    )
    return DelayDecision.wait(add_jitter(delay, rand))
