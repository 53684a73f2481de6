"""
Session-level retry policy.

Decides, across repeated attempts of a logical operation (one full model
call, not one HTTP request), whether to retry and after what delay.

Per-kind backoff curves:
    - RATE_LIMIT: header hint (exact, jittered), else exponential from 2s
    - TIMEOUT: fixed schedule 30s, 60s, 120s; at most 3 retries
    - SOCKET_CONNECTION: exponential from 1s; at most 3 retries
    - everything else: not retried here

The elapsed time reported by ``should_retry`` restarts whenever the failure
mode changes; it is not cumulative across unrelated error kinds.
"""

import random
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

import structlog

from llm_resilience.config import RetrySettings, get_settings
from llm_resilience.retry.classifier import ErrorKind, RetryableError
from llm_resilience.retry.delay import (
    RETRY_BACKOFF_FACTOR,
    RETRY_INITIAL_DELAY_MS,
    add_jitter,
    backoff_delay,
    parse_retry_after,
)
from llm_resilience.retry.exceptions import RetryTimeoutExceededError
from llm_resilience.retry.state import RetryStateStore

logger = structlog.get_logger(__name__)

TIMEOUT_DELAYS_MS = (30_000, 60_000, 120_000)
TIMEOUT_MAX_RETRIES = 3

SOCKET_ERROR_MAX_RETRIES = 3
SOCKET_ERROR_INITIAL_DELAY_MS = 1000
SOCKET_ERROR_BACKOFF_FACTOR = 2


@dataclass(frozen=True)
class RetryCheck:
    """Answer of ``should_retry``: whether the budget still allows retrying."""

    should_retry: bool
    elapsed_ms: float
    max_ms: float

    @property
    def remaining_ms(self) -> float:
        return max(self.max_ms - self.elapsed_ms, 0.0)


def timeout_delay(attempt: int) -> float:
    """Fixed schedule indexed by attempt, repeating the last value."""
    index = min(max(attempt, 1) - 1, len(TIMEOUT_DELAYS_MS) - 1)
    return TIMEOUT_DELAYS_MS[index]


def socket_error_delay(attempt: int) -> float:
    """Exponential backoff 1s, 2s, 4s, ..."""
    return SOCKET_ERROR_INITIAL_DELAY_MS * SOCKET_ERROR_BACKOFF_FACTOR ** (max(attempt, 1) - 1)


class SessionRetryPolicy:
    """
    Retry policy for logical operations, keyed by session id.

    Attributes:
        store: Injected per-session retry state
        settings: Explicit settings, or None to read the environment per call
    """

    def __init__(
        self,
        store: RetryStateStore | None = None,
        settings: RetrySettings | None = None,
        rand: Callable[[], float] = random.random,
        now: Callable[[], datetime] | None = None,
    ):
        """
        Args:
            store: Retry state store (a private one is created if None)
            settings: Explicit settings (read from the environment per call if None)
            rand: Random source in [0, 1) used for jitter
            now: Wall-clock source for HTTP-date retry-after hints
        """
        self.store = store if store is not None else RetryStateStore()
        self.settings = settings
        self._rand = rand
        self._now = now

    def _settings(self) -> RetrySettings:
        return self.settings or get_settings()

    def should_retry(self, session_id: str, kind: ErrorKind) -> RetryCheck:
        """
        Check the global budget for ``kind`` in this session.

        Resets the tracked elapsed time to zero when ``kind`` differs from the
        session's last recorded kind.
        """
        max_ms = self._settings().retry_timeout_ms
        elapsed_ms = self.store.observe(session_id, kind)

        if elapsed_ms >= max_ms:
            logger.info(
                "Retry timeout exceeded",
                session_id=session_id,
                kind=kind.value,
                elapsed_ms=elapsed_ms,
                max_ms=max_ms,
            )
            return RetryCheck(should_retry=False, elapsed_ms=elapsed_ms, max_ms=max_ms)

        return RetryCheck(should_retry=True, elapsed_ms=elapsed_ms, max_ms=max_ms)

    def allows(self, error: RetryableError, attempt: int) -> bool:
        """Whether ``error`` may be retried at ``attempt`` (1-indexed) by this policy."""
        if not error.is_retryable:
            return False
        if error.kind is ErrorKind.TIMEOUT:
            return attempt <= TIMEOUT_MAX_RETRIES
        if error.kind is ErrorKind.SOCKET_CONNECTION:
            return attempt <= SOCKET_ERROR_MAX_RETRIES
        return error.kind is ErrorKind.RATE_LIMIT

    def delay(self, error: RetryableError, attempt: int) -> float:
        """
        Delay in milliseconds before retry number ``attempt``.

        Raises:
            RetryTimeoutExceededError: Rate-limit hint exceeds the global budget
            ValueError: ``error`` is of a kind this policy never retries
        """
        if error.kind is ErrorKind.RATE_LIMIT:
            return self.rate_limit_delay(error, attempt)
        if error.kind is ErrorKind.TIMEOUT:
            return timeout_delay(attempt)
        if error.kind is ErrorKind.SOCKET_CONNECTION:
            return socket_error_delay(attempt)
        raise ValueError(f"{error.kind.value} errors are not retried by the session policy")

    def rate_limit_delay(self, error: RetryableError, attempt: int) -> float:
        settings = self._settings()
        headers = error.response_headers
        now = self._now() if self._now is not None else None

        hint_ms = parse_retry_after(headers, now=now)
        if hint_ms is not None:
            if hint_ms > settings.retry_timeout_ms:
                logger.error(
                    "retry-after exceeds retry timeout, failing immediately",
                    retry_after_ms=hint_ms,
                    max_timeout_ms=settings.retry_timeout_ms,
                )
                raise RetryTimeoutExceededError(hint_ms, settings.retry_timeout_ms)
            logger.info("Using retry-after header", retry_after_ms=hint_ms, attempt=attempt)
            return add_jitter(hint_ms, self._rand)

        # A response without any headers gets the tighter ceiling
        cap = settings.MAX_RETRY_DELAY_MS if headers else settings.MAX_BACKOFF_NO_HEADERS_MS
        delay = backoff_delay(attempt, cap, RETRY_INITIAL_DELAY_MS, RETRY_BACKOFF_FACTOR)
        return add_jitter(delay, self._rand)

    def record_delay(self, session_id: str, delay_ms: float) -> None:
        self.store.record_delay(session_id, delay_ms)

    def clear_retry_state(self, session_id: str) -> None:
        """Drop retry state for a finished or abandoned session."""
        self.store.clear(session_id)
