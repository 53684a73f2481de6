"""
Per-session retry state.

The store is owned by whoever manages sessions and injected into the
policy; there is no module-level singleton. Lifecycle of an entry:

- created on the first retryable error of a session
- reset whenever the error kind for that session changes
- deleted explicitly with ``clear`` when the session completes or is abandoned
"""

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

from llm_resilience.retry.classifier import ErrorKind


def monotonic_ms() -> float:
    return time.monotonic() * 1000


@dataclass
class RetryState:
    """
    Retry bookkeeping for one session.

    Attributes:
        session_id: Session the state belongs to
        last_error_kind: Kind of the most recent retryable failure
        first_seen_at: Monotonic time (ms) the current kind was first observed
        total_retry_ms: Sum of scheduled waits since the kind was first observed
    """

    session_id: str
    last_error_kind: ErrorKind
    first_seen_at: float
    total_retry_ms: float = 0.0


class RetryStateStore:
    """Retry states keyed by session id; entries are independent."""

    def __init__(self, clock: Callable[[], float] = monotonic_ms):
        """
        Args:
            clock: Monotonic clock in milliseconds
        """
        self._clock = clock
        self._states: dict[str, RetryState] = {}
        self._lock = threading.Lock()

    def observe(self, session_id: str, kind: ErrorKind) -> float:
        """
        Record a failure of ``kind`` and return the elapsed time for it.

        Returns 0 (and restarts the clock) when this is the session's first
        failure or the kind differs from the last one; otherwise the time
        since the kind was first observed.
        """
        now = self._clock()
        with self._lock:
            state = self._states.get(session_id)
            if state is None or state.last_error_kind is not kind:
                self._states[session_id] = RetryState(
                    session_id=session_id, last_error_kind=kind, first_seen_at=now
                )
                return 0.0
            return max(now - state.first_seen_at, 0.0)

    def record_delay(self, session_id: str, delay_ms: float) -> None:
        with self._lock:
            state = self._states.get(session_id)
            if state is not None:
                state.total_retry_ms += delay_ms

    def get(self, session_id: str) -> RetryState | None:
        with self._lock:
            return self._states.get(session_id)

    def clear(self, session_id: str) -> None:
        with self._lock:
            self._states.pop(session_id, None)

    def __contains__(self, session_id: object) -> bool:
        with self._lock:
            return session_id in self._states

    def __len__(self) -> int:
        with self._lock:
            return len(self._states)
