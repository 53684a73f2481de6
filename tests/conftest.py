"""Shared test fixtures and configuration for all tests.

This conftest.py provides common fixtures used across unit and integration tests:
explicit settings, a controllable monotonic clock and a recording waiter that
never actually sleeps.
"""

import pytest

from llm_resilience.config import RetrySettings
from llm_resilience.retry.wait import WaitOutcome


class FakeClock:
    """Monotonic clock in milliseconds that only moves when told to."""

    def __init__(self, start_ms: float = 1_000_000.0):
        self.now_ms = start_ms

    def __call__(self) -> float:
        return self.now_ms

    def advance(self, ms: float) -> None:
        self.now_ms += ms


class RecordingWaiter:
    """IsolatedWait stand-in recording every wait and advancing the fake clock.

    Outcomes are consumed from ``outcomes`` in order; once empty, every wait
    completes.
    """

    def __init__(self, clock: FakeClock | None = None):
        self.clock = clock
        self.calls: list[tuple[float, float, object]] = []
        self.outcomes: list[WaitOutcome] = []

    async def wait(self, duration_ms, remaining_budget_ms, external=None) -> WaitOutcome:
        self.calls.append((duration_ms, remaining_budget_ms, external))
        outcome = self.outcomes.pop(0) if self.outcomes else WaitOutcome.COMPLETED
        if self.clock is not None and outcome is WaitOutcome.COMPLETED:
            self.clock.advance(duration_ms)
        return outcome

    @property
    def durations(self) -> list[float]:
        return [duration for duration, _, _ in self.calls]


@pytest.fixture
def test_settings() -> RetrySettings:
    """Test settings with safe defaults for local testing.

    Override specific settings in individual tests as needed:
        def test_something(test_settings):
            test_settings.RETRY_TIMEOUT = 0
    """
    return RetrySettings(
        LOG_LEVEL="DEBUG",
        ENVIRONMENT="development",
        RETRY_TIMEOUT=3600,
        MAX_RETRY_DELAY_MS=1_200_000,
        MIN_RETRY_INTERVAL_MS=30_000,
        MAX_BACKOFF_NO_HEADERS_MS=30_000,
        CANCEL_POLL_INTERVAL_MS=10_000,
        FETCH_NETWORK_MAX_RETRIES=3,
        PROMETHEUS_ENABLED=False,  # Disable metrics in tests unless explicitly needed
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def waiter(clock: FakeClock) -> RecordingWaiter:
    return RecordingWaiter(clock)
