"""
Isolated waits.

Rate-limit waits can last hours, while the HTTP call that produced them is
usually bounded by a provider timeout of a few minutes. An ``IsolatedWait``
owns its own cancellation token, so the request's timeout can never cut the
wait short. Only two things end a wait early:

1. The global retry budget running out (always enforced)
2. Explicit user cancellation, observed by polling the external token every
   ``CANCEL_POLL_INTERVAL_MS`` (10 seconds by default)

The external token is polled, never subscribed to, and every timer handle is
released on every exit path.
"""

import asyncio
from enum import Enum

import structlog

from llm_resilience.config import RetrySettings, get_settings
from llm_resilience.monitoring.metrics import record_wait_outcome
from llm_resilience.retry.cancellation import CancelToken

logger = structlog.get_logger(__name__)


class WaitOutcome(str, Enum):
    """How an isolated wait ended."""

    COMPLETED = "completed"
    GLOBAL_BUDGET_EXCEEDED = "global_budget_exceeded"
    USER_CANCELLED = "user_cancelled"


class IsolatedWait:
    """
    Cancellable wait decoupled from request-level timeouts.

    A single instance may be reused for any number of sequential or
    concurrent waits; no state is kept between calls.
    """

    def __init__(
        self,
        poll_interval_ms: float | None = None,
        settings: RetrySettings | None = None,
    ):
        """
        Args:
            poll_interval_ms: External token poll interval (defaults to settings)
            settings: Explicit settings (read from the environment per wait if None)
        """
        self.poll_interval_ms = poll_interval_ms
        self.settings = settings

    async def wait(
        self,
        duration_ms: float,
        remaining_budget_ms: float,
        external: CancelToken | None = None,
    ) -> WaitOutcome:
        """
        Wait ``duration_ms`` unless the budget expires or the user cancels.

        Args:
            duration_ms: Computed delay
            remaining_budget_ms: Global retry budget left for the operation
            external: User cancellation token (polled)

        Returns:
            WaitOutcome
        """
        settings = self.settings or get_settings()
        poll_ms = self.poll_interval_ms or settings.CANCEL_POLL_INTERVAL_MS

        if external is not None and external.done():
            return self._finish(WaitOutcome.USER_CANCELLED, settings)
        if remaining_budget_ms <= 0:
            return self._finish(WaitOutcome.GLOBAL_BUDGET_EXCEEDED, settings)

        loop = asyncio.get_running_loop()
        token = CancelToken()

        # One timer: it fires at the delay if that fits in the budget,
        # otherwise at the budget boundary.
        if duration_ms <= remaining_budget_ms:
            timer_ms, on_expiry = max(duration_ms, 0), WaitOutcome.COMPLETED
        else:
            timer_ms, on_expiry = remaining_budget_ms, WaitOutcome.GLOBAL_BUDGET_EXCEEDED
        timer = loop.call_later(timer_ms / 1000, token.cancel, on_expiry)

        poll_handle: asyncio.TimerHandle | None = None

        def poll() -> None:
            nonlocal poll_handle
            if external is not None and external.done():
                token.cancel(WaitOutcome.USER_CANCELLED)
            else:
                poll_handle = loop.call_later(poll_ms / 1000, poll)

        if external is not None:
            poll_handle = loop.call_later(poll_ms / 1000, poll)

        logger.debug(
            "Isolated wait started",
            duration_ms=duration_ms,
            remaining_ms=remaining_budget_ms,
            poll_interval_ms=poll_ms if external is not None else None,
        )

        try:
            await token.wait()
        finally:
            timer.cancel()
            if poll_handle is not None:
                poll_handle.cancel()

        outcome = token.reason
        if not isinstance(outcome, WaitOutcome):
            outcome = WaitOutcome.USER_CANCELLED
        return self._finish(outcome, settings)

    @staticmethod
    def _finish(outcome: WaitOutcome, settings: RetrySettings) -> WaitOutcome:
        if outcome is not WaitOutcome.COMPLETED:
            logger.info("Isolated wait ended early", outcome=outcome.value)
        record_wait_outcome(outcome.value, settings)
        return outcome
