"""
Session retry runner.

Runs a logical operation (one full provider call) under the session retry
policy. The caller only ever observes the final success or the terminal
failure; intermediate retries are resolved here.

Usage:
    >>> runner = SessionRetryRunner(SessionRetryPolicy(store))
    >>> result = await runner.run(session_id, lambda: call_model(request), cancel_token)
"""

from collections.abc import Awaitable, Callable
from typing import TypeVar

import structlog

from llm_resilience.config import RetrySettings
from llm_resilience.monitoring.metrics import record_budget_exceeded, record_retry
from llm_resilience.retry.cancellation import CancelToken
from llm_resilience.retry.classifier import ErrorKind, classify
from llm_resilience.retry.exceptions import OperationAborted, RetryTimeoutExceededError
from llm_resilience.retry.policy import SessionRetryPolicy
from llm_resilience.retry.wait import IsolatedWait, WaitOutcome

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class SessionRetryRunner:
    """
    Retries whole logical operations according to a SessionRetryPolicy.

    Attempts for one session are strictly sequential: the next attempt
    never starts before the previous wait has resolved.
    """

    def __init__(
        self,
        policy: SessionRetryPolicy,
        waiter: IsolatedWait | None = None,
        settings: RetrySettings | None = None,
    ):
        self.policy = policy
        self.settings = settings or policy.settings
        self.waiter = waiter or IsolatedWait(settings=self.settings)

    async def run(
        self,
        session_id: str,
        operation: Callable[[], Awaitable[T]],
        cancel_token: CancelToken | None = None,
    ) -> T:
        """
        Execute ``operation`` with session-level retries.

        Args:
            session_id: Session the operation belongs to
            operation: Factory creating a fresh awaitable per attempt
            cancel_token: User cancellation token (polled during waits)

        Returns:
            Result of the first successful attempt

        Raises:
            RetryTimeoutExceededError: Provider asked for a wait beyond the budget
            OperationAborted: User cancelled during a retry wait
            Exception: The last failure, when it is not retryable or the budget ran out
        """
        attempts: dict[ErrorKind, int] = {}

        # State is dropped on every exit, including task cancellation mid-wait
        try:
            while True:
                try:
                    return await operation()
                except Exception as exc:
                    error = classify(exc)
                    attempt = attempts.get(error.kind, 0) + 1

                    if error.kind is ErrorKind.ABORTED or not self.policy.allows(error, attempt):
                        logger.info(
                            "Operation failed with non-retryable error",
                            session_id=session_id,
                            kind=error.kind.value,
                            attempt=attempt,
                            error=error.message,
                        )
                        raise

                    check = self.policy.should_retry(session_id, error.kind)
                    if not check.should_retry:
                        record_budget_exceeded("session", self.settings)
                        raise

                    try:
                        delay = self.policy.delay(error, attempt)
                    except RetryTimeoutExceededError as timeout_error:
                        logger.error(
                            "retry-after exceeds timeout, failing immediately",
                            session_id=session_id,
                            retry_after_ms=timeout_error.retry_after_ms,
                            max_timeout_ms=timeout_error.max_timeout_ms,
                        )
                        raise timeout_error from exc

                    attempts[error.kind] = attempt
                    logger.info(
                        "Retrying",
                        session_id=session_id,
                        kind=error.kind.value,
                        attempt=attempt,
                        delay_ms=delay,
                        elapsed_ms=check.elapsed_ms,
                        max_ms=check.max_ms,
                    )
                    record_retry("session", error.kind.value, delay, self.settings)
                    self.policy.record_delay(session_id, delay)

                    outcome = await self.waiter.wait(delay, check.remaining_ms, cancel_token)
                    if outcome is WaitOutcome.USER_CANCELLED:
                        raise OperationAborted(session_id) from exc
                    if outcome is WaitOutcome.GLOBAL_BUDGET_EXCEEDED:
                        record_budget_exceeded("session", self.settings)
                        raise
        finally:
            self.policy.clear_retry_state(session_id)
