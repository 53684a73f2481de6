"""
Retry layer exceptions.

Only two situations are signalled by raising: the terminal case where a
provider asks for a wait longer than the whole retry budget, and a user
cancellation observed while the runner was waiting. Every other "give up"
decision is returned as a value (see ``DelayDecision`` and ``WaitOutcome``).
"""


class RetryTimeoutExceededError(Exception):
    """
    Raised when a server-dictated wait exceeds the global retry budget.

    This is terminal for the logical operation: operators must either raise
    ``AGENT_RETRY_TIMEOUT`` or accept the failure.

    Attributes:
        retry_after_ms: Wait requested by the provider (ms)
        max_timeout_ms: Configured global retry budget (ms)
    """

    def __init__(self, retry_after_ms: float, max_timeout_ms: float) -> None:
        self.retry_after_ms = retry_after_ms
        self.max_timeout_ms = max_timeout_ms

        super().__init__(
            f"API returned retry-after of {retry_after_ms / 3_600_000:.2f} hours, "
            f"which exceeds the maximum retry timeout of "
            f"{max_timeout_ms / 3_600_000:.2f} hours. "
            f"Failing immediately instead of waiting."
        )


class OperationAborted(Exception):
    """Raised when the user cancelled a logical operation during a retry wait."""

    def __init__(self, session_id: str, message: str = "Operation aborted by user") -> None:
        self.session_id = session_id
        super().__init__(message)
