"""
Retry layer for outbound LLM provider calls.

Two complementary layers keep three time domains apart (the per-request
provider timeout, the server-dictated rate-limit wait and the global retry
budget):

1. **Fetch wrapper**: retries 429s and network blips inside one HTTP exchange
2. **Session policy**: retries whole logical operations after timeouts,
   socket drops and rate limits that escaped the fetch wrapper

Main Components:
    - wrap / RetryTransport: Fetch-level retry wrapper
    - IsolatedWait: Waits that only the global budget or the user can cut short
    - classify: Maps failures to an ErrorKind
    - SessionRetryPolicy: Per-kind backoff and per-session budget tracking
    - SessionRetryRunner: Runs a logical operation under the policy

Usage:
    >>> from llm_resilience.retry import RetryTransport, SessionRetryPolicy, SessionRetryRunner
    >>> client = httpx.AsyncClient(transport=RetryTransport(session_label=session_id))
    >>> runner = SessionRetryRunner(SessionRetryPolicy(store))
    >>> result = await runner.run(session_id, lambda: call_model(client))
"""

from llm_resilience.retry.cancellation import CancelToken
from llm_resilience.retry.classifier import (
    ErrorKind,
    RetryableError,
    classify,
    classify_finish,
)
from llm_resilience.retry.delay import DelayDecision, calculate_delay, parse_retry_after
from llm_resilience.retry.exceptions import OperationAborted, RetryTimeoutExceededError
from llm_resilience.retry.fetch import RetryingSender, RetryTransport, wrap
from llm_resilience.retry.policy import RetryCheck, SessionRetryPolicy
from llm_resilience.retry.runner import SessionRetryRunner
from llm_resilience.retry.state import RetryState, RetryStateStore
from llm_resilience.retry.stream import iter_events
from llm_resilience.retry.wait import IsolatedWait, WaitOutcome

__all__ = [
    "CancelToken",
    "DelayDecision",
    "ErrorKind",
    "IsolatedWait",
    "OperationAborted",
    "RetryCheck",
    "RetryState",
    "RetryStateStore",
    "RetryTimeoutExceededError",
    "RetryTransport",
    "RetryableError",
    "RetryingSender",
    "SessionRetryPolicy",
    "SessionRetryRunner",
    "WaitOutcome",
    "calculate_delay",
    "classify",
    "classify_finish",
    "iter_events",
    "parse_retry_after",
    "wrap",
]
