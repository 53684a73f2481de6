"""Monitoring and metrics instrumentation for the LLM resilience layer.

Exports custom Prometheus metrics for operational monitoring and alerting.
"""

from llm_resilience.monitoring.metrics import (
    record_budget_exceeded,
    record_retry,
    record_wait_outcome,
    retry_attempts_total,
    retry_budget_exceeded_total,
    retry_wait_outcomes_total,
    retry_wait_seconds,
)

__all__ = [
    "retry_attempts_total",
    "retry_wait_seconds",
    "retry_wait_outcomes_total",
    "retry_budget_exceeded_total",
    "record_retry",
    "record_wait_outcome",
    "record_budget_exceeded",
]
