"""Custom Prometheus metrics for the LLM resilience layer.

These metrics are exposed by whatever process embeds the layer and should be
scraped by Prometheus. Alert rules should be configured for:
- retry_attempts_total (sustained rate limiting or connection churn)
- retry_budget_exceeded_total (operations abandoned after the global budget)
"""

from prometheus_client import Counter, Histogram

from llm_resilience.config import RetrySettings, get_settings

# === Retry Metrics ===

retry_attempts_total = Counter(
    "retry_attempts_total",
    "Total retries scheduled by layer and error kind",
    ["layer", "kind"],
)
"""
Retries scheduled, counted before the wait starts.

Labels:
- layer: fetch (single HTTP exchange), session (whole logical operation)
- kind: rate_limit, timeout, socket_connection, ...

Alert thresholds:
- WARN: rate_limit retries > 10% of total requests
"""

retry_wait_seconds = Histogram(
    "retry_wait_seconds",
    "Scheduled retry wait durations in seconds",
    ["layer"],
    buckets=[1.0, 5.0, 30.0, 60.0, 300.0, 1200.0, 3600.0, 21600.0, 86400.0],
)
"""
Scheduled wait durations.

Buckets span sub-minute socket backoff up to day-long rate-limit windows.
"""

retry_wait_outcomes_total = Counter(
    "retry_wait_outcomes_total",
    "Isolated wait outcomes",
    ["outcome"],
)
"""
Labels:
- outcome: completed, global_budget_exceeded, user_cancelled
"""

retry_budget_exceeded_total = Counter(
    "retry_budget_exceeded_total",
    "Operations that stopped retrying because of the global retry budget",
    ["layer"],
)


def _enabled(settings: RetrySettings | None) -> bool:
    return (settings or get_settings()).PROMETHEUS_ENABLED


def record_retry(
    layer: str, kind: str, delay_ms: float, settings: RetrySettings | None = None
) -> None:
    """Record one scheduled retry and its wait duration."""
    if not _enabled(settings):
        return
    retry_attempts_total.labels(layer=layer, kind=kind).inc()
    retry_wait_seconds.labels(layer=layer).observe(delay_ms / 1000)


def record_wait_outcome(outcome: str, settings: RetrySettings | None = None) -> None:
    if not _enabled(settings):
        return
    retry_wait_outcomes_total.labels(outcome=outcome).inc()


def record_budget_exceeded(layer: str, settings: RetrySettings | None = None) -> None:
    if not _enabled(settings):
        return
    retry_budget_exceeded_total.labels(layer=layer).inc()
