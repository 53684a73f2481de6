"""
Unit tests for delay calculation.

Covers header parsing precedence, jitter bounds, exponential backoff and
the distinguishable "exceeded" result.
"""

from datetime import datetime, timedelta, timezone
from email.utils import format_datetime

import httpx
import pytest

from llm_resilience.retry.delay import (
    DelayDecision,
    add_jitter,
    backoff_delay,
    calculate_delay,
    parse_retry_after,
)

NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)
HOUR_MS = 3_600_000


def max_jitter() -> float:
    return 0.999999


class TestParseRetryAfter:
    """Test header hint parsing."""

    def test_no_headers(self):
        assert parse_retry_after(None) is None
        assert parse_retry_after({}) is None

    def test_retry_after_ms_takes_precedence(self):
        headers = {"retry-after-ms": "1500", "retry-after": "60"}
        assert parse_retry_after(headers) == 1500

    def test_retry_after_seconds(self):
        assert parse_retry_after({"retry-after": "60"}) == 60_000

    def test_fractional_seconds_round_up(self):
        assert parse_retry_after({"retry-after": "1.0005"}) == 1001

    def test_http_date(self):
        target = NOW + timedelta(seconds=90)
        headers = {"retry-after": format_datetime(target, usegmt=True)}
        assert parse_retry_after(headers, now=NOW) == 90_000

    def test_http_date_in_the_past_is_ignored(self):
        target = NOW - timedelta(seconds=90)
        headers = {"retry-after": format_datetime(target, usegmt=True)}
        assert parse_retry_after(headers, now=NOW) is None

    def test_zero_is_a_valid_hint(self):
        assert parse_retry_after({"retry-after": "0"}) == 0

    @pytest.mark.parametrize("value", ["-5", "nan", "inf", "soon", ""])
    def test_unusable_values_are_absent(self, value):
        assert parse_retry_after({"retry-after": value, "retry-after-ms": value}) is None

    def test_invalid_ms_falls_back_to_seconds(self):
        headers = {"retry-after-ms": "garbage", "retry-after": "2"}
        assert parse_retry_after(headers) == 2000

    def test_httpx_headers_are_case_insensitive(self):
        headers = httpx.Headers({"Retry-After": "5"})
        assert parse_retry_after(headers) == 5000

    def test_plain_dict_with_mixed_case_keys(self):
        assert parse_retry_after({"Retry-After-Ms": "250"}) == 250


class TestJitterAndBackoff:
    """Test jitter bounds and backoff curve."""

    def test_jitter_bounds(self):
        assert add_jitter(10_000, lambda: 0.0) == 10_000
        assert add_jitter(10_000, max_jitter) <= 11_000
        assert add_jitter(10_000, max_jitter) >= 10_000

    def test_backoff_curve(self):
        assert backoff_delay(1, 30_000) == 2000
        assert backoff_delay(2, 30_000) == 4000
        assert backoff_delay(3, 30_000) == 8000
        assert backoff_delay(10, 30_000) == 30_000

    def test_backoff_is_monotonic_up_to_cap(self):
        delays = [backoff_delay(attempt, 30_000) for attempt in range(1, 12)]
        assert delays == sorted(delays)
        assert max(delays) == 30_000

    def test_backoff_rejects_attempt_zero(self):
        with pytest.raises(ValueError):
            backoff_delay(0, 30_000)


class TestCalculateDelay:
    """Test the full delay decision."""

    @pytest.mark.parametrize("seconds", [30, 60, 600, 3599])
    def test_header_delay_within_jitter_window(self, seconds):
        decision = calculate_delay(
            {"retry-after": str(seconds)}, 1, HOUR_MS, 30_000, 30_000
        )
        v = seconds * 1000
        assert not decision.exceeded
        assert v <= decision.delay_ms <= v * 1.1
        assert decision.hint_ms == v

    def test_header_exceeding_budget_signals_exceeded(self):
        decision = calculate_delay({"retry-after": "7200"}, 1, HOUR_MS, 30_000, 30_000)
        assert decision == DelayDecision(delay_ms=None, exceeded=True, hint_ms=7_200_000)

    def test_header_is_floored_at_min_interval(self):
        decision = calculate_delay(
            {"retry-after-ms": "100"}, 1, HOUR_MS, 30_000, 30_000, rand=lambda: 0.0
        )
        assert decision.delay_ms == 30_000

    def test_zero_header_retries_at_floor(self):
        decision = calculate_delay(
            {"retry-after": "0"}, 1, HOUR_MS, 30_000, 0, rand=lambda: 0.0
        )
        assert decision.delay_ms == 0
        assert not decision.exceeded

    def test_backoff_without_headers(self):
        delays = [
            calculate_delay(None, attempt, HOUR_MS, 30_000, 0, rand=lambda: 0.0).delay_ms
            for attempt in (1, 2, 3, 4, 5)
        ]
        assert delays == [2000, 4000, 8000, 16_000, 30_000]

    def test_backoff_jitter_bounds_per_attempt(self):
        for attempt in range(1, 8):
            base = backoff_delay(attempt, 30_000)
            decision = calculate_delay(None, attempt, HOUR_MS, 30_000, 0)
            assert base <= decision.delay_ms <= base * 1.1

    def test_backoff_floor(self):
        decision = calculate_delay(None, 1, HOUR_MS, 30_000, 30_000, rand=lambda: 0.0)
        assert decision.delay_ms == 30_000

    def test_backoff_never_signals_exceeded(self):
        decision = calculate_delay(None, 1, 0, 30_000, 30_000)
        assert not decision.exceeded
