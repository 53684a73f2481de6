"""
Unit tests for the fetch-level retry wrapper.

The inner transport is a scripted async function; waits go through the
RecordingWaiter fixture so no test actually sleeps.
"""

import httpx
import pytest

from llm_resilience.retry.cancellation import CancelToken
from llm_resilience.retry.fetch import RetryingSender, wrap
from llm_resilience.retry.wait import WaitOutcome


class ScriptedTransport:
    """Async send function returning (or raising) scripted results in order."""

    def __init__(self, *results):
        self.results = list(results)
        self.requests: list[httpx.Request] = []
        self.responses: list[httpx.Response] = []

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        result = self.results.pop(0)
        if isinstance(result, BaseException):
            raise result
        status, headers = result
        response = httpx.Response(status, headers=headers, request=request)
        self.responses.append(response)
        return response

    @property
    def calls(self) -> int:
        return len(self.requests)


def make_request(**extensions) -> httpx.Request:
    return httpx.Request(
        "POST", "https://api.example.com/v1/chat/completions", extensions=extensions
    )


def make_sender(transport, test_settings, waiter, clock) -> RetryingSender:
    return wrap(
        transport,
        session_label="ses_test",
        settings=test_settings,
        waiter=waiter,
        clock=clock,
    )


class TestPassThrough:
    """Test that non-429 responses are untouched."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [200, 201, 400, 401, 404, 500, 503])
    async def test_non_429_returned_unchanged(self, status, test_settings, waiter, clock):
        transport = ScriptedTransport((status, {"retry-after": "5"}))
        send = make_sender(transport, test_settings, waiter, clock)

        response = await send(make_request())

        assert response is transport.responses[0]
        assert response.status_code == status
        assert transport.calls == 1
        assert waiter.calls == []


class TestRateLimitRetry:
    """Test 429 handling."""

    @pytest.mark.asyncio
    async def test_retry_after_then_success(self, test_settings, waiter, clock):
        transport = ScriptedTransport((429, {"retry-after": "60"}), (200, {}))
        send = make_sender(transport, test_settings, waiter, clock)

        response = await send(make_request())

        assert response.status_code == 200
        assert transport.calls == 2
        assert len(waiter.durations) == 1
        assert 60_000 <= waiter.durations[0] <= 66_000

    @pytest.mark.asyncio
    async def test_same_request_is_resent(self, test_settings, waiter, clock):
        transport = ScriptedTransport((429, {"retry-after": "1"}), (200, {}))
        send = make_sender(transport, test_settings, waiter, clock)
        request = make_request()

        await send(request)

        assert transport.requests == [request, request]

    @pytest.mark.asyncio
    async def test_discarded_429_is_closed(self, test_settings, waiter, clock):
        transport = ScriptedTransport((429, {"retry-after": "1"}), (200, {}))
        send = make_sender(transport, test_settings, waiter, clock)

        await send(make_request())

        assert transport.responses[0].is_closed

    @pytest.mark.asyncio
    async def test_zero_budget_returns_429_immediately(self, test_settings, waiter, clock):
        test_settings.RETRY_TIMEOUT = 0
        transport = ScriptedTransport((429, {"retry-after": "1"}))
        send = make_sender(transport, test_settings, waiter, clock)

        response = await send(make_request())

        assert response.status_code == 429
        assert transport.calls == 1
        assert waiter.calls == []

    @pytest.mark.asyncio
    async def test_retry_after_beyond_budget_returns_429(self, test_settings, waiter, clock):
        transport = ScriptedTransport((429, {"retry-after": str(2 * 3600)}))
        send = make_sender(transport, test_settings, waiter, clock)

        response = await send(make_request())

        assert response.status_code == 429
        assert response.headers["retry-after"] == "7200"
        assert transport.calls == 1
        assert waiter.calls == []

    @pytest.mark.asyncio
    async def test_budget_consumed_by_earlier_waits(self, test_settings, waiter, clock):
        test_settings.RETRY_TIMEOUT = 100
        transport = ScriptedTransport(
            (429, {"retry-after": "60"}), (429, {"retry-after": "60"}), (200, {})
        )
        send = make_sender(transport, test_settings, waiter, clock)

        response = await send(make_request())

        assert response.status_code == 429
        assert transport.calls == 2
        assert len(waiter.calls) == 1

    @pytest.mark.asyncio
    async def test_backoff_without_headers(self, test_settings, waiter, clock):
        transport = ScriptedTransport((429, {}), (429, {}), (200, {}))
        send = make_sender(transport, test_settings, waiter, clock)

        response = await send(make_request())

        assert response.status_code == 200
        assert transport.calls == 3
        # Header-less backoff (2s, 4s) is raised to the 30s floor
        assert all(30_000 <= delay <= 33_000 for delay in waiter.durations)

    @pytest.mark.asyncio
    async def test_retry_after_ms_header(self, test_settings, waiter, clock):
        test_settings.MIN_RETRY_INTERVAL_MS = 0
        transport = ScriptedTransport((429, {"retry-after-ms": "1500"}), (200, {}))
        send = make_sender(transport, test_settings, waiter, clock)

        await send(make_request())

        assert 1500 <= waiter.durations[0] <= 1650

    @pytest.mark.asyncio
    async def test_remaining_budget_passed_to_waiter(self, test_settings, waiter, clock):
        transport = ScriptedTransport((429, {"retry-after": "60"}), (200, {}))
        send = make_sender(transport, test_settings, waiter, clock)

        await send(make_request())

        _, remaining, _ = waiter.calls[0]
        assert remaining == 3600 * 1000

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "outcome", [WaitOutcome.USER_CANCELLED, WaitOutcome.GLOBAL_BUDGET_EXCEEDED]
    )
    async def test_interrupted_wait_returns_last_response(self, outcome, test_settings, waiter, clock):
        waiter.outcomes = [outcome]
        transport = ScriptedTransport((429, {"retry-after": "60"}), (200, {}))
        send = make_sender(transport, test_settings, waiter, clock)

        response = await send(make_request())

        assert response.status_code == 429
        assert transport.calls == 1
        assert not response.is_closed

    @pytest.mark.asyncio
    async def test_cancel_token_from_request_extensions(self, test_settings, waiter, clock):
        token = CancelToken()
        transport = ScriptedTransport((429, {"retry-after": "60"}), (200, {}))
        send = make_sender(transport, test_settings, waiter, clock)

        await send(make_request(cancel_token=token))

        _, _, external = waiter.calls[0]
        assert external is token

    @pytest.mark.asyncio
    async def test_default_cancel_token(self, test_settings, waiter, clock):
        token = CancelToken()
        transport = ScriptedTransport((429, {"retry-after": "60"}), (200, {}))
        send = wrap(
            transport, "ses_test", settings=test_settings, waiter=waiter, clock=clock, cancel_token=token
        )

        await send(make_request())

        assert waiter.calls[0][2] is token


class TestNetworkErrorRetry:
    """Test retries of thrown transport errors."""

    @pytest.mark.asyncio
    async def test_connection_reset_then_success(self, test_settings, waiter, clock):
        transport = ScriptedTransport(ConnectionResetError("ECONNRESET"), (200, {}))
        send = make_sender(transport, test_settings, waiter, clock)

        response = await send(make_request())

        assert response.status_code == 200
        assert transport.calls == 2
        assert waiter.durations == [2000]

    @pytest.mark.asyncio
    async def test_httpx_connect_error_is_retried(self, test_settings, waiter, clock):
        transport = ScriptedTransport(
            httpx.ConnectError("connection refused"), httpx.ReadError("socket closed"), (200, {})
        )
        send = make_sender(transport, test_settings, waiter, clock)

        response = await send(make_request())

        assert response.status_code == 200
        assert waiter.durations == [2000, 4000]

    @pytest.mark.asyncio
    async def test_network_retries_are_capped(self, test_settings, waiter, clock):
        errors = [ConnectionResetError(f"reset {n}") for n in range(5)]
        transport = ScriptedTransport(*errors)
        send = make_sender(transport, test_settings, waiter, clock)

        with pytest.raises(ConnectionResetError, match="reset 3"):
            await send(make_request())

        assert transport.calls == 4

    @pytest.mark.asyncio
    async def test_network_error_rethrown_when_budget_spent(self, test_settings, waiter, clock):
        test_settings.RETRY_TIMEOUT = 0
        transport = ScriptedTransport(ConnectionResetError("reset"))
        send = make_sender(transport, test_settings, waiter, clock)

        with pytest.raises(ConnectionResetError):
            await send(make_request())

        assert waiter.calls == []

    @pytest.mark.asyncio
    async def test_user_cancel_during_network_wait_rethrows(self, test_settings, waiter, clock):
        waiter.outcomes = [WaitOutcome.USER_CANCELLED]
        transport = ScriptedTransport(ConnectionResetError("reset"), (200, {}))
        send = make_sender(transport, test_settings, waiter, clock)

        with pytest.raises(ConnectionResetError):
            await send(make_request())

        assert transport.calls == 1

    @pytest.mark.asyncio
    async def test_non_retryable_error_raised_immediately(self, test_settings, waiter, clock):
        transport = ScriptedTransport(ValueError("bad request body"))
        send = make_sender(transport, test_settings, waiter, clock)

        with pytest.raises(ValueError, match="bad request body"):
            await send(make_request())

        assert transport.calls == 1
        assert waiter.calls == []

    @pytest.mark.asyncio
    async def test_timeout_is_not_retried_at_fetch_level(self, test_settings, waiter, clock):
        transport = ScriptedTransport(httpx.ReadTimeout("timed out"))
        send = make_sender(transport, test_settings, waiter, clock)

        with pytest.raises(httpx.ReadTimeout):
            await send(make_request())

        assert transport.calls == 1

    @pytest.mark.asyncio
    async def test_rate_limit_backoff_not_advanced_by_network_retries(
        self, test_settings, waiter, clock
    ):
        test_settings.MIN_RETRY_INTERVAL_MS = 0
        test_settings.MAX_BACKOFF_NO_HEADERS_MS = 60_000
        transport = ScriptedTransport(
            ConnectionResetError("reset 1"),
            ConnectionResetError("reset 2"),
            (429, {}),
            (429, {}),
            (200, {}),
        )
        send = wrap(
            transport,
            session_label="ses_test",
            settings=test_settings,
            waiter=waiter,
            clock=clock,
            rand=lambda: 0.0,
        )

        response = await send(make_request())

        assert response.status_code == 200
        assert waiter.durations == [2000, 4000, 2000, 4000]
