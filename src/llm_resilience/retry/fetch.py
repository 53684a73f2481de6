"""
Fetch-level retry wrapper.

Wraps a transport (an async callable ``httpx.Request -> httpx.Response``, or
an ``httpx.AsyncBaseTransport``) and transparently retries the same request on:

- HTTP 429, honouring ``retry-after-ms`` / ``retry-after`` hints
- retryable network errors (socket/connection resets), with exponential backoff

It handles rate limits below any SDK-level retry, which usually counts a
fixed number of attempts and ignores server wait hints. Waits use
``IsolatedWait``, so a 15-hour rate-limit window is not aborted by a
5-minute provider timeout. Every status other than 429 passes through
untouched, and once the global budget is spent the last 429 response is
returned as-is for higher-level handling. No new exception types are raised.

Usage:
    >>> send = wrap(client_send, session_label="ses_123")
    >>> response = await send(request)

    >>> transport = RetryTransport(httpx.AsyncHTTPTransport(), session_label="ses_123")
    >>> client = httpx.AsyncClient(transport=transport)
"""

import random
from collections.abc import Awaitable, Callable
from datetime import datetime

import httpx
import structlog

from llm_resilience.config import RetrySettings, get_settings
from llm_resilience.monitoring.metrics import record_budget_exceeded, record_retry
from llm_resilience.retry.cancellation import CancelToken
from llm_resilience.retry.classifier import ErrorKind, is_retryable_network_error
from llm_resilience.retry.delay import backoff_delay, calculate_delay
from llm_resilience.retry.state import monotonic_ms
from llm_resilience.retry.wait import IsolatedWait, WaitOutcome

logger = structlog.get_logger(__name__)

Transport = Callable[[httpx.Request], Awaitable[httpx.Response]]

CANCEL_TOKEN_EXTENSION = "cancel_token"


class RetryingSender:
    """
    Async send function with rate-limit and network-error retries.

    Attributes:
        transport: Inner send function
        session_label: Label attached to every log event
    """

    def __init__(
        self,
        transport: Transport,
        session_label: str = "unknown",
        *,
        settings: RetrySettings | None = None,
        waiter: IsolatedWait | None = None,
        cancel_token: CancelToken | None = None,
        clock: Callable[[], float] = monotonic_ms,
        rand: Callable[[], float] = random.random,
        now: Callable[[], datetime] | None = None,
    ):
        """
        Args:
            transport: Inner async send function
            session_label: Session id or label for logging
            settings: Explicit settings (read from the environment per request if None)
            waiter: Isolated wait controller
            cancel_token: Default user cancellation token; a token in
                ``request.extensions["cancel_token"]`` takes precedence
            clock: Monotonic clock in milliseconds
            rand: Random source for jitter
            now: Wall-clock source for HTTP-date hints
        """
        self.transport = transport
        self.session_label = session_label
        self.settings = settings
        self.waiter = waiter or IsolatedWait(settings=settings)
        self.cancel_token = cancel_token
        self._clock = clock
        self._rand = rand
        self._now = now

    def _user_token(self, request: httpx.Request) -> CancelToken | None:
        extensions = getattr(request, "extensions", None) or {}
        token = extensions.get(CANCEL_TOKEN_EXTENSION)
        return token if isinstance(token, CancelToken) else self.cancel_token

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        settings = self.settings or get_settings()
        budget_ms = settings.retry_timeout_ms
        user_token = self._user_token(request)
        start = self._clock()
        attempt = 0  # 429 responses only
        network_retries = 0

        while True:
            try:
                response = await self.transport(request)
            except Exception as exc:
                if not is_retryable_network_error(exc):
                    raise
                network_retries += 1
                if not await self._wait_after_network_error(
                    exc, network_retries, start, budget_ms, user_token, settings
                ):
                    raise
                continue

            if response.status_code != 429:
                return response
            attempt += 1

            elapsed = self._clock() - start
            if elapsed >= budget_ms:
                logger.warning(
                    "Retry timeout exceeded in fetch wrapper, returning 429",
                    session_id=self.session_label,
                    elapsed_ms=elapsed,
                    max_ms=budget_ms,
                )
                record_budget_exceeded("fetch", settings)
                return response

            remaining = budget_ms - elapsed
            decision = calculate_delay(
                response.headers,
                attempt,
                remaining,
                settings.MAX_BACKOFF_NO_HEADERS_MS,
                settings.MIN_RETRY_INTERVAL_MS,
                now=self._now() if self._now is not None else None,
                rand=self._rand,
            )
            if decision.exceeded or decision.delay_ms is None:
                logger.warning(
                    "retry-after exceeds remaining timeout, returning 429 response",
                    session_id=self.session_label,
                    elapsed_ms=elapsed,
                    remaining_ms=remaining,
                )
                record_budget_exceeded("fetch", settings)
                return response

            delay = decision.delay_ms
            if elapsed + delay >= budget_ms:
                logger.warning(
                    "Delay would exceed retry timeout, returning 429 response",
                    session_id=self.session_label,
                    elapsed_ms=elapsed,
                    delay_ms=delay,
                    max_ms=budget_ms,
                )
                record_budget_exceeded("fetch", settings)
                return response

            logger.info(
                "Rate limited, will retry",
                session_id=self.session_label,
                attempt=attempt,
                delay_ms=delay,
                delay_minutes=round(delay / 60_000, 2),
                elapsed_ms=elapsed,
                remaining_ms=remaining,
                remaining_hours=round(remaining / 3_600_000, 2),
            )
            record_retry("fetch", ErrorKind.RATE_LIMIT.value, delay, settings)

            outcome = await self.waiter.wait(delay, remaining, user_token)
            if outcome is WaitOutcome.USER_CANCELLED:
                logger.info("Rate limit wait aborted by user cancellation", session_id=self.session_label)
                return response
            if outcome is WaitOutcome.GLOBAL_BUDGET_EXCEEDED:
                logger.info("Rate limit wait exceeded global timeout", session_id=self.session_label)
                record_budget_exceeded("fetch", settings)
                return response

            # The 429 is discarded; release its connection before resending
            await response.aclose()

    async def _wait_after_network_error(
        self,
        exc: Exception,
        retry_number: int,
        start: float,
        budget_ms: float,
        user_token: CancelToken | None,
        settings: RetrySettings,
    ) -> bool:
        """Wait before resending after a network error; False means give up."""
        elapsed = self._clock() - start
        if elapsed >= budget_ms:
            logger.warning(
                "Network error retry timeout exceeded, re-raising",
                session_id=self.session_label,
                elapsed_ms=elapsed,
                max_ms=budget_ms,
                error=str(exc),
            )
            record_budget_exceeded("fetch", settings)
            return False
        if retry_number > settings.FETCH_NETWORK_MAX_RETRIES:
            logger.warning(
                "Network error retries exhausted, re-raising",
                session_id=self.session_label,
                retries=retry_number - 1,
                error=str(exc),
            )
            return False

        delay = backoff_delay(retry_number, settings.MAX_RETRY_DELAY_MS)
        logger.info(
            "Network error, retrying",
            session_id=self.session_label,
            attempt=retry_number,
            delay_ms=delay,
            error=str(exc),
        )
        record_retry("fetch", ErrorKind.SOCKET_CONNECTION.value, delay, settings)

        outcome = await self.waiter.wait(delay, budget_ms - elapsed, user_token)
        return outcome is WaitOutcome.COMPLETED


def wrap(transport: Transport, session_label: str = "unknown", **options) -> RetryingSender:
    """
    Wrap an async send function (e.g. an OAuth-signing send) with retry handling.

    Args:
        transport: Inner async send function
        session_label: Session id or label for logging
        **options: Forwarded to RetryingSender

    Returns:
        Send function with the same signature as ``transport``
    """
    return RetryingSender(transport, session_label, **options)


class RetryTransport(httpx.AsyncBaseTransport):
    """httpx transport applying fetch-level retries to every request."""

    def __init__(
        self,
        transport: httpx.AsyncBaseTransport | None = None,
        session_label: str = "unknown",
        **options,
    ):
        """
        Args:
            transport: Inner transport (defaults to httpx.AsyncHTTPTransport)
            session_label: Session id or label for logging
            **options: Forwarded to RetryingSender
        """
        self._transport = transport or httpx.AsyncHTTPTransport()
        self._send = RetryingSender(self._transport.handle_async_request, session_label, **options)

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        return await self._send(request)

    async def aclose(self) -> None:
        await self._transport.aclose()
