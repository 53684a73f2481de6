"""
Error classification.

Maps an arbitrary caught failure (exception, SDK error object, a propagated
429 ``httpx.Response``, or an inferred zero-token "unknown" finish) to
exactly one ``ErrorKind``. Checks run in priority order:

1. Cancellation -> ABORTED
2. Timeout signatures -> TIMEOUT
3. Socket/connection-reset vocabulary -> SOCKET_CONNECTION
4. Malformed stream / JSON parse vocabulary -> STREAM_PARSE
5. Rate-limit signatures (status 429, rate-limit vocabulary) -> RATE_LIMIT
6. Anything else -> UNKNOWN

STREAM_PARSE is classified but never retried by re-sending the request:
the consumer skips the corrupted event and keeps reading (see
``llm_resilience.retry.stream``).
"""

import asyncio
import json
from collections.abc import Mapping
from enum import Enum
from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict, Field

from llm_resilience.retry.exceptions import OperationAborted, RetryTimeoutExceededError


class ErrorKind(str, Enum):
    """Closed set of failure kinds recognised by the retry layer."""

    RATE_LIMIT = "rate_limit"
    TIMEOUT = "timeout"
    SOCKET_CONNECTION = "socket_connection"
    STREAM_PARSE = "stream_parse"
    ABORTED = "aborted"
    RETRY_TIMEOUT_EXCEEDED = "retry_timeout_exceeded"
    UNKNOWN = "unknown"

    @property
    def is_retryable(self) -> bool:
        return self in _RETRYABLE_KINDS


_RETRYABLE_KINDS = frozenset(
    {ErrorKind.RATE_LIMIT, ErrorKind.TIMEOUT, ErrorKind.SOCKET_CONNECTION}
)


class RetryableError(BaseModel):
    """
    Classified failure, immutable once created.

    Attributes:
        kind: Classified error kind
        message: Error message as raised
        is_retryable: Static retryability of ``kind``
        status_code: HTTP status, when the failure carried one
        response_headers: Lower-cased response headers, for delay computation
        raw_text: Raw provider text attached to the failure (e.g. a corrupted chunk)
    """

    model_config = ConfigDict(frozen=True)

    kind: ErrorKind
    message: str
    is_retryable: bool
    status_code: int | None = None
    response_headers: dict[str, str] | None = None
    raw_text: str | None = None
    error_name: str | None = Field(default=None, description="Exception type or SDK error name")


TIMEOUT_NAMES = frozenset({"TimeoutError", "ReadTimeout", "ConnectTimeout", "WriteTimeout", "PoolTimeout"})
TIMEOUT_VOCABULARY = ("timed out", "operation timeout", "request timeout")

SOCKET_VOCABULARY = (
    "socket",
    "connectionclosed",
    "connection closed",
    "closed unexpectedly",
    "connection reset",
    "connection refused",
    "connection aborted",
    "econnreset",
    "econnrefused",
    "epipe",
    "broken pipe",
    "server disconnected",
)

STREAM_PARSE_NAMES = frozenset({"AI_JSONParseError", "JSONDecodeError"})
STREAM_PARSE_VOCABULARY = (
    "ai_jsonparseerror",
    "json parsing failed",
    "json parse error",
    "unexpected end of json",
    "malformed stream",
)

RATE_LIMIT_VOCABULARY = ("rate limit", "rate_limit", "ratelimit", "too many requests")


def _error_names(error: object) -> set[str]:
    names = {type(error).__name__}
    sdk_name = getattr(error, "name", None)
    if isinstance(sdk_name, str):
        names.add(sdk_name)
    return names


def _message(error: object) -> str:
    if isinstance(error, httpx.Response):
        return f"HTTP {error.status_code} {error.reason_phrase}".strip()
    if isinstance(error, BaseException):
        return str(error) or type(error).__name__
    message = getattr(error, "message", None)
    return message if isinstance(message, str) else str(error)


def _response(error: object) -> httpx.Response | None:
    if isinstance(error, httpx.Response):
        return error
    response = getattr(error, "response", None)
    return response if isinstance(response, httpx.Response) else None


def _status_code(error: object) -> int | None:
    response = _response(error)
    if response is not None:
        return response.status_code
    for attr in ("status_code", "status", "statusCode"):
        value = getattr(error, attr, None)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    return None


def _headers(error: object) -> dict[str, str] | None:
    response = _response(error)
    raw: Any = response.headers if response is not None else None
    if raw is None:
        raw = getattr(error, "response_headers", None) or getattr(error, "headers", None)
    if not isinstance(raw, (Mapping, httpx.Headers)):
        return None
    return {str(key).lower(): str(value) for key, value in raw.items()}


def _raw_text(error: object) -> str | None:
    # Response.text would read (or fail on) an unread stream
    if isinstance(error, httpx.Response):
        return None
    for attr in ("text", "doc"):
        value = getattr(error, attr, None)
        if isinstance(value, str):
            return value
    return None


def _kind(error: object, names: set[str], lowered: str, status: int | None) -> ErrorKind:
    if isinstance(error, (asyncio.CancelledError, OperationAborted)) or "AbortError" in names:
        return ErrorKind.ABORTED

    if isinstance(error, RetryTimeoutExceededError):
        return ErrorKind.RETRY_TIMEOUT_EXCEEDED

    if (
        isinstance(error, (TimeoutError, httpx.TimeoutException))
        or names & TIMEOUT_NAMES
        or any(token in lowered for token in TIMEOUT_VOCABULARY)
    ):
        return ErrorKind.TIMEOUT

    if isinstance(error, (ConnectionError, httpx.NetworkError, httpx.RemoteProtocolError)) or any(
        token in lowered for token in SOCKET_VOCABULARY
    ):
        return ErrorKind.SOCKET_CONNECTION

    if (
        isinstance(error, json.JSONDecodeError)
        or names & STREAM_PARSE_NAMES
        or any(token in lowered for token in STREAM_PARSE_VOCABULARY)
    ):
        return ErrorKind.STREAM_PARSE

    if status == 429 or any(token in lowered for token in RATE_LIMIT_VOCABULARY):
        return ErrorKind.RATE_LIMIT

    return ErrorKind.UNKNOWN


def classify(error: object) -> RetryableError:
    """
    Classify a caught failure.

    Args:
        error: Exception, SDK error object or a propagated httpx.Response

    Returns:
        RetryableError carrying the raised message and, when available,
        status code and response headers.
    """
    names = _error_names(error)
    message = _message(error)
    status = _status_code(error)
    kind = _kind(error, names, message.lower(), status)

    return RetryableError(
        kind=kind,
        message=message,
        is_retryable=kind.is_retryable,
        status_code=status,
        response_headers=_headers(error),
        raw_text=_raw_text(error),
        error_name=type(error).__name__ if isinstance(error, BaseException) else None,
    )


def is_retryable_network_error(error: BaseException) -> bool:
    """True for transport failures the fetch wrapper may retry in place."""
    return classify(error).kind is ErrorKind.SOCKET_CONNECTION


def classify_finish(finish_reason: str | None, output_tokens: int | None) -> RetryableError | None:
    """
    Infer a failure from finish semantics.

    Some providers end a stream with an ``unknown`` (or missing) finish
    reason and no output at all. That is a failed exchange even though no
    exception was raised.

    Returns:
        UNKNOWN RetryableError for a zero-token unknown finish, else None
    """
    if (output_tokens or 0) > 0:
        return None
    if finish_reason not in (None, "", "unknown"):
        return None
    return RetryableError(
        kind=ErrorKind.UNKNOWN,
        message=f"Provider finished with reason {finish_reason or 'unknown'!r} and zero output tokens",
        is_retryable=False,
    )
