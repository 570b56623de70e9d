"""Error classification for remote failures.

Maps raw SDK/transport exceptions onto the closed ``ErrorKind`` taxonomy.
Rules are order-sensitive: the first match wins.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import httpx

from castor._http import AUTH_STATUS_CODES
from castor.errors import (
    APIError,
    AuthError,
    CastorError,
    ErrorKind,
    RateLimitError,
    _walk_exception_chain,
)
from castor.providers.models import Usage

if TYPE_CHECKING:
    from collections.abc import Iterable

AUTH_MESSAGE = "Invalid or missing OpenAI API key"
RATE_LIMIT_MESSAGE = "OpenAI API rate limit or quota exceeded. Please wait and retry."
SAFETY_MESSAGE = "Content was blocked by OpenAI safety filters"
CONTENT_BLOCKED_MESSAGE = "Request blocked due to content policy"

_AUTH_TERMS = ("api key", "unauthorized", "incorrect api key")
_RATE_LIMIT_TERMS = ("rate limit", "rate_limit", "ratelimit", "quota", "too many requests")
_SAFETY_TERMS = ("safety", "content_policy")
_CONTENT_BLOCKED_TERMS = ("blocked", "content policy", "moderation")
_TIMEOUT_TERMS = ("timeout", "timed out")


def extract_status_code(exc: BaseException) -> int | None:
    """Walk the exception chain to find an HTTP status code."""
    for e in _walk_exception_chain(exc):
        for attr in ("status_code", "status"):
            value = getattr(e, attr, None)
            if isinstance(value, int) and 100 <= value <= 599:
                return value
        response = getattr(e, "response", None)
        value = getattr(response, "status_code", None)
        if isinstance(value, int) and 100 <= value <= 599:
            return value
    return None


def error_message(exc: BaseException) -> str:
    """Return the most useful one-line message for *exc*."""
    if isinstance(exc, CastorError):
        return exc.message
    text = str(exc).strip()
    if not text:
        text = type(exc).__name__
    return text.splitlines()[0]


def _contains_any(haystack: str, needles: Iterable[str]) -> bool:
    return any(n in haystack for n in needles)


def _is_timeout(exc: BaseException) -> bool:
    for e in _walk_exception_chain(exc):
        if isinstance(e, (TimeoutError, asyncio.TimeoutError, httpx.TimeoutException)):
            return True
    return False


def _partial_usage(exc: BaseException) -> Usage | None:
    usage = getattr(exc, "usage", None)
    return usage if isinstance(usage, Usage) else None


def classify_error(exc: BaseException) -> CastorError:
    """Map *exc* onto the error taxonomy.

    Already-classified ``CastorError`` instances pass through untouched, so
    calling this twice is harmless.
    """
    if isinstance(exc, asyncio.CancelledError):
        raise exc
    if isinstance(exc, CastorError):
        return exc

    status_code = extract_status_code(exc)
    message = error_message(exc)
    lowered = message.lower()
    usage = _partial_usage(exc)

    if status_code in AUTH_STATUS_CODES or _contains_any(lowered, _AUTH_TERMS):
        return AuthError(
            AUTH_MESSAGE,
            hint="Check OPENAI_API_KEY (and OPENAI_ORG_ID if set).",
            status_code=status_code,
            retryable=False,
            usage=usage,
        )

    if status_code == 429 or _contains_any(lowered, _RATE_LIMIT_TERMS):
        return RateLimitError(
            RATE_LIMIT_MESSAGE,
            status_code=status_code,
            retryable=True,
            usage=usage,
        )

    if _contains_any(lowered, _SAFETY_TERMS):
        return APIError(
            SAFETY_MESSAGE,
            kind=ErrorKind.SAFETY_BLOCK,
            status_code=status_code,
            retryable=False,
            usage=usage,
        )

    if _contains_any(lowered, _CONTENT_BLOCKED_TERMS):
        return APIError(
            CONTENT_BLOCKED_MESSAGE,
            kind=ErrorKind.CONTENT_BLOCKED,
            status_code=status_code,
            retryable=False,
            usage=usage,
        )

    if _is_timeout(exc) or _contains_any(lowered, _TIMEOUT_TERMS):
        return APIError(
            message,
            kind=ErrorKind.TIMEOUT,
            status_code=status_code,
            usage=usage,
        )

    return APIError(message, status_code=status_code, usage=usage)
