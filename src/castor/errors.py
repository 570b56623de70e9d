"""Exception hierarchy and the closed error taxonomy for Castor."""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator

    from castor.providers.models import Usage


class ErrorKind(str, Enum):
    """Closed set of failure kinds surfaced across the tool boundary."""

    AUTH_ERROR = "AUTH_ERROR"
    RATE_LIMIT = "RATE_LIMIT"
    SAFETY_BLOCK = "SAFETY_BLOCK"
    CONTENT_BLOCKED = "CONTENT_BLOCKED"
    TIMEOUT = "TIMEOUT"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    API_ERROR = "API_ERROR"
    RESEARCH_FAILED = "RESEARCH_FAILED"


#: Kinds that no retry can fix.
NON_RETRYABLE_KINDS: frozenset[ErrorKind] = frozenset(
    {ErrorKind.AUTH_ERROR, ErrorKind.VALIDATION_ERROR, ErrorKind.RESEARCH_FAILED}
)


class CastorError(Exception):
    """Base exception for all Castor errors.

    ``str(err)`` is always the single-line ``"<KIND>: <message>"`` form that
    tool handlers hand back to the client.
    """

    default_kind: ErrorKind = ErrorKind.API_ERROR

    def __init__(
        self,
        message: str,
        *,
        kind: ErrorKind | None = None,
        hint: str | None = None,
        status_code: int | None = None,
        retryable: bool | None = None,
        response_id: str | None = None,
        usage: Usage | None = None,
    ) -> None:
        self.kind = kind or self.default_kind
        self.message = message
        super().__init__(f"{self.kind.value}: {message}")
        self.hint = hint
        self.status_code = status_code
        self.retryable = retryable
        self.response_id = response_id
        #: Partial usage reported by the remote before the failure, if any.
        self.usage = usage


class ConfigurationError(CastorError):
    """Startup configuration is missing or invalid."""

    default_kind = ErrorKind.VALIDATION_ERROR


class ValidationError(CastorError):
    """A request violated a parameter invariant; raised before any remote call."""

    default_kind = ErrorKind.VALIDATION_ERROR


class APIError(CastorError):
    """The remote API call failed.

    The ``kind`` carries the classifier's verdict (auth, rate limit, safety...).
    """


class AuthError(APIError):
    """Credentials were rejected (HTTP 401/403)."""

    default_kind = ErrorKind.AUTH_ERROR


class RateLimitError(APIError):
    """Rate limit or quota exceeded (HTTP 429)."""

    default_kind = ErrorKind.RATE_LIMIT


class ResearchFailedError(CastorError):
    """The remote research job reached the ``failed`` state."""

    default_kind = ErrorKind.RESEARCH_FAILED


class ResearchTimeoutError(CastorError):
    """The client-side polling budget ran out; the remote job may still be running."""

    default_kind = ErrorKind.TIMEOUT


def _walk_exception_chain(exc: BaseException) -> Iterator[BaseException]:
    """Yield *exc* and its ``__cause__``/``__context__`` chain, with cycle protection."""
    seen: set[int] = set()
    stack: list[BaseException] = [exc]
    while stack:
        cur = stack.pop()
        if id(cur) in seen:
            continue
        seen.add(id(cur))
        yield cur

        cause = cur.__cause__
        if isinstance(cause, BaseException):
            stack.append(cause)
        context = cur.__context__
        if isinstance(context, BaseException):
            stack.append(context)
