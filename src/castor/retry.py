"""Async retry with per-attempt deadlines and deterministic backoff.

Design goals:
- Small API surface: one policy object, one executor
- Explicit state (policy + attempt counters)
- Every attempt and retry decision is visible in the log
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
from typing import TYPE_CHECKING, TypeVar

import httpx

from castor._http import AUTH_STATUS_CODES, RETRYABLE_STATUS_CODES
from castor.errors import NON_RETRYABLE_KINDS, CastorError, _walk_exception_chain
from castor.providers._errors import error_message, extract_status_code

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Sequence

T = TypeVar("T")

logger = logging.getLogger(__name__)

DEFAULT_RETRYABLE_PATTERNS: tuple[str, ...] = (
    "RATE_LIMIT",
    "429",
    "503",
    "502",
    "ECONNRESET",
    "ETIMEDOUT",
    "ENOTFOUND",
    "temporarily unavailable",
    "too many requests",
)

#: Patterns for generation calls: transport-transient signals only.
TRANSIENT_PATTERNS: tuple[str, ...] = (
    "RATE_LIMIT",
    "429",
    "503",
    "502",
    "ECONNRESET",
    "ETIMEDOUT",
)

# One hour: "high"/"xhigh" reasoning can legitimately run that long.
DEFAULT_ATTEMPT_TIMEOUT_S = 60 * 60.0


class AttemptTimeoutError(TimeoutError):
    """A single attempt exceeded its deadline."""


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry policy with deterministic exponential backoff."""

    max_retries: int = 3
    initial_delay_s: float = 1.0
    max_delay_s: float = 30.0
    backoff_multiplier: float = 2.0
    retryable_patterns: tuple[str, ...] = DEFAULT_RETRYABLE_PATTERNS
    #: ``None`` disables the per-attempt deadline.
    attempt_timeout_s: float | None = DEFAULT_ATTEMPT_TIMEOUT_S

    def __post_init__(self) -> None:
        """Validate invariants to keep retry behavior predictable."""
        if self.max_retries < 0:
            raise ValueError("RetryPolicy.max_retries must be >= 0")
        if self.initial_delay_s < 0:
            raise ValueError("RetryPolicy.initial_delay_s must be >= 0")
        if self.backoff_multiplier < 1:
            raise ValueError("RetryPolicy.backoff_multiplier must be >= 1")
        if self.max_delay_s < 0:
            raise ValueError("RetryPolicy.max_delay_s must be >= 0")
        if self.attempt_timeout_s is not None and self.attempt_timeout_s <= 0:
            raise ValueError("RetryPolicy.attempt_timeout_s must be > 0 or None")

    @property
    def max_attempts(self) -> int:
        """Total attempts, first try included."""
        return self.max_retries + 1

    def next_delay(self, delay_s: float) -> float:
        """Return the delay that follows *delay_s*."""
        return min(delay_s * self.backoff_multiplier, self.max_delay_s)


def _is_transient_network_error(exc: BaseException) -> bool:
    for e in _walk_exception_chain(exc):
        if isinstance(e, AttemptTimeoutError):
            # Our own deadline goes through pattern matching like anything else.
            continue
        if isinstance(e, (ConnectionResetError, ConnectionAbortedError)):
            return True
        if isinstance(e, (httpx.TimeoutException, httpx.NetworkError)):
            return True
    return False


def matched_patterns(exc: BaseException, patterns: Sequence[str]) -> list[str]:
    """Return the patterns found (case-insensitively) in the failure message."""
    haystack = f"{error_message(exc)} {exc}".lower()
    return [p for p in patterns if p.lower() in haystack]


def is_retryable(exc: BaseException, patterns: Sequence[str]) -> bool:
    """Return True when *exc* is a transient failure worth another attempt.

    Contract:
    - Cancellation is never retried.
    - Auth and validation failures are never retried.
    - Status 429/502/503, transport-level network errors, and messages
      matching *patterns* are retried.
    """
    if isinstance(exc, asyncio.CancelledError):
        return False
    if isinstance(exc, CastorError):
        if exc.kind in NON_RETRYABLE_KINDS:
            return False
        if exc.retryable is not None:
            return exc.retryable

    status_code = extract_status_code(exc)
    if status_code in AUTH_STATUS_CODES:
        return False
    if status_code in RETRYABLE_STATUS_CODES:
        return True
    if _is_transient_network_error(exc):
        return True
    return bool(matched_patterns(exc, patterns))


async def _cancel_and_reap(task: asyncio.Future[T]) -> None:
    """Cancel *task* and wait until it has actually finished."""
    task.cancel()
    # asyncio.wait never raises the task's own outcome, so caller cancellation
    # still propagates from here.
    await asyncio.wait({task})
    if not task.cancelled():
        # Finished anyway; retrieve the exception so asyncio does not report it.
        task.exception()


async def with_timeout(
    factory: Callable[[], Awaitable[T]],
    timeout_s: float | None,
    *,
    context: str = "operation",
) -> T:
    """Await *factory()* but give up after *timeout_s* seconds."""
    if timeout_s is None:
        return await factory()

    # asyncio.wait (not wait_for) so a TimeoutError raised *by* the operation
    # is not mistaken for our own deadline.
    task = asyncio.ensure_future(factory())
    try:
        done, _ = await asyncio.wait({task}, timeout=timeout_s)
    except asyncio.CancelledError:
        task.cancel()
        raise
    if task not in done:
        await _cancel_and_reap(task)
        logger.warning(
            "%s: timed out after %ss",
            context,
            timeout_s,
            extra={"context": context, "timeout_s": timeout_s},
        )
        raise AttemptTimeoutError(f"Operation timed out after {timeout_s:g}s")
    return task.result()


async def retry_async(
    factory: Callable[[], Awaitable[T]],
    *,
    policy: RetryPolicy,
    context: str = "operation",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run an async factory with per-attempt deadlines and bounded retries."""
    delay = policy.initial_delay_s
    logger.debug(
        "Starting %s with retry",
        context,
        extra={
            "context": context,
            "max_retries": policy.max_retries,
            "initial_delay_s": policy.initial_delay_s,
            "max_delay_s": policy.max_delay_s,
            "backoff_multiplier": policy.backoff_multiplier,
        },
    )

    for attempt in range(1, policy.max_attempts + 1):
        try:
            result = await with_timeout(
                factory, policy.attempt_timeout_s, context=context
            )
        except Exception as exc:
            retryable = is_retryable(exc, policy.retryable_patterns)
            logger.debug(
                "%s: attempt %d failed",
                context,
                attempt,
                extra={
                    "context": context,
                    "attempt": attempt,
                    "retryable": retryable,
                    "matched_patterns": matched_patterns(exc, policy.retryable_patterns),
                    "error": error_message(exc)[:200],
                },
            )
            if not retryable or attempt >= policy.max_attempts:
                logger.warning(
                    "%s: retry exhausted or non-retryable error",
                    context,
                    extra={
                        "context": context,
                        "attempt": attempt,
                        "max_retries": policy.max_retries,
                        "retryable": retryable,
                        "will_retry": False,
                        "error": error_message(exc)[:200],
                    },
                )
                raise

            logger.info(
                "%s: retrying after transient error",
                context,
                extra={
                    "context": context,
                    "attempt": attempt,
                    "delay_s": delay,
                    "next_delay_s": policy.next_delay(delay),
                    "error": error_message(exc)[:200],
                },
            )
            if delay > 0:
                await sleep(delay)
            delay = policy.next_delay(delay)
        else:
            if attempt > 1:
                logger.info("%s: succeeded after %d attempts", context, attempt)
            return result

    # Defensive: loop should always return or raise.
    raise RuntimeError("retry_async exhausted without an exception")  # pragma: no cover
