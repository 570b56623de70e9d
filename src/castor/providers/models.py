"""Domain models for the remote API boundary.

Everything the rest of Castor knows about a Responses API payload is one of
these types; the OpenAI backend is the only place that reaches into raw SDK
objects.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal


@dataclass(frozen=True)
class Usage:
    """Token counts reported by the remote. Any field may be missing."""

    input_tokens: int | None = None
    output_tokens: int | None = None
    total_tokens: int | None = None
    reasoning_tokens: int | None = None

    def to_dict(self) -> dict[str, int]:
        """Return only the counts that were reported."""
        out: dict[str, int] = {}
        for key in ("input_tokens", "output_tokens", "total_tokens", "reasoning_tokens"):
            value = getattr(self, key)
            if value is not None:
                out[key] = value
        return out


@dataclass(frozen=True)
class Source:
    """A web page cited by a web search call."""

    url: str
    title: str | None = None


@dataclass(frozen=True)
class ProviderResponse:
    """A normalized synchronous response."""

    text: str = ""
    usage: Usage | None = None
    sources: tuple[Source, ...] = ()
    response_id: str | None = None
    finish_reason: str | None = None


@dataclass(frozen=True)
class JobHandle:
    """What the remote hands back when a background job starts."""

    response_id: str | None
    status: str | None = None


@dataclass(frozen=True)
class JobCompleted:
    """Terminal success. ``text`` may be empty; the controller decides."""

    text: str
    usage: Usage | None = None
    model: str | None = None
    state: Literal["completed"] = field(default="completed", init=False)


@dataclass(frozen=True)
class JobFailed:
    """Terminal failure, with the remote's message when it supplied one."""

    message: str | None = None
    usage: Usage | None = None
    model: str | None = None
    state: Literal["failed"] = field(default="failed", init=False)


@dataclass(frozen=True)
class JobInProgress:
    """Still running (``queued`` and ``in_progress`` both land here)."""

    status: str = "in_progress"
    state: Literal["in_progress"] = field(default="in_progress", init=False)


@dataclass(frozen=True)
class JobUnknown:
    """A status we do not recognise; treated like ``in_progress`` by pollers."""

    status: str | None = None
    state: Literal["unknown"] = field(default="unknown", init=False)


JobState = JobCompleted | JobFailed | JobInProgress | JobUnknown

ResponseParams = dict[str, Any]
