"""Test helpers (small, reusable doubles).

Keep this file tiny and purpose-built: it exists to prevent test suites from
growing lots of one-off backend subclasses as coverage expands.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from castor.providers.models import (
    JobHandle,
    JobInProgress,
    JobState,
    ProviderResponse,
    ResponseParams,
    Usage,
)


class StatusError(Exception):
    """Looks like an SDK error carrying an HTTP status."""

    def __init__(self, message: str, status_code: int) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass
class FakeClock:
    """Monotonic clock whose ``sleep`` advances time instantly."""

    now: float = 0.0
    sleeps: list[float] = field(default_factory=list)

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@dataclass
class ScriptedBackend:
    """``ResponsesBackend`` that replays scripted results/exceptions per method.

    An exhausted ``responses`` script answers ``ok``; an exhausted ``states``
    script keeps answering in-progress.
    """

    responses: list[ProviderResponse | BaseException] = field(default_factory=list)
    handles: list[JobHandle | BaseException] = field(default_factory=list)
    states: list[JobState | BaseException] = field(default_factory=list)
    create_calls: list[ResponseParams] = field(default_factory=list)
    start_calls: list[ResponseParams] = field(default_factory=list)
    retrieve_calls: list[str] = field(default_factory=list)

    async def create_response(self, params: ResponseParams) -> ProviderResponse:
        self.create_calls.append(params)
        if not self.responses:
            return ProviderResponse(
                text="ok",
                usage=Usage(input_tokens=10, output_tokens=20, total_tokens=30),
                response_id="resp_sync",
                finish_reason="completed",
            )
        return _next(self.responses)

    async def start_background(self, params: ResponseParams) -> JobHandle:
        self.start_calls.append(params)
        if not self.handles:
            return JobHandle(response_id="resp_job", status="queued")
        return _next(self.handles)

    async def retrieve(self, response_id: str) -> JobState:
        self.retrieve_calls.append(response_id)
        if not self.states:
            return JobInProgress()
        return _next(self.states)


def _next(script: list[Any]) -> Any:
    item = script.pop(0)
    if isinstance(item, BaseException):
        raise item
    return item
