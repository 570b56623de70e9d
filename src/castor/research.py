"""Deep research: start a background job, poll it to a terminal state, bill it.

A job moves ``STARTING -> POLLING -> {COMPLETED, FAILED, TIMED_OUT}``. Only the
response id survives between calls: a client that gave up on ``research`` can
pick the job up again with ``check_research``.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, replace
import logging
import time
from typing import TYPE_CHECKING, Literal

from castor.catalog import DEEP_RESEARCH_MODELS
from castor.errors import (
    APIError,
    ErrorKind,
    ResearchFailedError,
    ResearchTimeoutError,
)
from castor.ledger import UsageRecord
from castor.pricing import CostBreakdown, calculate_cost
from castor.providers._errors import classify_error, error_message
from castor.providers.models import JobCompleted, JobFailed, JobInProgress

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from castor.ledger import CostLedger
    from castor.providers.base import ResponsesBackend
    from castor.providers.models import JobState, ResponseParams, Usage
    from castor.request import ResearchRequest
    from castor.usage_log import OperationLog

logger = logging.getLogger(__name__)

OP_RESEARCH = "deep-research"

RESEARCH_PREAMBLE = (
    "You are a research analyst. Conduct thorough research on the given topic. "
    "Write a well-structured, comprehensive report with citations and sources. "
    "Include key findings, analysis, and relevant data."
)

UNKNOWN_FAILURE_MESSAGE = "Research failed with unknown error"
EMPTY_OUTPUT_MESSAGE = "Research completed but no output text found"
MISSING_ID_MESSAGE = "No response ID returned from API"

#: Start failures surface as one of these; anything else becomes API_ERROR.
_START_ERROR_KINDS = frozenset({ErrorKind.AUTH_ERROR, ErrorKind.RATE_LIMIT, ErrorKind.API_ERROR})

JobStatus = Literal["completed", "failed", "in_progress", "unknown"]


@dataclass(frozen=True)
class ResearchResult:
    """A completed research job."""

    text: str
    model: str
    response_id: str
    cost: CostBreakdown
    status: Literal["completed"] = "completed"
    duration_s: float = 0.0
    usage: Usage | None = None

    @property
    def duration_minutes(self) -> float:
        return round(self.duration_s / 60, 1)


@dataclass(frozen=True)
class ResearchStatus:
    """A single observation of a background job."""

    response_id: str
    status: JobStatus
    text: str = ""
    usage: Usage | None = None
    error: str | None = None
    #: Catalog model id and billed cost; set for terminal states only.
    model: str | None = None
    cost: CostBreakdown | None = None


def build_research_params(request: ResearchRequest) -> ResponseParams:
    """Responses API parameters for a deep research job."""
    return {
        "model": request.model,
        "input": [
            {
                "role": "developer",
                "content": [{"type": "input_text", "text": RESEARCH_PREAMBLE}],
            },
            {
                "role": "user",
                "content": [{"type": "input_text", "text": request.query}],
            },
        ],
        "tools": [
            {"type": "web_search_preview"},
            {"type": "code_interpreter", "container": {"type": "auto"}},
        ],
        "background": True,
    }


def _billing_model(model: str | None) -> str:
    """Map a dated snapshot id (``o3-deep-research-2025-06-26``) to its catalog id."""
    if not model:
        return "unknown"
    for known in DEEP_RESEARCH_MODELS:
        if model == known or model.startswith(f"{known}-"):
            return known
    return model


def _timeout_message(elapsed_s: float, response_id: str) -> str:
    minutes = round(elapsed_s / 60)
    return (
        f"Research timed out after {minutes} minutes. "
        f"The research may still be running - response ID: {response_id}"
    )


class DeepResearcher:
    """Job lifecycle controller for deep research.

    Args:
        backend: Remote boundary.
        ledger: Receives one record per billed job.
        oplog: Receives one entry per terminal outcome.
        clock: Monotonic seconds; injectable for tests.
        sleep: Awaitable sleep; injectable for tests.
    """

    def __init__(
        self,
        backend: ResponsesBackend,
        ledger: CostLedger,
        oplog: OperationLog,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._backend = backend
        self._ledger = ledger
        self._oplog = oplog
        self._clock = clock
        self._sleep = sleep

    async def research(self, request: ResearchRequest) -> ResearchResult:
        """Run a research job to completion or until the request's timeout.

        Raises:
            APIError: The job could not be started, or completed without text.
            ResearchFailedError: The remote reported the job as failed.
            ResearchTimeoutError: The timeout elapsed; the remote job keeps running
                and its id is carried on the error.
        """
        started = self._clock()
        logger.info(
            "Starting deep research",
            extra={
                "model": request.model,
                "query_length": len(request.query),
                "timeout_minutes": request.timeout_minutes,
            },
        )

        response_id = await self._start(request, started)
        logger.info(
            "Research job started",
            extra={"response_id": response_id, "model": request.model},
        )

        try:
            completed = await self._poll(request, response_id, started)
        except ResearchFailedError as e:
            self._settle(request.model, response_id, e.usage, started, error=str(e))
            raise
        except ResearchTimeoutError as e:
            self._oplog.log(
                model=request.model,
                operation=OP_RESEARCH,
                duration_s=self._clock() - started,
                success=False,
                error=str(e),
                response_id=response_id,
            )
            raise
        except APIError as e:
            # Completed without text: billed like any other completion.
            self._settle(request.model, response_id, e.usage, started, error=str(e))
            raise

        duration_s = self._clock() - started
        cost = self._settle(request.model, response_id, completed.usage, started)
        logger.info(
            "Research completed",
            extra={
                "response_id": response_id,
                "duration_s": round(duration_s, 1),
                "text_length": len(completed.text),
            },
        )
        return ResearchResult(
            text=completed.text,
            model=request.model,
            response_id=response_id,
            cost=cost,
            duration_s=duration_s,
            usage=completed.usage,
        )

    async def check_research(self, response_id: str) -> ResearchStatus:
        """Observe a job once.

        Job states are reported, not raised. A terminal job that the ledger has
        not billed yet (its ``research`` call timed out) is billed here, once.
        Transport failures of the single retrieval are classified and raised.
        """
        try:
            state = await self._backend.retrieve(response_id)
        except Exception as exc:
            error = classify_error(exc)
            if error is exc:
                raise
            raise error from exc

        if isinstance(state, JobCompleted):
            status = ResearchStatus(
                response_id=response_id,
                status="completed",
                text=state.text,
                usage=state.usage,
            )
        elif isinstance(state, JobFailed):
            status = ResearchStatus(
                response_id=response_id,
                status="failed",
                usage=state.usage,
                error=state.message or UNKNOWN_FAILURE_MESSAGE,
            )
        elif isinstance(state, JobInProgress):
            return ResearchStatus(response_id=response_id, status="in_progress")
        else:
            return ResearchStatus(response_id=response_id, status="unknown")

        model = _billing_model(state.model)
        cost = self._bill(model, response_id, state.usage)
        return replace(status, model=model, cost=cost)

    async def _start(self, request: ResearchRequest, started: float) -> str:
        try:
            handle = await self._backend.start_background(build_research_params(request))
        except Exception as exc:
            error = classify_error(exc)
            if error.kind not in _START_ERROR_KINDS:
                error = APIError(error.message, status_code=error.status_code)
            self._oplog.log(
                model=request.model,
                operation=OP_RESEARCH,
                duration_s=self._clock() - started,
                success=False,
                error=str(error),
            )
            raise error from exc

        if not handle.response_id:
            error = APIError(MISSING_ID_MESSAGE)
            self._oplog.log(
                model=request.model,
                operation=OP_RESEARCH,
                duration_s=self._clock() - started,
                success=False,
                error=str(error),
            )
            raise error
        return handle.response_id

    async def _poll(
        self, request: ResearchRequest, response_id: str, started: float
    ) -> JobCompleted:
        timeout_s = request.timeout_s
        while True:
            elapsed = self._clock() - started
            if elapsed > timeout_s:
                raise ResearchTimeoutError(
                    _timeout_message(elapsed, response_id),
                    hint=f"Call check_research with response_id={response_id!r} later.",
                    response_id=response_id,
                )

            logger.debug(
                "Polling research status",
                extra={"response_id": response_id, "elapsed_s": round(elapsed, 1)},
            )
            try:
                state: JobState = await self._backend.retrieve(response_id)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.warning(
                    "Research poll error, retrying",
                    extra={"response_id": response_id, "error": error_message(exc)[:200]},
                )
                await self._sleep(request.poll_interval_s)
                continue

            if isinstance(state, JobCompleted):
                if not state.text:
                    raise APIError(
                        EMPTY_OUTPUT_MESSAGE, response_id=response_id, usage=state.usage
                    )
                return state
            if isinstance(state, JobFailed):
                raise ResearchFailedError(
                    state.message or UNKNOWN_FAILURE_MESSAGE,
                    response_id=response_id,
                    usage=state.usage,
                )

            logger.debug(
                "Research still running",
                extra={"response_id": response_id, "job_status": getattr(state, "status", None)},
            )
            await self._sleep(request.poll_interval_s)

    def _bill(self, model: str, response_id: str, usage: Usage | None) -> CostBreakdown:
        """Price a terminal job and record it unless *response_id* is already billed."""
        if usage is None:
            cost = replace(calculate_cost(model), estimated=True)
        else:
            cost = calculate_cost(model, usage.input_tokens, usage.output_tokens)
        self._ledger.record_job(
            UsageRecord.from_cost(
                model=model,
                operation=OP_RESEARCH,
                cost=cost,
                usage=usage,
                response_id=response_id,
            )
        )
        return cost

    def _settle(
        self,
        model: str,
        response_id: str,
        usage: Usage | None,
        started: float,
        *,
        error: str | None = None,
    ) -> CostBreakdown:
        cost = self._bill(model, response_id, usage)
        self._oplog.log(
            model=model,
            operation=OP_RESEARCH,
            duration_s=self._clock() - started,
            success=error is None,
            usage=usage,
            error=error,
            response_id=response_id,
        )
        return cost
