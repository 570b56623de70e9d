"""Deep research job lifecycle: start, poll, terminal states, settlement."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

import pytest

from castor.errors import (
    APIError,
    AuthError,
    ErrorKind,
    RateLimitError,
    ResearchFailedError,
    ResearchTimeoutError,
)
from castor.ledger import CostLedger
from castor.providers.models import (
    JobCompleted,
    JobFailed,
    JobHandle,
    JobInProgress,
    JobUnknown,
    Usage,
)
from castor.request import ResearchRequest
from castor.research import RESEARCH_PREAMBLE, DeepResearcher, build_research_params
from castor.sinks import JsonlSink
from castor.usage_log import OperationLog
from tests.helpers import FakeClock, ScriptedBackend, StatusError

pytestmark = pytest.mark.unit

_USAGE = Usage(input_tokens=10_000, output_tokens=5_000, total_tokens=15_000)


def _researcher(
    backend: ScriptedBackend, ledger: CostLedger, oplog: OperationLog, clock: FakeClock
) -> DeepResearcher:
    return DeepResearcher(backend, ledger, oplog, clock=clock, sleep=clock.sleep)


def test_research_params_shape() -> None:
    params = build_research_params(ResearchRequest(query="history of tea"))

    assert params["model"] == "o3-deep-research"
    assert params["background"] is True
    developer, user = params["input"]
    assert developer["role"] == "developer"
    assert developer["content"][0]["text"] == RESEARCH_PREAMBLE
    assert user["content"][0]["text"] == "history of tea"
    assert params["tools"] == [
        {"type": "web_search_preview"},
        {"type": "code_interpreter", "container": {"type": "auto"}},
    ]


@pytest.mark.asyncio
async def test_polls_until_completed(
    backend: ScriptedBackend, ledger: CostLedger, oplog: OperationLog, clock: FakeClock
) -> None:
    backend.states = [
        JobInProgress(status="queued"),
        JobInProgress(),
        JobCompleted(text="# Report", usage=_USAGE),
    ]

    result = await _researcher(backend, ledger, oplog, clock).research(
        ResearchRequest(query="q", poll_interval_s=10)
    )

    assert backend.retrieve_calls == ["resp_job"] * 3
    assert len(backend.start_calls) == 1
    assert clock.sleeps == [10, 10]
    assert result.text == "# Report"
    assert result.response_id == "resp_job"
    assert result.status == "completed"
    assert result.duration_s == 20
    assert result.cost.total_cost == pytest.approx(0.3)
    (entry,) = ledger.entries()
    assert entry.response_id == "resp_job"
    assert entry.estimated is False


@pytest.mark.asyncio
async def test_unknown_status_keeps_polling(
    backend: ScriptedBackend, ledger: CostLedger, oplog: OperationLog, clock: FakeClock
) -> None:
    backend.states = [JobUnknown(status="cancelling"), JobCompleted(text="done")]

    result = await _researcher(backend, ledger, oplog, clock).research(ResearchRequest(query="q"))

    assert result.text == "done"
    assert len(backend.retrieve_calls) == 2


@pytest.mark.asyncio
async def test_completion_without_usage_is_billed_as_estimated(
    backend: ScriptedBackend, ledger: CostLedger, oplog: OperationLog, clock: FakeClock
) -> None:
    backend.states = [JobCompleted(text="done")]

    result = await _researcher(backend, ledger, oplog, clock).research(ResearchRequest(query="q"))

    assert result.usage is None
    assert result.cost.total_cost == 0.0
    (entry,) = ledger.entries()
    assert entry.estimated is True


@pytest.mark.asyncio
async def test_timeout_carries_response_id_and_keeps_job_alive(
    backend: ScriptedBackend, ledger: CostLedger, tmp_path: Path, clock: FakeClock
) -> None:
    oplog = OperationLog(JsonlSink(tmp_path / "usage.jsonl"))
    # Exhausted state script answers in-progress forever.
    request = ResearchRequest(query="q", timeout_minutes=5, poll_interval_s=60)

    with pytest.raises(ResearchTimeoutError) as excinfo:
        await _researcher(backend, ledger, oplog, clock).research(request)

    err = excinfo.value
    assert err.kind is ErrorKind.TIMEOUT
    assert err.response_id == "resp_job"
    assert "resp_job" in str(err)
    # Reported minutes are elapsed time, which overshoots by up to one poll interval.
    assert str(err).startswith("TIMEOUT: Research timed out after 6 minutes")
    assert "check_research" in (err.hint or "")
    # Deadline is strict: the poll at exactly 300s still happens.
    assert len(backend.retrieve_calls) == 6
    assert ledger.entries() == []
    (line,) = (tmp_path / "usage.jsonl").read_text().splitlines()
    assert json.loads(line)["success"] is False


@pytest.mark.asyncio
async def test_poll_errors_are_survived(
    backend: ScriptedBackend, ledger: CostLedger, oplog: OperationLog, clock: FakeClock
) -> None:
    backend.states = [
        StatusError("Bad Gateway", 502),
        ConnectionResetError("reset"),
        JobCompleted(text="recovered"),
    ]

    result = await _researcher(backend, ledger, oplog, clock).research(ResearchRequest(query="q"))

    assert result.text == "recovered"
    assert len(backend.retrieve_calls) == 3
    assert len(clock.sleeps) == 2


@pytest.mark.asyncio
async def test_failed_job_raises_with_remote_message(
    backend: ScriptedBackend, ledger: CostLedger, oplog: OperationLog, clock: FakeClock
) -> None:
    backend.states = [JobFailed(message="upstream tool crashed", usage=_USAGE)]

    with pytest.raises(ResearchFailedError) as excinfo:
        await _researcher(backend, ledger, oplog, clock).research(ResearchRequest(query="q"))

    assert str(excinfo.value) == "RESEARCH_FAILED: upstream tool crashed"
    (entry,) = ledger.entries()
    assert entry.total_cost == pytest.approx(0.3)


@pytest.mark.asyncio
async def test_failed_job_without_message(
    backend: ScriptedBackend, ledger: CostLedger, oplog: OperationLog, clock: FakeClock
) -> None:
    backend.states = [JobFailed()]

    with pytest.raises(ResearchFailedError, match="Research failed with unknown error"):
        await _researcher(backend, ledger, oplog, clock).research(ResearchRequest(query="q"))


@pytest.mark.asyncio
async def test_completed_without_text_is_api_error(
    backend: ScriptedBackend, ledger: CostLedger, oplog: OperationLog, clock: FakeClock
) -> None:
    backend.states = [JobCompleted(text="", usage=_USAGE)]

    with pytest.raises(APIError) as excinfo:
        await _researcher(backend, ledger, oplog, clock).research(ResearchRequest(query="q"))

    assert str(excinfo.value) == "API_ERROR: Research completed but no output text found"
    assert len(ledger.entries()) == 1


@pytest.mark.asyncio
async def test_missing_response_id_is_api_error(
    backend: ScriptedBackend, ledger: CostLedger, oplog: OperationLog, clock: FakeClock
) -> None:
    backend.handles = [JobHandle(response_id=None)]

    with pytest.raises(APIError, match="No response ID returned from API"):
        await _researcher(backend, ledger, oplog, clock).research(ResearchRequest(query="q"))

    assert backend.retrieve_calls == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("exc", "expected"),
    [
        (StatusError("bad key", 401), AuthError),
        (StatusError("slow down", 429), RateLimitError),
        (Exception("Something odd"), APIError),
    ],
)
async def test_start_failures_are_classified_and_not_retried(
    backend: ScriptedBackend,
    ledger: CostLedger,
    oplog: OperationLog,
    clock: FakeClock,
    exc: BaseException,
    expected: type[Exception],
) -> None:
    backend.handles = [exc]

    with pytest.raises(expected):
        await _researcher(backend, ledger, oplog, clock).research(ResearchRequest(query="q"))

    assert len(backend.start_calls) == 1


@pytest.mark.asyncio
async def test_start_timeout_surfaces_as_api_error(
    backend: ScriptedBackend, ledger: CostLedger, oplog: OperationLog, clock: FakeClock
) -> None:
    backend.handles = [TimeoutError("connect timed out")]

    with pytest.raises(APIError) as excinfo:
        await _researcher(backend, ledger, oplog, clock).research(ResearchRequest(query="q"))

    assert excinfo.value.kind is ErrorKind.API_ERROR


@pytest.mark.asyncio
async def test_cancellation_propagates_out_of_the_poll_loop(
    ledger: CostLedger, oplog: OperationLog
) -> None:
    backend = ScriptedBackend()
    researcher = DeepResearcher(backend, ledger, oplog, sleep=_sleep_forever)

    task = asyncio.create_task(researcher.research(ResearchRequest(query="q")))
    while not backend.retrieve_calls:
        await asyncio.sleep(0)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task


async def _sleep_forever(_seconds: float) -> None:
    await asyncio.Event().wait()


# =============================================================================
# check_research
# =============================================================================


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("state", "status"),
    [
        (JobInProgress(), "in_progress"),
        (JobUnknown(status="weird"), "unknown"),
    ],
)
async def test_check_reports_non_terminal_states(
    backend: ScriptedBackend,
    ledger: CostLedger,
    oplog: OperationLog,
    clock: FakeClock,
    state,
    status: str,
) -> None:
    backend.states = [state]

    result = await _researcher(backend, ledger, oplog, clock).check_research("resp_x")

    assert result.status == status
    assert result.text == ""
    assert backend.retrieve_calls == ["resp_x"]
    assert ledger.entries() == []


@pytest.mark.asyncio
async def test_check_reports_failure_without_raising(
    backend: ScriptedBackend, ledger: CostLedger, oplog: OperationLog, clock: FakeClock
) -> None:
    backend.states = [JobFailed()]

    result = await _researcher(backend, ledger, oplog, clock).check_research("resp_x")

    assert result.status == "failed"
    assert result.error == "Research failed with unknown error"


@pytest.mark.asyncio
async def test_check_settles_a_timed_out_job_exactly_once(
    backend: ScriptedBackend, ledger: CostLedger, oplog: OperationLog, clock: FakeClock
) -> None:
    completed = JobCompleted(text="late report", usage=_USAGE, model="o3-deep-research-2025-06-26")
    backend.states = [completed, completed]
    researcher = _researcher(backend, ledger, oplog, clock)

    first = await researcher.check_research("resp_late")
    second = await researcher.check_research("resp_late")

    assert first.status == second.status == "completed"
    assert first.text == "late report"
    (entry,) = ledger.entries()
    assert entry.model == "o3-deep-research"
    assert entry.response_id == "resp_late"
    assert entry.total_cost == pytest.approx(0.3)


@pytest.mark.asyncio
async def test_check_does_not_rebill_a_job_research_already_billed(
    backend: ScriptedBackend, ledger: CostLedger, oplog: OperationLog, clock: FakeClock
) -> None:
    backend.states = [JobCompleted(text="done", usage=_USAGE), JobCompleted(text="done", usage=_USAGE)]
    researcher = _researcher(backend, ledger, oplog, clock)

    await researcher.research(ResearchRequest(query="q"))
    await researcher.check_research("resp_job")

    assert len(ledger.entries()) == 1


@pytest.mark.asyncio
async def test_check_transport_failure_is_classified(
    backend: ScriptedBackend, ledger: CostLedger, oplog: OperationLog, clock: FakeClock
) -> None:
    backend.states = [StatusError("rate limit reached", 429)]

    with pytest.raises(RateLimitError):
        await _researcher(backend, ledger, oplog, clock).check_research("resp_x")


@pytest.mark.asyncio
async def test_check_after_reset_does_not_rebill_a_settled_job(
    backend: ScriptedBackend, oplog: OperationLog, clock: FakeClock, tmp_path: Path
) -> None:
    path = tmp_path / "costs.jsonl"
    ledger = CostLedger(JsonlSink(path))
    completed = JobCompleted(text="done", usage=_USAGE, model="o3-deep-research")
    backend.states = [completed, completed]
    researcher = _researcher(backend, ledger, oplog, clock)

    await researcher.research(ResearchRequest(query="q"))
    ledger.reset()
    status = await researcher.check_research("resp_job")

    assert status.status == "completed"
    assert ledger.entries() == []
    assert len(path.read_text().splitlines()) == 1


@pytest.mark.asyncio
async def test_check_reports_model_and_cost_for_terminal_jobs(
    backend: ScriptedBackend, ledger: CostLedger, oplog: OperationLog, clock: FakeClock
) -> None:
    backend.states = [
        JobCompleted(text="r", usage=_USAGE, model="o4-mini-deep-research-2025-06-26")
    ]

    status = await _researcher(backend, ledger, oplog, clock).check_research("resp_x")

    assert status.model == "o4-mini-deep-research"
    assert status.cost is not None
    assert status.cost.total_cost == pytest.approx(0.06)
