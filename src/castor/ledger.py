"""Usage/cost ledger: every billed operation, summarised on demand.

The ledger lives for the process lifetime and is mirrored to an append-only
``costs.jsonl`` file, which is reloaded at startup. Disk trouble never fails a
caller's request: write failures are logged and dropped, unreadable history
means starting empty.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
import logging
import threading
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict
from pydantic import ValidationError as PydanticValidationError

from castor.pricing import CostBreakdown, round_micro

if TYPE_CHECKING:
    from castor.providers.models import Usage
    from castor.sinks import JsonlSink

logger = logging.getLogger(__name__)


def utc_now_iso() -> str:
    """Current time as an ISO-8601 UTC timestamp."""
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class UsageRecord(BaseModel):
    """One billed operation. Immutable once created."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    timestamp: str
    model: str
    operation: str
    input_cost: float
    output_cost: float
    total_cost: float
    estimated: bool
    input_tokens: int | None = None
    output_tokens: int | None = None
    #: Set for background jobs so a later status check can settle them once.
    response_id: str | None = None

    @classmethod
    def from_cost(
        cls,
        *,
        model: str,
        operation: str,
        cost: CostBreakdown,
        usage: Usage | None = None,
        response_id: str | None = None,
        estimated: bool | None = None,
    ) -> UsageRecord:
        """Build a record from a cost breakdown and the usage it was computed from."""
        return cls(
            timestamp=utc_now_iso(),
            model=model,
            operation=operation,
            input_cost=cost.input_cost,
            output_cost=cost.output_cost,
            total_cost=cost.total_cost,
            estimated=cost.estimated if estimated is None else estimated,
            input_tokens=usage.input_tokens if usage is not None else None,
            output_tokens=usage.output_tokens if usage is not None else None,
            response_id=response_id,
        )


@dataclass(frozen=True)
class CostSummary:
    """Aggregate view over the ledger."""

    total_cost: float
    by_model: dict[str, float] = field(default_factory=dict)
    by_operation: dict[str, float] = field(default_factory=dict)
    call_count: int = 0
    estimated_cost: float = 0.0
    since: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_cost": self.total_cost,
            "call_count": self.call_count,
            "estimated_cost": self.estimated_cost,
            "since": self.since,
            "by_model": dict(self.by_model),
            "by_operation": dict(self.by_operation),
        }


class CostLedger:
    """Append-only in-memory ledger with an optional durable mirror."""

    def __init__(self, sink: JsonlSink | None = None, *, load: bool = True) -> None:
        self._sink = sink
        self._entries: list[UsageRecord] = []
        # Job ids ever billed, including entries dropped by reset().
        self._billed_ids: set[str] = set()
        # Guards _entries and _billed_ids; never held across an await.
        self._lock = threading.Lock()
        if load and sink is not None:
            self._load()

    def _load(self) -> None:
        assert self._sink is not None
        loaded = 0
        skipped = 0
        for line in self._sink.read_lines():
            try:
                entry = UsageRecord.model_validate_json(line)
            except PydanticValidationError:
                skipped += 1
                continue
            self._append(entry)
            loaded += 1
        if loaded or skipped:
            logger.info(
                "Loaded cost history",
                extra={"loaded": loaded, "skipped": skipped, "path": str(self._sink.path)},
            )

    def record(self, entry: UsageRecord) -> None:
        """Append *entry* and mirror it to disk (best effort)."""
        with self._lock:
            self._append(entry)
        self._persist(entry)

    def record_job(self, entry: UsageRecord) -> bool:
        """Record a background job entry unless its ``response_id`` was billed before.

        The check and the append happen under one lock, so concurrent settlement
        of the same job bills it once. Returns whether *entry* was recorded.
        """
        if entry.response_id is None:
            raise ValueError("record_job requires an entry with a response_id")
        with self._lock:
            if entry.response_id in self._billed_ids:
                return False
            self._append(entry)
        self._persist(entry)
        return True

    def _append(self, entry: UsageRecord) -> None:
        self._entries.append(entry)
        if entry.response_id:
            self._billed_ids.add(entry.response_id)

    def _persist(self, entry: UsageRecord) -> None:
        if self._sink is None:
            return
        result = self._sink.append(entry.model_dump_json())
        if not result.ok:
            logger.warning(
                "Failed to persist cost entry: %s",
                result.error,
                extra={"path": str(self._sink.path)},
            )

    def entries(self) -> list[UsageRecord]:
        """Return a snapshot of all entries, oldest first."""
        with self._lock:
            return list(self._entries)

    def has_response(self, response_id: str) -> bool:
        """Whether a background job with *response_id* has already been billed."""
        with self._lock:
            return response_id in self._billed_ids

    def summary(self) -> CostSummary:
        """Aggregate costs by model and operation."""
        entries = self.entries()
        total = 0.0
        estimated = 0.0
        by_model: dict[str, float] = {}
        by_operation: dict[str, float] = {}
        for e in entries:
            total += e.total_cost
            by_model[e.model] = by_model.get(e.model, 0.0) + e.total_cost
            by_operation[e.operation] = by_operation.get(e.operation, 0.0) + e.total_cost
            if e.estimated:
                estimated += e.total_cost

        return CostSummary(
            total_cost=round_micro(total),
            by_model={k: round_micro(v) for k, v in by_model.items()},
            by_operation={k: round_micro(v) for k, v in by_operation.items()},
            call_count=len(entries),
            estimated_cost=round_micro(estimated),
            since=entries[0].timestamp if entries else utc_now_iso(),
        )

    def reset(self) -> None:
        """Forget in-memory entries. The durable log is never truncated.

        Billed job ids are kept, so a job settled before the reset is not
        billed again afterwards.
        """
        with self._lock:
            self._entries.clear()
