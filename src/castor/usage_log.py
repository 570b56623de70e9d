"""Operational usage log: one line per remote operation, success or failure."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict

from castor.ledger import utc_now_iso

if TYPE_CHECKING:
    from castor.providers.models import Usage
    from castor.sinks import JsonlSink

logger = logging.getLogger(__name__)


class OperationRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    timestamp: str
    provider: str = "openai"
    model: str
    operation: str
    duration_s: float
    success: bool
    error: str | None = None
    usage: dict[str, int] | None = None
    response_id: str | None = None


class OperationLog:
    """Writes ``OperationRecord`` lines to ``usage.jsonl`` and a summary to the log."""

    def __init__(self, sink: JsonlSink | None = None) -> None:
        self._sink = sink

    def log(
        self,
        *,
        model: str,
        operation: str,
        duration_s: float,
        success: bool,
        usage: Usage | None = None,
        error: str | None = None,
        response_id: str | None = None,
    ) -> OperationRecord:
        record = OperationRecord(
            timestamp=utc_now_iso(),
            model=model,
            operation=operation,
            duration_s=round(duration_s, 3),
            success=success,
            error=error,
            usage=usage.to_dict() if usage is not None else None,
            response_id=response_id,
        )
        extra: dict[str, Any] = record.model_dump(exclude_none=True)
        if success:
            tokens = usage.total_tokens if usage is not None else None
            token_note = f", {tokens} tokens" if tokens else ""
            logger.info(
                "%s complete: %s%s, %.1fs",
                operation,
                model,
                token_note,
                duration_s,
                extra=extra,
            )
        else:
            logger.info("%s failed: %s, %s", operation, model, error, extra=extra)

        if self._sink is not None:
            result = self._sink.append(record.model_dump_json(exclude_none=True))
            if not result.ok:
                logger.warning("Failed to persist usage entry: %s", result.error)
        return record
