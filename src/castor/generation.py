"""Synchronous generation: text and web search through one retried remote call."""

from __future__ import annotations

from dataclasses import dataclass
import logging
import time
from typing import TYPE_CHECKING, Any

from castor.errors import CastorError
from castor.ledger import UsageRecord
from castor.pricing import CostBreakdown, calculate_cost
from castor.providers._errors import classify_error
from castor.retry import DEFAULT_ATTEMPT_TIMEOUT_S, TRANSIENT_PATTERNS, RetryPolicy, retry_async

if TYPE_CHECKING:
    from collections.abc import Callable

    from castor.ledger import CostLedger
    from castor.providers.base import ResponsesBackend
    from castor.providers.models import ProviderResponse, ResponseParams, Source, Usage
    from castor.request import GenerationRequest, SearchRequest
    from castor.usage_log import OperationLog

logger = logging.getLogger(__name__)

OP_TEXT = "text-generation"
OP_SEARCH = "web-search"

SOURCES_INCLUDE = "web_search_call.action.sources"

#: Generation retries only transport-transient failures, twice, under a 1h deadline.
GENERATION_RETRY_POLICY = RetryPolicy(
    max_retries=2,
    retryable_patterns=TRANSIENT_PATTERNS,
    attempt_timeout_s=DEFAULT_ATTEMPT_TIMEOUT_S,
)


@dataclass(frozen=True)
class GenerateResult:
    """A completed text generation."""

    text: str
    model: str
    cost: CostBreakdown
    usage: Usage | None = None
    finish_reason: str | None = None
    response_id: str | None = None
    duration_s: float = 0.0


@dataclass(frozen=True)
class SearchResult:
    """A completed web search. ``sources`` is ``None`` when nothing was cited."""

    text: str
    model: str
    cost: CostBreakdown
    usage: Usage | None = None
    sources: tuple[Source, ...] | None = None
    finish_reason: str | None = None
    response_id: str | None = None
    duration_s: float = 0.0


def build_generation_params(request: GenerationRequest) -> ResponseParams:
    """Translate a validated request into Responses API parameters."""
    params: dict[str, Any] = {
        "model": request.model,
        "max_output_tokens": request.max_output_tokens,
    }
    if request.system_prompt:
        params["input"] = [
            {
                "role": "developer",
                "content": [{"type": "input_text", "text": request.system_prompt}],
            },
            {
                "role": "user",
                "content": [{"type": "input_text", "text": request.prompt}],
            },
        ]
    else:
        params["input"] = request.prompt

    text: dict[str, Any] = {"verbosity": request.verbosity}
    if request.json_schema is not None:
        text["format"] = request.json_schema.to_format()
    params["text"] = text

    if request.reasoning_effort != "none":
        reasoning: dict[str, Any] = {"effort": request.reasoning_effort}
        if request.reasoning_summary != "off":
            reasoning["summary"] = request.reasoning_summary
        params["reasoning"] = reasoning
    elif request.temperature is not None:
        params["temperature"] = request.temperature
    return params


def build_search_params(request: SearchRequest) -> ResponseParams:
    """Translate a validated search request into Responses API parameters."""
    tool: dict[str, Any] = {"type": "web_search"}
    if request.allowed_domains:
        tool["filters"] = {"allowed_domains": list(request.allowed_domains)}
    params: dict[str, Any] = {
        "model": request.model,
        "input": request.query,
        "tools": [tool],
    }
    if request.include_sources:
        params["include"] = [SOURCES_INCLUDE]
    return params


class Generator:
    """Runs synchronous calls and accounts for them in the ledger and usage log."""

    def __init__(
        self,
        backend: ResponsesBackend,
        ledger: CostLedger,
        oplog: OperationLog,
        *,
        policy: RetryPolicy = GENERATION_RETRY_POLICY,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._backend = backend
        self._ledger = ledger
        self._oplog = oplog
        self._policy = policy
        self._clock = clock

    async def generate(self, request: GenerationRequest) -> GenerateResult:
        """Generate text for *request*."""
        logger.debug(
            "Starting text generation",
            extra={
                "model": request.model,
                "prompt_length": len(request.prompt),
                "has_system_prompt": bool(request.system_prompt),
                "reasoning_effort": request.reasoning_effort,
                "verbosity": request.verbosity,
                "has_json_schema": request.json_schema is not None,
            },
        )
        params = build_generation_params(request)
        response, cost, duration_s = await self._call(params, request.model, OP_TEXT)
        return GenerateResult(
            text=response.text,
            model=request.model,
            cost=cost,
            usage=response.usage,
            finish_reason=response.finish_reason,
            response_id=response.response_id,
            duration_s=duration_s,
        )

    async def search(self, request: SearchRequest) -> SearchResult:
        """Answer *request* with the remote's web search tool."""
        logger.debug(
            "Starting web search",
            extra={
                "model": request.model,
                "query_length": len(request.query),
                "allowed_domains": list(request.allowed_domains),
                "include_sources": request.include_sources,
            },
        )
        params = build_search_params(request)
        response, cost, duration_s = await self._call(params, request.model, OP_SEARCH)
        sources = response.sources if request.include_sources and response.sources else None
        return SearchResult(
            text=response.text,
            model=request.model,
            cost=cost,
            usage=response.usage,
            sources=sources,
            finish_reason=response.finish_reason,
            response_id=response.response_id,
            duration_s=duration_s,
        )

    async def _call(
        self, params: ResponseParams, model: str, operation: str
    ) -> tuple[ProviderResponse, CostBreakdown, float]:
        started = self._clock()
        try:
            response = await retry_async(
                lambda: self._backend.create_response(params),
                policy=self._policy,
                context=operation,
            )
        except Exception as exc:
            error = classify_error(exc)
            self._record_failure(error, model, operation, self._clock() - started)
            if error is exc:
                raise
            raise error from exc

        duration_s = self._clock() - started
        usage = response.usage
        cost = calculate_cost(
            model,
            usage.input_tokens if usage is not None else 0,
            usage.output_tokens if usage is not None else 0,
        )
        self._ledger.record(
            UsageRecord.from_cost(
                model=model,
                operation=operation,
                cost=cost,
                usage=usage,
                response_id=response.response_id,
            )
        )
        self._oplog.log(
            model=model,
            operation=operation,
            duration_s=duration_s,
            success=True,
            usage=usage,
            response_id=response.response_id,
        )
        return response, cost, duration_s

    def _record_failure(
        self, error: CastorError, model: str, operation: str, duration_s: float
    ) -> None:
        self._oplog.log(
            model=model,
            operation=operation,
            duration_s=duration_s,
            success=False,
            usage=error.usage,
            error=str(error),
        )
        usage = error.usage
        if usage is None:
            return
        # Partial usage was billed even though the call failed.
        cost = calculate_cost(model, usage.input_tokens, usage.output_tokens)
        self._ledger.record(
            UsageRecord.from_cost(model=model, operation=operation, cost=cost, usage=usage)
        )
