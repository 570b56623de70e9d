"""OpenAI Responses API backend.

The only module that touches raw SDK response objects. Errors from the SDK are
left unclassified; the controllers own classification.
"""

from __future__ import annotations

import logging
from typing import Any

from castor.errors import APIError
from castor.providers.models import (
    JobCompleted,
    JobFailed,
    JobHandle,
    JobInProgress,
    JobState,
    JobUnknown,
    ProviderResponse,
    ResponseParams,
    Source,
    Usage,
)

logger = logging.getLogger(__name__)

_IN_PROGRESS_STATUSES = frozenset({"queued", "in_progress"})


class OpenAIBackend:
    """``ResponsesBackend`` over ``openai.AsyncOpenAI``."""

    def __init__(
        self,
        api_key: str,
        organization: str | None = None,
        *,
        client: Any = None,
    ) -> None:
        """Initialize with credentials; *client* overrides the lazily built SDK client."""
        self.api_key = api_key
        self.organization = organization
        self._client: Any = client

    def _get_client(self) -> Any:
        """Lazily initialize and return the OpenAI client."""
        if self._client is None:
            try:
                from openai import AsyncOpenAI
            except ImportError as e:
                raise APIError(
                    "openai package not installed",
                    hint="pip install openai",
                ) from e
            self._client = AsyncOpenAI(api_key=self.api_key, organization=self.organization)
        return self._client

    async def create_response(self, params: ResponseParams) -> ProviderResponse:
        """Run a synchronous Responses API call."""
        client = self._get_client()
        response = await client.responses.create(**params)
        response_id = getattr(response, "id", None)
        return ProviderResponse(
            text=getattr(response, "output_text", "") or "",
            usage=_parse_usage(getattr(response, "usage", None)),
            sources=_extract_sources(response),
            response_id=response_id if isinstance(response_id, str) else None,
            finish_reason=_extract_finish_reason(response),
        )

    async def start_background(self, params: ResponseParams) -> JobHandle:
        """Start a background job; ``background=True`` is forced."""
        client = self._get_client()
        response = await client.responses.create(**{**params, "background": True})
        response_id = getattr(response, "id", None)
        status = getattr(response, "status", None)
        return JobHandle(
            response_id=response_id if isinstance(response_id, str) and response_id else None,
            status=status if isinstance(status, str) else None,
        )

    async def retrieve(self, response_id: str) -> JobState:
        """Fetch a background job and translate it into a ``JobState``."""
        client = self._get_client()
        response = await client.responses.retrieve(response_id)
        return _to_job_state(response)

    async def aclose(self) -> None:
        """Close underlying async client resources."""
        client = self._client
        if client is None:
            return
        self._client = None
        await client.close()


def _int_or_none(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    return None


def _parse_usage(raw: Any) -> Usage | None:
    """Translate SDK usage into ``Usage``; missing counts stay ``None``."""
    if raw is None:
        return None
    input_tokens = _int_or_none(getattr(raw, "input_tokens", None))
    output_tokens = _int_or_none(getattr(raw, "output_tokens", None))
    total_tokens = _int_or_none(getattr(raw, "total_tokens", None))
    if total_tokens is None and (input_tokens is not None or output_tokens is not None):
        total_tokens = (input_tokens or 0) + (output_tokens or 0)
    details = getattr(raw, "output_tokens_details", None)
    reasoning_tokens = _int_or_none(getattr(details, "reasoning_tokens", None))
    return Usage(
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        total_tokens=total_tokens,
        reasoning_tokens=reasoning_tokens,
    )


def _get(obj: Any, key: str) -> Any:
    # Web search action payloads may come back as plain dicts.
    if isinstance(obj, dict):
        return obj.get(key)
    return getattr(obj, key, None)


def _extract_sources(response: Any) -> tuple[Source, ...]:
    """Collect cited pages from ``web_search_call`` items, in order, duplicates kept."""
    sources: list[Source] = []
    for item in getattr(response, "output", None) or []:
        if _get(item, "type") != "web_search_call":
            continue
        action = _get(item, "action")
        for raw in _get(action, "sources") or []:
            url = _get(raw, "url")
            if not isinstance(url, str) or not url:
                continue
            title = _get(raw, "title")
            sources.append(Source(url=url, title=title if isinstance(title, str) else None))
    return tuple(sources)


def _extract_finish_reason(response: Any) -> str | None:
    """Extract the finish reason, preferring ``incomplete_details.reason``."""
    status = getattr(response, "status", None)
    if not isinstance(status, str):
        return None

    normalized_status = status.lower()
    if normalized_status == "incomplete":
        details = getattr(response, "incomplete_details", None)
        reason = getattr(details, "reason", None) if details is not None else None
        if isinstance(reason, str) and reason:
            return reason.lower()

    return normalized_status


def _to_job_state(response: Any) -> JobState:
    status = getattr(response, "status", None)
    normalized = status.lower() if isinstance(status, str) else None
    model = getattr(response, "model", None)
    model = model if isinstance(model, str) and model else None

    if normalized == "completed":
        return JobCompleted(
            text=getattr(response, "output_text", "") or "",
            usage=_parse_usage(getattr(response, "usage", None)),
            model=model,
        )
    if normalized == "failed":
        error = getattr(response, "error", None)
        message = getattr(error, "message", None)
        return JobFailed(
            message=message if isinstance(message, str) and message else None,
            usage=_parse_usage(getattr(response, "usage", None)),
            model=model,
        )
    if normalized in _IN_PROGRESS_STATUSES:
        return JobInProgress(status=normalized)

    logger.debug("Unrecognised job status", extra={"job_status": status})
    return JobUnknown(status=normalized)
