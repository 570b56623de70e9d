"""Backend protocol: the narrow interface to the remote Responses API."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from castor.providers.models import (
        JobHandle,
        JobState,
        ProviderResponse,
        ResponseParams,
    )


@runtime_checkable
class ResponsesBackend(Protocol):
    """Minimal backend protocol: create, start in background, retrieve."""

    async def create_response(self, params: ResponseParams) -> ProviderResponse:
        """Run a synchronous request and return the normalized response."""
        ...

    async def start_background(self, params: ResponseParams) -> JobHandle:
        """Start a background job and return its handle."""
        ...

    async def retrieve(self, response_id: str) -> JobState:
        """Fetch the current state of a background job."""
        ...
