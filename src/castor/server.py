"""MCP tool surface: handlers, FastMCP registration, and the stdio entry point.

Handlers return a ``ToolResponse`` and never raise for request failures; the
FastMCP adapter turns error responses into ``ToolError`` so the client sees
``isError`` with a single ``"<KIND>: <message>"`` line.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import json
import logging
import sys
from typing import TYPE_CHECKING, Annotated, Any

from fastmcp import FastMCP
from fastmcp.exceptions import ToolError
from fastmcp.tools.tool import ToolResult
from pydantic import BaseModel, ConfigDict, Field

from castor import __version__
from castor.catalog import (
    DEEP_RESEARCH_MODELS,
    DEFAULT_RESEARCH_MODEL,
    DEFAULT_SEARCH_MODEL,
    DEFAULT_TEXT_MODEL,
    REASONING_EFFORTS,
    REASONING_SUMMARIES,
    TEXT_MODELS,
    VERBOSITY_LEVELS,
    WEB_SEARCH_MODELS,
    list_models,
)
from castor.config import ServerConfig
from castor.errors import CastorError, ConfigurationError, ValidationError
from castor.generation import Generator
from castor.ledger import CostLedger
from castor.logs import configure_logging
from castor.providers._errors import classify_error
from castor.providers.openai import OpenAIBackend
from castor.request import (
    DEFAULT_MAX_OUTPUT_TOKENS,
    DEFAULT_TIMEOUT_MINUTES,
    MAX_TIMEOUT_MINUTES,
    MIN_TIMEOUT_MINUTES,
    GenerationRequest,
    ResearchRequest,
    SearchRequest,
    StructuredOutput,
)
from castor.research import DeepResearcher
from castor.sinks import JsonlSink
from castor.usage_log import OperationLog

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from castor.generation import SearchResult
    from castor.providers.models import Usage

logger = logging.getLogger(__name__)

SERVER_NAME = "castor"


def _choices(values: tuple[str, ...] | list[str]) -> dict[str, Any]:
    # Advertised in the schema only; membership is checked by the request objects.
    return {"enum": list(values)}


class JsonSchemaArg(BaseModel):
    """Structured output configuration as it arrives over the wire."""

    model_config = ConfigDict(populate_by_name=True)

    name: Annotated[
        str, Field(description="Name for the schema (e.g., 'extract_entities')")
    ]
    schema_: Annotated[
        dict[str, Any],
        Field(alias="schema", description="JSON Schema object defining the output structure"),
    ]
    description: Annotated[
        str | None, Field(description="Optional description of what the schema represents")
    ] = None
    strict: Annotated[
        bool, Field(description="Enable strict schema validation (default: true)")
    ] = True

    def to_structured_output(self) -> StructuredOutput:
        return StructuredOutput(
            name=self.name,
            schema=self.schema_,
            description=self.description,
            strict=self.strict,
        )


@dataclass(frozen=True)
class ToolResponse:
    """Transport-neutral tool outcome."""

    text: str
    meta: dict[str, Any] = field(default_factory=dict)
    is_error: bool = False

    @classmethod
    def error(cls, exc: BaseException) -> ToolResponse:
        return cls(text=str(classify_error(exc)), is_error=True)


def _usage_meta(usage: Usage | None) -> dict[str, int] | None:
    return usage.to_dict() if usage is not None else None


def format_sources(result: SearchResult) -> str:
    """Answer text followed by a markdown list of cited sources."""
    if not result.sources:
        return result.text
    lines = [result.text, "", "---", "**Sources:**"]
    lines.extend(f"- [{s.title or s.url}]({s.url})" for s in result.sources)
    return "\n".join(lines) + "\n"


def _format_cost(value: float) -> str:
    return f"${value:.6f}"


class ToolHandlers:
    """The six tools, independent of the MCP framework."""

    def __init__(
        self,
        generator: Generator,
        researcher: DeepResearcher,
        ledger: CostLedger,
    ) -> None:
        self.generator = generator
        self.researcher = researcher
        self.ledger = ledger

    async def _guard(
        self, tool: str, call: Callable[[], Awaitable[ToolResponse]]
    ) -> ToolResponse:
        try:
            return await call()
        except asyncio.CancelledError:
            raise
        except CastorError as e:
            logger.error("%s failed: %s", tool, e, extra={"tool": tool, "kind": e.kind.value})
            return ToolResponse.error(e)
        except Exception as e:
            logger.error("%s failed unexpectedly", tool, exc_info=True, extra={"tool": tool})
            return ToolResponse.error(e)

    async def generate_text(
        self,
        prompt: str,
        system_prompt: str | None = None,
        model: str = DEFAULT_TEXT_MODEL,
        reasoning_effort: str = "none",
        verbosity: str = "medium",
        reasoning_summary: str = "off",
        max_output_tokens: int = DEFAULT_MAX_OUTPUT_TOKENS,
        temperature: float | None = None,
        json_schema: StructuredOutput | None = None,
    ) -> ToolResponse:
        async def call() -> ToolResponse:
            request = GenerationRequest(
                prompt=prompt,
                system_prompt=system_prompt,
                model=model,
                reasoning_effort=reasoning_effort,  # type: ignore[arg-type]
                verbosity=verbosity,  # type: ignore[arg-type]
                reasoning_summary=reasoning_summary,  # type: ignore[arg-type]
                max_output_tokens=max_output_tokens,
                temperature=temperature,
                json_schema=json_schema,
            )
            result = await self.generator.generate(request)
            meta: dict[str, Any] = {
                "model": result.model,
                "usage": _usage_meta(result.usage),
                "cost": result.cost.to_dict(),
            }
            if result.finish_reason:
                meta["finish_reason"] = result.finish_reason
            if result.response_id:
                meta["response_id"] = result.response_id
            return ToolResponse(text=result.text, meta=meta)

        return await self._guard("generate_text", call)

    async def web_search(
        self,
        query: str,
        model: str = DEFAULT_SEARCH_MODEL,
        allowed_domains: list[str] | tuple[str, ...] | None = None,
        include_sources: bool = True,
    ) -> ToolResponse:
        async def call() -> ToolResponse:
            request = SearchRequest(
                query=query,
                model=model,
                allowed_domains=tuple(allowed_domains or ()),
                include_sources=include_sources,
            )
            result = await self.generator.search(request)
            meta: dict[str, Any] = {
                "model": result.model,
                "usage": _usage_meta(result.usage),
                "cost": result.cost.to_dict(),
                "source_count": len(result.sources) if result.sources else 0,
            }
            if result.response_id:
                meta["response_id"] = result.response_id
            return ToolResponse(text=format_sources(result), meta=meta)

        return await self._guard("web_search", call)

    async def deep_research(
        self,
        query: str,
        model: str = DEFAULT_RESEARCH_MODEL,
        timeout_minutes: float = DEFAULT_TIMEOUT_MINUTES,
    ) -> ToolResponse:
        async def call() -> ToolResponse:
            request = ResearchRequest(query=query, model=model, timeout_minutes=timeout_minutes)
            result = await self.researcher.research(request)
            return ToolResponse(
                text=result.text,
                meta={
                    "model": result.model,
                    "response_id": result.response_id,
                    "duration_s": round(result.duration_s, 3),
                    "duration_minutes": result.duration_minutes,
                    "usage": _usage_meta(result.usage),
                    "cost": result.cost.to_dict(),
                },
            )

        return await self._guard("deep_research", call)

    async def check_research(self, response_id: str) -> ToolResponse:
        async def call() -> ToolResponse:
            if not response_id or not response_id.strip():
                raise ValidationError("response_id is required")
            logger.info("Checking research status", extra={"response_id": response_id})
            status = await self.researcher.check_research(response_id)
            if status.status == "completed":
                text = status.text or "Research completed but no output text found"
            elif status.status == "failed":
                text = f"Research failed: {status.error}"
            elif status.status == "in_progress":
                text = (
                    "Research is still in progress. "
                    f"Check again later with response_id: {response_id}"
                )
            else:
                text = (
                    "Research status is unknown. "
                    f"Check again later with response_id: {response_id}"
                )
            meta: dict[str, Any] = {
                "model": status.model,
                "response_id": status.response_id,
                "status": status.status,
                "usage": _usage_meta(status.usage),
                "cost": status.cost.to_dict() if status.cost is not None else None,
            }
            if status.error:
                meta["error"] = status.error
            return ToolResponse(text=text, meta=meta)

        return await self._guard("check_research", call)

    async def list_models(self) -> ToolResponse:
        models = [{**m.to_dict(), "available": True} for m in list_models()]
        return ToolResponse(
            text=json.dumps({"models": models}, indent=2),
            meta={"model_count": len(models), "model_ids": [m["id"] for m in models]},
        )

    async def get_cost_summary(self, reset: bool = False) -> ToolResponse:
        summary = self.ledger.summary()
        if reset:
            self.ledger.reset()
        payload = {
            "summary": {
                "total_cost": _format_cost(summary.total_cost),
                "call_count": summary.call_count,
                "estimated_cost": _format_cost(summary.estimated_cost),
                "since": summary.since,
                "by_model": {k: _format_cost(v) for k, v in summary.by_model.items()},
                "by_operation": {k: _format_cost(v) for k, v in summary.by_operation.items()},
            },
            "was_reset": reset,
        }
        return ToolResponse(text=json.dumps(payload, indent=2), meta=summary.to_dict())


def _to_tool_result(response: ToolResponse) -> ToolResult:
    if response.is_error:
        raise ToolError(response.text)
    return ToolResult(content=response.text, meta=response.meta or None)


def build_server(handlers: ToolHandlers) -> FastMCP:
    """Register the tools on a new FastMCP server."""
    mcp = FastMCP(SERVER_NAME)

    @mcp.tool()
    async def generate_text(
        prompt: Annotated[
            str,
            Field(
                description="The complete prompt to send to the model, "
                "including all necessary context"
            ),
        ],
        system_prompt: Annotated[
            str | None,
            Field(
                description="Optional system instructions that set the model's "
                "behavior and role"
            ),
        ] = None,
        model: Annotated[
            str,
            Field(
                description="'gpt-5.2' (default, best general), 'gpt-5.2-pro' "
                "(max accuracy, slow), 'gpt-5.2-chat-latest' (ChatGPT snapshot)",
                json_schema_extra=_choices(TEXT_MODELS),
            ),
        ] = DEFAULT_TEXT_MODEL,
        reasoning_effort: Annotated[
            str,
            Field(
                description="Reasoning depth. gpt-5.2-pro only supports medium/high/xhigh.",
                json_schema_extra=_choices(REASONING_EFFORTS),
            ),
        ] = "none",
        verbosity: Annotated[
            str,
            Field(
                description="Output verbosity",
                json_schema_extra=_choices(VERBOSITY_LEVELS),
            ),
        ] = "medium",
        reasoning_summary: Annotated[
            str,
            Field(
                description="Optional user-visible reasoning summary",
                json_schema_extra=_choices(REASONING_SUMMARIES),
            ),
        ] = "off",
        max_output_tokens: Annotated[
            int,
            Field(description="Maximum number of tokens to generate"),
        ] = DEFAULT_MAX_OUTPUT_TOKENS,
        temperature: Annotated[
            float | None,
            Field(
                description="Sampling temperature from 0 to 2. "
                "Only allowed when reasoning_effort='none'."
            ),
        ] = None,
        json_schema: Annotated[
            JsonSchemaArg | None,
            Field(
                description="Structured output configuration. "
                "Only supported by gpt-5.2 and gpt-5.2-chat-latest."
            ),
        ] = None,
    ) -> ToolResult:
        """Generate text using GPT-5.2 family with optional reasoning + verbosity controls.

        Use this for complex reasoning, writing, analysis, or any text generation task.
        """
        try:
            structured = json_schema.to_structured_output() if json_schema else None
        except ValidationError as e:
            return _to_tool_result(ToolResponse.error(e))
        return _to_tool_result(
            await handlers.generate_text(
                prompt,
                system_prompt=system_prompt,
                model=model,
                reasoning_effort=reasoning_effort,
                verbosity=verbosity,
                reasoning_summary=reasoning_summary,
                max_output_tokens=max_output_tokens,
                temperature=temperature,
                json_schema=structured,
            )
        )

    @mcp.tool()
    async def web_search(
        query: Annotated[str, Field(description="The search query")],
        model: Annotated[
            str,
            Field(
                description="'gpt-5.2' (default), 'gpt-5.2-chat-latest'",
                json_schema_extra=_choices(WEB_SEARCH_MODELS),
            ),
        ] = DEFAULT_SEARCH_MODEL,
        allowed_domains: Annotated[
            list[str] | None,
            Field(description="Domain allowlist (no scheme, max 100). Example: ['wikipedia.org']"),
        ] = None,
        include_sources: Annotated[
            bool,
            Field(description="Include source URLs in the response"),
        ] = True,
    ) -> ToolResult:
        """Search the web using OpenAI's built-in web_search tool.

        Returns synthesized answers with source citations.
        """
        return _to_tool_result(
            await handlers.web_search(
                query,
                model=model,
                allowed_domains=allowed_domains,
                include_sources=include_sources,
            )
        )

    @mcp.tool()
    async def deep_research(
        query: Annotated[
            str,
            Field(description="The research question or topic. Be specific and detailed."),
        ],
        model: Annotated[
            str,
            Field(
                description="'o3-deep-research' (default, most thorough), "
                "'o4-mini-deep-research' (faster)",
                json_schema_extra=_choices(DEEP_RESEARCH_MODELS),
            ),
        ] = DEFAULT_RESEARCH_MODEL,
        timeout_minutes: Annotated[
            float,
            Field(
                json_schema_extra={"minimum": MIN_TIMEOUT_MINUTES, "maximum": MAX_TIMEOUT_MINUTES},
                description="Maximum time to wait for completion in minutes",
            ),
        ] = DEFAULT_TIMEOUT_MINUTES,
    ) -> ToolResult:
        """Perform comprehensive research using OpenAI's deep research models.

        The agent searches the web, analyzes multiple sources, and produces a
        detailed report. This typically takes 5-60 minutes. If it times out,
        call check_research with the response_id from the error message.
        """
        return _to_tool_result(
            await handlers.deep_research(query, model=model, timeout_minutes=timeout_minutes)
        )

    @mcp.tool()
    async def check_research(
        response_id: Annotated[
            str,
            Field(description="The response ID returned from a previous deep_research call"),
        ],
    ) -> ToolResult:
        """Check the status of a deep research task or retrieve results after a timeout."""
        return _to_tool_result(await handlers.check_research(response_id))

    @mcp.tool(name="list_models")
    async def list_models_tool() -> ToolResult:
        """List all available OpenAI models and their capabilities."""
        return _to_tool_result(await handlers.list_models())

    @mcp.tool()
    async def get_cost_summary(
        reset: Annotated[
            bool,
            Field(description="If true, reset the cost counter after returning the summary"),
        ] = False,
    ) -> ToolResult:
        """Get the cumulative cost of all API calls made by this server.

        Shows total costs broken down by model and operation type.
        """
        return _to_tool_result(await handlers.get_cost_summary(reset=reset))

    return mcp


def create_handlers(config: ServerConfig) -> ToolHandlers:
    """Wire the backend, ledger and usage log for *config*."""
    backend = OpenAIBackend(config.api_key, config.organization)
    ledger = CostLedger(JsonlSink(config.costs_path))
    oplog = OperationLog(JsonlSink(config.usage_path))
    return ToolHandlers(
        generator=Generator(backend, ledger, oplog),
        researcher=DeepResearcher(backend, ledger, oplog),
        ledger=ledger,
    )


def main() -> None:
    """Console entry point: configure, then serve over stdio."""
    try:
        config = ServerConfig.from_env()
    except ConfigurationError as e:
        configure_logging(debug=False)
        logger.error("FATAL: %s. %s", e.message, e.hint or "")
        sys.exit(1)

    configure_logging(config.debug, config.log_path)
    logger.info(
        "Starting MCP server",
        extra={
            "version": __version__,
            "org_id": "configured" if config.organization else "not set",
            "debug_mode": config.debug,
            "log_dir": str(config.log_dir) if config.log_dir else None,
        },
    )
    mcp = build_server(create_handlers(config))
    mcp.run()
