"""Request objects for the three remote operations.

Each request validates its parameters at construction time, so a request that
exists is a request the remote may receive. Violations raise
``ValidationError`` and are never coerced into something valid.
"""

from __future__ import annotations

from dataclasses import dataclass
import math
from typing import Any, Literal

from castor.catalog import (
    DEEP_RESEARCH_MODELS,
    DEFAULT_RESEARCH_MODEL,
    DEFAULT_SEARCH_MODEL,
    DEFAULT_TEXT_MODEL,
    PRO_MODEL,
    PRO_REASONING_EFFORTS,
    REASONING_EFFORTS,
    REASONING_SUMMARIES,
    STRUCTURED_OUTPUT_MODELS,
    TEXT_MODELS,
    VERBOSITY_LEVELS,
    WEB_SEARCH_MODELS,
    supports_structured_output,
)
from castor.errors import ValidationError

ReasoningEffort = Literal["none", "low", "medium", "high", "xhigh"]
Verbosity = Literal["low", "medium", "high"]
ReasoningSummary = Literal["off", "concise", "detailed"]

DEFAULT_MAX_OUTPUT_TOKENS = 8192
MAX_ALLOWED_DOMAINS = 100
MIN_TIMEOUT_MINUTES = 5
MAX_TIMEOUT_MINUTES = 120
DEFAULT_TIMEOUT_MINUTES = 60
DEFAULT_POLL_INTERVAL_S = 10.0


def _require_text(name: str, value: str) -> None:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{name} must be a non-empty string")


def _require_choice(name: str, value: str, choices: tuple[str, ...]) -> None:
    if value not in choices:
        raise ValidationError(
            f"Unsupported {name}: {value!r}",
            hint=f"Supported values: {', '.join(choices)}",
        )


@dataclass(frozen=True)
class StructuredOutput:
    """A named JSON schema the response text must conform to."""

    name: str
    schema: dict[str, Any]
    description: str | None = None
    strict: bool = True

    def __post_init__(self) -> None:
        _require_text("json_schema.name", self.name)
        if not isinstance(self.schema, dict):
            raise ValidationError("json_schema.schema must be an object")

    def to_format(self) -> dict[str, Any]:
        """Return the ``text.format`` payload."""
        fmt: dict[str, Any] = {
            "type": "json_schema",
            "name": self.name,
            "strict": self.strict,
            "schema": self.schema,
        }
        if self.description:
            fmt["description"] = self.description
        return fmt


@dataclass(frozen=True)
class GenerationRequest:
    """A text generation call and its parameter set."""

    prompt: str
    system_prompt: str | None = None
    model: str = DEFAULT_TEXT_MODEL
    reasoning_effort: ReasoningEffort = "none"
    verbosity: Verbosity = "medium"
    reasoning_summary: ReasoningSummary = "off"
    max_output_tokens: int = DEFAULT_MAX_OUTPUT_TOKENS
    temperature: float | None = None
    json_schema: StructuredOutput | None = None

    def __post_init__(self) -> None:
        """Enforce the parameter invariants."""
        _require_text("prompt", self.prompt)
        _require_choice("model", self.model, TEXT_MODELS)
        _require_choice("reasoning_effort", self.reasoning_effort, REASONING_EFFORTS)
        _require_choice("verbosity", self.verbosity, VERBOSITY_LEVELS)
        _require_choice("reasoning_summary", self.reasoning_summary, REASONING_SUMMARIES)

        if isinstance(self.max_output_tokens, bool) or self.max_output_tokens <= 0:
            raise ValidationError(
                f"max_output_tokens must be > 0, got {self.max_output_tokens}"
            )

        if self.temperature is not None:
            if self.reasoning_effort != "none":
                raise ValidationError(
                    "temperature is only supported when reasoning_effort is 'none'",
                    hint="Drop temperature or set reasoning_effort='none'.",
                )
            if not math.isfinite(self.temperature) or not 0 <= self.temperature <= 2:
                raise ValidationError(
                    f"temperature must be between 0 and 2, got {self.temperature}"
                )

        if self.model == PRO_MODEL and self.reasoning_effort not in PRO_REASONING_EFFORTS:
            raise ValidationError(
                f"{PRO_MODEL} does not support reasoning_effort={self.reasoning_effort!r}",
                hint="Use reasoning_effort 'medium', 'high' or 'xhigh'.",
            )

        if self.json_schema is not None and not supports_structured_output(self.model):
            raise ValidationError(
                f"json_schema is not supported by model {self.model!r}",
                hint=f"Structured output models: {', '.join(sorted(STRUCTURED_OUTPUT_MODELS))}",
            )


@dataclass(frozen=True)
class SearchRequest:
    """A web search call."""

    query: str
    model: str = DEFAULT_SEARCH_MODEL
    allowed_domains: tuple[str, ...] = ()
    include_sources: bool = True

    def __post_init__(self) -> None:
        """Enforce the parameter invariants."""
        _require_text("query", self.query)
        _require_choice("model", self.model, WEB_SEARCH_MODELS)
        # Lists arrive from the tool boundary; store a tuple so the request stays hashable.
        object.__setattr__(self, "allowed_domains", tuple(self.allowed_domains))

        if len(self.allowed_domains) > MAX_ALLOWED_DOMAINS:
            raise ValidationError(
                f"allowed_domains accepts at most {MAX_ALLOWED_DOMAINS} entries, "
                f"got {len(self.allowed_domains)}"
            )
        for domain in self.allowed_domains:
            _require_text("allowed_domains entry", domain)
            if "://" in domain:
                raise ValidationError(
                    f"allowed_domains entries must not include a scheme: {domain!r}",
                    hint="Use 'example.com', not 'https://example.com'.",
                )


@dataclass(frozen=True)
class ResearchRequest:
    """A deep research job."""

    query: str
    model: str = DEFAULT_RESEARCH_MODEL
    timeout_minutes: float = DEFAULT_TIMEOUT_MINUTES
    poll_interval_s: float = DEFAULT_POLL_INTERVAL_S

    def __post_init__(self) -> None:
        """Enforce the parameter invariants."""
        _require_text("query", self.query)
        _require_choice("model", self.model, DEEP_RESEARCH_MODELS)
        if not MIN_TIMEOUT_MINUTES <= self.timeout_minutes <= MAX_TIMEOUT_MINUTES:
            raise ValidationError(
                f"timeout_minutes must be between {MIN_TIMEOUT_MINUTES} and "
                f"{MAX_TIMEOUT_MINUTES}, got {self.timeout_minutes}"
            )
        if self.poll_interval_s <= 0:
            raise ValidationError(
                f"poll_interval_s must be > 0, got {self.poll_interval_s}"
            )

    @property
    def timeout_s(self) -> float:
        return self.timeout_minutes * 60
