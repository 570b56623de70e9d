"""Model catalog: which models exist, what each tool accepts, and how to describe them."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Literal

TEXT_MODELS: tuple[str, ...] = ("gpt-5.2", "gpt-5.2-pro", "gpt-5.2-chat-latest")
WEB_SEARCH_MODELS: tuple[str, ...] = ("gpt-5.2", "gpt-5.2-chat-latest")
DEEP_RESEARCH_MODELS: tuple[str, ...] = ("o3-deep-research", "o4-mini-deep-research")
STRUCTURED_OUTPUT_MODELS: frozenset[str] = frozenset({"gpt-5.2", "gpt-5.2-chat-latest"})

PRO_MODEL = "gpt-5.2-pro"
DEFAULT_TEXT_MODEL = "gpt-5.2"
DEFAULT_SEARCH_MODEL = "gpt-5.2"
DEFAULT_RESEARCH_MODEL = "o3-deep-research"

REASONING_EFFORTS: tuple[str, ...] = ("none", "low", "medium", "high", "xhigh")
PRO_REASONING_EFFORTS: frozenset[str] = frozenset({"medium", "high", "xhigh"})
VERBOSITY_LEVELS: tuple[str, ...] = ("low", "medium", "high")
REASONING_SUMMARIES: tuple[str, ...] = ("off", "concise", "detailed")

ModelType = Literal["text", "web-search", "research"]


@dataclass(frozen=True)
class ModelInfo:
    id: str
    name: str
    type: ModelType
    description: str
    provider: str = "openai"
    context_window: int | None = None
    max_output: int | None = None
    supports_reasoning: bool | None = None

    def to_dict(self) -> dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}


_TEXT_INFO: dict[str, ModelInfo] = {
    "gpt-5.2": ModelInfo(
        id="gpt-5.2",
        name="GPT-5.2",
        type="text",
        context_window=400_000,
        max_output=128_000,
        supports_reasoning=True,
        description=(
            "Best general choice for coding + agentic tasks. "
            "Supports reasoning effort: none, low, medium, high, xhigh."
        ),
    ),
    "gpt-5.2-pro": ModelInfo(
        id="gpt-5.2-pro",
        name="GPT-5.2 Pro",
        type="text",
        context_window=400_000,
        max_output=128_000,
        supports_reasoning=True,
        description=(
            "Max accuracy for hardest problems. Can take minutes. "
            "Supports reasoning effort: medium, high, xhigh only."
        ),
    ),
    "gpt-5.2-chat-latest": ModelInfo(
        id="gpt-5.2-chat-latest",
        name="GPT-5.2 Chat Latest",
        type="text",
        context_window=128_000,
        max_output=16_384,
        supports_reasoning=True,
        description=(
            "Points to the GPT-5.2 snapshot used in ChatGPT. "
            "Prefer gpt-5.2 for most API work."
        ),
    ),
}

_WEB_SEARCH_INFO = ModelInfo(
    id="web-search",
    name="Web Search (GPT-5.2)",
    type="web-search",
    description=(
        "Search the web using OpenAI's built-in web_search tool. "
        "Returns synthesized answers with source citations."
    ),
)

_RESEARCH_INFO: dict[str, ModelInfo] = {
    "o3-deep-research": ModelInfo(
        id="o3-deep-research",
        name="O3 Deep Research",
        type="research",
        context_window=200_000,
        max_output=100_000,
        description=(
            "Deep research specialist. Conducts thorough web research and produces "
            "comprehensive reports. Takes 5-30 minutes."
        ),
    ),
    "o4-mini-deep-research": ModelInfo(
        id="o4-mini-deep-research",
        name="O4 Mini Deep Research",
        type="research",
        context_window=200_000,
        max_output=100_000,
        description=(
            "Faster, more affordable deep research, optimized for speed. "
            "Takes 5-20 minutes."
        ),
    ),
}


def supports_structured_output(model: str) -> bool:
    return model in STRUCTURED_OUTPUT_MODELS


def list_models() -> list[ModelInfo]:
    """Every model the server exposes, text first, research last."""
    return [
        *(_TEXT_INFO[m] for m in TEXT_MODELS),
        _WEB_SEARCH_INFO,
        *(_RESEARCH_INFO[m] for m in DEEP_RESEARCH_MODELS),
    ]
