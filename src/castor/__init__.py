"""Castor: an MCP tool server over the OpenAI Responses API.

Public API:
    - Generator: text generation and web search
    - DeepResearcher: long-running research jobs
    - CostLedger: per-process cost accounting
    - ServerConfig: environment configuration
"""

from __future__ import annotations

import logging

try:
    from importlib.metadata import PackageNotFoundError, version

    __version__ = version("castor-mcp")
except PackageNotFoundError:
    __version__ = "0.0.0+unknown"

from castor.config import ServerConfig
from castor.errors import (
    APIError,
    AuthError,
    CastorError,
    ConfigurationError,
    ErrorKind,
    RateLimitError,
    ResearchFailedError,
    ResearchTimeoutError,
    ValidationError,
)
from castor.generation import Generator
from castor.ledger import CostLedger
from castor.request import GenerationRequest, ResearchRequest, SearchRequest, StructuredOutput
from castor.research import DeepResearcher
from castor.retry import RetryPolicy

# Library-level NullHandler: stay silent unless the server configures logging.
logging.getLogger("castor").addHandler(logging.NullHandler())

__all__ = [
    "APIError",
    "AuthError",
    "CastorError",
    "ConfigurationError",
    "CostLedger",
    "DeepResearcher",
    "ErrorKind",
    "GenerationRequest",
    "Generator",
    "RateLimitError",
    "ResearchFailedError",
    "ResearchRequest",
    "ResearchTimeoutError",
    "RetryPolicy",
    "SearchRequest",
    "ServerConfig",
    "StructuredOutput",
    "ValidationError",
    "__version__",
]
