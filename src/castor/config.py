"""Configuration: frozen server settings resolved from the environment."""

from __future__ import annotations

from dataclasses import dataclass
import os
from pathlib import Path
from typing import TYPE_CHECKING

from dotenv import load_dotenv

from castor.errors import ConfigurationError

if TYPE_CHECKING:
    from collections.abc import Mapping

API_KEY_ENV = "OPENAI_API_KEY"
ORG_ID_ENV = "OPENAI_ORG_ID"
DEBUG_ENV = "MCP_DEBUG"
LOG_DIR_ENV = "MCP_LOG_DIR"

DEFAULT_LOG_DIR = "logs"
_FALSY = frozenset({"false", "0", "no", "off"})

COSTS_FILENAME = "costs.jsonl"
USAGE_FILENAME = "usage.jsonl"
LOG_FILENAME = "castor.log"


@dataclass(frozen=True)
class ServerConfig:
    """Immutable configuration for the Castor server.

    Example:
        config = ServerConfig.from_env()
        # API key is resolved from OPENAI_API_KEY; startup fails without it
    """

    api_key: str
    organization: str | None = None
    debug: bool = True
    #: ``None`` disables every file the server would otherwise write.
    log_dir: Path | None = Path(DEFAULT_LOG_DIR)

    def __post_init__(self) -> None:
        """Validate configuration."""
        if not self.api_key or not self.api_key.strip():
            raise ConfigurationError(
                f"{API_KEY_ENV} environment variable is required",
                hint=f"Set {API_KEY_ENV} in the environment or in a .env file.",
            )

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> ServerConfig:
        """Build a config from environment variables.

        ``.env`` is loaded first (without overriding variables already set)
        unless an explicit *environ* mapping is passed.
        """
        if environ is None:
            load_dotenv()
            environ = os.environ

        debug_raw = environ.get(DEBUG_ENV)
        debug = debug_raw is None or debug_raw.strip().lower() not in _FALSY

        log_dir_raw = environ.get(LOG_DIR_ENV, DEFAULT_LOG_DIR).strip()
        log_dir = None if log_dir_raw.lower() == "none" or not log_dir_raw else Path(log_dir_raw)

        return cls(
            api_key=environ.get(API_KEY_ENV, ""),
            organization=environ.get(ORG_ID_ENV) or None,
            debug=debug,
            log_dir=log_dir,
        )

    def _file(self, name: str) -> Path | None:
        return self.log_dir / name if self.log_dir is not None else None

    @property
    def costs_path(self) -> Path | None:
        return self._file(COSTS_FILENAME)

    @property
    def usage_path(self) -> Path | None:
        return self._file(USAGE_FILENAME)

    @property
    def log_path(self) -> Path | None:
        return self._file(LOG_FILENAME)

    def __str__(self) -> str:
        """Return a redacted, developer-friendly representation."""
        return (
            f"ServerConfig(api_key={'[REDACTED]' if self.api_key else None}, "
            f"organization={self.organization!r}, debug={self.debug}, "
            f"log_dir={str(self.log_dir) if self.log_dir else None!r})"
        )

    __repr__ = __str__
