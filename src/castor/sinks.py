"""Best-effort append-only JSON-lines persistence.

Sinks never raise on I/O failure. ``append`` returns a ``PersistResult`` so the
caller decides what to do with a failed write (in practice: log and move on).
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from pathlib import Path
import threading

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PersistResult:
    """Outcome of a single append."""

    ok: bool
    error: str | None = None

    @classmethod
    def success(cls) -> PersistResult:
        return cls(ok=True)

    @classmethod
    def failure(cls, error: BaseException) -> PersistResult:
        return cls(ok=False, error=f"{type(error).__name__}: {error}")


class JsonlSink:
    """One append-only ``.jsonl`` file. ``path=None`` makes every call a no-op."""

    def __init__(self, path: Path | None) -> None:
        self.path = path
        self._lock = threading.Lock()

    @property
    def enabled(self) -> bool:
        return self.path is not None

    def append(self, line: str) -> PersistResult:
        """Append one serialized record; the trailing newline is added here."""
        if self.path is None:
            return PersistResult.success()
        try:
            with self._lock:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with self.path.open("a", encoding="utf-8") as fh:
                    fh.write(line.rstrip("\n") + "\n")
        except OSError as e:
            return PersistResult.failure(e)
        return PersistResult.success()

    def read_lines(self) -> list[str]:
        """Return the non-blank lines of the file, or ``[]`` when unreadable."""
        if self.path is None or not self.path.exists():
            return []
        try:
            # Undecodable bytes become U+FFFD so only the damaged line is lost.
            text = self.path.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            logger.warning("Could not read %s, starting fresh: %s", self.path, e)
            return []
        return [line for line in text.split("\n") if line.strip()]
