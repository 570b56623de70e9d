"""Logging setup: human-readable stderr plus an optional JSON-lines file.

Stdout carries the MCP transport, so nothing here ever writes to it.
"""

from __future__ import annotations

from datetime import datetime, timezone
import json
import logging
from pathlib import Path
import sys
from typing import Any, Final

PACKAGE_LOGGER = "castor"
_STDERR_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

_STANDARD_LOG_RECORD_FIELDS: Final[frozenset[str]] = frozenset(
    {
        "args",
        "asctime",
        "created",
        "exc_info",
        "exc_text",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "message",
        "module",
        "msecs",
        "msg",
        "name",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "thread",
        "threadName",
        "taskName",
    }
)

# Marks handlers installed here so reconfiguring replaces them.
_HANDLER_TAG = "_castor_handler"


def _to_json_value(value: Any) -> Any:
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, dict):
        return {str(k): _to_json_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_to_json_value(v) for v in value]
    return str(value)


def extract_extra_fields(record: logging.LogRecord) -> dict[str, Any]:
    """Return the ``extra=`` fields attached to *record*."""
    return {
        key: _to_json_value(value)
        for key, value in record.__dict__.items()
        if key not in _STANDARD_LOG_RECORD_FIELDS and not key.startswith("_")
    }


class JsonLineFormatter(logging.Formatter):
    """Formatter that emits one JSON object per log line."""

    def format(self, record: logging.LogRecord) -> str:
        event: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc)
            .isoformat()
            .replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "event": record.getMessage(),
        }
        extras = extract_extra_fields(record)
        if extras:
            event["fields"] = extras
        if record.exc_info:
            event["exception"] = self.formatException(record.exc_info)
        return json.dumps(event, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _tagged(handler: logging.Handler) -> logging.Handler:
    setattr(handler, _HANDLER_TAG, True)
    return handler


def configure_logging(
    debug: bool = True,
    log_file: Path | None = None,
    *,
    stream: Any = None,
) -> logging.Logger:
    """Attach Castor's handlers to the package logger and return it.

    Args:
        debug: DEBUG level when True, INFO otherwise.
        log_file: JSON-lines log destination; ``None`` means stderr only.
        stream: Override for the console stream (defaults to ``sys.stderr``).
    """
    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(logging.DEBUG if debug else logging.INFO)
    for handler in list(logger.handlers):
        if getattr(handler, _HANDLER_TAG, False):
            logger.removeHandler(handler)
            handler.close()

    console = logging.StreamHandler(stream if stream is not None else sys.stderr)
    console.setFormatter(logging.Formatter(_STDERR_FORMAT))
    logger.addHandler(_tagged(console))

    if log_file is not None:
        try:
            log_file.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(log_file, encoding="utf-8")
        except OSError as e:
            logger.warning("File logging disabled, could not open %s: %s", log_file, e)
        else:
            file_handler.setFormatter(JsonLineFormatter())
            logger.addHandler(_tagged(file_handler))

    return logger
