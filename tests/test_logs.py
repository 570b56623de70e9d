"""Logging setup: stderr console plus JSON-lines file."""

from __future__ import annotations

import io
import json
import logging
from pathlib import Path

import pytest

from castor.logs import PACKAGE_LOGGER, JsonLineFormatter, configure_logging

pytestmark = pytest.mark.unit


@pytest.fixture
def restore_package_logger():
    logger = logging.getLogger(PACKAGE_LOGGER)
    handlers, level = list(logger.handlers), logger.level
    yield logger
    for handler in list(logger.handlers):
        if handler not in handlers:
            logger.removeHandler(handler)
            handler.close()
    logger.setLevel(level)


def _record(**extra) -> logging.LogRecord:
    record = logging.LogRecord(
        "castor.research", logging.INFO, __file__, 1, "Polling %s", ("resp_1",), None
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_formatter_includes_extra_fields() -> None:
    line = JsonLineFormatter().format(_record(response_id="resp_1", elapsed_s=12.5, tags=("a",)))

    event = json.loads(line)
    assert event["level"] == "INFO"
    assert event["logger"] == "castor.research"
    assert event["event"] == "Polling resp_1"
    assert event["timestamp"].endswith("Z")
    assert event["fields"] == {"response_id": "resp_1", "elapsed_s": 12.5, "tags": ["a"]}


def test_json_formatter_omits_empty_fields() -> None:
    event = json.loads(JsonLineFormatter().format(_record()))
    assert "fields" not in event


def test_debug_flag_sets_level(restore_package_logger: logging.Logger) -> None:
    logger = configure_logging(debug=False, stream=io.StringIO())
    assert logger.level == logging.INFO

    logger = configure_logging(debug=True, stream=io.StringIO())
    assert logger.level == logging.DEBUG


def test_reconfiguring_replaces_handlers(restore_package_logger: logging.Logger) -> None:
    before = len(restore_package_logger.handlers)

    configure_logging(stream=io.StringIO())
    configure_logging(stream=io.StringIO())

    assert len(restore_package_logger.handlers) == before + 1


def test_file_handler_writes_json_lines(
    restore_package_logger: logging.Logger, tmp_path: Path
) -> None:
    log_file = tmp_path / "nested" / "castor.log"
    stream = io.StringIO()
    logger = configure_logging(debug=True, log_file=log_file, stream=stream)

    logger.getChild("server").info("Starting", extra={"debug_mode": True})
    for handler in logger.handlers:
        handler.flush()

    assert "Starting" in stream.getvalue()
    (line,) = log_file.read_text(encoding="utf-8").splitlines()
    event = json.loads(line)
    assert event["logger"] == "castor.server"
    assert event["fields"] == {"debug_mode": True}
