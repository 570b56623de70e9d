"""Shared pytest fixtures for the Castor suite.

Every test runs with OPENAI_*/MCP_* cleared and ``.env`` loading disabled, so
results never depend on the developer's shell. Live OpenAI tests carry the
``api`` marker and are skipped unless ENABLE_API_TESTS is set.
"""

from __future__ import annotations

import logging
import os

import pytest

from castor.ledger import CostLedger
from castor.sinks import JsonlSink
from castor.usage_log import OperationLog
from tests.helpers import FakeClock, ScriptedBackend

_ISOLATED_PREFIXES = ("OPENAI_", "MCP_")
_LIVE_MODEL = "gpt-5.2"


@pytest.fixture(autouse=True)
def no_dotenv(request: pytest.FixtureRequest, monkeypatch: pytest.MonkeyPatch) -> None:
    """Stub out ``load_dotenv`` unless the test is marked ``allow_dotenv``."""
    if request.node.get_closest_marker("allow_dotenv") is None:
        monkeypatch.setattr("castor.config.load_dotenv", lambda *a, **kw: False)


@pytest.fixture(autouse=True)
def clean_environment(request: pytest.FixtureRequest, monkeypatch: pytest.MonkeyPatch) -> None:
    """Drop server variables; live tests and ``allow_env_pollution`` keep them."""
    node = request.node
    if node.get_closest_marker("allow_env_pollution") or node.get_closest_marker("api"):
        return
    for name in [k for k in os.environ if k.startswith(_ISOLATED_PREFIXES)]:
        monkeypatch.delenv(name)


@pytest.fixture(scope="session", autouse=True)
def silence_http_loggers() -> None:
    for name in ("httpx", "openai"):
        logging.getLogger(name).setLevel(logging.WARNING)


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    if os.getenv("ENABLE_API_TESTS"):
        return
    skip = pytest.mark.skip(reason="set ENABLE_API_TESTS=1 to run live OpenAI tests")
    for item in items:
        if item.get_closest_marker("api"):
            item.add_marker(skip)


# Doubles


@pytest.fixture
def backend() -> ScriptedBackend:
    return ScriptedBackend()


@pytest.fixture
def ledger() -> CostLedger:
    """Ledger without a file mirror."""
    return CostLedger()


@pytest.fixture
def oplog(tmp_path) -> OperationLog:
    return OperationLog(JsonlSink(tmp_path / "usage.jsonl"))


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# Live API


@pytest.fixture
def openai_api_key() -> str:
    key = os.getenv("OPENAI_API_KEY")
    if not key:
        pytest.skip("OPENAI_API_KEY not set")
    return key


@pytest.fixture
def openai_test_model() -> str:
    """Cheapest model that accepts every generate_text parameter."""
    return _LIVE_MODEL
