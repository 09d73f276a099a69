"""Unit tests for structlog configuration."""

from __future__ import annotations

import json
from collections.abc import Iterator

import pytest
import structlog

from rewind.observability.logging import setup_logging


@pytest.fixture(autouse=True)
def _reset_structlog() -> Iterator[None]:
    yield
    structlog.reset_defaults()


class TestSetupLogging:
    def test_renders_json_with_component(self, capsys: pytest.CaptureFixture[str]) -> None:
        setup_logging("info")
        structlog.get_logger(component="history.stack").info("history_push", label="typing")
        record = json.loads(capsys.readouterr().err.strip())
        assert record["event"] == "history_push"
        assert record["component"] == "history.stack"
        assert record["level"] == "info"
        assert "ts" in record

    def test_level_filters_lower_events(self, capsys: pytest.CaptureFixture[str]) -> None:
        setup_logging("warning")
        log = structlog.get_logger(component="memory.manager")
        log.info("history_trimmed_by_count")
        log.warning("history_memory_budget_exceeded")
        lines = capsys.readouterr().err.strip().splitlines()
        assert [json.loads(line)["event"] for line in lines] == ["history_memory_budget_exceeded"]
