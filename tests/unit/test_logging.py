"""Tests for structured logging setup."""

from __future__ import annotations

import json

import pytest
import structlog

from quarry.logging import configure_logging, get_logger


@pytest.fixture(autouse=True)
def _reset_structlog():
    yield
    structlog.reset_defaults()


def test_get_logger_emits_json_events(capsys):
    configure_logging("info", "json")

    get_logger("quarry.test").info("chunk_written", chunk_id="c1")

    record = json.loads(capsys.readouterr().out.strip())
    assert record["event"] == "chunk_written"
    assert record["chunk_id"] == "c1"
    assert record["level"] == "info"


def test_level_filters_lower_events(capsys):
    configure_logging("warning", "json")
    log = get_logger("quarry.test")

    log.info("ignored")
    log.warning("kept")

    lines = capsys.readouterr().out.strip().splitlines()
    assert [json.loads(line)["event"] for line in lines] == ["kept"]
