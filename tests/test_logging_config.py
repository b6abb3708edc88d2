"""Tests for logging setup and metrics helpers."""

import json
import logging

import pytest
from prometheus_client import REGISTRY

from feedrelay import metrics
from feedrelay.logging_config import get_logger, setup_logging


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in root.handlers:
        handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


def test_errors_are_written_as_json(tmp_path, restore_root_logger):
    setup_logging(tmp_path)

    get_logger("feedrelay.test", relay="CorsProxy.io").error("relay exploded")
    logging.getLogger("feedrelay.test").info("not an error")
    for handler in logging.getLogger().handlers:
        handler.flush()

    lines = (tmp_path / "logs" / "error.log").read_text(encoding="utf-8").splitlines()
    assert len(lines) == 1
    record = json.loads(lines[0])
    assert record["message"] == "relay exploded"
    assert record["level"] == "ERROR"
    assert record["relay"] == "CorsProxy.io"
    assert record["logger"] == "feedrelay.test"

    app_log = (tmp_path / "logs" / "app.log").read_text(encoding="utf-8")
    assert "not an error" in app_log


def test_relay_attempt_counter():
    labels = {"relay": "MetricsRelay", "outcome": "rejected"}
    before = REGISTRY.get_sample_value("feedrelay_relay_attempts_total", labels) or 0.0

    metrics.record_relay_attempt("MetricsRelay", "rejected")

    assert REGISTRY.get_sample_value("feedrelay_relay_attempts_total", labels) == before + 1
