"""Tests for logging configuration."""

import json
import logging

import pytest

from offline_layer.utils.diagnostics import Diagnostics
from offline_layer.utils.logging_config import setup_logging


@pytest.fixture(autouse=True)
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in list(root.handlers):
        root.removeHandler(handler)
        if handler not in handlers:
            handler.close()
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)


def _flush_handlers():
    for handler in logging.getLogger().handlers:
        handler.flush()


class TestSetupLogging:
    def test_creates_log_dir(self, tmp_path):
        log_dir = tmp_path / "logs"
        setup_logging(str(log_dir), level="DEBUG")
        assert log_dir.exists()

    def test_creates_log_file(self, tmp_path):
        log_dir = tmp_path / "logs"
        setup_logging(str(log_dir), level="DEBUG")
        logging.getLogger("test").info("Test message")
        assert (log_dir / "offline-layer.log").exists()

    def test_json_format(self, tmp_path):
        log_dir = tmp_path / "logs"
        setup_logging(str(log_dir), level="DEBUG", json_format=True)
        logging.getLogger("test.json").info("JSON test")
        _flush_handlers()

        lines = (log_dir / "offline-layer.log").read_text().splitlines()
        record = json.loads(lines[-1])
        assert record["message"] == "JSON test"
        assert record["level"] == "INFO"
        assert record["logger"] == "test.json"

    def test_diagnostics_are_tagged_in_json(self, tmp_path):
        log_dir = tmp_path / "logs"
        setup_logging(str(log_dir), level="INFO", json_format=True)
        Diagnostics().emit("queue.evicted", "Evicted oldest queued request")
        _flush_handlers()

        lines = (log_dir / "offline-layer.log").read_text().splitlines()
        record = json.loads(lines[-1])
        assert record["diagnostic"] == "queue.evicted"
        assert record["level"] == "WARNING"

    def test_log_level(self, tmp_path):
        setup_logging(str(tmp_path / "logs"), level="WARNING")
        assert logging.getLogger().level == logging.WARNING

    def test_reinit_does_not_duplicate_handlers(self, tmp_path):
        setup_logging(str(tmp_path / "logs"))
        setup_logging(str(tmp_path / "logs"))
        assert len(logging.getLogger().handlers) == 2

    def test_third_party_loggers_quieted(self, tmp_path):
        setup_logging(str(tmp_path / "logs"), level="DEBUG")
        assert logging.getLogger("httpx").level == logging.WARNING
