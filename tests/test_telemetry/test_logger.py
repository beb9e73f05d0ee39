"""Tests for structured logging configuration."""

import json
import logging
import pathlib

import pytest
import structlog

from storefront_assistant.telemetry import TURN_COMPLETED
from storefront_assistant.telemetry.logger import configure_logging, get_logger


@pytest.fixture
def reset_logging():
    yield
    structlog.reset_defaults()
    for handler in list(logging.root.handlers):
        if isinstance(handler, logging.FileHandler):
            handler.close()
            logging.root.removeHandler(handler)


class TestLoggerConfiguration:
    """Test logger configuration and setup."""

    def test_get_logger_returns_bound_logger(self) -> None:
        """Test that get_logger returns a logger that can be used."""
        log = get_logger(__name__)
        assert hasattr(log, "info")
        assert hasattr(log, "warning")
        assert hasattr(log, "error")

    def test_get_logger_configures_on_first_call(self, reset_logging: None) -> None:
        """Test that get_logger configures structlog lazily."""
        structlog.reset_defaults()

        get_logger("test.module1")

        assert structlog.is_configured()

    def test_logger_emits_json_lines_to_file(
        self, tmp_path: pathlib.Path, monkeypatch: pytest.MonkeyPatch, reset_logging: None
    ) -> None:
        """Test that events reach the JSON-lines file with component and level."""
        log_dir = tmp_path / "logs"
        monkeypatch.setenv("ASSISTANT_LOG_DIR", str(log_dir))
        monkeypatch.setenv("ASSISTANT_LOG_LEVEL", "DEBUG")
        structlog.reset_defaults()

        configure_logging()
        log = get_logger("storefront_assistant.orchestrator")
        log.info(TURN_COMPLETED, session_id="s-1", provider="local")
        for handler in logging.root.handlers:
            handler.flush()

        lines = (log_dir / "assistant.jsonl").read_text().strip().splitlines()
        record = json.loads(lines[-1])
        assert record["event"] == TURN_COMPLETED
        assert record["session_id"] == "s-1"
        assert record["level"] == "info"
        assert record["component"] == "orchestrator"
        assert "timestamp" in record

    def test_no_file_handler_without_log_dir(
        self, monkeypatch: pytest.MonkeyPatch, reset_logging: None
    ) -> None:
        """Test only the console handler is installed by default."""
        monkeypatch.delenv("ASSISTANT_LOG_DIR", raising=False)

        configure_logging()

        assert len(logging.root.handlers) == 1
        assert not isinstance(logging.root.handlers[0], logging.FileHandler)

    def test_invalid_level_falls_back(
        self, monkeypatch: pytest.MonkeyPatch, reset_logging: None
    ) -> None:
        """Test an invalid ASSISTANT_LOG_LEVEL falls back to INFO on the console."""
        monkeypatch.setenv("ASSISTANT_LOG_LEVEL", "chatty")
        monkeypatch.delenv("ASSISTANT_LOG_DIR", raising=False)

        configure_logging()

        assert logging.root.handlers[0].level == logging.INFO
