"""
Tests for logging configuration.
"""

import json
import logging
import logging.handlers

import pytest

from taskchat.config import Settings
from taskchat.logging_config import JsonFormatter, setup_logging


@pytest.fixture
def log_settings(tmp_path) -> Settings:
    return Settings(_env_file=None, log_dir=str(tmp_path), log_level="DEBUG")


@pytest.fixture(autouse=True)
def reset_taskchat_logger():
    yield
    logger = logging.getLogger("taskchat")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.propagate = True


class TestSetupLogging:
    """Tests for setup_logging."""

    def test_writes_context_log_file(self, log_settings, tmp_path):
        logger = setup_logging(context="cli", config=log_settings)
        logging.getLogger("taskchat.messaging").info("hello from the engine")

        for handler in logger.handlers:
            handler.flush()

        content = (tmp_path / "cli.log").read_text()
        assert "hello from the engine" in content
        assert "[taskchat.messaging]" in content

    def test_is_idempotent(self, log_settings):
        first = setup_logging(config=log_settings)
        count = len(first.handlers)

        second = setup_logging(config=log_settings)

        assert second is first
        assert len(second.handlers) == count

    def test_console_only(self, tmp_path):
        config = Settings(_env_file=None, log_dir=str(tmp_path), log_file_enabled=False)

        logger = setup_logging(config=config)

        assert not any(
            isinstance(h, logging.handlers.RotatingFileHandler) for h in logger.handlers
        )
        assert list(tmp_path.iterdir()) == []

    def test_level_override(self, log_settings):
        logger = setup_logging(level="warning", config=log_settings)
        assert logger.level == logging.WARNING

    def test_does_not_propagate(self, log_settings):
        logger = setup_logging(config=log_settings)
        assert logger.propagate is False


class TestJsonFormatter:
    """Tests for JsonFormatter."""

    def test_formats_record_as_json(self):
        record = logging.LogRecord(
            name="taskchat.sync",
            level=logging.WARNING,
            pathname=__file__,
            lineno=1,
            msg="Discarding %s",
            args=("event",),
            exc_info=None,
        )

        data = json.loads(JsonFormatter().format(record))

        assert data["level"] == "WARNING"
        assert data["logger"] == "taskchat.sync"
        assert data["message"] == "Discarding event"
        assert "timestamp" in data
