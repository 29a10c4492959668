"""Tests for logging setup."""

import logging

import pytest

from toolgate.config import ToolgateConfig
from toolgate.utils.logging import LogConfig, get_logger, setup_logging


@pytest.fixture
def root_logger():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield root
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


class TestSetupLogging:
    """Tests for configuring logging from the runtime config."""

    def test_log_config_from_runtime_config(self):
        """Test that level and file come from ToolgateConfig."""
        log_config = LogConfig.from_config(ToolgateConfig(log_level="debug", log_file="/tmp/toolgate.log"))

        assert log_config.level == "debug"
        assert log_config.file == "/tmp/toolgate.log"

    def test_writes_to_log_file(self, root_logger, tmp_path):
        """Test that records go to the configured file at the configured level."""
        log_file = tmp_path / "toolgate.log"

        handler = setup_logging(ToolgateConfig(log_level="WARNING", log_file=str(log_file)))
        logger = get_logger("toolgate.test", level="DEBUG")
        logger.info("not written")
        logger.warning("approval denied")
        handler.flush()

        assert root_logger.level == logging.WARNING
        contents = log_file.read_text()
        assert "toolgate.test - WARNING - approval denied" in contents
        assert "not written" not in contents

    def test_env_config_and_quiet_loggers(self, root_logger, monkeypatch):
        """Test the environment defaults and that httpx chatter is pinned to WARNING."""
        monkeypatch.setenv("LOG_LEVEL", "DEBUG")
        monkeypatch.delenv("TOOLGATE_LOG_FILE", raising=False)

        handler = setup_logging()

        assert isinstance(handler, logging.StreamHandler)
        assert root_logger.level == logging.DEBUG
        assert logging.getLogger("httpx").level == logging.WARNING
        assert logging.getLogger("httpcore").level == logging.WARNING
