"""Tests for logging setup."""

import json
import logging

import pytest

from upstream_devnet.observability import get_logger, setup_logging


@pytest.fixture
def restore_logging():
    yield
    setup_logging("INFO")


class TestLogging:
    """Test structured logging."""

    def test_structured_logging_setup(self):
        """Test that loggers accept key-value context."""
        logger = get_logger("test.logger")

        # Should not raise any exceptions
        logger.info("Test log message", peer=1, command="rad")

    def test_log_file(self, tmp_path, restore_logging):
        """Test that records are written to the log directory as JSON."""
        setup_logging("DEBUG", log_dir=tmp_path / "logs")

        get_logger("upstream_devnet.test").info("Peer running", peer=7)

        lines = (tmp_path / "logs" / "devnet.log").read_text().splitlines()
        record = json.loads(lines[-1])
        assert record["event"] == "Peer running"
        assert record["peer"] == 7
        assert record["level"] == "info"
        assert record["logger"] == "upstream_devnet.test"
        assert "timestamp" in record

    def test_level_filtering(self, tmp_path, restore_logging):
        """Test that records below the configured level are dropped."""
        setup_logging("warning", log_dir=tmp_path)

        logger = get_logger("upstream_devnet.test")
        logger.info("hidden")
        logger.warning("shown")

        assert logging.getLogger().level == logging.WARNING
        events = [json.loads(line)["event"] for line in (tmp_path / "devnet.log").read_text().splitlines()]
        assert events == ["shown"]
