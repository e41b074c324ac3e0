"""
Unit tests for logging configuration module.

Tests the structured and human-readable formatters, root logger setup and
context logging.
"""

import json
import logging
from decimal import Decimal

import pytest

from pool_analytics.core.logging_config import (
    HumanReadableFormatter,
    StructuredFormatter,
    configure_logging,
    get_logger,
    log_with_context,
    setup_logging,
)


class LogCapture(logging.Handler):
    """Handler that keeps records in memory."""

    def __init__(self):
        super().__init__()
        self.records: list[logging.LogRecord] = []

    def emit(self, record: logging.LogRecord):
        self.records.append(record)


@pytest.fixture
def restore_root_logger():
    """Restore root handlers and level after a test reconfigures logging."""
    root = logging.getLogger()
    handlers = root.handlers[:]
    level = root.level
    yield root
    for handler in root.handlers[:]:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


def make_record(msg="Pool analyzed", level=logging.INFO, exc_info=None):
    return logging.LogRecord(
        name="pool_analytics.test",
        level=level,
        pathname="test.py",
        lineno=42,
        msg=msg,
        args=(),
        exc_info=exc_info,
    )


class TestStructuredFormatter:
    """Tests for StructuredFormatter."""

    def test_basic_format(self):
        log_data = json.loads(StructuredFormatter().format(make_record()))

        assert log_data["level"] == "INFO"
        assert log_data["logger"] == "pool_analytics.test"
        assert log_data["message"] == "Pool analyzed"
        assert log_data["line"] == 42
        assert log_data["timestamp"].endswith("+00:00")

    def test_extra_fields_and_decimals(self):
        """Test that extra fields are merged and Decimals rendered as strings."""
        record = make_record()
        record.pool_id = "pool-1"
        record.z_score = Decimal("4.69")

        log_data = json.loads(StructuredFormatter().format(record))

        assert log_data["pool_id"] == "pool-1"
        assert log_data["z_score"] == "4.69"

    def test_format_with_exception(self):
        try:
            raise ValueError("window overflow")
        except ValueError:
            import sys

            record = make_record(level=logging.ERROR, exc_info=sys.exc_info())

        log_data = json.loads(StructuredFormatter().format(record))

        assert "ValueError: window overflow" in log_data["exception"]


class TestHumanReadableFormatter:
    """Tests for HumanReadableFormatter."""

    def test_basic_format(self):
        result = HumanReadableFormatter(use_colors=False).format(make_record())

        assert "INFO" in result
        assert "pool_analytics.test" in result
        assert "Pool analyzed" in result

    def test_extra_fields_appended(self):
        record = make_record()
        record.pool_id = "pool-1"
        record.phase = "features"

        result = HumanReadableFormatter(use_colors=False).format(record)

        assert "pool_id=pool-1" in result
        assert "phase=features" in result

    def test_colors(self):
        formatter = HumanReadableFormatter(use_colors=True)
        formatter.use_colors = True

        result = formatter.format(make_record(level=logging.ERROR))

        assert "\033[31m" in result


class TestSetupLogging:
    """Tests for setup_logging() and configure_logging()."""

    def test_invalid_level(self, restore_root_logger):
        with pytest.raises(ValueError, match="Invalid log level"):
            setup_logging(log_level="LOUD")

    def test_console_handler(self, restore_root_logger):
        setup_logging(log_level="DEBUG")

        assert restore_root_logger.level == logging.DEBUG
        assert len(restore_root_logger.handlers) == 1
        assert isinstance(restore_root_logger.handlers[0].formatter, HumanReadableFormatter)

    def test_json_file_output(self, restore_root_logger, tmp_path):
        setup_logging(log_level="INFO", log_file="analytics.log", log_dir=str(tmp_path), json_format=True, console_output=False)

        get_logger("pool_analytics.test").warning("Observation rejected", extra={"pool_id": "pool-9"})
        for handler in restore_root_logger.handlers:
            handler.flush()

        lines = (tmp_path / "analytics.log").read_text().strip().splitlines()
        entry = json.loads(lines[-1])
        assert entry["message"] == "Observation rejected"
        assert entry["pool_id"] == "pool-9"

    def test_configure_from_settings(self, restore_root_logger, settings):
        configure_logging(settings)
        assert restore_root_logger.level == logging.INFO


def test_log_with_context():
    logger = get_logger("pool_analytics.context_test")
    capture = LogCapture()
    logger.addHandler(capture)
    logger.setLevel(logging.DEBUG)
    try:
        log_with_context(logger, "warning", "Phase timeout", pool_id="pool-1", phase="features")
    finally:
        logger.removeHandler(capture)

    record = capture.records[0]
    assert record.levelname == "WARNING"
    assert record.pool_id == "pool-1"
    assert record.phase == "features"
