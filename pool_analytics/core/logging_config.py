"""
Logging Configuration for the Pool Analytics Core

Structured logging on top of the standard library. Library modules only ever
call logging.getLogger(__name__); the embedding application decides where the
records go by calling setup_logging() (or configure_logging() with a Settings
instance) once at startup.

Usage:
    from pool_analytics.core.logging_config import setup_logging, get_logger

    setup_logging(log_level="INFO", log_file="analytics.log", json_format=True)

    logger = get_logger(__name__)
    logger.warning("Observation rejected", extra={"pool_id": "ref-42", "issues": 2})
"""

import json
import logging
import sys
from datetime import UTC, datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from pool_analytics.core.config import Settings

# Attributes every LogRecord carries; anything else came in through extra={}
_RECORD_ATTRS = frozenset(
    {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "message",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "thread",
        "threadName",
        "taskName",
        "exc_info",
        "exc_text",
        "stack_info",
        "getMessage",
        "asctime",
    }
)


def _extra_fields(record: logging.LogRecord) -> dict[str, Any]:
    return {key: value for key, value in record.__dict__.items() if key not in _RECORD_ATTRS}


class StructuredFormatter(logging.Formatter):
    """
    Formatter that renders each record as one JSON object per line.

    Decimal and other non-JSON values in extra fields are rendered with str().
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        log_data.update(_extra_fields(record))
        return json.dumps(log_data, default=str)


class HumanReadableFormatter(logging.Formatter):
    """
    Formatter for console output: timestamp [LEVEL] logger - message | k=v ...
    """

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
        "RESET": "\033[0m",
    }

    def __init__(self, use_colors: bool = True):
        super().__init__()
        self.use_colors = use_colors and sys.stdout.isatty()

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created, UTC).strftime("%Y-%m-%d %H:%M:%S")
        level = record.levelname

        if self.use_colors:
            level_str = f"{self.COLORS.get(level, '')}{level:8s}{self.COLORS['RESET']}"
        else:
            level_str = f"{level:8s}"

        line = f"{timestamp} [{level_str}] {record.name} - {record.getMessage()}"

        extras = _extra_fields(record)
        if extras:
            line += " | " + " ".join(f"{key}={value}" for key, value in extras.items())

        if record.exc_info:
            line += f"\n{self.formatException(record.exc_info)}"

        return line


def setup_logging(
    log_level: str = "INFO",
    log_file: str | None = None,
    log_dir: str | None = None,
    json_format: bool = False,
    console_output: bool = True,
    max_bytes: int = 10 * 1024 * 1024,  # 10MB
    backup_count: int = 5,
) -> None:
    """
    Configure the root logger.

    Args:
        log_level: Minimum log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Path to log file (optional). If log_dir is also provided,
                 log_file is treated as filename only.
        log_dir: Directory for log files (optional)
        json_format: If True, use JSON structured format for file output
        console_output: If True, add console (stdout) handler
        max_bytes: Maximum size of log file before rotation
        backup_count: Number of backup log files to keep

    Raises:
        ValueError: If log_level is invalid
    """
    numeric_level = getattr(logging, log_level.upper(), None)
    if not isinstance(numeric_level, int):
        raise ValueError(f"Invalid log level: {log_level}")

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    root_logger.handlers.clear()

    if console_output:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(numeric_level)
        console_handler.setFormatter(HumanReadableFormatter(use_colors=True))
        root_logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_dir) / log_file if log_dir else Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = RotatingFileHandler(
            str(log_path),
            maxBytes=max_bytes,
            backupCount=backup_count,
        )
        file_handler.setLevel(numeric_level)
        if json_format:
            file_handler.setFormatter(StructuredFormatter())
        else:
            file_handler.setFormatter(HumanReadableFormatter(use_colors=False))
        root_logger.addHandler(file_handler)


def configure_logging(settings: "Settings", log_file: str | None = None) -> None:
    """Apply setup_logging() with the level and format taken from settings."""
    setup_logging(
        log_level=settings.log_level,
        log_file=log_file,
        json_format=settings.json_logs,
    )


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance for the specified name.

    Example:
        logger = get_logger(__name__)
        logger.info("Pool analyzed", extra={"pool_id": "ref-42"})
    """
    return logging.getLogger(name)


def log_with_context(logger: logging.Logger, level: str, message: str, **context: Any) -> None:
    """
    Log a message with structured context passed as keyword arguments.

    Example:
        log_with_context(logger, "warning", "Phase timeout", pool_id="ref-42", phase="features")
    """
    log_method = getattr(logger, level.lower())
    log_method(message, extra=context)
