import contextvars
import logging
import os
import sys
import uuid
from datetime import datetime
from pathlib import Path

_correlation_id: contextvars.ContextVar[str] = contextvars.ContextVar("correlation_id", default="-")


def set_correlation_id(value: str | None = None) -> str:
    """Tag log lines from the current request/thread with an id; returns it"""
    cid = value or uuid.uuid4().hex[:8]
    _correlation_id.set(cid)
    return cid


class _CorrelationFilter(logging.Filter):
    def filter(self, record):
        record.correlation_id = _correlation_id.get()
        return True


class StructuredLogger:
    """Simple wrapper to support key-value logging"""

    def __init__(self, logger):
        self._logger = logger

    def _format_msg(self, msg, **kwargs):
        if kwargs:
            kv_str = " ".join(f"{k}={v}" for k, v in kwargs.items())
            return f"{msg} {kv_str}"
        return msg

    def debug(self, msg, **kwargs):
        self._logger.debug(self._format_msg(msg, **kwargs))

    def info(self, msg, **kwargs):
        self._logger.info(self._format_msg(msg, **kwargs))

    def warning(self, msg, **kwargs):
        self._logger.warning(self._format_msg(msg, **kwargs))

    def error(self, msg, **kwargs):
        self._logger.error(self._format_msg(msg, **kwargs))

    def exception(self, msg, **kwargs):
        self._logger.exception(self._format_msg(msg, **kwargs))


def setup_logger(level: str = "INFO", log_file: bool = True):
    """
    Setup logging with console and optional file output

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        log_file: Whether to also log to file

    Returns:
        Configured logger instance
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    base_logger = logging.getLogger("scan_alerts")
    base_logger.setLevel(numeric_level)
    base_logger.handlers = []  # Clear existing handlers
    base_logger.addFilter(_CorrelationFilter())

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(numeric_level)
    console_fmt = logging.Formatter(
        "%(asctime)s [%(levelname)s] [%(correlation_id)s] %(message)s",
        datefmt="%H:%M:%S"
    )
    console_handler.setFormatter(console_fmt)
    base_logger.addHandler(console_handler)

    if log_file:
        log_dir = Path("logs")
        log_dir.mkdir(exist_ok=True)

        log_path = log_dir / f"gateway_{datetime.now():%Y%m%d}.log"
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)  # File gets all logs
        file_fmt = logging.Formatter(
            "%(asctime)s [%(levelname)s] %(name)s [%(correlation_id)s] - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        )
        file_handler.setFormatter(file_fmt)
        base_logger.addHandler(file_handler)

        base_logger.debug(f"Logging to file: {log_path}")

    return StructuredLogger(base_logger)


# Get log level from environment variable (default: INFO)
_log_level = os.environ.get("LOG_LEVEL", "INFO").upper()
_log_to_file = os.environ.get("LOG_TO_FILE", "1").lower() not in ("0", "false", "no")
logger = setup_logger(level=_log_level, log_file=_log_to_file)


def set_log_level(level: str):
    """Apply the configured level to the logger and its console handler"""
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    base_logger = logging.getLogger("scan_alerts")
    base_logger.setLevel(numeric_level)
    for handler in base_logger.handlers:
        if not isinstance(handler, logging.FileHandler):
            handler.setLevel(numeric_level)
