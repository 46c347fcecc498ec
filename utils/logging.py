"""
Logging Utility - Structured Diagnostic Logging

Provides centralized logging configuration for the extractor service.
Supports JSON format (orjson) for log shippers and a human-readable text format.
The diagnostic log file is opened in append mode and owned by whoever calls
setup_logging(); release it with close_handler().

Usage:
    import logging
    from utils.logging import setup_logging

    handler = setup_logging(level="INFO", format_type="text", output="both")
    logger = logging.getLogger(__name__)
    logger.info("Extraction started", extra={"file_name": "20250101_1200.csv"})
"""

import logging
import sys
from datetime import datetime, timezone

import orjson

TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Attributes present on every LogRecord; anything else came in through `extra`
_RESERVED_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__.keys()
) | {"message", "asctime", "taskName"}


class JsonFormatter(logging.Formatter):
    """Render log records as single-line JSON objects."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS and not key.startswith("_"):
                payload[key] = value

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)

        return orjson.dumps(payload, default=str).decode("utf-8")


def setup_logging(
    level: str = "INFO",
    format_type: str = "json",
    output: str = "stdout",
    log_file: str = "diagnostics.log",
) -> logging.FileHandler | None:
    """Configure application-wide logging.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format_type: Log format ('json' or 'text')
        output: Log output ('stdout', 'file' or 'both')
        log_file: Diagnostic log path, appended to when output includes 'file'

    Returns:
        The diagnostic file handler, or None when logging to stdout only
    """
    formatter: logging.Formatter
    if format_type == "json":
        formatter = JsonFormatter()
    else:
        formatter = logging.Formatter(TEXT_FORMAT)

    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    if output in ("stdout", "both"):
        stream_handler = logging.StreamHandler(sys.stdout)
        stream_handler.setFormatter(formatter)
        root.addHandler(stream_handler)

    file_handler = None
    if output in ("file", "both"):
        file_handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    return file_handler


def close_handler(handler: logging.Handler | None) -> None:
    """Detach a handler from the root logger and release its resources."""
    if handler is None:
        return
    logging.getLogger().removeHandler(handler)
    handler.close()
