"""Centralized logging configuration.

This module provides:
- JSONFormatter for structured, one-object-per-line log files
- PlainFormatter for stderr output
- setup_logging() wiring both onto the root logger
"""

import json
import logging
import re
import sys
from logging.handlers import RotatingFileHandler
from typing import Optional

LOG_FILE_MAX_BYTES = 5 * 1024 * 1024
LOG_FILE_BACKUPS = 5

_TAG_PATTERN = re.compile(r'\[([A-Z_]+)\]\s*(.*)', re.DOTALL)


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def __init__(self, service_name: str = None):
        super().__init__()
        self.service_name = service_name or "rzmx-mcp-server"

    def format(self, record: logging.LogRecord) -> str:
        # Extract tag from message if present: [TAG] message
        tag = None
        message = record.getMessage()
        tag_match = _TAG_PATTERN.match(message)
        if tag_match:
            tag = tag_match.group(1)
            message = tag_match.group(2)

        log_entry = {
            "timestamp": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "service": self.service_name,
            "level": record.levelname,
            "tag": tag,
            "message": message,
            "logger": record.name,
            "extra": {
                "function": record.funcName,
                "line": record.lineno,
            }
        }

        if record.exc_info:
            log_entry["extra"]["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


class PlainFormatter(logging.Formatter):
    """Plain text formatter for stderr output (local debugging)."""

    def __init__(self):
        super().__init__(
            fmt='%(asctime)s [%(levelname)s] %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )


def _handler(handler: logging.Handler, level: int, formatter: logging.Formatter) -> logging.Handler:
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def setup_logging(level: str = "INFO", log_file: Optional[str] = None) -> logging.Logger:
    """Configure the root logger.

    Stderr always gets plain text. When `log_file` is set, a rotating file
    additionally receives one JSON object per record; if the file cannot be
    opened the server keeps running with stderr only.

    Args:
        level: Log level name (INFO, DEBUG, ...).
        log_file: Optional path for the JSON log file.

    Returns:
        Configured root logger.
    """
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    root_logger.handlers.clear()
    root_logger.addHandler(_handler(logging.StreamHandler(sys.stderr), numeric_level, PlainFormatter()))

    json_target = None
    if log_file:
        try:
            rotating = RotatingFileHandler(log_file, maxBytes=LOG_FILE_MAX_BYTES, backupCount=LOG_FILE_BACKUPS)
        except OSError as e:
            print(f"[WARNING] Cannot open log file {log_file}: {e}", file=sys.stderr)
        else:
            root_logger.addHandler(_handler(rotating, numeric_level, JSONFormatter()))
            json_target = log_file

    # httpx logs every request at INFO
    for noisy in ("httpx", "httpcore"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    logging.getLogger(__name__).info(
        f"[STARTUP] Logging at {logging.getLevelName(numeric_level)}"
        + (f", JSON records to {json_target}" if json_target else ", stderr only")
    )
    return root_logger
