"""Centralized logging configuration.

This module provides:
- PlainFormatter for human-readable stderr output
- JSONFormatter for structured one-line-per-record output
- setup_logging() to configure the root logger once at startup

Log messages use a leading tag, e.g. "[TOKEN] Access token issued";
the JSON formatter lifts that tag into its own field.
"""

import json
import logging
import re
import sys
from datetime import datetime, timezone

TAG_PATTERN = re.compile(r'\[([A-Z_]+)\]\s*(.*)', re.DOTALL)


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def __init__(self, service: str = None):
        super().__init__()
        self.service = service or "oauth-bridge"

    def format(self, record: logging.LogRecord) -> str:
        # Extract tag from message if present: [TAG] message
        tag = None
        message = record.getMessage()
        tag_match = TAG_PATTERN.match(message)
        if tag_match:
            tag = tag_match.group(1)
            message = tag_match.group(2)

        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "service": self.service,
            "level": record.levelname,
            "tag": tag,
            "message": message,
            "logger": record.name,
            "extra": {
                "function": record.funcName,
                "line": record.lineno,
            }
        }

        # Add exception info if present
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


def setup_logging(level: str = "INFO", log_format: str = "plain") -> logging.Logger:
    """Configure the root logger.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ...).
        log_format: "plain" for readable text, "json" for structured lines.

    Returns:
        Configured root logger.
    """
    log_level = getattr(logging, str(level).upper(), logging.INFO)

    # Get root logger and clear existing handlers
    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()

    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setLevel(log_level)
    if log_format == "json":
        stderr_handler.setFormatter(JSONFormatter())
    else:
        stderr_handler.setFormatter(PlainFormatter())
    root_logger.addHandler(stderr_handler)

    # Suppress noisy HTTP client logs
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    logger = logging.getLogger(__name__)
    logger.info(f"[STARTUP] Logging configured: level={logging.getLevelName(log_level)}, format={log_format}")

    return root_logger
