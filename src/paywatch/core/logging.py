"""
PayWatch logging.

Every module logs through a child of the ``paywatch`` logger. Records can
carry payment context through ``extra`` (``intent_id``, ``address``,
``asset``, ``tx_hash``); the JSON format emits those as top-level fields so
log pipelines can follow one intent from creation to confirmation.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import IO

LOGGER_NAME = "paywatch"

CONTEXT_FIELDS = ("intent_id", "address", "asset", "tx_hash")

TEXT_FORMAT = "[%(asctime)s] %(levelname)s [%(name)s] %(message)s"


class JsonFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for field in CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                entry[field] = str(value)
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry)


def configure_logging(
    level: int | str = logging.INFO,
    json_format: bool = False,
    stream: IO[str] | None = None,
) -> logging.Logger:
    """
    Configure the PayWatch logger.

    Args:
        level: Logging level (e.g., logging.INFO, "DEBUG")
        json_format: Emit one JSON object per line instead of text
        stream: Where to write (default: stdout)

    Returns:
        The configured logger instance.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)

    # Re-configuring replaces the handler instead of stacking another one
    logger.handlers.clear()

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setLevel(level)
    if json_format:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    logger.addHandler(handler)

    # Host applications keep their own root handlers
    logger.propagate = False

    return logger


def get_logger(name: str | None = None) -> logging.Logger:
    if name:
        return logging.getLogger(f"{LOGGER_NAME}.{name}")
    return logging.getLogger(LOGGER_NAME)
