"""
JSON logging for the resilience layer.

Every record under the ``chat_resilience`` logger tree becomes one JSON
line. Queue and persistence events carry their identifiers as top-level
fields so a host app can follow one message from enqueue to delivery:

    {"timestamp": "...", "level": "INFO", "component": "sync.queue",
     "message": "Message delivered", "item_id": "c1_m1_1714521600000",
     "conversation_id": "c1"}
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, TextIO

ROOT_LOGGER = "chat_resilience"

# Identifiers promoted to top-level fields when a record carries them.
CONTEXT_FIELDS = ("conversation_id", "item_id", "message_id", "retry_count", "snapshot_key")

_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {
    "message",
    "asctime",
}


class ResilienceJsonFormatter(logging.Formatter):
    """
    Formats records as single-line JSON.

    Fields:
    - timestamp: record creation time, ISO 8601 UTC
    - level, component (logger name relative to ``chat_resilience``), message
    - any of CONTEXT_FIELDS present on the record
    - other ``extra`` values nested under "extra"
    - error: exception type, message and traceback when exc_info is set
    """

    def format(self, record: logging.LogRecord) -> str:
        log_obj: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "component": _component(record.name),
            "message": record.getMessage(),
        }

        for name in CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                log_obj[name] = value

        extra = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _RECORD_ATTRS and key not in CONTEXT_FIELDS and not key.startswith("_")
        }
        if extra:
            log_obj["extra"] = extra

        if record.exc_info and record.exc_info[1] is not None:
            exc = record.exc_info[1]
            log_obj["error"] = {
                "type": type(exc).__name__,
                "message": str(exc),
                "traceback": self.formatException(record.exc_info),
            }

        return json.dumps(log_obj, default=str)


def _component(logger_name: str) -> str:
    if logger_name == ROOT_LOGGER:
        return "root"
    return logger_name.removeprefix(f"{ROOT_LOGGER}.")


def configure_logging(level: int | str = logging.INFO, stream: TextIO | None = None) -> logging.Logger:
    """
    Send ``chat_resilience`` logs to ``stream`` as JSON lines.

    Calling it again replaces the handler installed by the previous call;
    handlers added by the host app are left alone.

    Args:
        level: Logging level, as a number or a name like "DEBUG"
        stream: Destination (default: stdout)

    Returns:
        The package logger
    """
    logger = logging.getLogger(ROOT_LOGGER)

    for handler in list(logger.handlers):
        if getattr(handler, "_resilience_handler", False):
            logger.removeHandler(handler)

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(ResilienceJsonFormatter())
    handler._resilience_handler = True  # type: ignore[attr-defined]

    logger.addHandler(handler)
    logger.setLevel(level.upper() if isinstance(level, str) else level)
    return logger


def get_resilience_logger(name: str) -> logging.Logger:
    """Logger named ``chat_resilience.{name}``."""
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")
