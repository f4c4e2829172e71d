"""Logging setup for the production ERP.

Modules log through ``logging.getLogger(__name__)``; this module only installs
a handler on the ``production_erp`` logger hierarchy, either as plain text or
as one JSON object per line.
"""

from __future__ import annotations

import json
import logging
import sys
import threading
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, TextIO

LOGGER_NAME = "production_erp"

_STDLIB_KEYS = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None)).keys()
) | {"message", "taskName"}

PLAIN_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"


class _JSONEncoder(json.JSONEncoder):
    def default(self, obj: Any) -> Any:
        if isinstance(obj, datetime):
            return obj.isoformat()
        if isinstance(obj, Enum):
            return obj.value
        return super().default(obj)


class StructuredFormatter(logging.Formatter):
    """Formats each record as a single JSON line including ``extra`` fields."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in vars(record).items():
            if key not in _STDLIB_KEYS and key not in payload:
                payload[key] = value
        if record.exc_info and record.exc_info[1] is not None:
            exc = record.exc_info[1]
            payload["exc_type"] = type(exc).__name__
            payload["exc_message"] = str(exc)
            if hasattr(exc, "code"):
                payload["exc_code"] = exc.code
            payload["traceback"] = self.formatException(record.exc_info)
        return json.dumps(payload, cls=_JSONEncoder, default=str)


_configured = False
_lock = threading.Lock()


def configure_logging(
    level: str | int = logging.INFO,
    *,
    json_output: bool = False,
    stream: Optional[TextIO] = None,
    handler: Optional[logging.Handler] = None,
) -> logging.Logger:
    """Install one handler on the package logger. Repeated calls only update the level."""
    global _configured
    logger = logging.getLogger(LOGGER_NAME)
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
    logger.setLevel(level)
    with _lock:
        if _configured:
            return logger
        _configured = True

    target = handler or logging.StreamHandler(stream or sys.stderr)
    if json_output:
        target.setFormatter(StructuredFormatter())
    else:
        target.setFormatter(logging.Formatter(PLAIN_FORMAT))
    logger.addHandler(target)
    logger.propagate = False
    return logger


def reset_logging() -> None:
    """Remove installed handlers. Used by tests."""
    global _configured
    with _lock:
        _configured = False
    logger = logging.getLogger(LOGGER_NAME)
    logger.handlers.clear()
    logger.setLevel(logging.NOTSET)
    logger.propagate = True


__all__ = [
    "LOGGER_NAME",
    "StructuredFormatter",
    "configure_logging",
    "reset_logging",
]
