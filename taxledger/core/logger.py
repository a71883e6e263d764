from __future__ import annotations

import json
import logging
import sys
from typing import Any

from taxledger.core.config import settings

# Attributes every LogRecord carries; anything else was passed via ``extra=``.
_RESERVED_ATTRS = set(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}

# Chatty third-party loggers, held at WARNING unless we run at DEBUG
_QUIET_LOGGERS = ("sqlalchemy.engine", "celery.worker.strategy", "kombu")

PLAIN_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


class JsonFormatter(logging.Formatter):
    """One JSON object per line, with ``extra=`` fields nested under ``extra``."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "app": settings.APP_NAME,
            "env": settings.ENV,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        extra = {
            key: value
            for key, value in vars(record).items()
            if not key.startswith("_") and key not in _RESERVED_ATTRS and key not in payload
        }
        if extra:
            payload["extra"] = extra
        return json.dumps(payload, default=str)


def init_logging(level: int | None = None) -> None:
    """Install a stdout handler on the root logger (once per process)."""
    root = logging.getLogger()
    if root.handlers:
        return
    effective_level = level or getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    if settings.LOG_FORMAT == "json":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(PLAIN_FORMAT))
    root.setLevel(effective_level)
    root.addHandler(handler)

    if effective_level > logging.DEBUG:
        for name in _QUIET_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)
