"""JSON-line logging for the auth service.

Each line carries the correlation id of the request being served. Only the
``extra`` fields listed in ``AUTH_LOG_FIELDS`` are written out, so a code,
password or token passed as ``extra`` by mistake is dropped.
"""

from __future__ import annotations

import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any

CORRELATION_ID_CTX: ContextVar[str] = ContextVar("correlation_id", default="")

AUTH_LOG_FIELDS = (
    "path",
    "method",
    "status_code",
    "error_code",
    "user_id",
    "rate_limit_key",
    "retry_after",
)


class JsonLogFormatter(logging.Formatter):
    def __init__(self, service: str = "portal-auth") -> None:
        super().__init__()
        self._service = service

    def format(self, record: logging.LogRecord) -> str:
        event: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "service": self._service,
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        correlation_id = CORRELATION_ID_CTX.get()
        if correlation_id:
            event["correlation_id"] = correlation_id

        event.update(
            (name, getattr(record, name))
            for name in AUTH_LOG_FIELDS
            if getattr(record, name, None) not in (None, "")
        )
        if record.exc_info:
            event["exception"] = self.formatException(record.exc_info)
        return json.dumps(event, ensure_ascii=False, default=str)


def setup_logging(level: str = "INFO", *, service: str = "portal-auth") -> None:
    """Send every logger's records to stdout as JSON lines."""
    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setFormatter(JsonLogFormatter(service))

    root_logger = logging.getLogger()
    root_logger.handlers[:] = [handler]
    root_logger.setLevel(logging.getLevelNamesMapping().get(level.upper(), logging.INFO))


def set_correlation_id(correlation_id: str) -> None:
    CORRELATION_ID_CTX.set(correlation_id)
