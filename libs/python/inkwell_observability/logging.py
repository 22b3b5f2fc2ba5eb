"""JSON logging shared by the orchestrator, worker and commerce processes."""

from __future__ import annotations

import json
import logging
import logging.config
import os
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Iterator
from uuid import UUID

_LOG_CONTEXT: ContextVar[Dict[str, Any]] = ContextVar("inkwell_log_context", default={})

# Attributes every LogRecord carries; anything else arrived through ``extra``.
_RECORD_ATTRIBUTES = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime", "taskName"}

# Webhook signatures, vendor tokens and provider keys never reach the log stream.
_SECRET_MARKERS = ("secret", "token", "signature", "api_key", "password", "authorization")
REDACTED = "[redacted]"

_TRUTHY = {"1", "true", "t", "yes", "y"}


class ContextFilter(logging.Filter):
    """Copy the fields bound by :func:`log_context` onto every record."""

    def __init__(self, service_name: str) -> None:
        super().__init__()
        self.service_name = service_name

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in _LOG_CONTEXT.get().items():
            # Explicit ``extra`` values win over the ambient context.
            if not hasattr(record, key):
                setattr(record, key, value)
        if getattr(record, "service", None) is None:
            record.service = self.service_name
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per line: timestamp, level, logger, message, then extras."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(
                timespec="milliseconds"
            ),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in record.__dict__.items():
            if key in _RECORD_ATTRIBUTES or key.startswith("_") or value is None:
                continue
            if _is_secret(key):
                payload[key] = REDACTED
                continue
            value = _coerce(value)
            if _is_json_safe(value):
                payload[key] = value
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        if record.stack_info:
            payload["stack"] = self.formatStack(record.stack_info)
        return json.dumps(payload, ensure_ascii=True)


def _is_secret(key: str) -> bool:
    lowered = key.lower()
    return any(marker in lowered for marker in _SECRET_MARKERS)


def _coerce(value: Any) -> Any:
    # Identifiers, money and enum members are logged in their string form.
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (UUID, Decimal)):
        return str(value)
    if isinstance(value, dict):
        return {str(k): REDACTED if _is_secret(str(k)) else _coerce(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_coerce(item) for item in value]
    return value


def _is_json_safe(value: Any) -> bool:
    try:
        json.dumps(value)
    except (TypeError, ValueError):
        return False
    return True


def setup_logging(
    service_name: str,
    level: str | int | None = None,
    *,
    capture_warnings: bool | None = None,
) -> None:
    """Configure JSON logging on stdout for the current process.

    ``level`` falls back to ``INKWELL_LOG_LEVEL`` (default ``INFO``) and
    ``capture_warnings`` to ``INKWELL_CAPTURE_WARNINGS``. Calling it again
    replaces the handlers.
    """

    level = level or os.getenv("INKWELL_LOG_LEVEL", "INFO")
    handlers = ["default"]
    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {"json": {"()": "inkwell_observability.logging.JsonFormatter"}},
            "filters": {
                "context": {
                    "()": "inkwell_observability.logging.ContextFilter",
                    "service_name": service_name,
                }
            },
            "handlers": {
                "default": {
                    "class": "logging.StreamHandler",
                    "stream": sys.stdout,
                    "formatter": "json",
                    "filters": ["context"],
                }
            },
            "root": {"level": level, "handlers": handlers},
            "loggers": {
                "uvicorn": {"handlers": handlers, "level": level, "propagate": False},
                "uvicorn.access": {"handlers": handlers, "level": level, "propagate": False},
                # Request lines from the vendor and payment clients are noise at INFO.
                "httpx": {"handlers": handlers, "level": "WARNING", "propagate": False},
                "stripe": {"handlers": handlers, "level": "WARNING", "propagate": False},
                "prefect": {"handlers": handlers, "level": level, "propagate": False},
            },
        }
    )

    if capture_warnings is None:
        capture_warnings = os.getenv("INKWELL_CAPTURE_WARNINGS", "").strip().lower() in _TRUTHY
    logging.captureWarnings(capture_warnings)


@contextmanager
def log_context(**kwargs: Any) -> Iterator[None]:
    """Bind fields such as ``project_id`` or ``order_id`` to every log line in the block.

    Passing ``None`` for a key unbinds it for the duration of the block.
    """

    updated = dict(_LOG_CONTEXT.get())
    for key, value in kwargs.items():
        if value is None:
            updated.pop(key, None)
        else:
            updated[key] = value
    token = _LOG_CONTEXT.set(updated)
    try:
        yield
    finally:
        _LOG_CONTEXT.reset(token)
