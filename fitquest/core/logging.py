"""
Structured logging with operation ID support.

Features:
- JSON logs in production, pretty logs in development.
- Context-bound operation_id for correlating one engine call
  (session recording, join, leave) across services.
- log_event helper for consistent structured logs with safe truncation.
"""

import json
import logging
import os
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Dict, Iterator, Optional
from uuid import uuid4

operation_id_ctx_var: ContextVar[Optional[str]] = ContextVar("operation_id", default=None)

_STRUCTURED_FIELDS = ("user_id", "challenge_id", "badge_id", "event_type", "error_code")


def get_operation_id(default: Optional[str] = None) -> Optional[str]:
    """Fetch the current operation_id from context (if any)."""
    oid = operation_id_ctx_var.get()
    return oid if oid is not None else default


@contextmanager
def bind_operation_id(operation_id: Optional[str] = None) -> Iterator[str]:
    """Bind an operation_id for the duration of the block.

    Nested binds reuse the outer id so one engine call keeps a single id.
    """
    current = operation_id_ctx_var.get()
    if current is not None and operation_id is None:
        yield current
        return
    oid = operation_id or str(uuid4())
    token = operation_id_ctx_var.set(oid)
    try:
        yield oid
    finally:
        operation_id_ctx_var.reset(token)


def _format_timestamp(record: logging.LogRecord) -> str:
    return datetime.fromtimestamp(record.created, timezone.utc).isoformat().replace('+00:00', 'Z')


class OperationIdFilter(logging.Filter):
    """Inject operation_id into log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "operation_id", None) is None:
            record.operation_id = get_operation_id()
        return True


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": _format_timestamp(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "operation_id": getattr(record, "operation_id", None),
        }
        for key in _STRUCTURED_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                payload[key] = value
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class PrettyFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        oid = getattr(record, "operation_id", None)
        oid_part = f" [op={oid}]" if oid else ""
        ts = _format_timestamp(record)
        line = f"{ts} {record.levelname} [fitquest]{oid_part} {record.getMessage()}"
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def configure_logging(env: str = "development", level: str = "INFO") -> None:
    """Configure structured logging based on environment."""
    logger = logging.getLogger("fitquest")
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    formatter: logging.Formatter
    if env.lower() == "production":
        formatter = JsonFormatter()
    else:
        formatter = PrettyFormatter()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    handler.addFilter(OperationIdFilter())

    logger.handlers = [handler]
    logger.propagate = True


def _safe_truncate(value, limit: int = 500):
    try:
        text = str(value)
    except Exception:
        return "<unserializable>"
    if len(text) <= limit:
        return text
    return text[:limit] + "...<truncated>"


def log_event(
    level: str,
    msg: str,
    *,
    user_id: Optional[str] = None,
    challenge_id: Optional[str] = None,
    badge_id: Optional[str] = None,
    event_type: Optional[str] = None,
    error_code: Optional[str] = None,
    extra: Optional[Dict[str, object]] = None,
    exc_info: bool = False,
):
    """Structured logging helper with safe truncation and operation correlation."""

    logger = logging.getLogger("fitquest")
    if not logger.handlers:
        # Ensure logging configured in edge cases (tests, scripts)
        configure_logging(os.getenv("ENV", "development"))

    payload = {
        "operation_id": get_operation_id(),
        "user_id": user_id,
        "challenge_id": challenge_id,
        "badge_id": badge_id,
    }
    if event_type:
        payload["event_type"] = event_type
    if error_code:
        payload["error_code"] = error_code
    if extra:
        for k, v in extra.items():
            payload[k] = _safe_truncate(v)

    log_fn = getattr(logger, level, logger.info)
    log_fn(msg, extra=payload, exc_info=exc_info)
