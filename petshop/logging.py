"""Structured JSON logging for the order core.

Services log dict events (``logger.info({"event": "order_placed", ...})``).
Every record is stamped with the request id, the active OpenTelemetry span and
whatever was bound with :func:`bind_log_context`, then masked and rendered as
one JSON object per line.
"""
import json
import logging
import os
from contextlib import contextmanager
from contextvars import ContextVar
from decimal import Decimal
from typing import Any, Dict, Tuple

from flask import g, has_app_context
from opentelemetry.trace import get_current_span

REDACTED = "[REDACTED]"
UNSET = "n/a"

SENSITIVE_KEYS = {"password", "token", "email", "to", "phone"}
SENSITIVE_SUFFIXES = ("_email", "_address", "_password", "_token")

_bound: ContextVar[Dict[str, Any]] = ContextVar("petshop_log_context", default={})


@contextmanager
def bind_log_context(**fields):
    """Attach ``fields`` to every record logged inside the block."""
    token = _bound.set({**_bound.get(), **fields})
    try:
        yield
    finally:
        _bound.reset(token)


def current_request_id() -> str:
    if not has_app_context():
        return UNSET
    return getattr(g, "request_id", None) or UNSET


def current_trace_ids() -> Tuple[str, str]:
    ctx = get_current_span().get_span_context()
    if not ctx.is_valid:
        return UNSET, UNSET
    return format(ctx.trace_id, "032x"), format(ctx.span_id, "016x")


class ContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = current_request_id()
        record.trace_id, record.span_id = current_trace_ids()
        record.context = dict(_bound.get())
        return True


def is_sensitive(key) -> bool:
    key = str(key).lower()
    return key in SENSITIVE_KEYS or key.endswith(SENSITIVE_SUFFIXES)


def mask(value):
    if isinstance(value, dict):
        return {k: (REDACTED if is_sensitive(k) else mask(v)) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [mask(v) for v in value]
    return value


class MaskingFilter(logging.Filter):
    """Redacts customer data. DEBUG records stay readable outside production."""

    def filter(self, record: logging.LogRecord) -> bool:
        env = os.getenv("APP_ENV", "development").lower()
        if record.levelno == logging.DEBUG and env != "production":
            return True
        if isinstance(record.msg, dict):
            record.msg = mask(record.msg)
        if isinstance(record.args, dict):
            record.args = mask(record.args)
        if getattr(record, "context", None):
            record.context = mask(record.context)
        return True


def _json_default(value):
    if isinstance(value, Decimal):
        return str(value)
    return repr(value)


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        payload = {
            "time": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "request_id": getattr(record, "request_id", UNSET),
            "trace_id": getattr(record, "trace_id", UNSET),
            "span_id": getattr(record, "span_id", UNSET),
        }
        payload.update(getattr(record, "context", None) or {})
        if isinstance(record.msg, dict):
            payload.update(record.msg)
        else:
            payload["message"] = record.getMessage()
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=_json_default)


def build_handler() -> logging.Handler:
    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter(datefmt="%Y-%m-%dT%H:%M:%S%z"))
    handler.addFilter(ContextFilter())
    handler.addFilter(MaskingFilter())
    return handler


def configure_logging(app) -> None:
    level_name = os.getenv("LOG_LEVEL")
    if level_name:
        level = getattr(logging, level_name.upper(), logging.INFO)
    else:
        level = logging.DEBUG if app.config.get("DEBUG") else logging.INFO

    handler = build_handler()
    app.logger.handlers.clear()
    app.logger.addHandler(handler)
    app.logger.setLevel(level)

    # Service modules log through module loggers that propagate to root.
    root = logging.getLogger()
    if not any(isinstance(h.formatter, JsonFormatter) for h in root.handlers):
        root.addHandler(handler)
    root.setLevel(level)
