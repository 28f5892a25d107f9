"""Structured JSON logging with attributes carried in the current context."""

from __future__ import annotations

import json
import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime
from typing import IO, Any

_FIELDS: ContextVar[tuple[tuple[str, Any], ...]] = ContextVar(
    "pollingapp_log_fields", default=()
)

_LEVEL_NAMES = {
    logging.DEBUG: "DEBUG",
    logging.INFO: "INFO",
    logging.WARNING: "WARN",
    logging.ERROR: "ERROR",
}


def current_context() -> dict[str, Any]:
    """Return the attributes bound to the current context."""
    return dict(_FIELDS.get())


@contextmanager
def bound_context(**kwargs: Any) -> Iterator[dict[str, Any]]:
    """Add attributes to the context for the duration of the block."""
    token = _FIELDS.set(_FIELDS.get() + tuple(kwargs.items()))
    try:
        yield current_context()
    finally:
        _FIELDS.reset(token)


class ContextFilter(logging.Filter):
    """Attaches the context's attributes to each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.context_attrs = current_context()
        return True


class JsonFormatter(logging.Formatter):
    """Formats a record as one JSON object per line.

    Attributes passed as ``extra={"attrs": {...}}`` come first, then those
    bound to the context.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "time": datetime.fromtimestamp(record.created).astimezone().isoformat(),
            "level": _LEVEL_NAMES.get(record.levelno, record.levelname),
            "msg": record.getMessage(),
        }
        entry.update(getattr(record, "attrs", None) or {})
        entry.update(getattr(record, "context_attrs", None) or {})
        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def new_logger(level: int | str = logging.INFO, stream: IO[str] | None = None) -> logging.Logger:
    """Create a logger that writes JSON lines to stream (stdout by default)."""
    logger = logging.Logger("pollingapp", level)
    handler = logging.StreamHandler(stream if stream is not None else sys.stdout)
    handler.setFormatter(JsonFormatter())
    handler.addFilter(ContextFilter())
    logger.addHandler(handler)
    logger.propagate = False
    return logger