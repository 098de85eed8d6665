"""
Structured JSON logging for the procure packages.

Every record is one JSON object per line::

    {"ts": ..., "level": "INFO", "logger": "procure_kernel.services.data_service",
     "message": "list_fetched", "request_id": ..., "entity_type": "purchase_order", ...}

Request-scoped fields (request_id, actor_id, entity_type, view_kind) live in
``LogContext`` and are added to every record emitted while they are bound.
``extra=`` fields are copied as-is.  A logged ProcureKernelError contributes
``error_code``, ``error_type`` and its structured attributes under
``error_detail``.
"""

from __future__ import annotations

import json
import logging
import sys
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import date, datetime, timezone
from decimal import Decimal
from types import MappingProxyType
from typing import Any
from uuid import UUID

__all__ = [
    "LogContext",
    "StructuredFormatter",
    "configure_logging",
    "get_logger",
    "reset_logging",
]

ROOT_LOGGER = "procure_kernel"
CONTEXT_FIELDS = ("request_id", "actor_id", "entity_type", "view_kind")

_EMPTY: Mapping[str, str] = MappingProxyType({})
_context: ContextVar[Mapping[str, str]] = ContextVar("procure_log_context", default=_EMPTY)


class LogContext:
    """Request-scoped log fields, safe across threads and tasks."""

    @staticmethod
    def _merged(fields: Mapping[str, Any]) -> Mapping[str, str]:
        unknown = set(fields) - set(CONTEXT_FIELDS)
        if unknown:
            raise TypeError(f"Unknown log context fields: {', '.join(sorted(unknown))}")
        merged = dict(_context.get())
        merged.update({k: str(v) for k, v in fields.items() if v is not None})
        return MappingProxyType(merged)

    @classmethod
    def set(cls, **fields: Any) -> None:
        """Add fields to the current context; None values are ignored."""
        _context.set(cls._merged(fields))

    @staticmethod
    def get_all() -> dict[str, str]:
        return dict(_context.get())

    @staticmethod
    def clear() -> None:
        _context.set(_EMPTY)

    @classmethod
    @contextmanager
    def bind(cls, **fields: Any) -> Iterator[type[LogContext]]:
        """Bind fields for the duration of a ``with`` block, then restore."""
        token = _context.set(cls._merged(fields))
        try:
            yield cls
        finally:
            _context.reset(token)


# Attributes every LogRecord carries; anything else came from ``extra=``.
_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "taskName"}


def _json_default(value: Any) -> Any:
    if isinstance(value, (UUID, Decimal)):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (set, frozenset)):
        return sorted(value, key=str)
    return str(value)


def _error_fields(exc: BaseException) -> dict[str, Any]:
    fields: dict[str, Any] = {"error_type": type(exc).__name__, "error_message": str(exc)}
    code = getattr(exc, "code", None)
    if code is not None:
        fields["error_code"] = code
    detail = {
        k: v for k, v in vars(exc).items()
        if not k.startswith("_") and k not in ("args", "code", "original")
    }
    if detail:
        fields["error_detail"] = detail
    return fields


class StructuredFormatter(logging.Formatter):
    """One JSON object per record: envelope, bound context, extras, error."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(_context.get())
        payload.update(
            (key, value) for key, value in vars(record).items()
            if key not in _RECORD_ATTRS and key not in payload
        )
        if record.exc_info and record.exc_info[1] is not None:
            payload.update(_error_fields(record.exc_info[1]))
            payload["traceback"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=_json_default)


def get_logger(name: str) -> logging.Logger:
    """Logger under the ``procure_kernel`` hierarchy."""
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")


def _is_ours(handler: logging.Handler) -> bool:
    return isinstance(handler.formatter, StructuredFormatter)


def configure_logging(
    *,
    level: int = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """Attach a JSON handler to the root procure logger unless one is already attached."""
    root = logging.getLogger(ROOT_LOGGER)
    if any(_is_ours(h) for h in root.handlers):
        return
    target = handler if handler is not None else logging.StreamHandler(stream or sys.stderr)
    target.setFormatter(StructuredFormatter())
    root.addHandler(target)
    root.setLevel(level)
    root.propagate = False


def reset_logging() -> None:
    """Detach every handler from the root procure logger. Tests only."""
    root = logging.getLogger(ROOT_LOGGER)
    for handler in list(root.handlers):
        root.removeHandler(handler)
    root.setLevel(logging.WARNING)
