"""
Structured JSON logging for the contract ledger.

Every record is one JSON line: ``ts``, ``level``, ``logger``, ``message``,
the ledger context bound through ``LogContext`` (correlation, contract,
actor, event) and whatever the caller passed in ``extra=``.  Messages are
snake_case event names (``state_event_created``, ``contract_total_mismatch``)
so log queries never parse free text.
"""

__all__ = [
    "StructuredFormatter",
    "LogContext",
    "get_logger",
    "configure_logging",
    "reset_logging",
]

import json
import logging
import sys
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar, Token
from datetime import UTC, date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

_LOGGER_PREFIX = "contract_ledger"

# ---------------------------------------------------------------------------
# Context propagation
# ---------------------------------------------------------------------------

_CONTEXT_FIELDS = ("correlation_id", "contract_id", "actor_id", "event_id")

_context_vars: dict[str, ContextVar[str | None]] = {
    name: ContextVar(f"contract_ledger_{name}", default=None)
    for name in _CONTEXT_FIELDS
}


class LogContext:
    """
    Request-scoped fields added to every record of the current thread or
    task.  Values are stored as strings; unknown field names are ignored.
    """

    FIELDS = _CONTEXT_FIELDS

    @staticmethod
    def set(**fields: Any) -> None:
        """Set the given fields.  ``None`` leaves a field unchanged."""
        for name, value in fields.items():
            var = _context_vars.get(name)
            if var is not None and value is not None:
                var.set(str(value))

    @staticmethod
    def get_all() -> dict[str, str]:
        return {
            name: var.get()
            for name, var in _context_vars.items()
            if var.get() is not None
        }

    @staticmethod
    def clear() -> None:
        for var in _context_vars.values():
            var.set(None)

    @staticmethod
    @contextmanager
    def bind(**fields: Any) -> Iterator[None]:
        """Set fields for the duration of a ``with`` block, then restore them."""
        tokens: list[tuple[ContextVar[str | None], Token]] = []
        for name, value in fields.items():
            var = _context_vars.get(name)
            if var is not None and value is not None:
                tokens.append((var, var.set(str(value))))
        try:
            yield
        finally:
            for var, token in reversed(tokens):
                var.reset(token)


# ---------------------------------------------------------------------------
# JSON formatting
# ---------------------------------------------------------------------------

# Attributes every LogRecord has; anything else came from ``extra=``.
_RECORD_ATTRS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "taskName"}


def _to_json(value: Any) -> Any:
    if isinstance(value, (UUID, Decimal)):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return str(value)


def _exception_fields(exc: BaseException) -> dict[str, Any]:
    """``exc_type``/``exc_message`` plus the error's code and attributes."""
    fields: dict[str, Any] = {
        "exc_type": type(exc).__name__,
        "exc_message": str(exc),
    }
    code = getattr(exc, "code", None)
    if code is not None:
        fields["exc_code"] = code
    for name, value in vars(exc).items():
        if not name.startswith("_") and name != "code":
            fields[f"exc_{name}"] = value
    return fields


class StructuredFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **LogContext.get_all(),
        }

        for key, value in vars(record).items():
            if key not in _RECORD_ATTRS:
                payload.setdefault(key, value)

        if record.exc_info and record.exc_info[1] is not None:
            payload.update(_exception_fields(record.exc_info[1]))
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=_to_json)


# ---------------------------------------------------------------------------
# Setup
# ---------------------------------------------------------------------------


def get_logger(name: str) -> logging.Logger:
    """Logger ``contract_ledger.<name>``."""
    return logging.getLogger(f"{_LOGGER_PREFIX}.{name}")


_configured = False
_lock = threading.Lock()


def configure_logging(
    *,
    level: int | str = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """
    Attach one JSON handler to the ``contract_ledger`` logger.

    Only the first call has an effect.  Records do not propagate to the
    root logger, so an application's own logging setup is left untouched.
    """
    global _configured
    with _lock:
        if _configured:
            return
        _configured = True

    ledger_logger = logging.getLogger(_LOGGER_PREFIX)
    ledger_logger.setLevel(level)
    ledger_logger.propagate = False

    target = handler or logging.StreamHandler(stream or sys.stderr)
    target.setFormatter(StructuredFormatter())
    ledger_logger.addHandler(target)


def reset_logging() -> None:
    """Forget the configuration and drop handlers (tests only)."""
    global _configured
    with _lock:
        _configured = False
    ledger_logger = logging.getLogger(_LOGGER_PREFIX)
    ledger_logger.handlers.clear()
    ledger_logger.setLevel(logging.WARNING)
