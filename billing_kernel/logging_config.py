"""
Structured JSON logging for the billing kernel.

Every record is one JSON line.  Records emitted while a document operation
runs carry the operation's context (correlation id, actor, operation name,
document type and id), bound once by the orchestrator with
``LogContext.bind``.  Context fields win over ``extra`` keys of the same
name, so a service cannot relabel the operation it runs in.
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
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, date, datetime
from decimal import Decimal
from typing import Any, Iterator
from uuid import UUID

_LOGGER_PREFIX = "billing_kernel"

CONTEXT_FIELDS = (
    "correlation_id",
    "actor_id",
    "operation",
    "document_type",
    "document_id",
)

_context: dict[str, ContextVar[str | None]] = {
    name: ContextVar(f"billing_log_{name}", default=None) for name in CONTEXT_FIELDS
}


class LogContext:
    """Request-scoped fields stamped on every record of one operation."""

    @staticmethod
    @contextmanager
    def bind(**fields: str | None) -> Iterator[None]:
        """Set the given fields for the duration of the block.

        ``None`` values leave the current value in place.  On exit every
        field is restored, so nested operations do not leak into the outer
        one.
        """
        unknown = set(fields) - set(CONTEXT_FIELDS)
        if unknown:
            raise TypeError(f"Unknown log context fields: {sorted(unknown)}")
        tokens = [
            (_context[name], _context[name].set(value))
            for name, value in fields.items()
            if value is not None
        ]
        try:
            yield
        finally:
            for var, token in reversed(tokens):
                var.reset(token)

    @staticmethod
    def get_all() -> dict[str, str]:
        values = {name: var.get() for name, var in _context.items()}
        return {name: value for name, value in values.items() if value is not None}

    @staticmethod
    def clear() -> None:
        for var in _context.values():
            var.set(None)


def _json_default(obj: Any) -> Any:
    if isinstance(obj, (UUID, Decimal)):
        return str(obj)
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    # FieldError and DocumentResult
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    return str(obj)


_STDLIB_KEYS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None)).keys()
) | {"message", "taskName"}


class StructuredFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(LogContext.get_all())
        for key, value in vars(record).items():
            if key not in _STDLIB_KEYS and key not in payload:
                payload[key] = value

        if record.exc_info and record.exc_info[1] is not None:
            payload.update(_exception_fields(record.exc_info[1]))
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=_json_default)


def _exception_fields(exc: BaseException) -> dict[str, Any]:
    """``exc_*`` fields; BillingKernelError subclasses add their code and attributes."""
    fields: dict[str, Any] = {
        "exc_type": type(exc).__name__,
        "exc_message": str(exc),
    }
    code = getattr(exc, "code", None)
    if isinstance(code, str):
        fields["exc_code"] = code
        for name, value in vars(exc).items():
            if not name.startswith("_"):
                fields[f"exc_{name}"] = value
    return fields


def get_logger(name: str) -> logging.Logger:
    """Logger under the billing_kernel namespace."""
    return logging.getLogger(f"{_LOGGER_PREFIX}.{name}")


_lock = threading.Lock()
_installed: logging.Handler | None = None


def configure_logging(
    *,
    level: int = logging.INFO,
    handler: logging.Handler | None = None,
) -> None:
    """Install the structured handler on the billing_kernel logger, once.

    Later calls are no-ops until ``reset_logging``.  Handlers added by other
    code (test log capture, for one) are left alone.
    """
    global _installed
    with _lock:
        if _installed is not None:
            return
        _installed = handler if handler is not None else logging.StreamHandler(sys.stderr)
        _installed.setFormatter(StructuredFormatter())

        logger = logging.getLogger(_LOGGER_PREFIX)
        logger.setLevel(level)
        logger.propagate = False
        logger.addHandler(_installed)


def reset_logging() -> None:
    """Remove the handler installed by ``configure_logging``.  Tests only."""
    global _installed
    with _lock:
        logger = logging.getLogger(_LOGGER_PREFIX)
        if _installed is not None:
            logger.removeHandler(_installed)
            _installed = None
        logger.setLevel(logging.WARNING)
