"""
Module: stock_kernel.logging_config
Responsibility: JSON-lines logging for every stock package.  One record per
    line carrying the event name, the bound posting context and whatever
    structured fields the caller passed in ``extra``.
Architecture position: Kernel, no dependencies.  Engines, services, config
    and scripts all log through ``get_logger()`` so a single
    ``configure_logging()`` call covers the whole ledger.

Invariants enforced:
    - Every logger lives under the ``stock_kernel`` namespace.
    - Context fields are request-scoped (contextvars), so concurrent
      postings on different threads never see each other's reference ids.
    - Decimal values are logged as strings, never floats.

Failure modes:
    - Values the encoder does not know are logged via ``str()``; formatting
      never raises.
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
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

ROOT_LOGGER_NAME = "stock_kernel"

# ---------------------------------------------------------------------------
# Posting context
# ---------------------------------------------------------------------------

_CONTEXT: ContextVar[Mapping[str, str]] = ContextVar("stock_log_context", default={})


class LogContext:
    """
    Fields stamped on every record emitted while they are bound.

    ``StockPostingService`` binds one correlation id per producer call
    together with the producer name and the document reference, so the
    append, allocation and lock records of one document can be grouped.
    """

    FIELDS = (
        "correlation_id",
        "actor_id",
        "producer",
        "item_id",
        "reference_type",
        "reference_id",
    )

    @classmethod
    def _merged(cls, fields: Mapping[str, Any]) -> dict[str, str]:
        current = dict(_CONTEXT.get())
        for name, value in fields.items():
            if name in cls.FIELDS and value is not None:
                current[name] = value if isinstance(value, str) else str(value)
        return current

    @classmethod
    def set(cls, **fields: Any) -> None:
        """Update the named fields; None leaves a field untouched."""
        _CONTEXT.set(cls._merged(fields))

    @classmethod
    def get_all(cls) -> dict[str, str]:
        return dict(_CONTEXT.get())

    @classmethod
    def clear(cls) -> None:
        _CONTEXT.set({})

    @classmethod
    @contextmanager
    def bind(cls, **fields: Any) -> Iterator[type["LogContext"]]:
        """Bind fields for the duration of a ``with`` block, then restore."""
        token = _CONTEXT.set(cls._merged(fields))
        try:
            yield cls
        finally:
            _CONTEXT.reset(token)


# ---------------------------------------------------------------------------
# Formatter
# ---------------------------------------------------------------------------

# Attributes every LogRecord has; anything else on a record came from extra=.
_RECORD_ATTRIBUTES: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "taskName"}


def _to_json(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, (set, frozenset)):
        return sorted(value, key=str)
    return str(value)


def _exception_fields(exc_info) -> dict[str, Any]:
    exc = exc_info[1]
    fields: dict[str, Any] = {
        "exc_type": type(exc).__name__,
        "exc_message": str(exc),
    }
    code = getattr(exc, "code", None)
    if code is not None:
        fields["exc_code"] = code
    # StockKernelError subclasses keep their context as public attributes
    for name, value in vars(exc).items():
        if not name.startswith("_") and name not in ("args", "code"):
            fields[f"exc_{name}"] = value
    return fields


class StructuredFormatter(logging.Formatter):
    """Render a record as one JSON object on one line."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **LogContext.get_all(),
        }
        for key, value in vars(record).items():
            if key not in _RECORD_ATTRIBUTES:
                payload.setdefault(key, value)

        if record.exc_info and record.exc_info[1] is not None:
            payload.update(_exception_fields(record.exc_info))
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=_to_json)


# ---------------------------------------------------------------------------
# Loggers
# ---------------------------------------------------------------------------


def get_logger(name: str) -> logging.Logger:
    """``get_logger("services.ledger_store")`` -> ``stock_kernel.services.ledger_store``."""
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")


_configure_lock = threading.Lock()
_installed: logging.Handler | None = None


def configure_logging(
    *,
    level: int = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """
    Attach one JSON handler to the ``stock_kernel`` logger.

    Only the first call has any effect until ``reset_logging()``; library
    code may call it freely without stacking handlers.
    """
    global _installed
    with _configure_lock:
        if _installed is not None:
            return
        if handler is None:
            handler = logging.StreamHandler(stream or sys.stderr)
        handler.setFormatter(StructuredFormatter())
        _installed = handler

    root = logging.getLogger(ROOT_LOGGER_NAME)
    root.setLevel(level)
    root.propagate = False
    root.addHandler(handler)


def reset_logging() -> None:
    """Detach the handler ``configure_logging()`` installed (tests only)."""
    global _installed
    with _configure_lock:
        handler, _installed = _installed, None
    root = logging.getLogger(ROOT_LOGGER_NAME)
    if handler is not None:
        root.removeHandler(handler)
    root.setLevel(logging.WARNING)
