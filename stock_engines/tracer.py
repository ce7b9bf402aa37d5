"""
stock_engines.tracer -- ``@traced_engine`` decorator emitting STOCK_ENGINE_TRACE.

Responsibility:
    Wrap pure engine entry points with one structured log record carrying
    the engine name and version, a fingerprint of selected keyword inputs,
    and the call duration.

Architecture position:
    Engines -- support for the pure calculation layer.  Emits a log record
    only; adds no I/O to the engines.

Invariants enforced:
    - The fingerprint is deterministic: Decimals and dates render through
      ``str()``, dict keys are sorted, and the SHA-256 digest is cut to 16
      hex characters.
    - Only keyword arguments are fingerprinted; a missing field renders as
      ``null``.

Usage:
    @traced_engine("statement", "1.0", fingerprint_fields=("date_from", "date_to"))
    def build_statement_row(...):
        ...
"""

from __future__ import annotations

import functools
import hashlib
import logging
import time
from collections.abc import Callable
from typing import Any

# Child of the stock_kernel logger so configure_logging() covers engine traces.
_logger = logging.getLogger("stock_kernel.engines.tracer")


def _canonicalize(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, dict):
        items = sorted(value.items(), key=lambda kv: str(kv[0]))
        return "{" + ",".join(f"{k}:{_canonicalize(v)}" for k, v in items) + "}"
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(_canonicalize(v) for v in value) + "]"
    return str(value)


def compute_input_fingerprint(
    fingerprint_fields: tuple[str, ...],
    kwargs: dict[str, Any],
) -> str:
    """16-hex-char SHA-256 prefix over ``field=value`` pairs in field order."""
    canonical = "|".join(
        f"{name}={_canonicalize(kwargs.get(name))}" for name in fingerprint_fields
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:16]


def traced_engine(
    engine_name: str,
    engine_version: str,
    fingerprint_fields: tuple[str, ...] = (),
) -> Callable:
    """Decorator factory; see module docstring."""

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            fingerprint = (
                compute_input_fingerprint(fingerprint_fields, kwargs)
                if fingerprint_fields
                else ""
            )
            started = time.monotonic()
            result = func(*args, **kwargs)
            _logger.info(
                "STOCK_ENGINE_TRACE",
                extra={
                    "trace_type": "STOCK_ENGINE_TRACE",
                    "engine_name": engine_name,
                    "engine_version": engine_version,
                    "input_fingerprint": fingerprint,
                    "duration_ms": round((time.monotonic() - started) * 1000, 2),
                    "function": func.__qualname__,
                },
            )
            return result

        return wrapper

    return decorator
