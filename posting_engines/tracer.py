"""
Trace decorator for the pure allowance engines.

``@traced_engine`` logs one POSTING_ENGINE_TRACE record per call at DEBUG
on ``posting_kernel.engines.tracer``.  The record names the engine and its
version, the call's wall time, and a short hash over the keyword arguments
listed in ``fingerprint_fields``.  Two calls with equal inputs log equal
fingerprints, which is how a suspicious amount is matched to the inputs
that produced it.  Engines stay free of I/O; the decorator only logs.

    @traced_engine("allowance", "1.0", fingerprint_fields=("distance_km",))
    def compute(self, *, rank, distance_km, thresholds, is_secondary=False):
        ...
"""

from __future__ import annotations

import dataclasses
import functools
import hashlib
import logging
import time
from collections.abc import Callable, Mapping
from decimal import Decimal
from enum import Enum
from typing import Any

TRACE_TYPE = "POSTING_ENGINE_TRACE"

_logger = logging.getLogger("posting_kernel.engines.tracer")


def _stable_text(value: Any) -> str:
    # Enums before str/int: a str-Enum is also a str.
    if isinstance(value, Enum):
        value = value.value
    if value is None:
        return "null"
    if value is True or value is False:
        return str(value).lower()
    if isinstance(value, Decimal):
        # Normalized so 20 and 20.000000000 agree
        return "0" if value.is_zero() else format(value.normalize(), "f")
    if isinstance(value, (str, int, float)):
        return str(value)
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        value = dataclasses.asdict(value)
    if isinstance(value, Mapping):
        pairs = sorted((str(k), _stable_text(v)) for k, v in value.items())
        return "{%s}" % ",".join(f"{k}:{v}" for k, v in pairs)
    if isinstance(value, (list, tuple)):
        return "[%s]" % ",".join(_stable_text(v) for v in value)
    return str(value)


def compute_input_fingerprint(
    fingerprint_fields: tuple[str, ...],
    kwargs: dict[str, Any],
) -> str:
    """First 16 hex digits of SHA-256 over ``name=value`` pairs; absent names hash as null."""
    text = "|".join(f"{name}={_stable_text(kwargs.get(name))}" for name in fingerprint_fields)
    return hashlib.sha256(text.encode("utf-8")).hexdigest()[:16]


def traced_engine(
    engine_name: str,
    engine_version: str,
    fingerprint_fields: tuple[str, ...] = (),
) -> Callable:
    """Wrap an engine entry point so every call is logged as POSTING_ENGINE_TRACE."""

    def decorate(func: Callable) -> Callable:
        label = func.__qualname__

        @functools.wraps(func)
        def traced(*args: Any, **kwargs: Any) -> Any:
            fingerprint = (
                compute_input_fingerprint(fingerprint_fields, kwargs)
                if fingerprint_fields else ""
            )
            started = time.perf_counter()
            result = func(*args, **kwargs)
            elapsed_ms = round((time.perf_counter() - started) * 1000, 2)
            _logger.debug(
                TRACE_TYPE,
                extra={
                    "trace_type": TRACE_TYPE,
                    "engine_name": engine_name,
                    "engine_version": engine_version,
                    "input_fingerprint": fingerprint,
                    "duration_ms": elapsed_ms,
                    "function": label,
                },
            )
            return result

        return traced

    return decorate
