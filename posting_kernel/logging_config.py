"""
JSON logging for the posting kernel.

Every logger under ``posting_kernel`` writes one JSON object per line.  A
record carries ts, level, logger and message, then whatever LogContext
holds for the current task (correlation, actor, institution, session,
batch, posting), then the record's ``extra`` keys.  Records logged with
``exc_info`` also get exc_type, exc_message, exc_code and one
``exc_<attr>`` per public attribute of a PostingKernelError, so a failed
posting can be found by supervisor_id or visit_number without parsing the
traceback.
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
from contextvars import ContextVar
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

ROOT_LOGGER = "posting_kernel"

_CONTEXT_FIELDS = (
    "correlation_id",
    "actor_id",
    "institution_id",
    "session_id",
    "batch_id",
    "posting_id",
)

_context_vars: dict[str, ContextVar[str | None]] = {
    name: ContextVar(f"posting_log_{name}", default=None) for name in _CONTEXT_FIELDS
}


class LogContext:
    """
    Per-task fields stamped onto every record.

    Backed by ContextVars, so threads and asyncio tasks each see their own
    values.  PostingOrchestrator binds a fresh correlation_id per call.
    """

    @staticmethod
    def set(**fields: str | None) -> None:
        """Set the named fields.  None leaves a field as it was."""
        unknown = set(fields) - set(_CONTEXT_FIELDS)
        if unknown:
            raise TypeError(f"Unknown log context field(s): {', '.join(sorted(unknown))}")
        for name, value in fields.items():
            if value is not None:
                _context_vars[name].set(value)

    @staticmethod
    def get_all() -> dict[str, str]:
        return {
            name: value
            for name, var in _context_vars.items()
            if (value := var.get()) is not None
        }

    @staticmethod
    def clear() -> None:
        for var in _context_vars.values():
            var.set(None)

    @staticmethod
    @contextmanager
    def bind(**fields: Any) -> Iterator[type["LogContext"]]:
        """
        Set fields for the duration of a ``with`` block.

        Values are stringified; None and unknown names are skipped.  On exit
        each field goes back to what it held before.
        """
        tokens = [
            (_context_vars[name], _context_vars[name].set(str(value)))
            for name, value in fields.items()
            if value is not None and name in _context_vars
        ]
        try:
            yield LogContext
        finally:
            for var, token in reversed(tokens):
                var.reset(token)


# Attributes every LogRecord has; anything else on a record came from extra=
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {
    "message",
    "taskName",
}


def _json_default(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (UUID, Decimal)):
        return str(value)
    if isinstance(value, (set, frozenset)):
        return sorted(value, key=str)
    return str(value)


class StructuredFormatter(logging.Formatter):
    """One JSON line per record."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **LogContext.get_all(),
        }
        for key, value in vars(record).items():
            if key not in _RECORD_ATTRS:
                entry.setdefault(key, value)

        exc = record.exc_info[1] if record.exc_info else None
        if exc is not None:
            entry["exc_type"] = type(exc).__name__
            entry["exc_message"] = str(exc)
            code = getattr(exc, "code", None)
            if code is not None:
                entry["exc_code"] = code
            for attr, value in vars(exc).items():
                if attr != "code" and not attr.startswith("_"):
                    entry[f"exc_{attr}"] = value
            entry["traceback"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=_json_default)


def get_logger(name: str) -> logging.Logger:
    """``posting_kernel.<name>``."""
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")


_setup_lock = threading.Lock()
_handler: logging.Handler | None = None


def configure_logging(
    *,
    level: int | str = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """
    Attach a JSON handler to the ``posting_kernel`` logger.

    Only the first call does anything; later calls (every
    ``init_engine_from_url`` makes one) are no-ops until ``reset_logging``.
    """
    global _handler
    with _setup_lock:
        if _handler is not None:
            return
        _handler = handler or logging.StreamHandler(stream or sys.stderr)
        _handler.setFormatter(StructuredFormatter())

        root = logging.getLogger(ROOT_LOGGER)
        root.setLevel(level)
        root.propagate = False
        root.addHandler(_handler)


def reset_logging() -> None:
    """Detach handlers so the next configure_logging takes effect.  Used by tests."""
    global _handler
    with _setup_lock:
        _handler = None
        root = logging.getLogger(ROOT_LOGGER)
        root.handlers.clear()
        root.setLevel(logging.WARNING)
