"""
Module: grant_kernel.logging_config
Responsibility:
    One-line JSON log records for every layer of the grant engine, plus the
    request-scoped fields (project, actor, correlation, audit run) that are
    stamped onto each record.

Architecture position:
    Kernel -- imported by engines, config and services.  No outward imports.

Record shape::

    {"ts": ..., "level": ..., "logger": "grant_kernel.<name>",
     "message": "<snake_case event>", <context fields>, <extra fields>,
     "exc_type"/"exc_message"/"exc_code"/"exc_<attr>"/"traceback"}

Usage::

    logger = get_logger("services.audit")
    with LogContext.bind(project_id=project.project_id, audit_run_id=run_id):
        logger.info("compliance_audit_recorded", extra={"passed": True})
"""

from __future__ import annotations

import json
import logging
import sys
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

__all__ = [
    "LogContext",
    "StructuredFormatter",
    "configure_logging",
    "get_logger",
    "reset_logging",
]

ROOT_LOGGER_NAME = "grant_kernel"

CONTEXT_FIELDS: tuple[str, ...] = (
    "project_id",
    "actor_id",
    "correlation_id",
    "audit_run_id",
)

_context_vars: dict[str, ContextVar[str | None]] = {
    name: ContextVar(f"grant_log_{name}", default=None) for name in CONTEXT_FIELDS
}


def _check_fields(names: Any) -> None:
    unknown = set(names) - set(CONTEXT_FIELDS)
    if unknown:
        raise ValueError(f"Unknown log context fields: {sorted(unknown)}")


class LogContext:
    """
    Request-scoped log fields held in ``contextvars``.

    ``project_id`` names the application being edited or audited;
    ``audit_run_id`` groups the records of one compliance audit.  Values
    follow the current task, so concurrent audits do not mix fields.
    """

    @staticmethod
    def set(**fields: str | None) -> None:
        """Set the given fields; ``None`` values leave a field untouched."""
        _check_fields(fields)
        for name, value in fields.items():
            if value is not None:
                _context_vars[name].set(value)

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
    def bind(**fields: str | None):
        """
        Context manager: set ``fields`` for the duration of the block.

        Raises:
            ValueError: a field name is not one of ``CONTEXT_FIELDS``.
                Raised at call time, before the block is entered.
        """
        _check_fields(fields)
        return _bound(fields)


@contextmanager
def _bound(fields: dict[str, str | None]) -> Iterator[type[LogContext]]:
    tokens = [
        (_context_vars[name], _context_vars[name].set(value))
        for name, value in fields.items()
        if value is not None
    ]
    try:
        yield LogContext
    finally:
        for var, token in reversed(tokens):
            var.reset(token)


# ---------------------------------------------------------------------------
# Formatting
# ---------------------------------------------------------------------------

# Attributes every LogRecord has; anything else came in through extra={...}.
_RECORD_ATTRS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "taskName"}


def _json_value(obj: Any) -> Any:
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, (Decimal, UUID)):
        return str(obj)
    if isinstance(obj, (set, frozenset, tuple)):
        return list(obj)
    return str(obj)


def _exception_fields(exc: BaseException) -> dict[str, Any]:
    fields: dict[str, Any] = {
        "exc_type": type(exc).__name__,
        "exc_message": str(exc),
    }
    code = getattr(exc, "code", None)
    if code is not None:
        fields["exc_code"] = code
    # GrantKernelError subclasses keep their context as public attributes
    for name, value in vars(exc).items():
        if not name.startswith("_") and name not in ("args", "code"):
            fields[f"exc_{name}"] = value
    return fields


class StructuredFormatter(logging.Formatter):
    """Render a record as one JSON object on one line."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **LogContext.get_all(),
        }
        for name, value in vars(record).items():
            if name not in _RECORD_ATTRS:
                payload.setdefault(name, value)

        if record.exc_info and record.exc_info[1] is not None:
            payload.update(_exception_fields(record.exc_info[1]))
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=_json_value)


# ---------------------------------------------------------------------------
# Setup
# ---------------------------------------------------------------------------


def get_logger(name: str) -> logging.Logger:
    """``get_logger("services.audit")`` -> ``grant_kernel.services.audit``."""
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")


_setup_lock = threading.Lock()
_installed_handler: logging.Handler | None = None


def configure_logging(
    *,
    level: int | str = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """
    Attach one JSON handler to the ``grant_kernel`` logger.

    Only the first call has an effect until ``reset_logging()``; later
    calls (library code, the CLI, the test suite) are no-ops.
    """
    global _installed_handler
    with _setup_lock:
        if _installed_handler is not None:
            return
        _installed_handler = handler or logging.StreamHandler(stream or sys.stderr)
        _installed_handler.setFormatter(StructuredFormatter())

        root = logging.getLogger(ROOT_LOGGER_NAME)
        root.setLevel(level)
        root.propagate = False
        root.addHandler(_installed_handler)


def reset_logging() -> None:
    """Remove all handlers from ``grant_kernel`` and forget the setup. Tests only."""
    global _installed_handler
    with _setup_lock:
        _installed_handler = None
        root = logging.getLogger(ROOT_LOGGER_NAME)
        root.handlers.clear()
        root.setLevel(logging.WARNING)
        root.propagate = True
