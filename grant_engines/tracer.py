"""
grant_engines.tracer -- GRANT_ENGINE_TRACE records for engine calls.

Every public engine (budget calculation, module completion, lifecycle and
submission checks) is wrapped with ``@traced_engine``.  Each call logs the
engine name and version, how long it took, and a short fingerprint of the
inputs that determine its result, so two runs over the same project can be
matched up in the logs without dumping the project itself.

The fingerprint is the first 16 hex digits of a SHA-256 over a canonical
text form of the selected arguments.  Canonical form is order-independent
for mappings and sets; dataclasses contribute their class name and fields;
Decimals contribute their exact string.

Usage::

    @traced_engine("budget.calculate", "1.0", fingerprint_fields=("inputs", "budget_cap"))
    def calculate_budget(inputs, budget_cap, rules=DEFAULT_BUDGET_RULES):
        ...
"""

from __future__ import annotations

import dataclasses
import functools
import hashlib
import inspect
import time
from collections.abc import Callable, Iterable, Mapping
from enum import Enum
from typing import Any

from grant_kernel.logging_config import get_logger

_logger = get_logger("engines.tracer")

TRACE_EVENT = "GRANT_ENGINE_TRACE"


def _join(parts: Iterable[str], sort: bool = False) -> str:
    parts = list(parts)
    if sort:
        parts.sort()
    return "[" + ",".join(parts) + "]"


def _canonicalize(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, Enum):
        return _canonicalize(value.value)
    if isinstance(value, str):
        return value
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        fields = {f.name: getattr(value, f.name) for f in dataclasses.fields(value)}
        return type(value).__name__ + _canonicalize(fields)
    if isinstance(value, Mapping):
        return "{" + ",".join(
            f"{key}:{_canonicalize(value[key])}" for key in sorted(value, key=str)
        ) + "}"
    if isinstance(value, (set, frozenset)):
        return _join((_canonicalize(v) for v in value), sort=True)
    if isinstance(value, (list, tuple)):
        return _join(_canonicalize(v) for v in value)
    # int, Decimal and anything else: their str() is already exact
    return str(value)


def compute_input_fingerprint(
    fingerprint_fields: tuple[str, ...],
    arguments: Mapping[str, Any],
) -> str:
    """Fingerprint of ``arguments`` restricted to ``fingerprint_fields``.

    Missing arguments count as ``None``.
    """
    digest = hashlib.sha256()
    for name in fingerprint_fields:
        digest.update(f"{name}={_canonicalize(arguments.get(name))};".encode("utf-8"))
    return digest.hexdigest()[:16]


def traced_engine(
    engine_name: str,
    engine_version: str,
    fingerprint_fields: tuple[str, ...] = (),
) -> Callable:
    """
    Wrap an engine so each call emits one GRANT_ENGINE_TRACE record.

    Raises:
        ValueError: at decoration time, if a name in ``fingerprint_fields``
            is not a parameter of the engine.
    """

    def decorator(func: Callable) -> Callable:
        signature = inspect.signature(func)
        missing = [name for name in fingerprint_fields if name not in signature.parameters]
        if missing:
            raise ValueError(
                f"{engine_name}: cannot fingerprint {missing}; "
                f"{func.__qualname__} has no such parameters"
            )

        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            fingerprint = ""
            if fingerprint_fields:
                arguments = signature.bind_partial(*args, **kwargs).arguments
                fingerprint = compute_input_fingerprint(fingerprint_fields, arguments)

            started = time.perf_counter()
            result = func(*args, **kwargs)
            elapsed_ms = (time.perf_counter() - started) * 1000

            _logger.info(
                TRACE_EVENT,
                extra={
                    "trace_type": TRACE_EVENT,
                    "engine_name": engine_name,
                    "engine_version": engine_version,
                    "input_fingerprint": fingerprint,
                    "duration_ms": round(elapsed_ms, 2),
                },
            )
            return result

        return wrapper

    return decorator
