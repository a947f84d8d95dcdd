"""Field population rules shared by the completion and phase engines."""

from __future__ import annotations

from collections.abc import Mapping
from decimal import Decimal, InvalidOperation
from typing import Any

from grant_kernel.domain.budget_types import ZERO, to_decimal


def is_field_populated(value: Any) -> bool:
    """Whether a module field counts as filled in.

    Text must be non-blank after trimming.  Numbers and booleans always
    count, zero and ``False`` included.  Lists must be non-empty and nested
    records must have at least one key.
    """
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (bool, int, float, Decimal)):
        return True
    if isinstance(value, (list, tuple, set, frozenset)):
        return len(value) > 0
    if isinstance(value, Mapping):
        return len(value) > 0
    return False


def positive_amount(value: Any) -> bool:
    """True when ``value`` parses as a currency amount greater than zero."""
    if isinstance(value, bool):
        return False
    try:
        return to_decimal(value) > ZERO
    except (InvalidOperation, TypeError, ValueError):
        return False
