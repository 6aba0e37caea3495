"""Value coercion shared by the completion engine, formulas and lead intake."""
from __future__ import annotations

from typing import Any


def is_blank(value: Any) -> bool:
    """Empty for completion purposes: None, blank strings and empty collections."""
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, (list, tuple, set, dict)):
        return len(value) == 0
    return False


def to_float(value: Any, default: float | None = None) -> float | None:
    """Parse numbers the way the calculator form sends them (decimal comma allowed)."""
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return float(value)
    raw = str(value).strip().replace(" ", "").replace(" ", "").replace(",", ".")
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def to_int(value: Any, default: int | None = None) -> int | None:
    number = to_float(value)
    if number is None:
        return default
    return int(number)
