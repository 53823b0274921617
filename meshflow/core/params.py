"""Permissive parsing and clamping helpers for generation parameters.

Policy:
    Values are never rejected. Unparseable input becomes `None` so that callers
    substitute a default, and numeric input outside a range is moved to the
    nearest bound.

Used by:
    - `meshflow.config.load_generation_parameters` (first clamping layer).
    - Space adapters in `meshflow.spaces` (second, space-specific layer).
"""

import math
from collections.abc import Sequence
from typing import Any


_TRUE_STRINGS = {"1", "true", "yes", "on", "y"}
_FALSE_STRINGS = {"0", "false", "no", "off", "n"}


def parse_float(value: Any) -> float | None:
    """Return `value` as a finite float, or `None` when it cannot be parsed."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(str(value).strip()) if isinstance(value, str) else float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number):
        return None
    return number


def parse_int(value: Any) -> int | None:
    """Return `value` truncated to int, or `None` when it cannot be parsed."""
    number = parse_float(value)
    if number is None:
        return None
    return int(number)


def parse_bool(value: Any, default: bool) -> bool:
    """Interpret common truthy/falsy spellings, falling back to `default`."""
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE_STRINGS:
        return True
    if text in _FALSE_STRINGS:
        return False
    return default


def clamp_number(value: float, low: float, high: float) -> float:
    """Clamp `value` into the inclusive range [`low`, `high`]."""
    return max(low, min(high, value))


def resolve_int(value: Any, low: int, high: int, default: int) -> int:
    """Parse, default and clamp an integer parameter."""
    number = parse_int(value)
    if number is None:
        return default
    return clamp_number(number, low, high)


def resolve_float(value: Any, low: float, high: float, default: float) -> float:
    """Parse, default and clamp a float parameter."""
    number = parse_float(value)
    if number is None:
        return default
    return clamp_number(number, low, high)


def resolve_choice(value: Any, options: Sequence[str], default: str) -> str:
    """Return `value` as a string when it is one of `options`, else `default`.

    Integers are compared by their string form, so `384` matches `"384"`.
    """
    if value is None or isinstance(value, bool):
        return default
    text = str(value).strip()
    return text if text in options else default
