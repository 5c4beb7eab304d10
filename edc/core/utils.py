"""
Shared value-coercion helpers for the conditional field engine.

Form values arrive as loosely typed JSON (strings from text inputs,
numbers, booleans, lists from multi-selects). The engine compares and
measures them through these helpers so every rule sees the same
coercion, and none of them raise on unexpected input.
"""

import math
from datetime import date, datetime
from typing import Any

from dateutil import parser as dateutil_parser


def to_number(value: Any) -> float:
    """Coerce a form value to a float, returning NaN when it is not numeric.

    Blank strings count as zero and booleans as 0/1. ``None``, lists,
    dicts and unparseable strings produce NaN, which makes every
    numeric comparison false.
    """
    if value is None:
        return math.nan
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            return 0.0
        # float() accepts digit separators, form input should not
        if "_" in stripped:
            return math.nan
        try:
            number = float(stripped)
        except ValueError:
            return math.nan
        # Only the spelled-out "Infinity" names a non-finite number; "inf" and "nan" do not
        if not math.isfinite(number) and stripped.lstrip("+-") != "Infinity":
            return math.nan
        return number
    return math.nan


def to_text(value: Any) -> str:
    """Render a form value as the string used by text-based rules."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        if math.isnan(value):
            return "NaN"
        if math.isinf(value):
            return "Infinity" if value > 0 else "-Infinity"
        if value.is_integer():
            return str(int(value))
        return repr(value)
    if isinstance(value, (list, tuple)):
        return ",".join(to_text(v) for v in value)
    return str(value)


def is_empty(value: Any) -> bool:
    """Falsy-based emptiness: None, "", 0, False, NaN and empty collections."""
    if isinstance(value, float) and math.isnan(value):
        return True
    return not value


def strict_equals(left: Any, right: Any) -> bool:
    """Compare two values without any type coercion.

    Booleans only equal booleans, numbers only equal numbers (``1`` and
    ``1.0`` are the same number) and ``"1"`` never equals ``1``.
    """
    if isinstance(left, bool) or isinstance(right, bool):
        return type(left) is type(right) and left == right
    left_is_number = isinstance(left, (int, float))
    right_is_number = isinstance(right, (int, float))
    if left_is_number or right_is_number:
        return left_is_number and right_is_number and left == right
    if type(left) is not type(right):
        return False
    return left == right


def parse_bounds(rule: str) -> tuple[float, float] | None:
    """Parse a ``"min,max"`` rule parameter into two numbers.

    Returns None when the parameter does not hold exactly two numeric
    parts, so callers can treat the rule as not applicable.
    """
    parts = str(rule).split(",")
    if len(parts) != 2:
        return None
    low, high = to_number(parts[0]), to_number(parts[1])
    if math.isnan(low) or math.isnan(high):
        return None
    return low, high


def parse_date(value: str) -> date | None:
    """Parse a date string into a date object.

    Supports ISO 8601 formats (YYYY-MM-DD) and datetime strings.
    Returns None if the value cannot be parsed.

    Args:
        value: The date string to parse.

    Returns:
        A date object, or None if parsing fails.
    """
    if not value or not isinstance(value, str):
        return None

    try:
        parsed = dateutil_parser.parse(value)
        # If the input is a datetime, extract just the date part
        if isinstance(parsed, datetime):
            return parsed.date()
        return parsed
    except (ValueError, TypeError, OverflowError):
        return None
