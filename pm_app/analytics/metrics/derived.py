"""Numeric helpers shared across analytics: rounding and zero-safe ratios."""

from __future__ import annotations

import math


def round_half_up(value: float, digits: int = 0) -> float | int:
    """Round halves upward (``2.5 -> 3``, ``-2.5 -> -2``), unlike built-in ``round``."""
    if value is None or (isinstance(value, float) and not math.isfinite(value)):
        return 0
    if digits == 0:
        return int(math.floor(value + 0.5))
    factor = 10**digits
    return math.floor(value * factor + 0.5) / factor


def safe_div(numerator: float, denominator: float) -> float:
    """``numerator / denominator`` or 0 when the denominator is zero."""
    if not denominator:
        return 0.0
    result = numerator / denominator
    if not math.isfinite(result):
        return 0.0
    return result


def percent(part: float, whole: float) -> int:
    return round_half_up(safe_div(part, whole) * 100)


def percent_change(previous: float, current: float) -> int:
    """Integer-rounded percent change; 0 when ``previous`` is 0."""
    if not previous:
        return 0
    return round_half_up((current - previous) / previous * 100)


def clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))
