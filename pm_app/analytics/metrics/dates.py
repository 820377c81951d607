"""Local-calendar date helpers shared by every time-based metric.

All day-level joins go through :func:`date_key`, which reads the year, month
and day in the configured time zone. UTC day prefixes are never used as keys.
"""

from __future__ import annotations

import re
from datetime import date, datetime, timedelta

import numpy as np
import pandas as pd
import pytz

_DATE_ONLY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def _resolve_tz(tz):
    if tz is None:
        return pytz.UTC
    if isinstance(tz, str):
        return pytz.timezone(tz)
    return tz


def to_local(value, tz=None) -> pd.Timestamp | None:
    """Normalize a timestamp-like value into ``tz``.

    Plain dates and ``YYYY-MM-DD`` strings are calendar dates in ``tz`` (local
    midnight). Naive datetimes are read as UTC. Returns None when unparseable.
    """
    if value is None or value == "":
        return None
    tz = _resolve_tz(tz)
    if isinstance(value, date) and not isinstance(value, datetime):
        return pd.Timestamp(value).tz_localize(tz)
    if isinstance(value, str) and _DATE_ONLY_RE.match(value.strip()):
        ts = pd.to_datetime(value.strip(), errors="coerce")
        if ts is None or pd.isna(ts):
            return None
        return ts.tz_localize(tz)
    ts = pd.to_datetime(value, errors="coerce")
    if ts is None or pd.isna(ts):
        return None
    try:
        if getattr(ts, "tzinfo", None) is None:
            ts = ts.tz_localize(pytz.UTC)
        return ts.tz_convert(tz)
    except (TypeError, ValueError):
        return None


def local_date(value, tz=None) -> date | None:
    ts = to_local(value, tz)
    if ts is None:
        return None
    return ts.date()


def date_key(value, tz=None) -> str | None:
    """``YYYY-MM-DD`` from the local year/month/day of ``value``."""
    d = local_date(value, tz)
    if d is None:
        return None
    return f"{d.year:04d}-{d.month:02d}-{d.day:02d}"


def normalize_day_start(value, tz=None) -> pd.Timestamp | None:
    ts = to_local(value, tz)
    if ts is None:
        return None
    return ts.normalize()


def normalize_day_end(value, tz=None) -> pd.Timestamp | None:
    start = normalize_day_start(value, tz)
    if start is None:
        return None
    return start + pd.Timedelta(days=1) - pd.Timedelta(microseconds=1)


def working_days_between(start, end, tz=None) -> int:
    """Weekdays (Mon-Fri) in the inclusive local-date interval [start, end].

    Returns 0 when either bound is missing or ``end`` precedes ``start``.
    """
    start_d = start if _is_plain_date(start) else local_date(start, tz)
    end_d = end if _is_plain_date(end) else local_date(end, tz)
    if start_d is None or end_d is None or end_d < start_d:
        return 0
    return int(np.busday_count(start_d, end_d + timedelta(days=1)))


def overlap(start_a: date, end_a: date, start_b: date, end_b: date) -> tuple[date, date] | None:
    """Inclusive intersection of two date ranges, or None."""
    lo = max(start_a, start_b)
    hi = min(end_a, end_b)
    if hi < lo:
        return None
    return lo, hi


def days_between(start: date, end: date) -> int:
    return (end - start).days


def _is_plain_date(value) -> bool:
    return isinstance(value, date) and not isinstance(value, datetime)
