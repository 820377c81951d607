"""Sprint burndown (ideal vs actual) and project-wide burnup."""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import date, timedelta

import pandas as pd

from pm_app.core.config import (
    BURNUP_VELOCITY_POINTS,
    DEFAULT_BURNUP_MONTHS,
    DEFAULT_BURNUP_POINTS,
    DEFAULT_SPRINT_DAYS,
)
from pm_app.core.labels import issue_points, issue_sprint, metric_value
from pm_app.core.mappers import issues_to_dataframe
from pm_app.core.models import Issue

from .dates import date_key, normalize_day_end, normalize_day_start
from .derived import percent, round_half_up, safe_div


@dataclass(slots=True)
class Burndown:
    mode: str
    total: int = 0
    ideal: list[dict] = field(default_factory=list)
    actual: list[dict] = field(default_factory=list)
    sprint_start: str | None = None
    sprint_end: str | None = None
    total_issues: int = 0
    total_points: int = 0


@dataclass(slots=True)
class Burnup:
    points: list[dict] = field(default_factory=list)
    total_scope: int = 0
    completed: int = 0
    remaining: int = 0
    initial_scope: int = 0
    scope_growth: int = 0
    scope_growth_percent: int = 0
    avg_velocity: float = 0
    projected_completion: str | None = None
    interval_days: int = 1
    chart_start: str | None = None

    @property
    def completion_rate(self) -> float:
        return safe_div(self.completed, self.total_scope) * 100


def calculate_burndown(
    issues: Sequence[Issue],
    sprint: str | None,
    today: date,
    mode: str = "issues",
    tz=None,
) -> Burndown:
    """Ideal and actual remaining work per local day of ``sprint``.

    The ideal line has one point per day from start to end inclusive, starting
    at the total and reaching 0 on the last day. The actual line stops at
    ``min(end, today)``; closures are matched to days via :func:`date_key`.
    """
    if not issues or not sprint:
        return Burndown(mode=mode)
    sprint_issues = [i for i in issues if issue_sprint(i) == sprint]
    if not sprint_issues:
        return Burndown(mode=mode)

    dated = next((i.iteration for i in sprint_issues if i.iteration and i.iteration.start_date), None)
    if dated is not None:
        start = normalize_day_start(dated.start_date, tz)
        end = normalize_day_end(dated.due_date, tz) if dated.due_date else None
    else:
        start = normalize_day_start(min(i.created_at for i in sprint_issues), tz)
        end = None
    if end is None:
        end = normalize_day_end(start.date() + timedelta(days=DEFAULT_SPRINT_DAYS), tz)

    start_day = start.date()
    end_day = end.date()
    days = (end_day - start_day).days
    total_issues = len(sprint_issues)
    total_points = sum(issue_points(i) for i in sprint_issues)
    total = total_points if mode == "points" else total_issues

    ideal = []
    for d in range(days + 1):
        remaining = total - total * d / days if days > 0 else total
        ideal.append(
            {
                "date": date_key(start_day + timedelta(days=d), tz),
                "remaining": max(0, round_half_up(remaining)),
            }
        )
    if days == 0:
        # single-day sprint: the ideal line drops to zero on that same day
        ideal.append({"date": ideal[0]["date"], "remaining": 0})

    closed_by_day: dict[str, int] = {}
    for issue in sprint_issues:
        if issue.is_closed and issue.closed_at is not None:
            key = date_key(issue.closed_at, tz)
            closed_by_day[key] = closed_by_day.get(key, 0) + metric_value(issue, mode)

    actual = []
    remaining = total
    last_day = min(end_day, today)
    for d in range((last_day - start_day).days + 1):
        key = date_key(start_day + timedelta(days=d), tz)
        if d > 0:
            remaining -= closed_by_day.get(key, 0)
        actual.append({"date": key, "remaining": max(0, remaining)})

    return Burndown(
        mode=mode,
        total=total,
        ideal=ideal,
        actual=actual,
        sprint_start=date_key(start, tz),
        sprint_end=date_key(end, tz),
        total_issues=total_issues,
        total_points=total_points,
    )


def _burnup_dates(start: date, today: date, max_points: int) -> tuple[list[date], int]:
    total_days = (today - start).days
    if max_points <= 1 or total_days <= 0:
        return [today], max(1, total_days)
    interval = max(1, math.ceil(total_days / (max_points - 1)))
    grid = [start + timedelta(days=k * interval) for k in range(max_points)]
    grid = [d for d in grid if d < today]
    grid.append(today)
    return grid, interval


def calculate_burnup(
    issues: Sequence[Issue],
    today: date,
    tz=None,
    max_points: int = DEFAULT_BURNUP_POINTS,
    trailing_months: int = DEFAULT_BURNUP_MONTHS,
    start: date | None = None,
) -> Burnup:
    """Cumulative scope vs completed work at evenly spaced dates.

    Points cover ``[start, today]`` (``start`` defaults to ``trailing_months``
    before today), the last one always being today, at most ``max_points``.
    """
    if not issues:
        return Burnup()
    if start is None:
        start = (pd.Timestamp(today) - pd.DateOffset(months=trailing_months)).date()
    grid, interval = _burnup_dates(start, today, max_points)

    df = issues_to_dataframe(issues, tz)
    created = pd.to_datetime(df["created_date"])
    closed = pd.to_datetime(df["closed_date"].where(df["closed"]))

    points: list[dict] = []
    for day in grid:
        ts = pd.Timestamp(day)
        in_scope = created <= ts
        done = in_scope & (closed <= ts)
        scope_pts = int(df.loc[in_scope, "points"].sum())
        done_pts = int(df.loc[done, "points"].sum())
        points.append(
            {
                "date": date_key(day, tz),
                "total_scope": int(in_scope.sum()),
                "completed": int(done.sum()),
                "remaining": int(in_scope.sum() - done.sum()),
                "scope_points": scope_pts,
                "completed_points": done_pts,
                "remaining_points": scope_pts - done_pts,
            }
        )

    first, last = points[0], points[-1]
    growth = last["total_scope"] - first["total_scope"]
    recent = points[-BURNUP_VELOCITY_POINTS:]
    avg_velocity = 0.0
    if len(recent) >= 2:
        avg_velocity = (recent[-1]["completed"] - recent[0]["completed"]) / (len(recent) - 1)

    projected = None
    if avg_velocity > 0 and last["remaining"] > 0:
        intervals = math.ceil(last["remaining"] / avg_velocity)
        projected = (today + timedelta(days=intervals * interval)).isoformat()

    return Burnup(
        points=points,
        total_scope=last["total_scope"],
        completed=last["completed"],
        remaining=last["remaining"],
        initial_scope=first["total_scope"],
        scope_growth=growth,
        scope_growth_percent=percent(growth, first["total_scope"]),
        avg_velocity=round_half_up(avg_velocity, 1),
        projected_completion=projected,
        interval_days=interval,
        chart_start=date_key(grid[0], tz),
    )


def remaining_change_percent(burnup: Burnup) -> int | None:
    """Percent change of ``remaining`` between first and last burnup points."""
    if len(burnup.points) < 2:
        return None
    initial = burnup.points[0]["remaining"]
    current = burnup.points[-1]["remaining"]
    return percent(current - initial, initial)

