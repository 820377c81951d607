"""Per-sprint velocity, rolling averages, trends, and completion forecast."""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import asdict, dataclass, field
from datetime import date, timedelta

import pandas as pd

from pm_app.core.config import (
    DEFAULT_AVERAGE_WINDOW,
    DEFAULT_SPRINT_DAYS,
    FORECAST_BASE_CONFIDENCE,
    FORECAST_MAX_CONFIDENCE,
)
from pm_app.core.labels import issue_points
from pm_app.core.mappers import issues_to_dataframe
from pm_app.core.models import Issue

from .dates import local_date
from .derived import percent, percent_change, round_half_up
from .sprints import SprintInfo, build_catalog, sprint_sort_key


@dataclass(slots=True)
class SprintVelocity:
    sprint: str
    start_date: date | None
    due_date: date | None
    total_issues: int = 0
    completed_issues: int = 0
    open_issues: int = 0
    total_points: int = 0
    completed_points: int = 0
    open_points: int = 0
    completion_rate: int = 0
    completion_rate_points: int = 0

    @property
    def velocity_by_issues(self) -> int:
        return self.completed_issues

    @property
    def velocity_by_points(self) -> int:
        return self.completed_points

    def value(self, mode: str) -> int:
        return self.completed_points if mode == "points" else self.completed_issues

    def is_completed(self, today: date) -> bool:
        return self.due_date is not None and self.due_date < today

    def to_dict(self) -> dict:
        out = asdict(self)
        out["start_date"] = self.start_date.isoformat() if self.start_date else None
        out["due_date"] = self.due_date.isoformat() if self.due_date else None
        out["velocity_by_issues"] = self.velocity_by_issues
        out["velocity_by_points"] = self.velocity_by_points
        return out


@dataclass(slots=True)
class AverageVelocity:
    by_issues: float = 0
    by_points: float = 0
    sprints_used: int = 0


@dataclass(slots=True)
class VelocityTrend:
    short_term: int = 0
    long_term: int = 0


@dataclass(slots=True)
class Forecast:
    completion_date: date
    sprints_remaining: int
    confidence: int
    open_issues: int


@dataclass(slots=True)
class TrendHistory:
    points: list[dict] = field(default_factory=list)
    avg_issues: float = 0
    avg_points: float = 0
    trend_issues: int = 0
    trend_points: int = 0
    peak_issues: int = 0
    low_issues: int = 0
    peak_points: int = 0
    low_points: int = 0


def calculate_velocity(
    issues: Sequence[Issue],
    tz=None,
    catalog: dict[str, SprintInfo] | None = None,
) -> list[SprintVelocity]:
    """Aggregate issues into one record per sprint, in sprint order."""
    if not issues:
        return []
    df = issues_to_dataframe(issues, tz)
    df = df[df["sprint"].notna()]
    if df.empty:
        return []
    catalog = catalog if catalog is not None else build_catalog(issues)
    df = df.assign(closed_points=df["points"].where(df["closed"], 0))
    grouped = df.groupby("sprint", sort=False).agg(
        total_issues=("iid", "size"),
        completed_issues=("closed", "sum"),
        total_points=("points", "sum"),
        completed_points=("closed_points", "sum"),
    )

    records: list[SprintVelocity] = []
    for name, row in grouped.iterrows():
        info = catalog.get(name) or SprintInfo(name=name)
        total = int(row["total_issues"])
        done = int(row["completed_issues"])
        total_pts = int(row["total_points"])
        done_pts = int(row["completed_points"])
        records.append(
            SprintVelocity(
                sprint=name,
                start_date=info.start_date,
                due_date=info.due_date,
                total_issues=total,
                completed_issues=done,
                open_issues=total - done,
                total_points=total_pts,
                completed_points=done_pts,
                open_points=total_pts - done_pts,
                completion_rate=percent(done, total),
                completion_rate_points=percent(done_pts, total_pts),
            )
        )
    records.sort(key=lambda r: sprint_sort_key(r.sprint, r.start_date))
    return records


def _completed_up_to(
    velocity: Sequence[SprintVelocity], today: date, current: str | None
) -> tuple[list[SprintVelocity], int]:
    completed = [v for v in velocity if v.is_completed(today)]
    idx = len(completed) - 1
    if current is not None:
        for i, v in enumerate(completed):
            if v.sprint == current:
                idx = i
                break
    return completed, idx


def average_velocity(
    velocity: Sequence[SprintVelocity],
    today: date,
    window: int = DEFAULT_AVERAGE_WINDOW,
    current: str | None = None,
) -> AverageVelocity:
    """Mean velocity over the ``window`` most recent completed sprints."""
    completed, idx = _completed_up_to(velocity, today, current)
    recent = completed[max(0, idx + 1 - window) : idx + 1] if idx >= 0 else []
    if not recent:
        return AverageVelocity()
    return AverageVelocity(
        by_issues=round_half_up(sum(v.completed_issues for v in recent) / len(recent), 1),
        by_points=round_half_up(sum(v.completed_points for v in recent) / len(recent), 1),
        sprints_used=len(recent),
    )


def velocity_trend(
    velocity: Sequence[SprintVelocity],
    today: date,
    current: str | None = None,
    mode: str = "issues",
) -> VelocityTrend:
    """Short-term (sprint over sprint) and long-term (3 vs 3) percent change.

    Only completed sprints take part. When ``current`` is one of them it is the
    end point, otherwise the latest completed sprint is.
    """
    completed, idx = _completed_up_to(velocity, today, current)
    if idx < 1:
        return VelocityTrend()
    values = [v.value(mode) for v in completed]
    short = percent_change(values[idx - 1], values[idx])

    long = 0
    if idx >= 3:
        recent_start = max(0, idx - 2)
        recent = values[recent_start : idx + 1]
        previous = values[max(0, recent_start - 3) : recent_start]
        if previous:
            long = percent_change(sum(previous) / len(previous), sum(recent) / len(recent))
    return VelocityTrend(short_term=short, long_term=long)


def predict_completion(open_issue_count: int, avg_velocity: float, today: date) -> Forecast | None:
    """Sprints needed to clear open work at ``avg_velocity`` issues per sprint."""
    if open_issue_count <= 0:
        return Forecast(completion_date=today, sprints_remaining=0, confidence=100, open_issues=0)
    if not avg_velocity or avg_velocity <= 0:
        return None
    sprints = math.ceil(open_issue_count / avg_velocity)
    confidence = min(FORECAST_MAX_CONFIDENCE, round_half_up(FORECAST_BASE_CONFIDENCE + 2 * avg_velocity))
    return Forecast(
        completion_date=today + timedelta(days=DEFAULT_SPRINT_DAYS * sprints),
        sprints_remaining=sprints,
        confidence=confidence,
        open_issues=open_issue_count,
    )


def velocity_trend_history(
    issues: Sequence[Issue], today: date, tz=None, months: int = 6, period_days: int = DEFAULT_SPRINT_DAYS
) -> TrendHistory:
    """Closed work bucketed into fixed periods over a trailing window."""
    if not issues:
        return TrendHistory()
    cutoff = (pd.Timestamp(today) - pd.DateOffset(months=months)).date()
    closed = [
        (local_date(i.closed_at, tz), i)
        for i in issues
        if i.is_closed and i.closed_at is not None
    ]
    closed = [(d, i) for d, i in closed if d is not None and d >= cutoff]

    periods: list[dict] = []
    start = cutoff
    while start <= today:
        end = start + timedelta(days=period_days)
        in_period = [i for d, i in closed if start <= d < end]
        periods.append(
            {
                "start_date": start.isoformat(),
                "end_date": end.isoformat(),
                "issue_count": len(in_period),
                "points_count": sum(issue_points(i) for i in in_period),
            }
        )
        start = end

    frame = pd.DataFrame(periods)
    frame["moving_avg_issues"] = frame["issue_count"].rolling(3, min_periods=1).mean().map(
        lambda v: round_half_up(v, 1)
    )
    frame["moving_avg_points"] = frame["points_count"].rolling(3, min_periods=1).mean().map(
        lambda v: round_half_up(v, 1)
    )

    mid = len(frame) // 2
    first, second = frame.iloc[:mid], frame.iloc[mid:]
    trend_issues = trend_points = 0
    if len(first) and len(second):
        trend_issues = percent_change(first["issue_count"].mean(), second["issue_count"].mean())
        trend_points = percent_change(first["points_count"].mean(), second["points_count"].mean())

    return TrendHistory(
        points=frame.to_dict(orient="records"),
        avg_issues=round_half_up(frame["issue_count"].mean(), 1),
        avg_points=round_half_up(frame["points_count"].mean(), 1),
        trend_issues=trend_issues,
        trend_points=trend_points,
        peak_issues=int(frame["issue_count"].max()),
        low_issues=int(frame["issue_count"].min()),
        peak_points=int(frame["points_count"].max()),
        low_points=int(frame["points_count"].min()),
    )


def period_comparison(issues: Sequence[Issue], today: date, tz=None, days: int = 30) -> dict:
    """Trailing ``days`` window vs the window immediately before it."""
    current_start = today - timedelta(days=days - 1)
    previous_end = current_start - timedelta(days=1)
    previous_start = previous_end - timedelta(days=days - 1)

    def _in(value, lo: date, hi: date) -> bool:
        d = local_date(value, tz)
        return d is not None and lo <= d <= hi

    def _window(lo: date, hi: date) -> dict:
        created = [i for i in issues if _in(i.created_at, lo, hi)]
        completed = [i for i in issues if i.is_closed and i.closed_at and _in(i.closed_at, lo, hi)]
        return {
            "start_date": lo.isoformat(),
            "end_date": hi.isoformat(),
            "issues": len(created),
            "completed": len(completed),
            "points": sum(issue_points(i) for i in completed),
        }

    cur = _window(current_start, today)
    prev = _window(previous_start, previous_end)
    changes = {k: cur[k] - prev[k] for k in ("issues", "completed", "points")}
    pct = {k: percent_change(prev[k], cur[k]) for k in ("issues", "completed", "points")}
    return {"current": cur, "previous": prev, "changes": changes, "percent_changes": pct}


def velocity_frame(velocity: Sequence[SprintVelocity]) -> pd.DataFrame:
    """Velocity records as a frame (used by charts and CSV export)."""
    if not velocity:
        return pd.DataFrame()
    return pd.DataFrame([v.to_dict() for v in velocity])

