"""Chart builders (Altair) for burndown, burnup, velocity and the lead time control chart."""

from __future__ import annotations

import altair as alt
import pandas as pd

from pm_app.analytics.metrics.burndown import Burndown, Burnup
from pm_app.analytics.metrics.cycle_time import ControlChart
from pm_app.analytics.metrics.velocity import SprintVelocity, velocity_frame

IDEAL_COLOR = "#9CA3AF"
ACTUAL_COLOR = "#2563EB"
SCOPE_COLOR = "#D97706"
DONE_COLOR = "#059669"
LIMIT_COLOR = "#DC2626"


def burndown_frame(burndown: Burndown) -> pd.DataFrame:
    """Long-form frame with one row per (series, date)."""
    rows = [{"date": p["date"], "remaining": p["remaining"], "series": "Ideal"} for p in burndown.ideal]
    rows += [{"date": p["date"], "remaining": p["remaining"], "series": "Actual"} for p in burndown.actual]
    if not rows:
        return pd.DataFrame(columns=["date", "remaining", "series"])
    frame = pd.DataFrame(rows)
    frame["date"] = pd.to_datetime(frame["date"])
    return frame


def burndown_chart(burndown: Burndown):
    frame = burndown_frame(burndown)
    if frame.empty:
        return None
    unit = "Story Points" if burndown.mode == "points" else "Issues"
    return (
        alt.Chart(frame)
        .mark_line(point=True)
        .encode(
            x=alt.X("date:T", title="Date"),
            y=alt.Y("remaining:Q", title=f"Remaining {unit}"),
            color=alt.Color(
                "series:N",
                scale=alt.Scale(domain=["Ideal", "Actual"], range=[IDEAL_COLOR, ACTUAL_COLOR]),
                title=None,
            ),
            strokeDash=alt.StrokeDash(
                "series:N", scale=alt.Scale(domain=["Ideal", "Actual"], range=[[6, 4], [1, 0]]), legend=None
            ),
            tooltip=[
                alt.Tooltip("date:T", title="Date"),
                alt.Tooltip("series:N", title="Series"),
                alt.Tooltip("remaining:Q", title="Remaining"),
            ],
        )
        .properties(height=300)
    )


def burnup_chart(burnup: Burnup, mode: str = "issues"):
    if not burnup.points:
        return None
    scope_col, done_col = ("scope_points", "completed_points") if mode == "points" else ("total_scope", "completed")
    frame = pd.DataFrame(burnup.points)
    frame["date"] = pd.to_datetime(frame["date"])
    long = frame.melt(id_vars=["date"], value_vars=[scope_col, done_col], var_name="series", value_name="value")
    long["series"] = long["series"].map({scope_col: "Total Scope", done_col: "Completed"})
    return (
        alt.Chart(long)
        .mark_line(point=True)
        .encode(
            x=alt.X("date:T", title="Date"),
            y=alt.Y("value:Q", title="Story Points" if mode == "points" else "Issues"),
            color=alt.Color(
                "series:N",
                scale=alt.Scale(domain=["Total Scope", "Completed"], range=[SCOPE_COLOR, DONE_COLOR]),
                title=None,
            ),
            tooltip=[
                alt.Tooltip("date:T", title="Date"),
                alt.Tooltip("series:N", title="Series"),
                alt.Tooltip("value:Q", title="Value"),
            ],
        )
        .properties(height=300)
    )


def velocity_chart(velocity: list[SprintVelocity], mode: str = "issues"):
    frame = velocity_frame(velocity)
    if frame.empty:
        return None
    value_col = "velocity_by_points" if mode == "points" else "velocity_by_issues"
    order = frame["sprint"].tolist()
    bars = (
        alt.Chart(frame)
        .mark_bar(color=ACTUAL_COLOR)
        .encode(
            x=alt.X("sprint:N", sort=order, title="Sprint"),
            y=alt.Y(f"{value_col}:Q", title="Story Points" if mode == "points" else "Issues Closed"),
            tooltip=[
                alt.Tooltip("sprint:N", title="Sprint"),
                alt.Tooltip(f"{value_col}:Q", title="Velocity"),
                alt.Tooltip("completion_rate:Q", title="Completion %"),
            ],
        )
    )
    return bars.properties(height=300)


def control_chart(chart: ControlChart):
    """Lead time per closed issue with average, 85th percentile and upper control limit rules."""
    if not chart.points:
        return None
    frame = pd.DataFrame(chart.points)
    frame["date"] = pd.to_datetime(frame["date"])
    dots = (
        alt.Chart(frame)
        .mark_circle(size=60, color=ACTUAL_COLOR)
        .encode(
            x=alt.X("date:T", title="Closed"),
            y=alt.Y("value:Q", title="Days"),
            tooltip=[
                alt.Tooltip("iid:Q", title="Issue"),
                alt.Tooltip("title:N", title="Title"),
                alt.Tooltip("value:Q", title="Days"),
            ],
        )
    )
    limits = pd.DataFrame(
        [
            {"line": "Average", "value": chart.average},
            {"line": "85th percentile", "value": chart.p85},
            {"line": "Upper limit", "value": chart.upper_limit},
        ]
    )
    rules = (
        alt.Chart(limits)
        .mark_rule(strokeDash=[6, 4])
        .encode(
            y="value:Q",
            color=alt.Color(
                "line:N",
                scale=alt.Scale(
                    domain=["Average", "85th percentile", "Upper limit"],
                    range=[IDEAL_COLOR, SCOPE_COLOR, LIMIT_COLOR],
                ),
                title=None,
            ),
        )
    )
    return (dots + rules).properties(height=300)
