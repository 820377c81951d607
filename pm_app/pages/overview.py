"""Delivery overview: health, confidence, velocity, burndown, burnup, flow and backlog readiness."""

from __future__ import annotations

import pandas as pd
import streamlit as st

from pm_app.analytics.export import export_csv
from pm_app.app import register_page
from pm_app.visual.charts import burndown_chart, burnup_chart, control_chart, velocity_chart
from pm_app.visual.context import get_service, refresh_analytics, require_result


@register_page("Delivery Overview")
def overview_page():
    st.title("Delivery Overview")
    service = get_service()
    if service is not None and st.button("Refresh snapshot", type="primary"):
        refresh_analytics(service)
    result = require_result()
    if result is None:
        return

    mode = st.radio("Metric", ["issues", "points"], horizontal=True, format_func=str.title)
    st.caption(f"As of {result.as_of:%Y-%m-%d %H:%M} ({result.timezone}); current sprint: {result.current_sprint or 'n/a'}")

    c1, c2, c3, c4 = st.columns(4)
    c1.metric("Health", f"{result.health.total}", result.health.status.upper())
    c2.metric("Delivery confidence", f"{result.confidence.score}%", result.confidence.status)
    avg = result.average_velocity.by_points if mode == "points" else result.average_velocity.by_issues
    trend = result.trend_points if mode == "points" else result.trend_issues
    c3.metric("Avg velocity", f"{avg}", f"{trend.short_term}% vs last sprint")
    if result.forecast is not None:
        c4.metric("Forecast", result.forecast.completion_date.isoformat(), f"{result.forecast.confidence}% confidence")
    else:
        c4.metric("Forecast", "n/a")

    st.subheader("Velocity")
    chart = velocity_chart(result.velocity, mode)
    if chart is None:
        st.info("No sprint data.")
    else:
        st.altair_chart(chart, use_container_width=True)

    st.subheader(f"Burndown: {result.current_sprint or 'no sprint'}")
    chart = burndown_chart(result.burndown_points if mode == "points" else result.burndown_issues)
    if chart is None:
        st.info("No burndown for the current sprint.")
    else:
        st.altair_chart(chart, use_container_width=True)

    st.subheader("Burnup")
    chart = burnup_chart(result.burnup, mode)
    if chart is None:
        st.info("No issues in the burnup window.")
    else:
        st.altair_chart(chart, use_container_width=True)
        if result.burnup.projected_completion:
            st.caption(f"Projected completion: {result.burnup.projected_completion}")

    history = result.trend_history
    if history.points:
        st.subheader("Closed work per period")
        columns = ["points_count", "moving_avg_points"] if mode == "points" else ["issue_count", "moving_avg_issues"]
        frame = pd.DataFrame(history.points).set_index("start_date")
        st.line_chart(frame[columns])
        change = history.trend_points if mode == "points" else history.trend_issues
        st.caption(f"Second half vs first half of the window: {change:+d}%")

    if result.confidence.factors:
        st.subheader("Confidence factors")
        st.dataframe(
            pd.DataFrame(
                [
                    {"Factor": f.name, "Score": f"{f.score}/{f.max_score}", "Status": f.status, "Detail": f.detail}
                    for f in result.confidence.factors
                ]
            ),
            hide_index=True,
        )
        for rec in result.confidence.recommendations:
            st.markdown(f"- **{rec['title']}** ({rec['priority']}): {rec['description']}")

    st.subheader("Flow")
    cycle = result.cycle_time
    f1, f2, f3, f4 = st.columns(4)
    f1.metric("Avg lead time", f"{cycle.stats.avg_lead_time} d", f"median {cycle.stats.median_lead_time} d")
    f2.metric("Avg cycle time", f"{cycle.stats.avg_cycle_time} d", f"median {cycle.stats.median_cycle_time} d")
    f3.metric("Avg wait", f"{cycle.stats.avg_wait_time} d")
    f4.metric("Closed issues", cycle.stats.count)
    chart = control_chart(cycle.control_chart)
    if chart is not None:
        st.altair_chart(chart, use_container_width=True)
    for b in cycle.bottlenecks:
        st.markdown(f"- **{b.label}** ({b.severity}): {b.reason}")
        for cause, action in zip(b.root_causes, b.actions):
            st.caption(f"{cause}: {action}")

    st.subheader("Backlog health")
    backlog = result.backlog_health
    b1, b2, b3, b4 = st.columns(4)
    trend = backlog.trend
    b1.metric(
        "Score",
        backlog.health_score,
        None if trend is None or trend.direction == "stable" else f"{trend.direction} {trend.difference}",
    )
    b2.metric("Estimated", f"{backlog.refined_pct}%")
    b3.metric("Described", f"{backlog.described_pct}%")
    b4.metric("Ready", f"{backlog.ready_pct}%")
    if backlog.alert:
        st.warning(f"{backlog.alert['message']} {backlog.alert['recommendation']}")
    if backlog.needs_refinement:
        st.dataframe(
            pd.DataFrame(
                [
                    {"Issue": r["iid"], "Title": r["title"], "Missing": ", ".join(r["missing_fields"])}
                    for r in backlog.needs_refinement
                ]
            ),
            hide_index=True,
        )

    if result.epic_health:
        st.subheader("Epics")
        st.dataframe(
            pd.DataFrame(
                [
                    {"Epic": e["title"], "Progress (%)": e["progress"], "Health": e["health"], "Score": e["health_score"]}
                    for e in result.epic_health
                ]
            ),
            hide_index=True,
        )

    d1, d2 = st.columns(2)
    d1.download_button("Issues CSV", export_csv(result, "issues"), "issues.csv", "text/csv")
    d2.download_button("Velocity CSV", export_csv(result, "velocity"), "velocity.csv", "text/csv")
