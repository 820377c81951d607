"""Insights page: rule-based findings plus risk and communications summaries."""

from __future__ import annotations

import streamlit as st

from pm_app.analytics.export import export_csv
from pm_app.app import register_page
from pm_app.visual.context import require_result

_BANNERS = {"critical": st.error, "warning": st.warning, "info": st.info, "success": st.success}


@register_page("Insights")
def insights_page():
    st.title("Insights")
    result = require_result()
    if result is None:
        return

    stats = result.insight_stats
    cols = st.columns(4)
    for col, kind in zip(cols, ("critical", "warning", "info", "success")):
        col.metric(kind.title(), stats.get(kind, 0))

    categories = sorted({i.category for i in result.insights})
    chosen = st.multiselect("Categories", categories, default=categories)
    for insight in result.insights:
        if insight.category not in chosen:
            continue
        banner = _BANNERS.get(insight.type, st.info)
        banner(
            f"**{insight.title}**  \n{insight.description}  \n"
            f"*Impact:* {insight.impact}  \n*Recommendation:* {insight.recommendation} "
            f"(confidence: {insight.confidence})"
        )
    if not result.insights:
        st.success("No findings. Nothing needs attention right now.")
    else:
        st.download_button("Insights CSV", export_csv(result, "insights"), "insights.csv", "text/csv")

    st.subheader("Risks")
    risks = result.risks
    if risks.get("total"):
        st.write(risks["by_score"])
        st.dataframe(risks["top"], hide_index=True)
        st.download_button("Risks CSV", export_csv(result, "risks"), "risks.csv", "text/csv")
    else:
        st.caption("Risk register is empty.")

    st.subheader("Communications")
    comms = result.communications
    if comms.get("total"):
        st.write(comms["by_type"])
        if comms["open_incidents"]:
            st.warning(f"{len(comms['open_incidents'])} open incident(s)")
        if comms["pending_decisions"]:
            st.info(f"{len(comms['pending_decisions'])} decision(s) awaiting approval")
        st.bar_chart({row["week"]: row["total"] for row in comms["timeline"]})
    else:
        st.caption("No communications logged.")
