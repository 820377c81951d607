"""Team capacity: utilization per member, absences and reallocation suggestions."""

from __future__ import annotations

import pandas as pd
import streamlit as st

from pm_app.analytics.export import export_csv
from pm_app.app import register_page
from pm_app.visual.context import get_service, require_result


def _capacity_table(result) -> pd.DataFrame:
    return pd.DataFrame(
        [
            {
                "Member": c.name,
                "Role": c.role,
                "Available (h)": round(c.available_capacity, 1),
                "Absence (h)": c.absence_hours,
                "Allocated (h)": round(c.allocated_hours, 1),
                "Utilization (%)": c.utilization,
                "Status": c.status,
                "Rate": f"{c.hours_per_unit} h/{'pt' if c.metric_type == 'points' else 'issue'} ({c.hours_source})",
            }
            for c in result.capacity
        ]
    )


@register_page("Team Capacity")
def team_capacity_page():
    st.title("Team Capacity")
    result = require_result()
    if result is None:
        return
    if not result.capacity:
        st.info("No team members configured.")
        return

    st.caption(f"Sprint: {result.current_sprint or 'none (default 10 working days)'}")
    table = _capacity_table(result)
    colors = {c.name: c.color for c in result.capacity}
    st.dataframe(
        table.style.apply(
            lambda row: [f"color: {colors.get(row['Member'], '')}" if col == "Status" else "" for col in row.index],
            axis=1,
        ),
        hide_index=True,
    )
    impact = result.capacity_impact
    if impact.get("capacity_loss"):
        st.caption(
            f"Absences remove {impact['capacity_loss']} h of {impact['total_capacity']} h "
            f"({impact['loss_percentage']}%) this sprint."
        )
    st.download_button("Capacity CSV", export_csv(result, "capacity"), "capacity.csv", "text/csv")

    st.subheader("Reallocation suggestions")
    plan = result.reallocation
    for warning in plan.warnings:
        st.warning(f"{warning['from_member']}: {warning['detail']}")
    if not plan.suggestions:
        st.info("No reallocation needed.")
        return

    service = get_service()
    users = {m.username: m.user_id for m in service.load_state().team} if service else {}
    picks = []
    for idx, s in enumerate(plan.suggestions):
        label = (
            f"{s.from_member} -> {s.to_member}: {s.suggested_units} {s.metric_type} "
            f"(issues {', '.join(f'#{i}' for i in s.issue_iids) or 'n/a'})"
        )
        st.markdown(f"**{label}**  \n{s.rationale}")
        if users.get(s.to_member) and s.issue_iids and st.checkbox("Apply", key=f"realloc-{idx}"):
            picks.extend((iid, users[s.to_member]) for iid in s.issue_iids)

    if picks and st.button("Reassign selected issues", type="primary"):
        outcome = service.reassign(picks)
        if outcome.successful:
            st.success(f"Reassigned {', '.join(f'#{i}' for i in outcome.successful)}.")
        for failure in outcome.failed:
            st.error(f"#{failure['issue']} failed ({failure['status']}): {failure['error']}")
