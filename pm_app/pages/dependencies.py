"""Dependency graph page: edges by level, cycles, critical path, blocked issues."""

from __future__ import annotations

import pandas as pd
import streamlit as st

from pm_app.analytics.dependencies.graph import filter_edges
from pm_app.analytics.export import to_csv
from pm_app.app import register_page
from pm_app.core.config import DEPENDENCY_LEVELS
from pm_app.visual.context import require_result


@register_page("Dependencies")
def dependencies_page():
    st.title("Dependencies")
    result = require_result()
    if result is None:
        return
    deps = result.dependencies
    level = st.selectbox("Level", list(DEPENDENCY_LEVELS), format_func=str.title)
    # The stored analysis already applies the configured level; narrow further here.
    edges = filter_edges(deps.edges, level)

    titles = {node_id: node["title"] for node_id, node in deps.nodes.items()}
    c1, c2, c3 = st.columns(3)
    c1.metric("Edges", len(edges))
    c2.metric("Cycles", len(deps.cycles))
    c3.metric("Critical path", len(deps.critical_path))

    if deps.cycles:
        st.subheader("Cycles")
        for cycle in deps.cycles:
            st.error(" -> ".join(cycle + cycle[:1]))

    if deps.critical_path:
        st.subheader("Critical path")
        st.markdown("  \n".join(f"{i + 1}. `{n}` {titles.get(n, '')}" for i, n in enumerate(deps.critical_path)))

    if deps.blocked:
        st.subheader("Blocked issues")
        st.dataframe(pd.DataFrame(deps.blocked), hide_index=True)

    if edges:
        st.subheader("Edges")
        frame = pd.DataFrame([e.to_dict() for e in edges])
        frame["source_title"] = frame["source"].map(titles)
        frame["target_title"] = frame["target"].map(titles)
        st.dataframe(frame, hide_index=True)
        st.download_button("Dependencies CSV", to_csv(frame).encode("utf-8"), "dependencies.csv", "text/csv")
    else:
        st.info("No dependencies at this level.")
