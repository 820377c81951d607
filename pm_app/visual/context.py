"""Session helpers shared by the pages: store, service, time zone and the latest analytics run."""

from __future__ import annotations

from pathlib import Path

import streamlit as st

from pm_app.analytics.pipeline import AnalyticsResult, build_analytics
from pm_app.core.config import TIMEZONE, AnalyticsConfig
from pm_app.core.errors import PMAnalyticsError
from pm_app.core.mappers import map_project_config
from pm_app.core.service import SnapshotService
from pm_app.core.storage import JsonDocumentStore

from .progress import ProgressReporter

DEFAULT_STORE_DIR = Path.home() / ".gitlab_pm"


def get_store() -> JsonDocumentStore:
    store = st.session_state.get("document_store")
    if store is None:
        store = JsonDocumentStore(st.session_state.get("store_dir") or DEFAULT_STORE_DIR)
        st.session_state["document_store"] = store
    return store


def get_service() -> SnapshotService | None:
    return st.session_state.get("snapshot_service")


def get_result() -> AnalyticsResult | None:
    return st.session_state.get("analytics_result")


def current_timezone() -> str:
    """Session choice first, then the saved ``config`` document, then the default."""
    chosen = st.session_state.get("timezone")
    if chosen:
        return chosen
    try:
        return map_project_config(get_store().load("config")).timezone
    except PMAnalyticsError:
        return TIMEZONE


def set_timezone(name: str) -> AnalyticsResult | None:
    """Remember ``name``, save it with the connection settings and re-run on the cached snapshot."""
    st.session_state["timezone"] = name
    store = get_store()
    saved = store.load("config")
    if saved:
        store.save("config", {**saved, "timezone": name})
    return reanalyze()


def analytics_config() -> AnalyticsConfig:
    return AnalyticsConfig(timezone=current_timezone())


def reanalyze() -> AnalyticsResult | None:
    """Run the pipeline again on the snapshot already in the session; no fetch."""
    snapshot = st.session_state.get("snapshot")
    service = get_service()
    if snapshot is None or service is None:
        return None
    try:
        result = build_analytics(snapshot, service.load_state(), analytics_config())
    except (PMAnalyticsError, ValueError) as exc:
        st.sidebar.error(f"Re-analysis failed: {exc}")
        return None
    st.session_state["analytics_result"] = result
    return result


def refresh_analytics(service: SnapshotService, config: AnalyticsConfig | None = None) -> AnalyticsResult | None:
    """Fetch a fresh snapshot, run the pipeline and keep the result in the session."""
    reporter = ProgressReporter("Refreshing GitLab snapshot")
    try:
        snapshot = service.fetch_snapshot(progress=reporter.callback)
        state = service.load_state()
        result = build_analytics(snapshot, state, config or analytics_config())
        service.record_backlog_health(result.backlog_health.history_entry(result.as_of))
    except (PMAnalyticsError, ValueError) as exc:
        reporter.error(f"Refresh failed: {exc}")
        return None
    st.session_state["snapshot"] = snapshot
    st.session_state["analytics_result"] = result
    reporter.complete(f"Analyzed {len(snapshot.issues)} issues.")
    return result


def require_result() -> AnalyticsResult | None:
    result = get_result()
    if result is None:
        if get_service() is None:
            st.warning("Initialize the connection on the Setup page first.")
        else:
            st.info("No analytics yet. Use Refresh on the Delivery Overview page.")
    return result
