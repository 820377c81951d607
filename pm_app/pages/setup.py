"""Connection setup page: collect GitLab settings and initialize SnapshotService."""

from __future__ import annotations

import streamlit as st

from pm_app.app import register_page
from pm_app.core.gitlab_client import GitLabAPI
from pm_app.core.mappers import map_project_config
from pm_app.core.service import SnapshotService
from pm_app.core.storage import JsonDocumentStore
from pm_app.visual.context import DEFAULT_STORE_DIR, current_timezone


@register_page("Setup / Connection")
def setup_page():
    st.title("GitLab Connection Setup")
    st.caption("Settings are saved to the local document store (the access token included).")

    store_dir = st.text_input(
        "Local data directory", value=str(st.session_state.get("store_dir") or DEFAULT_STORE_DIR)
    )
    store = JsonDocumentStore(store_dir)
    saved = map_project_config(store.load("config"))
    gitlab_secrets = st.secrets.get("gitlab", {})

    base_url = st.text_input(
        "GitLab API URL",
        value=saved.base_url or gitlab_secrets.get("GITLAB_URL") or "https://gitlab.com/api/v4",
    )
    token = st.text_input("Access Token", type="password", value=saved.token or gitlab_secrets.get("GITLAB_TOKEN") or "")
    project_id = st.text_input("Project ID or path", value=saved.project_id)
    group_path = st.text_input("Group path (for epics)", value=saved.group_path)
    year_filter = st.checkbox("Only current-year issues (plus anything still open)", value=saved.year_filter)
    ttl = st.number_input("Client cache TTL (seconds)", min_value=60, max_value=3600, value=300)

    if st.button("Save & Connect", type="primary"):
        if not (base_url and token and project_id):
            st.error("URL, token and project are required.")
            return
        store.save(
            "config",
            {
                "gitlabUrl": base_url,
                "token": token,
                "projectId": project_id,
                "groupPath": group_path,
                "yearFilter": year_filter,
                "timezone": current_timezone(),
            },
        )
        api = GitLabAPI(base_url, token)
        api._cache_ttl = float(ttl)
        st.session_state["store_dir"] = store_dir
        st.session_state["document_store"] = store
        st.session_state["snapshot_service"] = SnapshotService(api, store)
        st.success("Connection initialized.")

    if "snapshot_service" in st.session_state:
        st.info("SnapshotService ready.")
