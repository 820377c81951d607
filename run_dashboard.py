"""Convenience launcher for the Streamlit app.

Usage:
  streamlit run run_dashboard.py

Automatically imports every module in ``pm_app/pages`` so each page
decorated with ``@register_page`` registers itself without manual edits here.
"""

import logging
from importlib import import_module
from pathlib import Path

import streamlit as st

from pm_app.app import main

st.set_page_config(layout="wide")
logger = logging.getLogger("pm_app")


def _auto_init_snapshot_service():
    """Initialize the snapshot service from the saved config document if present."""
    if "snapshot_service" in st.session_state:
        return

    from pm_app.core.errors import PMAnalyticsError
    from pm_app.core.service import SnapshotService
    from pm_app.visual.context import get_store

    try:
        st.session_state["snapshot_service"] = SnapshotService.from_store(get_store())
        st.sidebar.success("GitLab connection loaded from saved settings.")
    except (PMAnalyticsError, ValueError) as e:
        st.sidebar.warning(f"No usable GitLab settings ({e}). Please use the Setup page.")


_auto_init_snapshot_service()

PAGES_DIR = Path(__file__).parent / "pm_app" / "pages"
for py in sorted(PAGES_DIR.glob("[!_]*.py")):
    mod_name = f"pm_app.pages.{py.stem}"
    try:
        import_module(mod_name)
    except ImportError as e:  # pragma: no cover
        logger.error("Failed importing page %s: %s", mod_name, e)

if __name__ == "__main__":
    main()
