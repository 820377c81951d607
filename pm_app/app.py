"""Application entry point: page registry, sidebar context and router."""

from __future__ import annotations

import pytz
import streamlit as st

from pm_app.core.errors import PMAnalyticsError
from pm_app.visual.context import current_timezone, get_result, get_service, set_timezone

PAGES = {}

SETUP_PAGE = "Setup / Connection"
PAGE_ORDER = (
    "Delivery Overview",
    "Team Capacity",
    "Dependencies",
    "Insights",
    SETUP_PAGE,
)


def register_page(label):
    def decorator(func):
        PAGES[label] = func
        return func

    return decorator


def ordered_pages(names) -> list[str]:
    """Known pages in workflow order, anything else alphabetically after them."""
    names = list(names)
    ordered = [name for name in PAGE_ORDER if name in names]
    return ordered + sorted(name for name in names if name not in PAGE_ORDER)


def default_page(pages: list[str], connected: bool) -> int:
    if not connected and SETUP_PAGE in pages:
        return pages.index(SETUP_PAGE)
    return 0


def timezone_options(current: str) -> tuple[list[str], int]:
    """Common zones plus ``current`` when it is not among them, and its index."""
    options = list(pytz.common_timezones)
    if current not in options:
        options.append(current)
    return options, options.index(current)


def _sidebar_context():
    service = get_service()
    if service is None:
        st.sidebar.caption("Not connected")
    else:
        try:
            config = service.project_config()
        except PMAnalyticsError as exc:
            st.sidebar.warning(f"Saved settings unreadable: {exc}")
        else:
            st.sidebar.caption(f"Project: {config.project_id or 'n/a'}")
            if config.group_path:
                st.sidebar.caption(f"Epics from: {config.group_path}")

    current = current_timezone()
    options, index = timezone_options(current)
    chosen = st.sidebar.selectbox("Time zone", options, index=index, help="Local zone for day boundaries")
    if chosen != current:
        set_timezone(chosen)

    result = get_result()
    if result is not None:
        st.sidebar.caption(
            f"{len(result.issues)} issues as of {result.as_of:%Y-%m-%d %H:%M}; "
            f"sprint {result.current_sprint or 'n/a'}"
        )
    return service is not None


def main():
    st.sidebar.title("GitLab PM Analytics")
    pages = ordered_pages(PAGES)
    if not pages:
        st.write("No pages registered yet.")
        return
    connected = _sidebar_context()
    page = st.sidebar.selectbox("Page", pages, index=default_page(pages, connected))
    PAGES[page]()


if __name__ == "__main__":
    main()
