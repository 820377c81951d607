from datetime import datetime

import pytest
import pytz

from pm_app.analytics.pipeline import analyze
from pm_app.app import PAGES, default_page, ordered_pages, register_page, timezone_options
from pm_app.core.config import AnalyticsConfig
from pm_app.core.errors import SnapshotValidationError
from pm_app.core.mappers import map_project_config
from pm_app.pages import team_capacity as team_capacity_page


def test_register_page_adds_to_registry():
    @register_page("Scratch")
    def scratch():
        return "ok"

    try:
        assert PAGES["Scratch"] is scratch
    finally:
        PAGES.pop("Scratch", None)


def test_capacity_table_rows():
    issues = [
        {
            "iid": 1,
            "title": "A",
            "state": "opened",
            "created_at": "2024-01-02T00:00:00Z",
            "labels": ["sprint::1"],
            "weight": 5,
            "assignees": [{"username": "ana"}],
        }
    ]
    docs = {
        "teamConfig": {"teamMembers": [{"username": "ana", "name": "Ana", "defaultCapacity": 40}]},
        "velocityConfig": {"mode": "static"},
    }
    result = analyze(issues, documents=docs, config=AnalyticsConfig(as_of=datetime(2024, 1, 10, tzinfo=pytz.UTC)))
    table = team_capacity_page._capacity_table(result)
    assert list(table["Member"]) == ["Ana"]
    assert table.loc[0, "Allocated (h)"] == 30.0
    assert table.loc[0, "Rate"] == "6.0 h/pt (static)"


def test_page_order_and_default_page():
    pages = ordered_pages(["Setup / Connection", "Zeta", "Insights", "Delivery Overview", "Alpha"])
    assert pages == ["Delivery Overview", "Insights", "Setup / Connection", "Alpha", "Zeta"]
    assert default_page(pages, connected=False) == 2
    assert default_page(pages, connected=True) == 0
    assert default_page(["Delivery Overview"], connected=False) == 0


def test_timezone_options_include_current():
    options, index = timezone_options("America/Santiago")
    assert options[index] == "America/Santiago"
    options, index = timezone_options("Etc/GMT+3")
    assert options[index] == "Etc/GMT+3"
    assert options.count("Etc/GMT+3") == 1


def test_timezone_is_validated():
    assert AnalyticsConfig(timezone="Europe/Madrid", as_of=datetime(2024, 1, 1)).now().tzinfo is not None
    with pytest.raises(ValueError):
        AnalyticsConfig(timezone="Mars/Olympus")
    assert map_project_config({"timezone": "America/Santiago"}).timezone == "America/Santiago"
    assert map_project_config({}).timezone == "UTC"
    with pytest.raises(SnapshotValidationError) as exc:
        map_project_config({"timezone": "Nowhere"})
    assert exc.value.path == "config.timezone"
