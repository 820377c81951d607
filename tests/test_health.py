from datetime import date, datetime

import pytz

from pm_app.analytics.metrics.health import IssueStats, calculate_stats, epic_health, health_score
from pm_app.core.models import Epic, Issue

TODAY = date(2024, 3, 1)


def _issue(iid, state="open", due=None, labels=(), epic_id=None):
    return Issue(
        iid=iid,
        title=f"Issue {iid}",
        state=state,
        created_at=datetime(2024, 1, 1, tzinfo=pytz.UTC),
        due_date=due,
        labels=list(labels),
        epic_id=epic_id,
    )


def test_stats_count_open_issues_only():
    issues = [
        _issue(1, due=date(2024, 2, 28)),  # overdue
        _issue(2, due=date(2024, 3, 8)),  # at risk (7 days)
        _issue(3, due=date(2024, 3, 9)),  # neither
        _issue(4, due=date(2024, 3, 1)),  # due today: at risk
        _issue(5, state="closed", due=date(2024, 1, 1), labels=["blocked"]),
        _issue(6, labels=["Blocker"]),
    ]
    stats = calculate_stats(issues, TODAY)
    assert (stats.total, stats.open, stats.closed) == (6, 5, 1)
    assert stats.overdue == 1
    assert stats.at_risk == 2
    assert stats.blockers == 1
    assert stats.completion_rate == 17


def test_health_weighted_total():
    stats = IssueStats(total=10, open=5, closed=5, blockers=1, overdue=2, at_risk=1, completion_rate=50)
    health = health_score(stats)
    assert (health.completion, health.schedule, health.blocker, health.risk) == (50, 80, 80, 80)
    assert health.total == 71
    assert health.status == "amber"


def test_health_green_and_red():
    assert health_score(IssueStats(total=4, open=0, closed=4)).status == "green"
    empty = health_score(calculate_stats([], TODAY))
    assert empty.total == 0
    assert empty.status == "red"


def test_epic_health_by_link_and_child_list():
    epic = Epic(id=7, title="Checkout", state="open", issue_iids=[3])
    issues = [_issue(1, state="closed", epic_id=7), _issue(2, epic_id=7), _issue(3), _issue(4)]
    out = epic_health(epic, issues, TODAY)
    assert out["epic_id"] == 7
    assert out["stats"]["total"] == 3
    assert out["progress"] == 33
    assert out["health"] in ("green", "amber", "red")
