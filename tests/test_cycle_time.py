from datetime import date, datetime

import pytz

from pm_app.analytics.metrics.cycle_time import (
    control_chart,
    cycle_time_report,
    cycle_time_stats,
    estimate_cycle_time,
    identify_bottlenecks,
    issue_phase,
    lead_time,
    lead_time_distribution,
)
from pm_app.core.models import Issue, Milestone

UTC = pytz.UTC
NOW = datetime(2024, 3, 1, tzinfo=UTC)
JAN_1 = datetime(2024, 1, 1, tzinfo=UTC)


def _issue(iid, labels=(), closed=None, created=JAN_1, **kw):
    return Issue(
        iid=iid,
        title=f"Issue {iid}",
        state="closed" if closed else "open",
        created_at=created,
        closed_at=closed,
        labels=list(labels),
        **kw,
    )


def _closed(iid, day):
    return _issue(iid, closed=datetime(2024, 1, day, tzinfo=UTC))


def test_phase_from_labels():
    assert issue_phase(_issue(1, ["workflow::In Review"])) == "review"
    assert issue_phase(_issue(2, ["Awaiting QA"])) == "awaitingTesting"
    assert issue_phase(_issue(3, ["status::doing", "Blocked"])) == "blocked"
    assert issue_phase(_issue(4, ["Ready for Release"])) == "awaitingRelease"
    assert issue_phase(_issue(5, ["priority::high"])) == "backlog"
    assert issue_phase(_issue(6)) == "backlog"
    assert issue_phase(_closed(7, 5)) == "done"


def test_lead_time_rounds_up_whole_days():
    assert lead_time(_issue(1, closed=datetime(2024, 1, 5, 12, tzinfo=UTC)), NOW) == 5
    assert lead_time(_issue(2, created=datetime(2024, 2, 20, tzinfo=UTC)), NOW) == 10


def test_cycle_time_estimates():
    closed = datetime(2024, 1, 11, tzinfo=UTC)
    # no start signal: a fifth of the lead time counts as waiting
    assert estimate_cycle_time(_issue(1, closed=closed)) == 8
    assert estimate_cycle_time(_issue(2, closed=closed, updated_at=datetime(2024, 1, 4, tzinfo=UTC))) == 7
    # an update late in the issue's life says nothing about when work began
    assert estimate_cycle_time(_issue(3, closed=closed, updated_at=datetime(2024, 1, 8, tzinfo=UTC))) == 8
    starts = {"Beta": date(2024, 1, 6)}
    assert estimate_cycle_time(_issue(4, closed=closed, milestone="Beta"), starts, UTC) == 5
    assert estimate_cycle_time(_issue(5, closed=closed, milestone="Beta"), {"Beta": date(2023, 12, 1)}, UTC) == 8
    assert estimate_cycle_time(_issue(6)) is None
    assert estimate_cycle_time(_issue(7, created=closed, closed=closed)) == 0


def _history():
    return [_closed(1, 11), _closed(2, 5), _closed(3, 7), _closed(4, 3), _issue(5)]


def test_cycle_time_stats():
    stats = cycle_time_stats(_history(), NOW, tz=UTC)
    assert stats.count == 4
    assert stats.lead_times == [2, 4, 6, 10]
    assert (stats.avg_lead_time, stats.median_lead_time, stats.min_lead_time, stats.max_lead_time) == (6, 6, 2, 10)
    assert stats.cycle_times == [2, 4, 5, 8]
    # even count: mean of the two middle values
    assert (stats.avg_cycle_time, stats.median_cycle_time) == (5, 5)
    assert (stats.min_cycle_time, stats.max_cycle_time) == (2, 8)
    assert stats.avg_wait_time == 1

    empty = cycle_time_stats([_issue(1)], NOW)
    assert empty.count == 0
    assert empty.lead_times == []


def test_lead_time_buckets():
    buckets = lead_time_distribution([2, 4, 6, 10, 90, 91])
    assert buckets == {
        "0-7 days": 3,
        "8-14 days": 1,
        "15-30 days": 0,
        "31-60 days": 0,
        "61-90 days": 1,
        "90+ days": 1,
    }


def test_control_chart_limits():
    issues = _history() + [_issue(8, created=datetime(2024, 1, 9, tzinfo=UTC), closed=datetime(2024, 1, 9, tzinfo=UTC))]
    chart = control_chart(issues, NOW, tz=UTC)
    assert [p["iid"] for p in chart.points] == [4, 2, 3, 1]
    assert [p["value"] for p in chart.points] == [2, 4, 6, 10]
    assert chart.points[0]["date"] == "2024-01-03"
    assert (chart.average, chart.median, chart.p85, chart.p95) == (6, 6, 10, 10)
    assert (chart.std_dev, chart.upper_limit, chart.lower_limit) == (3, 15, 0)
    assert control_chart([_issue(1)], NOW).points == []


def _workflow():
    touched = datetime(2024, 2, 28, tzinfo=UTC)
    issues = [_issue(i, ["In Progress"], updated_at=touched) for i in range(1, 7)]
    issues += [_issue(i, ["Blocked"], updated_at=datetime(2024, 2, 25, tzinfo=UTC)) for i in range(7, 11)]
    issues += [_issue(i, ["review"], updated_at=datetime(2024, 2, 10, tzinfo=UTC)) for i in range(11, 13)]
    issues.append(_issue(13, updated_at=touched))
    issues.append(_closed(14, 5))
    return issues


def test_bottlenecks_ranked_by_count():
    bottlenecks = identify_bottlenecks(_workflow(), NOW, UTC)
    assert [(b.phase, b.severity) for b in bottlenecks] == [
        ("inProgress", "high"),
        ("blocked", "low"),
        ("review", "medium"),
    ]
    in_progress, blocked, review = bottlenecks
    assert in_progress.count == 6
    assert in_progress.avg_time_in_phase == 2
    assert in_progress.root_causes == ["High volume of issues in In Progress"]
    assert blocked.root_causes == ["External dependencies or blockers"]
    assert review.avg_time_in_phase == 20
    assert review.reason == "Long average time in phase (20 days)"
    assert review.root_causes == ["Code review backlog or slow review process"]
    assert identify_bottlenecks([_closed(1, 5)], NOW) == []


def test_report_covers_every_phase():
    report = cycle_time_report(_workflow(), NOW, [Milestone(1, "Beta", start_date=date(2024, 1, 2))], UTC)
    assert report.phase_distribution["inProgress"] == 6
    assert report.phase_distribution["done"] == 1
    assert report.phase_distribution["testing"] == 0
    assert len(report.phase_distribution) == 11
    assert report.stats.count == 1
    assert report.to_dict()["bottlenecks"][0]["label"] == "In Progress"
