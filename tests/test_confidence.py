from datetime import date, datetime

import pytz

from pm_app.analytics.metrics.burndown import Burnup
from pm_app.analytics.metrics.confidence import coefficient_of_variation, delivery_confidence
from pm_app.analytics.metrics.velocity import SprintVelocity, VelocityTrend
from pm_app.core.models import Issue


def _issue(iid, labels=(), state="open"):
    return Issue(
        iid=iid,
        title=f"Issue {iid}",
        state=state,
        created_at=datetime(2024, 1, 1, tzinfo=pytz.UTC),
        labels=list(labels),
    )


def _completed(values):
    return [
        SprintVelocity(sprint=f"Sprint {n}", start_date=date(2024, 1, 1), due_date=date(2024, 1, 14), completed_issues=v)
        for n, v in enumerate(values, start=1)
    ]


def _burnup(first_remaining, last_remaining, total, completed):
    return Burnup(
        points=[{"remaining": first_remaining}, {"remaining": last_remaining}],
        total_scope=total,
        completed=completed,
        remaining=last_remaining,
    )


def test_all_factors_high():
    conf = delivery_confidence(
        [_issue(1), _issue(2, state="closed")],
        _completed([10, 10, 10]),
        _burnup(20, 15, 100, 85),
        VelocityTrend(short_term=0, long_term=15),
    )
    assert [f.score for f in conf.factors] == [30, 25, 20, 15, 10]
    assert conf.score == 100
    assert conf.status == "high"
    assert conf.factor("Scope Stability").detail.startswith("Gap shrinking: 25%")
    assert conf.recommendations == []


def test_consistency_left_out_with_few_sprints():
    conf = delivery_confidence(
        [_issue(1)],
        _completed([10, 10]),
        _burnup(20, 15, 100, 85),
        VelocityTrend(long_term=15),
    )
    assert conf.factor("Velocity Consistency") is None
    assert conf.max_score == 70
    assert conf.score == 100


def test_blockers_and_decline_lower_the_score():
    issues = [_issue(1, labels=["Blocked"]), _issue(2), _issue(3)]
    conf = delivery_confidence(issues, _completed([2, 10, 20]), _burnup(10, 20, 40, 10), VelocityTrend(long_term=-30))
    assert conf.factor("Risk Profile").score == 0
    assert conf.factor("Velocity Trend").score == 0
    assert conf.factor("Scope Stability").score == 0
    assert conf.blocker_count == 1
    assert conf.status in ("low", "critical")
    titles = {r["title"] for r in conf.recommendations}
    assert "Address blockers immediately" in titles
    assert "Investigate velocity decline" in titles
    assert "Address growing backlog" in titles


def test_empty_issues_unknown():
    conf = delivery_confidence([], [], Burnup(), VelocityTrend())
    assert conf.score == 0
    assert conf.status == "unknown"
    assert conf.factors == []


def test_coefficient_of_variation():
    assert coefficient_of_variation([10, 10, 10]) == 0
    assert coefficient_of_variation([]) == 100
    assert round(coefficient_of_variation([5, 15]), 1) == 50.0
