from datetime import date, datetime, timedelta

import pytz

from pm_app.analytics.metrics.sprints import current_sprint, unique_iterations
from pm_app.analytics.metrics.velocity import (
    SprintVelocity,
    average_velocity,
    calculate_velocity,
    period_comparison,
    predict_completion,
    velocity_frame,
    velocity_trend,
    velocity_trend_history,
)
from pm_app.core.models import Issue, Iteration

UTC = pytz.UTC
SPRINT_1 = Iteration("Sprint 1", date(2024, 1, 1), date(2024, 1, 14), id=1)


def _issue(iid, closed=None, iteration=SPRINT_1, **kw):
    return Issue(
        iid=iid,
        title=f"Issue {iid}",
        state="closed" if closed else "open",
        created_at=datetime(2024, 1, 1, 9, 0, tzinfo=UTC),
        closed_at=closed,
        iteration=iteration,
        **kw,
    )


def _sprints(values, start=date(2024, 1, 1)):
    out = []
    for n, value in enumerate(values):
        s = start + timedelta(days=14 * n)
        out.append(
            SprintVelocity(
                sprint=f"Sprint {n + 1}",
                start_date=s,
                due_date=s + timedelta(days=13),
                total_issues=value,
                completed_issues=value,
                completed_points=value * 2,
            )
        )
    return out


def test_velocity_counts_per_sprint():
    issues = [
        _issue(1, closed=datetime(2024, 1, 5, tzinfo=UTC), weight=3),
        _issue(2, closed=datetime(2024, 1, 8, tzinfo=UTC), weight=2),
        _issue(3, closed=datetime(2024, 1, 12, tzinfo=UTC)),
        _issue(4, weight=5),
        _issue(5, iteration=None),
    ]
    velocity = calculate_velocity(issues, UTC)
    assert len(velocity) == 1
    v = velocity[0]
    assert v.sprint == "Sprint 1"
    assert (v.total_issues, v.completed_issues, v.open_issues) == (4, 3, 1)
    assert (v.total_points, v.completed_points) == (10, 5)
    assert v.completion_rate == 75
    assert v.completion_rate_points == 50
    assert sum(x.velocity_by_issues for x in velocity) == 3


def test_sprint_ordering_dates_then_numbers_then_names():
    issues = [
        _issue(1, iteration=None, labels=["sprint::10"]),
        _issue(2, iteration=None, labels=["sprint::beta"]),
        _issue(3, iteration=None, labels=["sprint::9"]),
        _issue(4, iteration=Iteration("Alpha", date(2024, 2, 1), date(2024, 2, 14))),
    ]
    names = [v.sprint for v in calculate_velocity(issues)]
    assert names == ["Alpha", "9", "10", "beta"]
    assert unique_iterations(issues) == ["beta", "10", "9", "Alpha"]


def test_empty_velocity():
    assert calculate_velocity([]) == []
    assert calculate_velocity([_issue(1, iteration=None)]) == []
    assert velocity_frame([]).empty


def test_average_velocity_uses_window_of_completed():
    velocity = _sprints([2, 4, 6, 8])
    today = date(2024, 6, 1)
    avg = average_velocity(velocity, today, window=3)
    assert avg.by_issues == 6.0
    assert avg.by_points == 12.0
    assert avg.sprints_used == 3
    # sprint ending after today is not completed
    assert average_velocity(velocity, date(2024, 1, 20)).sprints_used == 1
    assert average_velocity([], today).by_issues == 0


def test_average_velocity_rounds_to_one_decimal():
    avg = average_velocity(_sprints([1, 1, 2]), date(2024, 6, 1))
    assert avg.by_issues == 1.3


def test_trend_short_and_long_term():
    today = date(2024, 6, 1)
    trend = velocity_trend(_sprints([4, 6, 9]), today)
    assert trend.short_term == 50
    assert trend.long_term == 0

    trend = velocity_trend(_sprints([2, 2, 2, 4, 4, 4]), today)
    assert trend.short_term == 0
    assert trend.long_term == 100

    assert velocity_trend(_sprints([4]), today).short_term == 0


def test_trend_anchors_on_current_sprint():
    velocity = _sprints([4, 8, 2])
    trend = velocity_trend(velocity, date(2024, 6, 1), current="Sprint 2")
    assert trend.short_term == 100


def test_predict_completion():
    today = date(2024, 3, 1)
    forecast = predict_completion(10, 4, today)
    assert forecast.sprints_remaining == 3
    assert forecast.completion_date == today + timedelta(days=42)
    assert forecast.confidence == 68

    done = predict_completion(0, 0, today)
    assert done.sprints_remaining == 0
    assert done.confidence == 100
    assert predict_completion(5, 0, today) is None
    assert predict_completion(10, 30, today).confidence == 95


def test_current_sprint_selection():
    s1 = Iteration("Sprint 1", date(2024, 1, 1), date(2024, 1, 14))
    s2 = Iteration("Sprint 2", date(2024, 1, 15), date(2024, 1, 28))
    issues = [_issue(1, iteration=s1), _issue(2, iteration=s2)]
    assert current_sprint(issues, date(2024, 1, 20)) == "Sprint 2"
    # after both ended: the most recently ended
    assert current_sprint(issues, date(2024, 3, 1)) == "Sprint 2"
    # no dates: open sprint with the largest number
    undated = [
        _issue(1, iteration=None, labels=["sprint::3"]),
        _issue(2, iteration=None, labels=["sprint::11"]),
        _issue(3, iteration=None, labels=["sprint::12"], closed=datetime(2024, 1, 3, tzinfo=UTC)),
    ]
    assert current_sprint(undated, date(2024, 3, 1)) == "11"
    assert current_sprint([], date(2024, 3, 1)) is None


def test_period_comparison():
    today = date(2024, 3, 1)
    issues = [
        Issue(
            iid=1,
            title="recent",
            state="closed",
            created_at=datetime(2024, 2, 25, tzinfo=UTC),
            closed_at=datetime(2024, 2, 29, tzinfo=UTC),
            weight=3,
        ),
        Issue(iid=2, title="older", state="open", created_at=datetime(2024, 1, 15, tzinfo=UTC)),
    ]
    out = period_comparison(issues, today, UTC)
    assert out["current"]["issues"] == 1
    assert out["current"]["completed"] == 1
    assert out["current"]["points"] == 3
    assert out["previous"]["issues"] == 1
    assert out["changes"]["completed"] == 1


def test_trend_history_buckets_closed_work():
    today = date(2024, 3, 1)
    issues = [
        Issue(
            iid=n,
            title="x",
            state="closed",
            created_at=datetime(2024, 1, 1, tzinfo=UTC),
            closed_at=datetime(2024, 2, 20, tzinfo=UTC),
            weight=2,
        )
        for n in range(1, 4)
    ]
    history = velocity_trend_history(issues, today, UTC, months=2)
    assert sum(p["issue_count"] for p in history.points) == 3
    assert sum(p["points_count"] for p in history.points) == 6
    assert history.peak_issues == 3
    assert history.low_issues == 0
    assert [p["issue_count"] for p in history.points] == [0, 0, 0, 3, 0]
    # first half has no closures, so there is no base to compare against
    assert history.trend_issues == 0
    assert velocity_trend_history([], today).points == []
