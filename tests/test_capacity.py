from datetime import date, datetime

import pytz

from pm_app.analytics.capacity.capacity import (
    calculate_capacity,
    capacity_status,
    compatible_roles,
    member_capacity,
    reallocation_suggestions,
    roles_compatible,
    sprint_capacity_impact,
)
from pm_app.analytics.capacity.member_velocity import (
    HoursPerUnit,
    absence_hours,
    member_velocity,
    resolve_hours_per_unit,
    team_average_velocity,
)
from pm_app.analytics.metrics.sprints import SprintInfo
from pm_app.core.models import Absence, Assignee, Issue, Iteration, TeamMember, VelocityConfig

UTC = pytz.UTC
SPRINT = SprintInfo("Sprint 5", date(2024, 1, 1), date(2024, 1, 12))
ITERATION = Iteration("Sprint 5", date(2024, 1, 1), date(2024, 1, 12))
STATIC_POINTS = VelocityConfig(mode="static", metric_type="points", static_hours_per_point=6)


def _issue(iid, user, weight=None, state="open", iteration=ITERATION):
    return Issue(
        iid=iid,
        title=f"Issue {iid}",
        state=state,
        created_at=datetime(2023, 12, 20, tzinfo=UTC),
        closed_at=datetime(2024, 1, 10, tzinfo=UTC) if state == "closed" else None,
        weight=weight,
        assignee=Assignee(username=user) if user else None,
        iteration=iteration,
    )


def test_capacity_status_buckets():
    assert capacity_status(120) == "overloaded"
    assert capacity_status(100) == "overloaded"
    assert capacity_status(80) == "at-capacity"
    assert capacity_status(60) == "busy"
    assert capacity_status(59) == "available"


def test_absence_reduces_available_capacity():
    member = TeamMember("ana", weekly_capacity=40)
    absences = [Absence("ana", date(2024, 1, 3), date(2024, 1, 4)), Absence("bo", date(2024, 1, 1), date(2024, 1, 12))]
    rate = HoursPerUnit(6, "static", "configured", "")
    cap = member_capacity(member, [], absences, SPRINT, rate, "points")
    assert cap.sprint_work_days == 10
    assert cap.sprint_capacity == 80
    assert cap.absence_hours == 16.0
    assert cap.available_capacity == 64
    assert cap.utilization == 0
    assert cap.status == "available"


def test_static_allocation_is_metric_times_rate():
    team = [TeamMember("ana", weekly_capacity=40)]
    issues = [
        _issue(1, "ana", weight=3),
        _issue(2, "ana", weight=5),
        _issue(3, "ana", weight=8, state="closed"),
        _issue(4, "ana", weight=2, iteration=None),
    ]
    absences = [Absence("ana", date(2024, 1, 3), date(2024, 1, 4))]
    caps, _, _ = calculate_capacity(team, absences, issues, STATIC_POINTS, SPRINT)
    cap = caps[0]
    assert cap.metric_value == 8
    assert cap.allocated_hours == 48
    assert cap.utilization == 75
    assert cap.status == "busy"
    assert cap.hours_source == "static"
    assert cap.issue_iids == [1, 2]

    caps, _, _ = calculate_capacity(team, absences, issues, STATIC_POINTS, SPRINT, scope="all")
    assert caps[0].metric_value == 16


def test_shared_issue_counts_for_each_assignee():
    team = [TeamMember("ana", weekly_capacity=40), TeamMember("bo", weekly_capacity=40)]
    shared = _issue(1, "ana", weight=4)
    shared.assignees = [Assignee("ana"), Assignee("bo")]
    caps, _, _ = calculate_capacity(team, [], [shared], STATIC_POINTS, SPRINT)
    assert [c.metric_value for c in caps] == [4, 4]
    assert caps[1].issue_iids == [1]


def test_no_sprint_uses_default_work_days():
    team = [TeamMember("ana", weekly_capacity=20)]
    issues = [_issue(1, "ana", weight=3, iteration=None)]
    caps, _, _ = calculate_capacity(team, [Absence("ana", date(2024, 1, 3), date(2024, 1, 4))], issues, STATIC_POINTS, None)
    assert caps[0].sprint_work_days == 10
    assert caps[0].sprint_capacity == 40
    assert caps[0].absence_hours == 0
    assert caps[0].metric_value == 3


def test_empty_team():
    caps, velocities, team_velocity = calculate_capacity([], [], [], STATIC_POINTS, SPRINT)
    assert caps == []
    assert velocities == {}
    assert team_velocity.hours_per_unit is None


def test_role_compatibility():
    assert roles_compatible("Product Owner", "Initiative Manager")
    assert roles_compatible("Developer", "QA Engineer")
    assert not roles_compatible("Developer", "Product Owner")
    assert roles_compatible("Custom", "Custom")
    assert not roles_compatible("Custom", "Developer")
    assert compatible_roles("Custom") == []
    assert "Product Owner" in compatible_roles("Business Analyst")


def _history():
    s1 = Iteration("Sprint 1", date(2024, 1, 1), date(2024, 1, 12))
    s2 = Iteration("Sprint 2", date(2024, 1, 15), date(2024, 1, 26))
    return [
        _issue(10, "ana", weight=5, state="closed", iteration=s1),
        _issue(11, "ana", weight=3, state="closed", iteration=s1),
        _issue(12, "ana", weight=8, state="closed", iteration=s2),
        _issue(13, "ana", state="closed", iteration=s2),  # no points: ignored in points mode
    ]


def test_member_velocity_from_history():
    ana = TeamMember("ana", weekly_capacity=40)
    mv = member_velocity(ana, _history(), [], lookback=3, metric_type="points")
    assert mv.iterations_analyzed == 2
    assert mv.total_metric_value == 16
    assert mv.total_hours_available == 160
    assert mv.hours_per_unit == 10.0
    assert mv.data_quality == "moderate"

    with_absence = member_velocity(ana, _history(), [Absence("ana", date(2024, 1, 15), date(2024, 1, 19))])
    assert with_absence.hours_per_unit == 7.5

    assert member_velocity(TeamMember("bo"), _history(), []).data_quality == "no-history"


def test_rate_resolution_falls_back():
    config = VelocityConfig(mode="dynamic", metric_type="points", min_iterations_for_individual=2)
    ana = member_velocity(TeamMember("ana"), _history(), [])
    bo = member_velocity(TeamMember("bo"), _history(), [])
    team = team_average_velocity([ana, bo], "points", 2)
    assert team.hours_per_unit == 10.0
    assert team.members_analyzed == 1

    assert resolve_hours_per_unit(ana, team, config).source == "individual"
    assert resolve_hours_per_unit(bo, team, config).source == "team-average"
    fallback = resolve_hours_per_unit(bo, team_average_velocity([bo], "points"), config)
    assert (fallback.hours, fallback.source) == (6.0, "static")


def test_reallocation_picks_smallest_issues():
    team = [TeamMember("ana", role="Developer"), TeamMember("cy", role="QA Engineer"), TeamMember("po", role="Product Owner")]
    issues = [
        _issue(1, "ana", weight=5),
        _issue(2, "ana", weight=5),
        _issue(3, "ana", weight=5),
        _issue(4, "ana", weight=5),
        _issue(5, "ana", weight=2),
    ]
    caps, _, _ = calculate_capacity(team, [], issues, STATIC_POINTS, SPRINT)
    by_user = {c.username: c for c in caps}
    assert by_user["ana"].utilization == 165
    assert by_user["ana"].status == "overloaded"

    plan = reallocation_suggestions(caps)
    assert plan.warnings == []
    assert [(s.from_member, s.to_member) for s in plan.suggestions] == [("ana", "cy")]
    suggestion = plan.suggestions[0]
    assert suggestion.suggested_units == 9
    assert suggestion.issue_iids == [5, 1]
    assert "Compatible roles" in suggestion.rationale


def test_reallocation_warns_without_compatible_target():
    team = [TeamMember("zed", role="Custom"), TeamMember("ana", role="Developer")]
    issues = [_issue(i, "zed", weight=8) for i in range(1, 4)]
    caps, _, _ = calculate_capacity(team, [], issues, STATIC_POINTS, SPRINT)
    plan = reallocation_suggestions(caps)
    assert plan.suggestions == []
    assert plan.warnings[0]["type"] == "no-compatible-target"
    assert plan.warnings[0]["from_member"] == "zed"


def test_sprint_capacity_impact():
    team = [TeamMember("ana", weekly_capacity=40), TeamMember("bo", weekly_capacity=40)]
    absences = [Absence("ana", date(2024, 1, 3), date(2024, 1, 4))]
    impact = sprint_capacity_impact(team, absences, SPRINT)
    assert impact["total_capacity"] == 160
    assert impact["capacity_loss"] == 16
    assert impact["loss_percentage"] == 10
    assert impact["affected_members"] == [{"username": "ana", "hours_lost": 16.0}]
    assert sprint_capacity_impact(team, absences, None)["capacity_loss"] == 0


def test_absence_hours_clips_to_window():
    absences = [Absence("ana", date(2023, 12, 28), date(2024, 1, 2))]
    assert absence_hours("ana", absences, date(2024, 1, 1), date(2024, 1, 12), 40) == 16.0
