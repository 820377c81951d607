from datetime import date

import pytest

from pm_app.core.errors import SnapshotValidationError, UnknownVariantError
from pm_app.core.mappers import (
    assemble_snapshot,
    issues_to_dataframe,
    map_communication,
    map_issue,
    map_risk,
    map_velocity_config,
    parse_persisted_state,
)
from pm_app.core.models import DecisionEntry, IncidentEntry


def _raw(iid=1, **kw):
    raw = {
        "iid": iid,
        "title": f"Issue {iid}",
        "state": "opened",
        "created_at": "2024-01-02T10:00:00Z",
        "labels": ["sprint::7", "sp::3"],
    }
    raw.update(kw)
    return raw


def test_map_issue_fields():
    issue = map_issue(
        _raw(
            state="closed",
            closed_at="2024-01-05T09:00:00.000Z",
            updated_at="2024-01-04T12:00:00Z",
            assignees=[{"username": "ana", "id": 4, "name": "Ana"}],
            iteration={"id": 9, "title": "Sprint 7", "start_date": "2024-01-01", "due_date": "2024-01-14"},
            milestone={"title": "Beta"},
            epic={"id": 3},
            due_date="2024-01-20",
            blocking_issues=[{"iid": 5}, "#6"],
            notes=[{"body": "mentioned in #8"}],
        )
    )
    assert issue.state == "closed"
    assert issue.assignee.username == "ana"
    assert issue.iteration.start_date == date(2024, 1, 1)
    assert issue.milestone == "Beta"
    assert issue.epic_id == 3
    assert issue.due_date == date(2024, 1, 20)
    assert issue.blocking_issues == [5, 6]
    assert issue.notes == ["mentioned in #8"]
    assert issue.closed_at.tzinfo is not None
    assert issue.updated_at.day == 4


def test_close_before_create_rejected():
    with pytest.raises(SnapshotValidationError) as exc:
        assemble_snapshot([_raw(state="closed", closed_at="2024-01-01T00:00:00Z")])
    assert exc.value.path == "issues[0].closed_at"
    assert exc.value.to_dict()["kind"] == "invariant"


def test_duplicate_iid_and_bad_weight():
    with pytest.raises(SnapshotValidationError, match="duplicate iid 1"):
        assemble_snapshot([_raw(1), _raw(1)])
    with pytest.raises(SnapshotValidationError) as exc:
        assemble_snapshot([_raw(weight=-2)])
    assert exc.value.path == "issues[0].weight"
    with pytest.raises(SnapshotValidationError):
        assemble_snapshot([_raw(state="archived")])
    with pytest.raises(SnapshotValidationError):
        assemble_snapshot([_raw(created_at=None)])


def test_iteration_dates_order_checked():
    bad = {"title": "Sprint 1", "start_date": "2024-01-14", "due_date": "2024-01-01"}
    with pytest.raises(SnapshotValidationError):
        assemble_snapshot([_raw(iteration=bad)])


def test_epics_and_milestones():
    snap = assemble_snapshot(
        [_raw(1), _raw(2, state="closed", closed_at="2024-01-03T00:00:00Z")],
        [{"id": 3, "title": "Epic", "state": "opened", "issues": [{"iid": 1}]}],
        [{"id": 4, "title": "Beta", "due_date": "2024-02-01"}],
    )
    assert snap.epics_by_id[3].issue_iids == [1]
    assert snap.milestones[0].due_date == date(2024, 2, 1)
    assert [i.iid for i in snap.open_issues()] == [1]


def test_unknown_communication_type():
    with pytest.raises(UnknownVariantError) as exc:
        map_communication({"type": "fax"}, "communications[2]")
    assert exc.value.path == "communications[2].type"


def test_communication_variants():
    decision = map_communication(
        {"type": "decision", "id": "d1", "title": "Go", "createdAt": "2024-01-02T00:00:00Z", "approvedBy": ["po"]},
        "c",
    )
    assert isinstance(decision, DecisionEntry)
    assert decision.approved_by == ["po"]
    incident = map_communication({"type": "incident", "id": "i1", "title": "Outage", "linkedIssues": [3]}, "c")
    assert isinstance(incident, IncidentEntry)
    assert not incident.is_resolved
    assert incident.linked_issues == [3]
    with pytest.raises(SnapshotValidationError):
        map_communication({"type": "email", "priority": "urgent"}, "c")


def test_risk_bounds():
    assert map_risk({"id": "r1", "title": "x", "probability": 3, "impact": 2}, "r").score == 6
    with pytest.raises(SnapshotValidationError) as exc:
        map_risk({"id": "r1", "probability": 4, "impact": 1}, "risks[0]")
    assert exc.value.path == "risks[0].probability"


def test_velocity_config_defaults_and_overrides():
    default = map_velocity_config(None)
    assert (default.mode, default.metric_type) == ("dynamic", "points")
    cfg = map_velocity_config({"mode": "static", "metricType": "issues", "staticHoursPerIssue": 5})
    assert cfg.static_hours_per_unit == 5
    assert map_velocity_config({"staticHoursPerStoryPoint": 4}).static_hours_per_point == 4
    with pytest.raises(SnapshotValidationError):
        map_velocity_config({"mode": "magic"})


def test_velocity_config_bad_hours_report_field_path():
    with pytest.raises(SnapshotValidationError) as exc:
        map_velocity_config({"staticHoursPerIssue": "eight"})
    assert exc.value.path == "velocityConfig.staticHoursPerIssue"
    with pytest.raises(SnapshotValidationError) as exc:
        map_velocity_config({"staticHoursPerStoryPoint": -2})
    assert exc.value.path == "velocityConfig.staticHoursPerStoryPoint"
    with pytest.raises(SnapshotValidationError) as exc:
        map_velocity_config({"staticHoursPerPoint": None})
    assert exc.value.path == "velocityConfig.staticHoursPerPoint"


def test_issue_keeps_every_assignee():
    issue = map_issue(
        _raw(
            assignee={"username": "bo"},
            assignees=[{"username": "bo"}, {"username": "ana", "id": 4}, {"name": "no username"}],
        )
    )
    assert issue.assignee.username == "bo"
    assert [a.username for a in issue.assignees] == ["bo", "ana"]
    assert issue.is_assigned_to("ana")
    assert not issue.is_assigned_to("cy")
    assert map_issue(_raw()).assignees == []


def test_persisted_state():
    state = parse_persisted_state(
        {
            "config": {"gitlabUrl": "https://gitlab.example.com/api/v4", "projectId": "42", "token": "t"},
            "teamConfig": {"teamMembers": [{"username": "ana", "defaultCapacity": 32, "role": "QA Engineer"}]},
            "absences": [{"username": "ana", "startDate": "2024-01-03", "endDate": "2024-01-04"}],
        }
    )
    assert state.config.project_id == "42"
    assert state.team[0].weekly_capacity == 32
    assert state.absences[0].end_date == date(2024, 1, 4)
    assert parse_persisted_state(None).team == []
    with pytest.raises(SnapshotValidationError):
        parse_persisted_state({"absences": [{"username": "ana", "startDate": "2024-01-05", "endDate": "2024-01-04"}]})


def test_issues_to_dataframe():
    snap = assemble_snapshot([_raw(1), _raw(2, weight=5)])
    df = issues_to_dataframe(snap.issues, "UTC")
    assert list(df["sprint"]) == ["7", "7"]
    assert list(df["points"]) == [3, 5]
    assert df.loc[0, "created_date"] == date(2024, 1, 2)
