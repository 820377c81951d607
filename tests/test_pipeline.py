import json
from datetime import datetime

import pytest
import pytz

from pm_app.analytics.pipeline import analyze
from pm_app.core.config import AnalyticsConfig
from pm_app.core.errors import SnapshotValidationError

AS_OF = datetime(2024, 1, 10, 12, 0, tzinfo=pytz.UTC)
SPRINT_1 = {"id": 1, "title": "Sprint 1", "start_date": "2023-12-18", "due_date": "2023-12-29"}
SPRINT_2 = {"id": 2, "title": "Sprint 2", "start_date": "2024-01-01", "due_date": "2024-01-12"}


def _raw(iid, iteration=SPRINT_2, closed_at=None, assignee="ana", **kw):
    raw = {
        "iid": iid,
        "title": f"Issue {iid}",
        "state": "closed" if closed_at else "opened",
        "created_at": "2023-12-15T09:00:00Z",
        "closed_at": closed_at,
        "iteration": iteration,
        "weight": 3,
        "assignees": [{"username": assignee, "id": 100 + iid}] if assignee else [],
    }
    raw.update(kw)
    return raw


def _sample():
    return [
        _raw(1, SPRINT_1, "2023-12-20T10:00:00Z"),
        _raw(2, SPRINT_1, "2023-12-27T10:00:00Z"),
        _raw(3, SPRINT_2, "2024-01-03T10:00:00Z", description="depends on #4"),
        _raw(4, SPRINT_2, labels=["Blocked"]),
        _raw(5, SPRINT_2, assignee="bo", due_date="2024-01-05"),
    ]


def _documents():
    return {
        "teamConfig": {
            "teamMembers": [
                {"username": "ana", "defaultCapacity": 40, "role": "Developer"},
                {"username": "bo", "defaultCapacity": 40, "role": "Developer"},
            ]
        },
        "absences": [{"username": "bo", "startDate": "2024-01-08", "endDate": "2024-01-09"}],
        "risks": [{"id": "r1", "title": "Vendor delay", "probability": 2, "impact": 3}],
        "communications": [
            {"type": "decision", "id": "d1", "title": "Scope cut", "sentAt": "2024-01-04T10:00:00Z"},
            {"type": "incident", "id": "i1", "title": "Outage", "createdAt": "2024-01-08T10:00:00Z", "linkedIssues": [4]},
        ],
        "velocityConfig": {"mode": "static", "metricType": "points", "staticHoursPerPoint": 6},
    }


def test_empty_snapshot():
    result = analyze([], config=AnalyticsConfig(as_of=AS_OF))
    assert result.velocity == []
    assert result.average_velocity.by_issues == 0
    assert result.average_velocity.by_points == 0
    assert result.health.total == 0
    assert result.health.status == "red"
    assert result.insights == []
    assert result.dependencies.edges == []
    assert result.dependencies.cycles == []
    assert result.forecast is None
    assert result.confidence.status == "unknown"
    assert result.capacity == []
    assert result.cycle_time.stats.count == 0
    assert result.backlog_health.health_score == 100


def test_full_run():
    result = analyze(_sample(), documents=_documents(), config=AnalyticsConfig(as_of=AS_OF))
    assert result.today.isoformat() == "2024-01-10"
    assert result.current_sprint == "Sprint 2"
    assert [v.sprint for v in result.velocity] == ["Sprint 1", "Sprint 2"]
    assert result.velocity[0].completed_issues == 2
    assert result.average_velocity.by_issues == 2.0
    assert result.forecast.sprints_remaining == 1
    assert result.burndown_issues.total == 3
    assert result.stats.overdue == 1
    assert result.stats.blockers == 1
    assert [(e.source, e.target) for e in result.dependencies.edges] == [("issue-3", "issue-4")]
    # issue 3 is already closed, so nothing is reported as blocked
    assert result.dependencies.blocked == []

    caps = {c.username: c for c in result.capacity}
    assert caps["ana"].metric_value == 3
    assert caps["ana"].allocated_hours == 18
    assert caps["bo"].absence_hours == 16.0
    assert result.capacity_impact["capacity_loss"] == 16

    assert result.risks["by_score"]["high"] == 1
    assert result.communications["total"] == 2
    assert result.communications["by_issue"] == {4: ["i1"]}
    assert len(result.communications["open_incidents"]) == 1
    assert result.cycle_time.stats.lead_times == [6, 13, 20]
    assert result.backlog_health.health_score == 35
    assert "Backlog Not Ready for Planning" in [i.title for i in result.insights]
    assert result.insight_stats["total"] == len(result.insights)


def test_repeat_runs_are_identical():
    config = AnalyticsConfig(as_of=AS_OF, timezone="America/Santiago")
    first = analyze(_sample(), documents=_documents(), config=config).to_dict()
    second = analyze(_sample(), documents=_documents(), config=config).to_dict()
    assert first == second
    assert json.loads(json.dumps(first)) == first


def test_invalid_snapshot_is_rejected():
    bad = _sample() + [_raw(6, closed_at="2023-12-01T00:00:00Z")]
    with pytest.raises(SnapshotValidationError):
        analyze(bad, config=AnalyticsConfig(as_of=AS_OF))


def test_config_validation():
    with pytest.raises(ValueError):
        AnalyticsConfig(as_of=AS_OF, capacity_scope="some")
    with pytest.raises(ValueError):
        AnalyticsConfig(as_of=AS_OF, dependency_level="team")
