from datetime import date, datetime, timedelta

import pytz

from pm_app.analytics.dependencies.graph import DependencyAnalysis
from pm_app.analytics.insights.rules import InsightContext, generate_insights, insight_stats
from pm_app.analytics.metrics.backlog_health import backlog_health
from pm_app.analytics.metrics.cycle_time import identify_bottlenecks
from pm_app.analytics.metrics.health import IssueStats
from pm_app.analytics.metrics.velocity import AverageVelocity, Forecast, SprintVelocity, VelocityTrend
from pm_app.core.models import Assignee, Epic, Issue, Milestone, Risk

TODAY = date(2024, 3, 1)


def _issue(iid, state="open", labels=(), created=datetime(2024, 2, 25, tzinfo=pytz.UTC), **kw):
    return Issue(iid=iid, title=f"Issue {iid}", state=state, created_at=created, labels=list(labels), **kw)


def _sprints(values, rate=90):
    return [
        SprintVelocity(
            sprint=f"Sprint {n}",
            start_date=date(2024, 1, 1) + timedelta(days=14 * (n - 1)),
            due_date=date(2024, 1, 14) + timedelta(days=14 * (n - 1)),
            total_issues=v,
            completed_issues=v,
            completion_rate=rate,
        )
        for n, v in enumerate(values, start=1)
    ]


def _titles(insights):
    return [i.title for i in insights]


def test_empty_context_has_no_insights():
    assert generate_insights(InsightContext(today=TODAY)) == []
    assert insight_stats([]) == {"total": 0, "critical": 0, "warning": 0, "info": 0, "success": 0}


def test_velocity_decline_with_causes():
    ctx = InsightContext(
        today=TODAY,
        completed_sprints=_sprints([10, 10, 10, 5], rate=50),
        trend=VelocityTrend(short_term=-50, long_term=-30),
    )
    insights = generate_insights(ctx)
    first = insights[0]
    assert first.type == "critical"
    assert first.title == "Velocity Decline"
    assert "30%" in first.description
    assert "low completion rate" in first.description
    assert first.confidence == "high"


def test_short_term_trend_used_with_few_sprints():
    ctx = InsightContext(
        today=TODAY,
        completed_sprints=_sprints([4, 6]),
        trend=VelocityTrend(short_term=50, long_term=0),
    )
    assert _titles(generate_insights(ctx)) == ["Velocity Improvement"]


def test_blockers_and_ordering():
    issues = [_issue(1, labels=["blocked"]), _issue(2, labels=["blocked"]), _issue(3), _issue(4)]
    ctx = InsightContext(
        today=TODAY,
        issues=issues,
        stats=IssueStats(total=4, open=4),
        forecast=Forecast(completion_date=TODAY, sprints_remaining=1, confidence=80, open_issues=4),
    )
    insights = generate_insights(ctx)
    assert insights[0].title == "High Blocker Rate"
    assert insights[-1].type == "success"
    order = {"critical": 0, "warning": 1, "info": 2, "success": 3}
    ranks = [order[i.type] for i in insights]
    assert ranks == sorted(ranks)


def test_overdue_and_stale():
    old = datetime(2023, 12, 1, tzinfo=pytz.UTC)
    issues = [_issue(i, created=old, assignee=Assignee("ana")) for i in range(1, 6)]
    ctx = InsightContext(today=TODAY, issues=issues, stats=IssueStats(total=5, open=5, overdue=2))
    titles = _titles(generate_insights(ctx))
    assert "Many Overdue Issues" in titles
    assert "High Number of Stale Issues" in titles


def test_milestones_and_epics():
    milestones = [
        Milestone(id=1, title="Beta", due_date=TODAY + timedelta(days=3)),
        Milestone(id=2, title="Alpha", due_date=TODAY - timedelta(days=2)),
    ]
    issues = [_issue(1, milestone="Beta"), _issue(2, milestone="Beta"), _issue(3, milestone="Alpha")]
    issues += [_issue(10 + n, epic_id=9) for n in range(6)]
    epics = [Epic(id=9, title="Search", state="open")]
    ctx = InsightContext(today=TODAY, issues=issues, milestones=milestones, epics=epics)
    titles = _titles(generate_insights(ctx))
    assert "Milestone At Risk: Beta" in titles
    assert "Milestone Overdue: Alpha" in titles
    assert "Epic Needs Attention: Search" in titles


def test_risks_cycles_and_bugs():
    risks = [Risk(id=f"r{n}", title="r", probability=3, impact=3) for n in range(4)]
    risks.append(Risk(id="closed", title="r", probability=3, impact=3, status="closed"))
    deps = DependencyAnalysis(cycles=[["issue-1", "issue-2"]])
    issues = [_issue(1, labels=["bug"]), _issue(2, labels=["bug"]), _issue(3)]
    ctx = InsightContext(today=TODAY, issues=issues, risks=risks, dependencies=deps)
    insights = generate_insights(ctx)
    titles = _titles(insights)
    assert "Multiple High-Priority Risks" in titles
    assert "Circular Dependencies" in titles
    assert "High Bug Rate" in titles
    cycle = next(i for i in insights if i.title == "Circular Dependencies")
    assert "issue-1 -> issue-2 -> issue-1" in cycle.description


def test_three_high_risks_is_not_enough():
    risks = [Risk(id=f"r{n}", title="r", probability=3, impact=2) for n in range(3)]
    assert generate_insights(InsightContext(today=TODAY, risks=risks)) == []


def test_long_forecast_and_low_throughput():
    issues = [_issue(i) for i in range(1, 41)]
    ctx = InsightContext(
        today=TODAY,
        issues=issues,
        stats=IssueStats(total=40, open=40),
        average=AverageVelocity(by_issues=2, sprints_used=3),
        forecast=Forecast(completion_date=TODAY, sprints_remaining=20, confidence=64, open_issues=40),
    )
    insights = generate_insights(ctx)
    titles = _titles(insights)
    assert "Extended Completion Timeline" in titles
    assert "Low Throughput for Backlog Size" in titles
    assert "Many Unassigned Issues" in titles
    stats = insight_stats(insights)
    assert stats["total"] == len(insights)
    assert stats["warning"] == 3


def test_workflow_bottlenecks_and_backlog_readiness():
    touched = datetime(2024, 2, 28, tzinfo=pytz.UTC)
    issues = [_issue(i, labels=["In Progress"], updated_at=touched) for i in range(1, 7)]
    issues += [_issue(i, labels=["Blocked"], updated_at=touched) for i in range(7, 11)]
    now = datetime(2024, 3, 1, tzinfo=pytz.UTC)
    ctx = InsightContext(
        today=TODAY,
        bottlenecks=identify_bottlenecks(issues, now, pytz.UTC),
        backlog=backlog_health(issues),
    )
    insights = generate_insights(ctx)
    titles = _titles(insights)
    # low-severity phases are left out
    assert "Workflow Bottleneck: In Progress" in titles
    assert "Workflow Bottleneck: Blocked" not in titles
    readiness = next(i for i in insights if i.title == "Backlog Not Ready for Planning")
    assert readiness.type == "critical"
    assert readiness.category == "quality"
    bottleneck = next(i for i in insights if i.title == "Workflow Bottleneck: In Progress")
    assert "High volume of issues in In Progress" in bottleneck.description
    assert bottleneck.recommendation == "Increase throughput or reduce incoming work to this phase."
