"""Rule-based insights over the computed analytics.

Each detector looks at one aspect of the project and returns zero or more
:class:`Insight` records. :func:`generate_insights` runs all of them and orders
the result most critical first.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import asdict, dataclass, field
from datetime import date, timedelta

from pm_app.core.config import (
    AT_RISK_HORIZON_DAYS,
    INSIGHT_TYPE_ORDER,
    RISK_HIGH_SCORE,
    STALE_ISSUE_DAYS,
)
from pm_app.core.labels import is_blocker, is_bug, issue_sprint
from pm_app.core.models import Epic, Issue, Milestone, Risk

from ..capacity.capacity import MemberCapacity
from ..dependencies.graph import DependencyAnalysis
from ..metrics.backlog_health import BacklogHealth
from ..metrics.confidence import coefficient_of_variation
from ..metrics.cycle_time import Bottleneck
from ..metrics.dates import local_date
from ..metrics.derived import percent, round_half_up, safe_div
from ..metrics.health import IssueStats, epic_issues
from ..metrics.velocity import AverageVelocity, Forecast, SprintVelocity, VelocityTrend

VELOCITY_CHANGE_THRESHOLD = 10
LOW_VELOCITY_ISSUES = 5
HIGH_OPEN_ISSUE_COUNT = 30
LOW_SPRINT_COMPLETION = 70
UNASSIGNED_LIMIT = 10
HIGH_RISK_LIMIT = 3
BUG_RATE_LIMIT = 30


@dataclass(slots=True)
class Insight:
    type: str  # critical | warning | info | success
    category: str
    title: str
    description: str
    impact: str
    recommendation: str
    confidence: str  # low | medium | high

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(slots=True)
class InsightContext:
    """Everything the detectors may read; built once per analytics run."""

    today: date
    issues: Sequence[Issue] = ()
    stats: IssueStats = field(default_factory=IssueStats)
    completed_sprints: Sequence[SprintVelocity] = ()
    trend: VelocityTrend = field(default_factory=VelocityTrend)
    average: AverageVelocity = field(default_factory=AverageVelocity)
    forecast: Forecast | None = None
    current_sprint: str | None = None
    milestones: Sequence[Milestone] = ()
    epics: Sequence[Epic] = ()
    risks: Sequence[Risk] = ()
    capacity: Sequence[MemberCapacity] = ()
    dependencies: DependencyAnalysis | None = None
    bottlenecks: Sequence[Bottleneck] = ()
    backlog: BacklogHealth | None = None
    tz: object = None

    @property
    def open_issues(self) -> list[Issue]:
        return [i for i in self.issues if i.is_open]


# ------------------ velocity ------------------
def _velocity_change(ctx: InsightContext) -> list[Insight]:
    completed = list(ctx.completed_sprints)
    if len(completed) < 2:
        return []
    change = ctx.trend.long_term if len(completed) >= 4 else ctx.trend.short_term
    span = "the last 3 sprints" if len(completed) >= 4 else "the last sprint"
    if change < -VELOCITY_CHANGE_THRESHOLD:
        causes = []
        actions = []
        latest = completed[-1]
        if latest.completion_rate < LOW_SPRINT_COMPLETION:
            causes.append(f"low completion rate in {latest.sprint} ({latest.completion_rate}%)")
            actions.append("plan fewer issues per sprint")
        if ctx.current_sprint is not None:
            wip = sum(1 for i in ctx.open_issues if issue_sprint(i) == ctx.current_sprint)
            if ctx.average.by_issues > 0 and wip > 2 * ctx.average.by_issues:
                causes.append(f"too much work in progress ({wip} open issues in {ctx.current_sprint})")
                actions.append("set WIP limits and focus on finishing over starting")
        description = f"Velocity dropped {abs(change)}% over {span}."
        if causes:
            description += " Likely causes: " + "; ".join(causes) + "."
        recommendation = "Run a retrospective focused on blockers and review team capacity."
        if actions:
            recommendation = " ".join(a[0].upper() + a[1:] + "." for a in actions) + " " + recommendation
        return [
            Insight(
                "critical",
                "velocity",
                "Velocity Decline",
                description,
                "High - delivery timeline at risk",
                recommendation,
                "high" if len(completed) >= 4 else "medium",
            )
        ]
    if change > VELOCITY_CHANGE_THRESHOLD:
        return [
            Insight(
                "info",
                "velocity",
                "Velocity Improvement",
                f"Velocity increased {change}% over {span}.",
                "Positive - ahead of the recent pace",
                "Document what is working well to keep the momentum.",
                "medium",
            )
        ]
    return []


def _velocity_consistency(ctx: InsightContext) -> list[Insight]:
    values = [v.completed_issues for v in ctx.completed_sprints]
    if len(values) < 2 or sum(values) == 0:
        return []
    cv = coefficient_of_variation(values)
    if cv <= 40:
        return []
    return [
        Insight(
            "warning",
            "velocity",
            "Inconsistent Velocity",
            f"Velocity varies significantly between sprints (CV: {round_half_up(cv)}%).",
            "Medium - unpredictable delivery",
            "Standardize sprint planning and keep team capacity steady.",
            "medium",
        )
    ]


def _low_velocity_high_load(ctx: InsightContext) -> list[Insight]:
    avg = ctx.average
    open_count = len(ctx.open_issues)
    if avg.sprints_used == 0 or avg.by_issues >= LOW_VELOCITY_ISSUES or open_count < HIGH_OPEN_ISSUE_COUNT:
        return []
    return [
        Insight(
            "warning",
            "velocity",
            "Low Throughput for Backlog Size",
            f"Average velocity is {avg.by_issues} issues/sprint against {open_count} open issues.",
            "Medium - backlog will take long to clear",
            "Break down large issues into smaller deliverable pieces.",
            "medium",
        )
    ]


# ------------------ bottlenecks ------------------
def _blocker_concentration(ctx: InsightContext) -> list[Insight]:
    open_issues = ctx.open_issues
    if not open_issues:
        return []
    blocked = sum(1 for i in open_issues if is_blocker(i.labels))
    rate = safe_div(blocked, len(open_issues)) * 100
    if rate > 20:
        return [
            Insight(
                "critical",
                "bottlenecks",
                "High Blocker Rate",
                f"{blocked} issues blocked ({round_half_up(rate)}% of open issues).",
                "Critical - team productivity severely impacted",
                "Hold a blocker resolution session and escalate where needed.",
                "high",
            )
        ]
    if rate > 10:
        return [
            Insight(
                "warning",
                "bottlenecks",
                "Elevated Blocker Count",
                f"{blocked} issues are blocked ({round_half_up(rate)}% of open issues).",
                "Medium - productivity impact",
                "Review blockers daily and give each one an owner.",
                "high",
            )
        ]
    return []


def _overdue_concentration(ctx: InsightContext) -> list[Insight]:
    open_count = ctx.stats.open
    overdue = ctx.stats.overdue
    if open_count == 0 or overdue == 0:
        return []
    rate = safe_div(overdue, open_count) * 100
    if rate > 20:
        kind, title, impact = "critical", "Many Overdue Issues", "High - commitments being missed"
    elif rate > 10:
        kind, title, impact = "warning", "Overdue Issues Accumulating", "Medium - schedule slipping"
    else:
        return []
    return [
        Insight(
            kind,
            "bottlenecks",
            title,
            f"{overdue} open issues are past their due date ({round_half_up(rate)}% of open issues).",
            impact,
            "Re-plan overdue work: update due dates, reduce scope or reassign.",
            "high",
        )
    ]


def _stale_work(ctx: InsightContext) -> list[Insight]:
    open_issues = ctx.open_issues
    if not open_issues:
        return []
    cutoff = ctx.today - timedelta(days=STALE_ISSUE_DAYS)
    stale = 0
    for issue in open_issues:
        created = local_date(issue.created_at, ctx.tz)
        if created is not None and created < cutoff:
            stale += 1
    if stale <= len(open_issues) * 0.3:
        return []
    return [
        Insight(
            "warning",
            "bottlenecks",
            "High Number of Stale Issues",
            f"{stale} issues open for more than {STALE_ISSUE_DAYS} days ({percent(stale, len(open_issues))}%).",
            "Medium - work in progress accumulating",
            "Review stale issues: close, update or split them.",
            "medium",
        )
    ]


def _workflow_bottlenecks(ctx: InsightContext) -> list[Insight]:
    out = []
    for b in ctx.bottlenecks:
        if b.severity == "low":
            continue
        description = f"{b.count} open issues in {b.label}, idle {b.avg_time_in_phase} days on average. {b.reason}."
        if b.root_causes:
            description += " Likely causes: " + "; ".join(b.root_causes) + "."
        out.append(
            Insight(
                "warning",
                "bottlenecks",
                f"Workflow Bottleneck: {b.label}",
                description,
                "High - work piling up in one phase" if b.severity == "high" else "Medium - work aging in one phase",
                " ".join(a + "." for a in b.actions) or f"Review the issues waiting in {b.label}.",
                "medium",
            )
        )
    return out


# ------------------ resources ------------------
def _overloaded_members(ctx: InsightContext) -> list[Insight]:
    overloaded = sorted(
        (c for c in ctx.capacity if c.status == "overloaded"), key=lambda c: (-c.utilization, c.username)
    )
    if not overloaded:
        return []
    top = overloaded[0]
    return [
        Insight(
            "warning",
            "resources",
            "Team Members Overloaded",
            f"{len(overloaded)} team member(s) above 100% utilization. "
            f"Most loaded: {top.name} at {top.utilization}%.",
            "High - risk of burnout and delays",
            "Rebalance work using the reallocation suggestions.",
            "high",
        )
    ]


def _unassigned(ctx: InsightContext) -> list[Insight]:
    count = sum(1 for i in ctx.open_issues if i.assignee is None)
    if count <= UNASSIGNED_LIMIT:
        return []
    return [
        Insight(
            "warning",
            "resources",
            "Many Unassigned Issues",
            f"{count} open issues are unassigned.",
            "Medium - unclear ownership",
            "Assign open issues to team members as part of capacity planning.",
            "high",
        )
    ]


# ------------------ milestones & epics ------------------
def _milestones(ctx: InsightContext) -> list[Insight]:
    out = []
    for milestone in ctx.milestones:
        if milestone.state != "active" or milestone.due_date is None:
            continue
        issues = [i for i in ctx.issues if i.milestone == milestone.title]
        if not issues:
            continue
        open_count = sum(1 for i in issues if i.is_open)
        rate = percent(len(issues) - open_count, len(issues))
        days_left = (milestone.due_date - ctx.today).days
        if days_left < 0 and open_count > 0:
            out.append(
                Insight(
                    "critical",
                    "milestones",
                    f"Milestone Overdue: {milestone.title}",
                    f"{abs(days_left)} days overdue with {open_count} open issues.",
                    "Critical - milestone missed",
                    "Update the timeline or close out the remaining work.",
                    "high",
                )
            )
        elif 0 <= days_left <= AT_RISK_HORIZON_DAYS and rate < 50:
            out.append(
                Insight(
                    "critical",
                    "milestones",
                    f"Milestone At Risk: {milestone.title}",
                    f"Only {rate}% complete with {days_left} days remaining.",
                    "Critical - milestone deadline at risk",
                    f"Reduce scope or extend the deadline. {open_count} issues still open.",
                    "high",
                )
            )
    return out


def _slow_epics(ctx: InsightContext) -> list[Insight]:
    out = []
    for epic in ctx.epics:
        if epic.state not in ("open", "opened"):
            continue
        children = epic_issues(epic, ctx.issues)
        if len(children) <= 5:
            continue
        open_count = sum(1 for i in children if i.is_open)
        rate = percent(len(children) - open_count, len(children))
        if rate < 20:
            out.append(
                Insight(
                    "info",
                    "epics",
                    f"Epic Needs Attention: {epic.title}",
                    f"Only {rate}% complete with {open_count} open issues.",
                    "Medium - epic progress slow",
                    "Review scope and priority; consider splitting the epic.",
                    "medium",
                )
            )
    return out


# ------------------ risks & dependencies ------------------
def _high_risks(ctx: InsightContext) -> list[Insight]:
    high = [r for r in ctx.risks if r.status == "open" and r.score >= RISK_HIGH_SCORE]
    if len(high) <= HIGH_RISK_LIMIT:
        return []
    return [
        Insight(
            "critical",
            "risks",
            "Multiple High-Priority Risks",
            f"{len(high)} open risks with score {RISK_HIGH_SCORE} or more.",
            "Critical - project success threatened",
            "Hold a risk review and start mitigation plans now.",
            "high",
        )
    ]


def _dependency_cycles(ctx: InsightContext) -> list[Insight]:
    if ctx.dependencies is None or not ctx.dependencies.cycles:
        return []
    cycles = ctx.dependencies.cycles
    sample = " -> ".join(cycles[0] + cycles[0][:1])
    return [
        Insight(
            "critical",
            "risks",
            "Circular Dependencies",
            f"{len(cycles)} dependency cycle(s) found, e.g. {sample}.",
            "High - work in a cycle cannot be finished in order",
            "Break each cycle by re-planning or removing one of the dependencies.",
            "high",
        )
    ]


# ------------------ forecast & quality ------------------
def _forecast(ctx: InsightContext) -> list[Insight]:
    forecast = ctx.forecast
    if forecast is None or forecast.open_issues == 0:
        return []
    weeks = forecast.sprints_remaining * 2
    if weeks > 12:
        return [
            Insight(
                "warning",
                "forecast",
                "Extended Completion Timeline",
                f"At {ctx.average.by_issues} issues/sprint, about {weeks} weeks to finish "
                f"{forecast.open_issues} open issues.",
                "Medium - long delivery timeline",
                "Reduce scope or add capacity.",
                "medium",
            )
        ]
    if weeks < 4:
        return [
            Insight(
                "success",
                "forecast",
                "On Track for Completion",
                f"About {weeks} weeks to finish at the current velocity.",
                "Positive - delivery on schedule",
                "Keep the pace and prepare release activities.",
                "medium",
            )
        ]
    return []


def _bug_rate(ctx: InsightContext) -> list[Insight]:
    if not ctx.issues:
        return []
    bugs = sum(1 for i in ctx.issues if is_bug(i.labels))
    rate = safe_div(bugs, len(ctx.issues)) * 100
    if rate <= BUG_RATE_LIMIT:
        return []
    return [
        Insight(
            "warning",
            "quality",
            "High Bug Rate",
            f"{round_half_up(rate)}% of issues are bugs ({bugs} total).",
            "Medium - quality concerns",
            "Review testing practices and add automated tests.",
            "medium",
        )
    ]


def _backlog_readiness(ctx: InsightContext) -> list[Insight]:
    backlog = ctx.backlog
    if backlog is None or backlog.alert is None:
        return []
    severity = backlog.alert["severity"]
    return [
        Insight(
            "critical" if severity == "high" else "warning",
            "quality",
            "Backlog Not Ready for Planning",
            f"Backlog health is {backlog.health_score}/100: {backlog.refined_pct}% estimated, "
            f"{backlog.described_pct}% described, {backlog.ready_pct}% ready for a sprint.",
            "High - sprint planning will stall" if severity == "high" else "Medium - planning quality at risk",
            backlog.alert["recommendation"],
            "high",
        )
    ]


DETECTORS: Sequence[Callable[[InsightContext], list[Insight]]] = (
    _velocity_change,
    _velocity_consistency,
    _low_velocity_high_load,
    _blocker_concentration,
    _overdue_concentration,
    _stale_work,
    _workflow_bottlenecks,
    _overloaded_members,
    _unassigned,
    _milestones,
    _slow_epics,
    _high_risks,
    _dependency_cycles,
    _forecast,
    _bug_rate,
    _backlog_readiness,
)


def generate_insights(ctx: InsightContext) -> list[Insight]:
    """Run every detector; critical first, then warning, info, success.

    Detector order is kept within a type.
    """
    insights: list[Insight] = []
    for detector in DETECTORS:
        insights.extend(detector(ctx))
    insights.sort(key=lambda i: INSIGHT_TYPE_ORDER.get(i.type, len(INSIGHT_TYPE_ORDER)))
    return insights


def insight_stats(insights: Sequence[Insight]) -> dict[str, int]:
    counts = {kind: 0 for kind in INSIGHT_TYPE_ORDER}
    for insight in insights:
        counts[insight.type] = counts.get(insight.type, 0) + 1
    return {"total": len(insights), **counts}
