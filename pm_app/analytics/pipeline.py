"""Analytics orchestrator: snapshot + persisted state + config -> AnalyticsResult.

The pipeline is a pure function of its inputs. Everything time-dependent reads
``config.as_of``, so two runs over the same inputs give equal results.
"""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any

import pandas as pd

from pm_app.core.config import AnalyticsConfig
from pm_app.core.mappers import assemble_snapshot, parse_persisted_state
from pm_app.core.models import Issue, PersistedState, Risk, Snapshot

from .capacity.capacity import (
    MemberCapacity,
    ReallocationPlan,
    calculate_capacity,
    reallocation_suggestions,
    sprint_capacity_impact,
)
from .capacity.member_velocity import MemberVelocity, TeamVelocity
from .communications import communications_summary
from .dependencies.graph import DependencyAnalysis, analyze_dependencies
from .insights.rules import Insight, InsightContext, generate_insights, insight_stats
from .metrics.backlog_health import BacklogHealth, backlog_health
from .metrics.burndown import Burndown, Burnup, calculate_burndown, calculate_burnup
from .metrics.confidence import DeliveryConfidence, delivery_confidence
from .metrics.cycle_time import CycleTimeReport, cycle_time_report
from .metrics.health import HealthScore, IssueStats, calculate_stats, epic_health, health_score
from .metrics.sprints import build_catalog, current_sprint
from .metrics.velocity import (
    AverageVelocity,
    Forecast,
    SprintVelocity,
    TrendHistory,
    VelocityTrend,
    average_velocity,
    calculate_velocity,
    period_comparison,
    predict_completion,
    velocity_trend,
    velocity_trend_history,
)
from .risks import risk_summary

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class AnalyticsResult:
    as_of: datetime
    today: date
    timezone: str
    velocity: list[SprintVelocity] = field(default_factory=list)
    average_velocity: AverageVelocity = field(default_factory=AverageVelocity)
    trend_issues: VelocityTrend = field(default_factory=VelocityTrend)
    trend_points: VelocityTrend = field(default_factory=VelocityTrend)
    trend_history: TrendHistory = field(default_factory=TrendHistory)
    current_sprint: str | None = None
    burndown_issues: Burndown = field(default_factory=lambda: Burndown(mode="issues"))
    burndown_points: Burndown = field(default_factory=lambda: Burndown(mode="points"))
    burnup: Burnup = field(default_factory=Burnup)
    forecast: Forecast | None = None
    confidence: DeliveryConfidence = field(default_factory=DeliveryConfidence)
    period_comparison: dict = field(default_factory=dict)
    stats: IssueStats = field(default_factory=IssueStats)
    health: HealthScore = field(default_factory=HealthScore)
    epic_health: list[dict] = field(default_factory=list)
    cycle_time: CycleTimeReport = field(default_factory=CycleTimeReport)
    backlog_health: BacklogHealth = field(default_factory=BacklogHealth)
    dependencies: DependencyAnalysis = field(default_factory=DependencyAnalysis)
    capacity: list[MemberCapacity] = field(default_factory=list)
    member_velocity: dict[str, MemberVelocity] = field(default_factory=dict)
    team_velocity: TeamVelocity | None = None
    reallocation: ReallocationPlan = field(default_factory=ReallocationPlan)
    capacity_impact: dict = field(default_factory=dict)
    risks: dict = field(default_factory=dict)
    communications: dict = field(default_factory=dict)
    insights: list[Insight] = field(default_factory=list)
    insight_stats: dict = field(default_factory=dict)
    # Inputs kept for exports and pages; not part of to_dict().
    issues: list[Issue] = field(default_factory=list, repr=False)
    risk_register: list[Risk] = field(default_factory=list, repr=False)

    def to_dict(self) -> dict[str, Any]:
        """JSON-safe view; dates become ISO strings, key order is fixed."""
        out = {}
        for f in dataclasses.fields(self):
            if f.name in ("issues", "risk_register"):
                continue
            out[f.name] = _jsonable(getattr(self, f.name))
        return out


def _jsonable(value):
    if isinstance(value, (datetime, pd.Timestamp)):
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        if hasattr(value, "to_dict"):
            return _jsonable(value.to_dict())
        return {f.name: _jsonable(getattr(value, f.name)) for f in dataclasses.fields(value) if f.repr}
    if isinstance(value, Mapping):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        items = [_jsonable(v) for v in value]
        return sorted(items, key=str) if isinstance(value, (set, frozenset)) else items
    if hasattr(value, "item"):
        return value.item()
    return value


def build_analytics(snapshot: Snapshot, state: PersistedState, config: AnalyticsConfig) -> AnalyticsResult:
    """Run every analytics stage over an assembled snapshot.

    Order: velocity, burndown/burnup, health, cycle time and backlog health,
    dependencies, capacity (uses the current sprint), then insights over
    everything before it. Stages given empty input return empty results rather
    than raising.
    """
    tz = config.tz
    today = config.today()
    issues = snapshot.issues

    catalog = build_catalog(issues)
    velocity = calculate_velocity(issues, tz, catalog)
    current = config.current_sprint or current_sprint(issues, today, catalog)
    completed = [v for v in velocity if v.is_completed(today)]
    average = average_velocity(velocity, today, config.average_window, current)
    trend_issues = velocity_trend(velocity, today, current, "issues")
    trend_points = velocity_trend(velocity, today, current, "points")
    logger.debug(
        "Velocity: %d sprints (%d completed), current=%s, avg=%s", len(velocity), len(completed), current, average
    )

    burndown_issues = calculate_burndown(issues, current, today, "issues", tz)
    burndown_points = calculate_burndown(issues, current, today, "points", tz)
    burnup = calculate_burnup(
        issues, today, tz, max_points=config.burnup_points, trailing_months=config.burnup_months
    )
    open_count = len(snapshot.open_issues())
    forecast = predict_completion(open_count, average.by_issues, today) if issues else None
    confidence = delivery_confidence(issues, completed, burnup, trend_issues)

    stats = calculate_stats(issues, today)
    health = health_score(stats)
    epics = [epic_health(e, issues, today) for e in snapshot.epics]
    logger.debug("Health: %s (%s) over %d issues", health.total, health.status, stats.total)

    now = config.now()
    cycle = cycle_time_report(issues, now, snapshot.milestones, tz)
    backlog = backlog_health(issues, state.backlog_history)
    logger.debug(
        "Cycle time: avg lead %s, %d bottlenecks; backlog health %s",
        cycle.stats.avg_lead_time,
        len(cycle.bottlenecks),
        backlog.health_score,
    )

    dependencies = analyze_dependencies(snapshot, config.dependency_level)
    logger.debug(
        "Dependencies: %d edges, %d cycles, critical path %d nodes",
        len(dependencies.edges),
        len(dependencies.cycles),
        len(dependencies.critical_path),
    )

    sprint_info = catalog.get(current) if current else None
    capacity, member_velocities, team_velocity = calculate_capacity(
        state.team, state.absences, issues, state.velocity_config, sprint_info, config.capacity_scope
    )
    reallocation = reallocation_suggestions(capacity, config.compatible_role_groups)
    impact = sprint_capacity_impact(state.team, state.absences, sprint_info)

    ctx = InsightContext(
        today=today,
        issues=issues,
        stats=stats,
        completed_sprints=completed,
        trend=trend_issues,
        average=average,
        forecast=forecast,
        current_sprint=current,
        milestones=snapshot.milestones,
        epics=snapshot.epics,
        risks=state.risks,
        capacity=capacity,
        dependencies=dependencies,
        bottlenecks=cycle.bottlenecks,
        backlog=backlog,
        tz=tz,
    )
    insights = generate_insights(ctx)
    logger.debug("Insights: %d generated", len(insights))

    return AnalyticsResult(
        as_of=now.to_pydatetime(),
        today=today,
        timezone=config.timezone,
        velocity=velocity,
        average_velocity=average,
        trend_issues=trend_issues,
        trend_points=trend_points,
        trend_history=velocity_trend_history(issues, today, tz),
        current_sprint=current,
        burndown_issues=burndown_issues,
        burndown_points=burndown_points,
        burnup=burnup,
        forecast=forecast,
        confidence=confidence,
        period_comparison=period_comparison(issues, today, tz) if issues else {},
        stats=stats,
        health=health,
        epic_health=epics,
        cycle_time=cycle,
        backlog_health=backlog,
        dependencies=dependencies,
        capacity=capacity,
        member_velocity=member_velocities,
        team_velocity=team_velocity,
        reallocation=reallocation,
        capacity_impact=impact,
        risks=risk_summary(state.risks),
        communications=communications_summary(state.communications, tz),
        insights=insights,
        insight_stats=insight_stats(insights),
        issues=list(issues),
        risk_register=list(state.risks),
    )


def analyze(
    raw_issues: Iterable[Mapping[str, Any]],
    raw_epics: Iterable[Mapping[str, Any]] = (),
    raw_milestones: Iterable[Mapping[str, Any]] = (),
    documents: Mapping[str, Any] | None = None,
    config: AnalyticsConfig | None = None,
) -> AnalyticsResult:
    """Assemble raw payloads and run the pipeline.

    Raises
    ------
    SnapshotValidationError
        When the issues, epics, milestones or persisted documents break a
        data-model invariant. Nothing is computed in that case.
    """
    snapshot = assemble_snapshot(raw_issues, raw_epics, raw_milestones)
    state = parse_persisted_state(documents)
    return build_analytics(snapshot, state, config or AnalyticsConfig())
