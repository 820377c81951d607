"""Sprint capacity per member and reallocation suggestions for overloaded members."""

from __future__ import annotations

import logging
import math
from collections.abc import Mapping, Sequence
from dataclasses import asdict, dataclass, field

from pm_app.analytics.metrics.dates import working_days_between
from pm_app.analytics.metrics.derived import round_half_up
from pm_app.analytics.metrics.sprints import SprintInfo
from pm_app.core.config import (
    CAPACITY_RELIEF_THRESHOLD,
    CAPACITY_STATUS_COLORS,
    CAPACITY_THRESHOLDS,
    DEFAULT_SPRINT_WORK_DAYS,
    INCOMPATIBLE_ROLES,
    ROLE_COMPATIBILITY_GROUPS,
)
from pm_app.core.labels import issue_sprint, metric_value
from pm_app.core.models import Absence, Issue, TeamMember, VelocityConfig

from .member_velocity import (
    HoursPerUnit,
    MemberVelocity,
    TeamVelocity,
    absence_hours,
    member_velocity,
    resolve_hours_per_unit,
    team_average_velocity,
)

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class MemberCapacity:
    username: str
    name: str
    role: str
    weekly_capacity: float
    sprint_work_days: int
    daily_hours: float
    sprint_capacity: float
    absence_hours: float
    available_capacity: float
    metric_type: str
    metric_value: int
    hours_per_unit: float
    hours_source: str
    allocated_hours: float
    utilization: int
    status: str
    color: str
    issue_iids: list[int] = field(default_factory=list)
    issue_values: dict[int, int] = field(default_factory=dict, repr=False)

    @property
    def free_hours(self) -> float:
        return max(0.0, self.available_capacity - self.allocated_hours)

    @property
    def excess_hours(self) -> float:
        return max(0.0, self.allocated_hours - self.available_capacity)

    def to_dict(self) -> dict:
        out = asdict(self)
        out.pop("issue_values")
        return out


@dataclass(slots=True)
class Reallocation:
    from_member: str
    to_member: str
    suggested_units: int
    metric_type: str
    issue_iids: list[int]
    rationale: str


@dataclass(slots=True)
class ReallocationPlan:
    suggestions: list[Reallocation] = field(default_factory=list)
    warnings: list[dict] = field(default_factory=list)


def capacity_status(utilization: int) -> str:
    for threshold, name in CAPACITY_THRESHOLDS:
        if utilization >= threshold:
            return name
    return "available"


def roles_compatible(
    role_a: str | None,
    role_b: str | None,
    groups: Mapping[str, frozenset[str]] = ROLE_COMPATIBILITY_GROUPS,
) -> bool:
    role_a = role_a or "Developer"
    role_b = role_b or "Developer"
    if role_a == role_b:
        return True
    if role_a in INCOMPATIBLE_ROLES or role_b in INCOMPATIBLE_ROLES:
        return False
    return any(role_a in group and role_b in group for group in groups.values())


def compatible_roles(role: str, groups: Mapping[str, frozenset[str]] = ROLE_COMPATIBILITY_GROUPS) -> list[str]:
    if role in INCOMPATIBLE_ROLES:
        return []
    for group in groups.values():
        if role in group:
            return sorted(r for r in group if r != role)
    return []


def member_capacity(
    member: TeamMember,
    issues: Sequence[Issue],
    absences: Sequence[Absence],
    sprint: SprintInfo | None,
    rate: HoursPerUnit,
    metric_type: str,
    scope: str = "open",
) -> MemberCapacity:
    """Capacity, allocation and utilization of one member for ``sprint``.

    Without a sprint, all of the member's issues (per ``scope``) are allocated
    against a default-length sprint. Absences only count when the sprint has
    both dates.
    """
    dated = sprint is not None and sprint.start_date is not None and sprint.due_date is not None
    work_days = working_days_between(sprint.start_date, sprint.due_date) if dated else DEFAULT_SPRINT_WORK_DAYS
    daily = member.weekly_capacity / 5
    sprint_capacity = work_days * daily
    lost = (
        absence_hours(member.username, absences, sprint.start_date, sprint.due_date, member.weekly_capacity)
        if dated
        else 0.0
    )
    available = max(0.0, sprint_capacity - lost)

    assigned = [
        i
        for i in issues
        if i.is_assigned_to(member.username)
        and (scope == "all" or i.is_open)
        and (sprint is None or issue_sprint(i) == sprint.name)
    ]
    values = {i.iid: metric_value(i, metric_type) for i in assigned}
    total_value = sum(values.values())
    allocated = total_value * rate.hours
    utilization = round_half_up(allocated / available * 100) if available > 0 else 0
    status = capacity_status(utilization)
    return MemberCapacity(
        username=member.username,
        name=member.display_name,
        role=member.role,
        weekly_capacity=member.weekly_capacity,
        sprint_work_days=work_days,
        daily_hours=daily,
        sprint_capacity=sprint_capacity,
        absence_hours=lost,
        available_capacity=available,
        metric_type=metric_type,
        metric_value=total_value,
        hours_per_unit=rate.hours,
        hours_source=rate.source,
        allocated_hours=allocated,
        utilization=utilization,
        status=status,
        color=CAPACITY_STATUS_COLORS[status],
        issue_iids=sorted(values),
        issue_values=values,
    )


def calculate_capacity(
    team: Sequence[TeamMember],
    absences: Sequence[Absence],
    issues: Sequence[Issue],
    config: VelocityConfig,
    sprint: SprintInfo | None,
    scope: str = "open",
) -> tuple[list[MemberCapacity], dict[str, MemberVelocity], TeamVelocity]:
    """Capacity for every member plus the velocity data behind their rates."""
    metric = config.metric_type
    if not team:
        return [], {}, TeamVelocity(metric)
    velocities = {
        m.username: member_velocity(m, issues, absences, config.lookback_iterations, metric) for m in team
    }
    team_velocity = team_average_velocity(
        list(velocities.values()), metric, config.min_iterations_for_individual
    )
    out = []
    for m in team:
        rate = resolve_hours_per_unit(velocities[m.username], team_velocity, config)
        out.append(member_capacity(m, issues, absences, sprint, rate, metric, scope))
    logger.debug(
        "Capacity for %d members (%s mode, sprint=%s)", len(out), config.mode, sprint.name if sprint else None
    )
    return out, velocities, team_velocity


def _pick_issues(source: MemberCapacity, units: int) -> list[int]:
    """Smallest issues of ``source`` whose combined value fits in ``units``."""
    picked: list[int] = []
    budget = units
    for iid, value in sorted(source.issue_values.items(), key=lambda kv: (kv[1], kv[0])):
        if value > budget:
            break
        picked.append(iid)
        budget -= value
        if budget <= 0:
            break
    return picked


def reallocation_suggestions(
    capacities: Sequence[MemberCapacity],
    groups: Mapping[str, frozenset[str]] = ROLE_COMPATIBILITY_GROUPS,
) -> ReallocationPlan:
    """Pair each overloaded member with compatible members under 60% utilization."""
    plan = ReallocationPlan()
    for source in capacities:
        if source.status != "overloaded":
            continue
        targets = [
            c
            for c in capacities
            if c.username != source.username
            and c.weekly_capacity > 0
            and c.utilization < CAPACITY_RELIEF_THRESHOLD
            and roles_compatible(source.role, c.role, groups)
        ]
        targets.sort(key=lambda c: (c.utilization, c.username))
        if not targets:
            plan.warnings.append(
                {
                    "type": "no-compatible-target",
                    "from_member": source.username,
                    "role": source.role,
                    "detail": f"No available team members with compatible role ({source.role})",
                    "needs": compatible_roles(source.role, groups) or [source.role],
                }
            )
            continue
        for target in targets:
            if source.hours_per_unit <= 0 or target.hours_per_unit <= 0:
                continue
            needed = math.ceil(source.excess_hours / source.hours_per_unit)
            room = math.floor(target.free_hours / target.hours_per_unit)
            units = min(needed, room)
            if units < 1:
                continue
            reason = (
                "Same role" if source.role == target.role else f"Compatible roles ({source.role} / {target.role})"
            )
            plan.suggestions.append(
                Reallocation(
                    from_member=source.username,
                    to_member=target.username,
                    suggested_units=units,
                    metric_type=source.metric_type,
                    issue_iids=_pick_issues(source, units),
                    rationale=(
                        f"{source.name} is at {source.utilization}% utilization; "
                        f"{target.name} is at {target.utilization}%. {reason}."
                    ),
                )
            )
    return plan


def sprint_capacity_impact(
    team: Sequence[TeamMember],
    absences: Sequence[Absence],
    sprint: SprintInfo | None,
) -> dict:
    """Team hours lost to absences during ``sprint``."""
    empty = {"capacity_loss": 0, "total_capacity": 0, "loss_percentage": 0, "affected_members": []}
    if not team or sprint is None or sprint.start_date is None or sprint.due_date is None:
        return empty
    days = working_days_between(sprint.start_date, sprint.due_date)
    total = sum(days * m.weekly_capacity / 5 for m in team)
    affected = []
    loss = 0.0
    for m in team:
        lost = absence_hours(m.username, absences, sprint.start_date, sprint.due_date, m.weekly_capacity)
        if lost > 0:
            affected.append({"username": m.username, "hours_lost": lost})
        loss += lost
    return {
        "capacity_loss": round_half_up(loss),
        "total_capacity": round_half_up(total),
        "loss_percentage": round_half_up(loss / total * 100) if total > 0 else 0,
        "affected_members": affected,
    }
