"""Observed hours-per-unit for team members, with team and static fallbacks."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import date

from pm_app.analytics.metrics.dates import overlap, working_days_between
from pm_app.analytics.metrics.derived import round_half_up, safe_div
from pm_app.core.labels import issue_points, issue_sprint
from pm_app.core.models import Absence, Issue, TeamMember, VelocityConfig


@dataclass(slots=True)
class IterationWork:
    name: str
    start_date: date
    due_date: date
    story_points: int = 0
    issue_count: int = 0
    capacity: float = 0.0
    absence_hours: float = 0.0
    available_hours: float = 0.0


@dataclass(slots=True)
class MemberVelocity:
    username: str
    metric_type: str
    hours_per_unit: float | None = None
    iterations_analyzed: int = 0
    total_metric_value: int = 0
    total_hours_available: float = 0.0
    data_quality: str = "insufficient"
    iterations: list[IterationWork] = field(default_factory=list)


@dataclass(slots=True)
class TeamVelocity:
    metric_type: str
    hours_per_unit: float | None = None
    members_analyzed: int = 0
    data_quality: str = "insufficient"


@dataclass(slots=True)
class HoursPerUnit:
    hours: float
    source: str  # individual | team-average | static
    quality: str
    details: str


def absence_hours(
    username: str,
    absences: Sequence[Absence],
    start: date,
    end: date,
    weekly_capacity: float,
) -> float:
    """Hours lost to absences overlapping ``[start, end]`` (working days x daily hours)."""
    days_off = 0
    for absence in absences:
        if absence.username != username:
            continue
        window = overlap(absence.start_date, absence.end_date, start, end)
        if window is None:
            continue
        days_off += working_days_between(*window)
    return round_half_up(days_off * weekly_capacity / 5, 1)


def member_velocity(
    member: TeamMember,
    issues: Sequence[Issue],
    absences: Sequence[Absence],
    lookback: int = 3,
    metric_type: str = "points",
) -> MemberVelocity:
    """Relate the member's closed work to their available hours.

    Uses the ``lookback`` most recent dated iterations in which the member closed
    work (in points mode only issues carrying points count).
    """
    if not issues:
        return MemberVelocity(member.username, metric_type)
    mine = [
        i
        for i in issues
        if i.is_closed
        and i.is_assigned_to(member.username)
        and i.iteration is not None
        and i.iteration.start_date is not None
        and i.iteration.due_date is not None
    ]
    if not mine:
        return MemberVelocity(member.username, metric_type, data_quality="no-history")

    by_iteration: dict[str, IterationWork] = {}
    for issue in mine:
        points = issue_points(issue)
        if metric_type == "points" and points <= 0:
            continue
        name = issue_sprint(issue)
        if name is None:
            continue
        work = by_iteration.get(name)
        if work is None:
            work = by_iteration[name] = IterationWork(
                name=name, start_date=issue.iteration.start_date, due_date=issue.iteration.due_date
            )
        work.story_points += points
        work.issue_count += 1

    recent = sorted(by_iteration.values(), key=lambda w: (w.due_date, w.name), reverse=True)[:lookback]
    if not recent:
        return MemberVelocity(member.username, metric_type, data_quality="no-completed-work")

    daily = member.weekly_capacity / 5
    total_metric = 0
    total_hours = 0.0
    for work in recent:
        work.capacity = working_days_between(work.start_date, work.due_date) * daily
        work.absence_hours = absence_hours(
            member.username, absences, work.start_date, work.due_date, member.weekly_capacity
        )
        work.available_hours = max(0.0, work.capacity - work.absence_hours)
        total_metric += work.issue_count if metric_type == "issues" else work.story_points
        total_hours += work.available_hours

    hours = safe_div(total_hours, total_metric)
    if len(recent) >= 3:
        quality = "excellent"
    elif len(recent) == 2:
        quality = "moderate"
    else:
        quality = "low"
    return MemberVelocity(
        username=member.username,
        metric_type=metric_type,
        hours_per_unit=round_half_up(hours, 1) if hours > 0 else None,
        iterations_analyzed=len(recent),
        total_metric_value=total_metric,
        total_hours_available=round_half_up(total_hours),
        data_quality=quality,
        iterations=recent,
    )


def team_average_velocity(
    velocities: Sequence[MemberVelocity],
    metric_type: str,
    min_iterations: int = 2,
) -> TeamVelocity:
    """Mean hours-per-unit of the members with enough history."""
    usable = [
        v.hours_per_unit
        for v in velocities
        if v.hours_per_unit is not None and v.iterations_analyzed >= min_iterations
    ]
    if not usable:
        return TeamVelocity(metric_type)
    return TeamVelocity(
        metric_type=metric_type,
        hours_per_unit=round_half_up(sum(usable) / len(usable), 1),
        members_analyzed=len(usable),
        data_quality="good" if len(usable) >= 3 else "moderate",
    )


def resolve_hours_per_unit(
    velocity: MemberVelocity | None,
    team: TeamVelocity | None,
    config: VelocityConfig,
) -> HoursPerUnit:
    """Individual rate, else team average, else the configured static value."""
    static = config.static_hours_per_unit
    if config.mode == "static":
        return HoursPerUnit(static, "static", "configured", "Static configuration")
    if (
        velocity is not None
        and velocity.hours_per_unit
        and velocity.iterations_analyzed >= config.min_iterations_for_individual
    ):
        return HoursPerUnit(
            velocity.hours_per_unit,
            "individual",
            velocity.data_quality,
            f"Based on {velocity.iterations_analyzed} iterations",
        )
    if team is not None and team.hours_per_unit:
        return HoursPerUnit(
            team.hours_per_unit,
            "team-average",
            team.data_quality,
            f"Team average ({team.members_analyzed} members)",
        )
    return HoursPerUnit(
        static,
        "static",
        "configured",
        f"No historical data (needs >= {config.min_iterations_for_individual} iterations with completed work)",
    )
