"""Lead time, estimated cycle time, workflow phases and phase bottlenecks.

Lead time runs from creation to close (or to now for open issues). Without
label event history the start of work is estimated: the issue's milestone
start when it falls inside the issue's life, else a meaningful early update,
else a fixed share of the lead time spent waiting. All durations are whole
days rounded up.
"""

from __future__ import annotations

import math
from collections.abc import Mapping, Sequence
from dataclasses import asdict, dataclass, field
from datetime import date

import pandas as pd

from pm_app.core.config import (
    CYCLE_WAIT_SHARE,
    LEAD_TIME_BUCKETS,
    PHASE_LABELS,
    PHASE_PATTERNS,
)
from pm_app.core.models import Issue, Milestone

from .dates import to_local
from .derived import round_half_up

DAY_SECONDS = 86400


@dataclass(slots=True)
class CycleTimeStats:
    count: int = 0
    avg_lead_time: int = 0
    median_lead_time: int = 0
    min_lead_time: int = 0
    max_lead_time: int = 0
    avg_cycle_time: int = 0
    median_cycle_time: int = 0
    min_cycle_time: int = 0
    max_cycle_time: int = 0
    avg_wait_time: int = 0
    lead_times: list[int] = field(default_factory=list)
    cycle_times: list[int] = field(default_factory=list)


@dataclass(slots=True)
class Bottleneck:
    phase: str
    label: str
    count: int
    avg_time_in_phase: int
    severity: str  # high | medium | low
    reason: str
    root_causes: list[str] = field(default_factory=list)
    actions: list[str] = field(default_factory=list)


@dataclass(slots=True)
class ControlChart:
    points: list[dict] = field(default_factory=list)
    average: int = 0
    median: int = 0
    p85: int = 0
    p95: int = 0
    std_dev: int = 0
    upper_limit: int = 0
    lower_limit: int = 0


@dataclass(slots=True)
class CycleTimeReport:
    stats: CycleTimeStats = field(default_factory=CycleTimeStats)
    phase_distribution: dict[str, int] = field(default_factory=dict)
    bottlenecks: list[Bottleneck] = field(default_factory=list)
    lead_time_distribution: dict[str, int] = field(default_factory=dict)
    control_chart: ControlChart = field(default_factory=ControlChart)

    def to_dict(self) -> dict:
        return asdict(self)


def issue_phase(issue: Issue, patterns: Mapping[str, Sequence[str]] = PHASE_PATTERNS) -> str:
    """Workflow phase from labels, first matching phase in ``patterns`` order."""
    labels = [label.lower() for label in issue.labels]
    for phase, needles in patterns.items():
        if any(needle in label for label in labels for needle in needles):
            return phase
    return "done" if issue.is_closed else "backlog"


def _days(start, end) -> int:
    return math.ceil(abs((end - start).total_seconds()) / DAY_SECONDS)


def lead_time(issue: Issue, now, tz=None) -> int:
    created = to_local(issue.created_at, tz)
    end = to_local(issue.closed_at, tz) if issue.closed_at else to_local(now, tz)
    return _days(created, end)


def time_in_phase(issue: Issue, now, tz=None) -> int:
    """Days since the last update, the best proxy for time in the current phase."""
    return _days(to_local(issue.updated_at or issue.created_at, tz), to_local(now, tz))


def milestone_starts(milestones: Sequence[Milestone]) -> dict[str, date]:
    return {m.title: m.start_date for m in milestones if m.start_date is not None}


def estimate_cycle_time(
    issue: Issue,
    starts: Mapping[str, date] | None = None,
    tz=None,
) -> int | None:
    """Estimated days of active work for a closed issue; None while open."""
    if issue.closed_at is None:
        return None
    created = to_local(issue.created_at, tz)
    closed = to_local(issue.closed_at, tz)
    lead_seconds = (closed - created).total_seconds()

    started = None
    milestone_start = (starts or {}).get(issue.milestone) if issue.milestone else None
    if milestone_start is not None:
        candidate = to_local(milestone_start, tz)
        if created < candidate < closed:
            started = candidate
    if started is None and issue.updated_at is not None:
        updated = to_local(issue.updated_at, tz)
        gap = (updated - created).total_seconds()
        if DAY_SECONDS < gap < lead_seconds / 2:
            started = updated
    if started is None:
        started = created + pd.Timedelta(seconds=lead_seconds * CYCLE_WAIT_SHARE)

    return min(_days(started, closed), math.ceil(lead_seconds / DAY_SECONDS))


def _closed_frame(issues: Sequence[Issue], now, starts, tz) -> pd.DataFrame:
    rows = [
        {
            "iid": i.iid,
            "title": i.title,
            "closed_at": to_local(i.closed_at, tz),
            "lead": lead_time(i, now, tz),
            "cycle": estimate_cycle_time(i, starts, tz),
        }
        for i in issues
        if i.is_closed and i.closed_at is not None
    ]
    return pd.DataFrame(rows, columns=["iid", "title", "closed_at", "lead", "cycle"])


def cycle_time_stats(
    issues: Sequence[Issue],
    now,
    starts: Mapping[str, date] | None = None,
    tz=None,
) -> CycleTimeStats:
    df = _closed_frame(issues, now, starts, tz)
    if df.empty:
        return CycleTimeStats()
    lead = df["lead"].astype(int).sort_values().reset_index(drop=True)
    cycle = df["cycle"].dropna().astype(int).sort_values().reset_index(drop=True)
    stats = CycleTimeStats(
        count=len(df),
        avg_lead_time=round_half_up(lead.mean()),
        median_lead_time=int(lead.iloc[len(lead) // 2]),
        min_lead_time=int(lead.iloc[0]),
        max_lead_time=int(lead.iloc[-1]),
        lead_times=lead.tolist(),
        cycle_times=cycle.tolist(),
    )
    if not cycle.empty:
        stats.avg_cycle_time = round_half_up(cycle.mean())
        stats.median_cycle_time = round_half_up(cycle.median())
        stats.min_cycle_time = int(cycle.iloc[0])
        stats.max_cycle_time = int(cycle.iloc[-1])
        stats.avg_wait_time = max(0, stats.avg_lead_time - stats.avg_cycle_time)
    return stats


def phase_distribution(
    issues: Sequence[Issue], patterns: Mapping[str, Sequence[str]] = PHASE_PATTERNS
) -> dict[str, int]:
    """Issue count per phase; every known phase is present."""
    counts = pd.Series([issue_phase(i, patterns) for i in issues], dtype=object).value_counts()
    return {phase: int(counts.get(phase, 0)) for phase in PHASE_LABELS}


def _root_causes(phase: str, count: int, avg_days: int) -> tuple[list[str], list[str]]:
    causes: list[str] = []
    actions: list[str] = []
    if phase in ("testing", "awaitingTesting"):
        if avg_days > 7:
            causes.append("Security or QA team backlog")
            actions.append("Request additional QA resources or auto-approve low-risk changes")
        if count > 5:
            causes.append(f"{count} issues waiting for testing")
            actions.append("Prioritize the testing queue and test in parallel")
    elif phase == "awaitingRelease":
        if avg_days > 5:
            causes.append("Infrequent deployment schedule")
            actions.append("Deploy more often or move to continuous delivery")
        if count > 3:
            causes.append(f"{count} issues ready but waiting for a release window")
            actions.append("Release smaller batches more frequently")
    elif phase == "review":
        if avg_days > 3:
            causes.append("Code review backlog or slow review process")
            actions.append("Assign dedicated reviewers and agree a 24-48 hour review target")
    elif phase == "blocked":
        causes.append("External dependencies or blockers")
        actions.append("Escalate blockers and look for workarounds")
    elif phase == "inProgress":
        if count > 8:
            causes.append("Too much work in progress")
            actions.append("Set WIP limits and focus on finishing over starting")
        if avg_days > 10:
            causes.append("Issues are more complex than estimated")
            actions.append("Break down large issues and revisit estimation")

    if not causes and count > 5:
        causes.append(f"High volume of issues in {PHASE_LABELS.get(phase, phase)}")
        actions.append("Increase throughput or reduce incoming work to this phase")
    if not causes and avg_days > 10:
        causes.append("Issues spending excessive time in this phase")
        actions.append("Look for process inefficiencies or resource constraints")
    return causes, actions


def identify_bottlenecks(
    issues: Sequence[Issue],
    now,
    tz=None,
    patterns: Mapping[str, Sequence[str]] = PHASE_PATTERNS,
) -> list[Bottleneck]:
    """Phases where open work piles up or lingers, most populated first.

    The most populated phase is high severity above 5 issues; any phase whose
    issues average more than 14 days without an update is medium; other phases
    above 3 issues are low. Quieter phases are not reported.
    """
    open_issues = [i for i in issues if i.is_open]
    if not open_issues:
        return []
    df = pd.DataFrame(
        {
            "phase": [issue_phase(i, patterns) for i in open_issues],
            "days": [time_in_phase(i, now, tz) for i in open_issues],
        }
    )
    grouped = df.groupby("phase").agg(count=("days", "size"), avg_days=("days", "mean"))
    order = [p for p in PHASE_LABELS if p in grouped.index] + [p for p in grouped.index if p not in PHASE_LABELS]
    grouped = grouped.reindex(order).sort_values("count", ascending=False, kind="stable")

    out: list[Bottleneck] = []
    for rank, (phase, row) in enumerate(grouped.iterrows()):
        count = int(row["count"])
        avg_days = round_half_up(row["avg_days"])
        if rank == 0 and count > 5:
            severity, reason = "high", f"Highest concentration of issues ({count})"
        elif avg_days > 14:
            severity, reason = "medium", f"Long average time in phase ({avg_days} days)"
        elif count > 3:
            severity, reason = "low", f"{count} issues currently in this phase"
        else:
            continue
        causes, actions = _root_causes(phase, count, avg_days)
        out.append(
            Bottleneck(
                phase=phase,
                label=PHASE_LABELS.get(phase, phase),
                count=count,
                avg_time_in_phase=avg_days,
                severity=severity,
                reason=reason,
                root_causes=causes,
                actions=actions,
            )
        )
    return out


def lead_time_distribution(lead_times: Sequence[int]) -> dict[str, int]:
    buckets = {name: 0 for name, _, _ in LEAD_TIME_BUCKETS}
    for days in lead_times:
        for name, _, upper in LEAD_TIME_BUCKETS:
            if upper is None or days <= upper:
                buckets[name] += 1
                break
    return buckets


def control_chart(
    issues: Sequence[Issue],
    now,
    metric: str = "lead",
    starts: Mapping[str, date] | None = None,
    tz=None,
) -> ControlChart:
    """Closed issues in close order with percentiles and +/-3 sigma limits.

    ``metric`` is ``"lead"`` or ``"cycle"``. Zero-day values are left out.
    """
    df = _closed_frame(issues, now, starts, tz)
    if df.empty:
        return ControlChart()
    df = df.assign(value=df[metric].fillna(0).astype(int))
    df = df[df["value"] > 0].sort_values("closed_at", kind="stable")
    if df.empty:
        return ControlChart()

    values = df["value"].sort_values().reset_index(drop=True)
    n = len(values)
    average = round_half_up(values.mean())
    std = math.sqrt(((values - average) ** 2).mean())
    points = [
        {"date": row.closed_at.date().isoformat(), "value": int(row.value), "iid": int(row.iid), "title": row.title}
        for row in df.itertuples(index=False)
    ]
    return ControlChart(
        points=points,
        average=average,
        median=int(values.iloc[n // 2]),
        p85=int(values.iloc[math.floor(n * 0.85)]),
        p95=int(values.iloc[math.floor(n * 0.95)]),
        std_dev=round_half_up(std),
        upper_limit=round_half_up(average + 3 * std),
        lower_limit=max(0, round_half_up(average - 3 * std)),
    )


def cycle_time_report(
    issues: Sequence[Issue],
    now,
    milestones: Sequence[Milestone] = (),
    tz=None,
) -> CycleTimeReport:
    starts = milestone_starts(milestones)
    stats = cycle_time_stats(issues, now, starts, tz)
    return CycleTimeReport(
        stats=stats,
        phase_distribution=phase_distribution(issues),
        bottlenecks=identify_bottlenecks(issues, now, tz),
        lead_time_distribution=lead_time_distribution(stats.lead_times),
        control_chart=control_chart(issues, now, "lead", starts, tz),
    )
