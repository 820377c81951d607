"""Issue statistics and the weighted project health score."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import asdict, dataclass
from datetime import date

from pm_app.core.config import AT_RISK_HORIZON_DAYS, HEALTH_AMBER_MIN, HEALTH_GREEN_MIN, HEALTH_WEIGHTS
from pm_app.core.labels import is_blocker
from pm_app.core.models import Epic, Issue

from .derived import clamp, percent, round_half_up, safe_div


@dataclass(slots=True)
class IssueStats:
    total: int = 0
    open: int = 0
    closed: int = 0
    blockers: int = 0
    overdue: int = 0
    at_risk: int = 0
    completion_rate: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(slots=True)
class HealthScore:
    completion: int = 0
    schedule: int = 0
    blocker: int = 0
    risk: int = 0
    total: int = 0
    status: str = "red"

    def to_dict(self) -> dict:
        return asdict(self)


def calculate_stats(issues: Sequence[Issue], today: date) -> IssueStats:
    """Counts over ``issues``; blockers, overdue and at-risk look at open issues only.

    Overdue means a due date before ``today``; at risk means due within the next
    seven days, today included.
    """
    total = len(issues)
    open_issues = [i for i in issues if i.is_open]
    closed = total - len(open_issues)
    overdue = at_risk = 0
    for issue in open_issues:
        if issue.due_date is None:
            continue
        days_left = (issue.due_date - today).days
        if days_left < 0:
            overdue += 1
        elif days_left <= AT_RISK_HORIZON_DAYS:
            at_risk += 1
    return IssueStats(
        total=total,
        open=len(open_issues),
        closed=closed,
        blockers=sum(1 for i in open_issues if is_blocker(i.labels)),
        overdue=overdue,
        at_risk=at_risk,
        completion_rate=percent(closed, total),
    )


def health_score(stats: IssueStats) -> HealthScore:
    """Weighted composite of completion, schedule, blocker and risk sub-scores.

    An empty project scores 0 everywhere and is red.
    """
    if stats.total == 0:
        return HealthScore()
    open_base = max(stats.open, 1)
    completion = 100 * safe_div(stats.closed, stats.total)
    schedule = clamp(100 * (1 - safe_div(stats.overdue, stats.total)), 0, 100)
    blocker = clamp(100 * (1 - stats.blockers / open_base), 0, 100)
    risk = clamp(100 * (1 - stats.at_risk / open_base), 0, 100)
    total = round_half_up(
        HEALTH_WEIGHTS["completion"] * completion
        + HEALTH_WEIGHTS["schedule"] * schedule
        + HEALTH_WEIGHTS["blocker"] * blocker
        + HEALTH_WEIGHTS["risk"] * risk
    )
    if total >= HEALTH_GREEN_MIN:
        status = "green"
    elif total >= HEALTH_AMBER_MIN:
        status = "amber"
    else:
        status = "red"
    return HealthScore(
        completion=round_half_up(completion),
        schedule=round_half_up(schedule),
        blocker=round_half_up(blocker),
        risk=round_half_up(risk),
        total=total,
        status=status,
    )


def epic_issues(epic: Epic, issues: Sequence[Issue]) -> list[Issue]:
    wanted = set(epic.issue_iids)
    return [i for i in issues if i.epic_id == epic.id or i.iid in wanted]


def epic_health(epic: Epic, issues: Sequence[Issue], today: date) -> dict:
    children = epic_issues(epic, issues)
    stats = calculate_stats(children, today)
    health = health_score(stats)
    return {
        "epic_id": epic.id,
        "title": epic.title,
        "stats": stats.to_dict(),
        "health": health.status,
        "health_score": health.total,
        "progress": stats.completion_rate,
    }
