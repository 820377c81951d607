"""Backlog readiness: how much of the open backlog could enter a sprint today."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import asdict, dataclass, field

import pandas as pd

from pm_app.core.config import (
    BACKLOG_ALERT_HIGH,
    BACKLOG_ALERT_MEDIUM,
    BACKLOG_MIN_DESCRIPTION,
    BACKLOG_MISSING_SCORES,
    BACKLOG_REFINEMENT_LIMIT,
    BACKLOG_SCORE_WEIGHTS,
    BACKLOG_TREND_STABLE,
    BACKLOG_TREND_WINDOW,
)
from pm_app.core.models import Issue

from .derived import percent, round_half_up

MISSING_FIELD_LABELS: Mapping[str, str] = {
    "weight": "Weight/Story Points",
    "description": "Description",
    "epic": "Epic",
    "milestone": "Milestone",
    "assignee": "Assignee",
}


@dataclass(slots=True)
class BacklogTrend:
    direction: str  # improving | declining | stable
    difference: int = 0


@dataclass(slots=True)
class BacklogHealth:
    total_issues: int = 0
    health_score: int = 100
    refined_pct: int = 100
    described_pct: int = 100
    ready_pct: int = 100
    refined: int = 0
    described: int = 0
    ready: int = 0
    alert: dict | None = None
    trend: BacklogTrend | None = None
    breakdown: dict[str, list[int]] = field(default_factory=dict)
    needs_refinement: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)

    def history_entry(self, timestamp) -> dict:
        """Record in the persisted ``backlogHealthHistory`` layout."""
        return {
            "timestamp": timestamp.isoformat(),
            "healthScore": self.health_score,
            "refinedPercentage": self.refined_pct,
            "hasDescriptionPercentage": self.described_pct,
            "readyForSprintPercentage": self.ready_pct,
        }


def is_refined(issue: Issue) -> bool:
    return issue.weight is not None and issue.weight > 0


def has_description(issue: Issue) -> bool:
    return len(issue.description.strip()) >= BACKLOG_MIN_DESCRIPTION


def missing_fields(issue: Issue) -> list[str]:
    missing = []
    if not is_refined(issue):
        missing.append("weight")
    if not has_description(issue):
        missing.append("description")
    if issue.epic_id is None:
        missing.append("epic")
    if not issue.milestone:
        missing.append("milestone")
    if issue.assignee is None and not issue.assignees:
        missing.append("assignee")
    return missing


def is_ready(issue: Issue) -> bool:
    """Estimated, described, assigned, and placed in an epic and a milestone."""
    return not missing_fields(issue)


def _frame(issues: Sequence[Issue]) -> pd.DataFrame:
    rows = []
    for i in issues:
        missing = missing_fields(i)
        rows.append(
            {
                "iid": i.iid,
                "title": i.title,
                "created_at": i.created_at,
                "refined": "weight" not in missing,
                "described": "description" not in missing,
                "ready": not missing,
                "missing": missing,
                "score": sum(BACKLOG_MISSING_SCORES[m] for m in missing),
            }
        )
    return pd.DataFrame(
        rows, columns=["iid", "title", "created_at", "refined", "described", "ready", "missing", "score"]
    )


def backlog_alert(score: int) -> dict | None:
    if score < BACKLOG_ALERT_HIGH:
        return {
            "severity": "high",
            "message": "Backlog health is very low. Schedule a refinement session now.",
            "recommendation": "Refine the top 10 priority items with weights and descriptions.",
        }
    if score < BACKLOG_ALERT_MEDIUM:
        return {
            "severity": "medium",
            "message": "Backlog health is below the recommended threshold.",
            "recommendation": "Hold a backlog refinement session before the next sprint planning.",
        }
    return None


def backlog_trend(score: int, history: Sequence[Mapping]) -> BacklogTrend | None:
    """Current score against the mean of the last few recorded scores.

    Needs at least two history records. Differences under 5 points are stable.
    """
    scores = [h.get("healthScore") for h in history if isinstance(h, Mapping)]
    scores = [s for s in scores if isinstance(s, (int, float)) and not isinstance(s, bool)]
    if len(scores) < 2:
        return None
    recent = scores[-BACKLOG_TREND_WINDOW:]
    difference = score - sum(recent) / len(recent)
    if abs(difference) < BACKLOG_TREND_STABLE:
        return BacklogTrend("stable")
    direction = "improving" if difference > 0 else "declining"
    return BacklogTrend(direction, round_half_up(abs(difference)))


def refinement_queue(df: pd.DataFrame, limit: int = BACKLOG_REFINEMENT_LIMIT) -> list[dict]:
    """Least ready issues first, oldest first among equals."""
    if df.empty:
        return []
    ranked = df.sort_values(["score", "created_at", "iid"], ascending=[False, True, True], kind="stable")
    return [
        {
            "iid": int(row.iid),
            "title": row.title,
            "needs_work_score": int(row.score),
            "missing_fields": [MISSING_FIELD_LABELS[m] for m in row.missing],
        }
        for row in ranked.head(limit).itertuples(index=False)
    ]


def backlog_health(
    issues: Sequence[Issue],
    history: Sequence[Mapping] = (),
    limit: int = BACKLOG_REFINEMENT_LIMIT,
) -> BacklogHealth:
    """Readiness of open issues, weighted 35% refined, 25% described, 40% ready."""
    backlog = [i for i in issues if i.is_open]
    if not backlog:
        return BacklogHealth(trend=backlog_trend(100, history))
    df = _frame(backlog)
    total = len(df)
    refined = int(df["refined"].sum())
    described = int(df["described"].sum())
    ready = int(df["ready"].sum())
    refined_pct = percent(refined, total)
    described_pct = percent(described, total)
    ready_pct = percent(ready, total)
    score = round_half_up(
        refined_pct * BACKLOG_SCORE_WEIGHTS["refined"]
        + described_pct * BACKLOG_SCORE_WEIGHTS["described"]
        + ready_pct * BACKLOG_SCORE_WEIGHTS["ready"]
    )

    def iids(mask) -> list[int]:
        return [int(v) for v in df.loc[mask, "iid"]]

    return BacklogHealth(
        total_issues=total,
        health_score=score,
        refined_pct=refined_pct,
        described_pct=described_pct,
        ready_pct=ready_pct,
        refined=refined,
        described=described,
        ready=ready,
        alert=backlog_alert(score),
        trend=backlog_trend(score, history),
        breakdown={
            "refined": iids(df["refined"]),
            "not_refined": iids(~df["refined"]),
            "has_description": iids(df["described"]),
            "no_description": iids(~df["described"]),
            "ready": iids(df["ready"]),
            "not_ready": iids(~df["ready"]),
        },
        needs_refinement=refinement_queue(df, limit),
    )
