"""Delivery confidence: five scored factors answering "will we hit the target?"."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field

import numpy as np

from pm_app.core.config import CONFIDENCE_STATUS, CONFIDENCE_STATUS_COLORS
from pm_app.core.labels import is_blocker
from pm_app.core.models import Issue

from .burndown import Burnup, remaining_change_percent
from .derived import round_half_up, safe_div
from .velocity import SprintVelocity, VelocityTrend


@dataclass(slots=True)
class ConfidenceFactor:
    name: str
    score: int
    max_score: int
    status: str
    detail: str


@dataclass(slots=True)
class DeliveryConfidence:
    score: int = 0
    status: str = "unknown"
    color: str = CONFIDENCE_STATUS_COLORS["unknown"]
    factors: list[ConfidenceFactor] = field(default_factory=list)
    recommendations: list[dict] = field(default_factory=list)
    total_score: int = 0
    max_score: int = 0
    completion_rate: int = 0
    blocker_count: int = 0
    velocity_trend: int = 0

    def factor(self, name: str) -> ConfidenceFactor | None:
        for f in self.factors:
            if f.name == name:
                return f
        return None


def _status(score: int, good: int, warning: int) -> str:
    if score >= good:
        return "good"
    if score >= warning:
        return "warning"
    return "risk"


def coefficient_of_variation(values: Sequence[float]) -> float:
    """Population CV in percent; 100 when the mean is 0."""
    arr = np.asarray(values, dtype=float)
    if arr.size == 0:
        return 100.0
    mean = float(arr.mean())
    if mean <= 0:
        return 100.0
    return float(arr.std()) / mean * 100


def _velocity_consistency(completed: Sequence[SprintVelocity]) -> ConfidenceFactor | None:
    if len(completed) < 3:
        return None
    cv = coefficient_of_variation([v.completed_issues for v in completed[-3:]])
    if cv < 15:
        score = 30
    elif cv < 30:
        score = 20
    elif cv < 50:
        score = 10
    else:
        score = 0
    return ConfidenceFactor(
        "Velocity Consistency", score, 30, _status(score, 20, 10), f"Coefficient of variation: {round_half_up(cv)}%"
    )


def _scope_stability(burnup: Burnup) -> ConfidenceFactor:
    change = remaining_change_percent(burnup)
    if change is not None:
        gap = burnup.points[-1]["remaining"] - burnup.points[0]["remaining"]
        if change <= -20:
            score, detail = 25, f"Gap shrinking: {abs(change)}% ({abs(gap)} fewer items)"
        elif change <= 0:
            score, detail = 22, f"Gap shrinking: {abs(change)}% ({abs(gap)} fewer items)"
        elif change <= 10:
            score, detail = 18, f"Gap growing slowly: +{change}% (+{gap} items)"
        elif change <= 25:
            score, detail = 12, f"Gap growing: +{change}% (+{gap} items)"
        elif change <= 50:
            score, detail = 6, f"Gap growing significantly: +{change}% (+{gap} items)"
        else:
            score, detail = 0, f"Gap growing rapidly: +{change}% (+{gap} items)"
    else:
        growth = burnup.scope_growth_percent
        if growth <= 5:
            score = 25
        elif growth <= 15:
            score = 20
        elif growth <= 30:
            score = 10
        else:
            score = 0
        detail = f"Scope growth: {growth}% (+{burnup.scope_growth} items)"
    return ConfidenceFactor("Scope Stability", score, 25, _status(score, 20, 12), detail)


def _completion_progress(burnup: Burnup) -> tuple[ConfidenceFactor, float]:
    rate = burnup.completion_rate
    if rate >= 80:
        score = 20
    elif rate >= 60:
        score = 15
    elif rate >= 40:
        score = 10
    elif rate >= 20:
        score = 5
    else:
        score = 0
    detail = f"{round_half_up(rate)}% complete ({burnup.completed}/{burnup.total_scope})"
    return ConfidenceFactor("Completion Progress", score, 20, _status(score, 15, 10), detail), rate


def _risk_profile(issues: Sequence[Issue]) -> tuple[ConfidenceFactor, int]:
    open_issues = [i for i in issues if i.is_open]
    blockers = sum(1 for i in open_issues if is_blocker(i.labels))
    pct = safe_div(blockers, len(open_issues)) * 100
    if pct == 0:
        score = 15
    elif pct < 5:
        score = 10
    elif pct < 10:
        score = 5
    else:
        score = 0
    detail = f"{blockers} blocker(s) ({round_half_up(pct)}% of open issues)"
    return ConfidenceFactor("Risk Profile", score, 15, _status(score, 10, 5), detail), blockers


def _velocity_trend(trend: VelocityTrend) -> ConfidenceFactor:
    value = trend.long_term
    if value > 10:
        score = 10
    elif value > 0:
        score = 8
    elif value >= -10:
        score = 5
    else:
        score = 0
    sign = "+" if value >= 0 else ""
    return ConfidenceFactor("Velocity Trend", score, 10, _status(score, 8, 5), f"{sign}{value}% long-term trend")


def _recommendations(
    factors: dict[str, ConfidenceFactor], completion_rate: float, burnup: Burnup, blockers: int
) -> list[dict]:
    recs: list[dict] = []
    velocity = factors.get("Velocity Consistency")
    if velocity is not None and velocity.score < 20:
        recs.append(
            {
                "priority": "high",
                "category": "velocity",
                "title": "Stabilize velocity",
                "description": "Velocity is inconsistent. Focus on predictable sprint planning and reducing interruptions.",
            }
        )
    scope = factors["Scope Stability"]
    if scope.score < 20:
        if "growing" in scope.detail:
            recs.append(
                {
                    "priority": "high",
                    "category": "scope",
                    "title": "Address growing backlog",
                    "description": f"{scope.detail}. New work is being added faster than completion. "
                    "Consider increasing capacity or reducing scope.",
                }
            )
        else:
            recs.append(
                {
                    "priority": "medium",
                    "category": "scope",
                    "title": "Monitor scope stability",
                    "description": f"{scope.detail}. Keep monitoring to ensure the gap continues to shrink.",
                }
            )
    if factors["Risk Profile"].score < 10:
        recs.append(
            {
                "priority": "critical",
                "category": "blockers",
                "title": "Address blockers immediately",
                "description": f"{blockers} blocker(s) are impacting delivery. Escalate and resolve critical impediments.",
            }
        )
    if factors["Velocity Trend"].score < 5:
        recs.append(
            {
                "priority": "high",
                "category": "velocity",
                "title": "Investigate velocity decline",
                "description": "Velocity is declining. Review team capacity, technical debt, and process bottlenecks.",
            }
        )
    if completion_rate < 50 and burnup.remaining > 0:
        recs.append(
            {
                "priority": "medium",
                "category": "progress",
                "title": "Accelerate delivery pace",
                "description": f"{burnup.remaining} items remaining. Consider increasing team capacity or reducing scope.",
            }
        )
    return recs


def delivery_confidence(
    issues: Sequence[Issue],
    completed_sprints: Sequence[SprintVelocity],
    burnup: Burnup,
    trend: VelocityTrend,
) -> DeliveryConfidence:
    """Score 0-100 from the available factors, normalized by their max.

    Velocity consistency needs three completed sprints and is left out of both
    the score and the max otherwise.
    """
    if not issues:
        return DeliveryConfidence()

    factors: list[ConfidenceFactor] = []
    consistency = _velocity_consistency(completed_sprints)
    if consistency is not None:
        factors.append(consistency)
    factors.append(_scope_stability(burnup))
    progress, completion_rate = _completion_progress(burnup)
    factors.append(progress)
    risk, blockers = _risk_profile(issues)
    factors.append(risk)
    factors.append(_velocity_trend(trend))

    total = sum(f.score for f in factors)
    max_total = sum(f.max_score for f in factors)
    score = round_half_up(safe_div(total, max_total) * 100)
    status, color = "critical", CONFIDENCE_STATUS_COLORS["critical"]
    for threshold, name, _ in CONFIDENCE_STATUS:
        if score >= threshold:
            status, color = name, CONFIDENCE_STATUS_COLORS[name]
            break

    return DeliveryConfidence(
        score=score,
        status=status,
        color=color,
        factors=factors,
        recommendations=_recommendations({f.name: f for f in factors}, completion_rate, burnup, blockers),
        total_score=total,
        max_score=max_total,
        completion_rate=round_half_up(completion_rate),
        blocker_count=blockers,
        velocity_trend=trend.long_term,
    )
