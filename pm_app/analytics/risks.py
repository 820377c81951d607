"""Risk register summary."""

from __future__ import annotations

from collections.abc import Sequence

from pm_app.core.config import RISK_HIGH_SCORE, RISK_MEDIUM_SCORE
from pm_app.core.models import Risk


def risk_bucket(score: int) -> str:
    if score >= RISK_HIGH_SCORE:
        return "high"
    if score >= RISK_MEDIUM_SCORE:
        return "medium"
    return "low"


def risk_summary(risks: Sequence[Risk], top: int = 5) -> dict:
    """Status counts, score buckets of active risks, and the highest scored ones.

    Closed risks are counted by status only.
    """
    by_status = {"open": 0, "monitoring": 0, "closed": 0}
    buckets = {"high": 0, "medium": 0, "low": 0}
    active = []
    for risk in risks:
        by_status[risk.status] = by_status.get(risk.status, 0) + 1
        if risk.status == "closed":
            continue
        buckets[risk_bucket(risk.score)] += 1
        active.append(risk)
    active.sort(key=lambda r: (-r.score, r.id))
    return {
        "total": len(risks),
        "by_status": by_status,
        "by_score": buckets,
        "top": [
            {
                "id": r.id,
                "title": r.title,
                "score": r.score,
                "level": risk_bucket(r.score),
                "status": r.status,
                "owner": r.owner,
            }
            for r in active[:top]
        ],
    }
