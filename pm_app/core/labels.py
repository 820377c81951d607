"""Label parsing helpers: sprint names, blockers, initiatives, story points."""

from __future__ import annotations

import re
from collections.abc import Iterable

from .config import (
    BLOCKER_LABEL_TOKENS,
    BUG_LABEL_TOKENS,
    INITIATIVE_LABEL_PREFIX,
    LEGACY_SPRINT_PATTERN,
    SPRINT_LABEL_PREFIX,
    STORY_POINT_LABEL_PREFIX,
)
from .models import Issue, Iteration

_LEGACY_SPRINT_RE = re.compile(LEGACY_SPRINT_PATTERN, re.IGNORECASE)


def _clean(labels: Iterable[str] | None) -> list[str]:
    if not labels:
        return []
    return [str(lbl).strip() for lbl in labels if isinstance(lbl, str) and lbl.strip()]


def extract_sprint(labels: Iterable[str] | None, iteration: Iteration | None = None) -> str | None:
    """Return the sprint name for an issue, or None.

    The iteration name wins when present. Otherwise the first label that is
    either ``sprint::<token>`` or a legacy ``Sprint <N>`` is used; the legacy
    form yields the captured number as a string.
    """
    if iteration is not None and iteration.name:
        return iteration.name
    for label in _clean(labels):
        if label.lower().startswith(SPRINT_LABEL_PREFIX):
            token = label[len(SPRINT_LABEL_PREFIX) :].strip()
            if token:
                return token
            continue
        match = _LEGACY_SPRINT_RE.match(label)
        if match:
            return match.group(1)
    return None


def issue_sprint(issue: Issue) -> str | None:
    return extract_sprint(issue.labels, issue.iteration)


def is_blocker(labels: Iterable[str] | None) -> bool:
    for label in _clean(labels):
        lower = label.lower()
        if any(tok in lower for tok in BLOCKER_LABEL_TOKENS):
            return True
    return False


def is_bug(labels: Iterable[str] | None) -> bool:
    for label in _clean(labels):
        lower = label.lower()
        if any(tok in lower for tok in BUG_LABEL_TOKENS):
            return True
    return False


def initiative_of(labels: Iterable[str] | None) -> str | None:
    for label in _clean(labels):
        if label.lower().startswith(INITIATIVE_LABEL_PREFIX):
            name = label[len(INITIATIVE_LABEL_PREFIX) :].strip()
            if name:
                return name
    return None


def priority_of(labels: Iterable[str] | None) -> str:
    """Map priority labels (``priority::high``, ``P1``) to High/Medium/Low."""
    for label in _clean(labels):
        lower = label.lower()
        if "priority" in lower or lower in ("p1", "p2", "p3"):
            if "high" in lower or "critical" in lower or lower == "p1":
                return "High"
            if "low" in lower or lower == "p3":
                return "Low"
            return "Medium"
    return "Medium"


def story_points_from_labels(labels: Iterable[str] | None) -> int | None:
    for label in _clean(labels):
        if label.lower().startswith(STORY_POINT_LABEL_PREFIX):
            raw = label[len(STORY_POINT_LABEL_PREFIX) :].strip()
            match = re.match(r"\d+", raw)
            if match:
                return int(match.group(0))
    return None


def issue_points(issue: Issue) -> int:
    """Story points of an issue: weight when set, else ``sp::`` label, else 0."""
    if issue.weight is not None:
        return int(issue.weight)
    points = story_points_from_labels(issue.labels)
    return points or 0


def metric_value(issue: Issue, metric: str) -> int:
    """1 per issue in ``issues`` mode, story points in ``points`` mode."""
    if metric == "points":
        return issue_points(issue)
    return 1
