"""Sprint catalog, ordering, and current-sprint selection."""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date

from pm_app.core.labels import issue_sprint
from pm_app.core.models import Issue

_TRAILING_NUMBER_RE = re.compile(r"(\d+(?:\.\d+)?)\s*$")


@dataclass(slots=True)
class SprintInfo:
    name: str
    start_date: date | None = None
    due_date: date | None = None
    id: int | None = None

    def contains(self, day: date) -> bool:
        if self.start_date is None or self.due_date is None:
            return False
        return self.start_date <= day <= self.due_date

    def is_completed(self, today: date) -> bool:
        return self.due_date is not None and self.due_date < today


def sprint_number(name: str | None) -> float | None:
    """Numeric value of a sprint name: ``"7"`` and ``"Sprint 7"`` both give 7."""
    if name is None:
        return None
    text = str(name).strip()
    try:
        return float(text)
    except ValueError:
        pass
    match = _TRAILING_NUMBER_RE.search(text)
    if match:
        return float(match.group(1))
    return None


def sprint_sort_key(name: str, start_date: date | None):
    """Start date first, then numeric name, then lexicographic name."""
    if start_date is not None:
        return (0, start_date.toordinal(), name)
    number = sprint_number(name)
    if number is not None:
        return (1, number, name)
    return (2, 0, name)


def build_catalog(issues: Iterable[Issue]) -> dict[str, SprintInfo]:
    """Map sprint name to its dates, taken from the first issue carrying them."""
    catalog: dict[str, SprintInfo] = {}
    for issue in issues:
        name = issue_sprint(issue)
        if name is None:
            continue
        info = catalog.get(name)
        if info is None:
            info = catalog[name] = SprintInfo(name=name)
        it = issue.iteration
        if it is None or it.name != name:
            continue
        if info.start_date is None and info.due_date is None and (it.start_date or it.due_date):
            info.start_date = it.start_date
            info.due_date = it.due_date
        if info.id is None:
            info.id = it.id
    return catalog


def ordered_sprints(catalog: dict[str, SprintInfo]) -> list[SprintInfo]:
    return sorted(catalog.values(), key=lambda s: sprint_sort_key(s.name, s.start_date))


def current_sprint(
    issues: Iterable[Issue],
    today: date,
    catalog: dict[str, SprintInfo] | None = None,
) -> str | None:
    """Pick the sprint treated as "current".

    1. the sprint whose [start, due] range contains ``today``;
    2. else the most recently ended sprint;
    3. else a sprint holding open issues, preferring the largest number.
    """
    issues = list(issues)
    if catalog is None:
        catalog = build_catalog(issues)
    ordered = ordered_sprints(catalog)
    for info in ordered:
        if info.contains(today):
            return info.name

    ended = [s for s in ordered if s.start_date and s.is_completed(today)]
    if ended:
        return max(ended, key=lambda s: (s.due_date, sprint_sort_key(s.name, s.start_date))).name

    open_names: list[str] = []
    for issue in issues:
        name = issue_sprint(issue)
        if issue.is_open and name is not None and name not in open_names:
            open_names.append(name)
    if not open_names:
        return None
    numbered = [(sprint_number(n), n) for n in open_names if sprint_number(n) is not None]
    if numbered:
        return max(numbered, key=lambda pair: pair[0])[1]
    return open_names[0]


def unique_iterations(issues: Iterable[Issue]) -> list[str]:
    """Sprint names, most recent first."""
    return [s.name for s in reversed(ordered_sprints(build_catalog(issues)))]
