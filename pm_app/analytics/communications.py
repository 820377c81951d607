"""Summary of the communications log: counts, weekly timeline, open items."""

from __future__ import annotations

from collections import Counter
from collections.abc import Sequence

from pm_app.core.models import CommunicationEntry, DecisionEntry, IncidentEntry

from .metrics.dates import to_local


def week_key(entry: CommunicationEntry, tz=None) -> str | None:
    """ISO week (``2024-W03``) of the entry's ``sent_at``, else ``created_at``."""
    ts = to_local(entry.timestamp, tz)
    if ts is None:
        return None
    year, week, _ = ts.date().isocalendar()
    return f"{year}-W{week:02d}"


def communications_summary(entries: Sequence[CommunicationEntry], tz=None) -> dict:
    if not entries:
        return {
            "total": 0,
            "by_type": {},
            "by_priority": {},
            "timeline": [],
            "open_incidents": [],
            "pending_decisions": [],
            "by_issue": {},
        }

    by_type = Counter(e.type for e in entries)
    by_priority = Counter(e.priority for e in entries)

    weeks: dict[str, Counter] = {}
    for entry in entries:
        key = week_key(entry, tz)
        if key is None:
            continue
        weeks.setdefault(key, Counter())[entry.type] += 1
    timeline = [
        {"week": key, "total": sum(counts.values()), "by_type": dict(sorted(counts.items()))}
        for key, counts in sorted(weeks.items())
    ]

    open_incidents = [
        {"id": e.id, "title": e.title, "severity": e.severity, "ticket": e.ticket_number}
        for e in entries
        if isinstance(e, IncidentEntry) and not e.is_resolved
    ]
    pending = [
        {"id": e.id, "title": e.title, "decision_date": e.decision_date.isoformat() if e.decision_date else None}
        for e in entries
        if isinstance(e, DecisionEntry) and not e.approved_by
    ]

    by_issue: dict[int, list[str]] = {}
    for entry in entries:
        for iid in entry.linked_issues:
            by_issue.setdefault(iid, []).append(entry.id)

    return {
        "total": len(entries),
        "by_type": dict(sorted(by_type.items())),
        "by_priority": dict(sorted(by_priority.items())),
        "timeline": timeline,
        "open_incidents": open_incidents,
        "pending_decisions": pending,
        "by_issue": {iid: by_issue[iid] for iid in sorted(by_issue)},
    }
