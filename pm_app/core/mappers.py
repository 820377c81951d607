"""Mapping raw GitLab JSON and persisted documents into validated models."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from datetime import date, datetime
from typing import Any

import pandas as pd
import pytz

from pm_app.analytics.metrics.dates import local_date

from .config import (
    DEFAULT_VELOCITY_CONFIG,
    DEFAULT_WEEKLY_CAPACITY,
    TIMEZONE,
    VELOCITY_METRICS,
    VELOCITY_MODES,
)
from .errors import SnapshotValidationError, UnknownVariantError
from .labels import is_blocker, issue_points, issue_sprint
from .models import (
    Absence,
    Assignee,
    CommunicationEntry,
    DecisionEntry,
    EmailEntry,
    Epic,
    IncidentEntry,
    Issue,
    Iteration,
    MeetingNotesEntry,
    Milestone,
    PersistedState,
    ProjectConfig,
    Risk,
    ScopeChangeEntry,
    Snapshot,
    TeamMember,
    UserPreferences,
    VelocityConfig,
)

ISSUE_STATES: dict[str, str] = {"opened": "open", "open": "open", "reopened": "open", "closed": "closed"}
RISK_STATUSES = frozenset({"open", "monitoring", "closed"})
COMMUNICATION_PRIORITIES = frozenset({"low", "medium", "high", "critical"})


# ------------------ Scalar parsers ------------------
def parse_dt(val, path: str, *, required: bool = False) -> datetime | None:
    if val is None or val == "":
        if required:
            raise SnapshotValidationError(path, "missing timestamp")
        return None
    ts = pd.to_datetime(val, utc=True, errors="coerce")
    if ts is None or pd.isna(ts):
        raise SnapshotValidationError(path, f"unparseable timestamp {val!r}")
    return ts.to_pydatetime()


def parse_date(val, path: str, *, required: bool = False) -> date | None:
    """Calendar date as written (``YYYY-MM-DD`` or the date part of an ISO string)."""
    if val is None or val == "":
        if required:
            raise SnapshotValidationError(path, "missing date")
        return None
    if isinstance(val, datetime):
        return val.date()
    if isinstance(val, date):
        return val
    ts = pd.to_datetime(str(val), errors="coerce")
    if ts is None or pd.isna(ts):
        raise SnapshotValidationError(path, f"unparseable date {val!r}")
    return ts.date()


def _non_negative_int(val, path: str) -> int | None:
    if val is None or val == "":
        return None
    if isinstance(val, bool):
        raise SnapshotValidationError(path, f"expected integer, got {val!r}")
    try:
        num = float(val)
    except (TypeError, ValueError):
        raise SnapshotValidationError(path, f"expected integer, got {val!r}") from None
    if num < 0 or not num.is_integer():
        raise SnapshotValidationError(path, f"must be a non-negative integer, got {val!r}")
    return int(num)


def _non_negative_float(val, path: str) -> float:
    if isinstance(val, bool):
        raise SnapshotValidationError(path, f"expected a number, got {val!r}")
    try:
        num = float(val)
    except (TypeError, ValueError):
        raise SnapshotValidationError(path, f"expected a number, got {val!r}") from None
    if pd.isna(num) or num < 0:
        raise SnapshotValidationError(path, f"must be a non-negative number, got {val!r}")
    return num


def _str_list(val) -> list[str]:
    if not val:
        return []
    if isinstance(val, str):
        return [val]
    return [str(v) for v in val if v is not None and str(v) != ""]


def _int_list(val, path: str) -> list[int]:
    out: list[int] = []
    for idx, item in enumerate(val or []):
        if isinstance(item, Mapping):
            item = item.get("iid", item.get("id"))
        if isinstance(item, str):
            item = item.lstrip("#")
        num = _non_negative_int(item, f"{path}[{idx}]")
        if num is not None:
            out.append(num)
    return out


# ------------------ Upstream snapshot ------------------
def map_iteration(raw: Mapping[str, Any] | None, path: str) -> Iteration | None:
    if not raw:
        return None
    if isinstance(raw, str):
        return Iteration(name=raw)
    name = raw.get("title") or raw.get("name")
    start = parse_date(raw.get("start_date"), f"{path}.start_date")
    due = parse_date(raw.get("due_date"), f"{path}.due_date")
    if start and due and due < start:
        raise SnapshotValidationError(f"{path}.due_date", f"due date {due} precedes start date {start}")
    return Iteration(name=name, start_date=start, due_date=due, id=raw.get("id"))


def _person(person) -> Assignee | None:
    if not isinstance(person, Mapping) or not person.get("username"):
        return None
    return Assignee(
        username=person["username"],
        id=person.get("id"),
        name=person.get("name"),
        avatar_url=person.get("avatar_url"),
    )


def map_assignees(raw: Mapping[str, Any]) -> list[Assignee]:
    """``assignee`` first, then the rest of ``assignees``, one entry per username."""
    people = [raw.get("assignee"), *(raw.get("assignees") or [])]
    out: list[Assignee] = []
    seen: set[str] = set()
    for person in people:
        mapped = _person(person)
        if mapped is not None and mapped.username not in seen:
            seen.add(mapped.username)
            out.append(mapped)
    return out


def map_issue(raw: Mapping[str, Any], path: str = "issue") -> Issue:
    iid = _non_negative_int(raw.get("iid"), f"{path}.iid")
    if iid is None:
        raise SnapshotValidationError(f"{path}.iid", "missing iid")
    state = ISSUE_STATES.get(str(raw.get("state") or "").lower())
    if state is None:
        raise SnapshotValidationError(f"{path}.state", f"unknown state {raw.get('state')!r}")
    created = parse_dt(raw.get("created_at"), f"{path}.created_at", required=True)
    closed = parse_dt(raw.get("closed_at"), f"{path}.closed_at")
    if closed is not None and closed < created:
        raise SnapshotValidationError(f"{path}.closed_at", "close timestamp precedes creation timestamp")

    epic = raw.get("epic")
    epic_id = None
    if isinstance(epic, Mapping):
        epic_id = epic.get("id")
    elif raw.get("epic_id") is not None:
        epic_id = raw.get("epic_id")
    milestone = raw.get("milestone")
    assignees = map_assignees(raw)

    return Issue(
        iid=iid,
        title=raw.get("title") or "",
        state=state,
        created_at=created,
        labels=_str_list(raw.get("labels")),
        weight=_non_negative_int(raw.get("weight"), f"{path}.weight"),
        assignee=assignees[0] if assignees else None,
        iteration=map_iteration(raw.get("iteration"), f"{path}.iteration"),
        epic_id=epic_id,
        milestone=milestone.get("title") if isinstance(milestone, Mapping) else milestone,
        closed_at=closed,
        updated_at=parse_dt(raw.get("updated_at"), f"{path}.updated_at"),
        due_date=parse_date(raw.get("due_date"), f"{path}.due_date"),
        description=raw.get("description") or "",
        blocking_issues=_int_list(raw.get("blocking_issues"), f"{path}.blocking_issues"),
        notes=[n.get("body") or "" for n in raw.get("notes") or [] if isinstance(n, Mapping)],
        assignees=assignees,
    )


def map_epic(raw: Mapping[str, Any], path: str = "epic") -> Epic:
    epic_id = _non_negative_int(raw.get("id"), f"{path}.id")
    if epic_id is None:
        raise SnapshotValidationError(f"{path}.id", "missing id")
    children = raw.get("issues") or raw.get("issue_iids") or []
    return Epic(
        id=epic_id,
        title=raw.get("title") or "",
        state=ISSUE_STATES.get(str(raw.get("state") or "").lower(), "open"),
        due_date=parse_date(raw.get("due_date") or raw.get("end_date"), f"{path}.due_date"),
        description=raw.get("description") or "",
        labels=_str_list(raw.get("labels")),
        issue_iids=_int_list(children, f"{path}.issues"),
    )


def map_milestone(raw: Mapping[str, Any], path: str = "milestone") -> Milestone:
    ms_id = _non_negative_int(raw.get("id"), f"{path}.id")
    if ms_id is None:
        raise SnapshotValidationError(f"{path}.id", "missing id")
    start = parse_date(raw.get("start_date"), f"{path}.start_date")
    due = parse_date(raw.get("due_date"), f"{path}.due_date")
    if start and due and due < start:
        raise SnapshotValidationError(f"{path}.due_date", f"due date {due} precedes start date {start}")
    return Milestone(
        id=ms_id,
        title=raw.get("title") or "",
        state=raw.get("state") or "active",
        start_date=start,
        due_date=due,
    )


def assemble_snapshot(
    raw_issues: Iterable[Mapping[str, Any]],
    raw_epics: Iterable[Mapping[str, Any]] = (),
    raw_milestones: Iterable[Mapping[str, Any]] = (),
) -> Snapshot:
    """Validate and map the upstream payloads into a :class:`Snapshot`.

    Raises
    ------
    SnapshotValidationError
        On the first invariant violation; nothing is repaired.
    """
    issues: list[Issue] = []
    seen: set[int] = set()
    for idx, raw in enumerate(raw_issues or []):
        issue = map_issue(raw, f"issues[{idx}]")
        if issue.iid in seen:
            raise SnapshotValidationError(f"issues[{idx}].iid", f"duplicate iid {issue.iid}")
        seen.add(issue.iid)
        issues.append(issue)
    epics = [map_epic(raw, f"epics[{idx}]") for idx, raw in enumerate(raw_epics or [])]
    milestones = [map_milestone(raw, f"milestones[{idx}]") for idx, raw in enumerate(raw_milestones or [])]
    return Snapshot(issues=issues, epics=epics, milestones=milestones)


# ------------------ Persisted documents ------------------
def map_project_config(doc: Mapping[str, Any] | None) -> ProjectConfig:
    doc = doc or {}
    year_filter = doc.get("yearFilter", doc.get("filter2025", False))
    timezone = doc.get("timezone") or TIMEZONE
    if timezone not in pytz.all_timezones_set:
        raise SnapshotValidationError("config.timezone", f"unknown timezone {timezone!r}")
    return ProjectConfig(
        base_url=doc.get("gitlabUrl") or doc.get("baseUrl") or "",
        project_id=str(doc.get("projectId") or ""),
        group_path=doc.get("groupPath") or "",
        token=doc.get("token") or "",
        year_filter=str(year_filter).lower() == "true" if isinstance(year_filter, str) else bool(year_filter),
        timezone=timezone,
    )


def map_team_member(doc: Mapping[str, Any], path: str) -> TeamMember:
    username = doc.get("username")
    if not username:
        raise SnapshotValidationError(f"{path}.username", "missing username")
    raw_capacity = doc.get("defaultCapacity", doc.get("weeklyCapacity"))
    capacity = DEFAULT_WEEKLY_CAPACITY if raw_capacity is None else raw_capacity
    try:
        capacity = float(capacity)
    except (TypeError, ValueError):
        raise SnapshotValidationError(f"{path}.defaultCapacity", f"not a number: {capacity!r}") from None
    if capacity < 0:
        raise SnapshotValidationError(f"{path}.defaultCapacity", "weekly capacity must be >= 0")
    personnel = {k: str(doc[k]) for k in ("gpn", "tNumber") if doc.get(k)}
    return TeamMember(
        username=username,
        user_id=doc.get("userId", doc.get("id")),
        name=doc.get("name"),
        avatar_url=doc.get("avatarUrl"),
        role=doc.get("role") or "Developer",
        weekly_capacity=capacity,
        personnel_ids=personnel,
    )


def map_absence(doc: Mapping[str, Any], path: str) -> Absence:
    username = doc.get("username")
    if not username:
        raise SnapshotValidationError(f"{path}.username", "missing username")
    start = parse_date(doc.get("startDate"), f"{path}.startDate", required=True)
    end = parse_date(doc.get("endDate"), f"{path}.endDate", required=True)
    if end < start:
        raise SnapshotValidationError(f"{path}.endDate", f"end date {end} precedes start date {start}")
    return Absence(username=username, start_date=start, end_date=end, reason=doc.get("reason") or "vacation")


def map_risk(doc: Mapping[str, Any], path: str) -> Risk:
    probability = _non_negative_int(doc.get("probability"), f"{path}.probability")
    impact = _non_negative_int(doc.get("impact"), f"{path}.impact")
    for name, value in (("probability", probability), ("impact", impact)):
        if value not in (1, 2, 3):
            raise SnapshotValidationError(f"{path}.{name}", f"must be 1, 2 or 3, got {value!r}")
    status = (doc.get("status") or "open").lower()
    if status not in RISK_STATUSES:
        raise SnapshotValidationError(f"{path}.status", f"unknown status {status!r}")
    mitigation = doc.get("mitigation", doc.get("mitigations"))
    return Risk(
        id=str(doc.get("id") or path),
        title=doc.get("title") or "",
        probability=probability,
        impact=impact,
        status=status,
        description=doc.get("description") or "",
        owner=doc.get("owner"),
        mitigations=_str_list(mitigation),
    )


def _common_fields(doc: Mapping[str, Any], path: str) -> dict[str, Any]:
    priority = (doc.get("priority") or "medium").lower()
    if priority not in COMMUNICATION_PRIORITIES:
        raise SnapshotValidationError(f"{path}.priority", f"unknown priority {priority!r}")
    return {
        "id": str(doc.get("id") or path),
        "sent_at": parse_dt(doc.get("sentAt"), f"{path}.sentAt"),
        "created_at": parse_dt(doc.get("createdAt"), f"{path}.createdAt"),
        "priority": priority,
        "stakeholder_ids": _str_list(doc.get("stakeholderIds")),
        "linked_issues": _int_list(doc.get("linkedIssues"), f"{path}.linkedIssues"),
        "linked_epics": _int_list(doc.get("linkedEpics"), f"{path}.linkedEpics"),
        "tags": _str_list(doc.get("tags")),
    }


def _email(doc, path, common):
    return EmailEntry(
        **common,
        sender=doc.get("from") or "",
        to=_str_list(doc.get("to")),
        cc=_str_list(doc.get("cc")),
        subject=doc.get("subject") or "",
        content=doc.get("content") or "",
    )


def _decision(doc, path, common):
    return DecisionEntry(
        **common,
        title=doc.get("title") or "",
        description=doc.get("description") or "",
        decision_date=parse_date(doc.get("decisionDate"), f"{path}.decisionDate"),
        approved_by=_str_list(doc.get("approvedBy")),
        document_url=doc.get("documentUrl"),
        document_version=doc.get("documentVersion"),
    )


def _meeting_notes(doc, path, common):
    return MeetingNotesEntry(
        **common,
        title=doc.get("title") or "",
        attendees=_str_list(doc.get("attendees")),
        content=doc.get("content") or "",
        action_items=_str_list(doc.get("actionItems")),
    )


def _incident(doc, path, common):
    return IncidentEntry(
        **common,
        title=doc.get("title") or "",
        description=doc.get("description") or "",
        severity=doc.get("severity") or "medium",
        ticket_number=doc.get("ticketNumber"),
        ticket_link=doc.get("ticketLink"),
        resolution=doc.get("resolution"),
        resolution_date=parse_date(doc.get("resolutionDate"), f"{path}.resolutionDate"),
    )


def _scope_change(doc, path, common):
    return ScopeChangeEntry(
        **common,
        title=doc.get("title") or "",
        description=doc.get("description") or "",
        change_type=doc.get("changeType") or "",
        impact=doc.get("impact") or "",
        approved_by=_str_list(doc.get("approvedBy")),
    )


COMMUNICATION_PARSERS = {
    "email": _email,
    "decision": _decision,
    "meeting_notes": _meeting_notes,
    "incident": _incident,
    "scope_change": _scope_change,
}


def map_communication(doc: Mapping[str, Any], path: str) -> CommunicationEntry:
    kind = doc.get("type")
    parser = COMMUNICATION_PARSERS.get(kind)
    if parser is None:
        raise UnknownVariantError(f"{path}.type", f"unknown communication type {kind!r}")
    return parser(doc, path, _common_fields(doc, path))


def map_backlog_history(doc: Any) -> list[dict]:
    if doc is None:
        return []
    if not isinstance(doc, list):
        raise SnapshotValidationError("backlogHealthHistory", "expected a list of records")
    for idx, entry in enumerate(doc):
        if not isinstance(entry, Mapping):
            raise SnapshotValidationError(f"backlogHealthHistory[{idx}]", "expected an object")
    return [dict(entry) for entry in doc]


def map_velocity_config(doc: Mapping[str, Any] | None) -> VelocityConfig:
    merged = {**DEFAULT_VELOCITY_CONFIG, **(doc or {})}
    mode = merged["mode"]
    metric = merged["metricType"]
    if mode not in VELOCITY_MODES:
        raise SnapshotValidationError("velocityConfig.mode", f"unknown mode {mode!r}")
    if metric not in VELOCITY_METRICS:
        raise SnapshotValidationError("velocityConfig.metricType", f"unknown metric type {metric!r}")
    lookback = _non_negative_int(merged["velocityLookbackIterations"], "velocityConfig.velocityLookbackIterations")
    min_iters = _non_negative_int(
        merged["minIterationsForIndividualVelocity"], "velocityConfig.minIterationsForIndividualVelocity"
    )
    point_key = "staticHoursPerStoryPoint" if "staticHoursPerStoryPoint" in merged else "staticHoursPerPoint"
    return VelocityConfig(
        mode=mode,
        metric_type=metric,
        static_hours_per_point=_non_negative_float(merged[point_key], f"velocityConfig.{point_key}"),
        static_hours_per_issue=_non_negative_float(
            merged["staticHoursPerIssue"], "velocityConfig.staticHoursPerIssue"
        ),
        lookback_iterations=lookback or 1,
        min_iterations_for_individual=min_iters or 1,
    )


def parse_persisted_state(documents: Mapping[str, Any] | None) -> PersistedState:
    """Build :class:`PersistedState` from the key/value documents."""
    docs = documents or {}
    team_doc = docs.get("teamConfig") or {}
    members_raw = team_doc.get("teamMembers", []) if isinstance(team_doc, Mapping) else team_doc
    prefs = docs.get("userPreferences") or {}
    return PersistedState(
        config=map_project_config(docs.get("config")),
        team=[map_team_member(m, f"teamConfig.teamMembers[{i}]") for i, m in enumerate(members_raw or [])],
        absences=[map_absence(a, f"absences[{i}]") for i, a in enumerate(docs.get("absences") or [])],
        risks=[map_risk(r, f"risks[{i}]") for i, r in enumerate(docs.get("risks") or [])],
        communications=[
            map_communication(c, f"communications[{i}]") for i, c in enumerate(docs.get("communications") or [])
        ],
        velocity_config=map_velocity_config(docs.get("velocityConfig")),
        preferences=UserPreferences(role=prefs.get("role"), navigation_style=prefs.get("navigationStyle")),
        backlog_history=map_backlog_history(docs.get("backlogHealthHistory")),
    )


# ------------------ Tabular view ------------------
def issues_to_dataframe(issues: Iterable[Issue], tz=None) -> pd.DataFrame:
    """Flat frame of issues with local close dates and resolved sprint names."""
    rows = []
    for i in issues:
        rows.append(
            {
                "iid": i.iid,
                "title": i.title,
                "state": i.state,
                "closed": i.is_closed,
                "sprint": issue_sprint(i),
                "iteration_start": i.iteration.start_date if i.iteration else None,
                "iteration_due": i.iteration.due_date if i.iteration else None,
                "assignee": i.assignee.username if i.assignee else None,
                "points": issue_points(i),
                "weight": i.weight,
                "blocker": is_blocker(i.labels),
                "created_at": i.created_at,
                "closed_at": i.closed_at,
                "closed_date": local_date(i.closed_at, tz) if i.closed_at else None,
                "created_date": local_date(i.created_at, tz),
                "due_date": i.due_date,
                "epic_id": i.epic_id,
                "milestone": i.milestone,
                "labels": ", ".join(sorted(set(i.labels), key=str.lower)),
            }
        )
    return pd.DataFrame(rows)
