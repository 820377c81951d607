"""Domain data models for issues, planning records, and the analytics snapshot."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import ClassVar


@dataclass(slots=True)
class Assignee:
    username: str
    id: int | None = None
    name: str | None = None
    avatar_url: str | None = None


@dataclass(slots=True)
class Iteration:
    name: str | None
    start_date: date | None = None
    due_date: date | None = None
    id: int | None = None


@dataclass(slots=True)
class Issue:
    iid: int
    title: str
    state: str  # "open" | "closed"
    created_at: datetime
    labels: list[str] = field(default_factory=list)
    weight: int | None = None
    assignee: Assignee | None = None
    iteration: Iteration | None = None
    epic_id: int | None = None
    milestone: str | None = None
    closed_at: datetime | None = None
    updated_at: datetime | None = None
    due_date: date | None = None
    description: str = ""
    blocking_issues: list[int] = field(default_factory=list)
    notes: list[str] = field(default_factory=list)
    # every assignee; ``assignee`` is the first of them
    assignees: list[Assignee] = field(default_factory=list)

    @property
    def is_closed(self) -> bool:
        return self.state == "closed"

    @property
    def is_open(self) -> bool:
        return self.state != "closed"

    def is_assigned_to(self, username: str) -> bool:
        if self.assignee is not None and self.assignee.username == username:
            return True
        return any(a.username == username for a in self.assignees)


@dataclass(slots=True)
class Epic:
    id: int
    title: str
    state: str
    due_date: date | None = None
    description: str = ""
    labels: list[str] = field(default_factory=list)
    issue_iids: list[int] = field(default_factory=list)


@dataclass(slots=True)
class Milestone:
    id: int
    title: str
    state: str = "active"
    start_date: date | None = None
    due_date: date | None = None


@dataclass(slots=True)
class TeamMember:
    username: str
    user_id: int | None = None
    name: str | None = None
    avatar_url: str | None = None
    role: str = "Developer"
    weekly_capacity: float = 40.0
    personnel_ids: dict[str, str] = field(default_factory=dict)

    @property
    def display_name(self) -> str:
        return self.name or self.username


@dataclass(slots=True)
class Absence:
    username: str
    start_date: date
    end_date: date
    reason: str = "vacation"


@dataclass(slots=True)
class Risk:
    id: str
    title: str
    probability: int
    impact: int
    status: str = "open"
    description: str = ""
    owner: str | None = None
    mitigations: list[str] = field(default_factory=list)

    @property
    def score(self) -> int:
        return self.probability * self.impact


# ------------------ Communications (tagged by ``TYPE``) ------------------
@dataclass(slots=True)
class CommunicationEntry:
    TYPE: ClassVar[str] = ""

    id: str
    sent_at: datetime | None = None
    created_at: datetime | None = None
    priority: str = "medium"
    stakeholder_ids: list[str] = field(default_factory=list)
    linked_issues: list[int] = field(default_factory=list)
    linked_epics: list[int] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)

    @property
    def type(self) -> str:
        return self.TYPE

    @property
    def timestamp(self) -> datetime | None:
        return self.sent_at or self.created_at


@dataclass(slots=True)
class EmailEntry(CommunicationEntry):
    TYPE: ClassVar[str] = "email"

    sender: str = ""
    to: list[str] = field(default_factory=list)
    cc: list[str] = field(default_factory=list)
    subject: str = ""
    content: str = ""


@dataclass(slots=True)
class DecisionEntry(CommunicationEntry):
    TYPE: ClassVar[str] = "decision"

    title: str = ""
    description: str = ""
    decision_date: date | None = None
    approved_by: list[str] = field(default_factory=list)
    document_url: str | None = None
    document_version: str | None = None


@dataclass(slots=True)
class MeetingNotesEntry(CommunicationEntry):
    TYPE: ClassVar[str] = "meeting_notes"

    title: str = ""
    attendees: list[str] = field(default_factory=list)
    content: str = ""
    action_items: list[str] = field(default_factory=list)


@dataclass(slots=True)
class IncidentEntry(CommunicationEntry):
    TYPE: ClassVar[str] = "incident"

    title: str = ""
    description: str = ""
    severity: str = "medium"
    ticket_number: str | None = None
    ticket_link: str | None = None
    resolution: str | None = None
    resolution_date: date | None = None

    @property
    def is_resolved(self) -> bool:
        return self.resolution_date is not None or bool(self.resolution)


@dataclass(slots=True)
class ScopeChangeEntry(CommunicationEntry):
    TYPE: ClassVar[str] = "scope_change"

    title: str = ""
    description: str = ""
    change_type: str = ""
    impact: str = ""
    approved_by: list[str] = field(default_factory=list)


# ------------------ Persisted configuration ------------------
@dataclass(slots=True)
class VelocityConfig:
    mode: str = "dynamic"
    metric_type: str = "points"
    static_hours_per_point: float = 6.0
    static_hours_per_issue: float = 8.0
    lookback_iterations: int = 3
    min_iterations_for_individual: int = 2

    @property
    def static_hours_per_unit(self) -> float:
        if self.metric_type == "points":
            return self.static_hours_per_point
        return self.static_hours_per_issue


@dataclass(slots=True)
class ProjectConfig:
    base_url: str = ""
    project_id: str = ""
    group_path: str = ""
    token: str = ""
    year_filter: bool = False
    timezone: str = "UTC"


@dataclass(slots=True)
class UserPreferences:
    role: str | None = None
    navigation_style: str | None = None


@dataclass(slots=True)
class PersistedState:
    config: ProjectConfig = field(default_factory=ProjectConfig)
    team: list[TeamMember] = field(default_factory=list)
    absences: list[Absence] = field(default_factory=list)
    risks: list[Risk] = field(default_factory=list)
    communications: list[CommunicationEntry] = field(default_factory=list)
    velocity_config: VelocityConfig = field(default_factory=VelocityConfig)
    preferences: UserPreferences = field(default_factory=UserPreferences)
    backlog_history: list[dict] = field(default_factory=list)


@dataclass(slots=True)
class Snapshot:
    issues: list[Issue] = field(default_factory=list)
    epics: list[Epic] = field(default_factory=list)
    milestones: list[Milestone] = field(default_factory=list)
    issues_by_iid: dict[int, Issue] = field(init=False, repr=False)
    epics_by_id: dict[int, Epic] = field(init=False, repr=False)

    def __post_init__(self):
        self.issues_by_iid = {i.iid: i for i in self.issues}
        self.epics_by_id = {e.id: e for e in self.epics}

    def open_issues(self) -> list[Issue]:
        return [i for i in self.issues if i.is_open]

    def closed_issues(self) -> list[Issue]:
        return [i for i in self.issues if i.is_closed]
