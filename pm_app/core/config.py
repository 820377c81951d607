"""Central configuration, constants, thresholds, and analytics run settings."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime

import pandas as pd
import pytz

# =============================================================================
# Remote Connection Settings
# =============================================================================
GITLAB_DEFAULT_URL = "https://gitlab.com/api/v4"
TIMEZONE = "UTC"
FETCH_PAGE_SIZE = 100
FETCH_MAX_RETRIES = 3
FETCH_BACKOFF_SECONDS = 1.0
REQUEST_TIMEOUT_SECONDS = 30.0

# =============================================================================
# Label Conventions
# =============================================================================
SPRINT_LABEL_PREFIX = "sprint::"
LEGACY_SPRINT_PATTERN = r"^sprint\s+(\d+)$"
STORY_POINT_LABEL_PREFIX = "sp::"
INITIATIVE_LABEL_PREFIX = "initiative::"
PRIORITY_LABEL_PREFIX = "priority::"

# Substrings that mark an issue as blocked (case-insensitive)
BLOCKER_LABEL_TOKENS: Sequence[str] = ("blocker", "blocked")
BUG_LABEL_TOKENS: Sequence[str] = ("bug", "defect")

# =============================================================================
# Sprint / Velocity Defaults
# =============================================================================
DEFAULT_SPRINT_DAYS: int = 14
DEFAULT_SPRINT_WORK_DAYS: int = 10  # used when the current iteration carries no dates
DEFAULT_AVERAGE_WINDOW: int = 3
DEFAULT_BURNUP_POINTS: int = 26
DEFAULT_BURNUP_MONTHS: int = 12
BURNUP_VELOCITY_POINTS: int = 6
FORECAST_BASE_CONFIDENCE: int = 60
FORECAST_MAX_CONFIDENCE: int = 95

VELOCITY_MODES: frozenset[str] = frozenset({"static", "dynamic"})
VELOCITY_METRICS: frozenset[str] = frozenset({"issues", "points"})

DEFAULT_VELOCITY_CONFIG: Mapping[str, object] = {
    "mode": "dynamic",
    "metricType": "points",
    "staticHoursPerPoint": 6.0,
    "staticHoursPerIssue": 8.0,
    "velocityLookbackIterations": 3,
    "minIterationsForIndividualVelocity": 2,
}

# =============================================================================
# Team Roles
# =============================================================================
TEAM_ROLES: Sequence[str] = (
    "Developer",
    "Engineer",
    "Data Engineer",
    "SRE",
    "DevOps Engineer",
    "QA Engineer",
    "Business Analyst",
    "Product Owner",
    "Initiative Manager",
    "Scrum Master",
    "Custom",
)

# Roles in the same group may take over each other's work.
ROLE_COMPATIBILITY_GROUPS: Mapping[str, frozenset[str]] = {
    "technical": frozenset(
        {"Developer", "Engineer", "Data Engineer", "SRE", "DevOps Engineer", "QA Engineer"}
    ),
    "analysis": frozenset({"Business Analyst", "Product Owner", "Initiative Manager"}),
    "management": frozenset({"Scrum Master"}),
}
INCOMPATIBLE_ROLES: frozenset[str] = frozenset({"Custom"})

DEFAULT_WEEKLY_CAPACITY: float = 40.0

# =============================================================================
# Capacity Status Buckets
# =============================================================================
CAPACITY_THRESHOLDS: Sequence[tuple[int, str]] = (
    (100, "overloaded"),
    (80, "at-capacity"),
    (60, "busy"),
)
CAPACITY_RELIEF_THRESHOLD: int = 60  # reallocation targets must be below this
CAPACITY_STATUS_COLORS: Mapping[str, str] = {
    "overloaded": "#DC2626",
    "at-capacity": "#D97706",
    "busy": "#2563EB",
    "available": "#059669",
}

# =============================================================================
# Health & Confidence
# =============================================================================
HEALTH_WEIGHTS: Mapping[str, float] = {
    "completion": 0.30,
    "schedule": 0.25,
    "blocker": 0.25,
    "risk": 0.20,
}
HEALTH_GREEN_MIN: int = 80
HEALTH_AMBER_MIN: int = 60
AT_RISK_HORIZON_DAYS: int = 7

CONFIDENCE_STATUS: Sequence[tuple[int, str, str]] = (
    (75, "high", "green"),
    (50, "medium", "yellow"),
    (25, "low", "orange"),
)
CONFIDENCE_STATUS_COLORS: Mapping[str, str] = {
    "high": "#10B981",
    "medium": "#F59E0B",
    "low": "#F97316",
    "critical": "#EF4444",
    "unknown": "#9CA3AF",
}

# =============================================================================
# Insights
# =============================================================================
INSIGHT_TYPE_ORDER: Mapping[str, int] = {"critical": 0, "warning": 1, "info": 2, "success": 3}
INSIGHT_CATEGORIES: Sequence[str] = (
    "velocity",
    "bottlenecks",
    "resources",
    "milestones",
    "epics",
    "risks",
    "forecast",
    "quality",
)
RISK_HIGH_SCORE: int = 6
RISK_MEDIUM_SCORE: int = 3
STALE_ISSUE_DAYS: int = 30

# =============================================================================
# Workflow Phases / Cycle Time
# =============================================================================
# Checked in this order; the first phase with a label containing one of its
# patterns wins.
PHASE_PATTERNS: Mapping[str, Sequence[str]] = {
    "cancelled": ("cancelled", "canceled", "rejected", "wont fix", "won't fix"),
    "released": ("released", "deployed", "in production"),
    "blocked": ("blocked", "blocker", "on hold", "paused"),
    "awaitingRelease": ("awaiting release", "ready for release", "to release", "pending release"),
    "awaitingTesting": ("awaiting testing", "awaiting qa", "ready for testing", "to test"),
    "testing": ("in testing", "testing", "qa", "test", "validation", "verification"),
    "review": ("review", "code review", "peer review", "reviewing", "in review"),
    "inProgress": ("in progress", "doing", "wip", "development", "started", "active"),
    "analysis": (
        "analysis",
        "analyzing",
        "refinement",
        "planning",
        "design",
        "in discovery",
        "ready for work",
    ),
    "done": ("done", "completed", "closed", "resolved", "finished"),
    "backlog": ("backlog", "new", "open", "todo", "to do"),
}
PHASE_LABELS: Mapping[str, str] = {
    "backlog": "Backlog",
    "analysis": "Analysis",
    "inProgress": "In Progress",
    "review": "Review",
    "testing": "In Testing",
    "awaitingTesting": "Awaiting Testing",
    "awaitingRelease": "Awaiting Release",
    "released": "Released",
    "cancelled": "Cancelled",
    "done": "Done",
    "blocked": "Blocked",
}
CYCLE_WAIT_SHARE: float = 0.2  # assumed queue share of lead time when no better start signal exists
LEAD_TIME_BUCKETS: Sequence[tuple[str, int, int | None]] = (
    ("0-7 days", 0, 7),
    ("8-14 days", 8, 14),
    ("15-30 days", 15, 30),
    ("31-60 days", 31, 60),
    ("61-90 days", 61, 90),
    ("90+ days", 91, None),
)

# =============================================================================
# Backlog Health
# =============================================================================
BACKLOG_SCORE_WEIGHTS: Mapping[str, float] = {"refined": 0.35, "described": 0.25, "ready": 0.40}
BACKLOG_MIN_DESCRIPTION: int = 50
BACKLOG_ALERT_HIGH: int = 60
BACKLOG_ALERT_MEDIUM: int = 75
BACKLOG_TREND_WINDOW: int = 3
BACKLOG_TREND_STABLE: int = 5
# points added to the refinement priority for each missing field
BACKLOG_MISSING_SCORES: Mapping[str, int] = {
    "weight": 3,
    "description": 2,
    "epic": 1,
    "milestone": 1,
    "assignee": 1,
}
BACKLOG_REFINEMENT_LIMIT: int = 10
BACKLOG_HISTORY_LIMIT: int = 30

# =============================================================================
# Dependency Levels
# =============================================================================
DEPENDENCY_LEVELS: Sequence[str] = ("all", "initiative", "epic", "story")
DEPENDENCY_RELATIONS: Sequence[str] = (
    "depends_on",
    "blocked_by",
    "blocks",
    "required_for",
    "related",
)

# =============================================================================
# CSV Export Column Sets (fallback when exports.yaml is missing)
# =============================================================================
EXPORT_COLUMNS: Mapping[str, Sequence[tuple[str, str]]] = {
    "issues": (
        ("iid", "Issue"),
        ("title", "Title"),
        ("state", "State"),
        ("sprint", "Sprint"),
        ("assignee", "Assignee"),
        ("points", "Story Points"),
        ("blocker", "Blocker"),
        ("milestone", "Milestone"),
        ("created_date", "Created"),
        ("closed_date", "Closed"),
        ("due_date", "Due Date"),
        ("labels", "Labels"),
    ),
    "velocity": (
        ("sprint", "Sprint"),
        ("start_date", "Start Date"),
        ("due_date", "Due Date"),
        ("total_issues", "Total Issues"),
        ("completed_issues", "Completed Issues"),
        ("completion_rate", "Completion Rate (%)"),
        ("total_points", "Total Points"),
        ("completed_points", "Completed Points"),
        ("completion_rate_points", "Points Completion Rate (%)"),
    ),
    "capacity": (
        ("username", "Username"),
        ("name", "Name"),
        ("role", "Role"),
        ("sprint_capacity", "Sprint Capacity (h)"),
        ("absence_hours", "Absence (h)"),
        ("available_capacity", "Available (h)"),
        ("metric_value", "Assigned Work"),
        ("hours_per_unit", "Hours per Unit"),
        ("hours_source", "Rate Source"),
        ("allocated_hours", "Allocated (h)"),
        ("utilization", "Utilization (%)"),
        ("status", "Status"),
    ),
    "risks": (
        ("id", "ID"),
        ("title", "Title"),
        ("probability", "Probability"),
        ("impact", "Impact"),
        ("score", "Score"),
        ("status", "Status"),
        ("owner", "Owner"),
        ("mitigations", "Mitigations"),
    ),
    "insights": (
        ("type", "Type"),
        ("category", "Category"),
        ("title", "Title"),
        ("description", "Description"),
        ("impact", "Impact"),
        ("recommendation", "Recommendation"),
        ("confidence", "Confidence"),
    ),
    "dependencies": (
        ("source", "From"),
        ("target", "To"),
        ("relation", "Relation"),
        ("level", "Level"),
    ),
}

# =============================================================================
# Persisted Document Keys
# =============================================================================
STATE_KEYS: Sequence[str] = (
    "config",
    "teamConfig",
    "absences",
    "risks",
    "communications",
    "velocityConfig",
    "userPreferences",
    "backlogHealthHistory",
)


@dataclass(slots=True)
class AnalyticsConfig:
    """Settings for one analytics run.

    ``as_of`` pins the instant treated as "now" so repeated runs over the same
    snapshot produce identical output. When omitted the wall clock is read once
    at construction.
    """

    as_of: datetime | None = None
    timezone: str = TIMEZONE
    average_window: int = DEFAULT_AVERAGE_WINDOW
    burnup_points: int = DEFAULT_BURNUP_POINTS
    burnup_months: int = DEFAULT_BURNUP_MONTHS
    capacity_scope: str = "open"
    compatible_role_groups: Mapping[str, frozenset[str]] = field(
        default_factory=lambda: dict(ROLE_COMPATIBILITY_GROUPS)
    )
    current_sprint: str | None = None
    dependency_level: str = "all"

    def __post_init__(self):
        if self.timezone not in pytz.all_timezones_set:
            raise ValueError(f"Unknown timezone {self.timezone!r}")
        if self.as_of is None:
            self.as_of = datetime.now(pytz.UTC)
        elif self.as_of.tzinfo is None:
            self.as_of = self.tz.localize(self.as_of)
        if self.capacity_scope not in ("open", "all"):
            raise ValueError(f"capacity_scope must be 'open' or 'all', got {self.capacity_scope!r}")
        if self.dependency_level not in DEPENDENCY_LEVELS:
            raise ValueError(f"Unknown dependency level {self.dependency_level!r}")

    @property
    def tz(self):
        return pytz.timezone(self.timezone)

    def now(self) -> pd.Timestamp:
        return pd.Timestamp(self.as_of).tz_convert(self.tz)

    def today(self) -> date:
        return self.now().date()
