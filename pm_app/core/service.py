"""SnapshotService: fetches the remote snapshot and loads persisted planning state."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from datetime import datetime

import pytz

from .config import BACKLOG_HISTORY_LIMIT
from .gitlab_client import GitLabAPI, ReassignmentResult
from .mappers import assemble_snapshot, map_backlog_history, map_project_config, parse_persisted_state
from .models import PersistedState, ProjectConfig, Snapshot
from .storage import JsonDocumentStore

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, int | None, int | None], None]


def _created_year(raw: dict) -> int | None:
    value = raw.get("created_at")
    if not value:
        return None
    try:
        return int(str(value)[:4])
    except ValueError:
        return None


def apply_year_filter(raw_issues: list[dict], year: int) -> list[dict]:
    """Keep issues created in ``year`` and every issue still open."""
    return [
        raw
        for raw in raw_issues
        if str(raw.get("state") or "").lower() != "closed" or _created_year(raw) == year
    ]


class SnapshotService:
    def __init__(self, api: GitLabAPI, store: JsonDocumentStore):
        self.api = api
        self.store = store

    @classmethod
    def from_store(cls, store: JsonDocumentStore) -> SnapshotService:
        """Build the client from the persisted ``config`` document."""
        config = map_project_config(store.load("config"))
        if not config.base_url or not config.token:
            raise ValueError("The config document needs a GitLab URL and an access token")
        return cls(GitLabAPI(config.base_url, config.token), store)

    def project_config(self) -> ProjectConfig:
        return map_project_config(self.store.load("config"))

    def load_state(self) -> PersistedState:
        return parse_persisted_state(self.store.load_state())

    def fetch_snapshot(
        self,
        cancel: threading.Event | None = None,
        *,
        progress: ProgressCallback | None = None,
        include_notes: bool = False,
    ) -> Snapshot:
        config = self.project_config()
        if not config.project_id:
            raise ValueError("No project id configured")
        if progress:
            progress(f"Fetching issues for project {config.project_id}", 0, 3)
        raw_issues = self.api.fetch_project_issues(config.project_id, include_notes=include_notes, cancel=cancel)
        if config.year_filter:
            year = datetime.now(pytz.timezone(config.timezone)).year
            before = len(raw_issues)
            raw_issues = apply_year_filter(raw_issues, year)
            logger.debug("Year filter %s kept %d of %d issues", year, len(raw_issues), before)

        raw_epics: list[dict] = []
        if config.group_path:
            if progress:
                progress(f"Fetching epics for group {config.group_path}", 1, 3)
            raw_epics = self.api.fetch_group_epics(config.group_path, cancel=cancel)
        if progress:
            progress("Fetching milestones", 2, 3)
        raw_milestones = self.api.fetch_project_milestones(config.project_id, cancel=cancel)
        snapshot = assemble_snapshot(raw_issues, raw_epics, raw_milestones)
        logger.info(
            "Snapshot: %d issues, %d epics, %d milestones",
            len(snapshot.issues),
            len(snapshot.epics),
            len(snapshot.milestones),
        )
        return snapshot

    def reassign(self, assignments: list[tuple[int, int]]) -> ReassignmentResult:
        return self.api.reassign_issues(self.project_config().project_id, assignments)

    def record_backlog_health(self, entry: dict) -> list[dict]:
        """Append ``entry`` to the saved backlog health history, keeping the newest records."""
        history = map_backlog_history(self.store.load("backlogHealthHistory"))
        history = (history + [entry])[-BACKLOG_HISTORY_LIMIT:]
        self.store.save("backlogHealthHistory", history)
        return history
