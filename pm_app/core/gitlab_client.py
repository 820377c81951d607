"""GitLab REST v4 client (paginated reads with retry, narrow reassignment write)."""

from __future__ import annotations

import hashlib
import json
import logging
import threading
import time
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import quote

import requests

from .config import (
    FETCH_BACKOFF_SECONDS,
    FETCH_MAX_RETRIES,
    FETCH_PAGE_SIZE,
    REQUEST_TIMEOUT_SECONDS,
)
from .errors import FetchCancelled, RemoteFetchError

logger = logging.getLogger(__name__)

# Status codes worth another attempt; everything else >= 400 fails at once.
RETRYABLE_STATUS = frozenset({429, 500, 502, 503, 504})


@dataclass(slots=True)
class ReassignmentResult:
    successful: list[int] = field(default_factory=list)
    failed: list[dict[str, Any]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed


def _encode(ref: str | int) -> str:
    """Numeric ids pass through; ``group/project`` paths are URL-encoded."""
    return quote(str(ref), safe="")


class GitLabAPI:
    def __init__(
        self,
        base_url: str,
        token: str,
        session: requests.Session | None = None,
        timeout: float = REQUEST_TIMEOUT_SECONDS,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({"PRIVATE-TOKEN": token})
        # Simple in-memory cache: {(hash): (timestamp, data)}
        self._cache: dict[str, tuple[float, list]] = {}
        self._cache_ttl = 300.0  # seconds
        self._sleep = time.sleep

    def clear_cache(self) -> None:
        """Reset the in-memory page cache."""
        self._cache.clear()

    def _cache_key(self, path: str, params: Mapping[str, Any] | None) -> str:
        payload = {"path": path, "params": dict(params or {})}
        return hashlib.sha256(json.dumps(payload, sort_keys=True, default=str).encode()).hexdigest()

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    def _get_page(self, url: str, params: dict, max_retries: int, backoff: float) -> requests.Response:
        attempt = 0
        while True:
            try:
                resp = self.session.get(url, params=params, timeout=self.timeout)
            except requests.exceptions.RequestException as exc:
                if attempt >= max_retries:
                    raise RemoteFetchError(None, url, str(exc)) from exc
                logger.warning("GET %s failed (%s); retry %d/%d", url, exc, attempt + 1, max_retries)
            else:
                if resp.status_code < 400:
                    return resp
                if resp.status_code not in RETRYABLE_STATUS or attempt >= max_retries:
                    raise RemoteFetchError(resp.status_code, url, resp.text)
                logger.warning(
                    "GET %s returned %s; retry %d/%d", url, resp.status_code, attempt + 1, max_retries
                )
            self._sleep(backoff * 2**attempt)
            attempt += 1

    def fetch_paginated(
        self,
        path: str,
        params: Mapping[str, Any] | None = None,
        *,
        max_retries: int = FETCH_MAX_RETRIES,
        backoff: float = FETCH_BACKOFF_SECONDS,
        cancel: threading.Event | None = None,
        use_cache: bool = True,
    ) -> list[dict[str, Any]]:
        """Collect every page of ``path``.

        Each page is retried up to ``max_retries`` times with exponential
        backoff. ``cancel`` is checked before every page; when set,
        :class:`FetchCancelled` is raised and nothing is returned.
        """
        key = self._cache_key(path, params)
        now = time.time()
        cached = self._cache.get(key)
        if use_cache and cached and (now - cached[0]) < self._cache_ttl:
            return cached[1]

        url = self._url(path)
        query = {"per_page": FETCH_PAGE_SIZE, **dict(params or {})}
        out: list[dict[str, Any]] = []
        page: str | None = "1"
        while page:
            if cancel is not None and cancel.is_set():
                raise FetchCancelled(f"Fetch of {path} cancelled after {len(out)} records")
            query["page"] = page
            resp = self._get_page(url, query, max_retries, backoff)
            data = resp.json()
            if isinstance(data, list):
                out.extend(data)
            else:
                out.append(data)
            page = (resp.headers.get("X-Next-Page") or "").strip() or None
            logger.debug("Fetched %s page %s (%d records so far)", path, query["page"], len(out))
        self._cache[key] = (now, out)
        return out

    # ------------------ Snapshot reads ------------------
    def fetch_project_issues(
        self,
        project_id: str | int,
        *,
        include_notes: bool = False,
        cancel: threading.Event | None = None,
        **params,
    ) -> list[dict[str, Any]]:
        query = {"state": "all", **params}
        issues = self.fetch_paginated(f"projects/{_encode(project_id)}/issues", query, cancel=cancel)
        if include_notes:
            for issue in issues:
                issue["notes"] = self.fetch_issue_notes(project_id, issue["iid"], cancel=cancel)
        return issues

    def fetch_issue_notes(
        self, project_id: str | int, iid: int, *, cancel: threading.Event | None = None
    ) -> list[dict[str, Any]]:
        return self.fetch_paginated(f"projects/{_encode(project_id)}/issues/{iid}/notes", cancel=cancel)

    def fetch_group_epics(
        self,
        group_path: str,
        *,
        include_issues: bool = True,
        cancel: threading.Event | None = None,
    ) -> list[dict[str, Any]]:
        group = _encode(group_path)
        epics = self.fetch_paginated(f"groups/{group}/epics", {"state": "all"}, cancel=cancel)
        if include_issues:
            for epic in epics:
                epic["issues"] = self.fetch_paginated(f"groups/{group}/epics/{epic['iid']}/issues", cancel=cancel)
        return epics

    def fetch_project_milestones(
        self, project_id: str | int, *, cancel: threading.Event | None = None
    ) -> list[dict[str, Any]]:
        return self.fetch_paginated(f"projects/{_encode(project_id)}/milestones", cancel=cancel)

    # ------------------ Write-back ------------------
    def reassign_issue(self, project_id: str | int, iid: int, user_id: int) -> dict[str, Any]:
        """PUT a single assignee on an issue; raises :class:`RemoteFetchError` on failure."""
        url = self._url(f"projects/{_encode(project_id)}/issues/{iid}")
        try:
            resp = self.session.put(url, json={"assignee_ids": [user_id]}, timeout=self.timeout)
        except requests.exceptions.RequestException as exc:
            raise RemoteFetchError(None, url, str(exc)) from exc
        if not 200 <= resp.status_code < 300:
            raise RemoteFetchError(resp.status_code, url, resp.text)
        self.clear_cache()
        return resp.json() if resp.content else {}

    def reassign_issues(
        self, project_id: str | int, assignments: Iterable[tuple[int, int]]
    ) -> ReassignmentResult:
        """Reassign each ``(iid, user_id)``; failures are collected, successes kept."""
        result = ReassignmentResult()
        for iid, user_id in assignments:
            try:
                self.reassign_issue(project_id, iid, user_id)
            except RemoteFetchError as exc:
                logger.warning("Reassigning issue #%s to user %s failed: %s", iid, user_id, exc)
                result.failed.append({"issue": iid, "status": exc.status, "error": exc.detail or str(exc)})
            else:
                result.successful.append(iid)
        return result
