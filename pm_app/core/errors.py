"""Typed errors raised at the snapshot, storage, and remote boundaries."""

from __future__ import annotations


class PMAnalyticsError(Exception):
    """Base class for all project errors."""


class SnapshotValidationError(PMAnalyticsError):
    """Snapshot or persisted state violates a data-model invariant.

    ``path`` locates the offending value (e.g. ``issues[3].closed_at``).
    """

    kind = "invariant"

    def __init__(self, path: str, detail: str):
        super().__init__(f"{path}: {detail}")
        self.path = path
        self.detail = detail

    def to_dict(self) -> dict[str, str]:
        return {"kind": self.kind, "path": self.path, "detail": self.detail}


class UnknownVariantError(SnapshotValidationError):
    """A tagged record carries a discriminator outside its known set."""


class RemoteFetchError(PMAnalyticsError):
    def __init__(self, status: int | None, url: str, detail: str = ""):
        msg = f"Request to {url} failed"
        if status is not None:
            msg += f" with status {status}"
        if detail:
            msg += f": {detail[:200]}"
        super().__init__(msg)
        self.status = status
        self.url = url
        self.detail = detail


class FetchCancelled(PMAnalyticsError):
    """Raised when the cancellation token is set between pages."""


class StorageError(PMAnalyticsError):
    """A persisted document could not be read or decoded."""
