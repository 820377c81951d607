"""Key-value persistence: one JSON document per key in a directory."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

from .config import STATE_KEYS
from .errors import StorageError

logger = logging.getLogger(__name__)


class JsonDocumentStore:
    def __init__(self, root: str | Path):
        self.root = Path(root)

    def _path(self, key: str) -> Path:
        if not key or "/" in key or "\\" in key or key.startswith("."):
            raise ValueError(f"Invalid document key {key!r}")
        return self.root / f"{key}.json"

    def load(self, key: str, default: Any = None) -> Any:
        path = self._path(key)
        if not path.exists():
            return default
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise StorageError(f"Cannot read {path}: {exc}") from exc

    def save(self, key: str, document: Any) -> None:
        """Overwrite the whole document for ``key`` (last writer wins)."""
        path = self._path(key)
        self.root.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self.root, prefix=f".{key}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(document, fh, indent=2, sort_keys=True, default=str)
            os.replace(tmp, path)
        except (OSError, TypeError) as exc:
            Path(tmp).unlink(missing_ok=True)
            raise StorageError(f"Cannot write {path}: {exc}") from exc
        logger.debug("Saved %s", path)

    def delete(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)

    def load_state(self) -> dict[str, Any]:
        """Every known document that exists, keyed like the persisted layout."""
        out = {}
        for key in STATE_KEYS:
            doc = self.load(key)
            if doc is not None:
                out[key] = doc
        return out
