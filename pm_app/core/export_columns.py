"""Load and expose CSV export column sets from YAML (with fallbacks)."""

from __future__ import annotations

import logging
from pathlib import Path

import yaml

from .config import EXPORT_COLUMNS

logger = logging.getLogger(__name__)

_CACHE: dict[str, list[tuple[str, str]]] | None = None


def _fallback() -> dict[str, list[tuple[str, str]]]:
    return {name: list(cols) for name, cols in EXPORT_COLUMNS.items()}


def load_export_columns(base_path: str | Path | None = None, *, reload: bool = False):
    global _CACHE
    if _CACHE is not None and not reload:
        return _CACHE
    base = Path(base_path or Path(__file__).resolve().parent.parent)
    yaml_path = base / "exports.yaml"
    if not yaml_path.exists():
        _CACHE = _fallback()
        return _CACHE
    try:
        data = yaml.safe_load(yaml_path.read_text(encoding="utf-8")) or {}
        sets = _fallback()
        for name, entries in (data.get("sets") or {}).items():
            cols = [(str(e["field"]), str(e.get("header") or e["field"])) for e in entries or []]
            if cols:
                sets[name] = cols
        _CACHE = sets
    except (yaml.YAMLError, KeyError, TypeError, AttributeError) as exc:
        logger.warning("Ignoring unreadable %s: %s", yaml_path, exc)
        _CACHE = _fallback()
    return _CACHE


def get_export_columns(kind: str) -> list[tuple[str, str]]:
    return load_export_columns().get(kind, [])
