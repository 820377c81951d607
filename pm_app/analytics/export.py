"""CSV export of analytics tables (UTF-8, CRLF, every field quoted)."""

from __future__ import annotations

import csv
from collections.abc import Sequence
from datetime import date, datetime

import pandas as pd

from pm_app.core.export_columns import get_export_columns
from pm_app.core.mappers import issues_to_dataframe

from .pipeline import AnalyticsResult

EXPORT_TYPES: Sequence[str] = ("issues", "velocity", "capacity", "risks", "insights", "dependencies")


def _cell(value):
    if value is None:
        return ""
    if isinstance(value, float) and pd.isna(value):
        return ""
    if isinstance(value, (datetime, pd.Timestamp)):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, (list, tuple)):
        return "; ".join(str(v) for v in value)
    if isinstance(value, bool):
        return "Yes" if value else "No"
    return value


def _records(result: AnalyticsResult, kind: str) -> list[dict]:
    if kind == "issues":
        if not result.issues:
            return []
        return issues_to_dataframe(result.issues, result.timezone).to_dict(orient="records")
    if kind == "velocity":
        return [v.to_dict() for v in result.velocity]
    if kind == "capacity":
        return [c.to_dict() for c in result.capacity]
    if kind == "risks":
        return [
            {
                "id": r.id,
                "title": r.title,
                "probability": r.probability,
                "impact": r.impact,
                "score": r.score,
                "status": r.status,
                "owner": r.owner,
                "mitigations": r.mitigations,
            }
            for r in result.risk_register
        ]
    if kind == "insights":
        return [i.to_dict() for i in result.insights]
    if kind == "dependencies":
        return [e.to_dict() for e in result.dependencies.edges]
    raise ValueError(f"Unknown export type {kind!r}; expected one of {', '.join(EXPORT_TYPES)}")


def export_frame(result: AnalyticsResult, kind: str) -> pd.DataFrame:
    """Rows of ``kind`` with the configured columns renamed to their headers."""
    columns = get_export_columns(kind)
    records = _records(result, kind)
    rows = [[_cell(rec.get(name)) for name, _ in columns] for rec in records]
    return pd.DataFrame(rows, columns=[header for _, header in columns])


def to_csv(frame: pd.DataFrame) -> str:
    """RFC 4180 text: quotes doubled inside fields and every field quoted."""
    return frame.to_csv(index=False, quoting=csv.QUOTE_ALL, lineterminator="\r\n")


def export_csv(result: AnalyticsResult, kind: str) -> bytes:
    return to_csv(export_frame(result, kind)).encode("utf-8")
