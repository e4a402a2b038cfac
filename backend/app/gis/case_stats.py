"""
case_stats.py — Summary statistics over a snapshot of case points.

Mirrors the dashboard statistics panel: overall totals with a severity
breakdown, the covered time span, and counts grouped by disease, status,
day and month.
"""

from __future__ import annotations

from typing import Any, Dict, List, Sequence

import pandas as pd

from backend.app.gis.models import CasePoint


def _counts(series: pd.Series, key: str) -> List[Dict[str, Any]]:
    counts = series.value_counts()
    rows = [{key: str(k), "total": int(v)} for k, v in counts.items()]
    rows.sort(key=lambda r: (-r["total"], r[key]))
    return rows


def _timeline(series: pd.Series, key: str) -> List[Dict[str, Any]]:
    counts = series.value_counts().sort_index()
    return [{key: str(k), "total": int(v)} for k, v in counts.items()]


def summarize_cases(points: Sequence[CasePoint]) -> Dict[str, Any]:
    """
    Compute dashboard statistics for ``points``.

    Severity buckets: high ≥ 3, medium = 2, low ≤ 1.
    """
    if not points:
        return {
            "summary": {
                "totalCases": 0,
                "highSeverity": 0,
                "mediumSeverity": 0,
                "lowSeverity": 0,
                "minTime": None,
                "maxTime": None,
            },
            "byDisease": [],
            "byStatus": [],
            "byDay": [],
            "byMonth": [],
        }

    df = pd.DataFrame(
        {
            "severity": [p.severity for p in points],
            "disease_type": [p.disease_type for p in points],
            "status": [p.status for p in points],
            "reported": pd.to_datetime([p.reported_time for p in points], utc=True),
        }
    )

    return {
        "summary": {
            "totalCases": len(df),
            "highSeverity": int((df["severity"] >= 3).sum()),
            "mediumSeverity": int((df["severity"] == 2).sum()),
            "lowSeverity": int((df["severity"] <= 1).sum()),
            "minTime": df["reported"].min().isoformat(),
            "maxTime": df["reported"].max().isoformat(),
        },
        "byDisease": _counts(df["disease_type"], "diseaseType"),
        "byStatus": _counts(df["status"], "status"),
        "byDay": _timeline(df["reported"].dt.strftime("%Y-%m-%d"), "day"),
        "byMonth": _timeline(df["reported"].dt.strftime("%Y-%m"), "month"),
    }
