"""
grid_aggregator.py — Fixed-size grid density of case reports.

Buckets case points into square cells in degree space and scores each cell.

═══════════════════════════════════════════════════════════════════════════
PARTITIONING
═══════════════════════════════════════════════════════════════════════════

For a cell size s (degrees) a point (lat, lon) falls into

    gx = ⌊lon / s⌋        gy = ⌊lat / s⌋

and the cell covers [gx·s, (gx+1)·s) × [gy·s, (gy+1)·s).  Floor (not
truncation) keeps negative coordinates in the right cell, so every point
lands in exactly one cell and Σ cell.count equals the number of points.

═══════════════════════════════════════════════════════════════════════════
PER-CELL METRICS
═══════════════════════════════════════════════════════════════════════════

    count          number of cases
    totalSeverity  Σ severity
    avgSeverity    totalSeverity / count, 2 decimals (half-up)
    maxSeverity    max severity
    riskScore      count × avgSeverity
    riskLevel      GRID_RISK_THRESHOLDS (see risk.py)

Cells are returned densest first.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence

import numpy as np
import pandas as pd

from backend.app.core.errors import ValidationError
from backend.app.gis.models import CasePoint, GridCell, GridResult
from backend.app.gis.risk import average_severity, classify_cell, risk_score
from backend.app.spatial.geo import BoundingBox

logger = logging.getLogger(__name__)


def _points_frame(points: Sequence[CasePoint]) -> pd.DataFrame:
    return pd.DataFrame(
        {
            "lat": [p.latitude for p in points],
            "lon": [p.longitude for p in points],
            "severity": [p.severity for p in points],
            "disease_type": [p.disease_type for p in points],
            "status": [p.status for p in points],
        }
    )


def _distinct(values) -> List[str]:
    return sorted(str(v) for v in set(values))


def _cell_bounds(gx: int, gy: int, size: float) -> BoundingBox:
    south = round(gy * size, 10)
    west = round(gx * size, 10)
    return BoundingBox(
        south=south,
        west=west,
        north=round(south + size, 10),
        east=round(west + size, 10),
    )


def aggregate(
    points: Sequence[CasePoint],
    cell_size_deg: float,
    bounds: Optional[BoundingBox] = None,
) -> GridResult:
    """
    Aggregate case points into a density grid.

    Parameters
    ----------
    points : sequence of CasePoint
        Snapshot of cases to aggregate.
    cell_size_deg : float
        Cell side length in degrees (0.1° ≈ 11 km).
    bounds : BoundingBox | None
        If given, points outside the box are dropped before partitioning.

    Returns
    -------
    GridResult
        Cells sorted by count descending, plus per-level totals.

    Examples
    --------
    >>> from datetime import datetime, timezone
    >>> t = datetime(2026, 1, 1, tzinfo=timezone.utc)
    >>> pts = [CasePoint(str(i), "dengue", "confirmed", 2, t, 10.01, 106.01)
    ...        for i in range(12)]
    >>> cell = aggregate(pts, 0.1).cells[0]
    >>> cell.count, cell.risk_score, cell.risk_level.value
    (12, 24.0, 'critical')
    """
    if cell_size_deg <= 0:
        raise ValidationError(
            f"Grid size must be positive, got {cell_size_deg}",
            field="cell_size_deg",
        )

    if bounds is not None:
        points = [p for p in points if bounds.contains(p.latitude, p.longitude)]

    result = GridResult(grid_size=cell_size_deg)
    if not points:
        logger.debug("Grid aggregation on empty input (size=%s)", cell_size_deg)
        return result

    df = _points_frame(points)
    df["gx"] = np.floor(df["lon"] / cell_size_deg).astype(np.int64)
    df["gy"] = np.floor(df["lat"] / cell_size_deg).astype(np.int64)

    by_cell = df.groupby(["gx", "gy"], sort=False)
    grouped = by_cell.agg(
        count=("severity", "size"),
        total_severity=("severity", "sum"),
        max_severity=("severity", "max"),
    )
    diseases = by_cell["disease_type"].unique()
    statuses = by_cell["status"].unique()

    cells: List[GridCell] = []
    for (gx, gy), row in grouped.iterrows():
        count = int(row["count"])
        total = int(row["total_severity"])
        avg = average_severity(total, count)
        cells.append(
            GridCell(
                gx=int(gx),
                gy=int(gy),
                bounds=_cell_bounds(int(gx), int(gy), cell_size_deg),
                count=count,
                total_severity=total,
                avg_severity=avg,
                max_severity=int(row["max_severity"]),
                diseases=_distinct(diseases.loc[(gx, gy)]),
                statuses=_distinct(statuses.loc[(gx, gy)]),
                risk_score=risk_score(count, avg),
                risk_level=classify_cell(count, avg),
            )
        )

    cells.sort(key=lambda c: (-c.count, c.gx, c.gy))
    result.cells = cells

    logger.info(
        "Grid aggregation: %d cases → %d cells (size=%.4f°)",
        len(points), len(cells), cell_size_deg,
        extra={"case_count": len(points), "cell_count": len(cells)},
    )
    return result
