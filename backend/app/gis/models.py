"""
models.py — Case points, query filters and aggregation results.

CasePoint is an immutable per-query snapshot of a persisted case.  GridCell,
GridResult, Cluster and ClusterResult are computed per request and never
stored; their ``to_dict`` output is the JSON contract consumed by the map UI.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from backend.app.core.errors import ValidationError
from backend.app.gis.risk import RiskLevel, SeverityTier
from backend.app.spatial.geo import BoundingBox, Coordinate

MIN_SEVERITY = 1
MAX_SEVERITY = 3


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass(frozen=True)
class CasePoint:
    """A geotagged case report as seen by one query."""
    id: str
    disease_type: str
    status: str
    severity: int
    reported_time: datetime
    latitude: float
    longitude: float

    def __post_init__(self) -> None:
        if not MIN_SEVERITY <= self.severity <= MAX_SEVERITY:
            raise ValidationError(
                f"Severity must be in [{MIN_SEVERITY}, {MAX_SEVERITY}], "
                f"got {self.severity}",
                field="severity",
                case_id=self.id,
            )

    @property
    def coordinate(self) -> Coordinate:
        return Coordinate(self.latitude, self.longitude)

    def to_feature(self) -> Dict[str, Any]:
        """GeoJSON Point feature; coordinates are [lon, lat]."""
        return {
            "type": "Feature",
            "geometry": {"type": "Point", "coordinates": [self.longitude, self.latitude]},
            "properties": {
                "id": self.id,
                "disease_type": self.disease_type,
                "status": self.status,
                "reported_time": _iso(self.reported_time),
                "severity": self.severity,
                "lat": self.latitude,
                "lon": self.longitude,
            },
        }

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "CasePoint":
        """
        Build a point from a persistence row.

        A missing severity defaults to 1, as unrated reports are counted
        at the lowest severity.
        """
        reported = record["reported_time"]
        if isinstance(reported, str):
            reported = datetime.fromisoformat(reported.replace("Z", "+00:00"))
        severity = record.get("severity")
        return cls(
            id=str(record["id"]),
            disease_type=record["disease_type"],
            status=record["status"],
            severity=int(severity) if severity is not None else MIN_SEVERITY,
            reported_time=reported,
            latitude=float(record["lat"]),
            longitude=float(record["lon"]),
        )


@dataclass(frozen=True)
class CaseFilter:
    """Optional predicates applied by the point store; all bounds inclusive."""
    disease_type: Optional[str] = None
    status: Optional[str] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    bounds: Optional[BoundingBox] = None

    def matches(self, point: CasePoint) -> bool:
        if self.disease_type and point.disease_type != self.disease_type:
            return False
        if self.status and point.status != self.status:
            return False
        if self.date_from and point.reported_time < self.date_from:
            return False
        if self.date_to and point.reported_time > self.date_to:
            return False
        if self.bounds and not self.bounds.contains(point.latitude, point.longitude):
            return False
        return True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "diseaseType": self.disease_type,
            "status": self.status,
            "from": _iso(self.date_from),
            "to": _iso(self.date_to),
            "bounds": self.bounds.to_dict() if self.bounds else None,
        }


# ═══════════════════════════════════════════════════════════════════════════
# Grid density
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class GridCell:
    """One fixed-size degree cell with its aggregated cases."""
    gx: int
    gy: int
    bounds: BoundingBox
    count: int
    total_severity: int
    avg_severity: float
    max_severity: int
    diseases: List[str]
    statuses: List[str]
    risk_score: float
    risk_level: RiskLevel

    def to_dict(self) -> Dict[str, Any]:
        return {
            "bounds": self.bounds.to_dict(),
            "count": self.count,
            "totalSeverity": self.total_severity,
            "avgSeverity": self.avg_severity,
            "maxSeverity": self.max_severity,
            "diseases": list(self.diseases),
            "statuses": list(self.statuses),
            "riskScore": self.risk_score,
            "riskLevel": self.risk_level.value,
        }


@dataclass
class GridResult:
    """Output of a grid aggregation."""
    grid_size: float
    cells: List[GridCell] = field(default_factory=list)

    @property
    def total_cells(self) -> int:
        return len(self.cells)

    @property
    def total_cases(self) -> int:
        return sum(c.count for c in self.cells)

    def cells_at(self, level: RiskLevel) -> int:
        return sum(1 for c in self.cells if c.risk_level == level)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "gridSize": self.grid_size,
            "totalCells": self.total_cells,
            "cells": [c.to_dict() for c in self.cells],
            "stats": {
                "totalCases": self.total_cases,
                "criticalCells": self.cells_at(RiskLevel.CRITICAL),
                "highCells": self.cells_at(RiskLevel.HIGH),
                "mediumCells": self.cells_at(RiskLevel.MEDIUM),
                "lowCells": self.cells_at(RiskLevel.LOW),
            },
        }


# ═══════════════════════════════════════════════════════════════════════════
# Clusters
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class Cluster:
    """A connected group of nearby cases."""
    id: int
    count: int
    center_lat: float
    center_lon: float
    severity_total: int
    severity_average: float
    severity_max: int
    combined: SeverityTier
    diseases: List[str]
    statuses: List[str]
    earliest: Optional[datetime]
    latest: Optional[datetime]
    case_ids: List[str] = field(default_factory=list, repr=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "count": self.count,
            "center": {"lat": self.center_lat, "lon": self.center_lon},
            "severity": {
                "total": self.severity_total,
                "average": self.severity_average,
                "max": self.severity_max,
                "combined": self.combined.value,
            },
            "diseases": list(self.diseases),
            "statuses": list(self.statuses),
            "timeRange": {
                "earliest": _iso(self.earliest),
                "latest": _iso(self.latest),
            },
        }


@dataclass
class ClusterResult:
    """Output of a clustering run, clusters sorted by count descending."""
    cluster_distance: float
    clusters: List[Cluster] = field(default_factory=list)

    @property
    def total_clusters(self) -> int:
        return len(self.clusters)

    @property
    def total_cases(self) -> int:
        return sum(c.count for c in self.clusters)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "clusterDistance": self.cluster_distance,
            "totalClusters": self.total_clusters,
            "totalCases": self.total_cases,
            "clusters": [c.to_dict() for c in self.clusters],
        }
