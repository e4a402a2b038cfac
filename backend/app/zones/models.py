"""
models.py — Epidemic zone snapshot.

Zones are persisted by the surrounding application; the core receives
them as immutable snapshots and returns modified copies.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from backend.app.gis.risk import RiskLevel
from backend.app.spatial.geo import Coordinate


@dataclass(frozen=True)
class Zone:
    """
    A named circular risk area.

    Attributes
    ----------
    center_lat, center_lon : float
        Outbreak centre in decimal degrees.
    radius_km : float
        Containment radius; a point at exactly this distance is inside.
    risk_level : RiskLevel
        Derived from case_count by ``classify_by_case_count``.
    """
    id: str
    name: str
    disease_type: str
    center_lat: float
    center_lon: float
    radius_km: float
    risk_level: RiskLevel = RiskLevel.LOW
    case_count: int = 0
    is_active: bool = True
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    description: Optional[str] = None

    @property
    def center(self) -> Coordinate:
        return Coordinate(self.center_lat, self.center_lon)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "diseaseType": self.disease_type,
            "center": {"lat": self.center_lat, "lon": self.center_lon},
            "radiusKm": self.radius_km,
            "riskLevel": self.risk_level.value,
            "caseCount": self.case_count,
            "isActive": self.is_active,
            "startDate": self.start_date.isoformat() if self.start_date else None,
            "endDate": self.end_date.isoformat() if self.end_date else None,
            "description": self.description,
        }
