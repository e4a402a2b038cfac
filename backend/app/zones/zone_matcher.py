"""
zone_matcher.py — Point-in-zone tests and case-count driven risk.

Containment is geodesic:

    inside(point, zone)  ⇔  zone.is_active
                            AND haversine(point, zone.center) ≤ zone.radius_km

The comparison is inclusive, so a point exactly on the circle is inside.
Matching is a single pass over the supplied zones (O(active zones)), which
keeps it cheap enough to run on every mobile location update.

Matched zones are ordered most dangerous first:

    riskLevel   critical > high > medium > low
    then        caseCount descending

so ``zones[0]`` is the zone a user should be warned about.
"""

from __future__ import annotations

import dataclasses
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

from backend.app.gis.risk import ZONE_CASE_COUNT_THRESHOLDS, RiskLevel, classify
from backend.app.spatial.geo import Coordinate, haversine
from backend.app.zones.models import Zone

logger = logging.getLogger(__name__)

DEFAULT_NEARBY_RADIUS_KM = 10.0


def classify_by_case_count(case_count: int) -> RiskLevel:
    """
    Risk level for a zone with ``case_count`` cases.

    >>> [classify_by_case_count(n).value for n in (100, 99, 50, 49, 20, 19)]
    ['critical', 'high', 'high', 'medium', 'medium', 'low']
    """
    return classify(ZONE_CASE_COUNT_THRESHOLDS, RiskLevel.LOW, count=case_count)


def zone_sort_key(zone: Zone) -> Tuple[int, int]:
    return (-zone.risk_level.rank, -zone.case_count)


def _within(point: Coordinate, zones: Iterable[Zone], radius_of) -> List[Zone]:
    matched = [
        z for z in zones
        if z.is_active and haversine(point, z.center) <= radius_of(z)
    ]
    matched.sort(key=zone_sort_key)
    return matched


def find_containing(point: Coordinate, zones: Iterable[Zone]) -> List[Zone]:
    """
    Active zones whose circle contains ``point``, most dangerous first.

    Examples
    --------
    >>> z = Zone("Z1", "Ward 5", "dengue", 10.0, 106.0, radius_km=2.0)
    >>> [m.id for m in find_containing(Coordinate(10.0, 106.0), [z])]
    ['Z1']
    """
    matched = _within(point, zones, lambda z: z.radius_km)
    logger.debug(
        "Zone check (%.6f, %.6f): %d zone(s) matched",
        point.latitude, point.longitude, len(matched),
    )
    return matched


def find_nearby(
    point: Coordinate,
    zones: Iterable[Zone],
    radius_km: float = DEFAULT_NEARBY_RADIUS_KM,
) -> List[Zone]:
    """Active zones whose centre lies within ``radius_km`` of ``point``."""
    return _within(point, zones, lambda z: radius_km)


def apply_case_count(zone: Zone, case_count: int) -> Zone:
    """Copy of ``zone`` with a new case count and its recomputed risk level."""
    level = classify_by_case_count(case_count)
    if level != zone.risk_level:
        logger.info(
            "Zone %s risk %s → %s (cases=%d)",
            zone.id, zone.risk_level.value, level.value, case_count,
            extra={"zone_id": zone.id},
        )
    return dataclasses.replace(zone, case_count=case_count, risk_level=level)


def deactivate(zone: Zone, when: Optional[datetime] = None) -> Zone:
    """Copy of ``zone`` marked inactive, ending now unless ``when`` is given."""
    return dataclasses.replace(
        zone,
        is_active=False,
        end_date=when or datetime.now(timezone.utc),
    )


def summarize_zones(zones: Iterable[Zone]) -> Dict[str, Any]:
    """Zone counts, per-level breakdown and case total over active zones."""
    zones = list(zones)
    active = [z for z in zones if z.is_active]
    by_level = {level.value: 0 for level in RiskLevel}
    for z in active:
        by_level[z.risk_level.value] += 1

    return {
        "total": len(zones),
        "active": len(active),
        "byRiskLevel": by_level,
        "totalCases": sum(z.case_count for z in active),
    }
