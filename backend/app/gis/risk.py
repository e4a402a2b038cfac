"""
risk.py — Ordinal risk classification driven by threshold tables.

Grid cells, clusters and epidemic zones are all classified the same way:
walk an ordered table of thresholds from most to least severe and return the
first level whose criteria are met, else the table default.

═══════════════════════════════════════════════════════════════════════════
THRESHOLD TABLES
═══════════════════════════════════════════════════════════════════════════

    Grid cells  (score = count × avgSeverity)
    ─────────────────────────────────────────
    critical    score ≥ 15  OR  count ≥ 10
    high        score ≥ 8   OR  count ≥ 5
    medium      score ≥ 3   OR  count ≥ 2
    low         otherwise

    Clusters  (score = count × avgSeverity)
    ───────────────────────────────────────
    high        score ≥ 15  OR  maxSeverity ≥ 3
    medium      score ≥ 5   OR  avgSeverity ≥ 2
    low         otherwise

    Epidemic zones  (caseCount)
    ───────────────────────────
    critical    ≥ 100
    high        ≥ 50
    medium      ≥ 20
    low         otherwise

Every criterion is a lower bound, so each table is monotonic non-decreasing
in all of its inputs.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Optional, Sequence, Union


class RiskLevel(str, Enum):
    """Ordinal risk classification shared by grid cells and zones."""
    LOW      = "low"
    MEDIUM   = "medium"
    HIGH     = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _RISK_RANK[self]


_RISK_RANK = {
    RiskLevel.LOW: 0,
    RiskLevel.MEDIUM: 1,
    RiskLevel.HIGH: 2,
    RiskLevel.CRITICAL: 3,
}


class SeverityTier(str, Enum):
    """Combined severity of a cluster."""
    LOW    = "low"
    MEDIUM = "medium"
    HIGH   = "high"


Level = Union[RiskLevel, SeverityTier]


@dataclass(frozen=True)
class RiskThreshold:
    """
    One row of a threshold table.

    The row matches when ANY of its configured (non-None) lower bounds
    is reached.
    """
    level: Level
    min_score: Optional[float] = None
    min_count: Optional[int] = None
    min_avg_severity: Optional[float] = None
    min_max_severity: Optional[int] = None

    def matches(
        self,
        *,
        score: float = 0.0,
        count: int = 0,
        avg_severity: float = 0.0,
        max_severity: int = 0,
    ) -> bool:
        checks = (
            (self.min_score, score),
            (self.min_count, count),
            (self.min_avg_severity, avg_severity),
            (self.min_max_severity, max_severity),
        )
        return any(bound is not None and value >= bound for bound, value in checks)


GRID_RISK_THRESHOLDS: Sequence[RiskThreshold] = (
    RiskThreshold(RiskLevel.CRITICAL, min_score=15, min_count=10),
    RiskThreshold(RiskLevel.HIGH,     min_score=8,  min_count=5),
    RiskThreshold(RiskLevel.MEDIUM,   min_score=3,  min_count=2),
)

CLUSTER_SEVERITY_THRESHOLDS: Sequence[RiskThreshold] = (
    RiskThreshold(SeverityTier.HIGH,   min_score=15, min_max_severity=3),
    RiskThreshold(SeverityTier.MEDIUM, min_score=5,  min_avg_severity=2),
)

ZONE_CASE_COUNT_THRESHOLDS: Sequence[RiskThreshold] = (
    RiskThreshold(RiskLevel.CRITICAL, min_count=100),
    RiskThreshold(RiskLevel.HIGH,     min_count=50),
    RiskThreshold(RiskLevel.MEDIUM,   min_count=20),
)


def classify(
    table: Sequence[RiskThreshold],
    default: Level,
    *,
    score: float = 0.0,
    count: int = 0,
    avg_severity: float = 0.0,
    max_severity: int = 0,
) -> Level:
    """Return the first level in ``table`` whose criteria are met."""
    for threshold in table:
        if threshold.matches(
            score=score,
            count=count,
            avg_severity=avg_severity,
            max_severity=max_severity,
        ):
            return threshold.level
    return default


def average_severity(total: int, count: int) -> float:
    """
    Mean severity rounded half-up to 2 decimals; 0.0 for an empty group.

    >>> average_severity(9, 8)
    1.13
    >>> average_severity(0, 0)
    0.0
    """
    if count == 0:
        return 0.0
    avg = Decimal(total) / Decimal(count)
    return float(avg.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def risk_score(count: int, avg_severity: float) -> float:
    """count × avgSeverity, rounded to 2 decimals to drop float noise."""
    return round(count * avg_severity, 2)


def classify_cell(count: int, avg_severity: float) -> RiskLevel:
    return classify(
        GRID_RISK_THRESHOLDS,
        RiskLevel.LOW,
        score=risk_score(count, avg_severity),
        count=count,
    )


def classify_cluster(count: int, avg_severity: float, max_severity: int) -> SeverityTier:
    return classify(
        CLUSTER_SEVERITY_THRESHOLDS,
        SeverityTier.LOW,
        score=risk_score(count, avg_severity),
        avg_severity=avg_severity,
        max_severity=max_severity,
    )
