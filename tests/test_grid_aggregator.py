"""
test_grid_aggregator.py — Tests for grid density aggregation.

Covers:
    • Partitioning (floor indices, negative coordinates, one cell per point)
    • Per-cell metrics (count, severity stats, distinct sets, risk)
    • Bounds pre-filter and cell bounds
    • Empty input and invalid grid size
    • Result ordering and to_dict shape

Run with:
    pytest tests/test_grid_aggregator.py -v
"""

from __future__ import annotations

import random
from datetime import datetime, timedelta, timezone

import pytest

from backend.app.core.errors import ValidationError
from backend.app.gis.grid_aggregator import aggregate
from backend.app.gis.models import CasePoint
from backend.app.gis.risk import RiskLevel
from backend.app.spatial.geo import BoundingBox


# ═══════════════════════════════════════════════════════════════════════════
# Test Fixtures
# ═══════════════════════════════════════════════════════════════════════════

# District 5, Ho Chi Minh City
HCMC_LAT = 10.7546
HCMC_LON = 106.6630
T0 = datetime(2026, 3, 1, 8, 0, tzinfo=timezone.utc)


def _make_point(
    pid: str = "C1",
    lat: float = HCMC_LAT,
    lon: float = HCMC_LON,
    severity: int = 1,
    disease: str = "dengue",
    status: str = "confirmed",
    minutes: int = 0,
) -> CasePoint:
    return CasePoint(
        id=pid,
        disease_type=disease,
        status=status,
        severity=severity,
        reported_time=T0 + timedelta(minutes=minutes),
        latitude=lat,
        longitude=lon,
    )


def _random_points(n: int, seed: int = 7):
    rng = random.Random(seed)
    return [
        _make_point(
            pid=f"C{i}",
            lat=rng.uniform(-5.0, 25.0),
            lon=rng.uniform(95.0, 115.0),
            severity=rng.randint(1, 3),
        )
        for i in range(n)
    ]


# ═══════════════════════════════════════════════════════════════════════════
# Section 1: Partitioning
# ═══════════════════════════════════════════════════════════════════════════

class TestPartitioning:

    def test_counts_sum_to_input_size(self):
        points = _random_points(500)
        result = aggregate(points, 0.5)
        assert sum(c.count for c in result.cells) == len(points)
        assert result.total_cases == len(points)

    def test_each_point_in_exactly_one_cell(self):
        points = _random_points(200)
        result = aggregate(points, 1.0)
        for p in points:
            hits = [c for c in result.cells if c.bounds.south <= p.latitude < c.bounds.north
                    and c.bounds.west <= p.longitude < c.bounds.east]
            assert len(hits) == 1

    def test_cell_indices_use_floor(self):
        result = aggregate([_make_point(lat=-0.05, lon=-0.05)], 0.1)
        cell = result.cells[0]
        assert (cell.gx, cell.gy) == (-1, -1)
        assert cell.bounds.south == pytest.approx(-0.1)
        assert cell.bounds.north == pytest.approx(0.0)

    def test_nearby_points_share_cell(self):
        points = [
            _make_point("A", lat=10.01, lon=106.01),
            _make_point("B", lat=10.09, lon=106.09),
            _make_point("C", lat=10.11, lon=106.01),
        ]
        result = aggregate(points, 0.1)
        assert result.total_cells == 2
        assert result.cells[0].count == 2


# ═══════════════════════════════════════════════════════════════════════════
# Section 2: Per-cell metrics
# ═══════════════════════════════════════════════════════════════════════════

class TestCellMetrics:

    def test_twelve_points_severity_two_is_critical(self):
        points = [_make_point(f"C{i}", severity=2) for i in range(12)]
        cell = aggregate(points, 0.1).cells[0]
        assert cell.count == 12
        assert cell.total_severity == 24
        assert cell.avg_severity == 2.0
        assert cell.max_severity == 2
        assert cell.risk_score == 24.0
        assert cell.risk_level == RiskLevel.CRITICAL

    def test_average_rounded_two_decimals(self):
        points = [
            _make_point("A", severity=1),
            _make_point("B", severity=1),
            _make_point("C", severity=2),
        ]
        cell = aggregate(points, 0.1).cells[0]
        assert cell.avg_severity == 1.33
        assert cell.risk_score == 3.99
        assert cell.risk_level == RiskLevel.MEDIUM  # count ≥ 2

    def test_single_low_case(self):
        cell = aggregate([_make_point()], 0.1).cells[0]
        assert cell.risk_level == RiskLevel.LOW
        assert cell.risk_score == 1.0

    def test_distinct_diseases_and_statuses(self):
        points = [
            _make_point("A", disease="dengue", status="confirmed"),
            _make_point("B", disease="covid", status="suspected"),
            _make_point("C", disease="dengue", status="confirmed"),
        ]
        cell = aggregate(points, 0.1).cells[0]
        assert cell.diseases == ["covid", "dengue"]
        assert cell.statuses == ["confirmed", "suspected"]

    def test_plain_python_types(self):
        cell = aggregate([_make_point(severity=3)], 0.1).cells[0]
        assert type(cell.count) is int
        assert type(cell.max_severity) is int
        assert type(cell.gx) is int


# ═══════════════════════════════════════════════════════════════════════════
# Section 3: Bounds, edge cases, output
# ═══════════════════════════════════════════════════════════════════════════

class TestBoundsAndEdgeCases:

    def test_bounds_filter_applied_first(self):
        inside = _make_point("IN", lat=10.5, lon=106.5)
        outside = _make_point("OUT", lat=12.0, lon=108.0)
        box = BoundingBox(south=10.0, west=106.0, north=11.0, east=107.0)
        result = aggregate([inside, outside], 0.1, bounds=box)
        assert result.total_cases == 1

    def test_empty_input(self):
        result = aggregate([], 0.1)
        assert result.cells == []
        assert result.total_cells == 0
        assert result.total_cases == 0
        d = result.to_dict()
        assert d["stats"]["totalCases"] == 0
        assert d["stats"]["criticalCells"] == 0

    def test_everything_filtered_out(self):
        box = BoundingBox(0.0, 0.0, 1.0, 1.0)
        assert aggregate([_make_point()], 0.1, bounds=box).total_cells == 0

    @pytest.mark.parametrize("size", [0, -0.1])
    def test_non_positive_size_rejected(self, size):
        with pytest.raises(ValidationError):
            aggregate([_make_point()], size)

    def test_sorted_by_count_descending(self):
        points = _random_points(300)
        counts = [c.count for c in aggregate(points, 2.0).cells]
        assert counts == sorted(counts, reverse=True)

    def test_to_dict_shape(self):
        points = [_make_point(f"C{i}", severity=2) for i in range(12)]
        d = aggregate(points, 0.1).to_dict()
        assert d["gridSize"] == 0.1
        assert d["totalCells"] == 1
        assert d["stats"]["criticalCells"] == 1
        cell = d["cells"][0]
        assert set(cell["bounds"]) == {"south", "west", "north", "east"}
        for key in ("count", "totalSeverity", "avgSeverity", "maxSeverity",
                    "diseases", "statuses", "riskScore", "riskLevel"):
            assert key in cell
        assert cell["riskLevel"] == "critical"
