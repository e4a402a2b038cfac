"""
cluster_engine.py — Density-based grouping of case reports.

Two cases are neighbours when their squared planar distance in degree
space is ≤ eps².  Clusters are the connected components of that relation,
i.e. DBSCAN with ``min_samples=1``: every point is a core point, so no case
is ever labelled noise and the result does not depend on input order.

DBSCAN runs on a precomputed matrix from ``squared_planar_distances`` with
radius eps², and ``are_neighbors`` reads the same matrix, so the two agree
exactly at the boundary.  The matrix is n × n; snapshots are bounded by the
caller's filter.

    NOTE: the metric is planar degrees, not geodesic kilometres — see
    backend.app.spatial.geo for the limitation.  Zone containment uses
    Haversine instead.

Per-cluster metrics:

    count                  number of cases
    center                 arithmetic mean of member lat / lon
    severity.total         Σ severity
    severity.average       total / count, 2 decimals (half-up)
    severity.max           max severity
    severity.combined      CLUSTER_SEVERITY_THRESHOLDS (see risk.py)
    timeRange              earliest / latest reported time

Clusters are sorted by count descending; ties are broken by the smallest
member case id, and ids are assigned after sorting so they are stable
across permutations of the input.
"""

from __future__ import annotations

import logging
import math
from collections import defaultdict
from typing import Dict, List, Sequence

import numpy as np
from sklearn.cluster import DBSCAN

from backend.app.core.errors import ValidationError
from backend.app.gis.models import CasePoint, Cluster, ClusterResult
from backend.app.gis.risk import average_severity, classify_cluster
from backend.app.spatial.geo import squared_planar_distances

logger = logging.getLogger(__name__)


def _coords(points: Sequence[CasePoint]) -> np.ndarray:
    return np.array([[p.longitude, p.latitude] for p in points], dtype=np.float64)


def are_neighbors(a: CasePoint, b: CasePoint, eps_deg: float) -> bool:
    """The eps-neighbour relation clusters are built from (inclusive)."""
    return bool(squared_planar_distances(_coords([a, b]))[0, 1] <= eps_deg * eps_deg)


def _label_points(points: Sequence[CasePoint], eps_deg: float) -> np.ndarray:
    distances = squared_planar_distances(_coords(points))
    model = DBSCAN(eps=eps_deg * eps_deg, min_samples=1, metric="precomputed")
    return model.fit_predict(distances)


def _summarise(members: List[CasePoint]) -> Cluster:
    count = len(members)
    total = sum(p.severity for p in members)
    avg = average_severity(total, count)
    max_sev = max(p.severity for p in members)
    times = [p.reported_time for p in members]

    return Cluster(
        id=-1,
        count=count,
        # fsum is exactly rounded, so the centroid ignores member order
        center_lat=math.fsum(p.latitude for p in members) / count,
        center_lon=math.fsum(p.longitude for p in members) / count,
        severity_total=total,
        severity_average=avg,
        severity_max=max_sev,
        combined=classify_cluster(count, avg, max_sev),
        diseases=sorted({p.disease_type for p in members}),
        statuses=sorted({p.status for p in members}),
        earliest=min(times),
        latest=max(times),
        case_ids=sorted(p.id for p in members),
    )


def cluster(points: Sequence[CasePoint], eps_deg: float) -> ClusterResult:
    """
    Group case points into eps-connected clusters.

    Parameters
    ----------
    points : sequence of CasePoint
        Snapshot of cases.
    eps_deg : float
        Neighbour distance in degrees (0.05° ≈ 5 km).

    Returns
    -------
    ClusterResult
    """
    if eps_deg <= 0:
        raise ValidationError(
            f"Cluster distance must be positive, got {eps_deg}",
            field="eps_deg",
        )

    result = ClusterResult(cluster_distance=eps_deg)
    if not points:
        return result

    labels = _label_points(points, eps_deg)

    groups: Dict[int, List[CasePoint]] = defaultdict(list)
    for point, label in zip(points, labels):
        groups[int(label)].append(point)

    clusters = [_summarise(members) for members in groups.values()]
    clusters.sort(key=lambda c: (-c.count, c.case_ids[0]))
    for idx, c in enumerate(clusters):
        c.id = idx

    result.clusters = clusters
    logger.info(
        "Clustering: %d cases → %d clusters (eps=%.4f°)",
        len(points), len(clusters), eps_deg,
        extra={"case_count": len(points), "cluster_count": len(clusters)},
    )
    return result
