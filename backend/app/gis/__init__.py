"""
gis — Spatial aggregation of geotagged case reports.

Sub-modules:
    risk             — risk levels, severity tiers and the shared threshold table
    models           — CasePoint, CaseFilter and the grid / cluster result types
    grid_aggregator  — fixed-size grid density with per-cell risk
    cluster_engine   — eps-neighbour clustering with severity tiers
    case_stats       — summary statistics over a case snapshot

Everything here is pure: functions take an immutable snapshot of points and
return fresh result objects, so they are safe to call concurrently.
"""
