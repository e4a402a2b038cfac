"""
zones — Epidemic zones: circular risk areas around outbreak centres.

Sub-modules:
    models        — Zone snapshot
    zone_matcher  — containment, nearby search, case-count risk, statistics
"""
