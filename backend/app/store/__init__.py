"""
store — Persistence collaborator seen by the epidemic core.

Sub-modules:
    base    — PointStore interface (read points/zones, write zones and notifications)
    memory  — InMemoryStore used in development and tests
"""
