"""
services — Upward-facing operations of the epidemic core.

Sub-modules:
    epidemic_service — grid density, clusters, zone checks and alerting
"""
