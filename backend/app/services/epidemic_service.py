"""
epidemic_service.py — Orchestration of the epidemic GIS core.

This is the single entry point the surrounding application calls.  It
pulls snapshots from the PointStore, runs the pure engines and, on the
alert path, hands matches to the AlertDispatcher.

    ┌──────────────┐   filter    ┌────────────────┐
    │  PointStore  │ ──────────► │ GridAggregator │──► grid density
    │  (external)  │             │ ClusterEngine  │──► clusters
    └──────┬───────┘             └────────────────┘
           │ active zones
           ▼
    ┌──────────────┐  zones[0]   ┌─────────────────┐
    │ ZoneMatcher  │ ──────────► │ AlertDispatcher │──► push + in-app record
    └──────────────┘             └─────────────────┘

Grid and cluster results are memoised in Redis for ``GIS_CACHE_TTL``
seconds when caching is enabled; both are keyed by filter and parameters.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from backend.app.alerts.alert_dispatcher import AlertDispatcher
from backend.app.alerts.models import AlertEvent, BatchResult, DeliveryState
from backend.app.core.cache import cache_clear_prefix, cache_get, cache_set, make_cache_key
from backend.app.core.errors import NotFoundError, ValidationError
from backend.app.geocoding.reverse_geocoder import ReverseGeocoder
from backend.app.gis import cluster_engine, grid_aggregator
from backend.app.gis.case_stats import summarize_cases
from backend.app.gis.models import CaseFilter, CasePoint
from backend.app.spatial.geo import BoundingBox, Coordinate
from backend.app.store.base import PointStore
from backend.app.zones import zone_matcher
from backend.app.zones.models import Zone

logger = logging.getLogger(__name__)


@dataclass
class ZoneCheck:
    """Outcome of ``check_point_in_zones``; zones are most dangerous first."""
    zones: List[Zone] = field(default_factory=list)

    @property
    def in_zone(self) -> bool:
        return bool(self.zones)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "inZone": self.in_zone,
            "zones": [z.to_dict() for z in self.zones],
        }


@dataclass
class LocationCheck(ZoneCheck):
    """
    Outcome of ``check_location_and_alert``.

    ``alert_sent`` means the in-app alert was recorded for the user, which
    happens for every zone entry except one suppressed by the cooldown.
    ``push_delivered`` is the narrower "the device push went through".
    """
    alert: Optional[AlertEvent] = None

    @property
    def alert_sent(self) -> bool:
        return self.alert is not None and self.alert.notification is not None

    @property
    def push_delivered(self) -> bool:
        return self.alert is not None and self.alert.state == DeliveryState.DELIVERED

    def to_dict(self) -> Dict[str, Any]:
        return {
            **super().to_dict(),
            "alertSent": self.alert_sent,
            "pushDelivered": self.push_delivered,
            "alert": self.alert.to_dict() if self.alert else None,
        }


class EpidemicService:
    """
    Parameters
    ----------
    store : PointStore
        Persistence collaborator.
    dispatcher : AlertDispatcher
        Push fan-out built around the startup push channel.
    geocoder : ReverseGeocoder | None
        Optional; without it reverse geocoding uses local zones only.
    default_grid_size, default_cluster_distance : float
        Used when callers pass no explicit size.
    cache_ttl : int
        Seconds grid / cluster results stay memoised.
    """

    def __init__(
        self,
        store: PointStore,
        dispatcher: AlertDispatcher,
        geocoder: Optional[ReverseGeocoder] = None,
        *,
        default_grid_size: float = 0.1,
        default_cluster_distance: float = 0.05,
        cache_ttl: int = 60,
    ):
        self.store = store
        self.dispatcher = dispatcher
        # Disabled geocoder still resolves from local zones
        self.geocoder = geocoder or ReverseGeocoder("", enabled=False)
        self.default_grid_size = default_grid_size
        self.default_cluster_distance = default_cluster_distance
        self.cache_ttl = cache_ttl

    # ═══════════════════════════════════════════════════════════════════
    # Visualisation
    # ═══════════════════════════════════════════════════════════════════

    async def compute_grid_density(
        self,
        case_filter: Optional[CaseFilter] = None,
        cell_size_deg: Optional[float] = None,
        bounds: Optional[BoundingBox] = None,
    ) -> Dict[str, Any]:
        """Grid density map for the cases matching ``case_filter``."""
        size = cell_size_deg if cell_size_deg is not None else self.default_grid_size
        case_filter = case_filter or CaseFilter()

        key = make_cache_key(
            "gis:grid",
            case_filter.to_dict(),
            size,
            bounds.to_dict() if bounds else None,
        )
        cached = await cache_get(key)
        if cached is not None:
            logger.debug("Grid density cache hit %s", key)
            return cached

        start = time.perf_counter()
        points = await self.store.list_points(case_filter)
        result = grid_aggregator.aggregate(points, size, bounds).to_dict()
        await cache_set(key, result, ttl=self.cache_ttl)

        duration_ms = round((time.perf_counter() - start) * 1000, 1)
        logger.info(
            "Grid density computed in %.1f ms", duration_ms,
            extra={"cell_count": result["totalCells"], "duration_ms": duration_ms},
        )
        return result

    async def compute_clusters(
        self,
        case_filter: Optional[CaseFilter] = None,
        eps_deg: Optional[float] = None,
    ) -> Dict[str, Any]:
        """Spatial clusters for the cases matching ``case_filter``."""
        eps = eps_deg if eps_deg is not None else self.default_cluster_distance
        case_filter = case_filter or CaseFilter()

        key = make_cache_key("gis:clusters", case_filter.to_dict(), eps)
        cached = await cache_get(key)
        if cached is not None:
            logger.debug("Cluster cache hit %s", key)
            return cached

        start = time.perf_counter()
        points = await self.store.list_points(case_filter)
        result = cluster_engine.cluster(points, eps).to_dict()
        await cache_set(key, result, ttl=self.cache_ttl)

        duration_ms = round((time.perf_counter() - start) * 1000, 1)
        logger.info(
            "Clusters computed in %.1f ms", duration_ms,
            extra={"cluster_count": result["totalClusters"], "duration_ms": duration_ms},
        )
        return result

    async def cases_geojson(self, case_filter: Optional[CaseFilter] = None) -> Dict[str, Any]:
        """Matching cases as a GeoJSON FeatureCollection of points."""
        points = await self.store.list_points(case_filter)
        return {
            "type": "FeatureCollection",
            "features": [p.to_feature() for p in points],
        }

    async def invalidate_gis_cache(self) -> int:
        """Drop cached grid and cluster results after the case set changes."""
        removed = await cache_clear_prefix("gis:")
        logger.info("Invalidated %d cached GIS results", removed)
        return removed

    async def case_stats(self, case_filter: Optional[CaseFilter] = None) -> Dict[str, Any]:
        return summarize_cases(await self.store.list_points(case_filter))

    async def get_case(self, case_id: str) -> CasePoint:
        point = await self.store.get_case(case_id)
        if point is None:
            raise NotFoundError("Case", id=case_id)
        return point

    # ═══════════════════════════════════════════════════════════════════
    # Zones
    # ═══════════════════════════════════════════════════════════════════

    async def check_point_in_zones(self, latitude: float, longitude: float) -> ZoneCheck:
        """Active zones containing the point, most dangerous first."""
        zones = await self.store.list_active_zones()
        return ZoneCheck(zone_matcher.find_containing(Coordinate(latitude, longitude), zones))

    async def check_location_and_alert(
        self,
        user_id: str,
        latitude: float,
        longitude: float,
    ) -> LocationCheck:
        """
        Zone check for a user's location update; alerts when inside a zone.

        Intended to be called on every mobile location change.
        """
        zones = (await self.check_point_in_zones(latitude, longitude)).zones
        check = LocationCheck(zones=zones)
        if not zones:
            return check

        check.alert = await self.dispatcher.dispatch_zone_entry(user_id, zones)
        if check.alert.prune_token:
            await self.store.remove_device_token(user_id)
            logger.info("Pruned invalid device token", extra={"user_id": user_id})
        return check

    async def find_nearby_zones(
        self,
        latitude: float,
        longitude: float,
        radius_km: float = zone_matcher.DEFAULT_NEARBY_RADIUS_KM,
    ) -> List[Zone]:
        zones = await self.store.list_active_zones()
        return zone_matcher.find_nearby(Coordinate(latitude, longitude), zones, radius_km)

    async def get_zone(self, zone_id: str) -> Zone:
        zone = await self.store.get_zone(zone_id)
        if zone is None:
            raise NotFoundError("Zone", id=zone_id)
        return zone

    async def update_zone_case_count(self, zone_id: str, case_count: int) -> Zone:
        """Set a zone's case count and persist the recomputed risk level."""
        zone = await self.get_zone(zone_id)
        return await self.store.save_zone(zone_matcher.apply_case_count(zone, case_count))

    async def deactivate_zone(self, zone_id: str, when: Optional[datetime] = None) -> Zone:
        zone = await self.get_zone(zone_id)
        updated = await self.store.save_zone(zone_matcher.deactivate(zone, when))
        logger.info("Zone %s deactivated", zone_id, extra={"zone_id": zone_id})
        return updated

    async def zone_stats(self) -> Dict[str, Any]:
        return zone_matcher.summarize_zones(await self.store.list_zones())

    async def broadcast_zone(self, zone_id: str) -> AlertEvent:
        """Announce ``zone_id`` to every user on the broadcast topic."""
        return await self.dispatcher.broadcast_epidemic(await self.get_zone(zone_id))

    # ═══════════════════════════════════════════════════════════════════
    # Geocoding
    # ═══════════════════════════════════════════════════════════════════

    async def reverse_geocode(self, latitude: float, longitude: float) -> Dict[str, Any]:
        zones = await self.store.list_active_zones()
        result = await self.geocoder.reverse(latitude, longitude, zones)
        return result.to_dict()

    # ═══════════════════════════════════════════════════════════════════
    # Devices & notifications
    # ═══════════════════════════════════════════════════════════════════

    async def register_device(self, user_id: str, token: str) -> BatchResult:
        """
        Store ``token`` for ``user_id`` and subscribe it to the broadcast topic.

        A replaced token is unsubscribed first.  Topic failures are logged
        and reported, never raised; the token is saved either way.
        """
        if not token:
            raise ValidationError("device token must not be empty", field="token")
        previous = await self.store.get_device_token(user_id)
        await self.store.save_device_token(user_id, token)
        if previous and previous != token:
            await self.dispatcher.unsubscribe_from_topic([previous])
        result = await self.dispatcher.subscribe_to_topic([token])
        logger.info(
            "Device registered (topic subscribed: %s)", result.success_count == 1,
            extra={"user_id": user_id},
        )
        return result

    async def unregister_device(self, user_id: str) -> Optional[BatchResult]:
        token = await self.store.get_device_token(user_id)
        if not token:
            return None
        await self.store.remove_device_token(user_id)
        return await self.dispatcher.unsubscribe_from_topic([token])

    async def _prune_tokens(self, invalid_tokens: List[str]) -> int:
        if not invalid_tokens:
            return 0
        invalid = set(invalid_tokens)
        owners = [u for u, t in (await self.store.list_device_tokens()).items() if t in invalid]
        for user_id in owners:
            await self.store.remove_device_token(user_id)
        logger.info("Pruned %d invalid device token(s)", len(owners))
        return len(owners)

    async def notify_report_update(self, user_id: str, report_id: str, status: str) -> AlertEvent:
        event = await self.dispatcher.notify_report_update(user_id, report_id, status)
        if event.prune_token:
            await self.store.remove_device_token(user_id)
            logger.info("Pruned invalid device token", extra={"user_id": user_id})
        return event

    async def announce_new_post(
        self,
        post_id: str,
        title: str,
        author_name: str,
        author_id: str,
    ) -> BatchResult:
        result = await self.dispatcher.announce_new_post(post_id, title, author_name, author_id)
        await self._prune_tokens(result.invalid_tokens)
        return result
