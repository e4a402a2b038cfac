"""
memory.py — Dict-backed PointStore.

Holds everything in process memory.  Used by the development server and
by tests; not safe to share between worker processes.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional

from backend.app.alerts.models import NotificationRecord
from backend.app.gis.models import CaseFilter, CasePoint
from backend.app.store.base import PointStore
from backend.app.zones.models import Zone

logger = logging.getLogger(__name__)


class InMemoryStore(PointStore):

    def __init__(
        self,
        points: Iterable[CasePoint] = (),
        zones: Iterable[Zone] = (),
        device_tokens: Optional[Dict[str, str]] = None,
    ):
        self.points: Dict[str, CasePoint] = {p.id: p for p in points}
        self.zones: Dict[str, Zone] = {z.id: z for z in zones}
        self.device_tokens: Dict[str, str] = dict(device_tokens or {})
        self.notifications: List[NotificationRecord] = []

    async def list_points(self, case_filter: Optional[CaseFilter] = None) -> List[CasePoint]:
        points = list(self.points.values())
        if case_filter is None:
            return points
        return [p for p in points if case_filter.matches(p)]

    async def get_case(self, case_id: str) -> Optional[CasePoint]:
        return self.points.get(case_id)

    async def list_zones(self) -> List[Zone]:
        return list(self.zones.values())

    async def get_zone(self, zone_id: str) -> Optional[Zone]:
        return self.zones.get(zone_id)

    async def save_zone(self, zone: Zone) -> Zone:
        self.zones[zone.id] = zone
        return zone

    async def get_device_token(self, user_id: str) -> Optional[str]:
        return self.device_tokens.get(user_id)

    async def save_device_token(self, user_id: str, token: str) -> None:
        self.device_tokens[user_id] = token

    async def list_device_tokens(self) -> Dict[str, str]:
        return dict(self.device_tokens)

    async def remove_device_token(self, user_id: str) -> None:
        self.device_tokens.pop(user_id, None)

    async def record_notification(self, record: NotificationRecord) -> NotificationRecord:
        self.notifications.append(record)
        logger.debug("Notification %s recorded (%s)", record.id, record.type.value)
        return record
