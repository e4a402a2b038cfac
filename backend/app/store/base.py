"""
base.py — PointStore interface.

Case, zone, user and notification persistence live outside the core.  The
core only needs the handful of reads and writes below; any backend that
implements them can be injected into EpidemicService.
"""

from __future__ import annotations

import abc
from typing import Dict, List, Optional

from backend.app.alerts.models import NotificationRecord
from backend.app.gis.models import CaseFilter, CasePoint
from backend.app.zones.models import Zone


class PointStore(abc.ABC):

    @abc.abstractmethod
    async def list_points(self, case_filter: Optional[CaseFilter] = None) -> List[CasePoint]:
        """Case points matching ``case_filter`` (all points when None)."""

    @abc.abstractmethod
    async def get_case(self, case_id: str) -> Optional[CasePoint]:
        ...

    @abc.abstractmethod
    async def list_zones(self) -> List[Zone]:
        ...

    async def list_active_zones(self) -> List[Zone]:
        return [z for z in await self.list_zones() if z.is_active]

    @abc.abstractmethod
    async def get_zone(self, zone_id: str) -> Optional[Zone]:
        ...

    @abc.abstractmethod
    async def save_zone(self, zone: Zone) -> Zone:
        ...

    @abc.abstractmethod
    async def get_device_token(self, user_id: str) -> Optional[str]:
        ...

    @abc.abstractmethod
    async def save_device_token(self, user_id: str, token: str) -> None:
        ...

    @abc.abstractmethod
    async def list_device_tokens(self) -> Dict[str, str]:
        """Every registered token, keyed by user id."""

    async def remove_device_token(self, user_id: str) -> None:
        """Forget a token the push provider rejected; no-op by default."""

    @abc.abstractmethod
    async def record_notification(self, record: NotificationRecord) -> NotificationRecord:
        ...
