"""
reverse_geocoder.py — Reverse geocoding with a graceful fallback chain.

Resolution order (each stage's failure falls through to the next):

    1. Local zones   active zone containing the point → zoneId, local name
    2. Nominatim     OpenStreetMap reverse API → commune / district / province
    3. Raw string    "lat, lon" with six decimals

Address selection:

    address = "commune, district, province"   (non-empty parts only)
           || Nominatim display_name
           || local zone name
           || "10.762622, 106.660172"

Vietnamese administrative divisions are pulled from the Nominatim
``address`` object:

    commune   village | suburb | quarter | hamlet
    district  county | city_district | town | municipality
    province  state | province | city
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional

import httpx

from backend.app.core.errors import ExternalServiceError
from backend.app.spatial.geo import Coordinate
from backend.app.zones.models import Zone
from backend.app.zones.zone_matcher import find_containing

logger = logging.getLogger(__name__)

_COMMUNE_KEYS = ("village", "suburb", "quarter", "hamlet")
_DISTRICT_KEYS = ("county", "city_district", "town", "municipality")
_PROVINCE_KEYS = ("state", "province", "city")


@dataclass
class GeocodeResult:
    address: str
    commune: Optional[str] = None
    district: Optional[str] = None
    province: Optional[str] = None
    zone_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "address": self.address,
            "commune": self.commune,
            "district": self.district,
            "province": self.province,
            "zoneId": self.zone_id,
        }


def format_coordinates(latitude: float, longitude: float) -> str:
    """
    >>> format_coordinates(10.7626219, 106.66017)
    '10.762622, 106.660170'
    """
    return f"{latitude:.6f}, {longitude:.6f}"


def _first(address: Dict[str, Any], keys: Iterable[str]) -> Optional[str]:
    for key in keys:
        value = address.get(key)
        if value:
            return value
    return None


class ReverseGeocoder:
    """
    Async reverse geocoder backed by a Nominatim-compatible endpoint.

    Usage:
        geocoder = ReverseGeocoder(url=settings.GEOCODER_URL)
        result = await geocoder.reverse(10.76, 106.66, zones)
        await geocoder.close()

    Pass ``transport`` (e.g. ``httpx.MockTransport``) to stub the HTTP
    layer in tests.
    """

    def __init__(
        self,
        url: str,
        *,
        user_agent: str = "SafeZone/1.0",
        language: str = "vi",
        timeout: float = 10.0,
        enabled: bool = True,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url
        self.user_agent = user_agent
        self.language = language
        self.timeout = timeout
        self.enabled = enabled
        self._transport = transport
        self._http_client: Optional[httpx.AsyncClient] = None

    @classmethod
    def from_settings(cls, settings) -> "ReverseGeocoder":
        return cls(
            settings.GEOCODER_URL,
            user_agent=settings.GEOCODER_USER_AGENT,
            language=settings.GEOCODER_LANGUAGE,
            timeout=settings.GEOCODER_TIMEOUT,
            enabled=settings.GEOCODER_ENABLED,
        )

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(
                timeout=self.timeout,
                headers={"User-Agent": self.user_agent},
                transport=self._transport,
            )
        return self._http_client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client and not self._http_client.is_closed:
            await self._http_client.aclose()

    async def lookup(self, latitude: float, longitude: float) -> Dict[str, Any]:
        """
        Raw Nominatim reverse lookup.

        Raises
        ------
        ExternalServiceError
            On transport errors, non-2xx responses or undecodable bodies.
        """
        params = {
            "format": "json",
            "lat": latitude,
            "lon": longitude,
            "accept-language": self.language,
        }
        try:
            client = await self._get_client()
            response = await client.get(self.url, params=params)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            raise ExternalServiceError(
                "nominatim", f"HTTP {e.response.status_code}",
                status=e.response.status_code,
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise ExternalServiceError("nominatim", str(e)) from e
        if not isinstance(data, dict):
            raise ExternalServiceError(
                "nominatim", f"unexpected response body ({type(data).__name__})",
            )
        return data

    async def reverse(
        self,
        latitude: float,
        longitude: float,
        zones: Iterable[Zone] = (),
    ) -> GeocodeResult:
        """Resolve an address; never raises for upstream failures."""
        local: Optional[Zone] = None
        try:
            matched = find_containing(Coordinate(latitude, longitude), zones)
            local = matched[0] if matched else None
        except Exception as e:
            logger.warning("Local zone lookup failed: %s", e)

        zone_id = local.id if local else None

        if self.enabled:
            try:
                data = await self.lookup(latitude, longitude)
            except ExternalServiceError as e:
                logger.warning("Reverse geocode fell back: %s", e.message)
            else:
                addr = data.get("address")
                if not isinstance(addr, dict):
                    addr = {}
                commune = _first(addr, _COMMUNE_KEYS)
                district = _first(addr, _DISTRICT_KEYS)
                province = _first(addr, _PROVINCE_KEYS)
                parts = [p for p in (commune, district, province) if p]
                address = (
                    ", ".join(parts)
                    or data.get("display_name")
                    or (local.name if local else None)
                    or format_coordinates(latitude, longitude)
                )
                return GeocodeResult(
                    address=address,
                    commune=commune,
                    district=district,
                    province=province,
                    zone_id=zone_id,
                )

        return GeocodeResult(
            address=local.name if local else format_coordinates(latitude, longitude),
            zone_id=zone_id,
        )
