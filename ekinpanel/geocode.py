from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import requests

from ekinpanel import settings

log = logging.getLogger("uvicorn.error")


class GeocodeError(Exception):
    """Raised by the direct lookup when the upstream geocoder cannot answer."""


@dataclass(frozen=True)
class GeocodeResult:
    display_name: str
    lat: Optional[float]
    lon: Optional[float]

    @property
    def is_valid(self) -> bool:
        return self.lat is not None and self.lon is not None

    def to_dict(self) -> Dict[str, Any]:
        return {"display_name": self.display_name, "lat": self.lat, "lon": self.lon}


def _parse_number(value: Any) -> Optional[float]:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number):
        return None
    return number


def _candidate(item: Dict[str, Any]) -> GeocodeResult:
    return GeocodeResult(
        display_name=str(item.get("display_name") or ""),
        lat=_parse_number(item.get("lat")),
        lon=_parse_number(item.get("lon")),
    )


class GeocodingGateway:
    """Forward geocoding against Nominatim; one request per call, no cache, no retry."""

    def __init__(
        self,
        url: Optional[str] = None,
        *,
        user_agent: Optional[str] = None,
        http: Optional[requests.Session] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self.url = url or settings.NOMINATIM_URL
        self.user_agent = user_agent or settings.GEOCODE_USER_AGENT
        self.http = http or requests.Session()
        self.timeout = timeout or settings.GEOCODE_TIMEOUT_SEC

    def search(
        self,
        query: str,
        limit: int,
        *,
        countrycodes: Optional[str] = None,
        address_details: bool = False,
    ) -> List[GeocodeResult]:
        """Query the upstream service; raises ``GeocodeError`` on any upstream failure."""
        params: Dict[str, Any] = {"q": query, "format": "json", "limit": int(limit)}
        if countrycodes:
            params["countrycodes"] = countrycodes
        if address_details:
            params["addressdetails"] = 1
        headers = {"Accept": "application/json", "User-Agent": self.user_agent}
        try:
            response = self.http.get(self.url, params=params, headers=headers, timeout=self.timeout)
        except requests.RequestException as exc:
            raise GeocodeError("Arama başarısız.") from exc
        if response.status_code != 200:
            raise GeocodeError("Arama servisi hata verdi.")
        try:
            data = response.json()
        except ValueError as exc:
            raise GeocodeError("Arama servisi hata verdi.") from exc
        if not isinstance(data, list):
            raise GeocodeError("Arama servisi hata verdi.")
        return [_candidate(item) for item in data if isinstance(item, dict)]

    def proxy_search(self, query: str, limit: int = settings.GEOCODE_PROXY_LIMIT) -> List[GeocodeResult]:
        """Server-side passthrough: short queries and upstream failures give no results."""
        text = (query or "").strip()
        if len(text) < settings.GEOCODE_MIN_QUERY:
            return []
        try:
            results = self.search(text, limit, address_details=True)
        except GeocodeError as exc:
            log.warning("Geocode passthrough failed query=%r error=%s", text, exc)
            return []
        return [item for item in results if item.is_valid]

    def lookup(self, query: str) -> Optional[GeocodeResult]:
        """Direct lookup used by the map picker: first candidate, country-filtered."""
        text = (query or "").strip()
        if not text:
            return None
        results = self.search(text, 1, countrycodes=settings.GEOCODE_COUNTRY or None)
        return results[0] if results else None


__all__ = ["GeocodeError", "GeocodeResult", "GeocodingGateway"]
