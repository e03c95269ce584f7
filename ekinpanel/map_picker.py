"""Server-side half of the location picker.

The selected point belongs to the form that embeds the picker; the picker only
reads and writes it through the two callbacks it is given. The browser half
(``templates/_map_picker.html``) follows the same rules with Leaflet.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional, Tuple

from ekinpanel import settings
from ekinpanel.geocode import GeocodeError, GeocodeResult, GeocodingGateway
from ekinpanel.models import GeoPoint

log = logging.getLogger("uvicorn.error")

NOT_FOUND_MESSAGE = "Adres bulunamadı. Daha detaylı yazmayı dene."
UNRESOLVED_MESSAGE = "Konum çözümlenemedi."


class MapPicker:
    def __init__(
        self,
        gateway: GeocodingGateway,
        get_point: Callable[[], Optional[GeoPoint]],
        set_point: Callable[[Optional[GeoPoint]], None],
    ) -> None:
        self._gateway = gateway
        self._get_point = get_point
        self._set_point = set_point
        self._generation = 0
        self._closed = False
        self.searching = False
        self.error: Optional[str] = None
        self.view_center: Optional[GeoPoint] = None

    @property
    def point(self) -> Optional[GeoPoint]:
        return self._get_point()

    def click(self, lat: float, lng: float) -> None:
        self.error = None
        self._set_point(GeoPoint(lat=lat, lng=lng))

    def clear(self) -> None:
        # The view stays where it was; only the marker goes away.
        current = self._get_point()
        if current is not None and self.view_center is None:
            self.view_center = current
        self._set_point(None)

    def begin_search(self) -> int:
        """Start a search and return its ticket; older tickets stop counting."""
        self._generation += 1
        self.searching = True
        self.error = None
        return self._generation

    def cancel(self) -> None:
        self._generation += 1
        self.searching = False

    def close(self) -> None:
        self.cancel()
        self._closed = True

    def is_current(self, ticket: int) -> bool:
        return not self._closed and ticket == self._generation

    def finish_search(
        self,
        ticket: int,
        result: Optional[GeocodeResult] = None,
        *,
        error: Optional[str] = None,
    ) -> bool:
        """Apply a search outcome; returns True only if the point changed.

        Outcomes of superseded or cancelled searches are dropped without
        touching the point or the error message.
        """
        if not self.is_current(ticket):
            log.info("Discarding superseded location search ticket=%s", ticket)
            return False
        self.searching = False
        if error:
            self.error = error
            return False
        if result is None:
            self.error = NOT_FOUND_MESSAGE
            return False
        if not result.is_valid:
            self.error = UNRESOLVED_MESSAGE
            return False
        point = GeoPoint(lat=result.lat, lng=result.lon)
        self._set_point(point)
        self.view_center = point
        return True

    def search(self, query: str) -> bool:
        text = (query or "").strip()
        if not text:
            return False
        ticket = self.begin_search()
        try:
            result = self._gateway.lookup(text)
        except GeocodeError as exc:
            return self.finish_search(ticket, error=str(exc) or "Arama başarısız.")
        return self.finish_search(ticket, result)

    def view(self) -> Tuple[Tuple[float, float], int]:
        """Centre and zoom the widget should open with."""
        if self.view_center is not None:
            return (self.view_center.lat, self.view_center.lng), settings.SELECTED_MAP_ZOOM
        current = self._get_point()
        if current is not None:
            return (current.lat, current.lng), settings.SELECTED_MAP_ZOOM
        return settings.DEFAULT_MAP_CENTER, settings.DEFAULT_MAP_ZOOM


__all__ = ["MapPicker", "NOT_FOUND_MESSAGE", "UNRESOLVED_MESSAGE"]
