from __future__ import annotations

from typing import Optional

import folium

from ekinpanel import settings
from ekinpanel.models import Asset


def google_maps_url(lat: float, lng: float) -> str:
    return f"https://www.google.com/maps?q={lat},{lng}"


def render_location_map(asset: Asset, *, height: int = 260) -> Optional[str]:
    """Embeddable read-only map with the asset's marker, or None without a location."""
    point = asset.location
    if point is None:
        return None
    m = folium.Map(
        location=(point.lat, point.lng),
        zoom_start=settings.SELECTED_MAP_ZOOM,
        control_scale=True,
        height=height,
    )
    tooltip = asset.customer_name or asset.uid
    folium.Marker((point.lat, point.lng), tooltip=tooltip, icon=folium.Icon(color="red")).add_to(m)
    return m._repr_html_()
