"""
Map picker state tests
"""

from typing import List, Optional

from ekinpanel import settings
from ekinpanel.forms import AssetForm
from ekinpanel.geocode import GeocodeError, GeocodeResult
from ekinpanel.map_picker import NOT_FOUND_MESSAGE, UNRESOLVED_MESSAGE, MapPicker
from ekinpanel.models import GeoPoint


class StubGateway:
    def __init__(self, result: Optional[GeocodeResult] = None, error: Optional[str] = None) -> None:
        self.result = result
        self.error = error
        self.queries: List[str] = []

    def lookup(self, query: str) -> Optional[GeocodeResult]:
        self.queries.append(query)
        if self.error:
            raise GeocodeError(self.error)
        return self.result


def _picker(gateway, lat=None, lng=None):
    form = AssetForm(latitude=lat, longitude=lng)
    return form, MapPicker(gateway, form.get_point, form.set_point)


def test_no_results_keeps_existing_point():
    form, picker = _picker(StubGateway(None), 39.0, 32.0)
    assert picker.search("olmayan sokak") is False
    assert form.get_point() == GeoPoint(lat=39.0, lng=32.0)
    assert picker.error == NOT_FOUND_MESSAGE
    assert picker.searching is False


def test_found_result_sets_point_and_recentres():
    gateway = StubGateway(GeocodeResult("Kızılay", 39.9208, 32.8541))
    form, picker = _picker(gateway)
    assert picker.search("  Kızılay ") is True
    assert gateway.queries == ["Kızılay"]
    assert (form.latitude, form.longitude) == (39.9208, 32.8541)
    assert picker.view() == ((39.9208, 32.8541), settings.SELECTED_MAP_ZOOM)
    assert picker.error is None


def test_unparseable_coordinates_leave_point_alone():
    form, picker = _picker(StubGateway(GeocodeResult("Bozuk", None, 32.0)), 40.0, 30.0)
    picker.search("bozuk")
    assert form.get_point() == GeoPoint(lat=40.0, lng=30.0)
    assert picker.error == UNRESOLVED_MESSAGE


def test_upstream_failure_shows_gateway_message():
    form, picker = _picker(StubGateway(error="Arama servisi hata verdi."), 40.0, 30.0)
    picker.search("ankara")
    assert picker.error == "Arama servisi hata verdi."
    assert form.get_point() == GeoPoint(lat=40.0, lng=30.0)


def test_empty_query_does_nothing():
    gateway = StubGateway(GeocodeResult("x", 1.0, 2.0))
    form, picker = _picker(gateway)
    assert picker.search("   ") is False
    assert gateway.queries == []
    assert form.get_point() is None


def test_superseded_search_is_dropped_silently():
    form, picker = _picker(StubGateway(), 39.0, 32.0)
    first = picker.begin_search()
    second = picker.begin_search()
    assert picker.finish_search(first, GeocodeResult("eski", 1.0, 1.0)) is False
    assert form.get_point() == GeoPoint(lat=39.0, lng=32.0)
    assert picker.error is None
    assert picker.finish_search(second, GeocodeResult("yeni", 2.0, 3.0)) is True
    assert form.get_point() == GeoPoint(lat=2.0, lng=3.0)


def test_closed_picker_ignores_late_results():
    form, picker = _picker(StubGateway())
    ticket = picker.begin_search()
    picker.close()
    assert picker.finish_search(ticket, None) is False
    assert picker.error is None
    assert form.get_point() is None


def test_click_and_clear():
    form, picker = _picker(StubGateway())
    assert picker.view() == (settings.DEFAULT_MAP_CENTER, settings.DEFAULT_MAP_ZOOM)
    picker.click(41.0, 29.0)
    assert form.get_point() == GeoPoint(lat=41.0, lng=29.0)
    picker.clear()
    assert form.get_point() is None
    assert (form.latitude, form.longitude) == (None, None)
    # The view stays on the cleared point.
    assert picker.view() == ((41.0, 29.0), settings.SELECTED_MAP_ZOOM)
