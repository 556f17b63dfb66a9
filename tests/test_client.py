import asyncio

import folium
import httpx
import pytest

from eyeonthefire.client import FireDataService
from eyeonthefire.models import FireEvent
from eyeonthefire.utils import Viewport

RECORDS = [
    {"latitude": 34.1, "longitude": -118.3, "confidence": 90, "frp": 150.0, "acq_date": "2024-01-05", "acq_time": "0930"},
    {"latitude": 39.8, "longitude": -121.6, "confidence": 60, "frp": 12.0, "acq_date": "2024-01-05", "acq_time": "1015"},
    {"latitude": 64.8, "longitude": -147.7, "confidence": 75, "frp": 40.0, "acq_date": "2024-01-05", "acq_time": "2200"},
    {"latitude": 48.8, "longitude": 2.3, "confidence": 80, "frp": 30.0, "acq_date": "2024-01-05", "acq_time": "1200"},
]

CALIFORNIA = Viewport(north=42.0, south=32.0, east=-114.0, west=-125.0)
EUROPE = Viewport(north=55.0, south=40.0, east=20.0, west=-5.0)


class Proxy:
    def __init__(self):
        self.requests = []
        self.status = 200
        self.geocode_status = 200

    def handler(self, request):
        self.requests.append(request)
        if request.url.path == "/api/geocode":
            if self.geocode_status != 200:
                return httpx.Response(self.geocode_status, json={"status": self.geocode_status})
            return httpx.Response(200, json={"results": [{"formatted_address": "Paradise, CA 95969, USA"}]})
        if self.status != 200:
            return httpx.Response(self.status, json={"status": self.status, "error": "down"})
        return httpx.Response(200, json=RECORDS)


@pytest.fixture
def proxy():
    return Proxy()


@pytest.fixture
def service(config, proxy):
    return FireDataService(config, transport=httpx.MockTransport(proxy.handler))


def test_load_usa_fire_data(service, proxy):
    async def scenario():
        async with service:
            added = await service.load_usa_fire_data()
            again = await service.load_usa_fire_data()
            return added, again

    added, again = asyncio.run(scenario())

    assert [(e.latitude, e.longitude) for e in added] == [(34.1, -118.3), (39.8, -121.6), (64.8, -147.7)]
    assert again == []
    assert len(service.cache.events) == 3
    assert service.status.level == "success"
    params = proxy.requests[0].url.params
    assert params["area"] == "world"
    assert params["source"] == "MODIS_NRT"
    assert params["format"] == "json"


def test_falls_back_to_sample_data(service, proxy):
    proxy.status = 503

    asyncio.run(service.load_usa_fire_data())

    assert service.using_sample_data
    assert len(service.cache.events) == 3
    assert len(proxy.requests) == 3


def test_load_viewport_fetches_each_area_once(service, proxy):
    async def scenario():
        first = await service.load_viewport(CALIFORNIA)
        second = await service.load_viewport(CALIFORNIA)
        return first, second

    first, second = asyncio.run(scenario())

    assert [(e.latitude, e.longitude) for e in first] == [(34.1, -118.3), (39.8, -121.6)]
    assert second == first
    assert len(proxy.requests) == 1
    assert proxy.requests[0].url.params["area"] == "-125,32,-114,42"


def test_load_viewport_outside_usa(service, proxy):
    assert asyncio.run(service.load_viewport(EUROPE)) == []
    assert proxy.requests == []

    service.update_settings(view_mode="world")
    loaded = asyncio.run(service.load_viewport(EUROPE))
    assert [(e.latitude, e.longitude) for e in loaded] == [(48.8, 2.3)]


def test_load_around_point(service, proxy):
    loaded = asyncio.run(service.load_around(34.1, -118.3, radius_km=25))
    assert [(e.latitude, e.longitude) for e in loaded] == [(34.1, -118.3)]


def test_filters_pages_and_nearby(service):
    asyncio.run(service.load_usa_fire_data())

    service.update_settings(min_confidence=70, max_markers=1)
    assert [e.frp for e in service.filtered_events()] == [150.0, 40.0]
    assert service.page_count() == 2
    assert [e.frp for e in service.page(2)] == [40.0]

    service.update_settings(min_confidence=0, max_markers=1000)
    ranked = service.nearby(39.7, -121.5)
    assert ranked[0][0].latitude == 39.8
    assert ranked[0][1] < 20

    ranked = service.nearby(34.0, -118.0, radius_km=100)
    assert [event.latitude for event, _ in ranked] == [34.1]


def test_nearby_puts_close_high_intensity_fires_first(service):
    asyncio.run(service.load_usa_fire_data())
    service.cache.merge([FireEvent(latitude=34.41, longitude=-118.61, confidence=10, frp=1.0)])

    ranked = service.nearby(34.4, -118.6)
    assert [event.latitude for event, _ in ranked[:2]] == [34.1, 34.41]


def test_render_map(service, tmp_path):
    asyncio.run(service.load_usa_fire_data())
    out = tmp_path / "fires.html"

    fire_map = service.render_map(str(out))

    assert isinstance(fire_map, folium.Map)
    assert out.exists()
    assert "Fire Detection" in out.read_text()


def test_render_map_failure_sets_status(service, tmp_path):
    asyncio.run(service.load_usa_fire_data())

    result = service.render_map(str(tmp_path / "missing" / "dir" / "fires.html"))

    assert result is None
    assert service.status.level == "error"


def test_saved_locations(service):
    home = service.add_location("Home", 37.77, -122.42)
    assert [loc.id for loc in service.saved_locations()] == [home.id]
    assert service.remove_location(home.id)
    assert service.saved_locations() == []


def test_cache_control(service):
    async def scenario():
        await service.fetch_fire_data()
        status = await service.cache_status()
        cleared = await service.clear_cache()
        return status, cleared

    status, cleared = asyncio.run(scenario())

    assert status["caches"] == {"eyeonthefire-v1.0.0-fire-data": 1}
    assert cleared["cleared"] == ["eyeonthefire-v1.0.0-fire-data"]


def test_invalid_settings_rejected(service):
    with pytest.raises(ValueError):
        service.update_settings(days=11)
    with pytest.raises(ValueError):
        service.update_settings(view_mode="mars")


def test_statistics(service):
    asyncio.run(service.load_usa_fire_data())

    stats = service.statistics()

    assert stats["total"] == 3
    assert stats["confidence"]["high"] == {"count": 1, "percent": 33}
    assert stats["confidence"]["medium"] == {"count": 2, "percent": 67}
    assert stats["confidence"]["very_low"] == {"count": 0, "percent": 0}
    assert stats["frp"]["extreme"]["count"] == 1
    assert stats["frp"]["high"]["count"] == 1
    assert stats["frp"]["medium"]["count"] == 1
    assert stats["frp"]["low"]["count"] == 0
    assert stats["top_dates"] == [("2024-01-05", 3)]
    assert stats["region"] == "USA"
    assert stats["source"] == "MODIS_NRT"


def test_statistics_without_data(service):
    stats = service.statistics()
    assert stats["total"] == 0
    assert stats["top_dates"] == []
    assert service.status.text == "No data available for statistics"


def test_location_name(service, proxy):
    name = asyncio.run(service.location_name(39.76, -121.62))

    assert name == "Paradise, CA 95969, USA"
    params = proxy.requests[0].url.params
    assert (params["lat"], params["lng"]) == ("39.76", "-121.62")


def test_location_name_falls_back_to_coordinates(service, proxy):
    proxy.geocode_status = 500
    assert asyncio.run(service.location_name(39.76, -121.62)) == "Lat: 39.7600, Lng: -121.6200"


def test_turnstile_token_is_sent(config, proxy):
    service = FireDataService(config, transport=httpx.MockTransport(proxy.handler), turnstile_token="tok-123")
    asyncio.run(service.fetch_fire_data())
    assert proxy.requests[0].url.params["cf-turnstile-token"] == "tok-123"


def test_no_turnstile_token_by_default(service, proxy):
    asyncio.run(service.fetch_fire_data())
    assert "cf-turnstile-token" not in proxy.requests[0].url.params
