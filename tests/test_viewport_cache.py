import asyncio

from eyeonthefire.models import FilterSettings, FireEvent
from eyeonthefire.utils import Viewport, calculate_bounding_box, tiles_for_viewport
from eyeonthefire.viewport_cache import (
    ViewportDataCache,
    apply_filters,
    filter_to_usa,
    page_count,
    paginate,
)

CALIFORNIA = Viewport(north=42.0, south=32.0, east=-114.0, west=-125.0)


def fire(lat, lng, frp=10.0, confidence=80, acq_time="0100"):
    return FireEvent(
        latitude=lat, longitude=lng, frp=frp, confidence=confidence,
        acq_date="2024-01-05", acq_time=acq_time,
    )


def test_merge_skips_known_and_repeated_events():
    cache = ViewportDataCache()
    first = cache.merge([fire(34.0, -118.0), fire(35.0, -119.0)])
    assert len(first) == 2

    added = cache.merge([
        fire(34.0, -118.0),
        fire(36.0, -120.0),
        fire(36.0, -120.0),
        fire(34.0, -118.0, acq_time="0200"),
    ])

    assert [(e.latitude, e.acq_time) for e in added] == [(36.0, "0100"), (34.0, "0200")]
    assert len(cache.events) == 4
    assert len({e.identity for e in cache.events}) == 4


def test_load_filters_to_viewport_and_caches():
    cache = ViewportDataCache()
    calls = []

    async def fetch(viewport):
        calls.append(viewport.key())
        return [fire(34.0, -118.0), fire(47.0, -122.0), fire(42.0, -125.0)]

    loaded = asyncio.run(cache.load(CALIFORNIA, fetch))
    # Boundary points are inside
    assert [(e.latitude, e.longitude) for e in loaded] == [(34.0, -118.0), (42.0, -125.0)]
    assert cache.has_region(CALIFORNIA)
    assert len(cache.events) == 2

    again = asyncio.run(cache.load(CALIFORNIA, fetch))
    assert again == loaded
    assert calls == [CALIFORNIA.key()]


def test_concurrent_loads_of_same_viewport_fetch_once():
    cache = ViewportDataCache()
    calls = []

    async def fetch(viewport):
        calls.append(viewport.key())
        await asyncio.sleep(0)
        return [fire(34.0, -118.0)]

    async def run():
        return await asyncio.gather(
            cache.load(CALIFORNIA, fetch),
            cache.load(Viewport(**CALIFORNIA.model_dump()), fetch),
        )

    first, second = asyncio.run(run())

    assert len(calls) == 1
    assert len(first) == 1
    assert second is None
    assert not cache.is_loading(CALIFORNIA)


def test_failed_load_releases_viewport():
    cache = ViewportDataCache()

    async def fetch(viewport):
        raise ValueError("boom")

    async def run():
        try:
            await cache.load(CALIFORNIA, fetch)
        except ValueError:
            pass

    asyncio.run(run())
    assert not cache.is_loading(CALIFORNIA)
    assert not cache.has_region(CALIFORNIA)


def test_viewport_keys_are_exact():
    shifted = Viewport(north=42.0001, south=32.0, east=-114.0, west=-125.0)
    assert shifted.key() != CALIFORNIA.key()
    assert CALIFORNIA.to_firms_area() == "-125,32,-114,42"


def test_filter_to_usa_keeps_alaska_and_hawaii():
    events = [fire(34.0, -118.0), fire(64.8, -147.7), fire(19.6, -155.5), fire(48.8, 2.35)]
    kept = filter_to_usa(events)
    assert [(e.latitude, e.longitude) for e in kept] == [(34.0, -118.0), (64.8, -147.7), (19.6, -155.5)]


def test_apply_filters_thresholds_and_order():
    events = [
        fire(1, 1, frp=5.0, confidence=90),
        fire(2, 2, frp=80.0, confidence=40),
        fire(3, 3, frp=60.0, confidence=75),
        fire(4, 4, frp=1.0, confidence=95),
    ]
    settings = FilterSettings(min_confidence=50, min_frp=2.0)
    assert [e.frp for e in apply_filters(events, settings)] == [60.0, 5.0]


def test_pagination():
    events = [fire(i, i) for i in range(25)]
    assert page_count(25, 10) == 3
    assert page_count(0, 10) == 1
    assert len(paginate(events, 1, 10)) == 10
    assert [e.latitude for e in paginate(events, 3, 10)] == [20, 21, 22, 23, 24]
    # Out-of-range pages are clamped
    assert paginate(events, 99, 10) == paginate(events, 3, 10)
    assert paginate(events, 0, 10) == paginate(events, 1, 10)


def test_bounding_box_around_point():
    box = calculate_bounding_box(37.0, -120.0, radius_km=50.0)
    assert box.contains(37.0, -120.0)
    assert box.north > 37.0 > box.south
    assert round(box.north - 37.0, 2) == 0.45


def test_tiles_for_viewport_respects_limit():
    tiles = tiles_for_viewport(CALIFORNIA, 6)
    assert tiles
    assert all(z == 6 for z, _, _ in tiles)
    assert len(tiles_for_viewport(CALIFORNIA, 10, limit=5)) == 5
