"""
FireDataService: the client-side application context.

Owns everything the map needs for one session: the HTTP client (routed through
the caching transport), the viewport cache, filter settings, saved locations
and the renderer. Create it explicitly and close it when done::

    async with FireDataService(Config()) as service:
        await service.load_usa_fire_data()
        service.render_map("fires.html")
"""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

import folium
import httpx

from eyeonthefire.config import Config
from eyeonthefire.errors import FireMapError
from eyeonthefire.firms import parse_firms_records
from eyeonthefire.locations import LocationStore
from eyeonthefire.models import FilterSettings, FireEvent, SavedLocation, StatusMessage
from eyeonthefire.render import fire_intensity, get_renderer
from eyeonthefire.retry import fetch_with_retry
from eyeonthefire.service_worker import CacheStorage, ServiceWorkerTransport
from eyeonthefire.utils import Viewport, calculate_bounding_box, haversine_km
from eyeonthefire.viewport_cache import (
    USA_REGIONS,
    ViewportDataCache,
    apply_filters,
    fire_statistics,
    filter_to_usa,
    page_count,
    paginate,
)

logger = logging.getLogger(__name__)

FIRMS_ENDPOINT = '/api/nasa/firms'
GEOCODE_ENDPOINT = '/api/geocode'
NEARBY_PRIORITY_KM = 100.0

# Shown when live data cannot be loaded at all
SAMPLE_FIRES = [
    {'latitude': 34.5, 'longitude': -118.2, 'confidence': 85, 'frp': 52.3, 'brightness': 330.5},
    {'latitude': 38.9, 'longitude': -121.1, 'confidence': 72, 'frp': 18.7, 'brightness': 318.2},
    {'latitude': 45.6, 'longitude': -111.4, 'confidence': 90, 'frp': 120.4, 'brightness': 345.0},
]

FETCH_ERRORS = (httpx.HTTPError, FireMapError, ValueError)


class FireDataService:
    """One map session: data loading, filtering, caching and rendering."""

    def __init__(
        self,
        config: Optional[Config] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        storage: Optional[CacheStorage] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        turnstile_token: Optional[str] = None,
    ):
        self.config = config or Config()
        self.turnstile_token = turnstile_token or self.config.TURNSTILE_TOKEN
        self.settings = FilterSettings(
            source=self.config.DEFAULT_SOURCE,
            days=self.config.DEFAULT_DAYS,
            max_markers=self.config.MAX_MARKERS,
        )
        self.worker = ServiceWorkerTransport(
            transport=transport,
            storage=storage,
            prefix=self.config.CACHE_PREFIX,
            version=self.config.CACHE_VERSION,
            precache_urls=self.config.PRECACHE_URLS,
            tile_url_template=self.config.tile_url_template,
            max_prefetch_tiles=self.config.MAX_PREFETCH_TILES,
        )
        self.client = httpx.AsyncClient(
            base_url=self.config.API_BASE_URL,
            transport=self.worker,
            timeout=self.config.UPSTREAM_TIMEOUT,
        )
        self.cache = ViewportDataCache()
        self.locations = LocationStore(self.config.SAVED_PLACES_PATH)
        self.renderer = get_renderer(self.config.MAP_RENDERER)
        self.status = StatusMessage()
        self.using_sample_data = False
        self.started = False
        self._sleep = sleep

    async def start(self) -> None:
        """Install and activate the response cache."""
        await self.worker.install()
        self.worker.activate()
        self.started = True
        logger.info("Fire data service started")

    async def close(self) -> None:
        await self.client.aclose()
        self.started = False

    async def __aenter__(self) -> 'FireDataService':
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    def set_status(self, level: str, text: str) -> None:
        self.status = StatusMessage(level=level, text=text)
        log = logger.error if level == 'error' else logger.info
        log(text)

    # Loading

    async def fetch_fire_data(self, area: str = 'world') -> List[FireEvent]:
        """Fetch normalized fire events for a FIRMS area through the proxy."""
        params = {
            'source': self.settings.source,
            'days': str(self.settings.days),
            'area': area,
            'format': 'json',
        }
        if self.turnstile_token:
            params['cf-turnstile-token'] = self.turnstile_token
        response = await fetch_with_retry(
            lambda: self.client.get(FIRMS_ENDPOINT, params=params),
            max_attempts=self.config.MAX_RETRIES,
            base_delay=self.config.RETRY_BASE_DELAY,
            jitter=self.config.RETRY_JITTER,
            sleep=self._sleep,
            description=f"FIRMS {self.settings.source} ({area})",
        )
        if response.headers.get('X-Cache-Status') == 'stale':
            logger.warning("Serving stale fire data from cache")

        data = response.json()
        if not isinstance(data, list):
            raise ValueError("Unexpected response format from API")
        return parse_firms_records(data)

    async def _fetch_viewport(self, viewport: Viewport) -> List[FireEvent]:
        return await self.fetch_fire_data(viewport.to_firms_area())

    async def load_usa_fire_data(self) -> List[FireEvent]:
        """Load the USA (contiguous, Alaska, Hawaii); returns newly added events."""
        self.set_status('info', 'Loading USA fire data...')
        try:
            events = await self.fetch_fire_data('world')
        except FETCH_ERRORS as e:
            self.set_status('error', f"Error loading USA fire data: {e}")
            if not self.cache.events:
                self._load_sample_data()
            return []

        usa_events = filter_to_usa(events)
        added = self.cache.merge(usa_events)
        self.using_sample_data = False
        self.set_status('success', f"Loaded {len(usa_events)} USA fire data points")
        return added

    async def load_viewport(self, viewport: Viewport) -> List[FireEvent]:
        """Lazy-load one viewport; a no-op when it is already loading or loaded."""
        if self.settings.view_mode == 'usa' and not self.viewport_in_usa(viewport):
            logger.debug(f"Viewport {viewport.key()} is outside the USA, skipping")
            return []

        try:
            events = await self.cache.load(viewport, self._fetch_viewport)
        except FETCH_ERRORS as e:
            self.set_status('error', f"Error loading fire data for this area: {e}")
            return []

        if events is None:
            return []
        self.set_status('success', f"Loaded {len(events)} fire data points for this area")
        return events

    async def load_around(self, lat: float, lng: float, radius_km: float = 50.0) -> List[FireEvent]:
        """Load the box around a point, e.g. a saved location."""
        return await self.load_viewport(calculate_bounding_box(lat, lng, radius_km))

    @staticmethod
    def viewport_in_usa(viewport: Viewport) -> bool:
        return any(viewport.intersects(Viewport.from_bounds(region)) for region in USA_REGIONS)

    def _load_sample_data(self) -> None:
        today = datetime.now(timezone.utc)
        sample = [
            FireEvent(acq_date=today.strftime('%Y-%m-%d'), acq_time=today.strftime('%H%M'), **fire)
            for fire in SAMPLE_FIRES
        ]
        self.cache.merge(sample)
        self.using_sample_data = True
        logger.warning("Using sample fire data")
        self.set_status('info', 'Live data unavailable, showing sample fire data')

    # Views over the loaded data

    def update_settings(self, **changes: Any) -> FilterSettings:
        self.settings = FilterSettings(**{**self.settings.model_dump(), **changes})
        return self.settings

    def filtered_events(self) -> List[FireEvent]:
        return apply_filters(self.cache.events, self.settings)

    def page_count(self) -> int:
        return page_count(len(self.filtered_events()), self.settings.max_markers)

    def page(self, number: int = 1) -> List[FireEvent]:
        return paginate(self.filtered_events(), number, self.settings.max_markers)

    def statistics(self) -> Dict[str, Any]:
        """Counts by confidence, FRP and date over the filtered fires."""
        events = self.filtered_events()
        if not events:
            self.set_status('info', 'No data available for statistics')
        stats = fire_statistics(events)
        stats.update({
            'source': self.settings.source,
            'days': self.settings.days,
            'region': 'USA' if self.settings.view_mode == 'usa' else 'Global',
        })
        return stats

    async def location_name(self, lat: float, lng: float) -> str:
        """Reverse-geocoded address of a point, or its coordinates when unavailable."""
        fallback = f"Lat: {lat:.4f}, Lng: {lng:.4f}"
        try:
            response = await self.client.get(GEOCODE_ENDPOINT, params={'lat': lat, 'lng': lng})
            response.raise_for_status()
            data = response.json()
        except FETCH_ERRORS as e:
            logger.error(f"Geocoding failed for {lat}, {lng}: {e}")
            return fallback

        results = data.get('results') if isinstance(data, dict) else None
        if results and isinstance(results[0], dict) and results[0].get('formatted_address'):
            return results[0]['formatted_address']
        return fallback

    def nearby(self, lat: float, lng: float, radius_km: Optional[float] = None) -> List[Tuple[FireEvent, float]]:
        """
        Filtered fires with their distance from a point, most relevant first.

        High-intensity fires within 100 km come first, then everything by
        distance.
        """
        ranked = []
        for event in self.filtered_events():
            distance = haversine_km(lat, lng, event.latitude, event.longitude)
            if radius_km is not None and distance > radius_km:
                continue
            urgent = distance < NEARBY_PRIORITY_KM and fire_intensity(event) == 'HIGH'
            ranked.append((0 if urgent else 1, distance, event))
        ranked.sort(key=lambda item: (item[0], item[1]))
        return [(event, distance) for _, distance, event in ranked]

    def render_map(
        self,
        out_path: Optional[str] = None,
        page: int = 1,
        center: Optional[Sequence[float]] = None,
        zoom: Optional[int] = None,
    ) -> Optional[folium.Map]:
        """Render one page of filtered fires; failures leave a status, not a crash."""
        events = self.page(page)
        try:
            return self.renderer.render(events, center=center, zoom=zoom, out_path=out_path)
        except (OSError, ValueError) as e:
            logger.error(f"Error rendering fire map: {e}", exc_info=True)
            self.set_status('error', f"Map could not be rendered: {e}")
            return None

    # Saved locations

    def saved_locations(self) -> List[SavedLocation]:
        return self.locations.locations

    def add_location(self, name: Optional[str], lat: float, lon: float) -> SavedLocation:
        return self.locations.add(name, lat, lon)

    def remove_location(self, location_id: str) -> bool:
        return self.locations.remove(location_id)

    # Response cache control

    async def prefetch_tiles(self, viewport: Viewport, zoom: int) -> Dict[str, Any]:
        return await self.worker.handle_message({
            'type': 'PREFETCH_TILES',
            'bounds': viewport.model_dump(),
            'zoomLevel': zoom,
        })

    async def cache_status(self) -> Dict[str, Any]:
        return await self.worker.handle_message({'type': 'GET_CACHE_STATUS'})

    async def clear_cache(self) -> Dict[str, Any]:
        return await self.worker.handle_message({'type': 'CLEAR_CACHE'})
