"""
Client-side HTTP response cache.

``ServiceWorkerTransport`` sits between an ``httpx.AsyncClient`` and the real
network transport and answers every GET request with one of four caching
strategies, chosen from the request URL:

* cache-first for static assets (fresh for 7 days)
* stale-while-revalidate for map tiles, geocoding and anything unclassified
* network-first with cache fallback for live fire data (fresh for 30 minutes)
* network-only for analytics, failing silently with an empty 204

Cache buckets are named ``<prefix>-<version>-<kind>``. Activating a new
version deletes every bucket of an older version.
"""
import asyncio
import logging
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

import httpx
from pydantic import BaseModel

from eyeonthefire.config import CACHE_MAX_AGE
from eyeonthefire.utils import Viewport, tiles_for_viewport

logger = logging.getLogger(__name__)

BUCKET_KINDS = ('static', 'dynamic', 'tiles', 'fire-data')

CACHE_STATUS_HEADER = 'X-Cache-Status'
CACHED_DATE_HEADER = 'X-Cached-Date'
# Bodies are stored decoded, so transfer framing headers are not replayed
DROPPED_HEADERS = {
    'content-encoding', 'content-length', 'transfer-encoding',
    CACHE_STATUS_HEADER.lower(), CACHED_DATE_HEADER.lower(),
}

STATIC_EXTENSIONS = ('.css', '.js', '.png', '.jpg', '.jpeg', '.gif', '.svg', '.ico', '.woff', '.woff2')
STATIC_HOSTS = {'fonts.googleapis.com', 'fonts.gstatic.com', 'cdnjs.cloudflare.com', 'unpkg.com'}
ANALYTICS_HOSTS = {
    'www.google-analytics.com', 'google-analytics.com', 'analytics.google.com',
    'www.googletagmanager.com', 'static.cloudflareinsights.com',
}
FIRE_DATA_HOSTS = {'firms.modaps.eosdis.nasa.gov'}
FIRE_DATA_PATHS = ('/api/nasa/firms',)
TILE_PATHS = ('/api/tiles/',)
GEOCODE_PATHS = ('/api/geocode', '/maps/api/geocode')


class Strategy(str, Enum):
    CACHE_FIRST = 'cache-first'
    STALE_WHILE_REVALIDATE = 'stale-while-revalidate'
    NETWORK_FIRST = 'network-first'
    NETWORK_ONLY = 'network-only'


def classify(url: httpx.URL) -> Tuple[Strategy, str]:
    """Pick the caching strategy and bucket kind for a request URL."""
    host = url.host.lower()
    path = url.path.lower()

    if host in ANALYTICS_HOSTS or path.endswith('/collect') or path.startswith('/api/analytics'):
        return Strategy.NETWORK_ONLY, 'dynamic'
    if host in FIRE_DATA_HOSTS or path.startswith(FIRE_DATA_PATHS):
        return Strategy.NETWORK_FIRST, 'fire-data'
    if path.startswith(TILE_PATHS) or host.endswith('tile.openstreetmap.org'):
        return Strategy.STALE_WHILE_REVALIDATE, 'tiles'
    if path.startswith(GEOCODE_PATHS):
        return Strategy.STALE_WHILE_REVALIDATE, 'dynamic'
    if path.endswith(STATIC_EXTENSIONS) or host in STATIC_HOSTS:
        return Strategy.CACHE_FIRST, 'static'
    return Strategy.STALE_WHILE_REVALIDATE, 'dynamic'


class CacheEntry(BaseModel):
    status_code: int
    headers: List[Tuple[str, str]]
    content: bytes
    cached_date: float

    def to_response(self, cache_status: Optional[str] = None) -> httpx.Response:
        headers = list(self.headers)
        if cache_status:
            headers.append((CACHE_STATUS_HEADER, cache_status))
        return httpx.Response(self.status_code, headers=headers, content=self.content)


class CacheStorage:
    """Named buckets of URL -> CacheEntry, shared across worker versions."""

    def __init__(self):
        self._buckets: Dict[str, Dict[str, CacheEntry]] = {}

    def open(self, name: str) -> Dict[str, CacheEntry]:
        return self._buckets.setdefault(name, {})

    def keys(self) -> List[str]:
        return list(self._buckets)

    def delete(self, name: str) -> bool:
        return self._buckets.pop(name, None) is not None

    def match(self, url: str, name: Optional[str] = None) -> Optional[CacheEntry]:
        if name is not None:
            return self._buckets.get(name, {}).get(url)
        for bucket in self._buckets.values():
            if url in bucket:
                return bucket[url]
        return None


class ServiceWorkerTransport(httpx.AsyncBaseTransport):
    """httpx transport applying per-URL caching strategies."""

    def __init__(
        self,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        storage: Optional[CacheStorage] = None,
        prefix: str = 'eyeonthefire',
        version: str = 'v1.0.0',
        precache_urls: Iterable[str] = (),
        tile_url_template: Optional[str] = None,
        max_prefetch_tiles: int = 100,
        clock: Callable[[], float] = time.time,
    ):
        self._transport = transport or httpx.AsyncHTTPTransport()
        self.storage = storage if storage is not None else CacheStorage()
        self.prefix = prefix
        self.version = version
        self.precache_urls = list(precache_urls)
        self.tile_url_template = tile_url_template
        self.max_prefetch_tiles = max_prefetch_tiles
        self.clock = clock
        self.installed = False
        self.active = False
        self._pending: set = set()
        self._message_lock = asyncio.Lock()

    def bucket_name(self, kind: str) -> str:
        return f"{self.prefix}-{self.version}-{kind}"

    # Lifecycle

    async def install(self) -> None:
        """Pre-cache the configured static URLs."""
        bucket = self.bucket_name('static')
        for url in self.precache_urls:
            try:
                entry = await self._fetch(httpx.Request('GET', url))
            except httpx.HTTPError as e:
                logger.error(f"Failed to pre-cache {url}: {e}")
                continue
            if entry.status_code == 200:
                self._put(bucket, url, entry)
            else:
                logger.warning(f"Not pre-caching {url}: HTTP {entry.status_code}")
        self.installed = True
        logger.info(f"Cache version {self.version} installed")

    def activate(self) -> List[str]:
        """Delete every bucket belonging to another version; return their names."""
        current = {self.bucket_name(kind) for kind in BUCKET_KINDS}
        removed = []
        for name in self.storage.keys():
            if name.startswith(f"{self.prefix}-") and name not in current:
                self.storage.delete(name)
                removed.append(name)
                logger.info(f"Removing old cache {name}")
        self.active = True
        return removed

    def clear(self) -> List[str]:
        names = self.storage.keys()
        for name in names:
            self.storage.delete(name)
        return names

    def cache_status(self) -> Dict[str, int]:
        return {name: len(self.storage.open(name)) for name in self.storage.keys()}

    async def drain(self) -> None:
        """Wait for background revalidations still in flight."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def aclose(self) -> None:
        tasks = list(self._pending)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await self._transport.aclose()

    # Request handling

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        if request.method != 'GET':
            return await self._transport.handle_async_request(request)

        strategy, kind = classify(request.url)
        bucket = self.bucket_name(kind)
        logger.debug(f"{strategy.value} -> {request.url}")

        if strategy is Strategy.CACHE_FIRST:
            return await self._cache_first(request, bucket, kind)
        if strategy is Strategy.NETWORK_FIRST:
            return await self._network_first(request, bucket, kind)
        if strategy is Strategy.NETWORK_ONLY:
            return await self._network_only(request)
        return await self._stale_while_revalidate(request, bucket)

    async def _fetch(self, request: httpx.Request) -> CacheEntry:
        response = await self._transport.handle_async_request(request)
        try:
            content = await response.aread()
        finally:
            await response.aclose()

        now = self.clock()
        headers = [
            (name, value) for name, value in response.headers.multi_items()
            if name.lower() not in DROPPED_HEADERS
        ]
        headers.append((CACHED_DATE_HEADER, datetime.fromtimestamp(now, timezone.utc).isoformat()))
        return CacheEntry(status_code=response.status_code, headers=headers, content=content, cached_date=now)

    def _put(self, bucket: str, url: str, entry: CacheEntry) -> None:
        self.storage.open(bucket)[url] = entry

    def _is_expired(self, entry: CacheEntry, kind: str) -> bool:
        max_age = CACHE_MAX_AGE.get(kind)
        if max_age is None:
            return False
        return self.clock() - entry.cached_date >= max_age

    async def _cache_first(self, request: httpx.Request, bucket: str, kind: str) -> httpx.Response:
        url = str(request.url)
        cached = self.storage.match(url, bucket)
        if cached is not None and not self._is_expired(cached, kind):
            return cached.to_response('hit')

        try:
            entry = await self._fetch(request)
        except httpx.HTTPError as e:
            if cached is not None:
                logger.info(f"Network failed for {url}, serving expired copy: {e}")
                return cached.to_response('stale')
            raise

        if entry.status_code == 200:
            self._put(bucket, url, entry)
        return entry.to_response()

    async def _stale_while_revalidate(self, request: httpx.Request, bucket: str) -> httpx.Response:
        url = str(request.url)
        cached = self.storage.match(url, bucket)
        if cached is not None:
            task = asyncio.create_task(self._revalidate(request, bucket))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)
            return cached.to_response('hit')

        entry = await self._fetch(request)
        if entry.status_code == 200:
            self._put(bucket, url, entry)
        return entry.to_response()

    async def _revalidate(self, request: httpx.Request, bucket: str) -> None:
        url = str(request.url)
        try:
            entry = await self._fetch(request)
        except httpx.HTTPError as e:
            logger.info(f"Background refresh failed for {url}: {e}")
            return
        if entry.status_code == 200:
            self._put(bucket, url, entry)

    async def _network_first(self, request: httpx.Request, bucket: str, kind: str) -> httpx.Response:
        url = str(request.url)
        try:
            entry = await self._fetch(request)
        except httpx.HTTPError as e:
            cached = self.storage.match(url, bucket)
            if cached is None:
                raise
            status = 'stale' if self._is_expired(cached, kind) else 'cached'
            logger.warning(f"Network failed for {url}, serving {status} copy: {e}")
            return cached.to_response(status)

        if entry.status_code == 200:
            self._put(bucket, url, entry)
        return entry.to_response()

    async def _network_only(self, request: httpx.Request) -> httpx.Response:
        try:
            entry = await self._fetch(request)
        except httpx.HTTPError as e:
            logger.debug(f"Analytics request failed silently: {e}")
            return httpx.Response(204)
        if not 200 <= entry.status_code < 300:
            return httpx.Response(204)
        return entry.to_response()

    # Control messages

    async def handle_message(self, message: Dict[str, Any]) -> Dict[str, Any]:
        """Answer one control message; messages are handled one at a time."""
        async with self._message_lock:
            kind = message.get('type') if isinstance(message, dict) else None

            if kind == 'SKIP_WAITING':
                removed = self.activate()
                return {'type': kind, 'success': True, 'removed': removed}

            if kind == 'GET_CACHE_STATUS':
                return {
                    'type': kind,
                    'version': self.version,
                    'active': self.active,
                    'caches': self.cache_status(),
                }

            if kind == 'CLEAR_CACHE':
                cleared = self.clear()
                logger.info(f"Cleared {len(cleared)} caches")
                return {'type': kind, 'success': True, 'cleared': cleared}

            if kind == 'PREFETCH_TILES':
                return await self._prefetch_tiles(message.get('bounds'), message.get('zoomLevel'))

            return {'type': kind, 'error': f"Unknown message type: {kind}"}

    async def _prefetch_tiles(self, bounds: Any, zoom: Any) -> Dict[str, Any]:
        reply: Dict[str, Any] = {'type': 'PREFETCH_TILES'}
        if not self.tile_url_template:
            reply['error'] = "No tile URL configured"
            return reply
        try:
            viewport = Viewport.from_bounds(bounds)
            zoom = int(zoom)
        except (TypeError, KeyError, ValueError) as e:
            reply['error'] = f"Invalid PREFETCH_TILES payload: {e}"
            return reply
        if not 0 <= zoom <= 19:
            reply['error'] = f"Invalid zoom level: {zoom}"
            return reply

        bucket = self.bucket_name('tiles')
        tiles = tiles_for_viewport(viewport, zoom, limit=self.max_prefetch_tiles)
        prefetched = cached = failed = 0

        for z, x, y in tiles:
            url = self.tile_url_template.format(z=z, x=x, y=y)
            if self.storage.match(url, bucket) is not None:
                cached += 1
                continue
            try:
                entry = await self._fetch(httpx.Request('GET', url))
            except httpx.HTTPError as e:
                logger.debug(f"Tile prefetch failed for {url}: {e}")
                failed += 1
                continue
            if entry.status_code == 200:
                self._put(bucket, url, entry)
                prefetched += 1
            else:
                failed += 1

        logger.info(f"Prefetched {prefetched} tiles at zoom {zoom} ({cached} cached, {failed} failed)")
        reply.update({'total': len(tiles), 'prefetched': prefetched, 'cached': cached, 'failed': failed})
        return reply
