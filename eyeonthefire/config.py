"""
Configuration for Eye on the Fire.

Values are read from the environment (a local ``.env`` file is loaded first).
Every attribute can be overridden through the constructor, which is how the
tests build isolated configurations.
"""
import os
from pathlib import Path
from typing import Any, Dict, List

from dotenv import load_dotenv

# Geographic bounds used to keep "USA" views focused
USA_BOUNDS = {'north': 49.0, 'south': 24.0, 'east': -66.0, 'west': -125.0}
ALASKA_BOUNDS = {'north': 71.0, 'south': 51.0, 'east': -130.0, 'west': -170.0}
HAWAII_BOUNDS = {'north': 23.0, 'south': 18.0, 'east': -154.0, 'west': -160.0}

# Map defaults (USA center)
MAP_DEFAULTS = {
    'center': [39.5, -98.35],
    'zoom': 4,
    'min_zoom': 3,
    'max_zoom': 18,
}

# Cache staleness thresholds in seconds, per bucket kind
CACHE_MAX_AGE = {
    'static': 7 * 24 * 60 * 60,
    'fire-data': 30 * 60,
}

DEFAULT_PRECACHE_URLS = [
    'https://unpkg.com/leaflet@1.9.4/dist/leaflet.css',
    'https://unpkg.com/leaflet@1.9.4/dist/leaflet.js',
]


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, default))
    except (TypeError, ValueError):
        return default


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, default))
    except (TypeError, ValueError):
        return default


def _env_list(name: str, default: List[str]) -> List[str]:
    value = os.getenv(name)
    if not value:
        return list(default)
    return [item.strip() for item in value.split(',') if item.strip()]


class Config:
    """Application configuration."""

    def __init__(self, **overrides: Any):
        load_dotenv()

        # NASA FIRMS API
        self.NASA_FIRMS_API_KEY = os.getenv("NASA_FIRMS_API_KEY", "")
        self.FIRMS_BASE_URL = os.getenv(
            "FIRMS_BASE_URL", "https://firms.modaps.eosdis.nasa.gov/api/area/csv"
        )
        self.DEFAULT_SOURCE = os.getenv("DEFAULT_SOURCE", "MODIS_NRT")
        self.DEFAULT_DAYS = _env_int("DEFAULT_DAYS", 1)

        # Google Maps (server key stays here, browser key is handed out)
        self.GOOGLE_MAPS_API_KEY = os.getenv("GOOGLE_MAPS_API_KEY", "")
        self.GOOGLE_MAPS_BROWSER_KEY = os.getenv("GOOGLE_MAPS_BROWSER_KEY", "")
        self.GEOCODE_URL = os.getenv(
            "GEOCODE_URL", "https://maps.googleapis.com/maps/api/geocode/json"
        )
        self.GOOGLE_MAPS_JS_URL = os.getenv(
            "GOOGLE_MAPS_JS_URL", "https://maps.googleapis.com/maps/api/js"
        )
        self.TILE_PROVIDER_URL = os.getenv(
            "TILE_PROVIDER_URL", "https://tile.openstreetmap.org/{z}/{x}/{y}.png"
        )

        # Cloudflare Turnstile
        self.TURNSTILE_SECRET_KEY = os.getenv("TURNSTILE_SECRET_KEY", "")
        self.TURNSTILE_SITE_KEY = os.getenv("TURNSTILE_SITE_KEY", "")
        self.TURNSTILE_VERIFY_URL = os.getenv(
            "TURNSTILE_VERIFY_URL",
            "https://challenges.cloudflare.com/turnstile/v0/siteverify",
        )
        self.REQUIRE_TURNSTILE = _env_bool("REQUIRE_TURNSTILE", False)
        # Token attached by the client to fire data requests
        self.TURNSTILE_TOKEN = os.getenv("TURNSTILE_TOKEN", "")

        # Upstream calls
        self.UPSTREAM_TIMEOUT = _env_float("UPSTREAM_TIMEOUT", 10.0)
        self.MAX_RETRIES = _env_int("MAX_RETRIES", 3)
        self.RETRY_BASE_DELAY = _env_float("RETRY_BASE_DELAY", 1.0)
        self.RETRY_JITTER = _env_bool("RETRY_JITTER", False)

        # Rate limiting (requests per window per client address)
        self.RATE_LIMIT_REQUESTS = _env_int("RATE_LIMIT_REQUESTS", 60)
        self.RATE_LIMIT_WINDOW = _env_float("RATE_LIMIT_WINDOW", 60.0)

        # Server
        self.HOST = os.getenv("HOST", "0.0.0.0")
        self.PORT = _env_int("PORT", 8000)
        self.CORS_ORIGINS = _env_list("CORS_ORIGINS", ["*"])
        self.CONTENT_SECURITY_POLICY = os.getenv(
            "CONTENT_SECURITY_POLICY",
            "default-src 'self'; "
            "img-src 'self' https://*.googleapis.com https://*.gstatic.com "
            "https://*.tile.openstreetmap.org data:; "
            "connect-src 'self' https://*.googleapis.com https://challenges.cloudflare.com",
        )
        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

        # Client side
        self.API_BASE_URL = os.getenv("API_BASE_URL", "http://localhost:8000")
        self.CACHE_PREFIX = os.getenv("CACHE_PREFIX", "eyeonthefire")
        self.CACHE_VERSION = os.getenv("CACHE_VERSION", "v1.0.0")
        self.PRECACHE_URLS = _env_list("PRECACHE_URLS", DEFAULT_PRECACHE_URLS)
        self.MAX_PREFETCH_TILES = _env_int("MAX_PREFETCH_TILES", 100)
        self.SAVED_PLACES_PATH = Path(
            os.getenv(
                "SAVED_PLACES_PATH",
                str(Path.home() / ".eyeonthefire" / "saved_places.json"),
            )
        )
        self.MAP_RENDERER = os.getenv("MAP_RENDERER", "markers")
        self.MAX_MARKERS = _env_int("MAX_MARKERS", 1000)

        for key, value in overrides.items():
            if not hasattr(self, key):
                raise AttributeError(f"Unknown configuration key: {key}")
            setattr(self, key, value)

    @property
    def tile_url_template(self) -> str:
        """Tile URL as seen by clients of the proxy."""
        return self.API_BASE_URL.rstrip('/') + "/api/tiles/{z}/{x}/{y}.png"

    def summary(self) -> Dict[str, Any]:
        """Non-secret view of the configuration, for health checks."""
        return {
            "firms_key_configured": bool(self.NASA_FIRMS_API_KEY),
            "google_maps_key_configured": bool(self.GOOGLE_MAPS_API_KEY),
            "turnstile_configured": bool(self.TURNSTILE_SECRET_KEY),
            "rate_limit": f"{self.RATE_LIMIT_REQUESTS}/{self.RATE_LIMIT_WINDOW:g}s",
            "max_retries": self.MAX_RETRIES,
        }
