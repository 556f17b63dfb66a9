#!/usr/bin/env python3
"""
Eye on the Fire: API proxy for live wildfire maps.

Forwards browser requests to NASA FIRMS, Google Maps and the tile provider,
keeping the API keys on the server and rate limiting each client.
"""
import logging
import re
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx
from fastapi import Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse, Response

from eyeonthefire import __version__
from eyeonthefire.config import USA_BOUNDS, Config
from eyeonthefire.errors import (
    BadRequestError,
    ConfigurationError,
    FireMapError,
    FirmsFormatError,
    ForbiddenError,
    RateLimitExceeded,
    UpstreamError,
    UpstreamUnavailable,
)
from eyeonthefire.firms import header_matches_schema, parse_firms_csv, to_records
from eyeonthefire.retry import fetch_with_retry
from eyeonthefire.security import RateLimiter, verify_turnstile_token
from eyeonthefire.utils import Viewport

# Set up logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

SOURCE_PATTERN = re.compile(r'^(MODIS|VIIRS|LANDSAT)_[A-Z0-9_]+$')
MAX_DAYS = 10
MAX_TILE_ZOOM = 19


def resolve_area(
    area: Optional[str],
    north: Optional[float] = None,
    south: Optional[float] = None,
    east: Optional[float] = None,
    west: Optional[float] = None,
) -> str:
    """
    Turn the request's area parameters into a FIRMS area string.

    Explicit north/south/east/west win over ``area``; ``area`` may be
    ``world``, ``usa`` or ``west,south,east,north``.
    """
    bounds = (north, south, east, west)
    if all(value is not None for value in bounds):
        viewport = Viewport(north=north, south=south, east=east, west=west)
    elif any(value is not None for value in bounds):
        raise BadRequestError("north, south, east and west must be given together")
    elif area in (None, '', 'world'):
        return 'world'
    elif area == 'usa':
        viewport = Viewport.from_bounds(USA_BOUNDS)
    else:
        try:
            west_, south_, east_, north_ = (float(part) for part in area.split(','))
        except ValueError:
            raise BadRequestError(
                "Invalid area. Expected 'world', 'usa' or 'west,south,east,north'"
            )
        viewport = Viewport(north=north_, south=south_, east=east_, west=west_)

    if not (-90 <= viewport.south < viewport.north <= 90):
        raise BadRequestError("Latitude bounds must satisfy -90 <= south < north <= 90")
    if not (-180 <= viewport.west <= 180 and -180 <= viewport.east <= 180):
        raise BadRequestError("Longitude bounds must lie within -180..180")
    return viewport.to_firms_area()


def parse_days(days: str) -> int:
    try:
        value = int(days)
    except (TypeError, ValueError):
        value = 0
    if not 1 <= value <= MAX_DAYS:
        raise BadRequestError(f"Invalid days parameter. Must be a number between 1-{MAX_DAYS}")
    return value


async def fetch_upstream(request: Request, url: str, description: str, **kwargs: Any) -> httpx.Response:
    """GET an upstream URL with retries, mapping failures to proxy errors."""
    config: Config = request.app.state.config
    client: httpx.AsyncClient = request.app.state.http_client

    try:
        return await fetch_with_retry(
            lambda: client.get(url, **kwargs),
            max_attempts=config.MAX_RETRIES,
            base_delay=config.RETRY_BASE_DELAY,
            jitter=config.RETRY_JITTER,
            description=description,
        )
    except UpstreamError as e:
        e.error = f"{description} error ({e.status_code})"
        raise
    except httpx.TransportError as e:
        raise UpstreamUnavailable(
            f"No response received from {description}: {e.__class__.__name__}",
            error=f"{description} timeout",
        )
    except httpx.HTTPError as e:
        raise FireMapError(f"{description} request failed: {e}", error=f"{description} error")


async def check_turnstile(request: Request) -> None:
    """Dependency: verify a Cloudflare Turnstile token when one is supplied."""
    config: Config = request.app.state.config
    token = request.query_params.get('cf-turnstile-token')
    if not token:
        if config.REQUIRE_TURNSTILE:
            raise ForbiddenError("Missing Turnstile token")
        return

    verified = await verify_turnstile_token(
        request.app.state.http_client,
        config.TURNSTILE_SECRET_KEY,
        token,
        config.TURNSTILE_VERIFY_URL,
        request.client.host if request.client else None,
    )
    if not verified:
        raise ForbiddenError("Invalid or expired Turnstile token")


def create_app(config: Optional[Config] = None, transport: Optional[httpx.AsyncBaseTransport] = None) -> FastAPI:
    """
    Build the proxy application.

    Args:
        config: Configuration, read from the environment when omitted
        transport: httpx transport for upstream calls (tests pass a mock)
    """
    config = config or Config()
    logging.getLogger().setLevel(config.LOG_LEVEL)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Handle application startup and shutdown events."""
        logger.info("Starting Eye on the Fire API proxy...")
        if not config.NASA_FIRMS_API_KEY:
            logger.error("NASA_FIRMS_API_KEY is not set; fire data requests will fail")
        logger.info(f"Turnstile: {'configured' if config.TURNSTILE_SECRET_KEY else 'not configured'}")

        yield  # Application runs here

        logger.info("Shutting down Eye on the Fire API proxy...")
        await app.state.http_client.aclose()
        logger.info("Shutdown complete")

    app = FastAPI(
        title="Eye on the Fire API",
        description="Proxy for NASA FIRMS fire data, geocoding and map tiles",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.http_client = httpx.AsyncClient(
        transport=transport,
        timeout=config.UPSTREAM_TIMEOUT,
        headers={"User-Agent": f"EyeOnTheFire/{__version__}"},
    )
    app.state.rate_limiter = RateLimiter(config.RATE_LIMIT_REQUESTS, config.RATE_LIMIT_WINDOW)

    # Configure CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ORIGINS,
        allow_methods=["GET", "OPTIONS"],
        allow_headers=["Content-Type"],
        max_age=600,
    )

    @app.middleware("http")
    async def rate_limit(request: Request, call_next):
        if request.url.path.startswith("/api/") and request.method != "OPTIONS":
            client_id = request.client.host if request.client else "unknown"
            allowed, retry_after = request.app.state.rate_limiter.hit(client_id)
            if not allowed:
                logger.warning(f"Rate limit exceeded for {client_id}")
                error = RateLimitExceeded(
                    f"Rate limit exceeded. Try again in {retry_after} seconds.",
                    retry_after=retry_after,
                )
                return JSONResponse(
                    error.to_dict(),
                    status_code=error.status_code,
                    headers={"Retry-After": str(retry_after)},
                )
        return await call_next(request)

    # Add security headers middleware
    @app.middleware("http")
    async def add_security_headers(request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Content-Security-Policy"] = config.CONTENT_SECURITY_POLICY
        return response

    @app.exception_handler(FireMapError)
    async def fire_map_error_handler(request: Request, exc: FireMapError):
        if exc.status_code >= 500:
            logger.error(f"{request.url.path}: {exc.error}: {exc.message}")
        else:
            logger.warning(f"{request.url.path}: {exc.error}: {exc.message}")
        return JSONResponse(exc.to_dict(), status_code=exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        details = "; ".join(
            f"{'.'.join(str(part) for part in err.get('loc', ()))}: {err.get('msg')}"
            for err in exc.errors()
        )
        error = BadRequestError(details or "Invalid request parameters")
        return JSONResponse(error.to_dict(), status_code=error.status_code)

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.error(f"Unexpected error in {request.url.path}: {exc}", exc_info=True)
        error = FireMapError("An unexpected error occurred")
        return JSONResponse(error.to_dict(), status_code=error.status_code)

    @app.get("/")
    async def root():
        return RedirectResponse(url="/docs")

    @app.get("/api/health")
    async def health_check():
        """Health check endpoint."""
        return {
            "status": "ok",
            "version": __version__,
            "config": config.summary(),
        }

    @app.get("/api-keys")
    async def public_keys() -> Dict[str, str]:
        """Keys that are safe to hand to the browser."""
        return {
            "googleMaps": config.GOOGLE_MAPS_BROWSER_KEY,
            "turnstileSiteKey": config.TURNSTILE_SITE_KEY,
        }

    @app.get("/api/nasa/firms/status", dependencies=[Depends(check_turnstile)])
    async def firms_status():
        """Report availability without calling NASA."""
        return {
            "status": "online" if config.NASA_FIRMS_API_KEY else "unconfigured",
            "source": "NASA FIRMS API",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    @app.get("/api/nasa/firms", dependencies=[Depends(check_turnstile)])
    async def nasa_firms(
        request: Request,
        source: str = "MODIS_NRT",
        days: str = "1",
        area: Optional[str] = None,
        north: Optional[float] = None,
        south: Optional[float] = None,
        east: Optional[float] = None,
        west: Optional[float] = None,
        response_format: str = Query("json", alias="format"),
    ):
        """
        Proxy the FIRMS area API.

        Returns the upstream CSV verbatim (``format=csv``) or a JSON array of
        normalized fire events (default).
        """
        source = source.upper()
        if not SOURCE_PATTERN.match(source):
            raise BadRequestError(f"Invalid source: {source}")
        day_count = parse_days(days)
        firms_area = resolve_area(area, north, south, east, west)
        if response_format not in ("json", "csv"):
            raise BadRequestError("Invalid format. Expected 'json' or 'csv'")

        if not config.NASA_FIRMS_API_KEY:
            logger.error("NASA_FIRMS_API_KEY is not set")
            raise ConfigurationError("Server configuration error: Missing NASA FIRMS API key")

        url = f"{config.FIRMS_BASE_URL}/{config.NASA_FIRMS_API_KEY}/{source}/{firms_area}/{day_count}"
        logger.info(f"Fetching FIRMS data: source={source} area={firms_area} days={day_count}")
        upstream = await fetch_upstream(request, url, "NASA FIRMS API", headers={"Accept": "text/csv"})

        csv_data = upstream.text
        if csv_data.lstrip().startswith("Invalid"):
            raise UpstreamError(400, csv_data.strip()[:200], error="NASA FIRMS API error (400)")

        if csv_data.strip() and not header_matches_schema(csv_data, source):
            logger.warning(f"FIRMS header for {source} differs from the pinned column layout")

        if response_format == "csv":
            return Response(content=csv_data, media_type="text/csv")

        try:
            events = parse_firms_csv(csv_data)
        except FirmsFormatError as e:
            raise UpstreamError(502, str(e), error="Unexpected response from NASA FIRMS API")

        logger.info(f"Returning {len(events)} fire detections")
        return JSONResponse(to_records(events))

    @app.get("/api/geocode")
    async def geocode(
        request: Request,
        lat: float = Query(..., ge=-90, le=90),
        lng: float = Query(..., ge=-180, le=180),
    ):
        """Reverse-geocode a point through Google with the server key."""
        if not config.GOOGLE_MAPS_API_KEY:
            logger.error("GOOGLE_MAPS_API_KEY is not set")
            raise ConfigurationError("Server configuration error: Missing Google Maps API key")

        upstream = await fetch_upstream(
            request,
            config.GEOCODE_URL,
            "Geocoding API",
            params={"latlng": f"{lat},{lng}", "key": config.GOOGLE_MAPS_API_KEY},
        )
        try:
            return JSONResponse(upstream.json())
        except ValueError:
            raise UpstreamError(502, "Geocoding API returned invalid JSON", error="Geocoding API error")

    @app.get("/api/tiles/{z}/{x}/{y}.png")
    async def map_tile(request: Request, z: int, x: int, y: int):
        """Forward one slippy-map tile."""
        if not 0 <= z <= MAX_TILE_ZOOM or not (0 <= x < 2 ** z and 0 <= y < 2 ** z):
            raise BadRequestError(f"Invalid tile coordinates: {z}/{x}/{y}")

        url = config.TILE_PROVIDER_URL.format(z=z, x=x, y=y)
        upstream = await fetch_upstream(request, url, "Tile provider")
        return Response(
            content=upstream.content,
            media_type=upstream.headers.get("Content-Type", "image/png"),
            headers={"Cache-Control": "public, max-age=86400"},
        )

    @app.get("/api/google-maps")
    async def google_maps_loader(request: Request, callback: str = "initMap"):
        """Serve the Maps JavaScript loader without exposing the key in page source."""
        key = config.GOOGLE_MAPS_BROWSER_KEY or config.GOOGLE_MAPS_API_KEY
        if not key:
            raise ConfigurationError("Server configuration error: Missing Google Maps API key")
        if not re.match(r'^[A-Za-z_$][\w$.]*$', callback):
            raise BadRequestError("Invalid callback name")

        upstream = await fetch_upstream(
            request,
            config.GOOGLE_MAPS_JS_URL,
            "Google Maps API",
            params={"key": key, "libraries": "visualization,drawing,places", "callback": callback},
        )
        return Response(content=upstream.content, media_type="application/javascript")

    return app


app = create_app()


def run() -> None:
    import uvicorn
    config: Config = app.state.config
    uvicorn.run(app, host=config.HOST, port=config.PORT)


if __name__ == "__main__":
    run()
