import math
from typing import Dict, Iterable, List, Optional, Tuple

from pydantic import BaseModel

EARTH_RADIUS_KM = 6371.0

# Web Mercator cannot represent the poles
MAX_MERCATOR_LAT = 85.05112878


class Viewport(BaseModel):
    """The geographic box currently visible on the map, in degrees."""
    north: float
    south: float
    east: float
    west: float

    @classmethod
    def from_bounds(cls, bounds: Dict[str, float]) -> 'Viewport':
        return cls(
            north=float(bounds['north']),
            south=float(bounds['south']),
            east=float(bounds['east']),
            west=float(bounds['west']),
        )

    def key(self) -> str:
        """Exact string form used as a cache key; equal only for identical boxes."""
        return f"{self.north},{self.south},{self.east},{self.west}"

    def contains(self, lat: float, lng: float) -> bool:
        return self.south <= lat <= self.north and self.west <= lng <= self.east

    def intersects(self, other: 'Viewport') -> bool:
        return not (
            self.north < other.south
            or self.south > other.north
            or self.east < other.west
            or self.west > other.east
        )

    def to_firms_area(self) -> str:
        """FIRMS area coordinates: west,south,east,north."""
        return f"{self.west:g},{self.south:g},{self.east:g},{self.north:g}"


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance between two points in kilometers."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lng2 - lng1)

    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(a))


def calculate_bounding_box(lat: float, lng: float, radius_km: float = 50.0) -> Viewport:
    """
    Calculate a bounding box around a point given a radius in kilometers.

    Args:
        lat: Center latitude in decimal degrees
        lng: Center longitude in decimal degrees
        radius_km: Radius in kilometers (default: 50km)

    Returns:
        Viewport clamped to valid latitude/longitude ranges
    """
    lat_rad = math.radians(lat)
    angular_distance = radius_km / EARTH_RADIUS_KM

    d_lat = math.degrees(angular_distance)
    # Longitude degrees shrink with latitude
    cos_lat = max(math.cos(lat_rad), 1e-12)
    d_lng = math.degrees(angular_distance / cos_lat)

    return Viewport(
        north=min(lat + d_lat, 90.0),
        south=max(lat - d_lat, -90.0),
        east=min(lng + d_lng, 180.0),
        west=max(lng - d_lng, -180.0),
    )


def lat_lng_to_tile(lat: float, lng: float, zoom: int) -> Tuple[int, int]:
    """Slippy-map tile indices (x, y) containing a point at a zoom level."""
    lat = max(min(lat, MAX_MERCATOR_LAT), -MAX_MERCATOR_LAT)
    n = 2 ** zoom
    x = int((lng + 180.0) / 360.0 * n)
    lat_rad = math.radians(lat)
    y = int((1.0 - math.asinh(math.tan(lat_rad)) / math.pi) / 2.0 * n)
    # The east/south edges land exactly on n
    return min(max(x, 0), n - 1), min(max(y, 0), n - 1)


def tiles_for_viewport(viewport: Viewport, zoom: int, limit: Optional[int] = None) -> List[Tuple[int, int, int]]:
    """List (z, x, y) tiles covering a viewport, north-west first."""
    x_min, y_min = lat_lng_to_tile(viewport.north, viewport.west, zoom)
    x_max, y_max = lat_lng_to_tile(viewport.south, viewport.east, zoom)

    tiles = []
    for x in range(x_min, x_max + 1):
        for y in range(y_min, y_max + 1):
            tiles.append((zoom, x, y))
            if limit is not None and len(tiles) >= limit:
                return tiles
    return tiles


def in_any_bounds(lat: float, lng: float, bounds: Iterable[Dict[str, float]]) -> bool:
    return any(
        b['south'] <= lat <= b['north'] and b['west'] <= lng <= b['east']
        for b in bounds
    )
