import pytest

from eyeonthefire.config import Config

MODIS_CSV = (
    "latitude,longitude,brightness,scan,track,acq_date,acq_time,satellite,"
    "instrument,confidence,version,bright_t31,frp,daynight\n"
    "34.12,-118.45,320.5,1.0,1.0,2024-01-05,930,Terra,MODIS,80,6.1NRT,290.1,25.3,D\n"
    "40.5,-120.1,340.0,1.0,1.0,2024-01-05,1415,Aqua,MODIS,95,6.1NRT,295.0,130.2,D\n"
)


@pytest.fixture
def config(tmp_path):
    return Config(
        NASA_FIRMS_API_KEY="test-key",
        GOOGLE_MAPS_API_KEY="maps-key",
        GOOGLE_MAPS_BROWSER_KEY="browser-key",
        TURNSTILE_SECRET_KEY="",
        TURNSTILE_SITE_KEY="site-key",
        REQUIRE_TURNSTILE=False,
        TURNSTILE_TOKEN="",
        RETRY_BASE_DELAY=0.0,
        RETRY_JITTER=False,
        MAX_RETRIES=3,
        RATE_LIMIT_REQUESTS=1000,
        API_BASE_URL="http://proxy.test",
        CACHE_PREFIX="eyeonthefire",
        CACHE_VERSION="v1.0.0",
        PRECACHE_URLS=[],
        SAVED_PLACES_PATH=tmp_path / "saved_places.json",
        MAP_RENDERER="markers",
        MAX_MARKERS=1000,
    )


@pytest.fixture
def modis_csv():
    return MODIS_CSV
