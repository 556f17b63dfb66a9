import folium
import pytest

from eyeonthefire.config import Config
from eyeonthefire.models import FireEvent
from eyeonthefire.render import (
    HeatmapRenderer,
    MarkerRenderer,
    fire_intensity,
    format_acquisition,
    get_renderer,
    popup_html,
)

EVENTS = [
    FireEvent(latitude=34.1, longitude=-118.3, confidence=90, frp=150.0, acq_date="2024-01-05", acq_time="0930"),
    FireEvent(latitude=39.8, longitude=-121.6, confidence=40, frp=12.0, acq_date="2024-01-05", acq_time="1015"),
]


@pytest.mark.parametrize("frp, confidence, expected", [
    (150.0, 10, "HIGH"),
    (1.0, 90, "HIGH"),
    (60.0, 10, "MEDIUM"),
    (1.0, 72, "MEDIUM"),
    (10.0, 40, "LOW"),
])
def test_fire_intensity(frp, confidence, expected):
    assert fire_intensity(FireEvent(latitude=0, longitude=0, frp=frp, confidence=confidence)) == expected


def test_format_acquisition():
    assert format_acquisition("2024-01-05", "930") == "January 5, 2024 at 09:30"
    assert format_acquisition("2024-12-31") == "December 31, 2024"
    assert format_acquisition("") == "Unknown date"
    assert format_acquisition("yesterday") == "yesterday"


def test_popup_html():
    html = popup_html(EVENTS[0])
    assert "34.1000, -118.3000" in html
    assert "150.0 MW" in html
    assert "Brightness" not in html


def test_marker_renderer_saves_html(tmp_path):
    out = tmp_path / "markers.html"
    fire_map = MarkerRenderer().render(EVENTS, out_path=str(out))

    assert isinstance(fire_map, folium.Map)
    assert "circleMarker" in out.read_text()


def test_heatmap_renderer(tmp_path):
    out = tmp_path / "heat.html"
    HeatmapRenderer(radius=20).render(EVENTS, center=(37.0, -120.0), zoom=6, out_path=str(out))
    assert "heatLayer" in out.read_text()


def test_empty_map_renders():
    assert isinstance(HeatmapRenderer().render([]), folium.Map)


def test_get_renderer():
    assert isinstance(get_renderer("Markers"), MarkerRenderer)
    assert isinstance(get_renderer("heatmap"), HeatmapRenderer)
    with pytest.raises(ValueError):
        get_renderer("globe")


def test_config_overrides(tmp_path):
    config = Config(MAX_RETRIES=5, API_BASE_URL="https://fires.example/")
    assert config.MAX_RETRIES == 5
    assert config.tile_url_template == "https://fires.example/api/tiles/{z}/{x}/{y}.png"
    assert "NASA_FIRMS_API_KEY" not in config.summary()
    with pytest.raises(AttributeError):
        Config(NOT_A_SETTING=1)
