"""
Map rendering with folium.

Both renderers take the same filtered event list; which one is used is a
configuration choice (``MAP_RENDERER``), not a different code path.
"""
import logging
from typing import Dict, List, Optional, Sequence

import folium
import folium.plugins

from eyeonthefire.config import MAP_DEFAULTS
from eyeonthefire.models import FireEvent

logger = logging.getLogger(__name__)

# frp (MW) / confidence thresholds per intensity class
FIRE_INTENSITY = {
    'HIGH': {'frp': 100, 'confidence': 85, 'color': '#d32f2f', 'radius': 8},
    'MEDIUM': {'frp': 50, 'confidence': 70, 'color': '#f57c00', 'radius': 6},
    'LOW': {'frp': 0, 'confidence': 50, 'color': '#fbc02d', 'radius': 4},
}

MONTHS = [
    'January', 'February', 'March', 'April', 'May', 'June',
    'July', 'August', 'September', 'October', 'November', 'December',
]


def fire_intensity(event: FireEvent) -> str:
    """Classify a fire as HIGH, MEDIUM or LOW."""
    for level in ('HIGH', 'MEDIUM'):
        threshold = FIRE_INTENSITY[level]
        if event.frp >= threshold['frp'] or event.confidence >= threshold['confidence']:
            return level
    return 'LOW'


def format_acquisition(acq_date: str, acq_time: str = '') -> str:
    """'2024-01-05', '0930' -> 'January 5, 2024 at 09:30'."""
    if not acq_date:
        return 'Unknown date'
    parts = acq_date.split('-')
    if len(parts) != 3:
        return acq_date
    try:
        year, month, day = parts[0], int(parts[1]), int(parts[2])
        formatted = f"{MONTHS[month - 1]} {day}, {year}"
    except (ValueError, IndexError):
        return acq_date
    if acq_time:
        padded = acq_time.zfill(4)
        formatted += f" at {padded[:2]}:{padded[2:4]}"
    return formatted


def popup_html(event: FireEvent) -> str:
    html = f"""
    <div style="width: 200px;">
        <h4>Fire Detection</h4>
        <p><b>Location:</b> {event.latitude:.4f}, {event.longitude:.4f}</p>
        <p><b>Detected:</b> {format_acquisition(event.acq_date, event.acq_time)}</p>
        <p><b>Confidence:</b> {event.confidence}%</p>
        <p><b>Fire Power:</b> {event.frp:.1f} MW</p>
    """
    if event.brightness is not None:
        html += f"<p><b>Brightness:</b> {event.brightness:.1f}K</p>"
    return html + "</div>"


class MapRenderer:
    """Base renderer: a folium map with the shared base layer."""

    name = 'base'

    def __init__(self, tiles: str = 'OpenStreetMap', attr: Optional[str] = None):
        self.tiles = tiles
        self.attr = attr

    def create_map(self, center: Optional[Sequence[float]] = None, zoom: Optional[int] = None) -> folium.Map:
        return folium.Map(
            location=list(center or MAP_DEFAULTS['center']),
            zoom_start=zoom or MAP_DEFAULTS['zoom'],
            min_zoom=MAP_DEFAULTS['min_zoom'],
            max_zoom=MAP_DEFAULTS['max_zoom'],
            tiles=self.tiles,
            attr=self.attr,
        )

    def add_layer(self, fire_map: folium.Map, events: List[FireEvent]) -> None:
        raise NotImplementedError

    def render(
        self,
        events: List[FireEvent],
        center: Optional[Sequence[float]] = None,
        zoom: Optional[int] = None,
        out_path: Optional[str] = None,
    ) -> folium.Map:
        """Build the map, optionally saving it as HTML."""
        fire_map = self.create_map(center, zoom)
        if events:
            self.add_layer(fire_map, events)
        if out_path:
            fire_map.save(out_path)
            logger.info(f"Saved {self.name} map with {len(events)} fires to {out_path}")
        return fire_map


class MarkerRenderer(MapRenderer):
    """One circle marker per fire, colored by intensity."""

    name = 'markers'

    def add_layer(self, fire_map: folium.Map, events: List[FireEvent]) -> None:
        group = folium.FeatureGroup(name='Active fires')
        for event in events:
            style = FIRE_INTENSITY[fire_intensity(event)]
            folium.CircleMarker(
                location=[event.latitude, event.longitude],
                radius=style['radius'],
                color=style['color'],
                fill=True,
                fill_color=style['color'],
                fill_opacity=0.7,
                popup=folium.Popup(popup_html(event), max_width=300),
            ).add_to(group)
        group.add_to(fire_map)


class HeatmapRenderer(MapRenderer):
    """A heat layer weighted by fire radiative power."""

    name = 'heatmap'

    def __init__(self, radius: int = 15, **kwargs):
        super().__init__(**kwargs)
        self.radius = radius

    def add_layer(self, fire_map: folium.Map, events: List[FireEvent]) -> None:
        strongest = max(event.frp for event in events) or 1.0
        points = [
            [event.latitude, event.longitude, max(event.frp / strongest, 0.05)]
            for event in events
        ]
        folium.plugins.HeatMap(points, name='Fire intensity', radius=self.radius).add_to(fire_map)


RENDERERS: Dict[str, type] = {
    MarkerRenderer.name: MarkerRenderer,
    HeatmapRenderer.name: HeatmapRenderer,
}


def get_renderer(name: str, **kwargs) -> MapRenderer:
    try:
        return RENDERERS[name.lower()](**kwargs)
    except KeyError:
        raise ValueError(f"Unknown map renderer: {name}. Choose from {sorted(RENDERERS)}")
