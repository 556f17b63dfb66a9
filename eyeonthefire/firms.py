"""
NASA FIRMS CSV/JSON translation.

Turns the CSV returned by the FIRMS area API (or JSON records with the same
field names) into normalized ``FireEvent`` objects. Bad rows are dropped, never
raised; only a payload without latitude/longitude columns is an error.
"""
import logging
import math
from io import StringIO
from typing import Any, Dict, Iterable, List, Optional, Sequence

import pandas as pd

from eyeonthefire.errors import FirmsFormatError
from eyeonthefire.models import FireEvent

logger = logging.getLogger(__name__)

# Column order of the FIRMS area API (v4) per instrument
MODIS_COLUMNS = (
    'latitude', 'longitude', 'brightness', 'scan', 'track', 'acq_date',
    'acq_time', 'satellite', 'instrument', 'confidence', 'version',
    'bright_t31', 'frp', 'daynight',
)
VIIRS_COLUMNS = (
    'latitude', 'longitude', 'bright_ti4', 'scan', 'track', 'acq_date',
    'acq_time', 'satellite', 'instrument', 'confidence', 'version',
    'bright_ti5', 'frp', 'daynight',
)

# Canonical field -> accepted header names, first match wins
FIELD_ALIASES = {
    'latitude': ('latitude', 'lat', 'y'),
    'longitude': ('longitude', 'lon', 'lng', 'long', 'x'),
    'brightness': ('brightness', 'bright_ti4', 'brightness_ti4'),
    'acq_date': ('acq_date', 'date'),
    'acq_time': ('acq_time', 'time'),
    'confidence': ('confidence', 'conf'),
    'frp': ('frp', 'fire_radiative_power'),
    'satellite': ('satellite',),
    'daynight': ('daynight', 'day_night'),
}

# VIIRS reports confidence as low / nominal / high
CONFIDENCE_LABELS = {
    'l': 30, 'low': 30,
    'n': 60, 'nominal': 60,
    'h': 90, 'high': 90,
}


def schema_for_source(source: str) -> Sequence[str]:
    """Pinned column order for a FIRMS source name."""
    if source.upper().startswith('MODIS'):
        return MODIS_COLUMNS
    return VIIRS_COLUMNS


def _parse_coordinate(value: Any, limit: float) -> Optional[float]:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number) or abs(number) > limit:
        return None
    return number


def _parse_confidence(value: Any) -> int:
    if value is None:
        return 0
    text = str(value).strip().lower()
    if text in CONFIDENCE_LABELS:
        return CONFIDENCE_LABELS[text]
    try:
        number = float(text)
    except ValueError:
        return 0
    if not math.isfinite(number):
        return 0
    return max(0, min(100, int(number)))


def _parse_float(value: Any, default: Optional[float]) -> Optional[float]:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    return number if math.isfinite(number) else default


def _parse_time(value: Any) -> str:
    text = str(value).strip() if value is not None else ''
    if text.isdigit():
        return text.zfill(4)
    return text


def _clean(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def record_to_event(record: Dict[str, Any]) -> Optional[FireEvent]:
    """
    Normalize one FIRMS record (canonical or aliased keys).

    Returns None when the coordinates are missing, non-numeric or out of range.
    """
    fields = {}
    for field, aliases in FIELD_ALIASES.items():
        for alias in aliases:
            if alias in record and record[alias] not in (None, ''):
                fields[field] = record[alias]
                break

    lat = _parse_coordinate(fields.get('latitude'), 90.0)
    lng = _parse_coordinate(fields.get('longitude'), 180.0)
    if lat is None or lng is None:
        return None

    return FireEvent(
        latitude=lat,
        longitude=lng,
        confidence=_parse_confidence(fields.get('confidence')),
        frp=max(0.0, _parse_float(fields.get('frp'), 0.0)),
        acq_date=_clean(fields.get('acq_date')) or '',
        acq_time=_parse_time(fields.get('acq_time')),
        brightness=_parse_float(fields.get('brightness'), None),
        satellite=_clean(fields.get('satellite')),
        daynight=_clean(fields.get('daynight')),
    )


def parse_header(line: str) -> List[str]:
    return [column.strip().lower() for column in line.split(',')]


def parse_firms_csv(csv_content: str) -> List[FireEvent]:
    """
    Parse FIRMS CSV text into fire events, preserving source order.

    Rows with the wrong column count or unusable coordinates are skipped.

    Raises:
        FirmsFormatError: if the header has no latitude/longitude columns
    """
    if not csv_content or not csv_content.strip():
        return []

    if csv_content.startswith('\ufeff'):
        csv_content = csv_content[1:]

    # Read without a header so the first row fixes the column count. Longer
    # rows are dropped by the parser; empty cells, including the padding of
    # shorter rows, are the only values read as NaN
    try:
        df = pd.read_csv(
            StringIO(csv_content),
            header=None,
            dtype=str,
            comment='#',
            skip_blank_lines=True,
            keep_default_na=False,
            na_values=[''],
            on_bad_lines='skip',
        )
    except pd.errors.EmptyDataError:
        return []

    if df.empty:
        return []

    header = [str(column).strip().lower() for column in df.iloc[0]]
    if not any(a in header for a in FIELD_ALIASES['latitude']) or \
            not any(a in header for a in FIELD_ALIASES['longitude']):
        raise FirmsFormatError(f"Not FIRMS CSV data: {','.join(header)[:100]}")

    events = []
    skipped = 0
    for values in df.iloc[1:].itertuples(index=False, name=None):
        if pd.isna(values[-1]):
            skipped += 1
            continue
        record = {name: None if pd.isna(value) else value for name, value in zip(header, values)}
        event = record_to_event(record)
        if event is None:
            skipped += 1
            continue
        events.append(event)

    if skipped:
        logger.debug(f"Skipped {skipped} malformed FIRMS rows")
    return events


def parse_firms_records(records: Iterable[Dict[str, Any]]) -> List[FireEvent]:
    """Same normalization for FIRMS-shaped JSON records."""
    events = []
    for record in records:
        if not isinstance(record, dict):
            continue
        lowered = {str(k).strip().lower(): v for k, v in record.items()}
        event = record_to_event(lowered)
        if event is not None:
            events.append(event)
    return events


def header_matches_schema(csv_content: str, source: str) -> bool:
    """Whether the CSV header follows the pinned column order for ``source``."""
    for line in csv_content.lstrip('\ufeff').split('\n'):
        if line.strip() and not line.lstrip().startswith('#'):
            return tuple(parse_header(line)) == tuple(schema_for_source(source))
    return False


def sort_by_frp(events: Iterable[FireEvent]) -> List[FireEvent]:
    """Strongest fires first."""
    return sorted(events, key=lambda event: event.frp, reverse=True)


def to_records(events: Iterable[FireEvent]) -> List[Dict[str, Any]]:
    return [event.model_dump(exclude_none=True) for event in events]
