"""
Viewport data cache and merger.

Remembers which exact viewports were already loaded, guards against duplicate
in-flight loads of the same viewport and keeps one deduplicated list of every
fire event seen so far.
"""
import logging
import math
from collections import Counter
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Set

from eyeonthefire.config import ALASKA_BOUNDS, HAWAII_BOUNDS, USA_BOUNDS
from eyeonthefire.firms import sort_by_frp
from eyeonthefire.models import FilterSettings, FireEvent
from eyeonthefire.utils import Viewport, in_any_bounds

logger = logging.getLogger(__name__)

USA_REGIONS = (USA_BOUNDS, ALASKA_BOUNDS, HAWAII_BOUNDS)

Fetcher = Callable[[Viewport], Awaitable[List[FireEvent]]]


def filter_to_viewport(events: Iterable[FireEvent], viewport: Viewport) -> List[FireEvent]:
    """Events whose position lies inside the viewport (bounds inclusive)."""
    return [e for e in events if viewport.contains(e.latitude, e.longitude)]


def filter_to_usa(events: Iterable[FireEvent]) -> List[FireEvent]:
    """Events in the contiguous US, Alaska or Hawaii."""
    return [e for e in events if in_any_bounds(e.latitude, e.longitude, USA_REGIONS)]


def apply_filters(events: Iterable[FireEvent], settings: FilterSettings) -> List[FireEvent]:
    """Events passing the confidence and FRP thresholds, strongest first."""
    return sort_by_frp(
        e for e in events
        if e.confidence >= settings.min_confidence and e.frp >= settings.min_frp
    )


def page_count(total: int, per_page: int) -> int:
    return max(1, math.ceil(total / per_page))


def paginate(events: List[FireEvent], page: int, per_page: int) -> List[FireEvent]:
    """One page of events; pages are 1-based and clamped to the valid range."""
    page = min(max(page, 1), page_count(len(events), per_page))
    start = (page - 1) * per_page
    return events[start:start + per_page]


class ViewportDataCache:
    """Accumulated fire data plus per-viewport load bookkeeping."""

    def __init__(self):
        self.events: List[FireEvent] = []
        self.region_cache: Dict[str, List[FireEvent]] = {}
        self.loading: Set[str] = set()

    def is_loading(self, viewport: Viewport) -> bool:
        return viewport.key() in self.loading

    def has_region(self, viewport: Viewport) -> bool:
        return viewport.key() in self.region_cache

    async def load(self, viewport: Viewport, fetch: Fetcher) -> Optional[List[FireEvent]]:
        """
        Load data for a viewport once.

        Returns None without fetching when the same viewport is already being
        loaded; returns the cached events when it was loaded before. Errors
        from ``fetch`` propagate after the viewport is released.
        """
        key = viewport.key()
        # Check and claim before the first await so concurrent calls see it
        if key in self.loading:
            logger.debug(f"Viewport {key} already loading, skipping")
            return None
        if key in self.region_cache:
            logger.debug(f"Using cached data for viewport {key}")
            return self.region_cache[key]

        self.loading.add(key)
        try:
            logger.info(f"Fetching fire data for viewport {key}")
            fetched = await fetch(viewport)
            in_view = filter_to_viewport(fetched, viewport)
            logger.info(f"{len(in_view)} of {len(fetched)} points are in viewport {key}")
            self.region_cache[key] = in_view
            self.merge(in_view)
            return in_view
        finally:
            self.loading.discard(key)

    def merge(self, new_events: Iterable[FireEvent]) -> List[FireEvent]:
        """Append events whose identity is not yet known; return those appended."""
        seen = {event.identity for event in self.events}
        added = []
        for event in new_events:
            identity = event.identity
            if identity in seen:
                continue
            seen.add(identity)
            added.append(event)

        self.events.extend(added)
        logger.debug(f"Added {len(added)} new unique fire points")
        return added

    def clear(self) -> None:
        self.events = []
        self.region_cache.clear()


CONFIDENCE_BUCKETS = (('high', 80), ('medium', 60), ('low', 30), ('very_low', 0))
FRP_BUCKETS = (('extreme', 50), ('high', 20), ('medium', 10))


def _bucket_counts(names: Iterable[str], total: int) -> Dict[str, Dict[str, int]]:
    counts = Counter(names)
    return {
        name: {'count': counts[name], 'percent': round(counts[name] / total * 100) if total else 0}
        for name in counts
    }


def _frp_bucket(frp: float) -> str:
    for name, floor in FRP_BUCKETS:
        if frp > floor:
            return name
    return 'low'


def fire_statistics(events: List[FireEvent], top_dates: int = 5) -> Dict[str, Any]:
    """
    Summary counts for a set of fires.

    Confidence buckets are >=80, 60-79, 30-59 and <30; FRP buckets are
    >50, >20, >10 MW and the rest. Dates are the busiest acquisition days.
    """
    total = len(events)
    confidence = _bucket_counts(
        (next(name for name, floor in CONFIDENCE_BUCKETS if e.confidence >= floor) for e in events),
        total,
    )
    frp = _bucket_counts((_frp_bucket(e.frp) for e in events), total)
    dates = Counter(e.acq_date or 'Unknown' for e in events)

    return {
        'total': total,
        'confidence': {name: confidence.get(name, {'count': 0, 'percent': 0}) for name, _ in CONFIDENCE_BUCKETS},
        'frp': {name: frp.get(name, {'count': 0, 'percent': 0}) for name in ('extreme', 'high', 'medium', 'low')},
        'top_dates': dates.most_common(top_dates),
    }
