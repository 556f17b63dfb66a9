"""
Saved locations, persisted to a local JSON file.

The file is read once at startup and rewritten on every add/remove, under a
file lock and through a temporary file so a crash never leaves it truncated.
"""
import json
import logging
import uuid
from pathlib import Path
from typing import List, Optional, Union

import filelock
from pydantic import ValidationError

from eyeonthefire.models import SavedLocation

logger = logging.getLogger(__name__)

LOCK_TIMEOUT = 5  # seconds


class LocationStore:
    """Named map locations kept across sessions."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self.lock_file = self.path.with_suffix('.lock')
        self._locations: List[SavedLocation] = []
        self.load()

    @property
    def locations(self) -> List[SavedLocation]:
        return list(self._locations)

    def load(self) -> List[SavedLocation]:
        """Read the stored locations; a corrupt file is discarded."""
        if not self.path.exists():
            self._locations = []
            return self.locations

        try:
            content = self.path.read_text(encoding='utf-8').strip()
            data = json.loads(content) if content else []
            if not isinstance(data, list):
                raise ValueError("stored locations are not a list")
            self._locations = [SavedLocation(**item) for item in data]
        except (OSError, UnicodeDecodeError, ValueError, TypeError, ValidationError) as e:
            logger.warning(f"Discarding unreadable saved locations {self.path}: {e}")
            self._locations = []
            try:
                self.path.unlink()
            except OSError as unlink_error:
                logger.warning(f"Failed to remove {self.path}: {unlink_error}")

        logger.info(f"Loaded {len(self._locations)} saved locations")
        return self.locations

    def add(self, name: Optional[str], lat: float, lon: float) -> SavedLocation:
        location = SavedLocation(
            id=uuid.uuid4().hex,
            name=(name or '').strip() or 'Unnamed Location',
            lat=float(lat),
            lon=float(lon),
        )
        self._locations.append(location)
        self._save()
        logger.info(f"Added saved location {location.name} ({location.lat}, {location.lon})")
        return location

    def remove(self, location_id: str) -> bool:
        remaining = [loc for loc in self._locations if loc.id != location_id]
        if len(remaining) == len(self._locations):
            return False
        self._locations = remaining
        self._save()
        logger.info(f"Removed saved location {location_id}")
        return True

    def get(self, location_id: str) -> Optional[SavedLocation]:
        return next((loc for loc in self._locations if loc.id == location_id), None)

    def _save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        temp_file = self.path.with_suffix('.tmp')
        payload = [loc.model_dump() for loc in self._locations]

        with filelock.FileLock(str(self.lock_file), timeout=LOCK_TIMEOUT):
            try:
                with open(temp_file, 'w', encoding='utf-8') as f:
                    json.dump(payload, f, ensure_ascii=False, indent=2)
                # Atomic on POSIX, best effort on Windows
                temp_file.replace(self.path)
            except OSError:
                if temp_file.exists():
                    temp_file.unlink()
                raise
