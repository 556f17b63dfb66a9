"""Pydantic models shared by the proxy and the client."""
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field


class FireEvent(BaseModel):
    """A single satellite fire detection."""
    latitude: float
    longitude: float
    confidence: int = Field(0, ge=0, le=100, description="Detection confidence (0-100)")
    frp: float = Field(0.0, description="Fire Radiative Power in MW")
    acq_date: str = Field("", description="Acquisition date, YYYY-MM-DD")
    acq_time: str = Field("", description="Acquisition time, HHMM UTC")
    brightness: Optional[float] = None
    satellite: Optional[str] = None
    daynight: Optional[str] = None

    @property
    def identity(self) -> str:
        """Deduplication key: position plus acquisition date and time."""
        return f"{self.latitude},{self.longitude},{self.acq_date},{self.acq_time}"


class SavedLocation(BaseModel):
    id: str
    name: str
    lat: float
    lon: float
    created: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


class FilterSettings(BaseModel):
    """User-adjustable view settings."""
    source: str = "MODIS_NRT"
    days: int = Field(1, ge=1, le=10)
    min_confidence: int = Field(0, ge=0, le=100)
    min_frp: float = Field(0.0, ge=0)
    max_markers: int = Field(1000, ge=1)
    view_mode: str = Field("usa", pattern="^(usa|world)$")
    lazy_loading: bool = True


class StatusMessage(BaseModel):
    """The last user-visible status line."""
    level: str = "info"
    text: str = ""
    timestamp: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
