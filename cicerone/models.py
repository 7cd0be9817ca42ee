"""Data classes for Cicerone."""

from dataclasses import dataclass, asdict, field
from enum import Enum
from typing import Optional

from .config import CONFIG


@dataclass
class Location:
    lat: float
    lon: float
    accuracy: Optional[float] = None
    timestamp: Optional[float] = None

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: dict) -> "Location":
        return cls(**d)


@dataclass(frozen=True)
class POI:
    """A point of interest, immutable once loaded"""
    id: int
    name: str
    description: str
    category: str
    lat: float
    lon: float
    elevation: Optional[float] = None
    image_url: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)


class TrackingMode(Enum):
    WALKING = "walking"
    DRIVING = "driving"

    @property
    def policy(self) -> dict:
        return CONFIG["tracking_modes"][self.value]


@dataclass
class FilterCriteria:
    category: str = CONFIG["all_categories"]
    search_text: str = ""
    radius_km: float = CONFIG["default_radius_km"]  # 0 = unlimited


@dataclass
class NarrationState:
    """Which POI has been narrated during the current proximity dwell"""
    last_narrated_poi_id: Optional[int] = None


@dataclass
class NarrationEvent:
    poi: POI
    text: str
    manual: bool = False


@dataclass
class GuideState:
    """Session state shared by the guide components"""
    mode: TrackingMode = TrackingMode.WALKING
    position: Optional[Location] = None
    catalog: tuple[POI, ...] = ()
    categories: list[str] = field(default_factory=lambda: [CONFIG["all_categories"]])
    criteria: FilterCriteria = field(default_factory=FilterCriteria)
    filtered: list[POI] = field(default_factory=list)
    status: str = "Caricamento..."
    follow: bool = CONFIG["follow_mode"]
    narrating: Optional[str] = None  # indicator text while speech is active
    geolocation_available: bool = False
