"""Cicerone - Location-aware tourist guide with spoken POI descriptions."""

from .config import CONFIG
from .models import Location, POI, TrackingMode, FilterCriteria, NarrationState, NarrationEvent, GuideState
from .errors import (
    GuideError,
    CatalogLoadFailure,
    GeolocationUnavailable,
    SpeechUnsupported,
    AudioUnlockFailure,
)
from .logger import Logger
from .geo import haversine_distance, distance_km
from .catalog import POICatalog, SupabaseSource, FileSource, parse_row
from .filters import apply_filters
from .gps import Geolocation, WatchOptions, TermuxLocation, MapClickLocation, GPSRecorder, TracePlayback
from .tracker import PositionTracker
from .audio import Speech, Tone, NarrationOutput
from .gate import AudioGate
from .narrator import ProximityNarrator, compose_utterance
from .app import Guide

__all__ = [
    "CONFIG",
    "Location",
    "POI",
    "TrackingMode",
    "FilterCriteria",
    "NarrationState",
    "NarrationEvent",
    "GuideState",
    "GuideError",
    "CatalogLoadFailure",
    "GeolocationUnavailable",
    "SpeechUnsupported",
    "AudioUnlockFailure",
    "Logger",
    "haversine_distance",
    "distance_km",
    "POICatalog",
    "SupabaseSource",
    "FileSource",
    "parse_row",
    "apply_filters",
    "Geolocation",
    "WatchOptions",
    "TermuxLocation",
    "MapClickLocation",
    "GPSRecorder",
    "TracePlayback",
    "PositionTracker",
    "Speech",
    "Tone",
    "NarrationOutput",
    "AudioGate",
    "ProximityNarrator",
    "compose_utterance",
    "Guide",
]
