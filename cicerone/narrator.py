"""Automatic narration of POIs the user walks or drives up to."""

from typing import Callable, Iterable, Optional

from .audio import NarrationOutput
from .config import CONFIG
from .errors import SpeechUnsupported
from .gate import AudioGate
from .geo import poi_distance_km
from .logger import Logger
from .models import Location, NarrationEvent, NarrationState, POI


def format_elevation(elevation: float) -> str:
    """Whole-meter elevations are spoken without a trailing .0"""
    if float(elevation).is_integer():
        return str(int(elevation))
    return str(elevation)


def compose_utterance(poi: POI) -> str:
    text = f"{poi.name}, categoria {poi.category}. "
    if poi.elevation is not None:
        text += f"Altitudine {format_elevation(poi.elevation)} metri. "
    return text + (poi.description or "")


class ProximityNarrator:
    """Narrates a POI once per visit.

    The narrated POI is remembered until the user is no longer within the
    threshold of any POI; only then can the same POI be narrated again.
    Nearby POIs are taken in catalog order, the first one wins.
    """

    def __init__(self, output: NarrationOutput, gate: AudioGate,
                 threshold_km: Optional[float] = None,
                 logger: Optional[Logger] = None,
                 on_event: Optional[Callable[[NarrationEvent], None]] = None):
        self.output = output
        self.gate = gate
        self.threshold_km = threshold_km if threshold_km is not None else CONFIG["proximity_threshold_km"]
        self.logger = logger
        self.on_event = on_event
        self.state = NarrationState()

    def _log(self, message: str, data: Optional[dict] = None):
        if self.logger:
            self.logger.log(message, data)

    def nearby(self, position: Location, catalog: Iterable[POI]) -> list[POI]:
        return [p for p in catalog if poi_distance_km(position, p) <= self.threshold_km]

    def observe(self, position: Location, catalog: tuple[POI, ...]) -> Optional[NarrationEvent]:
        """Evaluate one position sample; returns the event emitted, if any"""
        if not catalog:
            return None

        nearby = self.nearby(position, catalog)
        if not nearby:
            if self.state.last_narrated_poi_id is not None:
                self._log("Left proximity zone", {"poi": self.state.last_narrated_poi_id})
                self.state.last_narrated_poi_id = None
            return None

        poi = nearby[0]
        if poi.id == self.state.last_narrated_poi_id:
            return None

        self.state.last_narrated_poi_id = poi.id
        if not self.gate.unlocked:
            self._log("Entered proximity zone, audio locked", {"poi": poi.id, "name": poi.name})
            return None

        self._log("Entered proximity zone", {"poi": poi.id, "name": poi.name})
        return self._emit(NarrationEvent(poi=poi, text=compose_utterance(poi)))

    def narrate_poi(self, poi: POI) -> NarrationEvent:
        """Narrate a POI the user picked, regardless of proximity history"""
        if not self.output.available:
            raise SpeechUnsupported("La sintesi vocale non è supportata su questo sistema")
        return self._emit(NarrationEvent(poi=poi, text=compose_utterance(poi), manual=True))

    def _emit(self, event: NarrationEvent) -> NarrationEvent:
        self._log("AUDIO", {"poi": event.poi.id, "manual": event.manual, "text": event.text})
        self.output.narrate(event.text)
        if self.on_event:
            self.on_event(event)
        return event
