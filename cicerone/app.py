"""Main Cicerone application."""

import asyncio
import time
from typing import Optional

from .audio import NarrationOutput, Speech, Tone
from .catalog import POICatalog
from .config import CONFIG
from .errors import CatalogLoadFailure, SpeechUnsupported
from .filters import apply_filters
from .gate import AudioGate
from .gps import GPSRecorder, Geolocation
from .logger import Logger
from .models import FilterCriteria, GuideState, Location, NarrationEvent, TrackingMode
from .narrator import ProximityNarrator
from .tracker import PositionTracker


class Guide:
    """Ties tracking, catalog, filtering and narration around one GuideState"""

    def __init__(self, catalog: POICatalog, geolocation: Geolocation, loop,
                 speech: Optional[Speech] = None, tone: Optional[Tone] = None,
                 logger: Optional[Logger] = None,
                 mode: TrackingMode = TrackingMode.WALKING,
                 criteria: Optional[FilterCriteria] = None,
                 follow: bool = CONFIG["follow_mode"],
                 view=None):
        self.loop = loop
        self.catalog = catalog
        self.logger = logger or Logger(echo=False)
        self.view = view
        self.state = GuideState(mode=mode, criteria=criteria or FilterCriteria(), follow=follow)

        self.output = NarrationOutput(speech, tone, loop, logger=self.logger,
                                      on_indicator=self._on_indicator)
        self.gate = AudioGate(speech, tone, logger=self.logger)
        self.narrator = ProximityNarrator(self.output, self.gate, logger=self.logger,
                                          on_event=self._on_narration)
        self.tracker = PositionTracker(geolocation, self.on_position, self.on_status,
                                       loop=loop, logger=self.logger)
        self.geolocation = geolocation
        self.events: list[NarrationEvent] = []

        self._stopping = False
        self._last_log_update = 0.0

    # -- state publishing -------------------------------------------------

    def get_state(self) -> dict:
        """Current state as dict for the view and the log"""
        state = {
            "mode": self.state.mode.value,
            "status": self.state.status,
            "categories": self.state.categories,
            "criteria": {
                "category": self.state.criteria.category,
                "search_text": self.state.criteria.search_text,
                "radius_km": self.state.criteria.radius_km,
            },
            "follow": self.state.follow,
            "narrating": self.state.narrating,
            "audio_unlocked": self.gate.unlocked,
            "geolocation_available": self.state.geolocation_available,
            "catalog_size": len(self.state.catalog),
            "pois": [p.to_dict() for p in self.state.filtered],
            "last_narrated_poi_id": self.narrator.state.last_narrated_poi_id,
        }
        if self.state.position:
            state["location"] = {
                "lat": self.state.position.lat,
                "lon": self.state.position.lon,
                "accuracy": self.state.position.accuracy,
            }
        return state

    def _publish(self, recenter: bool = False):
        if self.view is None:
            return
        state = self.get_state()
        state["recenter"] = recenter and self.state.follow and self.state.position is not None
        self.view.publish(state)

    def _on_indicator(self, text: Optional[str]):
        self.state.narrating = text
        self._publish()

    def _on_narration(self, event: NarrationEvent):
        self.events.append(event)

    # -- inputs -----------------------------------------------------------

    def _refilter(self):
        filtered = apply_filters(self.state.catalog, self.state.criteria, self.state.position)
        if filtered is not None:
            self.state.filtered = filtered

    def on_position(self, location: Location):
        self.state.position = location
        self._refilter()
        self.narrator.observe(location, self.state.catalog)
        self._publish(recenter=True)

    def on_status(self, text: str, available: bool):
        self.state.status = text
        self.state.geolocation_available = available
        self._publish()

    async def load_catalog(self) -> bool:
        """Load (or reload) the POI catalog; the old one is kept on failure"""
        try:
            pois = await self.catalog.load_async()
        except CatalogLoadFailure as e:
            self.state.status = f"Errore caricamento POI: {e.message}"
            self._publish()
            return False

        self.state.catalog = pois
        self.state.categories = list(self.catalog.categories)
        if self.state.position is None:
            self.state.filtered = list(pois)
        else:
            self._refilter()
            self.narrator.observe(self.state.position, pois)
        self.state.status = f"Caricati {len(pois)} punti"
        self._publish()
        return True

    def set_mode(self, mode: TrackingMode):
        if mode == self.state.mode and self.tracker.running:
            return
        self.state.mode = mode
        self.tracker.start(mode)
        self._publish()

    def set_criteria(self, category: Optional[str] = None, search_text: Optional[str] = None,
                     radius_km: Optional[float] = None):
        if radius_km is not None:
            radius_km = float(radius_km)
        criteria = self.state.criteria
        if category is not None:
            criteria.category = category
        if search_text is not None:
            criteria.search_text = search_text
        if radius_km is not None:
            criteria.radius_km = radius_km
        self._refilter()
        self.logger.log("Filters changed", {"category": criteria.category,
                                            "search_text": criteria.search_text,
                                            "radius_km": criteria.radius_km,
                                            "visible": len(self.state.filtered)})
        self._publish()

    def set_follow(self, enabled: bool):
        self.state.follow = enabled
        self._publish(recenter=enabled)

    def interact(self, kind: str = "pointer", confirm: bool = True) -> bool:
        unlocked = self.gate.interact(kind, confirm=confirm)
        self._publish()
        return unlocked

    def select_poi(self, poi_id: int) -> Optional[NarrationEvent]:
        """Manual "listen" on a POI; the tap itself counts as an interaction.

        The narration stands in for the unlock confirmation, which it would
        cut off anyway.
        """
        poi = self.catalog.get(poi_id)
        self.interact("pointer", confirm=poi is None)
        if poi is None:
            self.logger.log("Unknown POI selected", {"poi": poi_id})
            return None
        try:
            return self.narrator.narrate_poi(poi)
        except SpeechUnsupported as e:
            self.state.status = e.message
            self._publish()
            return None

    def stop_speech(self):
        self.output.stop()

    def handle_command(self, msg: dict):
        """Apply a command coming from the map view or the console.

        Browser payloads are not trusted: a malformed command is logged and
        dropped, the guide state is left as it was.
        """
        try:
            self._apply_command(msg.get("type"), msg.get("data") or {})
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            self.logger.warning("Bad command", {"command": msg, "reason": repr(e)})

    def _apply_command(self, msg_type, data: dict):
        if msg_type == "interact":
            self.interact(data.get("kind", "pointer"))
        elif msg_type == "select":
            self.select_poi(int(data["id"]))
        elif msg_type == "stop":
            self.interact("pointer", confirm=False)
            self.stop_speech()
        elif msg_type == "criteria":
            self.set_criteria(
                category=data.get("category"),
                search_text=data.get("search_text"),
                radius_km=data.get("radius_km"),
            )
        elif msg_type == "mode":
            self.set_mode(TrackingMode(data["mode"]))
        elif msg_type == "follow":
            self.set_follow(bool(data.get("enabled", True)))
        elif msg_type == "reload":
            self.loop.create_task(self.load_catalog())
        elif msg_type == "quit":
            self.request_stop()
        elif msg_type != "location":
            self.logger.log("Unknown command", {"type": msg_type})

    # -- lifecycle --------------------------------------------------------

    def start(self):
        self.tracker.start(self.state.mode)

    def request_stop(self):
        self._stopping = True

    def periodic_update(self):
        """Log a state summary every log_interval seconds"""
        now = time.time()
        if now - self._last_log_update >= CONFIG["log_interval"]:
            state = self.get_state()
            state.pop("pois")
            state["visible"] = len(self.state.filtered)
            state["gps"] = self.geolocation.get_status()
            self.logger.log("STATE", state)
            self._last_log_update = now

    async def run(self, initial_location: Optional[Location] = None):
        """Track, load and narrate until stopped or playback ends"""
        self.logger.log("Guide starting", {
            "mode": self.state.mode.value,
            "catalog": self.catalog.source.describe(),
            "gps": self.geolocation.get_status(),
        })
        self.start()
        if initial_location:
            self.on_position(initial_location)
        await self.load_catalog()

        try:
            while not self._stopping:
                self.periodic_update()
                if self.geolocation.is_finished():
                    self.logger.log("Playback finished")
                    break
                await asyncio.sleep(0.5)
        finally:
            self.shutdown()

    def shutdown(self):
        self.tracker.stop()
        self.output.stop()
        if isinstance(self.geolocation.provider, GPSRecorder):
            self.geolocation.provider.save()
        if self.output.tone is not None:
            self.output.tone.close()
        self.logger.log("Guide stopped", {"narrations": len(self.events)})
