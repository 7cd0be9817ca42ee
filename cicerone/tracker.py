"""Position tracking with per-mode accuracy and timing policy."""

from typing import Callable, Optional

from .errors import GeolocationUnavailable
from .gps import Geolocation, WatchOptions
from .logger import Logger
from .models import Location, TrackingMode

MODE_LABELS = {
    TrackingMode.WALKING: "a piedi",
    TrackingMode.DRIVING: "auto",
}


class PositionTracker:
    """Feeds position samples and status updates from a geolocation watch.

    In driving mode an explicit poll runs next to the watch, so duplicate
    samples are expected; consumers must tolerate repeats.
    """

    def __init__(self, geolocation: Geolocation,
                 on_position: Callable[[Location], None],
                 on_status: Optional[Callable[[str, bool], None]] = None,
                 loop=None, logger: Optional[Logger] = None):
        self.geolocation = geolocation
        self.on_position = on_position
        self.on_status = on_status
        self.loop = loop or geolocation.loop
        self.logger = logger
        self.mode: Optional[TrackingMode] = None
        self.available: Optional[bool] = None  # unknown until the first callback
        self._watch_handle: Optional[int] = None
        self._poll_timer = None
        self._session = 0  # bumped on teardown so stale callbacks are dropped

    @property
    def running(self) -> bool:
        return self._watch_handle is not None

    def start(self, mode: TrackingMode):
        """(Re)start tracking; any previous subscription is torn down first"""
        self.stop()
        self.mode = mode
        session = self._session
        policy = mode.policy
        options = WatchOptions(
            high_accuracy=policy["high_accuracy"],
            max_sample_age_ms=policy["max_sample_age_ms"],
            timeout_ms=policy["timeout_ms"],
        )

        self._watch_handle = self.geolocation.watch(
            lambda loc: self._handle_sample(session, loc),
            lambda err: self._handle_error(session, err),
            options,
        )
        if policy["poll_interval_ms"]:
            self._schedule_poll(session, options, policy["poll_interval_ms"] / 1000)

        if self.logger:
            self.logger.log("Tracking started", {"mode": mode.value, **policy})

    def set_mode(self, mode: TrackingMode):
        if mode == self.mode and self.running:
            return
        self.start(mode)

    def stop(self):
        if self._watch_handle is not None:
            self.geolocation.cancel(self._watch_handle)
            self._watch_handle = None
        if self._poll_timer is not None:
            self._poll_timer.cancel()
            self._poll_timer = None
        self._session += 1

    def _schedule_poll(self, session: int, options: WatchOptions, interval: float):
        self._poll_timer = self.loop.call_later(interval, self._poll_tick, session, options, interval)

    def _poll_tick(self, session: int, options: WatchOptions, interval: float):
        if session != self._session:
            return
        self.geolocation.poll(
            lambda loc: self._handle_sample(session, loc),
            lambda err: self._handle_error(session, err),
            options,
        )
        self._schedule_poll(session, options, interval)

    def _handle_sample(self, session: int, location: Location):
        if session != self._session:
            return
        if self.available is not True and self.logger:
            self.logger.log("Geolocation available", {"lat": location.lat, "lon": location.lon})
        self.available = True
        if self.on_status:
            self.on_status(
                f"Posizione aggiornata ({MODE_LABELS[self.mode]}) "
                f"{location.lat:.5f}, {location.lon:.5f}",
                True,
            )
        self.on_position(location)

    def _handle_error(self, session: int, error: GeolocationUnavailable):
        if session != self._session:
            return
        if self.available is not False and self.logger:
            self.logger.error("Geolocation unavailable", error)
        self.available = False
        if self.on_status:
            self.on_status("Errore nella geolocalizzazione", False)
