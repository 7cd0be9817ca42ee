"""Geolocation capability: fix providers, watch/poll scheduling, recording/playback."""

import json
import subprocess
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from .errors import GeolocationUnavailable
from .models import Location


@dataclass
class WatchOptions:
    high_accuracy: bool = True
    max_sample_age_ms: int = 5000
    timeout_ms: int = 10000


class TermuxLocation:
    """Fixes from the Termux:API `termux-location` command.

    A fix younger than the caller's max_sample_age_ms is reused instead of
    waking the receiver again.
    """

    def __init__(self):
        self.last_location: Optional[Location] = None
        self.consecutive_failures = 0

    def _failed(self, message: str, details: Optional[dict] = None) -> GeolocationUnavailable:
        self.consecutive_failures += 1
        return GeolocationUnavailable(message, details)

    def get_location(self, options: WatchOptions) -> Location:
        cached = self.last_location
        if cached is not None and cached.timestamp is not None:
            if (time.time() - cached.timestamp) * 1000 <= options.max_sample_age_ms:
                return cached

        cmd = ["termux-location", "-p", "gps" if options.high_accuracy else "network", "-r", "once"]
        try:
            proc = subprocess.run(cmd, capture_output=True, text=True,
                                  timeout=options.timeout_ms / 1000)
        except subprocess.TimeoutExpired as e:
            raise self._failed("Location request timed out", {"timeout_ms": options.timeout_ms}) from e
        except FileNotFoundError as e:
            raise self._failed("termux-location not installed") from e

        if proc.returncode != 0 or not proc.stdout.strip():
            raise self._failed("Location request failed",
                               {"returncode": proc.returncode, "stderr": (proc.stderr or "").strip()})

        try:
            fix = json.loads(proc.stdout)
            self.last_location = Location(
                lat=fix["latitude"],
                lon=fix["longitude"],
                accuracy=fix.get("accuracy"),
                timestamp=time.time(),
            )
        except (json.JSONDecodeError, KeyError) as e:
            raise self._failed("Unreadable location output") from e

        self.consecutive_failures = 0
        return self.last_location

    def get_status(self) -> str:
        if self.consecutive_failures:
            return f"Termux: last {self.consecutive_failures} fix attempt(s) failed"
        if self.last_location is None:
            return "Termux: waiting for first fix"
        accuracy = self.last_location.accuracy
        return "Termux: fix ok" + (f" (±{accuracy:.0f} m)" if accuracy else "")


class MapClickLocation:
    """Position fixes taken from clicks on the browser map"""

    def __init__(self):
        self.last_location: Optional[Location] = None

    def push(self, location: Location):
        self.last_location = location

    def get_location(self, options: WatchOptions) -> Location:
        if self.last_location is None:
            raise GeolocationUnavailable("Click on the map to set a position")
        return self.last_location

    def get_status(self) -> str:
        return "Map clicks (click map to set location)"


class GPSRecorder:
    """Wraps a provider and keeps every fix attempt, failures included"""

    def __init__(self, provider, record_path: str):
        self.provider = provider
        self.record_path = record_path
        self.entries: list[dict] = []
        self._started = time.monotonic()

    def get_location(self, options: WatchOptions) -> Location:
        entry = {"t": round(time.monotonic() - self._started, 3), "fix": None}
        try:
            location = self.provider.get_location(options)
        except GeolocationUnavailable as e:
            entry["error"] = e.message
            raise
        else:
            entry["fix"] = location.to_dict()
            return location
        finally:
            self.entries.append(entry)

    def get_status(self) -> str:
        return self.provider.get_status()

    def save(self) -> str:
        trace = {
            "recorded_at": datetime.now().isoformat(timespec="seconds"),
            "source": self.provider.get_status(),
            "entries": self.entries,
        }
        with open(self.record_path, "w") as f:
            json.dump(trace, f, indent=2)
        print(f"Recorded {len(self.entries)} fix attempts to {self.record_path}")
        return self.record_path


class TracePlayback:
    """Replays a GPSRecorder trace, one recorded attempt per fix request.

    Attempts are spaced as they were recorded, divided by `speed`.
    """

    MIN_INTERVAL = 0.1
    MAX_INTERVAL = 5.0

    def __init__(self, playback_path: str, speed: float = 1.0):
        self.playback_path = playback_path
        self.speed = speed
        with open(playback_path) as f:
            self.entries: list[dict] = json.load(f)["entries"]
        self.position = 0
        self.failures = 0
        self.last_location: Optional[Location] = None
        print(f"Replaying {len(self.entries)} fix attempts from {playback_path}")

    def get_location(self, options: WatchOptions) -> Location:
        if self.is_finished():
            raise GeolocationUnavailable("Playback finished")

        entry = self.entries[self.position]
        self.position += 1
        if entry.get("fix") is None:
            self.failures += 1
            self.last_location = None
            raise GeolocationUnavailable(entry.get("error") or "Recorded fix failure",
                                         {"entry": self.position - 1})
        self.failures = 0
        self.last_location = Location.from_dict(entry["fix"])
        return self.last_location

    def current_location(self, options: WatchOptions) -> Location:
        """The fix most recently replayed, without moving playback forward"""
        if self.last_location is None:
            raise GeolocationUnavailable("No replayed fix", {"entry": self.position})
        return self.last_location

    def get_interval(self, default: float) -> float:
        """Seconds until the next recorded attempt"""
        if 0 < self.position < len(self.entries):
            gap = self.entries[self.position]["t"] - self.entries[self.position - 1]["t"]
            return min(max(gap / self.speed, self.MIN_INTERVAL), self.MAX_INTERVAL)
        return default / self.speed

    def is_finished(self) -> bool:
        return self.position >= len(self.entries)

    def get_status(self) -> str:
        state = f"{self.failures} recorded failures" if self.failures else "ok"
        return f"Playback {self.position}/{len(self.entries)}, {state}"


class Geolocation:
    """Watch/poll/cancel interface over a fix provider.

    Watches are re-armed on the event loop every max_sample_age_ms, so a
    watcher never holds a sample older than it asked for.
    """

    def __init__(self, provider, loop):
        self.provider = provider
        self.loop = loop
        self._watches: dict[int, object] = {}
        self._next_handle = 0

    @property
    def playback(self) -> Optional[TracePlayback]:
        """The trace being replayed, also when it is being re-recorded"""
        provider = self.provider
        if isinstance(provider, GPSRecorder):
            provider = provider.provider
        return provider if isinstance(provider, TracePlayback) else None

    def _deliver(self, on_sample: Callable, on_error: Callable, options: WatchOptions,
                 fetch: Optional[Callable] = None):
        try:
            location = (fetch or self.provider.get_location)(options)
        except GeolocationUnavailable as e:
            on_error(e)
        else:
            on_sample(location)

    def _interval(self, options: WatchOptions) -> float:
        default = options.max_sample_age_ms / 1000
        if self.playback is not None:
            return self.playback.get_interval(default)
        return default

    def watch(self, on_sample: Callable, on_error: Callable, options: WatchOptions) -> int:
        self._next_handle += 1
        handle = self._next_handle

        def tick():
            if handle not in self._watches:
                return
            self._deliver(on_sample, on_error, options)
            if handle in self._watches:
                self._watches[handle] = self.loop.call_later(self._interval(options), tick)

        self._watches[handle] = self.loop.call_soon(tick)
        return handle

    def poll(self, on_sample: Callable, on_error: Callable, options: WatchOptions):
        """One-shot fix. A replayed trace answers with its current fix, so
        polls do not advance playback past the recorded timing."""
        fetch = self.playback.current_location if self.playback is not None else None
        self.loop.call_soon(self._deliver, on_sample, on_error, options, fetch)

    def cancel(self, handle: int):
        timer = self._watches.pop(handle, None)
        if timer is not None:
            timer.cancel()

    @property
    def active_watches(self) -> int:
        return len(self._watches)

    def is_finished(self) -> bool:
        return self.playback is not None and self.playback.is_finished()

    def get_status(self) -> str:
        return self.provider.get_status()
