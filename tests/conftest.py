"""
Pytest configuration and shared fixtures for Cicerone tests.

The guide runs on an event loop and talks to speech, tone and geolocation
capabilities; these fixtures replace all of them with deterministic fakes.
"""

from typing import Optional

import pytest

from cicerone.errors import GeolocationUnavailable
from cicerone.models import Location, POI


# =============================================================================
# Event loop
# =============================================================================


class FakeTimer:
    def __init__(self, when: float, seq: int, callback, args):
        self.when = when
        self.seq = seq
        self.callback = callback
        self.args = args
        self.cancelled = False
        self.fired = False

    def cancel(self):
        self.cancelled = True


class FakeLoop:
    """Manually advanced stand-in for the asyncio loop timer API"""

    def __init__(self):
        self.now = 0.0
        self.timers: list[FakeTimer] = []
        self._seq = 0

    def time(self) -> float:
        return self.now

    def call_later(self, delay, callback, *args) -> FakeTimer:
        self._seq += 1
        timer = FakeTimer(self.now + delay, self._seq, callback, args)
        self.timers.append(timer)
        return timer

    def call_soon(self, callback, *args) -> FakeTimer:
        return self.call_later(0, callback, *args)

    @property
    def pending(self) -> list[FakeTimer]:
        return [t for t in self.timers if not t.cancelled and not t.fired]

    def advance(self, seconds: float = 0.0):
        """Run every timer due within the next `seconds`, in order"""
        target = self.now + seconds
        while True:
            due = [t for t in self.pending if t.when <= target + 1e-9]
            if not due:
                break
            timer = min(due, key=lambda t: (t.when, t.seq))
            self.now = max(self.now, timer.when)
            timer.fired = True
            timer.callback(*timer.args)
        self.now = target


# =============================================================================
# Audio capabilities
# =============================================================================


class FakeSpeech:
    def __init__(self, available: bool = True, fail: bool = False):
        self.available = available
        self.fail = fail
        self.spoken: list[str] = []
        self.cancels = 0
        self._on_done = None

    def speak(self, text: str, on_done=None):
        if self.fail:
            raise OSError("audio device busy")
        self.spoken.append(text)
        self._on_done = on_done

    def cancel(self):
        self.cancels += 1
        self._on_done = None

    def finish(self):
        """Simulate the current utterance reaching its end"""
        callback, self._on_done = self._on_done, None
        if callback:
            callback()


class FakeTone:
    def __init__(self, available: bool = True):
        self.available = available
        self.plays = 0

    def play(self):
        self.plays += 1

    def close(self):
        pass


# =============================================================================
# Geolocation
# =============================================================================


class ScriptedProvider:
    """Fix provider returning queued samples; exceptions in the queue are raised"""

    def __init__(self, samples=()):
        self.samples = list(samples)
        self.calls = 0
        self.last_options = None

    def get_location(self, options) -> Location:
        self.calls += 1
        self.last_options = options
        if not self.samples:
            raise GeolocationUnavailable("no fix")
        sample = self.samples.pop(0)
        if isinstance(sample, Exception):
            raise sample
        return sample

    def get_status(self) -> str:
        return "scripted"


class RecordingGeolocation:
    """Geolocation capability that records subscriptions instead of firing them"""

    def __init__(self, loop):
        self.loop = loop
        self.provider = ScriptedProvider()
        self.watches: dict[int, tuple] = {}
        self.cancelled: list[int] = []
        self.polls = 0
        self._next = 0

    def watch(self, on_sample, on_error, options) -> int:
        self._next += 1
        self.watches[self._next] = (on_sample, on_error, options)
        return self._next

    def poll(self, on_sample, on_error, options):
        self.polls += 1

    def cancel(self, handle: int):
        self.cancelled.append(handle)
        self.watches.pop(handle, None)

    def emit(self, location: Location):
        for on_sample, _, _ in list(self.watches.values()):
            on_sample(location)

    def fail(self, error: Optional[Exception] = None):
        for _, on_error, _ in list(self.watches.values()):
            on_error(error or GeolocationUnavailable("permission denied"))

    def is_finished(self) -> bool:
        return False

    def get_status(self) -> str:
        return "recording"


# =============================================================================
# Catalog
# =============================================================================


class StaticSource:
    def __init__(self, rows=None, error: Optional[Exception] = None):
        self.rows = rows or []
        self.error = error
        self.fetches = 0

    def describe(self) -> str:
        return "static"

    def fetch(self) -> list[dict]:
        self.fetches += 1
        if self.error:
            raise self.error
        return self.rows


def make_row(poi_id: int, name: str, category: str, lat: float, lon: float, **extra) -> dict:
    row = {
        "id": poi_id,
        "name": name,
        "description": extra.pop("description", f"Descrizione di {name}"),
        "category_name": category,
        "geojson": {"type": "Point", "coordinates": [lon, lat]},
    }
    row.update(extra)
    return row


def make_poi(poi_id: int, name: str, category: str, lat: float, lon: float, **extra) -> POI:
    return POI(id=poi_id, name=name, description=extra.pop("description", ""),
               category=category, lat=lat, lon=lon, **extra)


@pytest.fixture
def loop() -> FakeLoop:
    return FakeLoop()


@pytest.fixture
def speech() -> FakeSpeech:
    return FakeSpeech()


@pytest.fixture
def tone() -> FakeTone:
    return FakeTone()


@pytest.fixture
def rocca() -> POI:
    return make_poi(1, "Rocca", "Monumento", 45.0, 7.0, description="Fortezza medievale.")


@pytest.fixture
def sample_rows() -> list[dict]:
    return [
        make_row(1, "Rocca", "Monumento", 45.0, 7.0),
        make_row(2, "Lago Grande", "Lago", 45.05, 7.02, elevation=350),
        make_row(3, "Monte Rosa", "Montagna", 45.93, 7.87, elevation=4634, image_url="https://example.org/rosa.jpg"),
        make_row(4, "Parco del Valentino", "Parco", 45.054, 7.686),
    ]
