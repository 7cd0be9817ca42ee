import asyncio

import pytest

from cicerone.app import Guide
from cicerone.catalog import POICatalog
from cicerone.errors import CatalogLoadFailure
from cicerone.logger import Logger
from cicerone.models import FilterCriteria, Location, TrackingMode

from conftest import FakeSpeech, FakeTone, RecordingGeolocation, StaticSource, make_row

AT_ROCCA = Location(45.0, 7.0)
FAR_AWAY = Location(46.0, 7.0)


class FakeView:
    def __init__(self):
        self.states = []

    def publish(self, state):
        self.states.append(state)


@pytest.fixture
def source(sample_rows):
    return StaticSource(sample_rows)


@pytest.fixture
def geolocation(loop):
    return RecordingGeolocation(loop)


@pytest.fixture
def view():
    return FakeView()


@pytest.fixture
def guide(loop, source, geolocation, view):
    g = Guide(POICatalog(source), geolocation, loop,
              speech=FakeSpeech(), tone=FakeTone(), view=view)
    g.start()
    return g


def load(guide):
    return asyncio.run(guide.load_catalog())


def visible_ids(guide):
    return [p.id for p in guide.state.filtered]


class TestNarrationFlow:
    def test_walk_past_rocca_twice(self, guide, geolocation, loop):
        assert load(guide)
        guide.interact("pointer")

        for position in [AT_ROCCA, AT_ROCCA, FAR_AWAY, AT_ROCCA]:
            geolocation.emit(position)
            loop.advance(1.0)

        assert len(guide.events) == 2
        assert all(e.poi.name == "Rocca" for e in guide.events)
        assert guide.output.speech.spoken[1:] == [guide.events[0].text, guide.events[1].text]

    def test_no_narration_before_unlock(self, guide, geolocation, loop):
        load(guide)
        geolocation.emit(AT_ROCCA)
        loop.advance(1.0)

        assert guide.events == []
        assert guide.narrator.state.last_narrated_poi_id == 1

    def test_catalog_arriving_after_position_narrates(self, guide, geolocation, loop):
        guide.interact("touch")
        geolocation.emit(AT_ROCCA)
        assert guide.events == []

        load(guide)
        assert [e.poi.id for e in guide.events] == [1]

    def test_manual_listen(self, guide, loop):
        load(guide)
        event = guide.select_poi(3)

        assert event.manual is True
        assert event.text.startswith("Monte Rosa, categoria Montagna. Altitudine 4634 metri. ")
        # the tap unlocked audio on the way
        assert guide.gate.unlocked is True
        loop.advance(1.0)
        assert guide.output.speech.spoken[-1] == event.text

    def test_first_listen_is_not_cut_by_unlock_confirmation(self, guide, loop):
        load(guide)
        event = guide.select_poi(1)
        loop.advance(1.0)

        assert guide.output.speech.spoken == [event.text]
        assert guide.output.tone.plays == 1

    def test_listen_unknown_poi_still_confirms_unlock(self, guide):
        load(guide)
        guide.select_poi(99)
        assert guide.output.speech.spoken == ["Audio attivato"]

    def test_manual_listen_unknown_poi(self, guide):
        load(guide)
        assert guide.select_poi(99) is None

    def test_manual_listen_without_speech(self, loop, source, geolocation):
        guide = Guide(POICatalog(source), geolocation, loop, speech=FakeSpeech(available=False))
        load(guide)

        assert guide.select_poi(1) is None
        assert guide.state.status == "La sintesi vocale non è supportata su questo sistema"

    def test_stop_speech_clears_indicator(self, guide, loop):
        load(guide)
        guide.select_poi(1)
        assert guide.state.narrating == "Sto leggendo..."

        guide.handle_command({"type": "stop", "data": {}})
        assert guide.state.narrating is None
        loop.advance(1.0)
        assert guide.output.speech.spoken == []


class TestFiltering:
    def test_full_catalog_shown_before_position(self, guide):
        load(guide)
        assert visible_ids(guide) == [1, 2, 3, 4]
        assert guide.state.categories == ["All", "Lago", "Montagna", "Monumento", "Parco"]
        assert guide.state.status == "Caricati 4 punti"

    def test_criteria_wait_for_a_position(self, guide, geolocation):
        load(guide)
        guide.set_criteria(category="Lago")
        assert visible_ids(guide) == [1, 2, 3, 4]

        geolocation.emit(AT_ROCCA)
        assert visible_ids(guide) == [2]

    def test_radius_and_search(self, guide, geolocation):
        load(guide)
        geolocation.emit(AT_ROCCA)
        assert visible_ids(guide) == [1, 2]

        guide.set_criteria(radius_km=0)
        assert visible_ids(guide) == [1, 2, 3, 4]

        guide.set_criteria(search_text="LAGO")
        assert visible_ids(guide) == [2]

        guide.set_criteria(search_text="")
        assert visible_ids(guide) == [1, 2, 3, 4]

    def test_initial_criteria(self, loop, source, geolocation):
        guide = Guide(POICatalog(source), geolocation, loop,
                      criteria=FilterCriteria(category="Parco", radius_km=0))
        load(guide)
        guide.on_position(AT_ROCCA)
        assert visible_ids(guide) == [4]


class TestCatalogLoading:
    def test_failed_load_keeps_previous_catalog(self, guide, source):
        load(guide)
        source.error = CatalogLoadFailure("Connessione rifiutata")

        assert load(guide) is False
        assert guide.state.status == "Errore caricamento POI: Connessione rifiutata"
        assert len(guide.state.catalog) == 4

    def test_reload_replaces_catalog(self, guide, source):
        load(guide)
        source.rows = [make_row(9, "Sacra di San Michele", "Monumento", 45.098, 7.343)]

        assert load(guide)
        assert [p.id for p in guide.state.catalog] == [9]
        assert guide.state.categories == ["All", "Monumento"]


class TestTracking:
    def test_starts_in_walking_mode(self, guide, geolocation):
        (_, _, options), = geolocation.watches.values()
        assert options.high_accuracy is True
        assert options.max_sample_age_ms == 5000

    def test_mode_command_restarts_tracking(self, guide, geolocation, loop):
        guide.handle_command({"type": "mode", "data": {"mode": "driving"}})

        assert guide.state.mode is TrackingMode.DRIVING
        assert geolocation.cancelled == [1]
        assert list(geolocation.watches) == [2]
        loop.advance(2.0)
        assert geolocation.polls == 1

    def test_status_follows_geolocation(self, guide, geolocation):
        geolocation.fail()
        assert guide.state.status == "Errore nella geolocalizzazione"
        assert guide.state.geolocation_available is False

        geolocation.emit(Location(45.07, 7.68))
        assert guide.state.status == "Posizione aggiornata (a piedi) 45.07000, 7.68000"
        assert guide.state.geolocation_available is True


class TestView:
    def test_position_recenters_when_following(self, guide, geolocation, view):
        geolocation.emit(AT_ROCCA)
        assert view.states[-1]["recenter"] is True
        assert view.states[-1]["location"]["lat"] == 45.0

        guide.handle_command({"type": "follow", "data": {"enabled": False}})
        geolocation.emit(FAR_AWAY)
        assert view.states[-1]["recenter"] is False

    def test_state_snapshot(self, guide, geolocation):
        load(guide)
        geolocation.emit(AT_ROCCA)
        state = guide.get_state()

        assert state["mode"] == "walking"
        assert state["catalog_size"] == 4
        assert [p["id"] for p in state["pois"]] == [1, 2]
        assert state["audio_unlocked"] is False
        assert state["last_narrated_poi_id"] == 1

    def test_criteria_command(self, guide, geolocation):
        load(guide)
        geolocation.emit(AT_ROCCA)
        guide.handle_command({"type": "criteria", "data": {"category": "Monumento"}})
        assert visible_ids(guide) == [1]
        assert guide.get_state()["criteria"]["category"] == "Monumento"

    def test_quit_command(self, guide):
        guide.handle_command({"type": "quit", "data": {}})
        assert guide._stopping is True

    def test_location_messages_are_not_commands(self, guide, view):
        published = len(view.states)
        guide.handle_command({"type": "location", "data": {"lat": 45.0, "lon": 7.0}})
        assert len(view.states) == published


class TestLifecycle:
    def test_run_until_quit(self, loop, source, geolocation, tmp_path):
        log_path = tmp_path / "guide.log"
        guide = Guide(POICatalog(source), geolocation, loop, speech=FakeSpeech(),
                      logger=Logger(str(log_path), echo=False))
        guide.request_stop()

        asyncio.run(guide.run(initial_location=AT_ROCCA))
        guide.logger.close()

        assert guide.state.status == "Caricati 4 punti"
        assert visible_ids(guide) == [1, 2]
        assert guide.tracker.running is False
        assert geolocation.watches == {}
        log = log_path.read_text()
        assert "Guide starting" in log
        assert "Guide stopped" in log


class TestBadCommands:
    @pytest.mark.parametrize("msg", [
        {"type": "select", "data": {}},
        {"type": "select", "data": {"id": "abc"}},
        {"type": "select", "data": {"id": None}},
        {"type": "mode", "data": {"mode": "auto"}},
        {"type": "mode", "data": {}},
        {"type": "criteria", "data": {"category": "Lago", "radius_km": "vicino"}},
        {"type": "select", "data": "1"},
    ])
    def test_bad_command_leaves_state_unchanged(self, guide, geolocation, msg, tmp_path):
        load(guide)
        geolocation.emit(AT_ROCCA)
        log_path = tmp_path / "guide.log"
        guide.logger = Logger(str(log_path), echo=False)
        before = guide.get_state()

        guide.handle_command(msg)

        assert guide.get_state() == before
        assert guide.state.mode is TrackingMode.WALKING
        assert list(geolocation.watches) == [1]
        assert guide.output.speech.spoken == []
        guide.logger.close()
        assert "Bad command" in log_path.read_text()

    def test_guide_keeps_working_after_bad_command(self, guide):
        load(guide)
        guide.handle_command({"type": "mode", "data": {"mode": "auto"}})
        guide.handle_command({"type": "mode", "data": {"mode": "driving"}})
        assert guide.state.mode is TrackingMode.DRIVING
