# tests/test_location.py
import asyncio
from datetime import date, datetime, timezone
from types import SimpleNamespace

import pytest
from geopy.exc import GeocoderTimedOut, GeocoderUnavailable

from suntime.display import DisplayPort
from suntime.location import (
    GeocodedLocationSource,
    GridSquareLocationSource,
    ManualLocationSource,
    StaticLocationSource,
    create_location_source,
)
from suntime.models import DisplayState, EventLabel, GeoFix, SunTimes
from suntime.scheduler import EventScheduler


class FakeGeolocator:
    """Returns `result` or raises `exc`; `outcomes` overrides both, one per call"""

    def __init__(self, result=None, exc=None, outcomes=None):
        self.result = result
        self.exc = exc
        self.outcomes = list(outcomes) if outcomes is not None else None
        self.queries = []

    def geocode(self, query):
        self.queries.append(query)
        if self.outcomes:
            outcome = self.outcomes.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome
        if self.exc is not None:
            raise self.exc
        return self.result


def test_geofix_validates_range() -> None:
    with pytest.raises(ValueError):
        GeoFix(91.0, 0.0)
    with pytest.raises(ValueError):
        GeoFix(0.0, -181.0)


def test_stopped_source_drops_fixes(make_app) -> None:
    source = ManualLocationSource(make_app())
    received = []
    source.subscribe(received.append)
    assert source.push_fix(GeoFix(1.0, 2.0)) is False
    assert received == []


def test_distance_filter(make_app) -> None:
    source = ManualLocationSource(make_app({'Location': {'distance_filter_m': '1000'}}))
    received = []
    source.subscribe(received.append)
    source.start()

    assert source.push_fix(GeoFix(40.0, -74.0))
    # ~111 m north: filtered
    assert not source.push_fix(GeoFix(40.001, -74.0))
    # ~2.2 km north: delivered
    assert source.push_fix(GeoFix(40.02, -74.0))
    assert received == [GeoFix(40.0, -74.0), GeoFix(40.02, -74.0)]


def test_restart_lets_same_fix_through(make_app) -> None:
    source = ManualLocationSource(make_app())
    received = []
    source.subscribe(received.append)
    source.start()
    source.push_fix(GeoFix(40.0, -74.0))
    source.stop()
    source.start()
    assert source.push_fix(GeoFix(40.0, -74.0))
    assert len(received) == 2


def test_subscriber_errors_are_contained(make_app) -> None:
    source = ManualLocationSource(make_app())
    received = []

    def broken(fix):
        raise RuntimeError("subscriber bug")

    source.subscribe(broken)
    source.subscribe(received.append)
    source.start()
    assert source.push_fix(GeoFix(10.0, 10.0))
    assert received == [GeoFix(10.0, 10.0)]


def test_unsubscribe(make_app) -> None:
    source = ManualLocationSource(make_app())
    received = []
    source.subscribe(received.append)
    source.unsubscribe(received.append)
    source.start()
    source.push_fix(GeoFix(10.0, 10.0))
    assert received == []


def test_static_source_emits_on_each_start(make_app) -> None:
    source = StaticLocationSource(make_app(), 48.85, 2.35)
    received = []
    source.subscribe(received.append)

    async def scenario():
        source.start()
        await asyncio.sleep(0)
        source.stop()
        source.start()
        await asyncio.sleep(0)

    asyncio.run(scenario())
    assert received == [GeoFix(48.85, 2.35), GeoFix(48.85, 2.35)]


def test_grid_square_centre(make_app) -> None:
    source = GridSquareLocationSource(make_app(), "FN20")
    assert source.fix.latitude == pytest.approx(40.5, abs=0.01)
    assert source.fix.longitude == pytest.approx(-75.0, abs=0.01)


@pytest.mark.parametrize("grid", ["", "ZZ99", "FN2", "12AB"])
def test_grid_square_invalid(make_app, grid) -> None:
    with pytest.raises(ValueError):
        GridSquareLocationSource(make_app(), grid)


def test_geocoded_source_resolves_once(make_app, wait_for) -> None:
    geolocator = FakeGeolocator(SimpleNamespace(latitude=51.5074, longitude=-0.1278))
    source = GeocodedLocationSource(make_app(), "London, UK", geolocator=geolocator)
    received = []
    source.subscribe(received.append)

    async def scenario():
        source.start()
        assert await wait_for(lambda: len(received) == 1)
        source.stop()
        source.start()
        assert await wait_for(lambda: len(received) == 2)
        source.stop()

    asyncio.run(scenario())
    assert received[0] == GeoFix(51.5074, -0.1278)
    assert geolocator.queries == ["London, UK"]


@pytest.mark.parametrize("geolocator", [
    FakeGeolocator(None),
    FakeGeolocator(exc=GeocoderTimedOut("slow")),
    FakeGeolocator(exc=RuntimeError("executor blew up")),
])
def test_geocoding_failure_produces_no_fix(make_app, geolocator) -> None:
    source = GeocodedLocationSource(make_app(), "Nowhere", geolocator=geolocator)
    received = []
    source.subscribe(received.append)

    async def scenario():
        source.start()
        await asyncio.sleep(0.1)
        source.stop()

    asyncio.run(scenario())
    assert received == []
    assert source.fix is None
    assert not source.running


def test_refresh_retries_geocoding_after_failure(make_app, fake_client, wait_for) -> None:
    app = make_app()
    london = SimpleNamespace(latitude=51.5074, longitude=-0.1278)
    geolocator = FakeGeolocator(outcomes=[GeocoderUnavailable("down"), london])
    source = GeocodedLocationSource(app, "London, UK", geolocator=geolocator)
    display = DisplayPort(app)
    times = SunTimes(sunrise=datetime(2024, 6, 1, 10, 0, tzinfo=timezone.utc),
                     sunset=datetime(2024, 6, 1, 23, 30, tzinfo=timezone.utc))
    client = fake_client(times)
    now = datetime(2024, 6, 1, 9, 0, tzinfo=timezone.utc)
    scheduler = EventScheduler(app, client, source, display, clock=lambda: now)

    async def scenario():
        scheduler.start()
        assert await wait_for(lambda: len(geolocator.queries) == 1 and not source.running)
        assert client.calls == []
        display.request_refresh()
        assert await wait_for(lambda: display.state is not None)
        scheduler.stop()

    asyncio.run(scenario())
    assert len(geolocator.queries) == 2
    assert client.calls == [(51.5074, -0.1278, date(2024, 6, 1))]
    assert display.state == DisplayState(EventLabel.SUNRISE, times.sunrise)


def test_create_static(make_app) -> None:
    source = create_location_source(make_app({'Location': {'source': 'static', 'latitude': '1.5', 'longitude': '2.5'}}))
    assert isinstance(source, StaticLocationSource)
    assert source.fix == GeoFix(1.5, 2.5)


def test_create_grid_and_manual(make_app) -> None:
    grid = create_location_source(make_app({'Location': {'source': 'grid', 'grid_square': 'JO62qm'}}))
    assert isinstance(grid, GridSquareLocationSource)
    manual = create_location_source(make_app({'Location': {'source': 'manual'}}))
    assert isinstance(manual, ManualLocationSource)


@pytest.mark.parametrize("section", [
    {'source': 'static'},
    {'source': 'static', 'latitude': '100', 'longitude': '0'},
    {'source': 'geocode'},
    {'source': 'satellite'},
])
def test_create_rejects_bad_config(make_app, section) -> None:
    with pytest.raises(ValueError):
        create_location_source(make_app({'Location': section}))
