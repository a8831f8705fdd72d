# tests/conftest.py
import json
from datetime import date, time
from importlib import reload
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from tripsched.plan.config import EngineSettings
from tripsched.plan.engine import SchedulingEngine
from tripsched.plan.models import Customer, Driver, Location, ScheduleEntry, Trip, Vehicle
from tripsched.plan.store import InMemoryTripStore
from tripsched.timeparse import band_for

TENANT = "t1"
MONDAY = date(2024, 1, 8)

# Small town grid; roughly a mile between neighbours
HOME_ANN = Location(address="1 Mill Lane", postcode="AB1 1AA", lat=52.500, lon=-1.900)
HOME_BOB = Location(address="2 Church St", postcode="AB1 2BB", lat=52.510, lon=-1.910)
HOME_CARA = Location(address="3 High St", postcode="AB1 3CC", lat=52.520, lon=-1.920)
DAY_CENTRE = Location(address="Oak Day Centre", postcode="AB2 1DC", lat=52.540, lon=-1.880)
SURGERY = Location(address="Elm Surgery", postcode="AB2 2SG", lat=52.480, lon=-1.950)


def toy_customers():
    return [
        Customer(customer_id="C1", name="Ann Smith", address=HOME_ANN, regular_driver_id="D2"),
        Customer(customer_id="C2", name="Bob Jones", address=HOME_BOB),
        Customer(customer_id="C3", name="Cara Lee", address=HOME_CARA, requires_wheelchair=True),
    ]


def toy_drivers():
    return [
        Driver(driver_id="D1", name="Dee Walker",
               vehicle=Vehicle(vehicle_id="V1", registration="AB12 CDE", capacity=2)),
        Driver(driver_id="D2", name="Eli Moss",
               vehicle=Vehicle(vehicle_id="V2", registration="FG34 HIJ", capacity=4, wheelchair_accessible=True)),
        Driver(driver_id="D3", name="Fay Holt", active=False,
               vehicle=Vehicle(vehicle_id="V3", registration="KL56 MNO", capacity=4)),
    ]


def toy_schedules():
    return [
        ScheduleEntry(customer_id="C1", weekday="Mon", pickup=HOME_ANN, destination=DAY_CENTRE,
                      pickup_time="09:00", return_time="15:00", daily_price=12.0),
        ScheduleEntry(customer_id="C1", weekday="Wed", pickup=HOME_ANN, destination=SURGERY,
                      pickup_time="10:30", daily_price=6.0),
        ScheduleEntry(customer_id="C2", weekday="Mon", pickup=HOME_BOB, destination=DAY_CENTRE,
                      pickup_time="09:00", daily_price=6.0),
        # Tuesday slot saved with no destination: not a travel day
        ScheduleEntry(customer_id="C2", weekday="Tue", pickup=HOME_BOB, destination=Location(address=""),
                      pickup_time="09:00"),
        ScheduleEntry(customer_id="C3", weekday="Mon", pickup=HOME_CARA, destination=DAY_CENTRE,
                      pickup_time="09:30", daily_price=8.0),
    ]


@pytest.fixture
def settings():
    return EngineSettings()


@pytest.fixture
def make_trip():
    counter = {"n": 0}

    def _make(**kw):
        counter["n"] += 1
        pickup_time = kw.pop("pickup_time", time(9, 0))
        if isinstance(pickup_time, str):
            hh, mm = pickup_time.split(":")
            pickup_time = time(int(hh), int(mm))
        fields = dict(
            trip_id=f"X{counter['n']:03d}",
            customer_id="C1",
            trip_date=MONDAY,
            pickup_time=pickup_time,
            band=band_for(pickup_time),
            pickup=HOME_ANN,
            destination=DAY_CENTRE,
        )
        fields.update(kw)
        return Trip(**fields)

    return _make


@pytest.fixture
def make_driver():
    def _make(driver_id="DX", capacity=4, accessible=False, **kw):
        return Driver(
            driver_id=driver_id,
            name=kw.pop("name", f"Driver {driver_id}"),
            vehicle=Vehicle(vehicle_id=f"V-{driver_id}", capacity=capacity, wheelchair_accessible=accessible),
            **kw,
        )

    return _make


@pytest.fixture
def store():
    s = InMemoryTripStore()
    s.load_tenant(TENANT, customers=toy_customers(), drivers=toy_drivers(), schedules=toy_schedules())
    return s


@pytest.fixture
def engine(store, settings):
    return SchedulingEngine(store, distance_source=None, settings=settings)


@pytest.fixture
def _env_test_data(monkeypatch, tmp_path: Path):
    """
    Writes the toy tenant under a temp PRIVATE_DATA_DIR so the backend loads it on reload.
    """
    data_root = tmp_path / "data"
    tenants = data_root / "tenants"
    tenants.mkdir(parents=True, exist_ok=True)
    payload = {
        "customers": [c.model_dump(mode="json") for c in toy_customers()],
        "drivers": [d.model_dump(mode="json") for d in toy_drivers()],
        "schedules": [s.model_dump(mode="json") for s in toy_schedules()],
        "trips": [],
    }
    (tenants / f"{TENANT}.json").write_text(json.dumps(payload), encoding="utf-8")

    monkeypatch.setenv("PRIVATE_DATA_DIR", str(data_root))
    # the distance service must never be hit from tests
    monkeypatch.delenv("GOOGLE_MAPS_API_KEY", raising=False)
    yield data_root


@pytest.fixture
def app(_env_test_data):
    # Import AFTER env vars/files so startup readers find our toy data
    import backend.main as bm
    bm = reload(bm)
    return bm.app


@pytest.fixture
def client(app):
    c = TestClient(app)
    r = c.post("/admin/reload")
    assert r.status_code == 200, f"/admin/reload failed: {r.status_code} {r.text}"
    assert r.json()["status"] == "ok", r.text
    return c
