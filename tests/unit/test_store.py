import json
from datetime import time

import pytest

from tripsched.plan.errors import StorageError, UnknownEntityError
from tripsched.plan.store import InMemoryTripStore, JsonFileTripStore

from conftest import MONDAY, TENANT, toy_customers, toy_drivers, toy_schedules


def test_transaction_rolls_back_on_error(store, make_trip):
    with pytest.raises(RuntimeError):
        with store.transaction(TENANT) as w:
            w.add_trip(make_trip(trip_id=w.new_trip_id()))
            raise RuntimeError("boom")
    assert store.list_trips(TENANT) == []
    # the id sequence is rolled back too
    with store.transaction(TENANT) as w:
        assert w.new_trip_id() == "T000001"


def test_reads_are_copies(store, make_trip):
    with store.transaction(TENANT) as w:
        w.add_trip(make_trip(trip_id="A"))
    trip = store.get_trip(TENANT, "A")
    trip.driver_id = "D1"
    assert store.get_trip(TENANT, "A").driver_id is None


def test_unknown_tenant():
    s = InMemoryTripStore()
    with pytest.raises(UnknownEntityError):
        s.list_trips("nope")
    assert not s.has_tenant("nope")


def test_update_missing_trip_fails(store, make_trip):
    with pytest.raises(StorageError):
        with store.transaction(TENANT) as w:
            w.update_trip(make_trip(trip_id="ghost"))


def test_list_trips_filters(store, make_trip):
    with store.transaction(TENANT) as w:
        w.add_trip(make_trip(trip_id="A", driver_id="D1", pickup_time="10:00"))
        w.add_trip(make_trip(trip_id="B", customer_id="C2", pickup_time="08:00"))
        w.add_trip(make_trip(trip_id="C", customer_id="C3", status="cancelled"))
    assert [t.trip_id for t in store.list_trips(TENANT)] == ["B", "C", "A"]
    assert [t.trip_id for t in store.list_trips(TENANT, driver_id="D1")] == ["A"]
    assert [t.trip_id for t in store.list_trips(TENANT, statuses=["cancelled"])] == ["C"]
    assert store.list_trips(TENANT, start=MONDAY.replace(day=9)) == []


def test_moved_regular_trip_frees_its_old_slot(store, make_trip):
    with store.transaction(TENANT) as w:
        a = w.add_trip(make_trip(trip_id="A", pickup_time="09:00"))
        w.update_trip(a.model_copy(update={"pickup_time": time(14, 0), "band": "afternoon"}))
        w.add_trip(make_trip(trip_id="B", pickup_time="09:30"))
    with pytest.raises(StorageError, match="regular trip A"):
        with store.transaction(TENANT) as w:
            w.add_trip(make_trip(trip_id="C", pickup_time="15:00"))
    assert sorted(t.trip_id for t in store.list_trips(TENANT)) == ["A", "B"]


def test_batch_update_can_swap_bands(store, make_trip):
    with store.transaction(TENANT) as w:
        a = w.add_trip(make_trip(trip_id="A", pickup_time="09:00"))
        b = w.add_trip(make_trip(trip_id="B", pickup_time="14:00"))
    with store.transaction(TENANT) as w:
        w.update_trips([
            a.model_copy(update={"pickup_time": time(14, 0), "band": "afternoon"}),
            b.model_copy(update={"pickup_time": time(9, 0), "band": "morning"}),
        ])
    assert store.get_trip(TENANT, "A").band == "afternoon"
    with pytest.raises(StorageError, match="regular trip B"):
        with store.transaction(TENANT) as w:
            w.add_trip(make_trip(trip_id="C", pickup_time="08:00"))


def test_batch_update_into_one_slot_fails(store, make_trip):
    with store.transaction(TENANT) as w:
        a = w.add_trip(make_trip(trip_id="A", pickup_time="09:00"))
        b = w.add_trip(make_trip(trip_id="B", pickup_time="14:00"))
    with pytest.raises(StorageError):
        with store.transaction(TENANT) as w:
            w.update_trips([a, b.model_copy(update={"pickup_time": time(10, 0), "band": "morning"})])
    assert store.get_trip(TENANT, "B").band == "afternoon"
    # the failed batch left the slot index as it was
    with store.transaction(TENANT) as w:
        w.update_trip(store.get_trip(TENANT, "B"))


def test_rolled_back_trip_releases_its_slot(store, make_trip):
    with pytest.raises(RuntimeError):
        with store.transaction(TENANT) as w:
            w.add_trip(make_trip(trip_id="A"))
            raise RuntimeError("boom")
    with store.transaction(TENANT) as w:
        w.add_trip(make_trip(trip_id="B"))
    assert [t.trip_id for t in store.list_trips(TENANT)] == ["B"]


def test_loaded_trips_hold_their_slots(make_trip):
    s = InMemoryTripStore()
    s.load_tenant(TENANT, trips=[make_trip(trip_id="T000007"), make_trip(trip_id="T000008", trip_type="ad_hoc")])
    with pytest.raises(StorageError, match="regular trip T000007"):
        with s.transaction(TENANT) as w:
            w.add_trip(make_trip(trip_id=w.new_trip_id()))
    with s.transaction(TENANT) as w:
        w.add_trip(make_trip(trip_id=w.new_trip_id(), trip_type="ad_hoc"))


def _write_tenant(root, trips=()):
    root.mkdir(parents=True, exist_ok=True)
    payload = {
        "customers": [c.model_dump(mode="json") for c in toy_customers()],
        "drivers": [d.model_dump(mode="json") for d in toy_drivers()],
        "schedules": [s.model_dump(mode="json") for s in toy_schedules()],
        "trips": list(trips),
    }
    (root / f"{TENANT}.json").write_text(json.dumps(payload), encoding="utf-8")


def test_json_store_persists_committed_trips(tmp_path, make_trip):
    root = tmp_path / "tenants"
    _write_tenant(root)
    s = JsonFileTripStore(root)
    assert s.load_all() == 1

    with s.transaction(TENANT) as w:
        w.add_trip(make_trip(trip_id=w.new_trip_id()))

    reloaded = JsonFileTripStore(root)
    reloaded.load_all()
    (trip,) = reloaded.list_trips(TENANT)
    assert trip.trip_id == "T000001"
    assert trip.pickup_time.strftime("%H:%M") == "09:00"
    assert len(reloaded.list_customers(TENANT)) == 3
    # ids continue after the highest stored one
    with reloaded.transaction(TENANT) as w:
        assert w.new_trip_id() == "T000002"


def test_json_store_write_failure_rolls_back(tmp_path, make_trip, monkeypatch):
    root = tmp_path / "tenants"
    _write_tenant(root)
    s = JsonFileTripStore(root)
    s.load_all()

    def fail(*args, **kwargs):
        raise OSError("read-only file system")

    monkeypatch.setattr("tripsched.plan.store.os.replace", fail)
    with pytest.raises(StorageError):
        with s.transaction(TENANT) as w:
            w.add_trip(make_trip(trip_id="A"))
    assert s.list_trips(TENANT) == []


def test_json_store_missing_root(tmp_path):
    assert JsonFileTripStore(tmp_path / "absent").load_all() == 0
