from datetime import time, timedelta

import pytest

from tripsched.plan.errors import SchedulingInputError, StorageError
from tripsched.plan.models import Location, ScheduleEntry, Trip

from conftest import DAY_CENTRE, HOME_BOB, MONDAY, TENANT

SUNDAY = MONDAY + timedelta(days=6)


def _regular_slots(store):
    return [t.slot_key for t in store.list_trips(TENANT) if t.trip_type == "regular"]


def test_generates_one_trip_per_leg(engine, store):
    report = engine.generate(TENANT, MONDAY, SUNDAY)

    assert report.generated == 5
    assert report.skipped == 0 and report.conflicts == 0
    trips = store.list_trips(TENANT)
    monday = [t for t in trips if t.trip_date == MONDAY]
    assert sorted((t.customer_id, t.band) for t in monday) == [
        ("C1", "afternoon"), ("C1", "morning"), ("C2", "morning"), ("C3", "morning"),
    ]
    assert [t.trip_id for t in trips][:1] == ["T000001"]


def test_return_leg_runs_destination_to_pickup(engine, store):
    engine.generate(TENANT, MONDAY, MONDAY)
    ann = {t.band: t for t in store.list_trips(TENANT, customer_id="C1")}

    assert ann["morning"].destination.address == "Oak Day Centre"
    assert ann["afternoon"].pickup.address == "Oak Day Centre"
    assert ann["afternoon"].destination.address == "1 Mill Lane"
    assert ann["afternoon"].pickup_time == time(15, 0)
    # daily price split over the two legs
    assert ann["morning"].price == ann["afternoon"].price == 6.0


def test_wheelchair_flag_copied_from_customer(engine, store):
    engine.generate(TENANT, MONDAY, MONDAY)
    (cara,) = store.list_trips(TENANT, customer_id="C3")
    assert cara.requires_wheelchair


def test_rerun_without_overwrite_creates_nothing(engine, store):
    engine.generate(TENANT, MONDAY, SUNDAY)
    before = store.list_trips(TENANT)

    again = engine.generate(TENANT, MONDAY, SUNDAY)

    assert again.generated == 0
    assert again.skipped == 5
    assert {o.reason for o in again.outcomes} == {"duplicate"}
    assert store.list_trips(TENANT) == before


def test_no_duplicate_regular_slots(engine, store):
    engine.generate(TENANT, MONDAY, SUNDAY)
    engine.generate(TENANT, MONDAY, SUNDAY, overwrite=True)
    slots = _regular_slots(store)
    assert len(slots) == len(set(slots))


def test_empty_destination_generates_nothing(engine, store):
    tuesday = MONDAY + timedelta(days=1)
    report = engine.generate(TENANT, tuesday, tuesday)
    assert report.generated == 0
    assert report.outcomes == []
    assert store.list_trips(TENANT) == []


def test_cancelled_trip_is_not_recreated(engine, store):
    engine.generate(TENANT, MONDAY, MONDAY)
    bob = store.list_trips(TENANT, customer_id="C2")[0]
    with store.transaction(TENANT) as w:
        w.update_trip(bob.model_copy(update={"status": "cancelled"}))

    report = engine.generate(TENANT, MONDAY, MONDAY)
    assert report.generated == 0
    assert store.get_trip(TENANT, bob.trip_id).status == "cancelled"

    refreshed = engine.generate(TENANT, MONDAY, MONDAY, overwrite=True)
    bob_outcome = next(o for o in refreshed.outcomes if o.customer_id == "C2")
    assert bob_outcome.status == "skipped"
    assert bob_outcome.reason == "not_editable"


def test_overwrite_refreshes_scheduled_trip_in_place(engine, store):
    engine.generate(TENANT, MONDAY, MONDAY)
    bob = store.list_trips(TENANT, customer_id="C2")[0]
    with store.transaction(TENANT) as w:
        w.update_trip(bob.model_copy(update={"pickup_time": time(9, 45), "price": 99.0}))

    report = engine.generate(TENANT, MONDAY, MONDAY, overwrite=True)

    assert report.regenerated == 4
    assert report.generated == 0
    again = store.get_trip(TENANT, bob.trip_id)
    assert again.pickup_time == time(9, 0)
    assert again.price == 6.0
    assert len(store.list_trips(TENANT)) == 4


def test_preassigned_driver_time_conflict_is_reported(store, engine):
    # Bob's schedule pre-assigns Dee, who is already driving Cara at 09:00 to somewhere else
    schedules = store.list_schedule_entries(TENANT)
    for e in schedules:
        if e.customer_id == "C2" and e.weekday == "Mon":
            e.driver_id = "D1"
    store.load_tenant(
        TENANT,
        customers=store.list_customers(TENANT),
        drivers=store.list_drivers(TENANT, active_only=False),
        schedules=schedules,
    )
    with store.transaction(TENANT) as w:
        w.add_trip(Trip(trip_id=w.new_trip_id(), customer_id="C3", driver_id="D1", trip_date=MONDAY,
                        pickup_time=time(9, 0), band="morning", trip_type="ad_hoc",
                        destination=Location(address="Hospital")))

    report = engine.generate(TENANT, MONDAY, MONDAY)

    bob = next(o for o in report.outcomes if o.customer_id == "C2")
    assert bob.status == "conflict"
    assert bob.reason == "time_conflict"
    assert "Bob Jones on Monday 2024-01-08" in bob.message
    assert "Cara Lee" in bob.message
    assert store.list_trips(TENANT, customer_id="C2") == []
    assert report.generated == 3


def test_preassigned_driver_without_seats_is_reported(store, engine, make_driver):
    # three customers share a 09:00 run to the day centre, but the pre-assigned car has one seat
    schedules = [
        ScheduleEntry(customer_id=c, weekday="Mon", destination=DAY_CENTRE, pickup_time="09:00", driver_id="D9")
        for c in ("C1", "C2", "C3")
    ]
    drivers = [*store.list_drivers(TENANT, active_only=False), make_driver("D9", capacity=1, accessible=True)]
    store.load_tenant(TENANT, customers=store.list_customers(TENANT), drivers=drivers, schedules=schedules)

    report = engine.generate(TENANT, MONDAY, MONDAY)

    assert report.generated == 1
    assert report.conflicts == 2
    assert {o.reason for o in report.outcomes if o.status == "conflict"} == {"no_capacity"}
    engine.auto_assign(TENANT, MONDAY, MONDAY)
    morning = [t for t in store.list_trips(TENANT, driver_id="D9") if t.band == "morning"]
    assert len(morning) == 1


def test_preassigned_driver_without_accessible_vehicle_is_reported(store, engine):
    schedules = store.list_schedule_entries(TENANT)
    for e in schedules:
        if e.customer_id == "C3":
            e.driver_id = "D1"
    store.load_tenant(TENANT, customers=store.list_customers(TENANT),
                      drivers=store.list_drivers(TENANT, active_only=False), schedules=schedules)

    report = engine.generate(TENANT, MONDAY, MONDAY)

    cara = next(o for o in report.outcomes if o.customer_id == "C3")
    assert cara.status == "conflict"
    assert cara.reason == "no_accessible_vehicle"
    assert cara.message.startswith("Cara Lee on Monday 2024-01-08: ")
    assert store.list_trips(TENANT, customer_id="C3") == []


def test_return_in_same_band_is_a_conflict(store, engine):
    entry = ScheduleEntry(customer_id="C2", weekday="Mon", pickup=HOME_BOB, destination=DAY_CENTRE,
                          pickup_time="08:00", return_time="11:00")
    others = [e for e in store.list_schedule_entries(TENANT) if e.customer_id != "C2"]
    store.load_tenant(TENANT, customers=store.list_customers(TENANT),
                      drivers=store.list_drivers(TENANT, active_only=False), schedules=[*others, entry])

    report = engine.generate(TENANT, MONDAY, MONDAY)
    bob = [o for o in report.outcomes if o.customer_id == "C2"]
    assert [o.status for o in bob] == ["generated", "conflict"]
    assert bob[1].reason == "same_band"


def test_inactive_customer_is_ignored(store, engine):
    customers = store.list_customers(TENANT)
    for c in customers:
        if c.customer_id == "C3":
            c.active = False
    store.load_tenant(TENANT, customers=customers, drivers=store.list_drivers(TENANT, active_only=False),
                      schedules=store.list_schedule_entries(TENANT))
    engine.generate(TENANT, MONDAY, MONDAY)
    assert store.list_trips(TENANT, customer_id="C3") == []


def test_writer_rejects_duplicate_regular_slot(store, make_trip):
    with store.transaction(TENANT) as w:
        w.add_trip(make_trip(trip_id="A1"))
    with pytest.raises(StorageError):
        with store.transaction(TENANT) as w:
            w.add_trip(make_trip(trip_id="A2"))
    assert [t.trip_id for t in store.list_trips(TENANT)] == ["A1"]


def test_schedule_entry_defaults_pickup_time():
    e = ScheduleEntry(customer_id="C9", weekday="friday", destination=Location(address="Pool"), pickup_time="")
    assert e.weekday == "Fri"
    assert e.pickup_time == time(9, 0)
    assert [leg.band for leg in e.legs()] == ["morning"]
    assert ScheduleEntry(customer_id="C9", weekday="Fri").legs() == []


def test_generate_rejects_inverted_range(engine):
    with pytest.raises(SchedulingInputError):
        engine.generate(TENANT, MONDAY, MONDAY - timedelta(days=1))
    with pytest.raises(SchedulingInputError):
        engine.generate(TENANT, MONDAY, MONDAY + timedelta(days=90))
