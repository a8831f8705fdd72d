from datetime import time

from tripsched.plan.models import Location
from tripsched.schedule_schema import coerce_id, normalize_weekly_schedule


def test_normalize_console_payload_to_entries():
    home = Location(address="1 Mill Lane", lat=52.5, lon=-1.9)
    payload = {
        "wednesday": {"destination": "Elm Surgery", "pickupTime": "10:30", "dailyPrice": "6.50"},
        "monday": {
            "destination": {"address": "Oak Day Centre", "latitude": 52.54, "lng": -1.88},
            "pickupTime": "0900",
            "returnTime": "15:00",
            "morningDriverId": 12.0,
            "afternoonDriverId": "D2",
        },
    }

    entries = normalize_weekly_schedule("C1", payload, home=home)

    assert [e.weekday for e in entries] == ["Mon", "Wed"]
    mon, wed = entries
    assert mon.pickup == home
    assert mon.destination.lat == 52.54 and mon.destination.lon == -1.88
    assert mon.pickup_time == time(9, 0)
    assert mon.return_time == time(15, 0)
    assert mon.driver_id == "12"
    assert mon.return_driver_id == "D2"
    assert wed.daily_price == 6.5
    assert wed.return_time is None


def test_disabled_and_unknown_days():
    payload = {
        "tue": {"destination": "Library", "enabled": "false"},
        "funday": {"destination": "Beach"},
        "Thu": "not a dict",
    }

    entries = normalize_weekly_schedule("C2", payload)

    assert len(entries) == 1
    assert entries[0].weekday == "Tue"
    assert entries[0].destination is None
    assert entries[0].legs() == []


def test_bad_times_fall_back_to_default_pickup():
    (entry,) = normalize_weekly_schedule("C3", {"fri": {"destination": "Pool", "pickupTime": "99:99"}})
    assert entry.pickup_time == time(9, 0)


def test_non_dict_payload_is_empty():
    assert normalize_weekly_schedule("C4", None) == []
    assert normalize_weekly_schedule("C4", ["mon"]) == []


def test_coerce_id():
    assert coerce_id(" 42.0 ") == "42"
    assert coerce_id("nan") is None
    assert coerce_id("") is None
    assert coerce_id("D-7") == "D-7"
