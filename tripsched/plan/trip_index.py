from __future__ import annotations
from collections import defaultdict
from datetime import date
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .models import Customer, ScheduleEntry, Trip, UnassignedCustomer
from ..timeparse import MORNING, AFTERNOON, daterange, weekday_of, weekday_name

# Pure group-by queries over trip lists. Nothing here is cached between calls.

DriverDay = Tuple[str, date]


def trip_order_key(t: Trip) -> tuple:
    return (t.trip_date, t.pickup_time, t.customer_id, t.trip_id)


def group_by_driver_day(trips: Iterable[Trip]) -> Dict[DriverDay, List[Trip]]:
    """Active, assigned trips keyed by (driver, date), each list ordered by pickup time then id."""
    out: Dict[DriverDay, List[Trip]] = defaultdict(list)
    for t in trips:
        if t.driver_id and t.is_active:
            out[(t.driver_id, t.trip_date)].append(t)
    for key in out:
        out[key].sort(key=lambda t: (t.pickup_time, t.trip_id))
    return dict(out)


def slot_index(trips: Iterable[Trip], trip_type: Optional[str] = "regular") -> Dict[tuple, Trip]:
    """
    (customer, date, band) -> trip. Includes cancelled trips.
    With trip_type=None every trip type is indexed; the first by id wins.
    """
    out: Dict[tuple, Trip] = {}
    for t in sorted(trips, key=lambda t: t.trip_id):
        if trip_type is not None and t.trip_type != trip_type:
            continue
        out.setdefault(t.slot_key, t)
    return out


def unassigned_customers(
    schedules: Sequence[ScheduleEntry],
    customers: Dict[str, Customer],
    trips: Iterable[Trip],
    start: date,
    end: date,
    split_hour: int = 12,
) -> List[UnassignedCustomer]:
    """
    Customers who travel on a date but are missing a driver for at least one of the
    bands their schedule expects (no trip yet, or a trip without a driver).
    Cancelled trips count as covered.
    """
    covered: Dict[tuple, bool] = {}
    for t in trips:
        if t.trip_date < start or t.trip_date > end:
            continue
        key = t.slot_key
        done = (not t.is_active) or bool(t.driver_id)
        covered[key] = covered.get(key, False) or done

    by_weekday: Dict[str, List[ScheduleEntry]] = defaultdict(list)
    for e in schedules:
        by_weekday[e.weekday].append(e)

    out: List[UnassignedCustomer] = []
    for d in daterange(start, end):
        for e in sorted(by_weekday.get(weekday_of(d), []), key=lambda e: e.customer_id):
            customer = customers.get(e.customer_id)
            if customer is None or not customer.active:
                continue
            bands = {leg.band for leg in e.legs(split_hour)}
            missing = [b for b in (MORNING, AFTERNOON) if b in bands and not covered.get((e.customer_id, d, b), False)]
            if missing:
                out.append(UnassignedCustomer(
                    customer_id=customer.customer_id,
                    customer_name=customer.name,
                    trip_date=d,
                    weekday=weekday_name(d),
                    missing_bands=missing,
                ))
    return out
