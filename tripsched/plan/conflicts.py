from __future__ import annotations
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple

from .config import EngineSettings
from .models import ConflictOut, Customer, Driver, Feasibility, Trip
from ..timeparse import minutes_of

# Feasibility reason codes, most informative first
NO_CAPACITY = "no_capacity"
DRIVER_DAY_LIMIT = "driver_day_limit"
TIME_CONFLICT = "time_conflict"
NO_ACCESSIBLE_VEHICLE = "no_accessible_vehicle"
DRIVER_UNAVAILABLE = "driver_unavailable"
NO_ACTIVE_DRIVERS = "no_active_drivers"

REASON_RANK = {
    NO_CAPACITY: 5,
    DRIVER_DAY_LIMIT: 4,
    TIME_CONFLICT: 3,
    NO_ACCESSIBLE_VEHICLE: 2,
    DRIVER_UNAVAILABLE: 1,
}


@dataclass(frozen=True)
class Interval:
    """Half-open [start, end) in minutes after midnight."""

    start: int
    end: int

    def overlaps(self, other: "Interval") -> bool:
        return self.start < other.end and other.start < self.end


def occupancy(trip: Trip, settings: EngineSettings) -> Interval:
    start = minutes_of(trip.pickup_time)
    duration = trip.estimated_minutes if trip.estimated_minutes is not None else settings.default_trip_minutes
    return Interval(start, start + int(duration) + int(settings.turnaround_buffer_minutes))


def _same_place(a: Trip, b: Trip) -> bool:
    return a.destination.label().strip().lower() == b.destination.label().strip().lower()


def is_shared_ride(a: Trip, b: Trip) -> bool:
    """Same pickup time and same destination: passengers travel together, no clash."""
    return a.pickup_time == b.pickup_time and _same_place(a, b)


def _same_day_others(trip: Trip, trips: Iterable[Trip]) -> List[Trip]:
    return [
        t for t in trips
        if t.trip_id != trip.trip_id and t.trip_date == trip.trip_date and t.is_active
    ]


def overlapping_trips(trip: Trip, others: Iterable[Trip], settings: EngineSettings) -> List[Trip]:
    mine = occupancy(trip, settings)
    return [
        o for o in _same_day_others(trip, others)
        if not is_shared_ride(trip, o) and mine.overlaps(occupancy(o, settings))
    ]


def day_limit(driver: Driver, settings: EngineSettings) -> int:
    """0 means unlimited."""
    if driver.max_daily_trips is not None:
        return int(driver.max_daily_trips)
    return int(settings.max_daily_trips)


def vehicle_capacity(driver: Driver) -> int:
    return int(driver.vehicle.capacity) if driver.vehicle is not None else 0


def with_customer_needs(trip: Trip, customer: Optional[Customer]) -> Trip:
    """Trip with the customer's current accessibility need merged in."""
    if customer is not None and customer.requires_wheelchair and not trip.requires_wheelchair:
        return trip.model_copy(update={"requires_wheelchair": True})
    return trip


def _fmt_time(trip: Trip) -> str:
    return trip.pickup_time.strftime("%H:%M")


def _unavailable_reason(driver: Driver, trip: Trip) -> Optional[str]:
    if not driver.active:
        return f"{driver.name} is not an active driver"
    for period in driver.leave:
        if period.covers(trip.trip_date):
            return f"{driver.name} is on leave from {period.start_date} to {period.end_date}"
    return None


def check_assignment(
    driver: Driver,
    trip: Trip,
    driver_trips: Sequence[Trip],
    settings: Optional[EngineSettings] = None,
) -> Feasibility:
    """
    Can ``driver`` take ``trip`` given the trips already on their sheet?

    Checks run in a fixed order and stop at the first failure:
    availability, accessibility, time overlap, band seat capacity, daily trip limit.
    ``driver_trips`` may span several days; only active trips on the trip's date count.
    Never mutates its inputs.
    """
    settings = settings or EngineSettings()

    unavailable = _unavailable_reason(driver, trip)
    if unavailable:
        return Feasibility(feasible=False, reason=DRIVER_UNAVAILABLE, message=unavailable)

    if trip.requires_wheelchair and not (driver.vehicle and driver.vehicle.wheelchair_accessible):
        return Feasibility(
            feasible=False,
            reason=NO_ACCESSIBLE_VEHICLE,
            message=f"{driver.name}'s vehicle is not wheelchair accessible",
        )

    same_day = _same_day_others(trip, driver_trips)

    clashes = overlapping_trips(trip, same_day, settings)
    if clashes:
        first = clashes[0]
        return Feasibility(
            feasible=False,
            reason=TIME_CONFLICT,
            message=f"{driver.name} already has trip {first.trip_id} at {_fmt_time(first)}",
        )

    capacity = vehicle_capacity(driver)
    in_band = sum(1 for t in same_day if t.band == trip.band)
    if in_band >= capacity:
        return Feasibility(
            feasible=False,
            reason=NO_CAPACITY,
            message=f"{driver.name} has {in_band}/{capacity} seats taken in the {trip.band}",
        )

    limit = day_limit(driver, settings)
    if limit and len(same_day) >= limit:
        return Feasibility(
            feasible=False,
            reason=DRIVER_DAY_LIMIT,
            message=f"{driver.name} already has {len(same_day)} trips that day (limit {limit})",
        )

    return Feasibility(feasible=True)


def most_informative(reasons: Iterable[str]) -> Optional[str]:
    ranked = [r for r in reasons if r in REASON_RANK]
    if not ranked:
        return None
    return max(ranked, key=lambda r: REASON_RANK[r])


def find_conflicts(
    trip: Trip,
    driver: Optional[Driver],
    driver_trips: Sequence[Trip],
    customer_trips: Sequence[Trip],
    settings: Optional[EngineSettings] = None,
) -> List[ConflictOut]:
    """
    Every rule ``trip`` would break, not just the first one, for the pre-save conflict check.
    Driver rules apply only when a driver is given; customer overlap applies to the customer's other trips.
    """
    settings = settings or EngineSettings()
    out: List[ConflictOut] = []

    if driver is not None:
        unavailable = _unavailable_reason(driver, trip)
        if unavailable:
            out.append(ConflictOut(type=DRIVER_UNAVAILABLE, severity="critical", message=unavailable))

        if driver.vehicle is None:
            out.append(ConflictOut(type="no_vehicle", severity="warning", message=f"{driver.name} has no vehicle assigned"))
        elif trip.requires_wheelchair and not driver.vehicle.wheelchair_accessible:
            out.append(ConflictOut(
                type=NO_ACCESSIBLE_VEHICLE,
                severity="critical",
                message=f"{driver.name}'s vehicle ({driver.vehicle.registration or driver.vehicle.vehicle_id}) is not wheelchair accessible",
            ))

        same_day = _same_day_others(trip, driver_trips)
        clashes = overlapping_trips(trip, same_day, settings)
        if clashes:
            out.append(ConflictOut(
                type=TIME_CONFLICT,
                severity="critical",
                message=f"{driver.name} has {len(clashes)} overlapping trip(s) at this time",
                trip_ids=[t.trip_id for t in clashes],
            ))

        if driver.vehicle is not None:
            capacity = vehicle_capacity(driver)
            band_trips = [t for t in same_day if t.band == trip.band]
            if len(band_trips) >= capacity:
                out.append(ConflictOut(
                    type=NO_CAPACITY,
                    severity="critical",
                    message=f"{driver.name} has {len(band_trips)}/{capacity} seats taken in the {trip.band}",
                    trip_ids=[t.trip_id for t in band_trips],
                ))

        limit = day_limit(driver, settings)
        if limit and len(same_day) >= limit:
            out.append(ConflictOut(
                type=DRIVER_DAY_LIMIT,
                severity="warning",
                message=f"{driver.name} already has {len(same_day)} trips that day (limit {limit})",
                trip_ids=[t.trip_id for t in same_day],
            ))

    # A customer can't be on two vehicles at once, shared ride or not
    mine = occupancy(trip, settings)
    customer_clashes = [
        t for t in _same_day_others(trip, customer_trips)
        if t.customer_id == trip.customer_id and mine.overlaps(occupancy(t, settings))
    ]
    if customer_clashes:
        out.append(ConflictOut(
            type="customer_overlap",
            severity="critical",
            message=f"Customer has {len(customer_clashes)} overlapping trip(s)",
            trip_ids=[t.trip_id for t in customer_clashes],
        ))

    return out


def conflict_counts(conflicts: Sequence[ConflictOut]) -> Tuple[int, int]:
    critical = sum(1 for c in conflicts if c.severity == "critical")
    return critical, len(conflicts) - critical
