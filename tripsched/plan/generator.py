from __future__ import annotations
import logging
from collections import defaultdict
from datetime import date
from typing import Dict, List, Optional, Sequence

from .config import EngineSettings
from .conflicts import TIME_CONFLICT, check_assignment, overlapping_trips, with_customer_needs
from .models import Customer, Driver, GenerationOutcome, GenerationReport, Location, ScheduleEntry, ScheduleLeg, Trip
from .store import TripWriter
from .trip_index import slot_index
from ..timeparse import daterange, weekday_of, weekday_name

logger = logging.getLogger(__name__)


def describe(customer: Customer, d: date) -> str:
    return f"{customer.name} on {weekday_name(d)} {d.isoformat()}"


def _leg_locations(entry: ScheduleEntry, customer: Customer, leg: ScheduleLeg) -> tuple[Location, Location]:
    origin = entry.pickup or customer.address
    destination = entry.destination or Location()
    if leg.leg == "return":
        return destination, origin
    return origin, destination


def _leg_price(entry: ScheduleEntry, n_legs: int) -> float:
    # daily price covers the whole day; split it across the legs actually travelled
    return round(float(entry.daily_price) / max(1, n_legs), 2)


class _GenerationRun:
    """Running state for one generate() call: the trip sheet as it grows, plus the report."""

    def __init__(self, customers, drivers, existing, writer, overwrite, settings):
        self.customers: Dict[str, Customer] = customers
        self.drivers: Dict[str, Driver] = drivers
        self.writer: TripWriter = writer
        self.overwrite = overwrite
        self.settings: EngineSettings = settings
        self.slots = slot_index(existing)
        self.by_driver_day: Dict[tuple, Dict[str, Trip]] = defaultdict(dict)
        for t in existing:
            if t.driver_id:
                self.by_driver_day[(t.driver_id, t.trip_date)][t.trip_id] = t
        self.outcomes: List[GenerationOutcome] = []

    def record(self, customer: Customer, d: date, band: str, status: str, **kw) -> None:
        out = GenerationOutcome(
            customer_id=customer.customer_id, customer_name=customer.name,
            trip_date=d, band=band, status=status, **kw,
        )
        logger.debug("generate %s %s %s -> %s %s", customer.customer_id, d, band, status, out.reason or "")
        self.outcomes.append(out)

    def _track(self, trip: Trip, previous_driver: Optional[str] = None) -> None:
        if previous_driver:
            self.by_driver_day[(previous_driver, trip.trip_date)].pop(trip.trip_id, None)
        if trip.driver_id:
            self.by_driver_day[(trip.driver_id, trip.trip_date)][trip.trip_id] = trip
        self.slots[trip.slot_key] = trip

    def _driver_problem(self, candidate: Trip, customer: Customer, d: date) -> Optional[tuple[str, str]]:
        if not candidate.driver_id:
            return None
        driver = self.drivers.get(candidate.driver_id)
        if driver is None:
            return "unknown_driver", f"{describe(customer, d)}: pre-assigned driver {candidate.driver_id} does not exist"
        sheet = list(self.by_driver_day.get((driver.driver_id, d), {}).values())
        verdict = check_assignment(driver, with_customer_needs(candidate, customer), sheet, self.settings)
        if verdict.feasible:
            return None
        others = [t for t in sheet if t.customer_id != customer.customer_id]
        clashes = overlapping_trips(candidate, others, self.settings) if verdict.reason == TIME_CONFLICT else []
        if clashes:
            other = clashes[0]
            other_name = self.customers[other.customer_id].name if other.customer_id in self.customers else other.customer_id
            return TIME_CONFLICT, (
                f"{describe(customer, d)}: {driver.name} is already driving {other_name} "
                f"at {other.pickup_time.strftime('%H:%M')}"
            )
        return verdict.reason, f"{describe(customer, d)}: {verdict.message}"

    def _build(self, trip_id: str, entry: ScheduleEntry, customer: Customer, d: date, leg: ScheduleLeg, n_legs: int, base: Optional[Trip] = None) -> Trip:
        pickup, destination = _leg_locations(entry, customer, leg)
        driver = self.drivers.get(leg.driver_id) if leg.driver_id else None
        fields = dict(
            trip_id=trip_id,
            customer_id=customer.customer_id,
            driver_id=leg.driver_id,
            vehicle_id=driver.vehicle.vehicle_id if driver and driver.vehicle else None,
            trip_date=d,
            pickup_time=leg.pickup_time,
            band=leg.band,
            trip_type="regular",
            pickup=pickup,
            destination=destination,
            price=_leg_price(entry, n_legs),
            estimated_minutes=entry.estimated_minutes,
            requires_wheelchair=customer.requires_wheelchair,
        )
        if base is not None:
            return base.model_copy(update=fields, deep=True)
        return Trip(**fields)

    def leg(self, entry: ScheduleEntry, customer: Customer, d: date, leg: ScheduleLeg, n_legs: int) -> None:
        key = (customer.customer_id, d, leg.band)
        current = self.slots.get(key)

        if current is not None and not self.overwrite:
            self.record(customer, d, leg.band, "skipped", trip_id=current.trip_id, reason="duplicate",
                        message=f"{describe(customer, d)}: {leg.band} trip already exists")
            return
        if current is not None and current.status != "scheduled":
            self.record(customer, d, leg.band, "skipped", trip_id=current.trip_id, reason="not_editable",
                        message=f"{describe(customer, d)}: existing {leg.band} trip is {current.status}")
            return

        trip_id = current.trip_id if current is not None else "(new)"
        candidate = self._build(trip_id, entry, customer, d, leg, n_legs, base=current)
        problem = self._driver_problem(candidate, customer, d)
        if problem:
            reason, message = problem
            self.record(customer, d, leg.band, "conflict", reason=reason, message=message)
            return

        if current is not None:
            self.writer.update_trip(candidate)
            self._track(candidate, previous_driver=current.driver_id)
            self.record(customer, d, leg.band, "regenerated", trip_id=candidate.trip_id,
                        message=f"{describe(customer, d)}: {leg.band} trip refreshed from schedule")
            return

        candidate = candidate.model_copy(update={"trip_id": self.writer.new_trip_id()})
        self.writer.add_trip(candidate)
        self._track(candidate)
        self.record(customer, d, leg.band, "generated", trip_id=candidate.trip_id,
                    message=f"{describe(customer, d)}: {leg.leg} trip at {leg.pickup_time.strftime('%H:%M')}")

    def report(self, start: date, end: date) -> GenerationReport:
        counts = defaultdict(int)
        for o in self.outcomes:
            counts[o.status] += 1
        return GenerationReport(
            start_date=start, end_date=end, overwrite=self.overwrite,
            generated=counts["generated"], regenerated=counts["regenerated"],
            skipped=counts["skipped"], conflicts=counts["conflict"],
            outcomes=self.outcomes,
        )


def generate_trips(
    customers: Dict[str, Customer],
    drivers: Dict[str, Driver],
    schedules: Sequence[ScheduleEntry],
    existing: Sequence[Trip],
    writer: TripWriter,
    start: date,
    end: date,
    overwrite: bool = False,
    settings: Optional[EngineSettings] = None,
) -> GenerationReport:
    """
    Expand weekly schedule entries into dated regular trips for [start, end].

    One trip per leg (outbound, plus return when the entry has a return time), keyed by
    (customer, date, band). Existing trips, cancelled ones included, are never duplicated:
    they are skipped, or refreshed in place when ``overwrite`` is set and they are still
    ``scheduled``. Per-leg problems become outcomes; nothing here raises for them.
    """
    settings = settings or EngineSettings()
    run = _GenerationRun(customers, drivers, existing, writer, overwrite, settings)

    by_weekday: Dict[str, List[ScheduleEntry]] = defaultdict(list)
    for e in schedules:
        by_weekday[e.weekday].append(e)

    for d in daterange(start, end):
        for entry in sorted(by_weekday.get(weekday_of(d), []), key=lambda e: e.customer_id):
            customer = customers.get(entry.customer_id)
            if customer is None or not customer.active or not entry.is_travel_day:
                continue
            legs = entry.legs(settings.band_split_hour)
            seen_bands = set()
            for leg in legs:
                if leg.band in seen_bands:
                    run.record(customer, d, leg.band, "conflict", reason="same_band",
                               message=f"{describe(customer, d)}: outbound and return both fall in the {leg.band}")
                    continue
                seen_bands.add(leg.band)
                run.leg(entry, customer, d, leg, len(legs))

    report = run.report(start, end)
    logger.info(
        "Generated %d, regenerated %d, skipped %d, conflicts %d for %s..%s",
        report.generated, report.regenerated, report.skipped, report.conflicts, start, end,
    )
    return report
