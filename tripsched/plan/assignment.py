from __future__ import annotations
import logging
from collections import Counter, defaultdict
from datetime import date
from typing import Dict, List, Optional, Sequence

from .config import EngineSettings
from .conflicts import NO_ACTIVE_DRIVERS, check_assignment, most_informative, with_customer_needs
from .generator import describe
from .models import AssignmentOutcome, AssignmentReport, Customer, Driver, Trip
from .store import TripWriter
from ..timeparse import MORNING

logger = logging.getLogger(__name__)

FAILURE_TEXT = {
    "no_capacity": "no driver with available capacity",
    "driver_day_limit": "every driver has reached their daily trip limit",
    "time_conflict": "every driver is busy at that time",
    "no_accessible_vehicle": "no wheelchair accessible vehicle available",
    "driver_unavailable": "no driver available that day",
    NO_ACTIVE_DRIVERS: "there are no active drivers",
}


def assignment_order_key(t: Trip) -> tuple:
    """Date, then band (morning first), then pickup time, customer and trip id."""
    return (t.trip_date, 0 if t.band == MORNING else 1, t.pickup_time, t.customer_id, t.trip_id)


def is_assignable(t: Trip) -> bool:
    return t.driver_id is None and t.status == "scheduled"


def rank_candidates(
    drivers: Sequence[Driver],
    trip: Trip,
    customer: Optional[Customer],
    day_counts: Dict[tuple, int],
    prefer_regular: bool = True,
) -> List[Driver]:
    regular = customer.regular_driver_id if (customer and prefer_regular) else None

    def key(d: Driver):
        return (0 if d.driver_id == regular else 1, day_counts.get((d.driver_id, trip.trip_date), 0), d.driver_id)

    return sorted(drivers, key=key)


def auto_assign_trips(
    drivers: Sequence[Driver],
    customers: Dict[str, Customer],
    trips: Sequence[Trip],
    writer: TripWriter,
    start: date,
    end: date,
    settings: Optional[EngineSettings] = None,
) -> AssignmentReport:
    """
    Greedy single pass over the unassigned scheduled trips in ``trips``.

    ``trips`` should hold every trip in the range so the running driver sheets start
    from what is already booked. Each pending trip is tried once against the ranked
    candidates; the first feasible driver takes it and the sheets are updated before
    the next trip is looked at.
    """
    settings = settings or EngineSettings()
    roster = [d for d in drivers if d.active]

    sheets: Dict[tuple, List[Trip]] = defaultdict(list)
    for t in trips:
        if t.driver_id and t.is_active:
            sheets[(t.driver_id, t.trip_date)].append(t)
    day_counts: Dict[tuple, int] = {k: len(v) for k, v in sheets.items()}

    pending = sorted((t for t in trips if is_assignable(t) and start <= t.trip_date <= end), key=assignment_order_key)
    outcomes: List[AssignmentOutcome] = []

    for trip in pending:
        customer = customers.get(trip.customer_id)
        trip = with_customer_needs(trip, customer)
        name = customer.name if customer else trip.customer_id
        base = dict(trip_id=trip.trip_id, customer_id=trip.customer_id, customer_name=name,
                    trip_date=trip.trip_date, band=trip.band)
        who = describe(customer, trip.trip_date) if customer else f"{name} on {trip.trip_date.isoformat()}"

        if not roster:
            outcomes.append(AssignmentOutcome(**base, status="failed", reason=NO_ACTIVE_DRIVERS,
                                              message=f"{who}: {FAILURE_TEXT[NO_ACTIVE_DRIVERS]}"))
            continue

        reasons: List[str] = []
        chosen: Optional[Driver] = None
        for driver in rank_candidates(roster, trip, customer, day_counts, settings.prefer_regular_driver):
            verdict = check_assignment(driver, trip, sheets.get((driver.driver_id, trip.trip_date), []), settings)
            if verdict.feasible:
                chosen = driver
                break
            reasons.append(verdict.reason)
            logger.debug("%s: %s rejected (%s)", trip.trip_id, driver.driver_id, verdict.reason)

        if chosen is None:
            reason = most_informative(reasons) or "driver_unavailable"
            outcomes.append(AssignmentOutcome(**base, status="failed", reason=reason,
                                              message=f"{who}: {FAILURE_TEXT[reason]}"))
            continue

        vehicle_id = chosen.vehicle.vehicle_id if chosen.vehicle else None
        assigned = trip.model_copy(update={"driver_id": chosen.driver_id, "vehicle_id": vehicle_id})
        writer.update_trip(assigned)
        sheets[(chosen.driver_id, trip.trip_date)].append(assigned)
        day_counts[(chosen.driver_id, trip.trip_date)] = day_counts.get((chosen.driver_id, trip.trip_date), 0) + 1
        outcomes.append(AssignmentOutcome(**base, status="assigned", driver_id=chosen.driver_id, vehicle_id=vehicle_id,
                                          message=f"{who}: assigned to {chosen.name}"))

    failures = Counter(o.reason for o in outcomes if o.status == "failed")
    report = AssignmentReport(
        start_date=start,
        end_date=end,
        assigned=sum(1 for o in outcomes if o.status == "assigned"),
        failed=sum(failures.values()),
        outcomes=outcomes,
        failures_by_reason=dict(failures),
    )
    logger.info("Auto-assigned %d of %d trips for %s..%s (%s)", report.assigned, len(pending), start, end,
                report.failures_by_reason or "no failures")
    return report
