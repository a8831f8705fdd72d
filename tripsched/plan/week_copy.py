from __future__ import annotations
import logging
from collections import defaultdict
from datetime import date, timedelta
from typing import Dict, List, Optional, Sequence

from .config import EngineSettings
from .conflicts import check_assignment, with_customer_needs
from .errors import SchedulingInputError
from .generator import describe
from .models import CopyOutcome, CopyReport, Customer, Driver, Trip
from .store import TripWriter
from .trip_index import slot_index, trip_order_key
from ..timeparse import week_bounds

logger = logging.getLogger(__name__)


def copy_week_trips(
    customers: Dict[str, Customer],
    drivers: Dict[str, Driver],
    trips: Sequence[Trip],
    writer: TripWriter,
    source_start: date,
    target_start: date,
    include_cancelled: bool = False,
    settings: Optional[EngineSettings] = None,
) -> CopyReport:
    """
    Roll a week of trips forward (or back) to the same weekdays of another week.

    ``trips`` must cover both the source and the target week. Copies keep customer,
    driver, vehicle, time, locations, price and type; status goes back to scheduled.
    A (customer, date, band) already holding any trip in the target week is skipped.
    A kept driver who can't take the copy in the target week is dropped and the copy
    stays unassigned.
    """
    settings = settings or EngineSettings()
    offset = (target_start - source_start).days
    if offset == 0:
        raise SchedulingInputError("target week must differ from source week")

    source_start, source_end = week_bounds(source_start)
    target_start, target_end = week_bounds(target_start)
    shift = timedelta(days=offset)

    source = sorted((t for t in trips if source_start <= t.trip_date <= source_end), key=trip_order_key)
    target = [t for t in trips if target_start <= t.trip_date <= target_end]
    taken = slot_index(target, trip_type=None)
    sheets: Dict[tuple, List[Trip]] = defaultdict(list)
    for t in target:
        if t.driver_id and t.is_active:
            sheets[(t.driver_id, t.trip_date)].append(t)

    outcomes: List[CopyOutcome] = []
    for trip in source:
        if trip.status == "cancelled" and not include_cancelled:
            continue
        customer = customers.get(trip.customer_id)
        name = customer.name if customer else trip.customer_id
        new_date = trip.trip_date + shift
        who = describe(customer, new_date) if customer else f"{name} on {new_date.isoformat()}"
        base = dict(source_trip_id=trip.trip_id, customer_id=trip.customer_id, customer_name=name,
                    source_date=trip.trip_date, target_date=new_date)

        existing = taken.get((trip.customer_id, new_date, trip.band))
        if existing is not None:
            outcomes.append(CopyOutcome(**base, status="skipped", reason="duplicate",
                                        message=f"{who}: {trip.band} trip {existing.trip_id} already exists"))
            continue

        copy = with_customer_needs(trip, customer).model_copy(update={"trip_date": new_date, "status": "scheduled"})
        status, reason, note = "copied", None, ""
        if copy.driver_id:
            driver = drivers.get(copy.driver_id)
            if driver is None:
                reason, note = "driver_unavailable", f"driver {copy.driver_id} no longer exists"
            else:
                verdict = check_assignment(driver, copy, sheets.get((driver.driver_id, new_date), []), settings)
                if not verdict.feasible:
                    reason, note = verdict.reason, verdict.message
            if reason:
                status = "copied_unassigned"
                copy = copy.model_copy(update={"driver_id": None, "vehicle_id": None})

        copy = copy.model_copy(update={"trip_id": writer.new_trip_id()})
        writer.add_trip(copy)
        taken[copy.slot_key] = copy
        if copy.driver_id:
            sheets[(copy.driver_id, new_date)].append(copy)

        message = f"{who}: copied from {trip.trip_date.isoformat()}"
        if note:
            message += f", left unassigned ({note})"
        outcomes.append(CopyOutcome(**base, status=status, new_trip_id=copy.trip_id, reason=reason, message=message))

    report = CopyReport(
        source_start=source_start, source_end=source_end,
        target_start=target_start, target_end=target_end,
        copied=sum(1 for o in outcomes if o.status != "skipped"),
        skipped=sum(1 for o in outcomes if o.status == "skipped"),
        outcomes=outcomes,
    )
    logger.info("Copied %d trips from week of %s to week of %s (%d skipped)",
                report.copied, source_start, target_start, report.skipped)
    return report
