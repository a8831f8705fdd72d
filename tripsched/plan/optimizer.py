from __future__ import annotations
import logging
from datetime import date
from typing import Dict, List, Optional, Sequence, Tuple, Union

import numpy as np

from .config import EngineSettings
from .distance import DistanceMatrix, DistanceSource, HaversineDistanceSource
from .errors import DistanceSourceError, SchedulingInputError
from .geo import missing_coordinates
from .models import (
    ApproximateResult, CommitReport, DriverDayScore, ManualResult, PreciseResult, Trip,
)
from .store import TripWriter
from ..timeparse import band_for, to_time

logger = logging.getLogger(__name__)

OptimizationOutcome = Union[PreciseResult, ApproximateResult, ManualResult]


# -----------------------------
# Tour helpers (pure numpy)
# -----------------------------

def route_cost(order: Sequence[int], cost: np.ndarray) -> float:
    """Sum of cost[a, b] over consecutive stops of ``order``."""
    if len(order) < 2:
        return 0.0
    idx = np.asarray(order, dtype=int)
    return float(cost[idx[:-1], idx[1:]].sum())


def nearest_neighbor(cost: np.ndarray, start: int = 0) -> List[int]:
    """
    Greedy tour over a square cost matrix. From each stop go to the cheapest unvisited one;
    ties go to the lowest index (np.argmin returns the first minimum).
    """
    n = cost.shape[0]
    visited = np.zeros(n, dtype=bool)
    order = [start]
    visited[start] = True
    current = start
    for _ in range(n - 1):
        row = np.where(visited, np.inf, cost[current])
        nxt = int(np.argmin(row))
        order.append(nxt)
        visited[nxt] = True
        current = nxt
    return order


def _totals(order: Sequence[int], m: DistanceMatrix) -> Tuple[float, float]:
    return round(route_cost(order, m.miles), 2), round(route_cost(order, m.minutes), 1)


def day_route(trips: Sequence[Trip]) -> List[Trip]:
    """A driver-day as the optimizer sees it: active trips by pickup time then id."""
    return sorted((t for t in trips if t.is_active), key=lambda t: (t.pickup_time, t.trip_id))


# -----------------------------
# Optimize
# -----------------------------

def _tour(trips: Sequence[Trip], m: DistanceMatrix, weight: np.ndarray) -> Tuple[List[int], Dict[str, float]]:
    original = list(range(len(trips)))
    start = 0  # trips arrive sorted, index 0 has the earliest pickup
    order = nearest_neighbor(weight, start)
    if route_cost(order, weight) > route_cost(original, weight):
        # greedy tour came out worse than the booked order
        order = original
    miles_before, minutes_before = _totals(original, m)
    miles_after, minutes_after = _totals(order, m)
    return order, dict(
        distance_before_miles=miles_before,
        distance_after_miles=miles_after,
        time_before_minutes=minutes_before,
        time_after_minutes=minutes_after,
    )


def optimize_route(
    driver_id: str,
    trip_date: date,
    trips: Sequence[Trip],
    source: Optional[DistanceSource] = None,
    settings: Optional[EngineSettings] = None,
) -> OptimizationOutcome:
    """
    Propose a stop order for one driver-day. Never writes.

    precise: ``source`` answers; tour by travel minutes.
    approximate: ``source`` missing or failing, every stop has coordinates; tour by road-estimated miles.
    manual: some stop has no coordinates; order unchanged.
    The cost of going from trip i to trip j is the trip i destination -> trip j pickup leg.
    """
    settings = settings or EngineSettings()
    route = day_route(trips)
    ids = [t.trip_id for t in route]
    common = dict(driver_id=driver_id, trip_date=trip_date, original_order=ids)

    if len(route) < 2:
        return ManualResult(**common, optimized_order=list(ids))

    origins = [t.destination for t in route]
    destinations = [t.pickup for t in route]

    if source is not None:
        try:
            m = source.distances(origins, destinations)
            order, totals = _tour(route, m, m.minutes)
            logger.info("Route %s %s optimized with %s distances", driver_id, trip_date, source.name)
            return PreciseResult(**common, optimized_order=[ids[i] for i in order], **totals)
        except DistanceSourceError as e:
            precise_error = str(e)
            logger.warning("Precise distances failed for %s %s: %s", driver_id, trip_date, precise_error)
    else:
        precise_error = "no precise distance source configured"

    missing = missing_coordinates([*destinations, *origins])
    if missing:
        shown = ", ".join(dict.fromkeys(missing))
        return ManualResult(
            **common,
            optimized_order=list(ids),
            warning=(
                f"Cannot optimize automatically: {len(set(missing))} stop(s) have no coordinates ({shown}). "
                "Please reorder manually."
            ),
        )

    fallback = HaversineDistanceSource(settings.road_factor, settings.average_speed_mph)
    try:
        m = fallback.distances(origins, destinations)
    except DistanceSourceError as e:
        return ManualResult(**common, optimized_order=list(ids), warning=f"Cannot optimize automatically: {e}. Please reorder manually.")
    order, totals = _tour(route, m, m.miles)
    logger.info("Route %s %s optimized with estimated distances", driver_id, trip_date)
    return ApproximateResult(
        **common,
        optimized_order=[ids[i] for i in order],
        warning=f"Using estimated distances ({precise_error}). Results may be less accurate.",
        **totals,
    )


# -----------------------------
# Commit
# -----------------------------

def commit_route(
    driver_id: str,
    trip_date: date,
    trips: Sequence[Trip],
    trip_ids: Sequence[str],
    writer: TripWriter,
    pickup_times: Optional[Dict[str, str]] = None,
    settings: Optional[EngineSettings] = None,
) -> CommitReport:
    """
    Apply a stop order to a driver-day as one batch. ``trip_ids`` must be exactly the
    day's active trip set. By default the day's original pickup times, sorted, are
    handed out in the new order; ``pickup_times`` overrides individual trips.
    """
    settings = settings or EngineSettings()
    route = day_route(trips)
    by_id = {t.trip_id: t for t in route}

    if len(set(trip_ids)) != len(trip_ids):
        raise SchedulingInputError("trip_ids contains duplicates")
    if set(trip_ids) != set(by_id):
        extra = sorted(set(trip_ids) - set(by_id))
        absent = sorted(set(by_id) - set(trip_ids))
        raise SchedulingInputError(
            f"trip_ids must match the trips of {driver_id} on {trip_date}"
            f"{'; not on this route: ' + ', '.join(extra) if extra else ''}"
            f"{'; missing: ' + ', '.join(absent) if absent else ''}"
        )

    overrides = dict(pickup_times or {})
    unknown = sorted(set(overrides) - set(by_id))
    if unknown:
        raise SchedulingInputError(f"pickup_times names trips not on this route: {', '.join(unknown)}")

    slots = [t.pickup_time for t in route]  # already sorted
    updates: List[Trip] = []
    for tid, slot in zip(trip_ids, slots):
        new_time = slot
        if tid in overrides:
            try:
                new_time = to_time(overrides[tid])
            except (TypeError, ValueError, OverflowError) as e:
                raise SchedulingInputError(f"invalid pickup time for {tid}: {overrides[tid]!r}") from e
        trip = by_id[tid]
        updates.append(trip.model_copy(update={
            "pickup_time": new_time,
            "band": band_for(new_time, settings.band_split_hour),
        }))

    writer.update_trips(updates)
    logger.info("Committed route for %s on %s (%d trips)", driver_id, trip_date, len(updates))
    return CommitReport(
        driver_id=driver_id,
        trip_date=trip_date,
        updated=len(updates),
        pickup_times={t.trip_id: t.pickup_time.strftime("%H:%M") for t in updates},
    )


# -----------------------------
# Scores
# -----------------------------

def score_status(score: int) -> str:
    if score >= 90:
        return "optimal"
    if score >= 70:
        return "good"
    return "needs_optimization"


def score_route(result: OptimizationOutcome) -> int:
    current = result.distance_before_miles
    if current <= 0:
        return 100
    return int(round(result.distance_after_miles / current * 100))


def optimization_scores(
    driver_days: Dict[tuple, List[Trip]],
    source: Optional[DistanceSource] = None,
    settings: Optional[EngineSettings] = None,
) -> List[DriverDayScore]:
    """Score every (driver, date) group with two or more active trips, worst first."""
    out: List[DriverDayScore] = []
    for (driver_id, trip_date), trips in sorted(driver_days.items()):
        route = day_route(trips)
        if len(route) < 2:
            continue
        result = optimize_route(driver_id, trip_date, route, source, settings)
        score = score_route(result)
        out.append(DriverDayScore(
            driver_id=driver_id,
            trip_date=trip_date,
            trip_count=len(route),
            method=result.method,
            score=score,
            status=score_status(score),
            current_distance_miles=result.distance_before_miles,
            optimal_distance_miles=result.distance_after_miles,
            savings_potential_miles=result.distance_saved_miles,
        ))
    out.sort(key=lambda s: (s.score, s.trip_date, s.driver_id))
    return out
