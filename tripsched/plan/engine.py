from __future__ import annotations
import logging
from datetime import date
from typing import Dict, List, Optional, Sequence

from .assignment import auto_assign_trips
from .config import EngineSettings, google_maps_api_key, load_settings_overrides, settings_from_env
from .conflicts import check_assignment, conflict_counts, find_conflicts, with_customer_needs
from .distance import DistanceSource, GoogleDistanceMatrixSource
from .errors import SchedulingInputError, UnknownEntityError
from .generator import generate_trips
from .models import (
    AssignmentReport, CheckConflictsRequest, CommitReport, ConflictCheckResponse, CopyReport,
    Customer, Driver, DriverDayScore, Feasibility, GenerationReport, Location, Trip, UnassignedCustomer,
)
from .optimizer import OptimizationOutcome, commit_route, optimization_scores, optimize_route
from .store import TripStore
from .trip_index import group_by_driver_day, unassigned_customers
from .week_copy import copy_week_trips
from ..timeparse import band_for, week_bounds

logger = logging.getLogger(__name__)


class SchedulingEngine:
    """
    Entry point for every scheduling operation. Validates input up front, reads what it
    needs from the store and writes through one store transaction per call.
    """

    def __init__(
        self,
        store: TripStore,
        distance_source: Optional[DistanceSource] = None,
        settings: Optional[EngineSettings] = None,
    ):
        self.store = store
        self.distance_source = distance_source
        self.settings = settings or EngineSettings()

    @classmethod
    def from_env(cls, store: TripStore) -> "SchedulingEngine":
        settings = settings_from_env().with_overrides(load_settings_overrides())
        key = google_maps_api_key()
        source = GoogleDistanceMatrixSource(key, timeout_sec=settings.distance_timeout_sec) if key else None
        if source is None:
            logger.info("GOOGLE_MAPS_API_KEY not set; route optimization will use estimated distances")
        return cls(store, distance_source=source, settings=settings)

    # ------------------- validation -------------------

    def _tenant(self, tenant_id: str) -> str:
        tenant_id = str(tenant_id)
        if not self.store.has_tenant(tenant_id):
            raise UnknownEntityError("tenant", tenant_id)
        return tenant_id

    def _range(self, start: date, end: date) -> None:
        if start is None or end is None:
            raise SchedulingInputError("start_date and end_date are required")
        if end < start:
            raise SchedulingInputError(f"end_date {end} is before start_date {start}")
        days = (end - start).days + 1
        if days > self.settings.max_range_days:
            raise SchedulingInputError(f"date range spans {days} days; the maximum is {self.settings.max_range_days}")

    def _driver(self, tenant_id: str, driver_id: str) -> Driver:
        driver = self.store.get_driver(tenant_id, driver_id)
        if driver is None:
            raise UnknownEntityError("driver", driver_id)
        return driver

    def _customer(self, tenant_id: str, customer_id: str) -> Customer:
        customer = self.store.get_customer(tenant_id, customer_id)
        if customer is None:
            raise UnknownEntityError("customer", customer_id)
        return customer

    def _trip(self, tenant_id: str, trip_id: str) -> Trip:
        trip = self.store.get_trip(tenant_id, trip_id)
        if trip is None:
            raise UnknownEntityError("trip", trip_id)
        return trip

    def _customers(self, tenant_id: str) -> Dict[str, Customer]:
        return {c.customer_id: c for c in self.store.list_customers(tenant_id)}

    def _drivers(self, tenant_id: str, active_only: bool = False) -> Dict[str, Driver]:
        return {d.driver_id: d for d in self.store.list_drivers(tenant_id, active_only=active_only)}

    # ------------------- operations -------------------

    def generate(self, tenant_id: str, start: date, end: date, overwrite: bool = False) -> GenerationReport:
        tenant_id = self._tenant(tenant_id)
        self._range(start, end)
        with self.store.transaction(tenant_id) as writer:
            return generate_trips(
                customers=self._customers(tenant_id),
                drivers=self._drivers(tenant_id),
                schedules=self.store.list_schedule_entries(tenant_id),
                existing=self.store.list_trips(tenant_id, start, end),
                writer=writer,
                start=start,
                end=end,
                overwrite=overwrite,
                settings=self.settings,
            )

    def auto_assign(self, tenant_id: str, start: date, end: date) -> AssignmentReport:
        tenant_id = self._tenant(tenant_id)
        self._range(start, end)
        with self.store.transaction(tenant_id) as writer:
            return auto_assign_trips(
                drivers=self.store.list_drivers(tenant_id, active_only=True),
                customers=self._customers(tenant_id),
                trips=self.store.list_trips(tenant_id, start, end),
                writer=writer,
                start=start,
                end=end,
                settings=self.settings,
            )

    def check_assignment(self, tenant_id: str, driver_id: str, trip_id: str) -> Feasibility:
        tenant_id = self._tenant(tenant_id)
        driver = self._driver(tenant_id, driver_id)
        trip = self._trip(tenant_id, trip_id)
        trip = with_customer_needs(trip, self.store.get_customer(tenant_id, trip.customer_id))
        sheet = self.store.list_trips(tenant_id, trip.trip_date, trip.trip_date, driver_id=driver.driver_id)
        return check_assignment(driver, trip, sheet, self.settings)

    def check_conflicts(self, tenant_id: str, req: CheckConflictsRequest) -> ConflictCheckResponse:
        tenant_id = self._tenant(tenant_id)
        base = self._trip(tenant_id, req.trip_id) if req.trip_id else None
        customer_id = req.customer_id or (base.customer_id if base else None)
        if not customer_id:
            raise SchedulingInputError("customer_id or trip_id is required")
        customer = self._customer(tenant_id, customer_id)
        driver_id = req.driver_id or (base.driver_id if base else None)
        driver = self._driver(tenant_id, driver_id) if driver_id else None

        fields = dict(
            customer_id=customer.customer_id,
            driver_id=driver_id,
            trip_date=req.trip_date,
            pickup_time=req.pickup_time,
            band=band_for(req.pickup_time, self.settings.band_split_hour),
        )
        if req.estimated_minutes is not None:
            fields["estimated_minutes"] = req.estimated_minutes
        if req.destination is not None:
            fields["destination"] = Location(address=req.destination)
        if req.requires_wheelchair is not None:
            fields["requires_wheelchair"] = req.requires_wheelchair
        if base is not None:
            candidate = base.model_copy(update=fields)
            if req.requires_wheelchair is None:
                candidate = with_customer_needs(candidate, customer)
        else:
            fields.setdefault("requires_wheelchair", customer.requires_wheelchair)
            fields.setdefault("pickup", customer.address)
            candidate = Trip(trip_id="(proposed)", **fields)

        d = req.trip_date
        driver_trips = self.store.list_trips(tenant_id, d, d, driver_id=driver_id) if driver_id else []
        customer_trips = self.store.list_trips(tenant_id, d, d, customer_id=customer.customer_id)
        conflicts = find_conflicts(candidate, driver, driver_trips, customer_trips, self.settings)
        critical, warning = conflict_counts(conflicts)
        logger.debug("check_conflicts %s %s: %d critical, %d warning", customer_id, d, critical, warning)
        return ConflictCheckResponse(
            has_conflicts=bool(conflicts),
            critical_count=critical,
            warning_count=warning,
            conflicts=conflicts,
        )

    def optimize_route(self, tenant_id: str, driver_id: str, trip_date: date) -> OptimizationOutcome:
        tenant_id = self._tenant(tenant_id)
        driver = self._driver(tenant_id, driver_id)
        trips = self.store.list_trips(tenant_id, trip_date, trip_date, driver_id=driver.driver_id)
        return optimize_route(driver.driver_id, trip_date, trips, self.distance_source, self.settings)

    def commit_route(
        self,
        tenant_id: str,
        driver_id: str,
        trip_date: date,
        trip_ids: Sequence[str],
        pickup_times: Optional[Dict[str, str]] = None,
    ) -> CommitReport:
        tenant_id = self._tenant(tenant_id)
        driver = self._driver(tenant_id, driver_id)
        if not trip_ids:
            raise SchedulingInputError("trip_ids must not be empty")
        with self.store.transaction(tenant_id) as writer:
            trips = self.store.list_trips(tenant_id, trip_date, trip_date, driver_id=driver.driver_id)
            return commit_route(driver.driver_id, trip_date, trips, list(trip_ids), writer, pickup_times, self.settings)

    def copy_week(
        self,
        tenant_id: str,
        source_start: date,
        target_start: date,
        include_cancelled: bool = False,
    ) -> CopyReport:
        tenant_id = self._tenant(tenant_id)
        if source_start == target_start:
            raise SchedulingInputError("target week must differ from source week")
        source_lo, source_hi = week_bounds(source_start)
        target_lo, target_hi = week_bounds(target_start)
        with self.store.transaction(tenant_id) as writer:
            trips = self.store.list_trips(tenant_id, min(source_lo, target_lo), max(source_hi, target_hi))
            return copy_week_trips(
                customers=self._customers(tenant_id),
                drivers=self._drivers(tenant_id),
                trips=trips,
                writer=writer,
                source_start=source_start,
                target_start=target_start,
                include_cancelled=include_cancelled,
                settings=self.settings,
            )

    def optimization_scores(self, tenant_id: str, start: date, end: date) -> List[DriverDayScore]:
        tenant_id = self._tenant(tenant_id)
        self._range(start, end)
        groups = group_by_driver_day(self.store.list_trips(tenant_id, start, end))
        return optimization_scores(groups, self.distance_source, self.settings)

    def unassigned_customers(self, tenant_id: str, start: date, end: date) -> List[UnassignedCustomer]:
        tenant_id = self._tenant(tenant_id)
        self._range(start, end)
        return unassigned_customers(
            self.store.list_schedule_entries(tenant_id),
            self._customers(tenant_id),
            self.store.list_trips(tenant_id, start, end),
            start,
            end,
            self.settings.band_split_hour,
        )
