from __future__ import annotations

import copy
import json
import logging
import os
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Sequence

from .errors import StorageError, UnknownEntityError
from .models import Customer, Driver, ScheduleEntry, Trip

logger = logging.getLogger(__name__)


@dataclass
class TenantData:
    customers: Dict[str, Customer] = field(default_factory=dict)
    drivers: Dict[str, Driver] = field(default_factory=dict)
    schedules: List[ScheduleEntry] = field(default_factory=list)
    trips: Dict[str, Trip] = field(default_factory=dict)
    next_seq: int = 1
    # regular trip slot_key -> trip_id
    slots: Dict[tuple, str] = field(default_factory=dict)

    def index_slots(self) -> None:
        self.slots = {}
        for t in self.trips.values():
            if t.trip_type == "regular":
                self.slots.setdefault(t.slot_key, t.trip_id)


class TripWriter:
    """Handed out by TripStore.transaction(); buffers nothing, the store snapshot makes it atomic."""

    def __init__(self, tenant: TenantData):
        self._tenant = tenant
        self.added: List[str] = []
        self.updated: List[str] = []

    def new_trip_id(self) -> str:
        tid = f"T{self._tenant.next_seq:06d}"
        self._tenant.next_seq += 1
        return tid

    def _check_regular_slot(self, trip: Trip) -> None:
        if trip.trip_type != "regular":
            return
        holder = self._tenant.slots.get(trip.slot_key)
        if holder is not None and holder != trip.trip_id:
            raise StorageError(
                f"unique violation: regular trip {holder} already exists for "
                f"customer {trip.customer_id} on {trip.trip_date} ({trip.band})"
            )

    def _release_slot(self, trip_id: str) -> None:
        old = self._tenant.trips.get(trip_id)
        if old is not None and old.trip_type == "regular" and self._tenant.slots.get(old.slot_key) == trip_id:
            del self._tenant.slots[old.slot_key]

    def _store(self, trip: Trip) -> None:
        self._tenant.trips[trip.trip_id] = trip.model_copy(deep=True)
        if trip.trip_type == "regular":
            self._tenant.slots[trip.slot_key] = trip.trip_id

    def add_trip(self, trip: Trip) -> Trip:
        if trip.trip_id in self._tenant.trips:
            raise StorageError(f"duplicate trip id {trip.trip_id}")
        self._check_regular_slot(trip)
        self._store(trip)
        self.added.append(trip.trip_id)
        return trip

    def update_trip(self, trip: Trip) -> Trip:
        if trip.trip_id not in self._tenant.trips:
            raise StorageError(f"cannot update missing trip {trip.trip_id}")
        self._check_regular_slot(trip)
        self._release_slot(trip.trip_id)
        self._store(trip)
        self.updated.append(trip.trip_id)
        return trip

    def update_trips(self, trips: Sequence[Trip]) -> List[Trip]:
        """Apply a batch, then validate; trips may swap slots with each other inside one batch."""
        for trip in trips:
            if trip.trip_id not in self._tenant.trips:
                raise StorageError(f"cannot update missing trip {trip.trip_id}")
        for trip in trips:
            self._release_slot(trip.trip_id)
        for trip in trips:
            self._check_regular_slot(trip)
            self._store(trip)
            self.updated.append(trip.trip_id)
        return list(trips)


class TripStore:
    """
    Tenant-keyed store of customers, schedules, drivers and trips.
    Reads return copies; writes only happen inside transaction(), which is all-or-nothing.
    """

    def __init__(self):
        self._tenants: Dict[str, TenantData] = {}
        self._locks: Dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()

    # ------------------- internals -------------------

    def _lock(self, tenant_id: str) -> threading.RLock:
        with self._locks_guard:
            lock = self._locks.get(tenant_id)
            if lock is None:
                lock = self._locks[tenant_id] = threading.RLock()
            return lock

    def _tenant(self, tenant_id: str) -> TenantData:
        tenant = self._tenants.get(str(tenant_id))
        if tenant is None:
            raise UnknownEntityError("tenant", str(tenant_id))
        return tenant

    def _persist(self, tenant_id: str) -> None:
        """Hook for durable stores; called after a transaction body succeeds."""

    # ------------------- loading -------------------

    def has_tenant(self, tenant_id: str) -> bool:
        return str(tenant_id) in self._tenants

    def tenant_ids(self) -> List[str]:
        return sorted(self._tenants)

    def load_tenant(
        self,
        tenant_id: str,
        customers: Iterable[Customer] = (),
        drivers: Iterable[Driver] = (),
        schedules: Iterable[ScheduleEntry] = (),
        trips: Iterable[Trip] = (),
    ) -> None:
        data = TenantData(
            customers={c.customer_id: c for c in customers},
            drivers={d.driver_id: d for d in drivers},
            schedules=list(schedules),
            trips={t.trip_id: t for t in trips},
        )
        seqs = [int(t[1:]) for t in data.trips if t.startswith("T") and t[1:].isdigit()]
        data.next_seq = (max(seqs) + 1) if seqs else 1
        data.index_slots()
        with self._lock(str(tenant_id)):
            self._tenants[str(tenant_id)] = data

    # ------------------- reads -------------------

    def list_customers(self, tenant_id: str, active_only: bool = False) -> List[Customer]:
        with self._lock(tenant_id):
            out = [c for c in self._tenant(tenant_id).customers.values() if c.active or not active_only]
            return [c.model_copy(deep=True) for c in sorted(out, key=lambda c: c.customer_id)]

    def get_customer(self, tenant_id: str, customer_id: str) -> Optional[Customer]:
        with self._lock(tenant_id):
            c = self._tenant(tenant_id).customers.get(str(customer_id))
            return c.model_copy(deep=True) if c else None

    def list_schedule_entries(self, tenant_id: str) -> List[ScheduleEntry]:
        with self._lock(tenant_id):
            return [e.model_copy(deep=True) for e in self._tenant(tenant_id).schedules]

    def list_drivers(self, tenant_id: str, active_only: bool = True) -> List[Driver]:
        with self._lock(tenant_id):
            out = [d for d in self._tenant(tenant_id).drivers.values() if d.active or not active_only]
            return [d.model_copy(deep=True) for d in sorted(out, key=lambda d: d.driver_id)]

    def get_driver(self, tenant_id: str, driver_id: str) -> Optional[Driver]:
        with self._lock(tenant_id):
            d = self._tenant(tenant_id).drivers.get(str(driver_id))
            return d.model_copy(deep=True) if d else None

    def get_trip(self, tenant_id: str, trip_id: str) -> Optional[Trip]:
        with self._lock(tenant_id):
            t = self._tenant(tenant_id).trips.get(str(trip_id))
            return t.model_copy(deep=True) if t else None

    def list_trips(
        self,
        tenant_id: str,
        start: Optional[date] = None,
        end: Optional[date] = None,
        driver_id: Optional[str] = None,
        customer_id: Optional[str] = None,
        statuses: Optional[Sequence[str]] = None,
    ) -> List[Trip]:
        with self._lock(tenant_id):
            out: List[Trip] = []
            for t in self._tenant(tenant_id).trips.values():
                if start is not None and t.trip_date < start:
                    continue
                if end is not None and t.trip_date > end:
                    continue
                if driver_id is not None and t.driver_id != driver_id:
                    continue
                if customer_id is not None and t.customer_id != customer_id:
                    continue
                if statuses is not None and t.status not in statuses:
                    continue
                out.append(t.model_copy(deep=True))
            out.sort(key=lambda t: (t.trip_date, t.pickup_time, t.trip_id))
            return out

    # ------------------- writes -------------------

    @contextmanager
    def transaction(self, tenant_id: str) -> Iterator[TripWriter]:
        tenant_id = str(tenant_id)
        with self._lock(tenant_id):
            tenant = self._tenant(tenant_id)
            snapshot_trips = copy.deepcopy(tenant.trips)
            snapshot_seq = tenant.next_seq
            snapshot_slots = dict(tenant.slots)
            writer = TripWriter(tenant)
            try:
                yield writer
                self._persist(tenant_id)
            except BaseException:
                tenant.trips = snapshot_trips
                tenant.next_seq = snapshot_seq
                tenant.slots = snapshot_slots
                logger.warning(
                    "Rolled back tenant %s transaction (%d added, %d updated discarded)",
                    tenant_id, len(writer.added), len(writer.updated),
                )
                raise


class InMemoryTripStore(TripStore):
    pass


class JsonFileTripStore(TripStore):
    """One JSON document per tenant under ``root``; each committed transaction rewrites it atomically."""

    def __init__(self, root: Path | str):
        super().__init__()
        self.root = Path(root)

    def _path(self, tenant_id: str) -> Path:
        return self.root / f"{tenant_id}.json"

    def load_all(self) -> int:
        if not self.root.exists():
            return 0
        count = 0
        for path in sorted(self.root.glob("*.json")):
            raw = json.loads(path.read_text(encoding="utf-8"))
            self.load_tenant(
                path.stem,
                customers=[Customer.model_validate(c) for c in raw.get("customers", [])],
                drivers=[Driver.model_validate(d) for d in raw.get("drivers", [])],
                schedules=[ScheduleEntry.model_validate(s) for s in raw.get("schedules", [])],
                trips=[Trip.model_validate(t) for t in raw.get("trips", [])],
            )
            count += 1
        return count

    def dump_tenant(self, tenant_id: str) -> Dict[str, list]:
        tenant = self._tenant(tenant_id)
        return {
            "customers": [c.model_dump(mode="json") for c in tenant.customers.values()],
            "drivers": [d.model_dump(mode="json") for d in tenant.drivers.values()],
            "schedules": [s.model_dump(mode="json") for s in tenant.schedules],
            "trips": [t.model_dump(mode="json") for t in tenant.trips.values()],
        }

    def _persist(self, tenant_id: str) -> None:
        path = self._path(tenant_id)
        tmp = path.with_suffix(".json.tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(json.dumps(self.dump_tenant(tenant_id), indent=2), encoding="utf-8")
            os.replace(tmp, path)
        except OSError as e:
            raise StorageError(f"Failed to write {path.name}: {e}") from e
