# tripsched/io_tenant.py
from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple
import json
import logging
import pandas as pd

from .plan.models import Customer, Driver, LeavePeriod, Location, ScheduleEntry, Vehicle
from .schedule_schema import coerce_id, normalize_weekly_schedule

logger = logging.getLogger(__name__)

@dataclass
class ColumnMap:
    # Customers
    customer_id: str = "customer_id"
    customer_name: str = "name"
    address: str = "address"
    postcode: str | None = "postcode"
    lat: str | None = "lat"
    lon: str | None = "lon"
    requires_wheelchair: str | None = "requires_wheelchair"
    regular_driver_id: str | None = "regular_driver_id"
    customer_active: str | None = "active"
    schedule: str = "schedule"

    # Drivers
    driver_id: str = "driver_id"
    driver_name: str = "name"
    driver_active: str | None = "active"
    vehicle_id: str | None = "vehicle_id"
    registration: str | None = "registration"
    capacity: str | None = "capacity"
    wheelchair_accessible: str | None = "wheelchair_accessible"
    max_daily_trips: str | None = "max_daily_trips"
    leave: str | None = "leave"

def _get_colmap(cfg: Optional[Dict[str, Any]]) -> ColumnMap:
    m = ColumnMap()
    overrides = (cfg or {}).get("column_map", {})
    for k, v in overrides.items():
        if hasattr(m, k):
            setattr(m, k, v)
    return m

def _cell(row: pd.Series, col: Optional[str]) -> Any:
    if not col or col not in row.index:
        return None
    v = row[col]
    if v is None or (isinstance(v, float) and pd.isna(v)):
        return None
    if isinstance(v, str) and not v.strip():
        return None
    return v

def _flag(v: Any, default: bool = False) -> bool:
    if v is None:
        return default
    if isinstance(v, bool):
        return v
    return str(v).strip().lower() in ("1", "true", "t", "yes", "y")

def _num(v: Any) -> Optional[float]:
    if v is None:
        return None
    try:
        return float(v)
    except (TypeError, ValueError):
        return None

def parse_leave(text: Any) -> List[LeavePeriod]:
    """'2024-01-08..2024-01-12; 2024-02-01' -> leave periods (a single date is a one-day period)."""
    if text is None:
        return []
    out: List[LeavePeriod] = []
    for chunk in str(text).split(";"):
        chunk = chunk.strip()
        if not chunk:
            continue
        start, _, end = chunk.partition("..")
        out.append(LeavePeriod(start_date=start.strip(), end_date=(end or start).strip()))
    return out

def load_customers(customers_path: str, config: Optional[Dict[str, Any]] = None) -> Tuple[List[Customer], List[ScheduleEntry]]:
    """
    Customers CSV -> (customers, schedule entries).
    The schedule column holds the weekly schedule JSON as exported from the console.
    """
    col = _get_colmap(config)
    df = pd.read_csv(customers_path, dtype=str)
    missing = [c for c in (col.customer_id, col.customer_name) if c not in df.columns]
    if missing:
        raise ValueError(f"{customers_path}: missing column(s) {missing}")

    customers: List[Customer] = []
    schedules: List[ScheduleEntry] = []
    for _, row in df.iterrows():
        cid = coerce_id(_cell(row, col.customer_id))
        if cid is None:
            continue
        home = Location(
            address=str(_cell(row, col.address) or ""),
            postcode=_cell(row, col.postcode),
            lat=_num(_cell(row, col.lat)),
            lon=_num(_cell(row, col.lon)),
        )
        customers.append(Customer(
            customer_id=cid,
            name=str(_cell(row, col.customer_name) or cid),
            active=_flag(_cell(row, col.customer_active), default=True),
            address=home,
            requires_wheelchair=_flag(_cell(row, col.requires_wheelchair)),
            regular_driver_id=coerce_id(_cell(row, col.regular_driver_id)),
        ))
        raw = _cell(row, col.schedule)
        if raw is None:
            continue
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.warning("Customer %s: unreadable schedule JSON (%s); no schedule loaded", cid, e)
            continue
        schedules.extend(normalize_weekly_schedule(cid, payload, home=home))

    logger.info("Loaded %d customers, %d schedule entries from %s", len(customers), len(schedules), customers_path)
    return customers, schedules

def load_drivers(drivers_path: str, config: Optional[Dict[str, Any]] = None) -> List[Driver]:
    col = _get_colmap(config)
    df = pd.read_csv(drivers_path, dtype=str)
    if col.driver_id not in df.columns:
        raise ValueError(f"{drivers_path}: missing column {col.driver_id!r}")

    drivers: List[Driver] = []
    for _, row in df.iterrows():
        did = coerce_id(_cell(row, col.driver_id))
        if did is None:
            continue
        vid = coerce_id(_cell(row, col.vehicle_id))
        vehicle = None
        if vid is not None:
            capacity = _num(_cell(row, col.capacity))
            vehicle = Vehicle(
                vehicle_id=vid,
                registration=str(_cell(row, col.registration) or ""),
                capacity=int(capacity) if capacity is not None else 8,
                wheelchair_accessible=_flag(_cell(row, col.wheelchair_accessible)),
            )
        limit = _num(_cell(row, col.max_daily_trips))
        drivers.append(Driver(
            driver_id=did,
            name=str(_cell(row, col.driver_name) or did),
            active=_flag(_cell(row, col.driver_active), default=True),
            vehicle=vehicle,
            leave=parse_leave(_cell(row, col.leave)),
            max_daily_trips=int(limit) if limit is not None else None,
        ))
    logger.info("Loaded %d drivers from %s", len(drivers), drivers_path)
    return drivers

def build_tenant_payload(customers_path: str, drivers_path: str, config: Optional[Dict[str, Any]] = None) -> Dict[str, list]:
    """The JSON document JsonFileTripStore reads for one tenant (no trips yet)."""
    customers, schedules = load_customers(customers_path, config)
    drivers = load_drivers(drivers_path, config)
    known = {d.driver_id for d in drivers}
    for c in customers:
        if c.regular_driver_id and c.regular_driver_id not in known:
            logger.warning("Customer %s: regular driver %s not in drivers file", c.customer_id, c.regular_driver_id)
    return {
        "customers": [c.model_dump(mode="json") for c in customers],
        "drivers": [d.model_dump(mode="json") for d in drivers],
        "schedules": [s.model_dump(mode="json") for s in schedules],
        "trips": [],
    }
