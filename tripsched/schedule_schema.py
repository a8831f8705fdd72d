from __future__ import annotations

from typing import Any, Dict, List, Optional

from tripsched.plan.models import Location, ScheduleEntry
from tripsched.timeparse import WEEKDAYS, normalize_weekday, to_time


def _first(meta: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = meta.get(key)
        if value not in (None, ""):
            return value
    return None


def _coerce_float(value: Any, default: float = 0.0) -> float:
    try:
        if value is None:
            return default
        return float(value)
    except Exception:
        return default


def coerce_id(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    if not text or text.lower() in {"nan", "none", "null"}:
        return None
    # ids exported from numeric columns come through as "12.0"
    if text.endswith(".0") and text[:-2].isdigit():
        text = text[:-2]
    return text


def _coerce_location(value: Any) -> Optional[Location]:
    if value is None:
        return None
    if isinstance(value, Location):
        return value
    if isinstance(value, dict):
        address = str(value.get("address") or value.get("name") or "").strip()
        lat = value.get("lat", value.get("latitude"))
        lon = value.get("lon", value.get("lng", value.get("longitude")))
        return Location(
            address=address,
            postcode=(str(value["postcode"]).strip() or None) if value.get("postcode") else None,
            lat=_coerce_float(lat, None) if lat is not None else None,
            lon=_coerce_float(lon, None) if lon is not None else None,
        )
    text = str(value).strip()
    return Location(address=text) if text else None


def _coerce_time_or_none(value: Any):
    if value in (None, ""):
        return None
    try:
        return to_time(value)
    except (TypeError, ValueError, OverflowError):
        return None


def normalize_weekly_schedule(customer_id: str, payload: Any, home: Optional[Location] = None) -> List[ScheduleEntry]:
    """
    Accepts the weekly schedule JSON stored against a customer
    ({"monday": {...}, "tue": {...}, ...}) and returns one ScheduleEntry per weekday present.
    Disabled days and days without a destination are kept; generation skips them.
    """
    if not isinstance(payload, dict):
        return []

    entries: List[ScheduleEntry] = []
    seen: set[str] = set()

    for raw_day, raw_meta in payload.items():
        weekday = normalize_weekday(raw_day)
        if weekday is None or weekday in seen or not isinstance(raw_meta, dict):
            continue
        seen.add(weekday)

        meta = dict(raw_meta)
        enabled = meta.get("enabled", True)
        destination = _coerce_location(_first(meta, "destination", "destination_address"))
        if enabled is False or str(enabled).strip().lower() in {"false", "0", "no"}:
            destination = None

        pickup = _coerce_location(_first(meta, "pickup", "pickupAddress", "pickup_address")) or home

        entries.append(
            ScheduleEntry(
                customer_id=str(customer_id),
                weekday=weekday,
                pickup=pickup,
                destination=destination,
                pickup_time=_coerce_time_or_none(_first(meta, "pickupTime", "pickup_time", "morningTime")),
                return_time=_coerce_time_or_none(_first(meta, "returnTime", "return_time", "afternoonTime")),
                daily_price=_coerce_float(_first(meta, "dailyPrice", "daily_price", "dailyCost", "price")),
                driver_id=coerce_id(_first(meta, "morningDriverId", "driverId", "driver_id")),
                return_driver_id=coerce_id(_first(meta, "afternoonDriverId", "returnDriverId", "return_driver_id")),
            )
        )

    entries.sort(key=lambda e: WEEKDAYS.index(e.weekday))
    return entries
