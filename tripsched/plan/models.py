from __future__ import annotations

from datetime import date, time
from typing import Annotated, Any, Dict, List, Literal, NamedTuple, Optional, Union

from pydantic import BaseModel, Field, field_validator, model_validator

from ..timeparse import WEEKDAYS, band_for, normalize_weekday, parse_date, to_time


TripStatus = Literal["scheduled", "in_progress", "completed", "cancelled", "no_show"]
TripType = Literal["regular", "ad_hoc"]
Band = Literal["morning", "afternoon"]

# Trips in these states no longer occupy a driver or a seat
INACTIVE_STATUSES = ("cancelled", "no_show")


def _coerce_time(v: Any) -> Any:
    if v is None or isinstance(v, time):
        return v
    if isinstance(v, str) and not v.strip():
        return None
    return to_time(v)


def _coerce_date(v: Any) -> Any:
    if v is None or isinstance(v, date):
        return v
    return parse_date(v)


# -----------------------------
# Directory records
# -----------------------------

class Location(BaseModel):
    address: str = ""
    postcode: Optional[str] = None
    lat: Optional[float] = None
    lon: Optional[float] = None

    @property
    def has_coords(self) -> bool:
        return self.lat is not None and self.lon is not None

    @property
    def is_blank(self) -> bool:
        return not self.address.strip() and not (self.postcode or "").strip()

    def label(self) -> str:
        parts = [p for p in (self.address.strip(), (self.postcode or "").strip()) if p]
        return ", ".join(parts)


class Customer(BaseModel):
    customer_id: str
    name: str
    active: bool = True
    address: Location = Field(default_factory=Location)
    requires_wheelchair: bool = False
    regular_driver_id: Optional[str] = None


class Vehicle(BaseModel):
    vehicle_id: str
    registration: str = ""
    capacity: int = Field(8, ge=0, description="Passenger seats")
    wheelchair_accessible: bool = False


class LeavePeriod(BaseModel):
    start_date: date
    end_date: date
    reason: Optional[str] = None

    @field_validator("start_date", "end_date", mode="before")
    @classmethod
    def _parse_dates(cls, v: Any) -> Any:
        return _coerce_date(v)

    def covers(self, d: date) -> bool:
        return self.start_date <= d <= self.end_date


class Driver(BaseModel):
    driver_id: str
    name: str
    active: bool = True
    vehicle: Optional[Vehicle] = None
    leave: List[LeavePeriod] = Field(default_factory=list)
    max_daily_trips: Optional[int] = Field(None, ge=0)

    def on_leave(self, d: date) -> bool:
        return any(p.covers(d) for p in self.leave)


# -----------------------------
# Schedule model
# -----------------------------

class ScheduleEntry(BaseModel):
    """One weekday of a customer's recurring weekly travel pattern."""

    customer_id: str
    weekday: str = Field(..., description="Mon..Sun")
    pickup: Optional[Location] = Field(None, description="Defaults to the customer's home address")
    destination: Optional[Location] = None
    pickup_time: Optional[time] = time(9, 0)
    return_time: Optional[time] = None
    daily_price: float = 0.0
    driver_id: Optional[str] = None
    return_driver_id: Optional[str] = None
    estimated_minutes: Optional[int] = Field(None, ge=0)

    @field_validator("pickup_time", "return_time", mode="before")
    @classmethod
    def _parse_times(cls, v: Any) -> Any:
        return _coerce_time(v)

    @field_validator("weekday", mode="before")
    @classmethod
    def _weekday(cls, v: Any) -> str:
        wd = normalize_weekday(v)
        if wd is None:
            raise ValueError(f"weekday must be one of {WEEKDAYS}, got {v!r}")
        return wd

    @model_validator(mode="after")
    def _default_pickup_time(self) -> "ScheduleEntry":
        if self.pickup_time is None:
            self.pickup_time = time(9, 0)
        return self

    @property
    def is_travel_day(self) -> bool:
        return self.destination is not None and bool(self.destination.address.strip())

    def legs(self, split_hour: int = 12) -> List["ScheduleLeg"]:
        """Outbound leg, plus the return leg when a return time is set. Empty on non-travel days."""
        if not self.is_travel_day:
            return []
        out = [ScheduleLeg("outbound", self.pickup_time, band_for(self.pickup_time, split_hour), self.driver_id)]
        if self.return_time is not None:
            out.append(ScheduleLeg("return", self.return_time, band_for(self.return_time, split_hour), self.return_driver_id))
        return out


class ScheduleLeg(NamedTuple):
    leg: str
    pickup_time: time
    band: str
    driver_id: Optional[str]


# -----------------------------
# Trips
# -----------------------------

class Trip(BaseModel):
    trip_id: str
    customer_id: str
    driver_id: Optional[str] = None
    vehicle_id: Optional[str] = None
    trip_date: date
    pickup_time: time
    band: Band
    status: TripStatus = "scheduled"
    trip_type: TripType = "regular"
    pickup: Location = Field(default_factory=Location)
    destination: Location = Field(default_factory=Location)
    price: float = 0.0
    estimated_minutes: Optional[int] = Field(None, ge=0)
    requires_wheelchair: bool = False

    @field_validator("trip_date", mode="before")
    @classmethod
    def _parse_date(cls, v: Any) -> Any:
        return _coerce_date(v)

    @field_validator("pickup_time", mode="before")
    @classmethod
    def _parse_time(cls, v: Any) -> Any:
        return _coerce_time(v)

    @property
    def is_active(self) -> bool:
        return self.status not in INACTIVE_STATUSES

    @property
    def slot_key(self) -> tuple:
        return (self.customer_id, self.trip_date, self.band)


# -----------------------------
# Reports
# -----------------------------

class GenerationOutcome(BaseModel):
    customer_id: str
    customer_name: str
    trip_date: date
    band: Band
    status: Literal["generated", "regenerated", "skipped", "conflict"]
    trip_id: Optional[str] = None
    reason: Optional[str] = None
    message: str = ""


class GenerationReport(BaseModel):
    start_date: date
    end_date: date
    overwrite: bool
    generated: int = 0
    regenerated: int = 0
    skipped: int = 0
    conflicts: int = 0
    outcomes: List[GenerationOutcome] = []


class Feasibility(BaseModel):
    feasible: bool
    reason: Optional[str] = None
    message: str = ""


class AssignmentOutcome(BaseModel):
    trip_id: str
    customer_id: str
    customer_name: str
    trip_date: date
    band: Band
    status: Literal["assigned", "failed"]
    driver_id: Optional[str] = None
    vehicle_id: Optional[str] = None
    reason: Optional[str] = None
    message: str = ""


class AssignmentReport(BaseModel):
    start_date: date
    end_date: date
    assigned: int = 0
    failed: int = 0
    outcomes: List[AssignmentOutcome] = []
    failures_by_reason: Dict[str, int] = {}


class ConflictOut(BaseModel):
    type: str
    severity: Literal["critical", "warning"]
    message: str
    trip_ids: List[str] = []


class ConflictCheckResponse(BaseModel):
    has_conflicts: bool
    critical_count: int
    warning_count: int
    conflicts: List[ConflictOut]


class CopyOutcome(BaseModel):
    source_trip_id: str
    customer_id: str
    customer_name: str
    source_date: date
    target_date: date
    status: Literal["copied", "copied_unassigned", "skipped"]
    new_trip_id: Optional[str] = None
    reason: Optional[str] = None
    message: str = ""


class CopyReport(BaseModel):
    source_start: date
    source_end: date
    target_start: date
    target_end: date
    copied: int = 0
    skipped: int = 0
    outcomes: List[CopyOutcome] = []


class UnassignedCustomer(BaseModel):
    customer_id: str
    customer_name: str
    trip_date: date
    weekday: str
    missing_bands: List[Band]


# -----------------------------
# Route optimization (tagged union)
# -----------------------------

class _RouteResultBase(BaseModel):
    driver_id: str
    trip_date: date
    original_order: List[str]
    optimized_order: List[str]
    distance_before_miles: float = 0.0
    distance_after_miles: float = 0.0
    time_before_minutes: float = 0.0
    time_after_minutes: float = 0.0
    warning: Optional[str] = None

    @property
    def distance_saved_miles(self) -> float:
        return round(self.distance_before_miles - self.distance_after_miles, 2)

    @property
    def time_saved_minutes(self) -> float:
        return round(self.time_before_minutes - self.time_after_minutes, 1)

    @property
    def changed(self) -> bool:
        return self.original_order != self.optimized_order


class PreciseResult(_RouteResultBase):
    method: Literal["precise"] = "precise"
    reliable: Literal[True] = True


class ApproximateResult(_RouteResultBase):
    method: Literal["approximate"] = "approximate"
    reliable: Literal[False] = False
    warning: str


class ManualResult(_RouteResultBase):
    method: Literal["manual"] = "manual"
    reliable: Literal[False] = False


OptimizationResult = Annotated[
    Union[PreciseResult, ApproximateResult, ManualResult],
    Field(discriminator="method"),
]


class OptimizationResponse(BaseModel):
    result: OptimizationResult
    distance_saved_miles: float
    time_saved_minutes: float


class CommitReport(BaseModel):
    driver_id: str
    trip_date: date
    updated: int
    pickup_times: Dict[str, str]


class DriverDayScore(BaseModel):
    driver_id: str
    trip_date: date
    trip_count: int
    method: str
    score: int
    status: Literal["optimal", "good", "needs_optimization"]
    current_distance_miles: float
    optimal_distance_miles: float
    savings_potential_miles: float


# -----------------------------
# Request models
# -----------------------------

class DateRangeRequest(BaseModel):
    start_date: date
    end_date: date

    @field_validator("start_date", "end_date", mode="before")
    @classmethod
    def _parse(cls, v: Any) -> Any:
        return _coerce_date(v)


class GenerateRequest(DateRangeRequest):
    overwrite: bool = False


class OptimizeRouteRequest(BaseModel):
    driver_id: str
    trip_date: date

    @field_validator("trip_date", mode="before")
    @classmethod
    def _parse(cls, v: Any) -> Any:
        return _coerce_date(v)


class CommitRouteRequest(OptimizeRouteRequest):
    trip_ids: List[str] = Field(..., min_length=1)
    pickup_times: Optional[Dict[str, str]] = None


class CopyWeekRequest(BaseModel):
    source_start_date: date
    target_start_date: date
    include_cancelled: bool = False

    @field_validator("source_start_date", "target_start_date", mode="before")
    @classmethod
    def _parse(cls, v: Any) -> Any:
        return _coerce_date(v)


class CheckConflictsRequest(BaseModel):
    driver_id: Optional[str] = None
    customer_id: Optional[str] = None
    trip_id: Optional[str] = None
    trip_date: date
    pickup_time: time
    estimated_minutes: Optional[int] = Field(None, ge=0)
    destination: Optional[str] = None
    requires_wheelchair: Optional[bool] = None

    @field_validator("trip_date", mode="before")
    @classmethod
    def _parse_date(cls, v: Any) -> Any:
        return _coerce_date(v)

    @field_validator("pickup_time", mode="before")
    @classmethod
    def _parse_time(cls, v: Any) -> Any:
        return _coerce_time(v)
