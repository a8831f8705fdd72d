from __future__ import annotations
import os, json
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional

def _env_bool(name: str, default: bool) -> bool:
    v = os.getenv(name, str(default)).strip().lower()
    return v in ("1", "true", "yes", "y", "on")

def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except Exception:
        return float(default)

def _env_int(name: str, default: int) -> int:
    try:
        return int(float(os.getenv(name, str(default))))
    except Exception:
        return int(default)

BAND_SPLIT_HOUR = _env_int("BAND_SPLIT_HOUR", 12)
DEFAULT_TRIP_MINUTES = _env_int("DEFAULT_TRIP_MINUTES", 45)
TURNAROUND_BUFFER_MINUTES = _env_int("TURNAROUND_BUFFER_MINUTES", 15)
MAX_DAILY_TRIPS = _env_int("MAX_DAILY_TRIPS", 0)  # 0 = unlimited
PREFER_REGULAR_DRIVER = _env_bool("PREFER_REGULAR_DRIVER", True)
MAX_RANGE_DAYS = _env_int("MAX_RANGE_DAYS", 62)

DISTANCE_TIMEOUT_SEC = _env_float("DISTANCE_TIMEOUT_SEC", 10.0)
ROAD_FACTOR = _env_float("ROAD_FACTOR", 1.25)
AVERAGE_SPEED_MPH = _env_float("AVERAGE_SPEED_MPH", 30.0)


@dataclass(frozen=True)
class EngineSettings:
    band_split_hour: int = 12
    default_trip_minutes: int = 45
    turnaround_buffer_minutes: int = 15
    max_daily_trips: int = 0
    prefer_regular_driver: bool = True
    max_range_days: int = 62
    distance_timeout_sec: float = 10.0
    road_factor: float = 1.25
    average_speed_mph: float = 30.0

    def with_overrides(self, overrides: Optional[Dict[str, Any]]) -> "EngineSettings":
        if not overrides:
            return self
        known = {f.name for f in fields(self)}
        clean: Dict[str, Any] = {}
        for k, v in overrides.items():
            if k not in known or v is None:
                continue
            current = getattr(self, k)
            try:
                clean[k] = type(current)(v) if not isinstance(current, bool) else str(v).strip().lower() in ("1", "true", "yes", "y", "on")
            except (TypeError, ValueError):
                continue
        return replace(self, **clean)


def settings_from_env() -> EngineSettings:
    return EngineSettings(
        band_split_hour=BAND_SPLIT_HOUR,
        default_trip_minutes=DEFAULT_TRIP_MINUTES,
        turnaround_buffer_minutes=TURNAROUND_BUFFER_MINUTES,
        max_daily_trips=MAX_DAILY_TRIPS,
        prefer_regular_driver=PREFER_REGULAR_DRIVER,
        max_range_days=MAX_RANGE_DAYS,
        distance_timeout_sec=DISTANCE_TIMEOUT_SEC,
        road_factor=ROAD_FACTOR,
        average_speed_mph=AVERAGE_SPEED_MPH,
    )

def google_maps_api_key() -> Optional[str]:
    key = os.getenv("GOOGLE_MAPS_API_KEY", "").strip()
    if not key or key == "your_google_maps_api_key_here":
        return None
    return key

def private_data_dir() -> Path:
    return Path(os.getenv("PRIVATE_DATA_DIR", "./data/private")).resolve()

def dataset_dir() -> Path:
    base = private_data_dir()
    d = base / "active"
    return d if d.exists() else base

def global_settings_path() -> Path:
    return private_data_dir() / "global_settings.json"

def _load_json(path: Path, default: Any) -> Any:
    try:
        if path.exists():
            return json.loads(path.read_text(encoding="utf-8"))
    except Exception:
        pass
    return default

def load_settings_overrides() -> Dict[str, Any]:
    raw = _load_json(global_settings_path(), {})
    engine = raw.get("engine") if isinstance(raw, dict) else None
    return engine if isinstance(engine, dict) else {}
