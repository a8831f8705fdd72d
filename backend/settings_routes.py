# backend/settings_routes.py
from __future__ import annotations

import json
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict, Optional

from fastapi import APIRouter, HTTPException

from tripsched.plan.config import EngineSettings, global_settings_path, private_data_dir, settings_from_env

router = APIRouter(tags=["settings"])

# ---- Paths & helpers ---------------------------------------------------------

ENGINE_KEYS = set(asdict(EngineSettings()))

def ensure_dirs():
    private_data_dir().mkdir(parents=True, exist_ok=True)

def default_global_settings() -> Dict[str, Any]:
    # Environment values are the starting point; the settings page edits from there
    return {"engine": asdict(settings_from_env())}

def load_json(path: Path, default: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    if path.exists():
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except Exception as e:
            raise HTTPException(status_code=500, detail=f"Failed to read {path.name}: {e}")
    return default or {}

def save_json(path: Path, payload: Dict[str, Any]) -> None:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to write {path.name}: {e}")

def validate_engine_section(engine: Any) -> Dict[str, Any]:
    if not isinstance(engine, dict):
        raise HTTPException(status_code=400, detail="'engine' must be an object")
    unknown = sorted(set(engine) - ENGINE_KEYS)
    if unknown:
        raise HTTPException(status_code=400, detail=f"Unknown engine setting(s): {', '.join(unknown)}")
    for key in ("band_split_hour",):
        if key in engine and not (0 <= int(engine[key]) <= 24):
            raise HTTPException(status_code=400, detail=f"{key} must be between 0 and 24")
    for key in ("default_trip_minutes", "turnaround_buffer_minutes", "max_daily_trips", "max_range_days"):
        if key in engine and int(engine[key]) < 0:
            raise HTTPException(status_code=400, detail=f"{key} must not be negative")
    for key in ("distance_timeout_sec", "road_factor", "average_speed_mph"):
        if key in engine and float(engine[key]) <= 0:
            raise HTTPException(status_code=400, detail=f"{key} must be positive")
    return engine

# ---- global settings ---------------------------------------------------------

@router.get("/settings")
def get_settings():
    ensure_dirs()
    return load_json(global_settings_path(), default_global_settings())

@router.post("/settings")
def post_settings(payload: Dict[str, Any]):
    ensure_dirs()
    if "engine" not in payload:
        raise HTTPException(status_code=400, detail="Missing key: engine")
    try:
        validate_engine_section(payload["engine"])
    except (TypeError, ValueError) as e:
        raise HTTPException(status_code=400, detail=f"Invalid engine setting: {e}")
    save_json(global_settings_path(), payload)
    return {"status": "ok", "message": "global_settings.json updated; POST /admin/reload to apply"}
