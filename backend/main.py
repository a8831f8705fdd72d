#!/usr/bin/env python3

"""
Backend for the weekly trip scheduling engine.

Run locally:
  uvicorn backend.main:app --host 0.0.0.0 --port 8000
"""

from __future__ import annotations
import os
import traceback
from dataclasses import asdict
from typing import Any, Dict, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.routing import APIRouter

from backend.settings_routes import router as settings_router
from tripsched.plan.config import dataset_dir, private_data_dir
from tripsched.plan.engine import SchedulingEngine
from tripsched.plan.router import create_router as create_scheduling_router
from tripsched.plan.store import JsonFileTripStore
from tripsched.runtime import configure_logging


# --------------------------------------------------------------------------------------------------
# Global Constants & Environment
# --------------------------------------------------------------------------------------------------
logger = configure_logging("backend")

DEBUG_API = os.getenv("DEBUG_API", "0") == "1"
CORS_ALLOW_ORIGINS = os.getenv("CORS_ALLOW_ORIGINS", "*")
ALLOW_ORIGINS = [o.strip() for o in CORS_ALLOW_ORIGINS.split(",") if o.strip()] or ["*"]

ENGINE: Optional[SchedulingEngine] = None


def tenants_dir():
    return dataset_dir() / "tenants"


# --------------------------------------------------------------------------------------------------
# Data Loading
# --------------------------------------------------------------------------------------------------
def load_engine() -> SchedulingEngine:
    store = JsonFileTripStore(tenants_dir())
    count = store.load_all()
    if count == 0:
        raise FileNotFoundError(f"No tenant datasets (*.json) found in {tenants_dir()}")
    return SchedulingEngine.from_env(store)


def engine_summary(engine: SchedulingEngine) -> Dict[str, Any]:
    return {
        "tenants": engine.store.tenant_ids(),
        "distance_source": engine.distance_source.name if engine.distance_source else "estimated",
        "settings": asdict(engine.settings),
    }


# --------------------------------------------------------------------------------------------------
# Admin Router (reload)
# --------------------------------------------------------------------------------------------------
def admin_router() -> APIRouter:
    router = APIRouter(prefix="/admin", tags=["Admin"])

    @router.post("/reload")
    def admin_reload():
        """Reload tenant datasets and settings from disk"""
        global ENGINE
        try:
            ENGINE = load_engine()
        except Exception as e:
            logger.warning("Reload failed: %s", e)
            payload = {"status": "error", "error": str(e)}
            if DEBUG_API:
                payload["traceback"] = traceback.format_exc()
            return payload
        logger.info("Reloaded %d tenant(s)", len(ENGINE.store.tenant_ids()))
        return {"status": "ok", "reloaded": engine_summary(ENGINE)}

    return router


# --------------------------------------------------------------------------------------------------
# Public Endpoints
# --------------------------------------------------------------------------------------------------
def register_routes(app: FastAPI):
    @app.get("/health")
    def health():
        base = {
            "status": "ok" if ENGINE else "needs_data",
            "private_data_dir": str(private_data_dir()),
            "tenants_dir": str(tenants_dir()),
        }
        if ENGINE is None:
            return {**base, "message": "Tenant data not loaded. POST /admin/reload."}
        return {**base, **engine_summary(ENGINE)}


# --------------------------------------------------------------------------------------------------
# FastAPI App (with lifespan)
# --------------------------------------------------------------------------------------------------
def create_app() -> FastAPI:
    async def lifespan(app: FastAPI):
        global ENGINE
        try:
            ENGINE = load_engine()
            logger.info("Loaded tenant data OK: %s", ", ".join(ENGINE.store.tenant_ids()))
        except Exception as e:
            logger.warning("Tenant data not loaded: %s", e)
        yield

    app = FastAPI(title="Trip Scheduling & Assignment Engine", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=ALLOW_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(Exception)
    async def global_exception_handler(request, exc):
        logger.exception("Unhandled error on %s", request.url.path)
        payload = {"error": str(exc)}
        if DEBUG_API:
            payload["traceback"] = traceback.format_exc()
        return JSONResponse(status_code=500, content=payload)

    app.include_router(settings_router)
    app.include_router(admin_router())
    app.include_router(create_scheduling_router(lambda: ENGINE))

    register_routes(app)
    return app

app = create_app()


# --------------------------------------------------------------------------------------------------
# Entrypoint
# --------------------------------------------------------------------------------------------------
if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", "8000"))
    uvicorn.run("backend.main:app", host="0.0.0.0", port=port, reload=False)
