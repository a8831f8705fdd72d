from __future__ import annotations
import logging
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Optional

from fastapi import APIRouter, HTTPException, Query

from .engine import SchedulingEngine
from .errors import SchedulingInputError, StorageError, UnknownEntityError
from .models import (
    AssignmentReport, CheckConflictsRequest, CommitReport, CommitRouteRequest, ConflictCheckResponse,
    CopyReport, CopyWeekRequest, DateRangeRequest, DriverDayScore, GenerateRequest, GenerationReport,
    OptimizationResponse, OptimizeRouteRequest, UnassignedCustomer,
)
from ..timeparse import parse_date

logger = logging.getLogger(__name__)


def create_router(get_engine: Callable[[], Optional[SchedulingEngine]]) -> APIRouter:
    """
    Factory that returns the /tenants/{tenant_id} router. Uses a callable to fetch the
    current engine from the backend so /admin/reload can swap it.
    """
    router = APIRouter(prefix="/tenants/{tenant_id}", tags=["Scheduling"])

    # ------------------- Shared Helpers -------------------

    def ensure_ready() -> SchedulingEngine:
        engine = get_engine()
        if engine is None:
            raise HTTPException(
                status_code=503,
                detail="Tenant data not loaded. Build the dataset and POST /admin/reload.",
            )
        return engine

    @contextmanager
    def translate_errors(action: str) -> Iterator[None]:
        try:
            yield
        except UnknownEntityError as e:
            raise HTTPException(status_code=404, detail=str(e))
        except SchedulingInputError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except StorageError as e:
            logger.error("%s failed to persist: %s", action, e)
            raise HTTPException(status_code=503, detail=f"{e}. Nothing was saved; retry the whole batch.")

    def query_range(start_date: Optional[str], end_date: Optional[str]):
        if not start_date or not end_date:
            raise HTTPException(status_code=400, detail="start_date and end_date are required")
        try:
            return parse_date(start_date), parse_date(end_date)
        except (ValueError, OverflowError):
            raise HTTPException(status_code=400, detail=f"Invalid date range {start_date!r}..{end_date!r}")

    # ------------------- Trips -------------------

    @router.post("/trips/generate", response_model=GenerationReport)
    def generate_trips(tenant_id: str, req: GenerateRequest):
        engine = ensure_ready()
        with translate_errors("generate"):
            return engine.generate(tenant_id, req.start_date, req.end_date, overwrite=req.overwrite)

    @router.post("/trips/auto-assign", response_model=AssignmentReport)
    def auto_assign(tenant_id: str, req: DateRangeRequest):
        engine = ensure_ready()
        with translate_errors("auto-assign"):
            return engine.auto_assign(tenant_id, req.start_date, req.end_date)

    @router.post("/trips/check-conflicts", response_model=ConflictCheckResponse)
    def check_conflicts(tenant_id: str, req: CheckConflictsRequest):
        engine = ensure_ready()
        with translate_errors("check-conflicts"):
            return engine.check_conflicts(tenant_id, req)

    @router.post("/trips/copy-week", response_model=CopyReport)
    def copy_week(tenant_id: str, req: CopyWeekRequest):
        engine = ensure_ready()
        with translate_errors("copy-week"):
            return engine.copy_week(tenant_id, req.source_start_date, req.target_start_date, req.include_cancelled)

    @router.get("/trips/unassigned")
    def unassigned(
        tenant_id: str,
        start_date: Optional[str] = Query(None),
        end_date: Optional[str] = Query(None),
    ) -> Dict[str, Any]:
        engine = ensure_ready()
        start, end = query_range(start_date, end_date)
        with translate_errors("unassigned"):
            rows: List[UnassignedCustomer] = engine.unassigned_customers(tenant_id, start, end)
        return {"customers": [r.model_dump(mode="json") for r in rows], "count": len(rows)}

    # ------------------- Routes -------------------

    @router.post("/routes/optimize", response_model=OptimizationResponse)
    def optimize(tenant_id: str, req: OptimizeRouteRequest):
        engine = ensure_ready()
        with translate_errors("optimize"):
            result = engine.optimize_route(tenant_id, req.driver_id, req.trip_date)
        return OptimizationResponse(
            result=result,
            distance_saved_miles=result.distance_saved_miles,
            time_saved_minutes=result.time_saved_minutes,
        )

    @router.post("/routes/commit", response_model=CommitReport)
    def commit(tenant_id: str, req: CommitRouteRequest):
        engine = ensure_ready()
        with translate_errors("commit"):
            return engine.commit_route(tenant_id, req.driver_id, req.trip_date, req.trip_ids, req.pickup_times)

    @router.get("/routes/optimization-scores")
    def scores(
        tenant_id: str,
        start_date: Optional[str] = Query(None),
        end_date: Optional[str] = Query(None),
    ) -> Dict[str, Any]:
        engine = ensure_ready()
        start, end = query_range(start_date, end_date)
        with translate_errors("optimization-scores"):
            rows: List[DriverDayScore] = engine.optimization_scores(tenant_id, start, end)
        return {
            "scores": [r.model_dump(mode="json") for r in rows],
            "needs_optimization": sum(1 for r in rows if r.status == "needs_optimization"),
        }

    return router
