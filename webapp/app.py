"""FastAPI app for triggering and inspecting selection cycles."""

from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import datetime, timezone
import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException, Query
from pydantic import BaseModel, Field

from config import get_selection_settings
from utils.exceptions import CycleInProgressError
from webapp.runtime import close_runtime, get_orchestrator


logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    yield
    await close_runtime()


app = FastAPI(title="HK News Candidate Selection API", lifespan=lifespan)


class CycleTriggerPayload(BaseModel):
    count: Optional[int] = Field(default=None, ge=1, le=10)
    flexible_count: Optional[bool] = None
    breaking_fast_lane: Optional[bool] = None
    dynamic_threshold: Optional[bool] = None
    trigger: str = Field(default="api", max_length=64)


@app.get("/api/health")
def health() -> Dict[str, Any]:
    return {"ok": True, "ts": datetime.now(timezone.utc).isoformat(timespec="seconds")}


@app.post("/api/cycles")
async def trigger_cycle(payload: CycleTriggerPayload) -> Dict[str, Any]:
    orchestrator = get_orchestrator()
    overrides = {
        key: value
        for key, value in {
            "flexible_count": payload.flexible_count,
            "breaking_fast_lane": payload.breaking_fast_lane,
            "dynamic_threshold": payload.dynamic_threshold,
        }.items()
        if value is not None
    }
    config = replace(orchestrator.config, **overrides) if overrides else None
    count = payload.count or get_selection_settings().target_count
    try:
        result = await orchestrator.run_cycle(count, config=config, trigger=payload.trigger)
    except CycleInProgressError as exc:
        raise HTTPException(status_code=409, detail={"message": exc.message, "cycle_id": exc.cycle_id}) from exc
    return {
        "cycle_id": result.session_id,
        "status": result.status,
        "result": result.model_dump(mode="json"),
    }


@app.get("/api/cycles")
def list_cycles(limit: int = Query(default=20, ge=1, le=200)) -> Dict[str, Any]:
    orchestrator = get_orchestrator()
    cycles = orchestrator.list_cycles(limit)
    return {
        "running": orchestrator.is_running(),
        "current_cycle": orchestrator.current_cycle,
        "cycles": [status.model_dump(mode="json", exclude={"result"}) for status in cycles],
    }


@app.get("/api/cycles/{cycle_id}")
def get_cycle(cycle_id: str) -> Dict[str, Any]:
    orchestrator = get_orchestrator()
    status = orchestrator.get_cycle_status(cycle_id)
    if status is None:
        raise HTTPException(status_code=404, detail="cycle not found")
    return {
        "status": status.model_dump(mode="json"),
        "events": orchestrator.list_events(cycle_id),
    }


@app.get("/api/statistics")
async def statistics(hours: float = Query(default=24, gt=0, le=24 * 14)) -> Dict[str, Any]:
    return await get_orchestrator().statistics(hours)


@app.post("/api/maintenance/cleanup-stale")
async def cleanup_stale(hours: Optional[float] = Query(default=None, gt=0, le=24 * 7)) -> Dict[str, Any]:
    return await get_orchestrator().cleanup_stale_selections(hours)
