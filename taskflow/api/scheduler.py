import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from taskflow.core.auth import require_api_key
from taskflow.core.engine import WorkflowEngine, get_engine
from taskflow.core.logging_config import recent_logs
from taskflow.models.workflow import ActivityLogEntry

router = APIRouter(prefix="/scheduler", tags=["Scheduler"], dependencies=[Depends(require_api_key)])
logger = logging.getLogger("taskflow.api.scheduler")


@router.get("/status")
async def get_scheduler_status(engine: WorkflowEngine = Depends(get_engine)):
    """Last run plus live lease information."""
    return await engine.runner.get_status()


@router.post("/run")
async def run_scheduler(engine: WorkflowEngine = Depends(get_engine)):
    """Run one tick now. Goes through the same lease as the cron trigger."""
    return await engine.runner.trigger_manually()


@router.post("/cleanup")
async def cleanup(days: int = Query(90, ge=1, le=3650), engine: WorkflowEngine = Depends(get_engine)):
    result = await engine.runner.cleanup(days)
    if result is None:
        raise HTTPException(status_code=500, detail="Cleanup failed, see scheduler activity")
    return {"status": "success", "days_kept": days, **result.model_dump()}


@router.get("/activity", response_model=List[ActivityLogEntry])
async def get_activity(
    limit: int = Query(100, ge=1, le=1000),
    kind: Optional[str] = Query(None),
    engine: WorkflowEngine = Depends(get_engine),
):
    return await engine.activity.recent(limit, kind=kind)


@router.get("/log")
async def get_logs(
    limit: int = Query(100, ge=1, le=2000),
    level: Optional[str] = Query(None, description="Minimum level, e.g. WARNING"),
    area: Optional[str] = Query(None, description="Logger area, e.g. runner or notifier"),
):
    """Recent in-process log records."""
    try:
        return {"logs": recent_logs(limit, level=level, area=area)}
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
