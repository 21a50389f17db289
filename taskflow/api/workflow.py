import logging
from datetime import date
from typing import Any, Dict, List

from fastapi import APIRouter, Body, Depends, HTTPException, Query
from pydantic import BaseModel

from taskflow.core.auth import require_api_key
from taskflow.core.engine import WorkflowEngine, get_engine
from taskflow.core.errors import ConfigValidationError, InvalidTransitionError
from taskflow.core.mq import MQService
from taskflow.core.schedule_config import available_timezone_names
from taskflow.core.scheduler import SchedulerService
from taskflow.core.state_machine import TransitionResult
from taskflow.models.workflow import ScheduleConfig, WorkflowInstance, WorkflowKind

router = APIRouter(prefix="/workflow", tags=["Workflow"], dependencies=[Depends(require_api_key)])
logger = logging.getLogger("taskflow.api.workflow")


class SnoozeRequest(BaseModel):
    minutes: int


async def _transition(coro) -> Dict[str, Any]:
    try:
        result: TransitionResult = await coro
    except InvalidTransitionError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return result.to_dict()


@router.post("/{kind}/{workflow_date}/snooze")
async def snooze_workflow(
    kind: WorkflowKind,
    workflow_date: date,
    request: SnoozeRequest = Body(...),
    engine: WorkflowEngine = Depends(get_engine),
):
    """Snooze a notified workflow for one of the allowed durations."""
    return await _transition(engine.machine.snooze(kind, workflow_date, request.minutes))


@router.post("/{kind}/{workflow_date}/start")
async def start_workflow(kind: WorkflowKind, workflow_date: date, engine: WorkflowEngine = Depends(get_engine)):
    return await _transition(engine.machine.start(kind, workflow_date))


@router.post("/{kind}/{workflow_date}/complete")
async def complete_workflow(kind: WorkflowKind, workflow_date: date, engine: WorkflowEngine = Depends(get_engine)):
    return await _transition(engine.machine.complete(kind, workflow_date))


@router.post("/{kind}/{workflow_date}/cancel")
async def cancel_workflow(kind: WorkflowKind, workflow_date: date, engine: WorkflowEngine = Depends(get_engine)):
    """Cancel today's workflow. Stays cancelled."""
    return await _transition(engine.machine.cancel(kind, workflow_date))


@router.get("/state/{kind}/{workflow_date}", response_model=WorkflowInstance)
async def get_workflow_state(kind: WorkflowKind, workflow_date: date, engine: WorkflowEngine = Depends(get_engine)):
    return await engine.get_instance_state(kind, workflow_date)


@router.get("/schedules", response_model=List[ScheduleConfig])
async def list_schedules(engine: WorkflowEngine = Depends(get_engine)):
    return await engine.configs.get_all()


@router.get("/schedules/{kind}", response_model=ScheduleConfig)
async def get_schedule(kind: WorkflowKind, engine: WorkflowEngine = Depends(get_engine)):
    return await engine.configs.get(kind)


@router.put("/schedules/{kind}", response_model=ScheduleConfig)
async def update_schedule(
    kind: WorkflowKind,
    fields: Dict[str, Any] = Body(...),
    engine: WorkflowEngine = Depends(get_engine),
):
    """Partial update. Unknown fields, bad times and unknown timezones are rejected."""
    try:
        config = await engine.configure(kind, fields)
    except ConfigValidationError as e:
        raise HTTPException(status_code=422, detail={"message": str(e), "field": e.field})
    await SchedulerService.get_instance().refresh_tick(await engine.configs.get_all())
    return config


@router.get("/timezones", response_model=List[str])
async def list_timezones():
    """IANA zone names accepted by the schedule timezone field."""
    return available_timezone_names()


@router.get("/metrics")
async def get_metrics(days: int = Query(30, ge=1, le=365), engine: WorkflowEngine = Depends(get_engine)):
    return await engine.get_metrics(days)


@router.get("/inbox")
async def get_inbox(limit: int = Query(20, ge=1, le=200)):
    """Workflow prompts queued for the in-app chat surface."""
    try:
        messages = await MQService.recent_inapp(limit)
    except Exception as e:
        logger.error(f"Failed to read in-app queue: {e}")
        raise HTTPException(status_code=503, detail="In-app queue unavailable")
    return {"messages": [m.model_dump(mode="json") for m in messages]}


@router.post("/test/{kind}")
async def send_test_notification(kind: WorkflowKind, engine: WorkflowEngine = Depends(get_engine)):
    """Send a test notification for today's instance without changing its state."""
    return await engine.runner.trigger_manually(kind)

