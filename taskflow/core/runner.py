"""
Scheduler Runner: one tick of the workflow notification engine.

    lease -> detect -> (dispatch -> notify) per due instance -> run status -> release

`run()` never raises. Lock contention, timeouts and per-instance failures
are recorded and reported in the returned RunResult.
"""

import asyncio
import logging
import time
from datetime import date, datetime, timedelta
from typing import List, Optional

from pydantic import BaseModel, Field
from sqlmodel import select

from taskflow.core.activity_log import ActivityLog, CleanupResult
from taskflow.core.clock import Clock, as_utc, utc_naive, utc_now
from taskflow.core.detector import (
    NOTIFY_WINDOW,
    DueInstance,
    detection_keys,
    find_due_instances,
    local_date,
    next_occurrence,
)
from taskflow.core.errors import LockContentionSkip, RunTimeoutAbort
from taskflow.core.lease import RunLock
from taskflow.core.notifier import DispatchResult, NotificationDispatcher
from taskflow.core.schedule_config import ScheduleConfigStore
from taskflow.core.state_machine import WorkflowStateMachine
from taskflow.core.workflow_state import WorkflowStateStore
from taskflow.models.workflow import RunOutcome, ScheduleConfig, SchedulerRunStatus, WorkflowKind

logger = logging.getLogger("taskflow.runner")


class InstanceOutcome(BaseModel):
    kind: WorkflowKind
    workflow_date: date
    path: str
    delivered: bool = False
    error: Optional[str] = None


class RunResult(BaseModel):
    outcome: RunOutcome
    started_at: datetime
    duration_ms: float = 0.0
    processed: int = 0
    instances: List[InstanceOutcome] = Field(default_factory=list)
    error: Optional[str] = None
    stale_lock_recovered: bool = False


class SchedulerRunner:
    def __init__(
        self,
        lock: RunLock,
        configs: ScheduleConfigStore,
        states: WorkflowStateStore,
        machine: WorkflowStateMachine,
        dispatcher: NotificationDispatcher,
        activity: ActivityLog,
        session_factory,
        clock: Clock = utc_now,
        max_execution: timedelta = timedelta(seconds=300),
        window: timedelta = NOTIFY_WINDOW,
        retention_days: int = 90,
        status_retention_days: int = 30,
    ):
        self.lock = lock
        self.configs = configs
        self.states = states
        self.machine = machine
        self.dispatcher = dispatcher
        self.activity = activity
        self._session_factory = session_factory
        self._clock = clock
        self.max_execution = max_execution
        self.window = window
        self.retention_days = retention_days
        self.status_retention_days = status_retention_days

    # ---- Tick ----

    async def run(self) -> RunResult:
        started = self._clock()
        t0 = time.monotonic()
        result = RunResult(outcome=RunOutcome.SUCCESS, started_at=started)

        try:
            acquisition = await self.lock.acquire()
        except LockContentionSkip as e:
            logger.info(f"Scheduler tick skipped: {e}")
            result.outcome = RunOutcome.SKIPPED
            result.error = str(e)
            await self._safe_record_system("lock_contention", "skipped", str(e))
            await self._record_status(result, t0)
            return result
        except Exception as e:
            logger.error(f"Could not acquire run lease: {e}", exc_info=True)
            result.outcome = RunOutcome.ERROR
            result.error = f"Lease unavailable: {e}"
            await self._record_status(result, t0)
            return result

        try:
            if acquisition.recovered is not None:
                stale = acquisition.recovered
                result.stale_lock_recovered = True
                await self._safe_record_system(
                    "stale_lock_recovered",
                    "info",
                    f"Removed stale lease held by {stale.owner or 'unknown'} since {as_utc(stale.acquired_at).isoformat()}",
                )

            try:
                await asyncio.wait_for(self._process(result), timeout=self.max_execution.total_seconds())
            except asyncio.TimeoutError:
                abort = RunTimeoutAbort(self.max_execution.total_seconds(), result.processed)
                logger.error(f"Scheduler run aborted: {abort}")
                result.outcome = RunOutcome.ERROR
                result.error = str(abort)
                await self._safe_record_system("run_timeout", "error", str(abort))
            except Exception as e:
                logger.error(f"Scheduler run failed: {e}", exc_info=True)
                result.outcome = RunOutcome.ERROR
                result.error = str(e)
                await self._safe_record_system("scheduler_error", "error", "Scheduler run failed", str(e))

            await self._record_status(result, t0)
        finally:
            try:
                await self.lock.release(acquisition.lease)
            except Exception as e:
                logger.error(f"Failed to release run lease: {e}")

        logger.info(
            f"Scheduler run {result.outcome.value}: {result.processed} processed in {result.duration_ms:.0f}ms"
        )
        return result

    async def _process(self, result: RunResult):
        now = self._clock()
        all_configs = await self.configs.get_all()
        due = await self.find_due(now, all_configs)
        if due:
            logger.info(f"Found {len(due)} due workflow instance(s)")

        configs = {c.kind: c for c in all_configs}
        for item in due:
            outcome = InstanceOutcome(kind=item.kind, workflow_date=item.workflow_date, path=item.path.value)
            try:
                dispatch = await self.dispatcher.dispatch(item.kind, item.workflow_date, configs[item.kind])
                if dispatch.delivered:
                    await self.machine.notify(item.kind, item.workflow_date)
                    outcome.delivered = True
                else:
                    # Stays pending/snoozed for a later tick
                    outcome.error = dispatch.error
            except Exception as e:
                logger.error(f"Failed to process {item.kind.value}/{item.workflow_date}: {e}", exc_info=True)
                outcome.error = str(e)
                await self._safe_record(item, "scheduler_error", "error", "Processing failed", str(e))
            result.instances.append(outcome)
            result.processed += 1

    async def find_due(self, now: datetime, configs: Optional[List[ScheduleConfig]] = None) -> List[DueInstance]:
        if configs is None:
            configs = await self.configs.get_all()
        instances = await self.states.get_many(detection_keys(now, configs))
        candidates = list(instances.values())
        for snoozed in await self.states.list_snoozed():
            if (snoozed.kind, snoozed.workflow_date) not in instances:
                candidates.append(snoozed)
        return find_due_instances(now, configs, candidates, self.window)

    # ---- Operator surface ----

    async def trigger_manually(self, kind: Optional[WorkflowKind] = None) -> dict:
        """
        Without a kind: run a normal tick. With a kind: send a test notification
        for today's instance without touching its state.
        """
        if kind is None:
            result = await self.run()
            return {"mode": "run", "result": result.model_dump(mode="json")}

        kind = WorkflowKind(kind)
        config = await self.configs.get(kind)
        today = local_date(config, self._clock())
        try:
            dispatch = await self.dispatcher.dispatch(kind, today, config, test=True)
        except Exception as e:
            logger.error(f"Manual trigger for {kind.value} failed: {e}", exc_info=True)
            dispatch = DispatchResult(delivered=False, error=str(e))

        await self.activity.record(
            kind,
            today,
            "manual_trigger",
            "success" if dispatch.delivered else "error",
            "Test notification sent" if dispatch.delivered else "Test notification failed",
            error_details=dispatch.error,
        )
        return {"mode": "test", "kind": kind.value, "date": today.isoformat(), "dispatch": dispatch.model_dump(mode="json")}

    async def get_status(self) -> dict:
        now = self._clock()
        async with self._session_factory() as session:
            res = await session.execute(
                select(SchedulerRunStatus).order_by(SchedulerRunStatus.last_run.desc(), SchedulerRunStatus.id.desc())
            )
            latest = res.scalars().first()

        lease = await self.lock.current()
        lock_age = lease.age(now).total_seconds() if lease else None
        configs = [c for c in await self.configs.get_all() if c.enabled]
        upcoming = [next_occurrence(c, now) for c in configs]

        return {
            "last_run": as_utc(latest.last_run).isoformat() if latest else None,
            "duration_ms": latest.duration_ms if latest else None,
            "instances_processed": latest.instances_processed if latest else 0,
            "outcome": latest.outcome.value if latest else None,
            "error_message": latest.error_message if latest else None,
            "is_running": lease is not None and lock_age < self.lock.max_age.total_seconds(),
            "lock_owner": lease.owner if lease else None,
            "lock_age_seconds": round(lock_age, 1) if lock_age is not None else None,
            "next_check_estimate": min(upcoming).isoformat() if upcoming else None,
        }

    async def cleanup(self, days_to_keep: Optional[int] = None) -> Optional[CleanupResult]:
        """Retention sweep. Failures are logged, never raised to the trigger."""
        days = days_to_keep if days_to_keep is not None else self.retention_days
        try:
            return await self.activity.cleanup(days, self.status_retention_days)
        except Exception as e:
            logger.error(f"Cleanup failed: {e}", exc_info=True)
            await self._safe_record_system("cleanup_failed", "error", "Retention cleanup failed", str(e))
            return None

    # ---- Internals ----

    async def _record_status(self, result: RunResult, t0: float):
        result.duration_ms = round((time.monotonic() - t0) * 1000, 2)
        try:
            async with self._session_factory() as session:
                session.add(
                    SchedulerRunStatus(
                        last_run=utc_naive(result.started_at),
                        duration_ms=result.duration_ms,
                        instances_processed=result.processed,
                        outcome=result.outcome,
                        error_message=result.error,
                        created_at=utc_naive(self._clock()),
                    )
                )
                await session.commit()
        except Exception as e:
            logger.error(f"Failed to record scheduler run status: {e}")

    async def _safe_record(self, item: DueInstance, action, status, message=None, error_details=None):
        try:
            await self.activity.record(item.kind, item.workflow_date, action, status, message, error_details)
        except Exception as e:
            logger.error(f"Failed to write activity log: {e}")

    async def _safe_record_system(self, action, status, message=None, error_details=None):
        try:
            await self.activity.record_system(action, status, message, error_details)
        except Exception as e:
            logger.error(f"Failed to write activity log: {e}")
