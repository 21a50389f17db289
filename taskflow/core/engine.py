"""
Wires the workflow components together.

The API, the APScheduler jobs, the Telegram callback handler and the CLI all
share one WorkflowEngine built from settings. Tests build their own with a
fake clock, in-memory lease store and recording channels.
"""

import logging
from dataclasses import dataclass
from datetime import date, timedelta
from typing import List, Optional, Sequence

from taskflow.core.activity_log import ActivityLog
from taskflow.core.clock import Clock, utc_now
from taskflow.core.config import Settings
from taskflow.core.lease import LeaseStore, MemoryLeaseStore, RedisLeaseStore, RunLock
from taskflow.core.metrics import get_workflow_metrics
from taskflow.core.notifier import NotificationChannel, NotificationDispatcher
from taskflow.core.runner import SchedulerRunner
from taskflow.core.schedule_config import ScheduleConfigStore
from taskflow.core.state_machine import WorkflowStateMachine
from taskflow.core.workflow_state import WorkflowStateStore
from taskflow.models.workflow import ScheduleConfig, WorkflowInstance, WorkflowKind

logger = logging.getLogger("taskflow.engine")


@dataclass
class WorkflowEngine:
    settings: Settings
    session_factory: object
    clock: Clock
    activity: ActivityLog
    configs: ScheduleConfigStore
    states: WorkflowStateStore
    machine: WorkflowStateMachine
    dispatcher: NotificationDispatcher
    lock: RunLock
    runner: SchedulerRunner

    async def get_instance_state(self, kind: WorkflowKind, workflow_date: date) -> WorkflowInstance:
        return await self.machine.get_instance_state(kind, workflow_date)

    async def configure(self, kind: WorkflowKind, fields) -> ScheduleConfig:
        return await self.configs.update(kind, fields)

    async def get_metrics(self, days: int = 30) -> dict:
        return await get_workflow_metrics(self.session_factory, days, clock=self.clock)


def build_channels(settings: Settings) -> List[NotificationChannel]:
    """Push channel from PUSH_BACKEND plus the in-app channel."""
    from taskflow.interfaces.inapp import InAppChannel

    channels: List[NotificationChannel] = []
    backend = settings.PUSH_BACKEND.lower()
    if backend == "telegram":
        from taskflow.interfaces.telegram import TelegramPushChannel

        channels.append(TelegramPushChannel(token=settings.TELEGRAM_BOT_TOKEN))
    elif backend == "ntfy":
        from taskflow.interfaces.ntfy import NtfyPushChannel

        channels.append(
            NtfyPushChannel(
                base_url=settings.NTFY_BASE_URL,
                public_base_url=settings.PUBLIC_BASE_URL,
                token=settings.NTFY_TOKEN,
                api_key=settings.API_KEY,
            )
        )
    elif backend != "none":
        logger.warning(f"Unknown PUSH_BACKEND '{settings.PUSH_BACKEND}', push notifications disabled")

    channels.append(InAppChannel())
    return channels


def build_lease_store(settings: Settings) -> LeaseStore:
    if settings.LEASE_BACKEND.lower() == "memory":
        return MemoryLeaseStore()
    return RedisLeaseStore()


def build_engine(
    settings: Settings,
    session_factory=None,
    clock: Optional[Clock] = None,
    lease_store: Optional[LeaseStore] = None,
    channels: Optional[Sequence[NotificationChannel]] = None,
) -> WorkflowEngine:
    if session_factory is None:
        from taskflow.core.db import AsyncSessionLocal

        session_factory = AsyncSessionLocal
    clock = clock or utc_now
    snooze_options = settings.snooze_minutes

    activity = ActivityLog(session_factory, clock=clock)
    configs = ScheduleConfigStore(
        session_factory, default_timezone=settings.DEFAULT_TIMEZONE, default_channel_id=settings.DEFAULT_CHANNEL_ID
    )
    states = WorkflowStateStore(session_factory)
    machine = WorkflowStateMachine(states, activity, session_factory, clock=clock, snooze_options=snooze_options)
    dispatcher = NotificationDispatcher(
        channels if channels is not None else build_channels(settings), activity, snooze_options=snooze_options
    )
    max_execution = timedelta(seconds=settings.SCHEDULER_MAX_EXECUTION_SECONDS)
    lock = RunLock(lease_store or build_lease_store(settings), max_age=max_execution, clock=clock)
    runner = SchedulerRunner(
        lock,
        configs,
        states,
        machine,
        dispatcher,
        activity,
        session_factory,
        clock=clock,
        max_execution=max_execution,
        window=timedelta(seconds=settings.NOTIFY_WINDOW_SECONDS),
        retention_days=settings.RETENTION_DAYS,
        status_retention_days=settings.STATUS_RETENTION_DAYS,
    )
    return WorkflowEngine(
        settings=settings,
        session_factory=session_factory,
        clock=clock,
        activity=activity,
        configs=configs,
        states=states,
        machine=machine,
        dispatcher=dispatcher,
        lock=lock,
        runner=runner,
    )


_engine: Optional[WorkflowEngine] = None


def get_engine() -> WorkflowEngine:
    global _engine
    if _engine is None:
        from taskflow.core.config import settings

        _engine = build_engine(settings)
    return _engine


def set_engine(engine: Optional[WorkflowEngine]):
    global _engine
    _engine = engine
