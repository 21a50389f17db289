from datetime import date, datetime
from enum import Enum
from typing import Optional

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel


class WorkflowKind(str, Enum):
    MORNING = "morning"
    EVENING = "evening"


class WorkflowState(str, Enum):
    PENDING = "pending"
    NOTIFIED = "notified"
    SNOOZED = "snoozed"
    STARTED = "started"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


TERMINAL_STATES = frozenset({WorkflowState.COMPLETED, WorkflowState.CANCELLED})


class RunOutcome(str, Enum):
    SUCCESS = "success"
    ERROR = "error"
    SKIPPED = "skipped"  # Another run held the lease


class ScheduleConfig(SQLModel, table=True):
    """
    One row per workflow kind.
    """
    __tablename__ = "schedule_configs"

    kind: WorkflowKind = Field(primary_key=True)
    enabled: bool = Field(default=True)
    time_of_day: str = Field(default="09:00")  # Local 'HH:MM'
    timezone: str = Field(default="UTC")  # IANA identifier
    channel_id: str = Field(default="")  # Push target: chat id or ntfy topic

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class WorkflowInstance(SQLModel, table=True):
    """
    Daily occurrence of a ritual. Timestamps are naive UTC.
    """
    __tablename__ = "workflow_instances"
    __table_args__ = (UniqueConstraint("kind", "workflow_date", name="uq_workflow_kind_date"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    kind: WorkflowKind = Field(index=True)
    workflow_date: date = Field(index=True)
    state: WorkflowState = Field(default=WorkflowState.PENDING, index=True)

    snooze_until: Optional[datetime] = None  # Only set while snoozed
    snooze_count: int = Field(default=0)

    notified_at: Optional[datetime] = None
    last_notified_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class ActivityLogEntry(SQLModel, table=True):
    """
    Append-only record of scheduler and transition activity.
    """
    __tablename__ = "workflow_activity_log"

    id: Optional[int] = Field(default=None, primary_key=True)
    kind: str = Field(index=True)  # 'morning', 'evening' or 'system'
    workflow_date: date = Field(index=True)

    action: str = Field(index=True)  # e.g. 'notification_sent', 'snoozed', 'lock_contention'
    status: str  # 'success', 'error', 'noop', 'rejected', 'skipped', 'info'
    message: Optional[str] = None
    error_details: Optional[str] = None

    created_at: datetime = Field(default_factory=datetime.utcnow, index=True)


class SchedulerRunStatus(SQLModel, table=True):
    __tablename__ = "scheduler_run_status"

    id: Optional[int] = Field(default=None, primary_key=True)
    last_run: datetime
    duration_ms: float = Field(default=0.0)
    instances_processed: int = Field(default=0)
    outcome: RunOutcome = Field(default=RunOutcome.SUCCESS)
    error_message: Optional[str] = None

    created_at: datetime = Field(default_factory=datetime.utcnow, index=True)
