from .workflow import (
    ActivityLogEntry,
    RunOutcome,
    ScheduleConfig,
    SchedulerRunStatus,
    WorkflowInstance,
    WorkflowKind,
    WorkflowState,
)

__all__ = [
    "ActivityLogEntry",
    "RunOutcome",
    "ScheduleConfig",
    "SchedulerRunStatus",
    "WorkflowInstance",
    "WorkflowKind",
    "WorkflowState",
]
