"""
Due-instance detection.

Pure functions of (now, configs, instances): no clock, no I/O. The runner
supplies the real time at the integration boundary.

Missed-window policy: an instance is newly due only while `now` is inside
the tolerance window after its target time. Once the window closes a
pending instance is left alone until the next scheduled day.
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple

from taskflow.core.clock import as_utc
from taskflow.core.schedule_config import load_timezone, parse_time_of_day
from taskflow.models.workflow import ScheduleConfig, WorkflowInstance, WorkflowKind, WorkflowState

NOTIFY_WINDOW = timedelta(minutes=5)


class DuePath(str, Enum):
    FIRST_NOTIFY = "first_notify"
    RESUME = "resume"  # snoozed and expired


@dataclass(frozen=True)
class DueInstance:
    kind: WorkflowKind
    workflow_date: date
    path: DuePath
    pre_state: WorkflowState
    due_at: datetime  # aware UTC

    @property
    def key(self) -> Tuple[WorkflowKind, date]:
        return (self.kind, self.workflow_date)


def local_date(config: ScheduleConfig, now: datetime) -> date:
    """Calendar date of `now` in the schedule's timezone."""
    return as_utc(now).astimezone(load_timezone(config.timezone)).date()


def scheduled_instant(config: ScheduleConfig, on_date: date) -> datetime:
    """Target instant (aware UTC) for the schedule on a local calendar date."""
    tz = load_timezone(config.timezone)
    local = datetime.combine(on_date, parse_time_of_day(config.time_of_day), tzinfo=tz)
    return local.astimezone(timezone.utc)


def next_occurrence(config: ScheduleConfig, now: datetime) -> datetime:
    """Next target instant at or after `now`."""
    today = local_date(config, now)
    target = scheduled_instant(config, today)
    if target < as_utc(now):
        target = scheduled_instant(config, today + timedelta(days=1))
    return target


def find_due_instances(
    now: datetime,
    configs: Iterable[ScheduleConfig],
    instances: Iterable[WorkflowInstance],
    window: timedelta = NOTIFY_WINDOW,
) -> List[DueInstance]:
    now = as_utc(now)
    by_key: Dict[Tuple[WorkflowKind, date], WorkflowInstance] = {
        (i.kind, i.workflow_date): i for i in instances
    }
    enabled = {c.kind: c for c in configs if c.enabled}
    due: Dict[Tuple[WorkflowKind, date], DueInstance] = {}

    # Snoozed and expired: re-dispatch regardless of the schedule window
    for key, instance in by_key.items():
        if instance.kind not in enabled or instance.state != WorkflowState.SNOOZED:
            continue
        snooze_until = as_utc(instance.snooze_until)
        if snooze_until is not None and now >= snooze_until:
            due[key] = DueInstance(instance.kind, instance.workflow_date, DuePath.RESUME, instance.state, snooze_until)

    # Newly due inside the tolerance window
    for kind, config in enabled.items():
        today = local_date(config, now)
        key = (kind, today)
        if key in due:
            continue
        target = scheduled_instant(config, today)
        elapsed = now - target
        if not (timedelta(0) <= elapsed <= window):
            continue
        instance: Optional[WorkflowInstance] = by_key.get(key)
        state = instance.state if instance else WorkflowState.PENDING
        if state != WorkflowState.PENDING:
            continue
        due[key] = DueInstance(kind, today, DuePath.FIRST_NOTIFY, state, target)

    kind_order = list(WorkflowKind)
    return sorted(due.values(), key=lambda d: (kind_order.index(d.kind), d.workflow_date))


def detection_keys(now: datetime, configs: Iterable[ScheduleConfig]) -> List[Tuple[WorkflowKind, date]]:
    """Instance keys the detector needs loaded for the schedule-window check."""
    return [(c.kind, local_date(c, now)) for c in configs if c.enabled]
