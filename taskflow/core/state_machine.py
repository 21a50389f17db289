import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Callable, Dict, FrozenSet, Iterable, Optional, Tuple

from taskflow.core.activity_log import ActivityLog
from taskflow.core.clock import Clock, utc_naive, utc_now
from taskflow.core.errors import InvalidTransitionError, TransitionNoOp
from taskflow.core.workflow_state import WorkflowStateStore
from taskflow.models.workflow import TERMINAL_STATES, WorkflowInstance, WorkflowKind, WorkflowState

logger = logging.getLogger("taskflow.state_machine")

# action -> (allowed source states, target state, activity label)
TRANSITIONS: Dict[str, Tuple[FrozenSet[WorkflowState], WorkflowState, str]] = {
    "notify": (frozenset({WorkflowState.PENDING, WorkflowState.SNOOZED}), WorkflowState.NOTIFIED, "notified"),
    "snooze": (frozenset({WorkflowState.NOTIFIED}), WorkflowState.SNOOZED, "snoozed"),
    "start": (frozenset({WorkflowState.NOTIFIED, WorkflowState.SNOOZED}), WorkflowState.STARTED, "started"),
    "complete": (frozenset({WorkflowState.STARTED}), WorkflowState.COMPLETED, "completed"),
    "cancel": (frozenset({WorkflowState.NOTIFIED, WorkflowState.SNOOZED}), WorkflowState.CANCELLED, "cancelled"),
}

USER_ACTIONS = ("start", "snooze", "cancel", "complete")


@dataclass
class TransitionResult:
    instance: WorkflowInstance
    action: str
    changed: bool
    previous_state: WorkflowState
    message: str

    @property
    def state(self) -> WorkflowState:
        return self.instance.state

    def to_dict(self) -> dict:
        return {
            "success": True,
            "changed": self.changed,
            "action": self.action,
            "kind": self.instance.kind.value,
            "date": self.instance.workflow_date.isoformat(),
            "previous_state": self.previous_state.value,
            "state": self.instance.state.value,
            "message": self.message,
        }


class WorkflowStateMachine:
    """
    Authoritative lifecycle transitions for (kind, date) workflow instances.

    completed and cancelled are terminal: further actions are accepted as
    no-ops so that taps on stale notification buttons never error.
    """

    def __init__(
        self,
        store: WorkflowStateStore,
        activity: ActivityLog,
        session_factory,
        clock: Clock = utc_now,
        snooze_options: Iterable[int] = (15, 30, 60),
    ):
        self._store = store
        self._activity = activity
        self._session_factory = session_factory
        self._clock = clock
        self.snooze_options = tuple(sorted(snooze_options))

    async def get_instance_state(self, kind: WorkflowKind, workflow_date: date) -> WorkflowInstance:
        """Read-only view. An untouched key reads as pending without being persisted."""
        instance = await self._store.get(kind, workflow_date)
        if instance is None:
            return WorkflowInstance(kind=WorkflowKind(kind), workflow_date=workflow_date, state=WorkflowState.PENDING)
        return instance

    # ---- Transitions ----

    async def notify(self, kind: WorkflowKind, workflow_date: date) -> TransitionResult:
        """pending|snoozed -> notified, after a successful dispatch."""

        def apply(instance: WorkflowInstance, now: datetime):
            if instance.notified_at is None:
                instance.notified_at = now
            instance.last_notified_at = now
            instance.snooze_until = None

        return await self._transition(kind, workflow_date, "notify", apply)

    async def snooze(self, kind: WorkflowKind, workflow_date: date, minutes: int) -> TransitionResult:
        def apply(instance: WorkflowInstance, now: datetime):
            instance.snooze_until = now + timedelta(minutes=minutes)
            instance.snooze_count = (instance.snooze_count or 0) + 1

        def validate(instance: WorkflowInstance):
            if minutes not in self.snooze_options:
                raise InvalidTransitionError(
                    f"Snooze must be one of {list(self.snooze_options)} minutes, got {minutes}",
                    current_state=instance.state.value,
                )

        return await self._transition(
            kind, workflow_date, "snooze", apply, validate=validate, detail=f"Snoozed for {minutes} minutes"
        )

    async def start(self, kind: WorkflowKind, workflow_date: date) -> TransitionResult:
        def apply(instance: WorkflowInstance, now: datetime):
            instance.started_at = now
            instance.snooze_until = None

        return await self._transition(kind, workflow_date, "start", apply, detail="Workflow started by user")

    async def complete(self, kind: WorkflowKind, workflow_date: date) -> TransitionResult:
        def apply(instance: WorkflowInstance, now: datetime):
            instance.completed_at = now

        return await self._transition(kind, workflow_date, "complete", apply, detail="Workflow completed")

    async def cancel(self, kind: WorkflowKind, workflow_date: date) -> TransitionResult:
        def apply(instance: WorkflowInstance, now: datetime):
            instance.cancelled_at = now
            instance.snooze_until = None

        return await self._transition(kind, workflow_date, "cancel", apply, detail="Workflow cancelled by user")

    async def apply_action(
        self, kind: WorkflowKind, workflow_date: date, action: str, param: Optional[int] = None
    ) -> TransitionResult:
        """Route a user action (from an API call or a button tap)."""
        if action == "snooze":
            minutes = param if param is not None else self.snooze_options[0]
            return await self.snooze(kind, workflow_date, int(minutes))
        if action in USER_ACTIONS:
            return await getattr(self, action)(kind, workflow_date)
        raise InvalidTransitionError(f"Unknown workflow action '{action}'")

    # ---- Internals ----

    @staticmethod
    def _check(action: str, instance: WorkflowInstance):
        sources, target, _ = TRANSITIONS[action]
        if instance.state in TERMINAL_STATES:
            raise TransitionNoOp(f"Instance already {instance.state.value}, ignoring {action}")
        if instance.state == target:
            raise TransitionNoOp(f"Instance already {target.value}")
        if instance.state not in sources:
            raise InvalidTransitionError(
                f"Cannot {action} a workflow in state '{instance.state.value}'",
                current_state=instance.state.value,
            )

    async def _transition(
        self,
        kind: WorkflowKind,
        workflow_date: date,
        action: str,
        apply: Callable[[WorkflowInstance, datetime], None],
        validate: Optional[Callable[[WorkflowInstance], None]] = None,
        detail: Optional[str] = None,
    ) -> TransitionResult:
        kind = WorkflowKind(kind)
        _, target, label = TRANSITIONS[action]

        async with self._session_factory() as session:
            instance = await self._store.get_or_create(session, kind, workflow_date)
            previous = instance.state

            try:
                self._check(action, instance)
                if validate:
                    validate(instance)
            except TransitionNoOp as exc:
                logger.info(f"{kind.value}/{workflow_date}: {exc}")
                await self._activity.record(kind, workflow_date, label, "noop", str(exc))
                return TransitionResult(instance, action, False, previous, str(exc))
            except InvalidTransitionError as exc:
                logger.warning(f"{kind.value}/{workflow_date}: {exc}")
                await self._activity.record(kind, workflow_date, label, "rejected", str(exc))
                raise

            now = utc_naive(self._clock())
            apply(instance, now)
            instance.state = target
            instance.updated_at = now
            session.add(instance)
            await session.commit()
            await session.refresh(instance)

        message = detail or f"{previous.value} -> {target.value}"
        logger.info(f"{kind.value}/{workflow_date}: {previous.value} -> {target.value}")
        await self._activity.record(kind, workflow_date, label, "success", message)
        return TransitionResult(instance, action, True, previous, message)
