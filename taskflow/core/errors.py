from typing import Optional


class WorkflowError(Exception):
    """Base class for workflow notifier errors."""


class ConfigValidationError(WorkflowError):
    """Rejected schedule configuration update. No state was changed."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class InvalidTransitionError(WorkflowError):
    """Requested transition is not allowed from the instance's current state."""

    def __init__(self, message: str, current_state: Optional[str] = None):
        super().__init__(message)
        self.current_state = current_state


class TransitionNoOp(WorkflowError):
    """Action on a terminal instance, or one repeating the current state.

    Callers treat this as success so stale notification buttons stay harmless.
    """


class DispatchError(WorkflowError):
    """A notification channel failed to deliver."""

    def __init__(self, channel: str, message: str):
        super().__init__(f"{channel}: {message}")
        self.channel = channel


class LockContentionSkip(WorkflowError):
    """Another scheduler run holds the lease. Not an error, the tick is skipped."""

    def __init__(self, owner: str, age_seconds: float):
        super().__init__(f"Run lease held by {owner} for {age_seconds:.1f}s")
        self.owner = owner
        self.age_seconds = age_seconds


class RunTimeoutAbort(WorkflowError):
    """The scheduler batch exceeded its execution bound."""

    def __init__(self, limit_seconds: float, processed: int):
        super().__init__(f"Run exceeded {limit_seconds:.0f}s after processing {processed} instance(s)")
        self.limit_seconds = limit_seconds
        self.processed = processed
