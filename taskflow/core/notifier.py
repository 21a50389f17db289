import logging
from abc import ABC, abstractmethod
from datetime import date
from typing import Dict, List, Optional, Sequence

from pydantic import BaseModel, Field

from taskflow.core.activity_log import ActivityLog
from taskflow.core.errors import DispatchError
from taskflow.models.workflow import ScheduleConfig, WorkflowKind

logger = logging.getLogger("taskflow.notifier")

NOTIFICATION_COPY = {
    WorkflowKind.MORNING: (
        "🌅 Good Morning! Ready for your daily workflow?",
        "Let's start your day with AI-guided task selection and daily planning.",
    ),
    WorkflowKind.EVENING: (
        "🌙 Evening Reflection Time - How was your day?",
        "Time to reflect on your progress and prepare for tomorrow.",
    ),
}


class NotificationAction(BaseModel):
    label: str
    action: str  # start | snooze | cancel
    param: Optional[int] = None  # snooze minutes


class WorkflowNotification(BaseModel):
    kind: WorkflowKind
    workflow_date: date
    title: str
    body: str
    channel_id: str
    actions: List[NotificationAction] = Field(default_factory=list)
    test: bool = False

    def encode_action(self, action: NotificationAction) -> Dict[str, object]:
        """Payload an action button carries back to the API."""
        payload = {"kind": self.kind.value, "date": self.workflow_date.isoformat(), "action": action.action}
        if action.param is not None:
            payload["param"] = action.param
        return payload


class ChannelResult(BaseModel):
    success: bool
    error: Optional[str] = None


class DispatchResult(BaseModel):
    delivered: bool
    channels: Dict[str, ChannelResult] = Field(default_factory=dict)
    error: Optional[str] = None


class NotificationChannel(ABC):
    """A delivery surface for workflow notifications."""

    name: str = "channel"

    @abstractmethod
    async def send(self, notification: WorkflowNotification) -> ChannelResult:
        """Deliver or raise DispatchError."""


def build_notification(
    kind: WorkflowKind,
    workflow_date: date,
    config: ScheduleConfig,
    snooze_options: Sequence[int] = (15, 30, 60),
    test: bool = False,
) -> WorkflowNotification:
    kind = WorkflowKind(kind)
    title, body = NOTIFICATION_COPY[kind]
    if test:
        title = f"[Test] {title}"

    actions = [NotificationAction(label="▶️ Start", action="start")]
    actions += [
        NotificationAction(label=f"⏰ Snooze {minutes}m", action="snooze", param=minutes)
        for minutes in sorted(snooze_options)
    ]
    actions.append(NotificationAction(label="❌ Cancel Today", action="cancel"))

    return WorkflowNotification(
        kind=kind,
        workflow_date=workflow_date,
        title=title,
        body=body,
        channel_id=config.channel_id,
        actions=actions,
        test=test,
    )


class NotificationDispatcher:
    """
    Fans a workflow notification out to every configured channel.

    A failing channel never blocks the others; the dispatch counts as
    delivered when at least one channel accepted it.
    """

    def __init__(
        self,
        channels: Sequence[NotificationChannel],
        activity: ActivityLog,
        snooze_options: Sequence[int] = (15, 30, 60),
    ):
        self.channels = list(channels)
        self._activity = activity
        self.snooze_options = tuple(sorted(snooze_options))

    async def dispatch(
        self, kind: WorkflowKind, workflow_date: date, config: ScheduleConfig, test: bool = False
    ) -> DispatchResult:
        notification = build_notification(kind, workflow_date, config, self.snooze_options, test=test)
        results: Dict[str, ChannelResult] = {}

        for channel in self.channels:
            try:
                result = await channel.send(notification)
            except DispatchError as e:
                result = ChannelResult(success=False, error=str(e))
            except Exception as e:
                logger.error(f"Channel {channel.name} raised while sending {kind}/{workflow_date}: {e}", exc_info=True)
                result = ChannelResult(success=False, error=f"{channel.name}: {e}")
            results[channel.name] = result

            if result.success:
                logger.info(f"Notification sent via {channel.name}: {notification.kind.value}/{workflow_date}")
                await self._safe_record(
                    kind, workflow_date, "notification_sent", "success", f"Delivered via {channel.name}"
                )
            else:
                logger.warning(f"Notification failed via {channel.name}: {result.error}")
                await self._safe_record(
                    kind,
                    workflow_date,
                    "notification_failed",
                    "error",
                    f"Delivery via {channel.name} failed",
                    error_details=result.error,
                )

        delivered = any(r.success for r in results.values())
        error = None
        if not delivered:
            error = "; ".join(r.error or name for name, r in results.items()) or "No notification channels configured"
        return DispatchResult(delivered=delivered, channels=results, error=error)

    async def _safe_record(self, kind, workflow_date, action, status, message=None, error_details=None):
        try:
            await self._activity.record(kind, workflow_date, action, status, message, error_details=error_details)
        except Exception as e:
            logger.error(f"Failed to write activity log for {kind.value}/{workflow_date}: {e}")
