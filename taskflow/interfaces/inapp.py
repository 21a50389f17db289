import logging

from taskflow.core.errors import DispatchError
from taskflow.core.mq import ChannelType, MessageType, MQService, UnifiedMessage
from taskflow.core.notifier import ChannelResult, NotificationChannel, WorkflowNotification

logger = logging.getLogger("taskflow.inapp")


class InAppChannel(NotificationChannel):
    """Queues the prompt for the in-app chat surface."""

    name = "inapp"

    def __init__(self, mq=MQService):
        self._mq = mq

    async def send(self, notification: WorkflowNotification) -> ChannelResult:
        message = UnifiedMessage(
            channel=ChannelType.INAPP,
            channel_id="chat",
            content=f"{notification.title}\n\n{notification.body}",
            msg_type=MessageType.WORKFLOW,
            meta={
                "workflow_type": notification.kind.value,
                "workflow_date": notification.workflow_date.isoformat(),
                "test": notification.test,
                "actions": [
                    {"label": a.label, **notification.encode_action(a)} for a in notification.actions
                ],
            },
        )
        try:
            await self._mq.push_inapp(message)
        except Exception as e:
            raise DispatchError("inapp", str(e)) from e
        logger.debug(f"Queued in-app workflow message {message.id}")
        return ChannelResult(success=True)
