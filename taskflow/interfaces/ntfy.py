import logging
from typing import Optional

import httpx

from taskflow.core.config import settings
from taskflow.core.errors import DispatchError
from taskflow.core.notifier import ChannelResult, NotificationChannel, WorkflowNotification

logger = logging.getLogger("taskflow.ntfy")

# ntfy renders at most three action buttons
MAX_ACTIONS = 3


class NtfyPushChannel(NotificationChannel):
    """Publishes to an ntfy topic with http action buttons that call back into the API."""

    name = "ntfy"

    def __init__(
        self,
        base_url: str = None,
        public_base_url: str = None,
        token: Optional[str] = None,
        api_key: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
    ):
        self.base_url = (base_url or settings.NTFY_BASE_URL).rstrip("/")
        self.public_base_url = (public_base_url or settings.PUBLIC_BASE_URL).rstrip("/")
        self.token = token
        self.api_key = api_key
        self._client = client
        self.timeout = timeout

    def _pick_actions(self, notification: WorkflowNotification):
        start = [a for a in notification.actions if a.action == "start"]
        snoozes = sorted((a for a in notification.actions if a.action == "snooze"), key=lambda a: a.param or 0)
        cancel = [a for a in notification.actions if a.action == "cancel"]
        return (start[:1] + snoozes[:1] + cancel[:1])[:MAX_ACTIONS]

    def build_payload(self, notification: WorkflowNotification) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["X-API-Key"] = self.api_key

        actions = []
        for action in self._pick_actions(notification):
            url = (
                f"{self.public_base_url}/workflow/{notification.kind.value}/"
                f"{notification.workflow_date.isoformat()}/{action.action}"
            )
            entry = {
                "action": "http",
                "label": action.label,
                "url": url,
                "method": "POST",
                "headers": headers,
                "clear": True,
            }
            if action.param is not None:
                entry["body"] = f'{{"minutes": {action.param}}}'
            actions.append(entry)

        return {
            "topic": notification.channel_id,
            "title": notification.title,
            "message": notification.body,
            "tags": [notification.kind.value, "workflow"],
            "priority": 4,
            "actions": actions,
        }

    async def send(self, notification: WorkflowNotification) -> ChannelResult:
        payload = self.build_payload(notification)
        headers = {}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        try:
            if self._client is not None:
                resp = await self._client.post(self.base_url, json=payload, headers=headers)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    resp = await client.post(self.base_url, json=payload, headers=headers)
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(f"ntfy rejected publish to {notification.channel_id}: {e.response.status_code}")
            raise DispatchError("ntfy", f"HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            logger.error(f"ntfy publish failed: {e}")
            raise DispatchError("ntfy", str(e)) from e

        return ChannelResult(success=True)
