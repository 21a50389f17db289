"""Test doubles shared by the fixtures and the runner tests."""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from taskflow.core.errors import DispatchError
from taskflow.core.notifier import ChannelResult, NotificationChannel, WorkflowNotification

# Monday 2026-03-02, 09:00 UTC: the default morning target
START = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    """Injectable clock that only moves when told to."""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def set(self, hour: int, minute: int = 0, second: int = 0):
        self.now = self.now.replace(hour=hour, minute=minute, second=second)

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


class RecordingChannel(NotificationChannel):
    """Collects notifications instead of sending them."""

    def __init__(self, name: str = "push", fail: bool = False, raises: Optional[Exception] = None, delay: float = 0):
        self.name = name
        self.fail = fail
        self.raises = raises
        self.delay = delay
        self.sent: List[WorkflowNotification] = []

    async def send(self, notification: WorkflowNotification) -> ChannelResult:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.raises:
            raise self.raises
        if self.fail:
            raise DispatchError(self.name, "unavailable")
        self.sent.append(notification)
        return ChannelResult(success=True)
