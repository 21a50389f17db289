from datetime import date
from unittest.mock import AsyncMock

import pytest

from taskflow.core.errors import DispatchError
from taskflow.core.mq import ChannelType, MessageType, MQService, UnifiedMessage
from taskflow.core.notifier import build_notification
from taskflow.interfaces.inapp import InAppChannel
from taskflow.models.workflow import ScheduleConfig, WorkflowKind


@pytest.fixture
def mock_redis(mocker):
    mock_redis = AsyncMock()
    mocker.patch("taskflow.core.mq.redis.from_url", return_value=mock_redis)

    # Reset internal redis reference to ensure our mock is used
    MQService._redis_instances = {}
    yield mock_redis
    MQService._redis_instances = {}


@pytest.mark.asyncio
async def test_inapp_push_and_read(mock_redis):
    """Test pushing and reading the in-app list with a mocked Redis."""
    msg = UnifiedMessage(
        channel=ChannelType.INAPP, channel_id="chat", content="Test Message", msg_type=MessageType.WORKFLOW
    )

    await MQService.push_inapp(msg)
    mock_redis.lpush.assert_awaited_once_with(MQService.INAPP_KEY, msg.model_dump_json())
    mock_redis.ltrim.assert_awaited_once_with(MQService.INAPP_KEY, 0, MQService.INAPP_MAX_LENGTH - 1)

    mock_redis.lrange.return_value = [msg.model_dump_json(), "{broken"]
    messages = await MQService.recent_inapp(5)

    assert [m.id for m in messages] == [msg.id]
    assert messages[0].msg_type == MessageType.WORKFLOW
    mock_redis.lrange.assert_awaited_once_with(MQService.INAPP_KEY, 0, 4)


@pytest.mark.asyncio
async def test_inapp_channel_envelope(mock_redis):
    config = ScheduleConfig(kind=WorkflowKind.EVENING, time_of_day="18:00", timezone="UTC", channel_id="x")
    result = await InAppChannel().send(build_notification(WorkflowKind.EVENING, date(2026, 3, 2), config))

    assert result.success
    stored = UnifiedMessage.model_validate_json(mock_redis.lpush.await_args.args[1])
    assert stored.channel == ChannelType.INAPP
    assert stored.meta["workflow_type"] == "evening"
    assert stored.meta["workflow_date"] == "2026-03-02"
    assert stored.meta["actions"][0] == {"label": "▶️ Start", "kind": "evening", "date": "2026-03-02", "action": "start"}


@pytest.mark.asyncio
async def test_inapp_channel_raises_on_redis_failure(mock_redis):
    mock_redis.lpush.side_effect = ConnectionError("Connection refused")
    config = ScheduleConfig(kind=WorkflowKind.MORNING, time_of_day="09:00", timezone="UTC", channel_id="x")

    with pytest.raises(DispatchError) as exc_info:
        await InAppChannel().send(build_notification(WorkflowKind.MORNING, date(2026, 3, 2), config))

    assert "Connection refused" in str(exc_info.value)
