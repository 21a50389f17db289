import json
from datetime import date

import httpx
import pytest

from taskflow.core.errors import DispatchError
from taskflow.core.notifier import build_notification
from taskflow.interfaces.ntfy import NtfyPushChannel
from taskflow.models.workflow import ScheduleConfig, WorkflowKind


def _notification():
    config = ScheduleConfig(kind=WorkflowKind.MORNING, time_of_day="09:00", timezone="UTC", channel_id="my-topic")
    return build_notification(WorkflowKind.MORNING, date(2026, 3, 2), config)


def test_payload_is_limited_to_three_actions():
    channel = NtfyPushChannel(
        base_url="https://ntfy.example", public_base_url="https://app.example/", api_key="secret"
    )

    payload = channel.build_payload(_notification())

    assert payload["topic"] == "my-topic"
    assert payload["priority"] == 4
    actions = payload["actions"]
    assert [a["label"] for a in actions] == ["▶️ Start", "⏰ Snooze 15m", "❌ Cancel Today"]
    assert actions[0]["url"] == "https://app.example/workflow/morning/2026-03-02/start"
    assert actions[1]["url"] == "https://app.example/workflow/morning/2026-03-02/snooze"
    assert json.loads(actions[1]["body"]) == {"minutes": 15}
    assert "body" not in actions[2]
    assert all(a["method"] == "POST" and a["headers"]["X-API-Key"] == "secret" for a in actions)


async def test_send_publishes_json():
    seen = {}

    def handler(request: httpx.Request):
        seen["host"] = request.url.host
        seen["auth"] = request.headers.get("Authorization")
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"id": "abc"})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        channel = NtfyPushChannel(base_url="https://ntfy.example", token="tk", client=client)
        result = await channel.send(_notification())

    assert result.success
    assert seen["host"] == "ntfy.example"
    assert seen["auth"] == "Bearer tk"
    assert seen["body"]["title"].startswith("🌅")


async def test_send_raises_on_http_errors():
    transport = httpx.MockTransport(lambda request: httpx.Response(429))
    async with httpx.AsyncClient(transport=transport) as client:
        with pytest.raises(DispatchError) as exc_info:
            await NtfyPushChannel(base_url="https://ntfy.example", client=client).send(_notification())

    assert exc_info.value.channel == "ntfy"
    assert str(exc_info.value) == "ntfy: HTTP 429"
