from datetime import date

from taskflow.core.activity_log import ActivityLog
from taskflow.core.errors import DispatchError
from taskflow.core.notifier import NotificationDispatcher, build_notification
from taskflow.models.workflow import ScheduleConfig, WorkflowKind
from tests.fakes import RecordingChannel

DAY = date(2026, 3, 2)


def morning_config():
    return ScheduleConfig(kind=WorkflowKind.MORNING, time_of_day="09:00", timezone="UTC", channel_id="4242")


def test_notification_carries_full_action_set():
    notification = build_notification(WorkflowKind.MORNING, DAY, morning_config(), snooze_options=(30, 15, 60))

    assert notification.title.startswith("🌅 Good Morning")
    assert notification.channel_id == "4242"
    assert [(a.action, a.param) for a in notification.actions] == [
        ("start", None),
        ("snooze", 15),
        ("snooze", 30),
        ("snooze", 60),
        ("cancel", None),
    ]
    assert notification.encode_action(notification.actions[2]) == {
        "kind": "morning",
        "date": "2026-03-02",
        "action": "snooze",
        "param": 30,
    }


def test_evening_copy():
    config = ScheduleConfig(kind=WorkflowKind.EVENING, time_of_day="18:00", timezone="UTC", channel_id="4242")
    notification = build_notification(WorkflowKind.EVENING, DAY, config)
    assert notification.title.startswith("🌙 Evening Reflection")


async def test_failing_channel_does_not_block_others(session_factory, clock):
    broken = RecordingChannel("push", raises=DispatchError("push", "rate limited"))
    inapp = RecordingChannel("inapp")
    dispatcher = NotificationDispatcher([broken, inapp], ActivityLog(session_factory, clock=clock))

    result = await dispatcher.dispatch(WorkflowKind.MORNING, DAY, morning_config())

    assert result.delivered
    assert result.channels["push"].success is False
    assert "rate limited" in result.channels["push"].error
    assert result.channels["inapp"].success is True
    assert len(inapp.sent) == 1


async def test_all_channels_failing(session_factory, clock):
    activity = ActivityLog(session_factory, clock=clock)
    dispatcher = NotificationDispatcher(
        [RecordingChannel("push", fail=True), RecordingChannel("inapp", raises=ConnectionError("redis down"))],
        activity,
    )

    result = await dispatcher.dispatch(WorkflowKind.MORNING, DAY, morning_config())

    assert not result.delivered
    assert "push: unavailable" in result.error
    assert "redis down" in result.error
    entries = await activity.recent(10)
    assert {(e.action, e.status) for e in entries} == {("notification_failed", "error")}
    assert len(entries) == 2


async def test_no_channels(session_factory, clock):
    dispatcher = NotificationDispatcher([], ActivityLog(session_factory, clock=clock))

    result = await dispatcher.dispatch(WorkflowKind.MORNING, DAY, morning_config())

    assert not result.delivered
    assert result.error == "No notification channels configured"


async def test_activity_failure_does_not_hide_delivery(session_factory, clock, mocker):
    activity = ActivityLog(session_factory, clock=clock)
    mocker.patch.object(activity, "record", side_effect=RuntimeError("database is locked"))
    push = RecordingChannel("push")
    dispatcher = NotificationDispatcher([push], activity)

    result = await dispatcher.dispatch(WorkflowKind.MORNING, DAY, morning_config())

    assert result.delivered
    assert result.channels["push"].success is True
    assert len(push.sent) == 1
