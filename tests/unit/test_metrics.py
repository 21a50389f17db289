from datetime import date

from taskflow.models.workflow import WorkflowKind

MORNING = WorkflowKind.MORNING
EVENING = WorkflowKind.EVENING


async def test_metrics_by_kind_and_engagement(engine, clock):
    machine = engine.machine
    await machine.notify(MORNING, date(2026, 3, 1))
    await machine.snooze(MORNING, date(2026, 3, 1), 15)
    await machine.start(MORNING, date(2026, 3, 1))
    await machine.complete(MORNING, date(2026, 3, 1))

    await machine.notify(MORNING, date(2026, 3, 2))
    await machine.cancel(MORNING, date(2026, 3, 2))

    await machine.notify(EVENING, date(2026, 3, 1))
    await machine.snooze(EVENING, date(2026, 3, 1), 30)
    await engine.activity.record(EVENING, date(2026, 3, 1), "notification_sent", "success")

    metrics = await engine.get_metrics(30)

    morning = metrics["by_kind"]["morning"]
    assert morning["total_instances"] == 2
    assert morning["completed"] == 1
    assert morning["cancelled"] == 1
    assert morning["started"] == 1
    assert morning["avg_snoozes"] == 0.5

    evening = metrics["by_kind"]["evening"]
    assert evening["currently_snoozed"] == 1

    summary = metrics["engagement"]["summary"]
    assert summary["notifications"] == 1
    assert summary["snoozes"] == 2
    assert summary["starts"] == 1
    assert summary["cancels"] == 1
    assert summary["engagement_rate"] == 400.0
    assert metrics["recent_activity"][0]["action"] == "notification_sent"


async def test_metrics_empty_period(engine):
    metrics = await engine.get_metrics(7)

    assert metrics["period_days"] == 7
    assert metrics["by_kind"]["evening"]["total_instances"] == 0
    assert metrics["engagement"]["summary"]["engagement_rate"] == 0.0
    assert metrics["recent_activity"] == []
