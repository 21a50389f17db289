import pytest

from taskflow.core.errors import ConfigValidationError
from taskflow.core.schedule_config import ScheduleConfigStore, parse_time_of_day
from taskflow.models.workflow import WorkflowKind


@pytest.fixture
def store(session_factory):
    return ScheduleConfigStore(session_factory, default_timezone="UTC")


async def test_defaults_are_seeded(store):
    configs = await store.get_all()

    assert [(c.kind, c.time_of_day, c.enabled) for c in configs] == [
        (WorkflowKind.MORNING, "09:00", True),
        (WorkflowKind.EVENING, "18:00", True),
    ]
    assert configs[0].channel_id == "taskflow-morning-workflow"
    assert configs[1].timezone == "UTC"


async def test_default_channel_override(session_factory):
    store = ScheduleConfigStore(session_factory, default_channel_id="123456789")
    assert (await store.get(WorkflowKind.EVENING)).channel_id == "123456789"


async def test_partial_update(store):
    updated = await store.update(WorkflowKind.MORNING, {"time_of_day": "07:30", "timezone": "Europe/Berlin"})

    assert updated.time_of_day == "07:30"
    assert updated.timezone == "Europe/Berlin"
    assert updated.enabled is True

    reread = await store.get(WorkflowKind.MORNING)
    assert reread.time_of_day == "07:30"


@pytest.mark.parametrize(
    "fields, field",
    [
        ({"time_of_day": "25:00"}, "time_of_day"),
        ({"time_of_day": "9:00"}, "time_of_day"),
        ({"timezone": "Mars/Olympus_Mons"}, "timezone"),
        ({"volume": 11}, "volume"),
    ],
)
async def test_invalid_update_leaves_row_untouched(store, fields, field):
    with pytest.raises(ConfigValidationError) as exc_info:
        await store.update(WorkflowKind.MORNING, fields)

    assert exc_info.value.field == field
    config = await store.get(WorkflowKind.MORNING)
    assert config.time_of_day == "09:00"
    assert config.timezone == "UTC"


async def test_unknown_kind_is_rejected(store):
    with pytest.raises(ConfigValidationError):
        await store.update("afternoon", {"enabled": False})


def test_parse_time_of_day():
    assert parse_time_of_day("23:59").hour == 23
    with pytest.raises(ValueError):
        parse_time_of_day("24:00")
    assert parse_time_of_day("9:05") == parse_time_of_day("09:05")
    with pytest.raises(ValueError):
        parse_time_of_day("9:5")


async def test_single_digit_hour_is_stored_padded(store):
    updated = await store.update(WorkflowKind.MORNING, {"time_of_day": "7:30"})

    assert updated.time_of_day == "07:30"
    assert (await store.get(WorkflowKind.MORNING)).time_of_day == "07:30"
