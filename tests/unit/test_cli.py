import pytest

from taskflow.cli import build_parser, execute
from taskflow.models.workflow import WorkflowKind


def test_parser_defaults():
    parser = build_parser()

    assert parser.parse_args(["trigger"]).kind is None
    assert parser.parse_args(["trigger", "evening"]).kind == "evening"
    assert parser.parse_args(["cleanup"]).days is None
    assert parser.parse_args(["cleanup", "30"]).days == 30
    assert parser.parse_args(["logs"]).limit == 20
    assert parser.parse_args(["metrics"]).days == 30


def test_parser_rejects_unknown_kind():
    with pytest.raises(SystemExit):
        build_parser().parse_args(["trigger", "noon"])


async def test_run_and_status(engine, clock):
    clock.set(9, 1)
    parser = build_parser()

    run = await execute(parser.parse_args(["run"]), engine)
    status = await execute(parser.parse_args(["status"]), engine)

    assert run["outcome"] == "success"
    assert run["processed"] == 1
    assert status["outcome"] == "success"


async def test_trigger_logs_and_cleanup(engine, push_channel):
    parser = build_parser()

    trigger = await execute(parser.parse_args(["trigger", "morning"]), engine)
    logs = await execute(parser.parse_args(["logs", "5"]), engine)
    cleanup = await execute(parser.parse_args(["cleanup", "90"]), engine)

    assert trigger["mode"] == "test"
    assert push_channel.sent[0].kind == WorkflowKind.MORNING
    assert logs[0]["action"] == "manual_trigger"
    assert cleanup == {"status": "success", "logs_deleted": 0, "instances_deleted": 0, "status_deleted": 0}
