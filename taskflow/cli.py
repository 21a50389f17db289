"""
taskflow-scheduler: operator CLI for the workflow scheduler.

Suitable for a system cron entry when the in-process scheduler is disabled:

    * 7-23 * * * taskflow-scheduler run
    0 2 * * *    taskflow-scheduler cleanup
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import List, Optional

import taskflow.core.logging_config  # noqa: F401
from taskflow.core.engine import WorkflowEngine, get_engine
from taskflow.models.workflow import WorkflowKind

logger = logging.getLogger("taskflow.cli")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="taskflow-scheduler", description="TaskFlow workflow scheduler CLI")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("run", help="Run one scheduler tick")
    sub.add_parser("status", help="Show the last run and lease state")

    trigger = sub.add_parser("trigger", help="Run a tick, or send a test notification for one kind")
    trigger.add_argument("kind", nargs="?", choices=[k.value for k in WorkflowKind])

    cleanup = sub.add_parser("cleanup", help="Delete old activity, instances and run history")
    cleanup.add_argument("days", nargs="?", type=int, default=None)

    logs = sub.add_parser("logs", help="Show recent scheduler activity")
    logs.add_argument("limit", nargs="?", type=int, default=20)

    metrics = sub.add_parser("metrics", help="Workflow metrics")
    metrics.add_argument("days", nargs="?", type=int, default=30)
    return parser


async def execute(args: argparse.Namespace, engine: WorkflowEngine):
    if args.command == "run":
        result = await engine.runner.run()
        return result.model_dump(mode="json")

    if args.command == "status":
        return await engine.runner.get_status()

    if args.command == "trigger":
        return await engine.runner.trigger_manually(WorkflowKind(args.kind) if args.kind else None)

    if args.command == "cleanup":
        result = await engine.runner.cleanup(args.days)
        if result is None:
            return {"status": "error", "message": "Cleanup failed, see scheduler activity"}
        return {"status": "success", **result.model_dump()}

    if args.command == "logs":
        entries = await engine.activity.recent(args.limit)
        return [entry.model_dump(mode="json") for entry in entries]

    if args.command == "metrics":
        return await engine.get_metrics(args.days)

    raise ValueError(f"Unknown command {args.command}")


async def _main(args: argparse.Namespace, engine: Optional[WorkflowEngine]) -> int:
    if engine is None:
        from taskflow.core.db import init_db
        from taskflow.core.mq import MQService

        await init_db(max_retries=3, retry_interval=1)
        engine = get_engine()
        try:
            output = await execute(args, engine)
        finally:
            await MQService.close()
    else:
        output = await execute(args, engine)

    print(json.dumps(output, indent=2, default=str))
    return 0


def main(argv: Optional[List[str]] = None, engine: Optional[WorkflowEngine] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        return asyncio.run(_main(args, engine))
    except RuntimeError as e:
        logger.error(f"taskflow-scheduler {args.command} could not start: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
