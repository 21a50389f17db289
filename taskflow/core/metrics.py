import logging
from datetime import timedelta
from typing import Dict

from sqlalchemy import case, func
from sqlmodel import select

from taskflow.core.clock import Clock, as_utc, utc_naive, utc_now
from taskflow.models.workflow import ActivityLogEntry, WorkflowInstance, WorkflowKind, WorkflowState

logger = logging.getLogger("taskflow.metrics")

# activity action -> engagement counter
ENGAGEMENT_ACTIONS = {
    "notification_sent": "notifications",
    "started": "starts",
    "snoozed": "snoozes",
    "cancelled": "cancels",
}


def _empty_engagement() -> Dict[str, int]:
    return {name: 0 for name in ENGAGEMENT_ACTIONS.values()}


async def get_workflow_metrics(session_factory, days: int = 30, clock: Clock = utc_now) -> dict:
    """Instance outcomes and engagement over the last `days` days."""
    now = clock()
    since = utc_naive(now - timedelta(days=days))

    async with session_factory() as session:
        res = await session.execute(
            select(
                WorkflowInstance.kind,
                func.count(WorkflowInstance.id),
                func.sum(case((WorkflowInstance.state == WorkflowState.COMPLETED, 1), else_=0)),
                func.sum(case((WorkflowInstance.state == WorkflowState.CANCELLED, 1), else_=0)),
                func.sum(case((WorkflowInstance.started_at.is_not(None), 1), else_=0)),
                func.avg(WorkflowInstance.snooze_count),
                func.sum(case((WorkflowInstance.state == WorkflowState.SNOOZED, 1), else_=0)),
            )
            .where(WorkflowInstance.workflow_date >= since.date())
            .group_by(WorkflowInstance.kind)
        )
        rows = res.all()

        res = await session.execute(
            select(ActivityLogEntry.kind, ActivityLogEntry.action, func.count(ActivityLogEntry.id))
            .where(
                ActivityLogEntry.created_at >= since,
                ActivityLogEntry.status == "success",
                ActivityLogEntry.action.in_(list(ENGAGEMENT_ACTIONS)),
            )
            .group_by(ActivityLogEntry.kind, ActivityLogEntry.action)
        )
        engagement_rows = res.all()

        res = await session.execute(
            select(ActivityLogEntry)
            .where(ActivityLogEntry.created_at >= since)
            .order_by(ActivityLogEntry.created_at.desc(), ActivityLogEntry.id.desc())
            .limit(50)
        )
        recent = res.scalars().all()

    by_kind = {
        kind.value: {
            "total_instances": 0,
            "completed": 0,
            "cancelled": 0,
            "started": 0,
            "avg_snoozes": 0.0,
            "currently_snoozed": 0,
        }
        for kind in WorkflowKind
    }
    for kind, total, completed, cancelled, started, avg_snoozes, snoozed in rows:
        by_kind[WorkflowKind(kind).value] = {
            "total_instances": total,
            "completed": int(completed or 0),
            "cancelled": int(cancelled or 0),
            "started": int(started or 0),
            "avg_snoozes": round(float(avg_snoozes or 0), 2),
            "currently_snoozed": int(snoozed or 0),
        }

    engagement = {kind.value: _empty_engagement() for kind in WorkflowKind}
    summary = _empty_engagement()
    for kind, action, count in engagement_rows:
        counter = ENGAGEMENT_ACTIONS[action]
        engagement.setdefault(kind, _empty_engagement())[counter] += count
        summary[counter] += count

    responses = summary["starts"] + summary["snoozes"] + summary["cancels"]
    summary["engagement_rate"] = (
        round(responses / summary["notifications"] * 100, 1) if summary["notifications"] else 0.0
    )

    return {
        "period_days": days,
        "since": as_utc(since).isoformat(),
        "by_kind": by_kind,
        "engagement": {"summary": summary, "by_kind": engagement},
        "recent_activity": [
            {
                "kind": entry.kind,
                "workflow_date": entry.workflow_date.isoformat(),
                "action": entry.action,
                "status": entry.status,
                "message": entry.message,
                "created_at": as_utc(entry.created_at).isoformat(),
            }
            for entry in recent
        ],
    }
