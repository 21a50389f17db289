import logging
from datetime import date, timedelta
from typing import List, Optional

from pydantic import BaseModel
from sqlalchemy import delete
from sqlmodel import select

from taskflow.core.clock import Clock, utc_naive, utc_now
from taskflow.models.workflow import ActivityLogEntry, SchedulerRunStatus, WorkflowInstance

logger = logging.getLogger("taskflow.activity")

SYSTEM_KIND = "system"


class CleanupResult(BaseModel):
    logs_deleted: int = 0
    instances_deleted: int = 0
    status_deleted: int = 0


class ActivityLog:
    """
    Append-only activity log plus the retention sweep for everything the
    scheduler persists.
    """

    def __init__(self, session_factory, clock: Clock = utc_now):
        self._session_factory = session_factory
        self._clock = clock

    async def record(
        self,
        kind: str,
        workflow_date: date,
        action: str,
        status: str,
        message: Optional[str] = None,
        error_details: Optional[str] = None,
    ) -> ActivityLogEntry:
        async with self._session_factory() as session:
            entry = ActivityLogEntry(
                kind=getattr(kind, "value", kind),
                workflow_date=workflow_date,
                action=action,
                status=status,
                message=message,
                error_details=error_details,
                created_at=utc_naive(self._clock()),
            )
            session.add(entry)
            await session.commit()
            await session.refresh(entry)
            return entry

    async def record_system(
        self, action: str, status: str, message: Optional[str] = None, error_details: Optional[str] = None
    ) -> ActivityLogEntry:
        """Scheduler-level entry not tied to a single instance."""
        return await self.record(SYSTEM_KIND, self._clock().date(), action, status, message, error_details)

    async def recent(self, limit: int = 100, kind: Optional[str] = None) -> List[ActivityLogEntry]:
        async with self._session_factory() as session:
            stmt = select(ActivityLogEntry)
            if kind:
                stmt = stmt.where(ActivityLogEntry.kind == getattr(kind, "value", kind))
            stmt = stmt.order_by(ActivityLogEntry.created_at.desc(), ActivityLogEntry.id.desc()).limit(limit)
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def cleanup(
        self, days_to_keep: int = 90, status_days_to_keep: int = 30, include_instances: bool = True
    ) -> CleanupResult:
        """Delete rows older than the retention horizon."""
        now = self._clock()
        cutoff = utc_naive(now - timedelta(days=days_to_keep))
        status_cutoff = utc_naive(now - timedelta(days=status_days_to_keep))
        cleanup_result = CleanupResult()

        async with self._session_factory() as session:
            result = await session.execute(delete(ActivityLogEntry).where(ActivityLogEntry.created_at < cutoff))
            cleanup_result.logs_deleted = result.rowcount or 0

            if include_instances:
                result = await session.execute(
                    delete(WorkflowInstance).where(WorkflowInstance.workflow_date < cutoff.date())
                )
                cleanup_result.instances_deleted = result.rowcount or 0

            result = await session.execute(
                delete(SchedulerRunStatus).where(SchedulerRunStatus.created_at < status_cutoff)
            )
            cleanup_result.status_deleted = result.rowcount or 0
            await session.commit()

        logger.info(
            f"Cleanup completed: {cleanup_result.logs_deleted} logs, {cleanup_result.instances_deleted} instances, "
            f"{cleanup_result.status_deleted} status records deleted (keeping {days_to_keep} days)"
        )
        return cleanup_result
