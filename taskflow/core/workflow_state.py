import logging
from datetime import date
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import and_, or_
from sqlalchemy.exc import IntegrityError
from sqlmodel import select

from taskflow.models.workflow import WorkflowInstance, WorkflowKind, WorkflowState

logger = logging.getLogger("taskflow.workflow_state")

InstanceKey = Tuple[WorkflowKind, date]


class WorkflowStateStore:
    """
    Persistence for WorkflowInstance rows keyed by (kind, date).

    Only the state machine writes through this store; everything else reads.
    """

    def __init__(self, session_factory):
        self._session_factory = session_factory

    @staticmethod
    async def _select(session, kind: WorkflowKind, workflow_date: date) -> Optional[WorkflowInstance]:
        result = await session.execute(
            select(WorkflowInstance).where(
                WorkflowInstance.kind == WorkflowKind(kind),
                WorkflowInstance.workflow_date == workflow_date,
            )
        )
        return result.scalars().first()

    async def get(self, kind: WorkflowKind, workflow_date: date) -> Optional[WorkflowInstance]:
        async with self._session_factory() as session:
            return await self._select(session, kind, workflow_date)

    async def get_or_create(self, session, kind: WorkflowKind, workflow_date: date) -> WorkflowInstance:
        """
        Single creation path: an unseen (kind, date) starts as pending.
        Runs inside the caller's session so the transition commits together.
        """
        instance = await self._select(session, kind, workflow_date)
        if instance:
            return instance

        instance = WorkflowInstance(kind=WorkflowKind(kind), workflow_date=workflow_date, state=WorkflowState.PENDING)
        session.add(instance)
        try:
            await session.commit()
        except IntegrityError:
            # Lost the insert race, use the winner's row
            await session.rollback()
            instance = await self._select(session, kind, workflow_date)
            if instance is None:
                raise
            return instance

        await session.refresh(instance)
        logger.debug(f"Created workflow instance {instance.kind.value}/{instance.workflow_date}")
        return instance

    async def get_many(self, keys: Iterable[InstanceKey]) -> Dict[InstanceKey, WorkflowInstance]:
        keys = list(keys)
        if not keys:
            return {}
        async with self._session_factory() as session:
            clauses = [
                and_(WorkflowInstance.kind == WorkflowKind(kind), WorkflowInstance.workflow_date == day)
                for kind, day in keys
            ]
            result = await session.execute(select(WorkflowInstance).where(or_(*clauses)))
            return {(i.kind, i.workflow_date): i for i in result.scalars().all()}

    async def list_snoozed(self) -> List[WorkflowInstance]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(WorkflowInstance).where(WorkflowInstance.state == WorkflowState.SNOOZED)
            )
            return list(result.scalars().all())
