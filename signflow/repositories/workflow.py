"""Workflow repository — workflow rows plus the completion compare-and-set."""

from __future__ import annotations

from typing import Any

from sqlalchemy import and_, case, delete, exists, func, or_, select

from signflow.domain.attachment import Attachment
from signflow.domain.notification import Notification
from signflow.domain.workflow import (
    RECIPIENT_PENDING,
    WORKFLOW_ACTIVE,
    WORKFLOW_COMPLETED,
    Recipient,
    Workflow,
)
from signflow.repositories.base import BaseRepository, utcnow


class WorkflowRepository(BaseRepository[Workflow]):
    model = Workflow

    async def create_workflow(
        self, source_document_ref: str, metadata: dict[str, Any] | None = None,
    ) -> Workflow:
        return await self.create(source_document_ref=source_document_ref, meta=metadata or {})

    async def get_by_token(self, external_token: str) -> Workflow | None:
        result = await self._session.execute(
            self._base_query().where(Workflow.external_token == external_token)
        )
        return result.scalars().first()

    async def update_status(self, workflow_id: str, status: str) -> Workflow | None:
        return await self.update(workflow_id, status=status)

    async def mark_completed_if_active(self, workflow_id: str) -> bool:
        """Flip active → completed in one conditional UPDATE.

        Succeeds for exactly one caller, and only once no recipient of the
        workflow is still pending. Everything that must run at most once per
        workflow is gated on this returning True.
        """
        pending_left = exists().where(
            Recipient.workflow_id == workflow_id,
            Recipient.status == RECIPIENT_PENDING,
        )
        now = utcnow()
        result = await self._session.execute(
            self._base_update()
            .where(Workflow.id == workflow_id)
            .where(Workflow.status == WORKFLOW_ACTIVE)
            .where(~pending_left)
            .values(status=WORKFLOW_COMPLETED, completed_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        await self._session.flush()
        return result.rowcount == 1

    async def _record_ref_if_missing(self, column, workflow_id: str, ref: str) -> bool:
        result = await self._session.execute(
            self._base_update()
            .where(Workflow.id == workflow_id)
            .where(column.is_(None))
            .values({column: ref, Workflow.updated_at: utcnow()})
            .execution_options(synchronize_session=False)
        )
        await self._session.flush()
        return result.rowcount == 1

    async def record_completed_document_ref(self, workflow_id: str, ref: str) -> bool:
        """Store the completed-document ref unless one is already recorded.

        Returns False when a concurrent pipeline run recorded its own first;
        the caller then owns an orphaned artifact and must discard it.
        """
        return await self._record_ref_if_missing(Workflow.completed_document_ref, workflow_id, ref)

    async def record_audit_document_ref(self, workflow_id: str, ref: str) -> bool:
        return await self._record_ref_if_missing(Workflow.audit_document_ref, workflow_id, ref)

    async def list_missing_documents(self) -> list[Workflow]:
        """Completed workflows still lacking the filled or the audit document."""
        result = await self._session.execute(
            self._base_query()
            .where(Workflow.status == WORKFLOW_COMPLETED)
            .where(
                or_(
                    Workflow.completed_document_ref.is_(None),
                    Workflow.audit_document_ref.is_(None),
                )
            )
            .order_by(Workflow.completed_at.asc())
        )
        return list(result.scalars().all())

    async def stats(self) -> dict[str, int]:
        q = select(
            func.count(Workflow.id),
            func.sum(case((Workflow.status == WORKFLOW_ACTIVE, 1), else_=0)),
            func.sum(case((Workflow.status == WORKFLOW_COMPLETED, 1), else_=0)),
        ).where(Workflow.client_id == self._client_id)
        total, active, completed = (await self._session.execute(q)).one()
        return {
            "total_workflows": total or 0,
            "active_workflows": active or 0,
            "completed_workflows": completed or 0,
        }

    async def purge(self, workflow_id: str) -> bool:
        """Hard-delete a workflow and every row hanging off it."""
        for child in (Notification, Attachment, Recipient):
            await self._session.execute(
                delete(child)
                .where(and_(child.workflow_id == workflow_id, child.client_id == self._client_id))
                .execution_options(synchronize_session=False)
            )
        return await self.delete(workflow_id)
