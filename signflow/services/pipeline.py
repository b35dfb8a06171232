"""Completion pipeline — runs once per workflow, after it reaches ``completed``.

Stages, each failure-isolated from the next:
  1. fill + flatten the source document with the merged form data
  2. compile the audit trail
  3. email document links to recipients who asked for them

A stage whose output is already recorded on the workflow is skipped, so the
same entry point serves the operator regeneration path. Codec work is
CPU-bound and runs in a worker thread.
"""


import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from signflow.core.exceptions import (
    AppException,
    AuditGenerationError,
    DocumentGenerationError,
    NotFoundError,
)
from signflow.documents.audit import AuditCompiler
from signflow.documents.fields import FieldFiller, FillReport, fill_and_flatten, merge_form_data
from signflow.domain.notification import NOTIFICATION_SENT
from signflow.domain.workflow import WORKFLOW_COMPLETED
from signflow.notifications.dispatcher import (
    DOCUMENT_AUDIT,
    DOCUMENT_COMPLETED,
    NotificationDispatcher,
)
from signflow.notifications.gateways import NotificationGateway
from signflow.repositories.attachment import AttachmentRepository
from signflow.repositories.recipient import RecipientRepository
from signflow.repositories.workflow import WorkflowRepository
from signflow.services.storage import DocumentStore

logger = logging.getLogger(__name__)

STAGE_COMPLETED = "completed_document"
STAGE_AUDIT = "audit_document"


@dataclass
class PipelineResult:
    workflow_id: str
    completed_document_ref: str | None = None
    audit_document_ref: str | None = None
    generated: list[str] = field(default_factory=list)
    errors: dict[str, str] = field(default_factory=dict)
    notifications_sent: int = 0
    notifications_failed: int = 0
    fill_report: FillReport | None = None

    @property
    def ok(self) -> bool:
        return not self.errors


class CompletionPipeline:
    def __init__(
        self,
        session: AsyncSession,
        client_id: str,
        *,
        store: DocumentStore,
        dispatcher: NotificationDispatcher,
        filler: FieldFiller | None = None,
        audit_compiler: AuditCompiler | None = None,
    ):
        self._session = session
        self._workflows = WorkflowRepository(session, client_id)
        self._recipients = RecipientRepository(session, client_id)
        self._attachments = AttachmentRepository(session, client_id)
        self._store = store
        self._dispatcher = dispatcher
        self._filler = filler or FieldFiller.from_settings()
        self._audit = audit_compiler or AuditCompiler()

    async def run(self, workflow_id: str) -> PipelineResult:
        workflow = await self._workflows.refreshed(workflow_id)
        if workflow is None:
            raise NotFoundError("Workflow", workflow_id)

        result = PipelineResult(
            workflow_id=workflow.id,
            completed_document_ref=workflow.completed_document_ref,
            audit_document_ref=workflow.audit_document_ref,
        )
        if workflow.status != WORKFLOW_COMPLETED:
            logger.warning("Pipeline skipped: workflow %s is still %s", workflow.id, workflow.status)
            return result

        recipients = await self._recipients.get_by_workflow(workflow.id)
        attachments = await self._attachments.list_by_workflow(workflow.id)
        logger.info(
            "Completion pipeline started for workflow %s (%d recipients)",
            workflow.external_token, len(recipients),
        )

        if workflow.completed_document_ref is None:
            ref = await self._completed_document_stage(workflow, recipients, result)
            if ref:
                await self._claim(
                    workflow, STAGE_COMPLETED, ref, self._workflows.record_completed_document_ref, result,
                )

        if workflow.audit_document_ref is None:
            ref = await self._audit_stage(workflow, recipients, attachments, result)
            if ref:
                await self._claim(
                    workflow, STAGE_AUDIT, ref, self._workflows.record_audit_document_ref, result,
                )

        workflow = await self._workflows.refreshed(workflow.id)
        result.completed_document_ref = workflow.completed_document_ref
        result.audit_document_ref = workflow.audit_document_ref

        await self._distribute(workflow, recipients, result)
        await self._session.commit()

        logger.info(
            "Completion pipeline finished for workflow %s: generated=%s errors=%s sent=%d failed=%d",
            workflow.external_token, result.generated, list(result.errors),
            result.notifications_sent, result.notifications_failed,
        )
        return result

    async def _claim(
        self,
        workflow: Any,
        stage: str,
        ref: str,
        record: Callable[[str, str], Awaitable[bool]],
        result: PipelineResult,
    ) -> None:
        """Record *ref* if no run got there first; otherwise discard our copy."""
        won = await record(workflow.id, ref)
        await self._session.commit()
        if won:
            result.generated.append(stage)
            return
        logger.info(
            "Workflow %s already has a %s from a concurrent run; discarding %s",
            workflow.external_token, stage, ref,
        )
        await self._store.delete(ref)

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    async def _completed_document_stage(
        self, workflow: Any, recipients: list[Any], result: PipelineResult,
    ) -> str | None:
        merged = merge_form_data(recipients)
        try:
            source = await self._store.load(workflow.source_document_ref)
            output, report = await asyncio.to_thread(fill_and_flatten, source, merged, self._filler)
            result.fill_report = report
            return await self._store.save(
                self._store.new_ref("completed", f"{workflow.external_token}.pdf"), output,
            )
        except Exception as exc:
            error = exc if isinstance(exc, AppException) else DocumentGenerationError(str(exc))
            logger.error(
                "Completed document generation failed for workflow %s: %s",
                workflow.external_token, error.message,
            )
            result.errors[STAGE_COMPLETED] = error.message
            return None

    async def _audit_stage(
        self, workflow: Any, recipients: list[Any], attachments: list[Any], result: PipelineResult,
    ) -> str | None:
        try:
            output = await asyncio.to_thread(self._audit.compile, workflow, recipients, attachments)
            return await self._store.save(
                self._store.new_ref("audit", f"{workflow.external_token}-audit.pdf"), output,
            )
        except Exception as exc:
            error = exc if isinstance(exc, AppException) else AuditGenerationError(str(exc))
            logger.error(
                "Audit document generation failed for workflow %s: %s",
                workflow.external_token, error.message,
            )
            result.errors[STAGE_AUDIT] = error.message
            return None

    async def _distribute(self, workflow: Any, recipients: list[Any], result: PipelineResult) -> None:
        """Send the documents produced by this run to recipients who opted in."""
        outgoing: list[tuple[str, str, str]] = []
        if STAGE_COMPLETED in result.generated:
            outgoing.append((DOCUMENT_COMPLETED, "wants_completed_document", result.completed_document_ref))
        if STAGE_AUDIT in result.generated:
            outgoing.append((DOCUMENT_AUDIT, "wants_audit_document", result.audit_document_ref))

        for recipient in recipients:
            for kind, preference, ref in outgoing:
                if not getattr(recipient, preference):
                    continue
                record = await self._dispatcher.send_document(
                    workflow, recipient, kind, self._store.public_url(ref),
                )
                if record is None:
                    continue
                if record.status == NOTIFICATION_SENT:
                    result.notifications_sent += 1
                else:
                    result.notifications_failed += 1


# ---------------------------------------------------------------------------
# Detached execution (FastAPI background task)
# ---------------------------------------------------------------------------

async def run_pipeline_detached(
    workflow_id: str,
    *,
    client_id: str,
    session_factory: async_sessionmaker[AsyncSession],
    gateway: NotificationGateway,
    store_factory: Callable[[], DocumentStore] = DocumentStore.from_settings,
) -> PipelineResult | None:
    """Run the pipeline in its own session, after the HTTP response was sent."""
    async with session_factory() as session:
        pipeline = CompletionPipeline(
            session,
            client_id,
            store=store_factory(),
            dispatcher=NotificationDispatcher(session, client_id, gateway),
        )
        try:
            return await pipeline.run(workflow_id)
        except Exception:
            await session.rollback()
            logger.exception("Background completion pipeline crashed for workflow %s", workflow_id)
            return None
