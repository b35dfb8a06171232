"""Workflow service — the sequential routing state machine.

Recipients act strictly in order_index order. Every transition is a single
conditional UPDATE in the repository layer, committed before any side effect
(notifications, document generation) runs. The completion pipeline is gated
on the workflow's own active → completed compare-and-set, so it runs at most
once per workflow no matter how many requests race on the last step.

Rule: No FastAPI here. Raise AppException subclasses for business rule violations.
"""


import logging
import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from signflow.core.config import Settings, settings
from signflow.core.exceptions import (
    AlreadySubmittedError,
    ConflictError,
    NotFoundError,
    OutOfTurnError,
    StorageError,
    ValidationError,
)
from signflow.core.pagination import PaginationParams
from signflow.documents.audit import AuditCompiler
from signflow.documents.fields import FieldFiller
from signflow.domain.attachment import Attachment
from signflow.domain.notification import Notification
from signflow.domain.workflow import (
    RECIPIENT_PENDING,
    WORKFLOW_ACTIVE,
    WORKFLOW_COMPLETED,
    Recipient,
    Workflow,
)
from signflow.notifications.dispatcher import NotificationDispatcher
from signflow.notifications.gateways import NotificationGateway, build_gateway
from signflow.repositories.attachment import AttachmentRepository
from signflow.repositories.notification import NotificationRepository
from signflow.repositories.recipient import RecipientRepository
from signflow.repositories.workflow import WorkflowRepository
from signflow.services.pipeline import CompletionPipeline, PipelineResult
from signflow.services.storage import DocumentStore

logger = logging.getLogger(__name__)

RECIPIENT_ROLES = ("PRESCRIBER", "PATIENT", "PHARMACY", "INSURANCE", "CUSTOM")

ALLOWED_ATTACHMENT_TYPES = {
    "image/jpeg",
    "image/jpg",
    "image/png",
    "image/gif",
    "image/webp",
    "application/pdf",
}

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_MOBILE_RE = re.compile(r"^\+?[0-9 ()\-.]{7,20}$")


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

@dataclass
class InitiatedWorkflow:
    workflow: Workflow
    recipients: list[Recipient]


@dataclass
class SubmissionResult:
    recipient: Recipient
    workflow_completed: bool
    next_recipient: Recipient | None = None
    completion: PipelineResult | None = None
    completion_scheduled: bool = False
    accepted: bool = True


@dataclass
class WorkflowSnapshot:
    workflow: Workflow
    recipients: list[Recipient]
    notifications: list[Notification] = field(default_factory=list)
    attachments: list[Attachment] = field(default_factory=list)

    @property
    def current_recipient(self) -> Recipient | None:
        return next((r for r in self.recipients if r.status == RECIPIENT_PENDING), None)


@dataclass
class RecipientContext:
    recipient: Recipient
    workflow: Workflow
    position: int
    total_recipients: int

    @property
    def is_last(self) -> bool:
        return self.position == self.total_recipients

    @property
    def is_first(self) -> bool:
        return self.position == 1


# ---------------------------------------------------------------------------
# Input validation
# ---------------------------------------------------------------------------

def _validate_recipients(recipients: list[Mapping[str, Any]]) -> None:
    if not recipients:
        raise ValidationError("Recipients array is required and must not be empty")
    for index, recipient in enumerate(recipients):
        if not (recipient.get("name") or "").strip():
            raise ValidationError(f"Recipient {index + 1} has no name")
        email = recipient.get("email")
        if email and not _EMAIL_RE.match(email):
            raise ValidationError(f"Recipient {index + 1} has an invalid email address")
        mobile = recipient.get("mobile")
        if mobile and not _MOBILE_RE.match(mobile):
            raise ValidationError(f"Recipient {index + 1} has an invalid mobile number")
        role = recipient.get("role") or "PRESCRIBER"
        if role not in RECIPIENT_ROLES:
            raise ValidationError(f"Recipient {index + 1} has an unknown role '{role}'")


def _validate_form_data(form_data: Any) -> dict[str, Any]:
    if form_data is None:
        return {}
    if not isinstance(form_data, Mapping) or not all(isinstance(k, str) for k in form_data):
        raise ValidationError("formData must be an object with string keys")
    return dict(form_data)


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------

class WorkflowService:
    def __init__(
        self,
        session: AsyncSession,
        client_id: str,
        *,
        gateway: NotificationGateway | None = None,
        store: DocumentStore | None = None,
        filler: FieldFiller | None = None,
        audit_compiler: AuditCompiler | None = None,
        cfg: Settings = settings,
    ):
        self._session = session
        self._settings = cfg
        self._workflows = WorkflowRepository(session, client_id)
        self._recipients = RecipientRepository(session, client_id)
        self._attachments = AttachmentRepository(session, client_id)
        self._notifications = NotificationRepository(session, client_id)
        self._store = store or DocumentStore.from_settings(cfg)
        self._dispatcher = NotificationDispatcher(session, client_id, gateway or build_gateway(cfg))
        self._pipeline = CompletionPipeline(
            session,
            client_id,
            store=self._store,
            dispatcher=self._dispatcher,
            filler=filler,
            audit_compiler=audit_compiler,
        )

    @property
    def store(self) -> DocumentStore:
        return self._store

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def _workflow_by_token(self, token: str) -> Workflow:
        workflow = await self._workflows.get_by_token(token)
        if not workflow:
            raise NotFoundError("Workflow", token)
        return workflow

    async def _recipient_by_token(self, token: str) -> Recipient:
        recipient = await self._recipients.get_by_token(token)
        if not recipient:
            raise NotFoundError("Recipient")
        return recipient

    # ------------------------------------------------------------------
    # Initiation
    # ------------------------------------------------------------------

    async def initiate_workflow(
        self,
        source_document_ref: str,
        recipients: list[Mapping[str, Any]],
        metadata: dict[str, Any] | None = None,
        initial_form_data: Mapping[str, Any] | None = None,
    ) -> InitiatedWorkflow:
        """Create a workflow with its ordered recipients and notify the first one.

        ``initial_form_data`` is stored on the first recipient without marking
        it submitted; the first recipient's own submission merges over it.
        """
        if not (source_document_ref or "").strip():
            raise ValidationError("A source document reference is required")
        try:
            self._store.check_source_ref(source_document_ref)
        except StorageError as exc:
            raise ValidationError(exc.message) from exc
        _validate_recipients(recipients)
        initial = _validate_form_data(initial_form_data)

        workflow = await self._workflows.create_workflow(source_document_ref, metadata)
        created = await self._recipients.add_recipients(
            workflow.id,
            [
                {
                    "name": r["name"].strip(),
                    "email": r.get("email") or None,
                    "mobile": r.get("mobile") or None,
                    "role": r.get("role") or "PRESCRIBER",
                    "wants_completed_document": bool(r.get("wants_completed_document")),
                    "wants_audit_document": bool(r.get("wants_audit_document")),
                }
                for r in recipients
            ],
        )
        if initial:
            await self._recipients.update_form_data(created[0].id, initial, mark_submitted=False)
            logger.info(
                "Initial form data (%d fields) stored for first recipient of workflow %s",
                len(initial), workflow.external_token,
            )
        await self._session.commit()

        logger.info(
            "Workflow %s created with %d recipients", workflow.external_token, len(created),
        )
        await self._dispatcher.notify_turn(
            workflow, created[0], self._settings.recipient_url(created[0].access_token),
        )
        await self._session.commit()

        recipients_out = await self._recipients.get_by_workflow(workflow.id)
        return InitiatedWorkflow(workflow=workflow, recipients=recipients_out)

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    async def submit_recipient_step(
        self,
        token: str,
        form_data: Mapping[str, Any] | None,
        *,
        schedule_completion: Callable[[str], None] | None = None,
    ) -> SubmissionResult:
        """Record one recipient's step and advance the workflow.

        When this submission completes the workflow and this caller wins the
        completion compare-and-set, the completion pipeline either runs inline
        or, if ``schedule_completion`` is given, is handed to it.
        """
        data = _validate_form_data(form_data)
        recipient = await self._recipient_by_token(token)

        if recipient.status != RECIPIENT_PENDING:
            raise AlreadySubmittedError()
        if await self._recipients.has_pending_before(recipient.workflow_id, recipient.order_index):
            raise OutOfTurnError()

        merged = {**(recipient.form_data or {}), **data}
        if not await self._recipients.complete_if_pending(recipient, merged):
            await self._session.rollback()
            current = await self._recipients.refreshed(recipient.id)
            if current is None or current.status != RECIPIENT_PENDING:
                raise AlreadySubmittedError()
            raise OutOfTurnError()
        await self._session.commit()

        recipient = await self._recipients.refreshed(recipient.id)
        logger.info(
            "Recipient %s (%d) completed their step of workflow %s",
            recipient.id, recipient.order_index + 1, recipient.workflow_id,
        )

        workflow = await self._workflows.refreshed(recipient.workflow_id)
        next_recipient = await self._recipients.get_next_pending(
            recipient.workflow_id, recipient.order_index,
        )
        if next_recipient is not None:
            await self._dispatcher.notify_turn(
                workflow, next_recipient, self._settings.recipient_url(next_recipient.access_token),
            )
            await self._session.commit()
            logger.info(
                "Workflow %s advanced to recipient %d", workflow.external_token, next_recipient.order_index + 1,
            )
            return SubmissionResult(
                recipient=recipient, workflow_completed=False, next_recipient=next_recipient,
            )

        return await self._complete(recipient, workflow, schedule_completion)

    async def _complete(
        self,
        recipient: Recipient,
        workflow: Workflow,
        schedule_completion: Callable[[str], None] | None,
    ) -> SubmissionResult:
        won = await self._workflows.mark_completed_if_active(workflow.id)
        await self._session.commit()
        result = SubmissionResult(recipient=recipient, workflow_completed=True)
        if not won:
            logger.info(
                "Workflow %s was already completed by another request", workflow.external_token,
            )
            return result

        logger.info("Workflow %s completed", workflow.external_token)
        if schedule_completion is not None:
            schedule_completion(workflow.id)
            result.completion_scheduled = True
        else:
            result.completion = await self._pipeline.run(workflow.id)
        return result

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_workflow_snapshot(self, token: str) -> WorkflowSnapshot:
        workflow = await self._workflow_by_token(token)
        return WorkflowSnapshot(
            workflow=workflow,
            recipients=await self._recipients.get_by_workflow(workflow.id),
            notifications=await self._notifications.list_by_workflow(workflow.id),
            attachments=await self._attachments.list_by_workflow(workflow.id),
        )

    async def get_recipient_context(self, token: str) -> RecipientContext:
        recipient = await self._recipient_by_token(token)
        workflow = await self._workflows.get_by_id(recipient.workflow_id)
        if workflow is None:
            raise NotFoundError("Workflow", recipient.workflow_id)
        recipients = await self._recipients.get_by_workflow(workflow.id)
        return RecipientContext(
            recipient=recipient,
            workflow=workflow,
            position=recipient.order_index + 1,
            total_recipients=len(recipients),
        )

    async def get_form_data_history(self, token: str) -> list[Recipient]:
        """Recipients in order, each carrying the form data they submitted."""
        workflow = await self._workflow_by_token(token)
        return await self._recipients.get_by_workflow(workflow.id)

    async def list_workflows(self, pagination: PaginationParams, status: str | None = None):
        filters = {"status": status} if status else None
        return await self._workflows.list(
            offset=pagination.offset,
            limit=pagination.limit,
            order_by=pagination.sort,
            order=pagination.order,
            filters=filters,
        )

    async def stats(self) -> dict[str, int]:
        return await self._workflows.stats()

    # ------------------------------------------------------------------
    # Attachments
    # ------------------------------------------------------------------

    async def list_attachments(self, workflow_token: str) -> list[Attachment]:
        workflow = await self._workflow_by_token(workflow_token)
        return await self._attachments.list_by_workflow(workflow.id)

    async def add_attachment(
        self,
        workflow_token: str,
        *,
        filename: str,
        content: bytes,
        mime_type: str,
        recipient_token: str | None = None,
        uploaded_by: str | None = None,
    ) -> Attachment:
        workflow = await self._workflow_by_token(workflow_token)
        if mime_type not in ALLOWED_ATTACHMENT_TYPES:
            raise ValidationError(
                f"Unsupported file type '{mime_type}'. Only images and PDFs are allowed."
            )
        if not content:
            raise ValidationError("Uploaded file is empty")
        if len(content) > self._settings.max_upload_size_bytes:
            raise ValidationError(
                f"File size exceeds the {self._settings.max_upload_size_mb}MB limit"
            )

        recipient = None
        if recipient_token:
            recipient = await self._recipient_by_token(recipient_token)
            if recipient.workflow_id != workflow.id:
                raise ValidationError("Recipient does not belong to this workflow")

        ref = await self._store.save(DocumentStore.new_ref("attachments", filename), content)
        attachment = await self._attachments.create(
            workflow_id=workflow.id,
            recipient_id=recipient.id if recipient else None,
            original_name=filename,
            stored_ref=ref,
            size=len(content),
            mime_type=mime_type,
            uploaded_by=uploaded_by or (recipient.name if recipient else "unknown"),
        )
        await self._session.commit()
        logger.info(
            "Attachment %s (%.2fMB) uploaded to workflow %s",
            filename, len(content) / 1024 / 1024, workflow.external_token,
        )
        return attachment

    async def get_attachment(self, attachment_id: str) -> tuple[Attachment, bytes]:
        attachment = await self._attachments.get_by_id(attachment_id)
        if not attachment:
            raise NotFoundError("Attachment", attachment_id)
        return attachment, await self._store.load(attachment.stored_ref)

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    async def regenerate_documents(self, token: str) -> PipelineResult:
        """Re-run the missing completion stages of a completed workflow."""
        workflow = await self._workflow_by_token(token)
        if workflow.status == WORKFLOW_ACTIVE:
            raise ConflictError(
                "Workflow is still active; documents are generated on completion",
                code="WORKFLOW_ACTIVE",
            )
        if workflow.completed_document_ref and workflow.audit_document_ref:
            logger.info("Workflow %s already has both documents", token)
        return await self._pipeline.run(workflow.id)

    async def regenerate_missing(self) -> list[PipelineResult]:
        """Regenerate for every completed workflow lacking a document."""
        results = []
        for workflow in await self._workflows.list_missing_documents():
            results.append(await self._pipeline.run(workflow.id))
        return results

    async def purge_workflow(self, token: str) -> None:
        workflow = await self._workflow_by_token(token)
        attachments = await self._attachments.list_by_workflow(workflow.id)
        refs = [a.stored_ref for a in attachments]
        refs += [r for r in (workflow.completed_document_ref, workflow.audit_document_ref) if r]

        await self._workflows.purge(workflow.id)
        await self._session.commit()
        for ref in refs:
            await self._store.delete(ref)
        logger.info(
            "Workflow %s purged (%s, %d stored files removed)",
            token, workflow.status, len(refs),
        )

    async def document_for(self, token: str, kind: str) -> str:
        """Stored ref of the completed or audit document of a workflow."""
        workflow = await self._workflow_by_token(token)
        if workflow.status != WORKFLOW_COMPLETED:
            raise ConflictError("Workflow is not completed yet", code="WORKFLOW_ACTIVE")
        ref = workflow.audit_document_ref if kind == "audit" else workflow.completed_document_ref
        if not ref:
            raise NotFoundError(f"{kind.capitalize()} document for workflow", token)
        return ref
