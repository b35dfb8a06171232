"""Workflow endpoints — initiation, snapshots, form-data history and attachments."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile, status

from signflow.core.config import settings
from signflow.core.response import DataResponse
from signflow.routers.deps import get_workflow_service
from signflow.schemas.attachment import AttachmentOut
from signflow.schemas.workflow import (
    FormDataEntry,
    NotificationOut,
    RecipientLink,
    RecipientOut,
    WorkflowCreate,
    WorkflowCreated,
    WorkflowOut,
    WorkflowSnapshotOut,
)
from signflow.services.storage import DocumentStore
from signflow.services.workflow import WorkflowService, WorkflowSnapshot

router = APIRouter(prefix="/workflows", tags=["Workflows"])


# ------------------------------------------------------------------
# Response shaping
# ------------------------------------------------------------------

def attachment_out(attachment) -> AttachmentOut:
    out = AttachmentOut.model_validate(attachment)
    out.url = f"{settings.public_base_url.rstrip('/')}/api/v1/attachments/{attachment.id}"
    return out


def snapshot_out(snapshot: WorkflowSnapshot, store: DocumentStore) -> WorkflowSnapshotOut:
    workflow = snapshot.workflow
    current = snapshot.current_recipient
    return WorkflowSnapshotOut(
        workflow=WorkflowOut.model_validate(workflow),
        recipients=[RecipientOut.model_validate(r) for r in snapshot.recipients],
        current_recipient=RecipientOut.model_validate(current) if current else None,
        notifications=[NotificationOut.model_validate(n) for n in snapshot.notifications],
        attachments=[attachment_out(a) for a in snapshot.attachments],
        completed_document_url=(
            store.public_url(workflow.completed_document_ref)
            if workflow.completed_document_ref else None
        ),
        audit_document_url=(
            store.public_url(workflow.audit_document_ref) if workflow.audit_document_ref else None
        ),
    )


# ------------------------------------------------------------------
# Endpoints
# ------------------------------------------------------------------

@router.post("", response_model=DataResponse[WorkflowCreated], status_code=status.HTTP_201_CREATED)
async def create_workflow(
    body: WorkflowCreate,
    svc: WorkflowService = Depends(get_workflow_service),
):
    """Create a workflow and notify its first recipient."""
    created = await svc.initiate_workflow(
        body.source_document_ref,
        [r.model_dump() for r in body.recipients],
        metadata=body.metadata,
        initial_form_data=body.initial_form_data,
    )
    return {
        "data": WorkflowCreated(
            workflow=WorkflowOut.model_validate(created.workflow),
            recipients=[RecipientOut.model_validate(r) for r in created.recipients],
            recipient_links=[
                RecipientLink(
                    name=r.name,
                    order_index=r.order_index,
                    token=r.access_token,
                    url=settings.recipient_url(r.access_token),
                )
                for r in created.recipients
            ],
        )
    }


@router.get("/{token}", response_model=DataResponse[WorkflowSnapshotOut])
async def get_workflow(
    token: str,
    svc: WorkflowService = Depends(get_workflow_service),
):
    snapshot = await svc.get_workflow_snapshot(token)
    return {"data": snapshot_out(snapshot, svc.store)}


@router.get("/{token}/form-data", response_model=DataResponse[list[FormDataEntry]])
async def get_form_data_history(
    token: str,
    svc: WorkflowService = Depends(get_workflow_service),
):
    """Each recipient's submitted form data, in routing order."""
    recipients = await svc.get_form_data_history(token)
    return {
        "data": [
            FormDataEntry(
                recipient_id=r.id,
                name=r.name,
                role=r.role,
                order_index=r.order_index,
                status=r.status,
                submitted_at=r.submitted_at,
                form_data=r.form_data,
            )
            for r in recipients
        ]
    }


@router.get("/{token}/attachments", response_model=DataResponse[list[AttachmentOut]])
async def list_attachments(
    token: str,
    svc: WorkflowService = Depends(get_workflow_service),
):
    attachments = await svc.list_attachments(token)
    return {"data": [attachment_out(a) for a in attachments]}


@router.post(
    "/{token}/attachments",
    response_model=DataResponse[AttachmentOut],
    status_code=status.HTTP_201_CREATED,
)
async def upload_attachment(
    token: str,
    file: UploadFile = File(...),
    recipient_token: Optional[str] = Form(default=None, alias="recipientToken"),
    uploaded_by: Optional[str] = Form(default=None, alias="uploadedBy"),
    svc: WorkflowService = Depends(get_workflow_service),
):
    """Upload an image or PDF alongside the workflow (listed in the audit trail)."""
    contents = await file.read()
    attachment = await svc.add_attachment(
        token,
        filename=file.filename or "upload",
        content=contents,
        mime_type=file.content_type or "application/octet-stream",
        recipient_token=recipient_token,
        uploaded_by=uploaded_by,
    )
    return {"data": attachment_out(attachment)}
