"""Recipient endpoints — the link each party opens, and their submission."""

from __future__ import annotations

from fastapi import APIRouter, BackgroundTasks, Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from signflow.core.config import settings
from signflow.core.response import DataResponse
from signflow.notifications.gateways import NotificationGateway
from signflow.routers.deps import get_gateway, get_session_factory, get_workflow_service
from signflow.schemas.workflow import (
    CompletionOut,
    NextRecipientOut,
    RecipientContextOut,
    RecipientOut,
    SubmissionOut,
    SubmitRequest,
)
from signflow.services.pipeline import run_pipeline_detached
from signflow.services.workflow import WorkflowService

router = APIRouter(prefix="/recipients", tags=["Recipients"])


@router.get("/{token}", response_model=DataResponse[RecipientContextOut])
async def get_recipient(
    token: str,
    svc: WorkflowService = Depends(get_workflow_service),
):
    """Resolve a recipient link: who they are and where they sit in the order."""
    ctx = await svc.get_recipient_context(token)
    return {
        "data": RecipientContextOut(
            recipient=RecipientOut.model_validate(ctx.recipient),
            workflow_token=ctx.workflow.external_token,
            source_document_ref=ctx.workflow.source_document_ref,
            workflow_status=ctx.workflow.status,
            position=ctx.position,
            total_recipients=ctx.total_recipients,
            is_first=ctx.is_first,
            is_last=ctx.is_last,
            form_data=ctx.recipient.form_data,
        )
    }


@router.post("/{token}/submit", response_model=DataResponse[SubmissionOut])
async def submit_recipient(
    token: str,
    body: SubmitRequest,
    background_tasks: BackgroundTasks,
    svc: WorkflowService = Depends(get_workflow_service),
    gateway: NotificationGateway = Depends(get_gateway),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    """Submit this recipient's portion; notifies the next one or completes the workflow."""
    schedule = None
    if settings.run_pipeline_in_background:
        def schedule(workflow_id: str) -> None:
            background_tasks.add_task(
                run_pipeline_detached,
                workflow_id,
                client_id=settings.default_client_id,
                session_factory=session_factory,
                gateway=gateway,
            )

    result = await svc.submit_recipient_step(token, body.form_data, schedule_completion=schedule)

    completion = None
    if result.completion is not None:
        completion = CompletionOut(
            completed_document_ref=result.completion.completed_document_ref,
            audit_document_ref=result.completion.audit_document_ref,
            generated=result.completion.generated,
            errors=result.completion.errors,
            notifications_sent=result.completion.notifications_sent,
            notifications_failed=result.completion.notifications_failed,
        )
    nxt = result.next_recipient
    return {
        "data": SubmissionOut(
            accepted=result.accepted,
            message=(
                "Workflow completed successfully!"
                if result.workflow_completed
                else "Submission successful, next recipient notified"
            ),
            workflow_completed=result.workflow_completed,
            next_recipient=NextRecipientOut(name=nxt.name, email=nxt.email) if nxt else None,
            completion_scheduled=result.completion_scheduled,
            completion=completion,
        )
    }
