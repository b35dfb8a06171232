"""Operator endpoints — stats, listing, document regeneration and purge.

No authentication is applied here; deploy behind whatever gate fronts the API.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from signflow.core.pagination import PaginationParams
from signflow.core.response import DataResponse, ListResponse, paginated
from signflow.routers.deps import get_workflow_service
from signflow.schemas.workflow import CompletionOut, WorkflowOut, WorkflowStats
from signflow.services.pipeline import PipelineResult
from signflow.services.workflow import WorkflowService

router = APIRouter(prefix="/admin", tags=["Admin"])


def _completion_out(result: PipelineResult) -> CompletionOut:
    return CompletionOut(
        completed_document_ref=result.completed_document_ref,
        audit_document_ref=result.audit_document_ref,
        generated=result.generated,
        errors=result.errors,
        notifications_sent=result.notifications_sent,
        notifications_failed=result.notifications_failed,
    )


@router.get("/stats", response_model=DataResponse[WorkflowStats])
async def get_stats(svc: WorkflowService = Depends(get_workflow_service)):
    return {"data": WorkflowStats.model_validate(await svc.stats())}


@router.get("/workflows", response_model=ListResponse[WorkflowOut])
async def list_workflows(
    filter_status: Optional[str] = Query(default=None, alias="status", description="active | completed"),
    pagination: PaginationParams = Depends(),
    svc: WorkflowService = Depends(get_workflow_service),
):
    items, total = await svc.list_workflows(pagination, status=filter_status)
    return paginated([WorkflowOut.model_validate(w) for w in items], total, pagination)


@router.post("/workflows/regenerate-missing", response_model=DataResponse[list[CompletionOut]])
async def regenerate_missing(svc: WorkflowService = Depends(get_workflow_service)):
    """Re-run the pipeline for every completed workflow lacking a document."""
    results = await svc.regenerate_missing()
    return {"data": [_completion_out(r) for r in results]}


@router.post("/workflows/{token}/regenerate", response_model=DataResponse[CompletionOut])
async def regenerate_documents(
    token: str,
    svc: WorkflowService = Depends(get_workflow_service),
):
    """Produce whichever of the completed / audit documents is missing."""
    result = await svc.regenerate_documents(token)
    return {"data": _completion_out(result)}


@router.delete("/workflows/{token}", status_code=status.HTTP_204_NO_CONTENT)
async def purge_workflow(
    token: str,
    svc: WorkflowService = Depends(get_workflow_service),
):
    """Hard-delete a workflow with its recipients, notifications and files."""
    await svc.purge_workflow(token)
