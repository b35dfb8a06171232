"""Download endpoints for stored documents and attachments.

``/documents/{ref}`` is the public link emailed to recipients; only keys
under the store's own prefixes are served.
"""


import mimetypes
from typing import Literal

from fastapi import APIRouter, Depends
from fastapi.responses import Response

from signflow.core.exceptions import NotFoundError
from signflow.routers.deps import get_document_store, get_workflow_service
from signflow.services.storage import DocumentStore
from signflow.services.workflow import WorkflowService

_SERVED_PREFIXES = ("completed/", "audit/", "attachments/")

router = APIRouter(tags=["Documents"])


@router.get("/documents/{ref:path}")
async def download_document(ref: str, store: DocumentStore = Depends(get_document_store)):
    if not ref.startswith(_SERVED_PREFIXES):
        raise NotFoundError("Document", ref)
    content = await store.load(ref)
    media_type = mimetypes.guess_type(ref)[0] or "application/octet-stream"
    filename = ref.rsplit("/", 1)[-1]
    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": f'inline; filename="{filename}"'},
    )


@router.get("/api/v1/attachments/{attachment_id}")
async def download_attachment(
    attachment_id: str,
    svc: WorkflowService = Depends(get_workflow_service),
):
    attachment, content = await svc.get_attachment(attachment_id)
    return Response(
        content=content,
        media_type=attachment.mime_type,
        headers={"Content-Disposition": f'inline; filename="{attachment.original_name}"'},
    )


@router.get("/api/v1/workflows/{token}/documents/{kind}")
async def download_workflow_document(
    token: str,
    kind: Literal["completed", "audit"],
    svc: WorkflowService = Depends(get_workflow_service),
):
    """The completed form or audit trail of a finished workflow, by workflow token."""
    ref = await svc.document_for(token, kind)
    content = await svc.store.load(ref)
    return Response(
        content=content,
        media_type="application/pdf",
        headers={"Content-Disposition": f'inline; filename="{kind}-{token}.pdf"'},
    )
