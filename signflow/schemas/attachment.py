"""Attachment Pydantic schemas."""


from datetime import datetime

from signflow.schemas.common import CamelModel


class AttachmentOut(CamelModel):
    id: str
    recipient_id: str | None = None
    original_name: str
    size: int
    mime_type: str
    uploaded_by: str
    created_at: datetime
    url: str | None = None
