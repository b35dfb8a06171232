"""Workflow / recipient Pydantic schemas (request DTOs and response models)."""


from datetime import datetime
from typing import Any, Literal

from pydantic import AliasChoices, Field

from signflow.schemas.attachment import AttachmentOut
from signflow.schemas.common import CamelModel

RecipientRole = Literal["PRESCRIBER", "PATIENT", "PHARMACY", "INSURANCE", "CUSTOM"]


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------

class RecipientCreate(CamelModel):
    name: str = Field(min_length=1, validation_alias=AliasChoices("name", "partyName"))
    email: str | None = None
    mobile: str | None = None
    role: RecipientRole = Field(
        default="PRESCRIBER", validation_alias=AliasChoices("role", "recipientType"),
    )
    wants_completed_document: bool = False
    wants_audit_document: bool = False


class WorkflowCreate(CamelModel):
    source_document_ref: str = Field(
        min_length=1, validation_alias=AliasChoices("sourceDocumentRef", "documentUrl"),
    )
    recipients: list[RecipientCreate]
    metadata: dict[str, Any] | None = None
    initial_form_data: dict[str, Any] | None = None


class SubmitRequest(CamelModel):
    form_data: dict[str, Any] | None = None


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------

class RecipientOut(CamelModel):
    """A recipient as shown to other parties: never carries the access token."""

    id: str
    order_index: int
    name: str
    email: str | None = None
    mobile: str | None = None
    role: str
    status: str
    submitted_at: datetime | None = None
    wants_completed_document: bool
    wants_audit_document: bool


class RecipientLink(CamelModel):
    name: str
    order_index: int
    token: str
    url: str


class WorkflowOut(CamelModel):
    id: str
    token: str = Field(validation_alias=AliasChoices("external_token", "token"))
    source_document_ref: str
    status: str
    metadata: dict[str, Any] | None = Field(
        default=None, validation_alias=AliasChoices("meta", "metadata"),
    )
    completed_document_ref: str | None = None
    audit_document_ref: str | None = None
    created_at: datetime
    updated_at: datetime
    completed_at: datetime | None = None


class WorkflowCreated(CamelModel):
    workflow: WorkflowOut
    recipients: list[RecipientOut]
    recipient_links: list[RecipientLink]


class NotificationOut(CamelModel):
    id: str
    recipient_id: str | None = None
    channel: str
    address: str
    subject: str | None = None
    status: str
    external_id: str | None = None
    error: str | None = None
    created_at: datetime
    sent_at: datetime | None = None


class WorkflowSnapshotOut(CamelModel):
    workflow: WorkflowOut
    recipients: list[RecipientOut]
    current_recipient: RecipientOut | None = None
    notifications: list[NotificationOut] = []
    attachments: list[AttachmentOut] = []
    completed_document_url: str | None = None
    audit_document_url: str | None = None


class RecipientContextOut(CamelModel):
    recipient: RecipientOut
    workflow_token: str
    source_document_ref: str
    workflow_status: str
    position: int
    total_recipients: int
    is_first: bool
    is_last: bool
    form_data: dict[str, Any] | None = None


class NextRecipientOut(CamelModel):
    name: str
    email: str | None = None


class CompletionOut(CamelModel):
    completed_document_ref: str | None = None
    audit_document_ref: str | None = None
    generated: list[str] = []
    errors: dict[str, str] = {}
    notifications_sent: int = 0
    notifications_failed: int = 0


class SubmissionOut(CamelModel):
    accepted: bool
    message: str
    workflow_completed: bool
    next_recipient: NextRecipientOut | None = None
    completion_scheduled: bool = False
    completion: CompletionOut | None = None


class FormDataEntry(CamelModel):
    recipient_id: str
    name: str
    role: str
    order_index: int
    status: str
    submitted_at: datetime | None = None
    form_data: dict[str, Any] | None = None


class WorkflowStats(CamelModel):
    total_workflows: int
    active_workflows: int
    completed_workflows: int
