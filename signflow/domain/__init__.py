"""Domain package — all ORM models are imported here so Alembic autogenerate detects them.

Folder intent:
  workflow.py      — Workflow and its ordered Recipients (the state machine rows)
  attachment.py    — Files uploaded alongside a workflow (audit manifest only)
  notification.py  — Outbound email/SMS attempts (observational trail)
  mixins.py        — Shared TimestampMixin, TenantMixin
"""

from signflow.domain.attachment import Attachment
from signflow.domain.notification import Notification
from signflow.domain.workflow import Recipient, Workflow

__all__ = [
    "Attachment",
    "Notification",
    "Recipient",
    "Workflow",
]
