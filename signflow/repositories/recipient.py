"""Recipient repository — ordered lookups and the submission compare-and-set."""

from __future__ import annotations

from typing import Any

from sqlalchemy import exists
from sqlalchemy.orm import aliased

from signflow.domain.workflow import RECIPIENT_COMPLETED, RECIPIENT_PENDING, Recipient
from signflow.repositories.base import BaseRepository, utcnow


class RecipientRepository(BaseRepository[Recipient]):
    model = Recipient

    async def add_recipients(
        self, workflow_id: str, recipients: list[dict[str, Any]],
    ) -> list[Recipient]:
        """Insert a batch; order_index follows list position."""
        created: list[Recipient] = []
        for index, data in enumerate(recipients):
            instance = Recipient(
                client_id=self._client_id,
                workflow_id=workflow_id,
                order_index=index,
                **data,
            )
            self._session.add(instance)
            created.append(instance)
        await self._session.flush()
        return created

    async def get_by_token(self, access_token: str) -> Recipient | None:
        result = await self._session.execute(
            self._base_query().where(Recipient.access_token == access_token)
        )
        return result.scalars().first()

    async def get_by_workflow(self, workflow_id: str) -> list[Recipient]:
        result = await self._session.execute(
            self._base_query()
            .where(Recipient.workflow_id == workflow_id)
            .order_by(Recipient.order_index.asc())
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def get_next_pending(self, workflow_id: str, after_order_index: int) -> Recipient | None:
        result = await self._session.execute(
            self._base_query()
            .where(Recipient.workflow_id == workflow_id)
            .where(Recipient.order_index > after_order_index)
            .where(Recipient.status == RECIPIENT_PENDING)
            .order_by(Recipient.order_index.asc())
            .limit(1)
        )
        return result.scalars().first()

    async def has_pending_before(self, workflow_id: str, order_index: int) -> bool:
        result = await self._session.execute(
            self._base_query()
            .where(Recipient.workflow_id == workflow_id)
            .where(Recipient.order_index < order_index)
            .where(Recipient.status == RECIPIENT_PENDING)
            .limit(1)
        )
        return result.scalars().first() is not None

    async def update_form_data(
        self, recipient_id: str, form_data: dict[str, Any], *, mark_submitted: bool = True,
    ) -> Recipient | None:
        values: dict[str, Any] = {"form_data": form_data}
        if mark_submitted:
            values["submitted_at"] = utcnow()
        return await self.update(recipient_id, **values)

    async def update_status(self, recipient_id: str, status: str) -> Recipient | None:
        return await self.update(recipient_id, status=status)

    async def complete_if_pending(self, recipient: Recipient, form_data: dict[str, Any]) -> bool:
        """pending → completed, storing *form_data*, in one conditional UPDATE.

        The WHERE clause re-checks both preconditions at write time: the row
        is still pending, and no lower-indexed recipient of the same workflow
        is pending. Returns False when another writer got there first or the
        recipient is out of turn.
        """
        earlier = aliased(Recipient)
        earlier_pending = exists().where(
            earlier.workflow_id == recipient.workflow_id,
            earlier.order_index < recipient.order_index,
            earlier.status == RECIPIENT_PENDING,
        )
        now = utcnow()
        result = await self._session.execute(
            self._base_update()
            .where(Recipient.id == recipient.id)
            .where(Recipient.status == RECIPIENT_PENDING)
            .where(~earlier_pending)
            .values(
                status=RECIPIENT_COMPLETED,
                form_data=form_data,
                submitted_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        await self._session.flush()
        return result.rowcount == 1
