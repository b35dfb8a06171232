"""Generic async repository with pagination and tenant isolation."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Generic, TypeVar

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from signflow.db.base import Base

ModelT = TypeVar("ModelT", bound=Base)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BaseRepository(Generic[ModelT]):
    """Generic CRUD repository. All queries are filtered by client_id."""

    model: type[ModelT]

    def __init__(self, session: AsyncSession, client_id: str):
        self._session = session
        self._client_id = client_id

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _base_query(self):
        """Return a SELECT filtered by client_id."""
        return select(self.model).where(self.model.client_id == self._client_id)

    def _base_update(self):
        return update(self.model).where(self.model.client_id == self._client_id)

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    async def get_by_id(self, entity_id: str) -> ModelT | None:
        result = await self._session.execute(
            self._base_query().where(self.model.id == entity_id)
        )
        return result.scalars().first()

    async def list(
        self,
        *,
        offset: int = 0,
        limit: int = 20,
        order_by: str = "created_at",
        order: str = "desc",
        filters: dict[str, Any] | None = None,
    ) -> tuple[list[ModelT], int]:
        """Return (items, total_count) with pagination and optional column filters."""
        q = self._base_query()

        # Apply simple equality filters
        if filters:
            for col_name, value in filters.items():
                if value is not None and hasattr(self.model, col_name):
                    q = q.where(getattr(self.model, col_name) == value)

        # Count
        count_q = select(func.count()).select_from(q.subquery())
        total = (await self._session.execute(count_q)).scalar_one()

        # Order + paginate
        col = getattr(self.model, order_by, None)
        if col is not None:
            q = q.order_by(col.desc() if order == "desc" else col.asc())
        q = q.offset(offset).limit(limit)

        items = (await self._session.execute(q)).scalars().all()
        return list(items), total

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    async def create(self, **kwargs: Any) -> ModelT:
        instance = self.model(client_id=self._client_id, **kwargs)
        self._session.add(instance)
        await self._session.flush()  # populate id
        await self._session.refresh(instance)
        return instance

    async def update(self, entity_id: str, **kwargs: Any) -> ModelT | None:
        kwargs.pop("id", None)
        kwargs.pop("client_id", None)
        if "updated_at" not in kwargs and hasattr(self.model, "updated_at"):
            kwargs["updated_at"] = utcnow()

        await self._session.execute(
            self._base_update()
            .where(self.model.id == entity_id)
            .values(**kwargs)
            .execution_options(synchronize_session=False)
        )
        await self._session.flush()
        return await self.refreshed(entity_id)

    async def refreshed(self, entity_id: str) -> ModelT | None:
        """Re-read a row, bypassing the identity map's cached attribute state."""
        result = await self._session.execute(
            self._base_query()
            .where(self.model.id == entity_id)
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    async def delete(self, entity_id: str) -> bool:
        """Hard delete. Only the administrative purge path calls this."""
        result = await self._session.execute(
            delete(self.model)
            .where(self.model.id == entity_id)
            .where(self.model.client_id == self._client_id)
            .execution_options(synchronize_session=False)
        )
        await self._session.flush()
        return result.rowcount > 0
