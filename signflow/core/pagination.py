"""Pagination helpers for list endpoints."""


import math

from fastapi import Query
from pydantic import BaseModel

# Columns the admin listing may sort on
SORTABLE_FIELDS = ("created_at", "updated_at", "completed_at", "status")


class PaginationParams:
    """FastAPI dependency for `?page=1&limit=20&sort=created_at&order=desc`."""

    def __init__(
        self,
        page: int = Query(default=1, ge=1, description="Page number (1-based)"),
        limit: int = Query(default=20, ge=1, le=100, description="Items per page"),
        sort: str = Query(
            default="created_at",
            pattern=f"^({'|'.join(SORTABLE_FIELDS)})$",
            description="Sort field",
        ),
        order: str = Query(default="desc", pattern="^(asc|desc)$", description="Sort order"),
    ):
        self.page = page
        self.limit = limit
        self.sort = sort
        self.order = order

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


class PageMeta(BaseModel):
    total: int
    page: int
    limit: int
    pages: int

    model_config = {"populate_by_name": True}

    @classmethod
    def build(cls, total: int, page: int, limit: int) -> "PageMeta":
        return cls(
            total=total,
            page=page,
            limit=limit,
            pages=max(1, math.ceil(total / limit)) if limit else 1,
        )
