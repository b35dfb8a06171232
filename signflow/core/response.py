"""Standardized JSON response envelopes.

Success bodies are `{ data: ... }` (plus `meta` for lists); error bodies come
from the exception handlers as `{ error: { code, message } }`.
"""


from typing import Generic, TypeVar

from pydantic import BaseModel
from pydantic.alias_generators import to_camel

from signflow.core.pagination import PageMeta, PaginationParams

T = TypeVar("T")


class _Envelope(BaseModel):
    model_config = {
        "populate_by_name": True,
        "alias_generator": to_camel,
    }


class DataResponse(_Envelope, Generic[T]):
    """Single-item envelope: `{ data: {...} }`"""

    data: T


class ListResponse(_Envelope, Generic[T]):
    """Paginated list envelope: `{ data: [...], meta: {...} }`"""

    data: list[T]
    meta: PageMeta


def paginated(items: list, total: int, pagination: PaginationParams) -> dict:
    """Build a paginated response dict for use with ListResponse."""
    return {
        "data": items,
        "meta": PageMeta.build(total, pagination.page, pagination.limit),
    }
