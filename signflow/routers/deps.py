"""Shared FastAPI dependencies for the v1 routers.

Tests swap these out through ``app.dependency_overrides``.
"""


from functools import lru_cache

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from signflow.core.config import settings
from signflow.db.base import async_session_factory, get_db
from signflow.notifications.gateways import NotificationGateway, build_gateway
from signflow.services.storage import DocumentStore
from signflow.services.workflow import WorkflowService


@lru_cache
def get_gateway() -> NotificationGateway:
    return build_gateway(settings)


def get_document_store() -> DocumentStore:
    return DocumentStore.from_settings(settings)


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    return async_session_factory


def get_workflow_service(
    session: AsyncSession = Depends(get_db),
    gateway: NotificationGateway = Depends(get_gateway),
    store: DocumentStore = Depends(get_document_store),
) -> WorkflowService:
    return WorkflowService(session, settings.default_client_id, gateway=gateway, store=store)
