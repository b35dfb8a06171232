"""Database package — engine/session builders, the default engine, Base and get_db."""
from signflow.db.base import (
    Base,
    async_session_factory,
    build_engine,
    build_session_factory,
    engine,
    get_db,
)

__all__ = [
    "Base",
    "async_session_factory",
    "build_engine",
    "build_session_factory",
    "engine",
    "get_db",
]
