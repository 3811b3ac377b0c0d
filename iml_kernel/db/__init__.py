"""Database layer - engine, base classes, and persistence adapters."""

from iml_kernel.db.adapter import InMemoryAdapter, PersistenceAdapter, SqlAlchemyAdapter
from iml_kernel.db.base import Base, TrackedBase, UUIDString
from iml_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_engine,
    get_session,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
    session_scope,
)

__all__ = [
    "PersistenceAdapter",
    "InMemoryAdapter",
    "SqlAlchemyAdapter",
    "Base",
    "TrackedBase",
    "UUIDString",
    "init_engine_from_url",
    "get_engine",
    "get_session",
    "get_session_factory",
    "session_scope",
    "create_tables",
    "drop_tables",
    "reset_engine",
]
