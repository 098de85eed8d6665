"""Database layer - engine, base classes, and types."""

from procure_kernel.db.base import UUID, Base, SoftDeleteMixin, TrackedBase, UUIDString
from procure_kernel.db.engine import create_tables, get_engine, get_session, session_scope

__all__ = [
    "get_engine",
    "get_session",
    "session_scope",
    "create_tables",
    "Base",
    "TrackedBase",
    "SoftDeleteMixin",
    "UUIDString",
    "UUID",
]
