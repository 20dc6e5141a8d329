"""Execution ledger persistence: engine/session management, ORM models and repositories."""

from .connection import (
    Base,
    close_db,
    create_tables,
    get_session,
    get_session_factory,
    init_db,
    session_scope,
)

__all__ = [
    "Base",
    "close_db",
    "create_tables",
    "get_session",
    "get_session_factory",
    "init_db",
    "session_scope",
]
