"""Database engine and session management."""

from fieldops.database.session import (
    get_engine,
    get_session_factory,
    get_db_session,
)

__all__ = [
    "get_engine",
    "get_session_factory",
    "get_db_session",
]
