"""SQLAlchemy declarative base for authstore tables.

Applications sharing a database with other models should include
``AuthStoreBase.metadata`` in their migration configuration.
"""

from typing import Any

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine
from sqlalchemy.orm import DeclarativeBase


class AuthStoreBase(DeclarativeBase):
    """Declarative base for the users, accounts, sessions and token tables."""


def enable_sqlite_foreign_keys(engine: AsyncEngine) -> None:
    """Turn on foreign key enforcement for every new SQLite connection.

    SQLite ignores ``ON DELETE CASCADE`` unless the pragma is set per
    connection. No-op for other dialects.
    """
    if engine.dialect.name != "sqlite":
        return

    @event.listens_for(engine.sync_engine, "connect")
    def _set_pragma(dbapi_connection: Any, _record: Any) -> None:
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()
