# vaultshare/app/db/base.py
"""
Declarative base shared by ``User``, ``StoredFile`` and ``AuditEvent``.

The engine, session factory and request dependency are re-exported so
callers can import everything database-related from one place.
"""
from sqlalchemy import MetaData
from sqlalchemy.orm import DeclarativeBase

# Stable constraint names so SQLite and PostgreSQL schemas match
NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


class Base(DeclarativeBase):
    metadata = MetaData(naming_convention=NAMING_CONVENTION)


from vaultshare.app.db.session import (  # noqa: E402
    engine,
    AsyncSessionLocal,
    get_db,
)

__all__ = [
    "Base",
    "engine",
    "AsyncSessionLocal",
    "get_db",
]
