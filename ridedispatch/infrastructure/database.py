"""
Async SQLAlchemy engine and session factory.

Uses ``asyncpg`` as the PostgreSQL driver for non-blocking I/O.  The engine
is only built when the SQL ride store is selected.
"""

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import StaticPool


class Base(DeclarativeBase):
    """Shared declarative base for all ORM models."""


def create_engine(database_url: str) -> AsyncEngine:
    kwargs = {}
    if database_url.startswith("postgresql"):
        kwargs.update(pool_size=20, max_overflow=10)
    elif database_url.endswith(":memory:"):
        # one shared connection, otherwise every checkout sees an empty db
        kwargs.update(poolclass=StaticPool)
    return create_async_engine(database_url, echo=False, **kwargs)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
