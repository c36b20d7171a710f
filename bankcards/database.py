"""
Database engine, session management, and base model class.

This module sets up SQLAlchemy 2.0 with async support. Key components:

  - engine: The async database engine (connection pool for production DBs)
  - AsyncSessionLocal: Factory for creating async database sessions
  - Base: Declarative base class that all ORM models inherit from
  - get_db(): FastAPI dependency that provides a session per request
  - session_scope(): The same unit of work for callers outside a request
    (the expiry sweep runner, scripts)

Session lifecycle:
  Services only flush; they never commit. The unit of work commits once on
  success and rolls back on ANY exception, so a rejected or failed transfer
  never leaves a partial balance change behind.
"""

from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase

from bankcards.config import settings


# echo=True in debug mode logs all SQL statements
engine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.DEBUG,
)

# expire_on_commit=False prevents lazy-load errors after commit in async context
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy ORM models."""
    pass


@asynccontextmanager
async def session_scope(session_factory: async_sessionmaker | None = None):
    """
    Open a session, commit on success, roll back on any exception.

    Usage:
        async with session_scope() as db:
            await card_service.expire_cards(db)
    """
    factory = session_factory or AsyncSessionLocal
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def get_db():
    """
    FastAPI dependency that provides a database session.

    Usage in a route:
        @router.post("/transfers")
        async def create_transfer(db: AsyncSession = Depends(get_db)):
            ...
    """
    async with session_scope() as session:
        yield session
