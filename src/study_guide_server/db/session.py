"""
Database Session Management

Async SQLAlchemy engine and session factory for PostgreSQL. Quota counters
and study guides share one pool; both stores open a short-lived session per
operation from `AsyncSessionLocal`.
"""

from __future__ import annotations

from sqlalchemy.ext.asyncio import (
    create_async_engine,
    AsyncSession,
    async_sessionmaker,
)

from ..config import settings
from .models import Base


async_engine = create_async_engine(
    settings.database_url,
    echo=False,
    pool_pre_ping=True,
    pool_size=5,
    max_overflow=10,
)

AsyncSessionLocal = async_sessionmaker(
    bind=async_engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


async def create_tables() -> None:
    """
    Create any missing tables. Development convenience only; there is no
    migration support.
    """
    async with async_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

