"""
Quota Store

PostgreSQL persistence for quota counters. The one primitive that matters is
`increment_if_under_limit`: a single upsert statement that creates the
window's row or bumps it, guarded by `count < limit` inside the statement.
Concurrent callers for the same window serialise on the row lock, so at most
`limit` of them ever get a row back.

Each call runs in its own short transaction and commits immediately; quota
rows are never held locked across a generation call.
"""

from __future__ import annotations

from datetime import datetime
from typing import NamedTuple, Protocol

from sqlalchemy import delete, func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .models import RateLimitUsage


class IncrementResult(NamedTuple):
    """Outcome of an increment-if-under-limit call."""
    count: int
    exceeded: bool


class QuotaStoreUnavailable(RuntimeError):
    """Raised when the quota store cannot be reached or the statement fails."""


class QuotaStoreProtocol(Protocol):
    async def increment_if_under_limit(
        self,
        identifier: str,
        user_type: str,
        window_start: datetime,
        window_minutes: int,
        limit: int,
    ) -> IncrementResult: ...

    async def current_count(
        self,
        identifier: str,
        user_type: str,
        window_start: datetime,
    ) -> int: ...

    async def delete_identity(self, identifier: str, user_type: str) -> int: ...

    async def purge_expired(self, now: datetime) -> int: ...


class QuotaStore:
    """
    PostgreSQL-backed quota counters.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        """
        Parameters
        ----------
        session_factory : async_sessionmaker
            Factory for short-lived sessions; each operation opens its own.
        """
        self._session_factory = session_factory

    async def increment_if_under_limit(
        self,
        identifier: str,
        user_type: str,
        window_start: datetime,
        window_minutes: int,
        limit: int,
    ) -> IncrementResult:
        """
        Atomically admit one request into the window if it has room.

        Returns
        -------
        IncrementResult
            Post-increment count and `exceeded=False` when admitted;
            the unchanged current count and `exceeded=True` otherwise.
        """
        if limit <= 0:
            return IncrementResult(count=0, exceeded=True)

        stmt = (
            pg_insert(RateLimitUsage)
            .values(
                identifier=identifier,
                user_type=user_type,
                window_start=window_start,
                window_minutes=window_minutes,
                count=1,
            )
            .on_conflict_do_update(
                constraint="uq_rate_limit_window",
                set_={
                    "count": RateLimitUsage.count + 1,
                    "updated_at": func.now(),
                },
                where=RateLimitUsage.count < limit,
            )
            .returning(RateLimitUsage.count)
        )

        try:
            async with self._session_factory() as session:
                async with session.begin():
                    result = await session.execute(stmt)
                    admitted_count = result.scalar_one_or_none()

                    if admitted_count is not None:
                        return IncrementResult(count=admitted_count, exceeded=False)

                    current = await session.execute(
                        select(RateLimitUsage.count).where(
                            RateLimitUsage.identifier == identifier,
                            RateLimitUsage.user_type == user_type,
                            RateLimitUsage.window_start == window_start,
                        )
                    )
                    return IncrementResult(count=current.scalar_one_or_none() or limit, exceeded=True)
        except (SQLAlchemyError, OSError) as exc:
            raise QuotaStoreUnavailable(str(exc)) from exc

    async def current_count(
        self,
        identifier: str,
        user_type: str,
        window_start: datetime,
    ) -> int:
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(RateLimitUsage.count).where(
                        RateLimitUsage.identifier == identifier,
                        RateLimitUsage.user_type == user_type,
                        RateLimitUsage.window_start == window_start,
                    )
                )
                return result.scalar_one_or_none() or 0
        except (SQLAlchemyError, OSError) as exc:
            raise QuotaStoreUnavailable(str(exc)) from exc

    async def delete_identity(self, identifier: str, user_type: str) -> int:
        """Remove every counter for an identity. Returns rows deleted."""
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    result = await session.execute(
                        delete(RateLimitUsage).where(
                            RateLimitUsage.identifier == identifier,
                            RateLimitUsage.user_type == user_type,
                        )
                    )
                    return result.rowcount or 0
        except (SQLAlchemyError, OSError) as exc:
            raise QuotaStoreUnavailable(str(exc)) from exc

    async def purge_expired(self, now: datetime) -> int:
        """Delete counters whose window ended at or before `now`."""
        window_end = RateLimitUsage.window_start + func.make_interval(
            0, 0, 0, 0, 0, RateLimitUsage.window_minutes
        )
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    result = await session.execute(
                        delete(RateLimitUsage).where(window_end <= now)
                    )
                    return result.rowcount or 0
        except (SQLAlchemyError, OSError) as exc:
            raise QuotaStoreUnavailable(str(exc)) from exc
