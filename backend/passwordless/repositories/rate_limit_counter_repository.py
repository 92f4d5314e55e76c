"""Repository for RateLimitCounter operations.

The increment is one INSERT ... ON CONFLICT DO UPDATE ... RETURNING
statement, so concurrent hits on the same key are serialized by the row
lock PostgreSQL takes for the upsert.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, cast

from sqlalchemy import case, delete
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.engine import CursorResult
from sqlalchemy.ext.asyncio import AsyncSession

from passwordless.models.rate_limit_counter import RateLimitCounter


@dataclass(frozen=True)
class CounterRow:
    """Counter state returned by an increment.

    Attributes:
        count: Hits in the current window, capped at max_attempts + 1.
        expires_at: When the current window closes.
    """

    count: int
    expires_at: datetime


class RateLimitCounterRepository:
    """Stateless repository for RateLimitCounter table operations."""

    @staticmethod
    async def increment(
        db: AsyncSession,
        *,
        key: str,
        max_attempts: int,
        window: timedelta,
        now: datetime,
    ) -> CounterRow:
        """Record a hit for a key within its fixed window.

        - No row, or the stored window closed: start a new window at count 1.
        - Window open and count < max_attempts: count + 1.
        - Window open and count >= max_attempts: count = max_attempts + 1
          (denied; the counter does not grow further).

        Args:
            db: Async database session.
            key: ``action:identifier``.
            max_attempts: Hits allowed per window.
            window: Window length.
            now: Hit timestamp.

        Returns:
            CounterRow after the hit. The hit was allowed iff
            count <= max_attempts.
        """
        table = RateLimitCounter.__table__
        window_closed = table.c.expires_at <= now

        stmt = pg_insert(RateLimitCounter).values(
            key=key,
            count=1,
            window_start=now,
            expires_at=now + window,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[RateLimitCounter.key],
            set_={
                "count": case(
                    (window_closed, 1),
                    (table.c.count >= max_attempts, max_attempts + 1),
                    else_=table.c.count + 1,
                ),
                "window_start": case(
                    (window_closed, now),
                    else_=table.c.window_start,
                ),
                "expires_at": case(
                    (window_closed, now + window),
                    else_=table.c.expires_at,
                ),
            },
        ).returning(RateLimitCounter.count, RateLimitCounter.expires_at)

        result = await db.execute(stmt)
        row = result.one()
        return CounterRow(count=row.count, expires_at=row.expires_at)

    @staticmethod
    async def delete(db: AsyncSession, key: str) -> None:
        """Remove the counter for a key."""
        await db.execute(delete(RateLimitCounter).where(RateLimitCounter.key == key))

    @staticmethod
    async def delete_expired(db: AsyncSession, *, now: datetime) -> int:
        """Delete counters whose window has closed.

        Returns:
            Number of deleted rows.
        """
        stmt = delete(RateLimitCounter).where(RateLimitCounter.expires_at <= now)
        result = cast(CursorResult[Any], await db.execute(stmt))
        row_count: int = result.rowcount
        return row_count
