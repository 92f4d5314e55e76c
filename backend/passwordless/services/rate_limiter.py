"""Per-identifier attempt limiting.

Fixed-window counting keyed by ``action:identifier``. The window is anchored
at the first hit for a key and lasts ``window_seconds``; once the counter
for the window passes ``max_attempts`` further checks are denied until the
window closes.

Counter stores:
- InMemoryCounterStore: asyncio.Lock, one process.
- DatabaseCounterStore: single atomic upsert in PostgreSQL, shared by all
  instances.

Per-IP request limiting is separate (slowapi, see core/rate_limiting.py).
"""

import asyncio
import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from passwordless.core.clock import Clock, utc_now
from passwordless.core.errors import StorageError
from passwordless.repositories.rate_limit_counter_repository import (
    CounterRow,
    RateLimitCounterRepository,
)

logger = logging.getLogger(__name__)

MAGIC_LINK_SEND = "magic-link-send"
MAGIC_LINK_VERIFY = "magic-link-verify"
OTP_SEND = "otp-send"
OTP_VERIFY = "otp-verify"


def rate_limit_key(action: str, identifier: str) -> str:
    """Build the counter key for an action on an identifier."""
    return f"{action}:{identifier}"


@dataclass(frozen=True)
class RateLimitDecision:
    """Outcome of a rate-limit check.

    Attributes:
        allowed: Whether the attempt may proceed.
        retry_after_seconds: Seconds until the window closes (denied only,
            0 when allowed).
        remaining: Attempts left in the current window.
    """

    allowed: bool
    retry_after_seconds: int
    remaining: int


class CounterStore(ABC):
    """Atomic fixed-window counters."""

    @abstractmethod
    async def increment(
        self, key: str, *, max_attempts: int, window_seconds: int, now: datetime
    ) -> CounterRow:
        """Record a hit and return the counter state after it.

        The count is capped at max_attempts + 1 so denied hits do not
        extend the penalty.
        """

    @abstractmethod
    async def clear(self, key: str) -> None:
        """Forget the counter for a key."""

    @abstractmethod
    async def purge_expired(self, *, now: datetime) -> int:
        """Drop counters whose window has closed."""


class InMemoryCounterStore(CounterStore):
    """Process-local counters guarded by one asyncio.Lock."""

    def __init__(self) -> None:
        self._counters: dict[str, CounterRow] = {}
        self._lock = asyncio.Lock()

    async def increment(
        self, key: str, *, max_attempts: int, window_seconds: int, now: datetime
    ) -> CounterRow:
        async with self._lock:
            current = self._counters.get(key)
            if current is None or current.expires_at <= now:
                row = CounterRow(
                    count=1, expires_at=now + timedelta(seconds=window_seconds)
                )
            else:
                row = CounterRow(
                    count=min(current.count + 1, max_attempts + 1),
                    expires_at=current.expires_at,
                )
            self._counters[key] = row
            return row

    async def clear(self, key: str) -> None:
        async with self._lock:
            self._counters.pop(key, None)

    async def purge_expired(self, *, now: datetime) -> int:
        async with self._lock:
            stale = [k for k, row in self._counters.items() if row.expires_at <= now]
            for key in stale:
                del self._counters[key]
            return len(stale)


class DatabaseCounterStore(CounterStore):
    """Counters in the rate_limit_counters table.

    Args:
        session_factory: Async session factory for DB access.
        timeout_seconds: Upper bound for each counter statement.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        timeout_seconds: float = 5.0,
    ) -> None:
        self._session_factory = session_factory
        self._timeout_seconds = timeout_seconds

    async def increment(
        self, key: str, *, max_attempts: int, window_seconds: int, now: datetime
    ) -> CounterRow:
        try:
            async with asyncio.timeout(self._timeout_seconds):
                async with self._session_factory() as db, db.begin():
                    return await RateLimitCounterRepository.increment(
                        db,
                        key=key,
                        max_attempts=max_attempts,
                        window=timedelta(seconds=window_seconds),
                        now=now,
                    )
        except (TimeoutError, SQLAlchemyError) as exc:
            logger.error("Rate limit counter update failed for %s: %s", key, exc)
            raise StorageError("rate limit store failure") from exc

    async def clear(self, key: str) -> None:
        try:
            async with asyncio.timeout(self._timeout_seconds):
                async with self._session_factory() as db, db.begin():
                    await RateLimitCounterRepository.delete(db, key)
        except (TimeoutError, SQLAlchemyError) as exc:
            logger.error("Rate limit counter reset failed for %s: %s", key, exc)
            raise StorageError("rate limit store failure") from exc

    async def purge_expired(self, *, now: datetime) -> int:
        try:
            async with asyncio.timeout(self._timeout_seconds):
                async with self._session_factory() as db, db.begin():
                    return await RateLimitCounterRepository.delete_expired(
                        db, now=now
                    )
        except (TimeoutError, SQLAlchemyError) as exc:
            logger.error("Rate limit counter purge failed: %s", exc)
            raise StorageError("rate limit store failure") from exc


class RateLimiter:
    """Fixed-window limiter over a CounterStore.

    Args:
        store: Counter backend.
        clock: Time source (injectable for tests).
    """

    def __init__(self, store: CounterStore, *, clock: Clock = utc_now) -> None:
        self._store = store
        self._clock = clock

    async def check(
        self, key: str, max_attempts: int, window_seconds: int
    ) -> RateLimitDecision:
        """Count an attempt and decide whether it may proceed.

        Args:
            key: ``action:identifier`` (see rate_limit_key).
            max_attempts: Attempts allowed per window.
            window_seconds: Window length.

        Returns:
            RateLimitDecision. When denied, retry_after_seconds is the
            ceiling of the time left in the window, between 1 and
            window_seconds.
        """
        now = self._clock()
        row = await self._store.increment(
            key, max_attempts=max_attempts, window_seconds=window_seconds, now=now
        )
        if row.count <= max_attempts:
            return RateLimitDecision(
                allowed=True,
                retry_after_seconds=0,
                remaining=max_attempts - row.count,
            )

        seconds_left = (row.expires_at - now).total_seconds()
        retry_after = min(max(1, math.ceil(seconds_left)), window_seconds)
        logger.info("Rate limit hit for %s (retry in %ds)", key, retry_after)
        return RateLimitDecision(
            allowed=False, retry_after_seconds=retry_after, remaining=0
        )

    async def clear(self, key: str) -> None:
        """Reset a key after a confirmed success."""
        await self._store.clear(key)

    async def purge_expired(self) -> int:
        """Drop counters whose window has closed."""
        return await self._store.purge_expired(now=self._clock())
