"""Expired credential sweeper.

asyncio background task started from the FastAPI lifespan. Every interval
it deletes credentials past their deadline and rate-limit counters whose
window has closed. Expired rows are already unusable; the sweep only keeps
the tables small.
"""

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from datetime import datetime

from passwordless.core.clock import Clock, utc_now
from passwordless.services.credential_store import CredentialStore
from passwordless.services.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

# Default interval: 15 minutes
DEFAULT_INTERVAL_SECONDS = 15 * 60


@dataclass(frozen=True)
class SweepResult:
    """Statistics from one sweep.

    Attributes:
        credentials_deleted: Expired credentials removed.
        counters_deleted: Stale rate-limit counters removed.
        finished_at: When the sweep completed.
    """

    credentials_deleted: int
    counters_deleted: int
    finished_at: datetime


class CredentialSweeper:
    """Background worker that periodically purges expired state.

    Lifecycle:
    - start() creates an asyncio task that runs the sweep loop.
    - stop() cancels the task and waits for graceful shutdown.
    - run_once() executes a single sweep (for testing).

    Args:
        store: Credential store to purge.
        rate_limiter: Limiter whose stale counters are purged.
        interval_seconds: Seconds between sweeps.
        clock: Time source (injectable for tests).
    """

    def __init__(
        self,
        store: CredentialStore,
        rate_limiter: RateLimiter,
        *,
        interval_seconds: int = DEFAULT_INTERVAL_SECONDS,
        clock: Clock = utc_now,
    ) -> None:
        self._store = store
        self._rate_limiter = rate_limiter
        self._interval_seconds = interval_seconds
        self._clock = clock
        self._task: asyncio.Task[None] | None = None
        self._last_run_at: datetime | None = None
        self._running = False

    @property
    def is_running(self) -> bool:
        """Whether the background task is currently active."""
        return self._running and self._task is not None and not self._task.done()

    @property
    def last_run_at(self) -> datetime | None:
        """Timestamp of the most recent completed sweep."""
        return self._last_run_at

    def start(self) -> None:
        """Start the background sweep loop.

        No-op if already running.
        Must be called from an async context (running event loop).
        """
        if self.is_running:
            logger.warning("Credential sweeper already running")
            return

        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info("Credential sweeper started (interval=%ds)", self._interval_seconds)

    async def stop(self) -> None:
        """Cancel the sweep loop and wait for it to finish."""
        self._running = False
        if self._task is not None and not self._task.done():
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
        self._task = None
        logger.info("Credential sweeper stopped")

    async def run_once(self) -> SweepResult:
        """Execute a single sweep.

        Returns:
            SweepResult with counts from the sweep.
        """
        now = self._clock()
        async with self._store.unit_of_work() as uow:
            credentials_deleted = await uow.purge_expired(now=now)
        counters_deleted = await self._rate_limiter.purge_expired()

        result = SweepResult(
            credentials_deleted=credentials_deleted,
            counters_deleted=counters_deleted,
            finished_at=self._clock(),
        )
        self._last_run_at = result.finished_at
        return result

    async def _run_loop(self) -> None:
        """Background loop: sweep → sleep → repeat."""
        try:
            while self._running:
                try:
                    result = await self.run_once()
                    logger.info(
                        "Sweep: %d expired credentials, %d stale counters removed",
                        result.credentials_deleted,
                        result.counters_deleted,
                    )
                except Exception:  # noqa: BLE001
                    logger.exception("Error in credential sweep")
                await asyncio.sleep(self._interval_seconds)
        except asyncio.CancelledError:
            logger.debug("Sweep loop cancelled")
            raise
