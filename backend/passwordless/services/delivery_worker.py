"""Delivery worker for issued secrets.

Issuance commits the credential, then hands a DeliveryTask to this worker.
In background mode the task goes on an asyncio.Queue drained by a task
started from the FastAPI lifespan; in inline mode the issuing request
awaits delivery itself.

Delivery is idempotent by credential id: a task whose credential was
superseded, consumed, or has expired is skipped, and a credential already
delivered by this worker is never sent twice. A credential whose delivery
fails after all retries is deleted so no orphaned secret stays valid.
"""

import asyncio
import contextlib
import uuid
from collections import OrderedDict
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal

import structlog

from passwordless.core.clock import Clock, utc_now
from passwordless.core.errors import DeliveryError, StorageError
from passwordless.core.retry import RetryPolicy, with_retries
from passwordless.services.credential_store import CredentialStore
from passwordless.services.credential_types import CredentialKind, IssuedCredential
from passwordless.services.notification import NotificationDispatcher

logger = structlog.get_logger()

DispatchMode = Literal["background", "inline"]

DEFAULT_QUEUE_SIZE = 1000
DEFAULT_DRAIN_TIMEOUT_SECONDS = 10.0

# Remembered delivered credential ids (oldest evicted first)
_DELIVERED_HISTORY = 10_000


@dataclass(frozen=True)
class DeliveryTask:
    """One secret to deliver.

    Attributes:
        credential_id: Credential the secret belongs to (idempotency key).
        identifier: Email or E.164 phone to deliver to.
        kind: Selects the dispatcher.
        secret: Plaintext secret. Excluded from repr so it never reaches logs.
        expires_at: Credential expiry, shown to the recipient.
    """

    credential_id: uuid.UUID
    identifier: str
    kind: CredentialKind
    secret: str = field(repr=False)
    expires_at: datetime

    @classmethod
    def from_issued(cls, issued: IssuedCredential) -> "DeliveryTask":
        return cls(
            credential_id=issued.credential.id,
            identifier=issued.identifier,
            kind=issued.credential.kind,
            secret=issued.secret,
            expires_at=issued.expires_at,
        )


class DeliveryWorker:
    """Retrying, idempotent dispatch of issued secrets.

    Lifecycle:
    - start() creates the asyncio task that drains the queue.
    - stop() waits up to drain_timeout_seconds for queued tasks, then
      cancels the task.
    - run_once() drains the queue in the caller's task (for testing).

    Args:
        store: Credential store, used to check and invalidate credentials.
        dispatchers: Channel per credential kind.
        mode: "background" queues tasks; "inline" delivers in submit().
        policy: Retry settings for each delivery.
        queue_size: Maximum queued tasks before submit() fails.
        drain_timeout_seconds: How long stop() waits for the queue.
        clock: Time source (injectable for tests).
    """

    def __init__(
        self,
        store: CredentialStore,
        dispatchers: Mapping[CredentialKind, NotificationDispatcher],
        *,
        mode: DispatchMode = "background",
        policy: RetryPolicy | None = None,
        queue_size: int = DEFAULT_QUEUE_SIZE,
        drain_timeout_seconds: float = DEFAULT_DRAIN_TIMEOUT_SECONDS,
        clock: Clock = utc_now,
    ) -> None:
        self._store = store
        self._dispatchers = dict(dispatchers)
        self._mode = mode
        self._policy = policy or RetryPolicy()
        self._queue: asyncio.Queue[DeliveryTask] = asyncio.Queue(maxsize=queue_size)
        self._drain_timeout_seconds = drain_timeout_seconds
        self._clock = clock
        self._task: asyncio.Task[None] | None = None
        self._running = False
        self._delivered: OrderedDict[uuid.UUID, None] = OrderedDict()

    @property
    def mode(self) -> DispatchMode:
        return self._mode

    @property
    def is_running(self) -> bool:
        """Whether the background task is currently active."""
        return self._running and self._task is not None and not self._task.done()

    @property
    def pending(self) -> int:
        """Number of queued, not yet started deliveries."""
        return self._queue.qsize()

    def start(self) -> None:
        """Start draining the queue in a background task.

        No-op if already running or in inline mode.
        Must be called from an async context (running event loop).
        """
        if self._mode == "inline":
            return
        if self.is_running:
            logger.warning("delivery_worker_already_running")
            return

        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info("delivery_worker_started", queue_size=self._queue.maxsize)

    async def stop(self) -> None:
        """Drain queued deliveries (bounded by the drain timeout), then stop."""
        if self._task is not None and not self._task.done():
            try:
                async with asyncio.timeout(self._drain_timeout_seconds):
                    await self._queue.join()
            except TimeoutError:
                logger.warning(
                    "delivery_worker_drain_timeout",
                    dropped=self._queue.qsize(),
                    timeout_seconds=self._drain_timeout_seconds,
                )
            self._running = False
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
        self._running = False
        self._task = None
        logger.info("delivery_worker_stopped")

    async def submit(self, task: DeliveryTask) -> None:
        """Hand an issued secret over for delivery.

        Raises:
            DeliveryError: Inline mode when delivery finally fails, or
                background mode when the queue is full. The credential
                has been invalidated in both cases.
        """
        if self._mode == "inline":
            await self.deliver(task)
            return

        try:
            self._queue.put_nowait(task)
        except asyncio.QueueFull:
            logger.error(
                "delivery_queue_full",
                credential_id=str(task.credential_id),
                kind=task.kind.value,
            )
            await self._invalidate(task)
            raise DeliveryError("delivery queue full") from None

    async def deliver(self, task: DeliveryTask) -> bool:
        """Deliver one task with retries.

        Returns:
            True if the secret was sent, False if the task was skipped
            (already delivered, superseded, used or expired).

        Raises:
            DeliveryError: If every attempt failed. The credential has been
                deleted.
            StorageError: If the credential could not be checked.
        """
        log = logger.bind(
            credential_id=str(task.credential_id),
            kind=task.kind.value,
            identifier=task.identifier,
        )
        if task.credential_id in self._delivered:
            log.info("delivery_skipped", reason="already_delivered")
            return False

        async with self._store.unit_of_work() as uow:
            credential = await uow.get(task.credential_id)
        if credential is None or not credential.is_active(self._clock()):
            log.info("delivery_skipped", reason="credential_not_active")
            return False

        dispatcher = self._dispatchers[task.kind]
        try:
            await with_retries(
                lambda: dispatcher.send(task.identifier, task.secret, task.expires_at),
                self._policy,
            )
        except DeliveryError as exc:
            log.error(
                "delivery_failed",
                reason=exc.reason,
                attempts=self._policy.max_retries + 1,
            )
            await self._invalidate(task)
            raise

        self._remember(task.credential_id)
        log.info("delivery_sent")
        return True

    async def run_once(self) -> int:
        """Deliver everything currently queued.

        Useful for testing without starting the background task.

        Returns:
            Number of tasks processed (sent, skipped or failed).
        """
        processed = 0
        while not self._queue.empty():
            task = self._queue.get_nowait()
            try:
                await self._process(task)
            finally:
                self._queue.task_done()
            processed += 1
        return processed

    async def _run_loop(self) -> None:
        """Background loop: wait for a task → deliver → repeat."""
        try:
            while self._running:
                task = await self._queue.get()
                try:
                    await self._process(task)
                finally:
                    self._queue.task_done()
        except asyncio.CancelledError:
            logger.debug("delivery_loop_cancelled")
            raise

    async def _process(self, task: DeliveryTask) -> None:
        try:
            await self.deliver(task)
        except (DeliveryError, StorageError):
            # Already logged with context; the credential is invalidated or
            # will expire unused.
            pass
        except Exception:  # noqa: BLE001
            logger.exception(
                "delivery_unexpected_error", credential_id=str(task.credential_id)
            )

    async def _invalidate(self, task: DeliveryTask) -> None:
        try:
            async with self._store.unit_of_work() as uow:
                deleted = await uow.delete(task.credential_id)
        except StorageError:
            logger.error(
                "delivery_invalidate_failed", credential_id=str(task.credential_id)
            )
            return
        logger.info(
            "credential_invalidated_after_delivery_failure",
            credential_id=str(task.credential_id),
            deleted=deleted,
        )

    def _remember(self, credential_id: uuid.UUID) -> None:
        self._delivered[credential_id] = None
        if len(self._delivered) > _DELIVERED_HISTORY:
            self._delivered.popitem(last=False)
