"""In-memory credential store.

WHY IN-MEMORY:
- Local development without PostgreSQL
- Deterministic tests of the credential engine (with an injected clock)

Note: Units of work are serialized by a single asyncio.Lock, which makes
every operation atomic within one event loop. Not shared across processes;
use SqlCredentialStore for multi-instance deployments.
"""

import asyncio
import logging
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import datetime

from passwordless.core.errors import StorageError
from passwordless.services.credential_store import (
    DEFAULT_STORE_TIMEOUT_SECONDS,
    CredentialStore,
    CredentialUnitOfWork,
)
from passwordless.services.credential_types import (
    CredentialKind,
    CredentialRecord,
    UserRecord,
)

logger = logging.getLogger(__name__)


class _InMemoryUnitOfWork(CredentialUnitOfWork):
    """Operates on the store's dicts while the store lock is held."""

    def __init__(self, store: "InMemoryCredentialStore") -> None:
        self._store = store

    async def get_user(
        self, identifier: str, *, for_update: bool = False
    ) -> UserRecord | None:
        # for_update is implicit: the whole unit of work holds the lock
        return self._store.users.get(identifier)

    async def get_user_by_id(self, user_id: uuid.UUID) -> UserRecord | None:
        for user in self._store.users.values():
            if user.id == user_id:
                return user
        return None

    async def create_user(
        self, identifier: str, *, now: datetime
    ) -> tuple[UserRecord, bool]:
        existing = self._store.users.get(identifier)
        if existing is not None:
            return existing, False
        user = UserRecord(
            id=uuid.uuid4(),
            identifier=identifier,
            verified_at=None,
            is_new=True,
            created_at=now,
        )
        self._store.users[identifier] = user
        return user, True

    async def mark_verified(self, user_id: uuid.UUID, *, now: datetime) -> None:
        user = await self.get_user_by_id(user_id)
        if user is not None and user.verified_at is None:
            self._store.users[user.identifier] = replace(user, verified_at=now)

    async def clear_new_flag(self, user_id: uuid.UUID) -> bool:
        user = await self.get_user_by_id(user_id)
        if user is None or not user.is_new:
            return False
        self._store.users[user.identifier] = replace(user, is_new=False)
        return True

    async def create(
        self,
        user_id: uuid.UUID,
        kind: CredentialKind,
        secret_hash: str,
        *,
        created_at: datetime,
        expires_at: datetime,
    ) -> CredentialRecord:
        if expires_at <= created_at:
            raise ValueError("expires_at must be after created_at")
        credential = CredentialRecord(
            id=uuid.uuid4(),
            user_id=user_id,
            kind=kind,
            secret_hash=secret_hash,
            created_at=created_at,
            expires_at=expires_at,
        )
        self._store.credentials[credential.id] = credential
        return credential

    async def invalidate_all(self, user_id: uuid.UUID, kind: CredentialKind) -> int:
        doomed = [
            c.id
            for c in self._store.credentials.values()
            if c.user_id == user_id and c.kind is kind
        ]
        for credential_id in doomed:
            del self._store.credentials[credential_id]
        return len(doomed)

    async def find_by_hash(
        self, user_id: uuid.UUID, kind: CredentialKind, secret_hash: str
    ) -> CredentialRecord | None:
        for credential in self._store.credentials.values():
            if (
                credential.user_id == user_id
                and credential.kind is kind
                and credential.secret_hash == secret_hash
            ):
                return credential
        return None

    async def find_active_by_hash(
        self,
        user_id: uuid.UUID,
        kind: CredentialKind,
        secret_hash: str,
        *,
        now: datetime,
    ) -> CredentialRecord | None:
        credential = await self.find_by_hash(user_id, kind, secret_hash)
        if credential is None or not credential.is_active(now):
            return None
        return credential

    async def get(self, credential_id: uuid.UUID) -> CredentialRecord | None:
        return self._store.credentials.get(credential_id)

    async def delete(self, credential_id: uuid.UUID) -> bool:
        return self._store.credentials.pop(credential_id, None) is not None

    async def try_consume(self, credential_id: uuid.UUID, *, now: datetime) -> bool:
        credential = self._store.credentials.get(credential_id)
        if credential is None or not credential.is_active(now):
            return False
        self._store.credentials[credential_id] = replace(credential, used_at=now)
        return True

    async def purge_expired(self, *, now: datetime) -> int:
        expired = [
            c.id for c in self._store.credentials.values() if c.is_expired(now)
        ]
        for credential_id in expired:
            del self._store.credentials[credential_id]
        return len(expired)


class InMemoryCredentialStore(CredentialStore):
    """Single-process credential store.

    Records are immutable, so rollback restores shallow copies of the
    dicts taken when the unit of work began.

    Args:
        timeout_seconds: How long to wait for the store lock.
    """

    def __init__(
        self, *, timeout_seconds: float = DEFAULT_STORE_TIMEOUT_SECONDS
    ) -> None:
        self.users: dict[str, UserRecord] = {}
        self.credentials: dict[uuid.UUID, CredentialRecord] = {}
        self._lock = asyncio.Lock()
        self._timeout_seconds = timeout_seconds

    @asynccontextmanager
    async def unit_of_work(self) -> AsyncIterator[CredentialUnitOfWork]:
        try:
            async with asyncio.timeout(self._timeout_seconds):
                await self._lock.acquire()
        except TimeoutError as exc:
            logger.error(
                "Credential store lock wait exceeded %.1fs", self._timeout_seconds
            )
            raise StorageError("credential store timeout") from exc

        users_snapshot = dict(self.users)
        credentials_snapshot = dict(self.credentials)
        try:
            yield _InMemoryUnitOfWork(self)
        except BaseException:
            self.users = users_snapshot
            self.credentials = credentials_snapshot
            raise
        finally:
            self._lock.release()

    def clear(self) -> None:
        """Drop all users and credentials (for testing)."""
        self.users.clear()
        self.credentials.clear()
