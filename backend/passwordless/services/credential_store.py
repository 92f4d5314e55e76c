"""Credential persistence with an explicit unit-of-work boundary.

Every read or write happens inside ``async with store.unit_of_work() as uow``:
the block commits on clean exit and rolls back on any exception. Services
keep these blocks tight: issuance wraps exactly invalidate + create, and
verification wraps exactly the conditional consume and its user updates.

Two backends implement the same contract:
- SqlCredentialStore: PostgreSQL through SQLAlchemy async (production).
- InMemoryCredentialStore (memory_credential_store.py): single process.

Store failures and timeouts surface as StorageError, retryable by the caller.
"""

import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from passwordless.core.errors import StorageError
from passwordless.models.credential import Credential
from passwordless.models.user import User
from passwordless.repositories.credential_repository import CredentialRepository
from passwordless.repositories.user_repository import UserRepository
from passwordless.services.credential_types import (
    CredentialKind,
    CredentialRecord,
    UserRecord,
)

logger = logging.getLogger(__name__)

DEFAULT_STORE_TIMEOUT_SECONDS = 5.0


class CredentialUnitOfWork(ABC):
    """Operations available inside one transaction."""

    # -- users -------------------------------------------------------------

    @abstractmethod
    async def get_user(
        self, identifier: str, *, for_update: bool = False
    ) -> UserRecord | None:
        """Fetch a user by identifier, optionally locking it."""

    @abstractmethod
    async def get_user_by_id(self, user_id: uuid.UUID) -> UserRecord | None:
        """Fetch a user by id."""

    @abstractmethod
    async def create_user(
        self, identifier: str, *, now: datetime
    ) -> tuple[UserRecord, bool]:
        """Create a user with is_new=True unless one exists.

        Returns:
            (user, created): created is False when the identifier was
            already taken (including by a concurrent request).
        """

    @abstractmethod
    async def mark_verified(self, user_id: uuid.UUID, *, now: datetime) -> None:
        """Set verified_at if it is still unset."""

    @abstractmethod
    async def clear_new_flag(self, user_id: uuid.UUID) -> bool:
        """Flip is_new to False. True only for the call that flipped it."""

    # -- credentials -------------------------------------------------------

    @abstractmethod
    async def create(
        self,
        user_id: uuid.UUID,
        kind: CredentialKind,
        secret_hash: str,
        *,
        created_at: datetime,
        expires_at: datetime,
    ) -> CredentialRecord:
        """Persist a new credential."""

    @abstractmethod
    async def invalidate_all(self, user_id: uuid.UUID, kind: CredentialKind) -> int:
        """Delete every credential of this kind for the user."""

    @abstractmethod
    async def find_by_hash(
        self, user_id: uuid.UUID, kind: CredentialKind, secret_hash: str
    ) -> CredentialRecord | None:
        """Find a credential by hash in any state."""

    @abstractmethod
    async def find_active_by_hash(
        self,
        user_id: uuid.UUID,
        kind: CredentialKind,
        secret_hash: str,
        *,
        now: datetime,
    ) -> CredentialRecord | None:
        """Find a credential by hash only if unused and expires_at > now."""

    @abstractmethod
    async def get(self, credential_id: uuid.UUID) -> CredentialRecord | None:
        """Fetch a credential by id."""

    @abstractmethod
    async def delete(self, credential_id: uuid.UUID) -> bool:
        """Delete one credential. True if it existed."""

    @abstractmethod
    async def try_consume(self, credential_id: uuid.UUID, *, now: datetime) -> bool:
        """Set used_at = now iff the row is unused and unexpired.

        Returns:
            True for exactly one of any number of concurrent callers.
        """

    @abstractmethod
    async def purge_expired(self, *, now: datetime) -> int:
        """Delete all credentials with expires_at <= now."""


class CredentialStore(ABC):
    """Factory for units of work."""

    @abstractmethod
    def unit_of_work(self) -> AbstractAsyncContextManager[CredentialUnitOfWork]:
        """Open a transaction. Commit on exit, roll back on exception."""


def _to_user_record(user: User) -> UserRecord:
    return UserRecord(
        id=user.id,
        identifier=user.identifier,
        verified_at=user.verified_at,
        is_new=user.is_new,
        created_at=user.created_at,
    )


def _to_credential_record(credential: Credential) -> CredentialRecord:
    return CredentialRecord(
        id=credential.id,
        user_id=credential.user_id,
        kind=CredentialKind(credential.kind),
        secret_hash=credential.secret_hash,
        created_at=credential.created_at,
        expires_at=credential.expires_at,
        used_at=credential.used_at,
    )


class SqlUnitOfWork(CredentialUnitOfWork):
    """Unit of work bound to one AsyncSession transaction."""

    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def get_user(
        self, identifier: str, *, for_update: bool = False
    ) -> UserRecord | None:
        user = await UserRepository.get_by_identifier(
            self._db, identifier, for_update=for_update
        )
        return _to_user_record(user) if user else None

    async def get_user_by_id(self, user_id: uuid.UUID) -> UserRecord | None:
        user = await UserRepository.get_by_id(self._db, user_id)
        if user is None:
            return None
        await self._db.refresh(user)
        return _to_user_record(user)

    async def create_user(
        self, identifier: str, *, now: datetime
    ) -> tuple[UserRecord, bool]:
        created = await UserRepository.create_if_absent(
            self._db, identifier=identifier, created_at=now
        )
        # Lock the row (ours or the concurrent winner's) for the rest of
        # the transaction
        user = await UserRepository.get_by_identifier(
            self._db, identifier, for_update=True
        )
        if user is None:
            raise StorageError(f"user row vanished after upsert: {identifier}")
        return _to_user_record(user), created

    async def mark_verified(self, user_id: uuid.UUID, *, now: datetime) -> None:
        await UserRepository.mark_verified(self._db, user_id, verified_at=now)

    async def clear_new_flag(self, user_id: uuid.UUID) -> bool:
        return await UserRepository.clear_new_flag(self._db, user_id)

    async def create(
        self,
        user_id: uuid.UUID,
        kind: CredentialKind,
        secret_hash: str,
        *,
        created_at: datetime,
        expires_at: datetime,
    ) -> CredentialRecord:
        credential = await CredentialRepository.create(
            self._db,
            user_id=user_id,
            kind=kind.value,
            secret_hash=secret_hash,
            created_at=created_at,
            expires_at=expires_at,
        )
        return _to_credential_record(credential)

    async def invalidate_all(self, user_id: uuid.UUID, kind: CredentialKind) -> int:
        return await CredentialRepository.delete_all_for_user(
            self._db, user_id=user_id, kind=kind.value
        )

    async def find_by_hash(
        self, user_id: uuid.UUID, kind: CredentialKind, secret_hash: str
    ) -> CredentialRecord | None:
        credential = await CredentialRepository.get_by_hash(
            self._db, user_id=user_id, kind=kind.value, secret_hash=secret_hash
        )
        return _to_credential_record(credential) if credential else None

    async def find_active_by_hash(
        self,
        user_id: uuid.UUID,
        kind: CredentialKind,
        secret_hash: str,
        *,
        now: datetime,
    ) -> CredentialRecord | None:
        credential = await CredentialRepository.get_active_by_hash(
            self._db,
            user_id=user_id,
            kind=kind.value,
            secret_hash=secret_hash,
            now=now,
        )
        return _to_credential_record(credential) if credential else None

    async def get(self, credential_id: uuid.UUID) -> CredentialRecord | None:
        credential = await CredentialRepository.get_by_id(self._db, credential_id)
        return _to_credential_record(credential) if credential else None

    async def delete(self, credential_id: uuid.UUID) -> bool:
        return await CredentialRepository.delete(self._db, credential_id)

    async def try_consume(self, credential_id: uuid.UUID, *, now: datetime) -> bool:
        return await CredentialRepository.mark_used(self._db, credential_id, now=now)

    async def purge_expired(self, *, now: datetime) -> int:
        return await CredentialRepository.delete_expired(self._db, now=now)


class SqlCredentialStore(CredentialStore):
    """PostgreSQL-backed credential store.

    Args:
        session_factory: Async session factory for DB access.
        timeout_seconds: Upper bound for a whole unit of work.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        timeout_seconds: float = DEFAULT_STORE_TIMEOUT_SECONDS,
    ) -> None:
        self._session_factory = session_factory
        self._timeout_seconds = timeout_seconds

    @asynccontextmanager
    async def unit_of_work(self) -> AsyncIterator[CredentialUnitOfWork]:
        try:
            async with asyncio.timeout(self._timeout_seconds):
                async with self._session_factory() as db, db.begin():
                    yield SqlUnitOfWork(db)
        except TimeoutError as exc:
            logger.error(
                "Credential store timed out after %.1fs", self._timeout_seconds
            )
            raise StorageError("credential store timeout") from exc
        except (SQLAlchemyError, OSError) as exc:
            logger.error("Credential store failure: %s", exc)
            raise StorageError("credential store failure") from exc
