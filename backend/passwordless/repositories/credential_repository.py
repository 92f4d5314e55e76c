"""Repository for Credential operations.

Single-use secrets stored as SHA-256 hashes with a fixed expiry. The
"active" predicate (unused and ``expires_at > now``) is spelled out in the
queries, and consumption is a conditional UPDATE whose affected-row count
decides the winner of concurrent verifications.
"""

import uuid
from datetime import datetime
from typing import Any, cast

from sqlalchemy import delete, select, update
from sqlalchemy.engine import CursorResult
from sqlalchemy.ext.asyncio import AsyncSession

from passwordless.models.credential import Credential


class CredentialRepository:
    """Stateless repository for Credential table operations.

    All methods are static: no instance state.
    """

    @staticmethod
    async def create(
        db: AsyncSession,
        *,
        user_id: uuid.UUID,
        kind: str,
        secret_hash: str,
        created_at: datetime,
        expires_at: datetime,
    ) -> Credential:
        """Store a new credential.

        Args:
            db: Async database session.
            user_id: Owner of the credential.
            kind: ``"magic_link"`` or ``"otp"``.
            secret_hash: SHA-256 hash of the plain secret.
            created_at: Issuance timestamp.
            expires_at: Expiry timestamp (must be after created_at).

        Returns:
            Created Credential.
        """
        credential = Credential(
            id=uuid.uuid4(),
            user_id=user_id,
            kind=kind,
            secret_hash=secret_hash,
            created_at=created_at,
            expires_at=expires_at,
        )
        db.add(credential)
        await db.flush()
        return credential

    @staticmethod
    async def get_by_id(
        db: AsyncSession, credential_id: uuid.UUID
    ) -> Credential | None:
        """Fetch a credential by primary key, bypassing the identity map."""
        stmt = (
            select(Credential)
            .where(Credential.id == credential_id)
            .execution_options(populate_existing=True)
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def get_by_hash(
        db: AsyncSession,
        *,
        user_id: uuid.UUID,
        kind: str,
        secret_hash: str,
    ) -> Credential | None:
        """Look up a credential by hash regardless of state.

        Used to classify a verification as invalid, expired, or used.

        Args:
            db: Async database session.
            user_id: Owner of the credential.
            kind: Credential kind.
            secret_hash: SHA-256 hash of the submitted secret.

        Returns:
            Credential if found, None otherwise.
        """
        stmt = select(Credential).where(
            Credential.user_id == user_id,
            Credential.kind == kind,
            Credential.secret_hash == secret_hash,
        )
        result = await db.execute(stmt)
        return result.scalars().first()

    @staticmethod
    async def get_active_by_hash(
        db: AsyncSession,
        *,
        user_id: uuid.UUID,
        kind: str,
        secret_hash: str,
        now: datetime,
    ) -> Credential | None:
        """Look up an active credential by hash.

        Active means ``used_at IS NULL AND expires_at > now``.

        Returns:
            Credential if an active one matches, None otherwise.
        """
        stmt = select(Credential).where(
            Credential.user_id == user_id,
            Credential.kind == kind,
            Credential.secret_hash == secret_hash,
            Credential.used_at.is_(None),
            Credential.expires_at > now,
        )
        result = await db.execute(stmt)
        return result.scalars().first()

    @staticmethod
    async def delete_all_for_user(
        db: AsyncSession,
        *,
        user_id: uuid.UUID,
        kind: str,
    ) -> int:
        """Delete every credential of one kind for a user.

        Issuance calls this before creating a replacement so only the
        newest secret can ever be active.

        Returns:
            Number of deleted rows.
        """
        stmt = delete(Credential).where(
            Credential.user_id == user_id,
            Credential.kind == kind,
        )
        result = cast(CursorResult[Any], await db.execute(stmt))
        row_count: int = result.rowcount
        return row_count

    @staticmethod
    async def delete(db: AsyncSession, credential_id: uuid.UUID) -> bool:
        """Delete one credential (undeliverable secret cleanup).

        Returns:
            True if a row was deleted.
        """
        stmt = delete(Credential).where(Credential.id == credential_id)
        result = cast(CursorResult[Any], await db.execute(stmt))
        row_count: int = result.rowcount
        return row_count > 0

    @staticmethod
    async def mark_used(
        db: AsyncSession,
        credential_id: uuid.UUID,
        *,
        now: datetime,
    ) -> bool:
        """Atomically consume a credential.

        Single conditional UPDATE: only an unused, unexpired row is touched,
        so among concurrent callers exactly one sees an affected row.

        Args:
            db: Async database session.
            credential_id: Credential to consume.
            now: Consumption timestamp.

        Returns:
            True if this call consumed the credential.
        """
        stmt = (
            update(Credential)
            .where(
                Credential.id == credential_id,
                Credential.used_at.is_(None),
                Credential.expires_at > now,
            )
            .values(used_at=now)
        )
        result = cast(CursorResult[Any], await db.execute(stmt))
        rows_updated: int = result.rowcount
        return rows_updated > 0

    @staticmethod
    async def delete_expired(db: AsyncSession, *, now: datetime) -> int:
        """Delete all expired credentials (periodic cleanup).

        Args:
            db: Async database session.
            now: Sweep timestamp; rows with expires_at <= now are removed.

        Returns:
            Number of deleted rows.
        """
        stmt = delete(Credential).where(Credential.expires_at <= now)
        result = cast(CursorResult[Any], await db.execute(stmt))
        row_count: int = result.rowcount
        return row_count
