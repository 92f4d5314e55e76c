"""Repository for User operations.

Provides database access for the users table. Creation is race-safe
(INSERT ... ON CONFLICT DO NOTHING) and the verification-state updates are
conditional single statements so concurrent sign-ins cannot both observe
"first login".
"""

import uuid
from datetime import datetime
from typing import Any, cast

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.engine import CursorResult
from sqlalchemy.ext.asyncio import AsyncSession

from passwordless.models.user import User


class UserRepository:
    """Stateless repository for User table operations.

    All methods are static: no instance state. Pass an AsyncSession
    for every call so the caller controls transaction boundaries.
    """

    @staticmethod
    async def get_by_id(db: AsyncSession, user_id: uuid.UUID) -> User | None:
        """Fetch a user by primary key.

        Args:
            db: Async database session.
            user_id: UUID primary key.

        Returns:
            User if found, None otherwise.
        """
        return await db.get(User, user_id)

    @staticmethod
    async def get_by_identifier(
        db: AsyncSession,
        identifier: str,
        *,
        for_update: bool = False,
    ) -> User | None:
        """Fetch a user by normalized identifier.

        Args:
            db: Async database session.
            identifier: Normalized email or E.164 phone.
            for_update: Lock the row until the transaction ends. Issuance
                uses this so concurrent issuances for one user serialize.

        Returns:
            User if found, None otherwise.
        """
        stmt = select(User).where(User.identifier == identifier)
        if for_update:
            stmt = stmt.with_for_update()
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def create_if_absent(
        db: AsyncSession,
        *,
        identifier: str,
        created_at: datetime,
    ) -> bool:
        """Insert a user unless the identifier already exists.

        Args:
            db: Async database session.
            identifier: Normalized email or E.164 phone.
            created_at: Creation timestamp.

        Returns:
            True if this call inserted the row, False if it already existed.
        """
        stmt = (
            pg_insert(User)
            .values(
                id=uuid.uuid4(),
                identifier=identifier,
                is_new=True,
                created_at=created_at,
            )
            .on_conflict_do_nothing(index_elements=[User.identifier])
        )
        result = cast(CursorResult[Any], await db.execute(stmt))
        inserted: int = result.rowcount
        return inserted > 0

    @staticmethod
    async def mark_verified(
        db: AsyncSession,
        user_id: uuid.UUID,
        *,
        verified_at: datetime,
    ) -> bool:
        """Set verified_at if it is not already set.

        Args:
            db: Async database session.
            user_id: User to update.
            verified_at: Verification timestamp.

        Returns:
            True if the user was unverified before this call.
        """
        stmt = (
            update(User)
            .where(User.id == user_id, User.verified_at.is_(None))
            .values(verified_at=verified_at)
        )
        result = cast(CursorResult[Any], await db.execute(stmt))
        rows_updated: int = result.rowcount
        return rows_updated > 0

    @staticmethod
    async def clear_new_flag(db: AsyncSession, user_id: uuid.UUID) -> bool:
        """Atomically flip is_new from true to false.

        Args:
            db: Async database session.
            user_id: User to update.

        Returns:
            True for exactly one caller: the one whose update saw is_new=true.
        """
        stmt = (
            update(User)
            .where(User.id == user_id, User.is_new.is_(True))
            .values(is_new=False)
        )
        result = cast(CursorResult[Any], await db.execute(stmt))
        rows_updated: int = result.rowcount
        return rows_updated > 0
