"""Credential model - hashed single-use secrets.

Stores magic link tokens and OTP codes as SHA-256 hashes. A row is
created by issuance, consumed once by verification, and deleted when
superseded, undeliverable, or swept after expiry.
"""

import uuid
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import CheckConstraint, ForeignKey, Index, String, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from passwordless.models.base import Base

if TYPE_CHECKING:
    from passwordless.models.user import User

_DEFAULT_UUID = text("gen_random_uuid()")


class Credential(Base):
    """An issued secret for one user and one kind.

    Attributes:
        id: UUID primary key (also the delivery idempotency key).
        user_id: FK to users table.
        kind: ``"magic_link"`` or ``"otp"``.
        secret_hash: SHA-256 hex digest of the plaintext secret.
        created_at: Issuance timestamp.
        expires_at: Deadline; the credential is expired once now >= expires_at.
        used_at: Consumption timestamp. Set exactly once, never changed.
    """

    __tablename__ = "credentials"
    __table_args__ = (
        CheckConstraint("expires_at > created_at", name="ck_credentials_expiry"),
        CheckConstraint(
            "kind IN ('magic_link', 'otp')", name="ck_credentials_kind"
        ),
        Index("ix_credentials_user_kind", "user_id", "kind"),
        Index("ix_credentials_user_kind_hash", "user_id", "kind", "secret_hash"),
        Index("ix_credentials_expires_at", "expires_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=_DEFAULT_UUID,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    kind: Mapped[str] = mapped_column(String(20), nullable=False)
    secret_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(nullable=False)
    expires_at: Mapped[datetime] = mapped_column(nullable=False)
    used_at: Mapped[datetime | None] = mapped_column(nullable=True)

    user: Mapped["User"] = relationship("User", back_populates="credentials")
