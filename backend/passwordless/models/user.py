"""User model - the identity a credential authenticates.

One row per identifier (email or E.164 phone).
"""

import uuid
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, String, func, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from passwordless.models.base import Base

if TYPE_CHECKING:
    from passwordless.models.credential import Credential

_DEFAULT_UUID = text("gen_random_uuid()")


class User(Base):
    """User account for passwordless authentication.

    Attributes:
        id: UUID primary key.
        identifier: Unique, normalized email address or E.164 phone number.
        verified_at: When the identifier was first proven. NULL = unverified.
        is_new: True from creation until the first successful verification.
            Decides "registered" vs "authenticated" without a time heuristic.
        created_at: Account creation timestamp.
    """

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=_DEFAULT_UUID,
    )
    identifier: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        nullable=False,
    )
    verified_at: Mapped[datetime | None] = mapped_column(
        nullable=True,
    )
    is_new: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        server_default=text("true"),
    )
    created_at: Mapped[datetime] = mapped_column(
        server_default=func.now(),
        nullable=False,
    )

    credentials: Mapped[list["Credential"]] = relationship(
        "Credential",
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
