"""Shared types for the credential engine.

Stores return these immutable records rather than ORM instances so that
services behave identically over the database and in-process backends.

The instant a credential reaches its deadline counts as expired: a secret
submitted at exactly ``expires_at`` is rejected, one second earlier it is
accepted.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class CredentialKind(str, Enum):
    """Kinds of single-use secret."""

    MAGIC_LINK = "magic_link"
    OTP = "otp"


@dataclass(frozen=True)
class UserRecord:
    """Snapshot of a users row.

    Attributes:
        id: User UUID.
        identifier: Normalized email or E.164 phone.
        verified_at: When the identifier was first proven, if ever.
        is_new: True until the first successful verification.
        created_at: Creation timestamp.
    """

    id: uuid.UUID
    identifier: str
    verified_at: datetime | None
    is_new: bool
    created_at: datetime


@dataclass(frozen=True)
class CredentialRecord:
    """Snapshot of a credentials row.

    The expiry boundary is shared by every component: a credential is
    expired once ``now >= expires_at`` and active while it is unused and
    ``expires_at > now``.
    """

    id: uuid.UUID
    user_id: uuid.UUID
    kind: CredentialKind
    secret_hash: str
    created_at: datetime
    expires_at: datetime
    used_at: datetime | None = None

    @property
    def is_used(self) -> bool:
        return self.used_at is not None

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def is_active(self, now: datetime) -> bool:
        return not self.is_used and not self.is_expired(now)


@dataclass(frozen=True)
class IssuedCredential:
    """Result of a successful issuance.

    Attributes:
        credential: The persisted (hashed) credential.
        identifier: Where the secret is delivered.
        secret: Plaintext secret. Excluded from repr so it never reaches logs.
    """

    credential: CredentialRecord
    identifier: str
    secret: str = field(repr=False)

    @property
    def expires_at(self) -> datetime:
        return self.credential.expires_at


@dataclass(frozen=True)
class VerifiedUser:
    """Result of a successful verification, handed to session issuance.

    Attributes:
        user: The user after verification (verified_at set).
        is_new_user: True only for the user's first successful verification.
    """

    user: UserRecord
    is_new_user: bool
