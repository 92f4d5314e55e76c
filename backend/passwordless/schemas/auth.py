"""Auth endpoint response schemas.

Issuance responses are identical for known and unknown identifiers.
Verification responses carry what the client needs to route a first-time
user (is_new_user) and the identifier the session now belongs to.
"""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict

from passwordless.services.auth_service import IssuanceReceipt
from passwordless.services.credential_types import UserRecord, VerifiedUser


class IssuanceAccepted(BaseModel):
    """Response for POST /magic-link, /otp and /otp/register.

    Attributes:
        status: Always "accepted".
        expires_in_seconds: Lifetime of the secret, if one was sent.
        resend_after_seconds: Suggested wait before requesting another.
    """

    model_config = ConfigDict(extra="forbid")

    status: Literal["accepted"] = "accepted"
    expires_in_seconds: int
    resend_after_seconds: int

    @classmethod
    def from_receipt(cls, receipt: IssuanceReceipt) -> "IssuanceAccepted":
        return cls(
            expires_in_seconds=receipt.expires_in_seconds,
            resend_after_seconds=receipt.resend_after_seconds,
        )


class VerificationSucceeded(BaseModel):
    """Response for POST /magic-link/verify and /otp/verify."""

    model_config = ConfigDict(extra="forbid")

    status: Literal["success"] = "success"
    is_new_user: bool
    verified_identifier: str

    @classmethod
    def from_verified(cls, verified: VerifiedUser) -> "VerificationSucceeded":
        return cls(
            is_new_user=verified.is_new_user,
            verified_identifier=verified.user.identifier,
        )


class CurrentUserResponse(BaseModel):
    """Response for GET /me."""

    model_config = ConfigDict(extra="forbid")

    id: str
    identifier: str
    verified: bool
    verified_at: datetime | None
    created_at: datetime

    @classmethod
    def from_user(cls, user: UserRecord) -> "CurrentUserResponse":
        return cls(
            id=str(user.id),
            identifier=user.identifier,
            verified=user.verified_at is not None,
            verified_at=user.verified_at,
            created_at=user.created_at,
        )


class MessageResponse(BaseModel):
    """Plain acknowledgement."""

    message: str
