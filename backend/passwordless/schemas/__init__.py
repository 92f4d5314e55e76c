"""Pydantic response schemas for API endpoints."""

from passwordless.schemas.auth import (
    CurrentUserResponse,
    IssuanceAccepted,
    MessageResponse,
    VerificationSucceeded,
)

__all__ = [
    "CurrentUserResponse",
    "IssuanceAccepted",
    "MessageResponse",
    "VerificationSucceeded",
]
