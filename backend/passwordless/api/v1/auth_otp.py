"""SMS one-time code endpoints.

Endpoints:
- POST /auth/otp/register: register a phone number, send first code
- POST /auth/otp: send a sign-in code to a registered phone
- POST /auth/otp/verify: verify a code and start a session

Phone numbers are normalized to E.164 before they reach the auth service.
"""

from fastapi import APIRouter, Request, Response, status
from pydantic import BaseModel, ConfigDict, Field

from passwordless.api.deps import AuthService
from passwordless.api.v1.auth import start_session
from passwordless.core.config import settings
from passwordless.core.identifiers import normalize_phone
from passwordless.core.rate_limiting import limiter
from passwordless.core.responses import DataResponse
from passwordless.schemas.auth import IssuanceAccepted, VerificationSucceeded
from passwordless.services.credential_types import CredentialKind
from passwordless.services.secret_codec import OTP_REGEX

router = APIRouter()


# ===================================================================
# Request models
# ===================================================================


class OtpRequest(BaseModel):
    """Request body for POST /auth/otp and /auth/otp/register."""

    model_config = ConfigDict(extra="forbid")

    identifier: str = Field(min_length=1, max_length=32)


class OtpVerifyRequest(BaseModel):
    """Request body for POST /auth/otp/verify."""

    model_config = ConfigDict(extra="forbid")

    identifier: str = Field(min_length=1, max_length=32)
    secret: str = Field(pattern=OTP_REGEX)


# ===================================================================
# Endpoints
# ===================================================================


@router.post("/otp/register", status_code=status.HTTP_201_CREATED)
@limiter.limit(settings.rate_limit_issue)
async def register_phone(
    request: Request,  # noqa: ARG001
    body: OtpRequest,
    service: AuthService,
) -> DataResponse[IssuanceAccepted]:
    """Register a phone number and send its first code.

    Returns 409 ALREADY_REGISTERED if the number is taken.
    """
    receipt = await service.register(normalize_phone(body.identifier))
    return DataResponse(data=IssuanceAccepted.from_receipt(receipt))


@router.post("/otp")
@limiter.limit(settings.rate_limit_issue)
async def request_otp(
    request: Request,  # noqa: ARG001
    body: OtpRequest,
    service: AuthService,
) -> DataResponse[IssuanceAccepted]:
    """Send a sign-in code.

    Always returns accepted (enumeration defense): unregistered numbers
    get no SMS but the same response.
    """
    receipt = await service.request_credential(
        normalize_phone(body.identifier), CredentialKind.OTP
    )
    return DataResponse(data=IssuanceAccepted.from_receipt(receipt))


@router.post("/otp/verify")
@limiter.limit(settings.rate_limit_verify)
async def verify_otp(
    request: Request,  # noqa: ARG001
    body: OtpVerifyRequest,
    response: Response,
    service: AuthService,
) -> DataResponse[VerificationSucceeded]:
    """Verify a code and start a session."""
    verified = await service.verify_credential(
        normalize_phone(body.identifier), CredentialKind.OTP, body.secret
    )
    start_session(response, verified)
    return DataResponse(data=VerificationSucceeded.from_verified(verified))
