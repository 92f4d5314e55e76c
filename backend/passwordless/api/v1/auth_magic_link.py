"""Magic link endpoints.

Endpoints:
- POST /auth/magic-link: request a sign-in link by email
- POST /auth/magic-link/verify: verify token (JSON clients)
- GET /auth/magic-link/verify: verify token from the emailed link, set
  cookie, redirect to the frontend

Rate limits: per identifier in the auth service (send and verify budgets),
plus a coarse per-IP limit via slowapi.
"""

import logging
from typing import Annotated
from urllib.parse import urlencode

from fastapi import APIRouter, Query, Request, Response
from fastapi.responses import RedirectResponse
from pydantic import BaseModel, ConfigDict, EmailStr, Field

from passwordless.api.deps import AuthService
from passwordless.api.v1.auth import start_session
from passwordless.core.config import settings
from passwordless.core.errors import CredentialError, RateLimitedError
from passwordless.core.identifiers import normalize_email
from passwordless.core.rate_limiting import limiter
from passwordless.core.responses import DataResponse
from passwordless.schemas.auth import IssuanceAccepted, VerificationSucceeded
from passwordless.services.credential_types import CredentialKind
from passwordless.services.secret_codec import MAGIC_LINK_TOKEN_REGEX

logger = logging.getLogger(__name__)

router = APIRouter()


# ===================================================================
# Request models
# ===================================================================


class MagicLinkRequest(BaseModel):
    """Request body for POST /auth/magic-link."""

    model_config = ConfigDict(extra="forbid")

    identifier: EmailStr


class MagicLinkVerifyRequest(BaseModel):
    """Request body for POST /auth/magic-link/verify."""

    model_config = ConfigDict(extra="forbid")

    identifier: EmailStr
    secret: str = Field(pattern=MAGIC_LINK_TOKEN_REGEX)


# ===================================================================
# POST /auth/magic-link
# ===================================================================


@router.post("/magic-link")
@limiter.limit(settings.rate_limit_issue)
async def request_magic_link(
    request: Request,  # noqa: ARG001
    body: MagicLinkRequest,
    service: AuthService,
) -> DataResponse[IssuanceAccepted]:
    """Request a magic link sign-in email.

    Creates the user on first contact. Delivery happens in the background
    unless DISPATCH_MODE=inline.
    """
    receipt = await service.request_credential(
        normalize_email(body.identifier), CredentialKind.MAGIC_LINK
    )
    return DataResponse(data=IssuanceAccepted.from_receipt(receipt))


# ===================================================================
# POST /auth/magic-link/verify
# ===================================================================


@router.post("/magic-link/verify")
@limiter.limit(settings.rate_limit_verify)
async def verify_magic_link(
    request: Request,  # noqa: ARG001
    body: MagicLinkVerifyRequest,
    response: Response,
    service: AuthService,
) -> DataResponse[VerificationSucceeded]:
    """Verify a magic link token and start a session."""
    verified = await service.verify_credential(
        normalize_email(body.identifier), CredentialKind.MAGIC_LINK, body.secret
    )
    start_session(response, verified)
    return DataResponse(data=VerificationSucceeded.from_verified(verified))


# ===================================================================
# GET /auth/magic-link/verify
# ===================================================================


def _sign_in_error_url(code: str) -> str:
    return f"{settings.frontend_url}/sign-in?{urlencode({'error': code})}"


@router.get("/magic-link/verify")
@limiter.limit(settings.rate_limit_verify)
async def verify_magic_link_redirect(
    request: Request,  # noqa: ARG001
    token: Annotated[str, Query(pattern=MAGIC_LINK_TOKEN_REGEX)],
    identifier: Annotated[str, Query(min_length=3, max_length=255)],
    *,
    service: AuthService,
) -> RedirectResponse:
    """Verify the emailed link, set the session cookie, redirect.

    Credential and rate-limit failures redirect to the frontend sign-in
    page with an ``error`` code instead of rendering JSON in the browser.
    """
    try:
        verified = await service.verify_credential(
            normalize_email(identifier), CredentialKind.MAGIC_LINK, token
        )
    except (CredentialError, RateLimitedError) as exc:
        logger.info("Magic link verification failed: %s", exc.code)
        response = RedirectResponse(url=_sign_in_error_url(exc.code), status_code=307)
        response.headers["Referrer-Policy"] = "no-referrer"
        return response

    params = {"new_user": "1"} if verified.is_new_user else {}
    redirect_url = settings.frontend_url
    if params:
        redirect_url = f"{redirect_url}?{urlencode(params)}"

    response = RedirectResponse(url=redirect_url, status_code=307)
    start_session(response, verified)
    # Prevent token leakage via Referer header
    response.headers["Referrer-Policy"] = "no-referrer"
    return response
