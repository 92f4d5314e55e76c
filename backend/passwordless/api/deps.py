"""FastAPI dependencies shared by the v1 routers.

Routers take the auth service as a dependency so tests can swap in an
engine backed by the in-memory store; session cookie checks happen here
and nowhere else.
"""

import uuid
from typing import Annotated

import jwt
from fastapi import Depends, HTTPException, Request, status

from passwordless.core.config import settings
from passwordless.services.auth_service import PasswordlessAuthService
from passwordless.services.factory import get_auth_runtime

# Same body for a missing, expired, forged or malformed session.
_SESSION_REJECTED = {
    "code": "UNAUTHORIZED",
    "message": "Authentication required",
}


def get_auth_service() -> PasswordlessAuthService:
    """Return the process-wide auth service."""
    return get_auth_runtime().service


def _reject_session() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=_SESSION_REJECTED,
    )


def get_current_user_id(request: Request) -> uuid.UUID:
    """Resolve the signed-in user from the session cookie.

    The cookie must hold an HS256 token signed with AUTH_SECRET whose
    audience and issuer match ours and whose ``sub`` is a UUID. Anything
    else is a 401.
    """
    session_token = request.cookies.get(settings.auth_cookie_name)
    if not session_token:
        raise _reject_session()

    try:
        claims = jwt.decode(
            session_token,
            settings.auth_secret.get_secret_value(),
            algorithms=["HS256"],
            audience=settings.auth_audience,
            issuer=settings.auth_issuer,
        )
        return uuid.UUID(claims["sub"])
    except (jwt.InvalidTokenError, KeyError, ValueError) as exc:
        raise _reject_session() from exc


AuthService = Annotated[PasswordlessAuthService, Depends(get_auth_service)]
CurrentUserId = Annotated[uuid.UUID, Depends(get_current_user_id)]
