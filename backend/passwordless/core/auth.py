"""Session hand-off helpers: JWT creation and cookie management.

Once a credential has been consumed, the verified user is handed to these
helpers, which issue the session token the rest of the platform trusts.
"""

from datetime import UTC, datetime, timedelta

import jwt
from fastapi import Response

from passwordless.core.config import settings


def create_jwt(
    *,
    user_id: str,
    secret: str,
    expires_delta: timedelta | None = None,
) -> str:
    """Sign a session token for a verified user.

    Args:
        user_id: Verified user id, stored as sub.
        secret: HS256 key (AUTH_SECRET).
        expires_delta: Time until expiration. Defaults to the configured
            session TTL.

    Returns:
        Encoded JWT string.
    """
    now = datetime.now(UTC)
    ttl = expires_delta or timedelta(seconds=settings.auth_session_ttl_seconds)
    payload = {
        "sub": user_id,
        "aud": settings.auth_audience,
        "iss": settings.auth_issuer,
        "exp": now + ttl,
        "iat": now,
    }
    return jwt.encode(payload, secret, algorithm="HS256")


def set_auth_cookie(response: Response, token: str) -> None:
    """Attach the session token as an httpOnly cookie.

    Scripts cannot read the cookie; Secure, SameSite and Domain come from
    settings so local development can run over plain HTTP.

    Args:
        response: Response the cookie is added to.
        token: JWT token string.
    """
    response.set_cookie(
        key=settings.auth_cookie_name,
        value=token,
        httponly=True,
        secure=settings.auth_cookie_secure,
        samesite=settings.auth_cookie_samesite,
        path="/",
        max_age=settings.auth_session_ttl_seconds,
        domain=settings.auth_cookie_domain or None,
    )


def clear_auth_cookie(response: Response) -> None:
    """Delete the session cookie.

    Path, domain and flags mirror set_auth_cookie(); browsers only drop a
    cookie whose attributes match.
    """
    response.delete_cookie(
        key=settings.auth_cookie_name,
        path="/",
        httponly=True,
        secure=settings.auth_cookie_secure,
        samesite=settings.auth_cookie_samesite,
        domain=settings.auth_cookie_domain or None,
    )
