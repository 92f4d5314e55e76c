"""Session endpoints.

Endpoints:
- POST /auth/logout: clear auth cookie
- GET /auth/me: return current user info

Also holds the session hand-off shared by both verification flows.
"""

from fastapi import APIRouter, HTTPException, Response, status

from passwordless.api.deps import AuthService, CurrentUserId
from passwordless.core.auth import clear_auth_cookie, create_jwt, set_auth_cookie
from passwordless.core.config import settings
from passwordless.core.responses import DataResponse
from passwordless.schemas.auth import CurrentUserResponse, MessageResponse
from passwordless.services.credential_types import VerifiedUser

router = APIRouter()


def start_session(response: Response, verified: VerifiedUser) -> None:
    """Issue the session JWT for a verified user and set it as a cookie."""
    token = create_jwt(
        user_id=str(verified.user.id),
        secret=settings.auth_secret.get_secret_value(),
    )
    set_auth_cookie(response, token)


@router.post("/logout")
async def logout(response: Response) -> DataResponse[MessageResponse]:
    """Clear auth cookie.

    No auth required: clears cookie regardless.
    """
    clear_auth_cookie(response)
    return DataResponse(data=MessageResponse(message="Signed out"))


@router.get("/me")
async def get_me(
    user_id: CurrentUserId,
    service: AuthService,
) -> DataResponse[CurrentUserResponse]:
    """Return the user behind the session cookie.

    Returns 401 if no valid JWT, or if the user no longer exists.
    """
    user = await service.get_user(user_id)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"code": "UNAUTHORIZED", "message": "Authentication required"},
        )
    return DataResponse(data=CurrentUserResponse.from_user(user))
