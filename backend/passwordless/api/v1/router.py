"""API v1 router aggregator.

All v1 endpoint routers are included here.
"""

from fastapi import APIRouter

from passwordless.api.v1 import auth, auth_magic_link, auth_otp

router = APIRouter()

# =============================================================================
# Authentication
# =============================================================================

_AUTH_PREFIX = "/auth"

router.include_router(auth.router, prefix=_AUTH_PREFIX, tags=["auth"])
router.include_router(auth_magic_link.router, prefix=_AUTH_PREFIX, tags=["auth"])
router.include_router(auth_otp.router, prefix=_AUTH_PREFIX, tags=["auth"])
