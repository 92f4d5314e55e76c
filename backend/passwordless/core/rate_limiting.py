"""Per-IP request limiting with slowapi.

A coarse guard keyed on client address sits in front of the auth
endpoints. Send and verify budgets per identifier are enforced separately
by passwordless.services.rate_limiter inside the auth service.

Routers decorate endpoints directly:

    @router.post("/otp")
    @limiter.limit(settings.rate_limit_issue)
    async def request_otp(request: Request, ...):
        ...
"""

from fastapi import Request, Response
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.responses import JSONResponse

from passwordless.core.config import settings

# In-process storage; counts are not shared between replicas.
limiter = Limiter(
    key_func=get_remote_address,
    enabled=settings.rate_limit_enabled,
)


def _retry_after_from(detail: object) -> str:
    """Pull the trailing number out of a detail like "10 per 1 minute"."""
    try:
        value = str(detail.split()[-1])  # type: ignore[attr-defined]
        int(value.rstrip("s"))
    except (ValueError, AttributeError, IndexError):
        return "60"
    return value


def rate_limit_exceeded_handler(
    _request: Request,
    exc: RateLimitExceeded,
) -> Response:
    """Answer an exhausted per-IP limit with 429 and the error envelope."""
    return JSONResponse(
        status_code=429,
        content={
            "error": {
                "code": "RATE_LIMITED",
                "message": f"Too many requests from this address ({exc.detail})",
            }
        },
        headers={"Retry-After": _retry_after_from(exc.detail)},
    )
