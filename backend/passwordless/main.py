"""ASGI application for the passwordless auth API.

create_app() assembles middleware, exception handlers, the v1 routers and
the lifespan that owns the delivery worker and the credential sweeper.
Run with ``uvicorn passwordless.main:app``.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from passwordless.api.v1.router import router as v1_router
from passwordless.core.config import settings
from passwordless.core.errors import (
    APIError,
    DeliveryError,
    InternalError,
    RateLimitedError,
    StorageError,
)
from passwordless.core.rate_limiting import limiter, rate_limit_exceeded_handler
from passwordless.core.responses import ErrorDetail, ErrorResponse
from passwordless.services.factory import get_auth_runtime

logger = structlog.get_logger()


def configure_logging(level: str) -> None:
    """Apply LOG_LEVEL to stdlib loggers and structlog events alike."""
    numeric_level = logging.getLevelName(level)
    logging.basicConfig(
        level=numeric_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    # basicConfig is a no-op once handlers exist
    logging.getLogger().setLevel(numeric_level)
    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level)
    )


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to every response.

    The API serves JSON and redirects only, so the content policy allows
    nothing to load and nothing to frame it. Auth responses carry session
    cookies and must never be cached. HSTS is production-only (HTTPS is
    terminated by the reverse proxy).
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        response = await call_next(request)

        response.headers["X-Frame-Options"] = "DENY"
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers.setdefault(
            "Referrer-Policy", "strict-origin-when-cross-origin"
        )

        if request.url.path.startswith("/api/"):
            response.headers["Cache-Control"] = "no-store, max-age=0"

        response.headers["Content-Security-Policy"] = (
            "default-src 'none'; frame-ancestors 'none'"
        )
        response.headers["Cross-Origin-Opener-Policy"] = "same-origin"
        response.headers["Cross-Origin-Resource-Policy"] = "same-origin"

        if settings.environment == "production":
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains"
            )

        return response


def _error_response(
    status_code: int,
    code: str,
    message: str,
    details: list[dict] | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(
            error=ErrorDetail(code=code, message=message, details=details)
        ).model_dump(),
        headers=headers,
    )


def api_error_handler(request: Request, exc: APIError) -> JSONResponse:
    """Render APIError subclasses as the error envelope.

    Storage and delivery failures are logged with their internal reason;
    the client only sees the generic message. Rate-limit errors carry a
    Retry-After header.
    """
    if isinstance(exc, (StorageError, DeliveryError)):
        logger.error(
            "request_failed",
            error_type=type(exc).__name__,
            reason=exc.reason,
            path=str(request.url.path),
        )

    headers = None
    if isinstance(exc, RateLimitedError):
        headers = {"Retry-After": str(exc.retry_after_seconds)}

    return _error_response(
        exc.status_code, exc.code, exc.message, exc.details, headers=headers
    )


def validation_error_handler(
    _request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Convert request-shape errors to VALIDATION_ERROR (400).

    Input values are left out of the details so submitted secrets are
    never echoed back.
    """
    return _error_response(
        400,
        "VALIDATION_ERROR",
        "Request validation failed",
        [
            {"loc": list(e["loc"]), "msg": e["msg"], "type": e["type"]}
            for e in exc.errors()
        ],
    )


def internal_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Last-resort handler: log the exception, answer 500 INTERNAL_ERROR."""
    logger.exception("unhandled_exception", exc_info=exc, path=str(request.url.path))
    error = InternalError()
    return _error_response(error.status_code, error.code, error.message)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    """Run the delivery worker and the sweeper for the app's lifetime."""
    runtime = get_auth_runtime()
    runtime.delivery_worker.start()
    runtime.sweeper.start()
    logger.info(
        "auth_runtime_started",
        store=settings.credential_store_backend,
        rate_limit_store=settings.rate_limit_backend,
        dispatch_mode=settings.dispatch_mode,
    )
    try:
        yield
    finally:
        await runtime.sweeper.stop()
        await runtime.delivery_worker.stop()
        logger.info("auth_runtime_stopped")


def create_app() -> FastAPI:
    """Build the application. Tests call this for an isolated instance."""
    configure_logging(settings.log_level)
    app = FastAPI(
        title="Passwordless Auth API",
        version="1.0.0",
        description="Magic link and SMS one-time code authentication",
        lifespan=lifespan,
    )

    app.add_middleware(SecurityHeadersMiddleware)
    # Added last so it wraps everything and answers preflights first
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Accept", "X-Request-ID"],
    )

    app.add_exception_handler(APIError, api_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
    app.add_exception_handler(Exception, internal_error_handler)

    # Per-IP guard in front of the per-identifier limits
    app.state.limiter = limiter

    app.include_router(v1_router, prefix="/api/v1")

    @app.get("/health")
    def health_check() -> dict:
        """Liveness probe."""
        return {"status": "healthy"}

    return app


app = create_app()
