"""Tests for the FastAPI application, middleware and exception handlers."""

import logging
from unittest.mock import MagicMock, patch

import pytest
import structlog
from httpx import ASGITransport, AsyncClient

from passwordless.core.config import settings
from passwordless.core.errors import (
    ConflictError,
    DeliveryError,
    RateLimitedError,
    StorageError,
    ValidationError,
)
from passwordless.main import (
    api_error_handler,
    configure_logging,
    create_app,
    internal_error_handler,
)


@pytest.fixture
def app():
    """Create test application instance."""
    return create_app()


@pytest.fixture
async def client(app):
    """Create async HTTP client for testing."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


def _request(path: str = "/api/v1/auth/otp") -> MagicMock:
    request = MagicMock()
    request.url.path = path
    return request


class TestHealthEndpoint:
    async def test_health_returns_healthy_status(self, client):
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}


class TestSecurityHeaders:
    async def test_headers_on_every_response(self, client):
        response = await client.get("/health")

        assert response.headers["X-Frame-Options"] == "DENY"
        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["Referrer-Policy"] == "strict-origin-when-cross-origin"
        assert "default-src 'none'" in response.headers["Content-Security-Policy"]
        assert "Strict-Transport-Security" not in response.headers

    async def test_api_responses_are_not_cached(self, client):
        response = await client.get("/api/v1/nonexistent")
        assert response.status_code == 404
        assert response.headers["Cache-Control"] == "no-store, max-age=0"

    async def test_hsts_in_production(self, client):
        with patch("passwordless.main.settings.environment", "production"):
            response = await client.get("/health")
        assert "max-age=31536000" in response.headers["Strict-Transport-Security"]


class TestExceptionHandlers:
    async def test_api_error_renders_envelope(self, app, client):
        @app.get("/test/conflict")
        async def raise_conflict():
            raise ConflictError("ALREADY_REGISTERED", "taken")

        response = await client.get("/test/conflict")

        assert response.status_code == 409
        assert response.json() == {
            "error": {"code": "ALREADY_REGISTERED", "message": "taken", "details": None}
        }

    async def test_validation_error_returns_400(self, app, client):
        @app.get("/test/validation-error")
        async def raise_validation_error():
            raise ValidationError("Invalid phone number", details=[{"field": "identifier"}])

        response = await client.get("/test/validation-error")

        assert response.status_code == 400
        assert response.json()["error"]["details"] == [{"field": "identifier"}]

    async def test_request_validation_error_returns_400(self, app, client):
        @app.get("/test/needs-param")
        async def needs_param(count: int):
            return {"count": count}

        response = await client.get("/test/needs-param", params={"count": "abc"})

        assert response.status_code == 400
        body = response.json()["error"]
        assert body["code"] == "VALIDATION_ERROR"
        assert body["details"][0]["loc"] == ["query", "count"]
        assert "abc" not in response.text

    def test_rate_limited_sets_retry_after(self):
        response = api_error_handler(_request(), RateLimitedError(42))

        assert response.status_code == 429
        assert response.headers["Retry-After"] == "42"

    @pytest.mark.parametrize(
        "error", [StorageError("pool exhausted"), DeliveryError("gateway 502")]
    )
    def test_transient_failures_hide_reason(self, error):
        response = api_error_handler(_request(), error)

        assert response.status_code == 503
        assert b"REQUEST_FAILED" in response.body
        assert error.reason.encode() not in response.body

    def test_unhandled_exception_returns_500(self):
        response = internal_error_handler(_request(), RuntimeError("secret detail"))

        assert response.status_code == 500
        assert b"INTERNAL_ERROR" in response.body
        assert b"secret detail" not in response.body


class TestCors:
    async def test_preflight_allows_configured_origin(self, client):
        origin = settings.allowed_origins[0]
        response = await client.options(
            "/api/v1/auth/otp",
            headers={
                "Origin": origin,
                "Access-Control-Request-Method": "POST",
                "Access-Control-Request-Headers": "Content-Type",
            },
        )

        assert response.status_code == 200
        assert response.headers["access-control-allow-origin"] == origin
        assert response.headers["access-control-allow-credentials"] == "true"


class TestConfigureLogging:
    @pytest.fixture(autouse=True)
    def restore_logging(self):
        root = logging.getLogger()
        original_level = root.level
        yield
        root.setLevel(original_level)
        structlog.reset_defaults()

    def test_sets_stdlib_root_level(self):
        configure_logging("WARNING")
        assert logging.getLogger().level == logging.WARNING

    def test_filters_structlog_below_level(self):
        configure_logging("ERROR")
        bound = structlog.get_logger().bind()

        assert bound.is_enabled_for(logging.ERROR)
        assert not bound.is_enabled_for(logging.INFO)

    def test_create_app_applies_configured_level(self):
        with patch.object(settings, "log_level", "DEBUG"):
            create_app()
        assert logging.getLogger().level == logging.DEBUG
