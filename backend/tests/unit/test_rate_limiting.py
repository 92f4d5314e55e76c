"""Tests for the per-IP slowapi guard in front of the auth endpoints."""

import json
from unittest.mock import MagicMock

import pytest
from starlette.requests import Request as StarletteRequest

from passwordless.core.rate_limiting import limiter, rate_limit_exceeded_handler


def _request(path: str = "/api/v1/auth/otp") -> StarletteRequest:
    return StarletteRequest({"type": "http", "method": "POST", "path": path})


def _exceeded(detail) -> MagicMock:
    exc = MagicMock()
    exc.detail = detail
    return exc


class TestRateLimitExceededHandler:
    def test_returns_429_with_envelope(self):
        response = rate_limit_exceeded_handler(_request(), _exceeded("20 per 1 hour"))

        assert response.status_code == 429
        body = json.loads(response.body)
        assert body["error"]["code"] == "RATE_LIMITED"
        assert "20 per 1 hour" in body["error"]["message"]

    @pytest.mark.parametrize("detail", ["no numbers here", None, ""])
    def test_retry_after_falls_back_to_60(self, detail):
        response = rate_limit_exceeded_handler(_request(), _exceeded(detail))
        assert response.headers["Retry-After"] == "60"


class TestLimiter:
    def test_keys_by_remote_address(self):
        request = MagicMock()
        request.client.host = "203.0.113.7"
        request.headers = {}
        assert limiter._key_func(request) == "203.0.113.7"
