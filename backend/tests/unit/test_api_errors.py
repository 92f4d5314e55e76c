"""Tests for the API error hierarchy."""

import pytest

from passwordless.core.errors import (
    GENERIC_FAILURE_MESSAGE,
    AlreadyUsedError,
    APIError,
    ConflictError,
    CredentialError,
    DeliveryError,
    ExpiredCredentialError,
    InternalError,
    InvalidCredentialError,
    RateLimitedError,
    StorageError,
    ValidationError,
)


class TestAPIError:
    def test_api_error_has_required_attributes(self):
        error = APIError(code="TEST", message="Test message", status_code=418)

        assert error.code == "TEST"
        assert error.message == "Test message"
        assert error.status_code == 418
        assert error.details is None
        assert str(error) == "Test message"

    def test_api_error_defaults_to_500(self):
        assert APIError(code="X", message="x").status_code == 500


class TestValidationError:
    def test_validation_error_with_details(self):
        error = ValidationError("Invalid phone", details=[{"field": "identifier"}])

        assert error.code == "VALIDATION_ERROR"
        assert error.status_code == 400
        assert error.details == [{"field": "identifier"}]


class TestRateLimitedError:
    def test_carries_retry_after(self):
        error = RateLimitedError(17)

        assert error.code == "RATE_LIMITED"
        assert error.status_code == 429
        assert error.retry_after_seconds == 17
        assert error.details == [{"retry_after_seconds": 17}]
        assert "17 seconds" in error.message


class TestCredentialErrors:
    @pytest.mark.parametrize(
        ("error_cls", "code"),
        [
            (InvalidCredentialError, "INVALID_CREDENTIAL"),
            (ExpiredCredentialError, "EXPIRED_CREDENTIAL"),
            (AlreadyUsedError, "CREDENTIAL_ALREADY_USED"),
        ],
    )
    def test_codes_and_status(self, error_cls, code):
        error = error_cls()

        assert isinstance(error, CredentialError)
        assert error.code == code
        assert error.status_code == 400


class TestConflictError:
    def test_conflict_error_accepts_custom_code(self):
        error = ConflictError(code="ALREADY_REGISTERED", message="taken")

        assert error.code == "ALREADY_REGISTERED"
        assert error.status_code == 409


class TestTransientErrors:
    @pytest.mark.parametrize("error_cls", [StorageError, DeliveryError])
    def test_reason_kept_out_of_message(self, error_cls):
        error = error_cls("connection refused to 10.0.0.5")

        assert error.status_code == 503
        assert error.code == "REQUEST_FAILED"
        assert error.message == GENERIC_FAILURE_MESSAGE
        assert error.reason == "connection refused to 10.0.0.5"


class TestInternalError:
    def test_internal_error_default_message(self):
        error = InternalError()

        assert error.code == "INTERNAL_ERROR"
        assert error.status_code == 500
        assert error.message == "An unexpected error occurred"
