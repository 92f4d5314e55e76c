"""API error classes.

Every error raised by the credential engine carries an HTTP status and a
machine-readable code so exception handlers can render it directly.

WHY CUSTOM ERROR CLASSES:
- Consistent error response format across all endpoints
- Easy to map to HTTP status codes in exception handlers
- Type-safe error handling in services and stores

Credential-state and rate-limit errors are precise (safe to show the
client). Storage and delivery errors carry a generic message; the cause is
only logged.
"""

# Shown to clients for any storage or delivery failure
GENERIC_FAILURE_MESSAGE = "Request failed. Please try again."


class APIError(Exception):
    """Base class for API errors.

    All API errors have a code, message, and HTTP status.
    Subclasses set default status_code.

    Attributes:
        code: Machine-readable error code (e.g., "INVALID_CREDENTIAL").
        message: Human-readable error message.
        status_code: HTTP status code to return.
        details: Optional list of additional error details.
    """

    def __init__(
        self,
        code: str,
        message: str,
        status_code: int = 500,
        details: list[dict] | None = None,
    ) -> None:
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details
        super().__init__(message)


class ValidationError(APIError):
    """Malformed identifier or secret (400).

    Raised before a request reaches the credential engine.
    """

    def __init__(
        self,
        message: str,
        details: list[dict] | None = None,
    ) -> None:
        super().__init__(
            code="VALIDATION_ERROR",
            message=message,
            status_code=400,
            details=details,
        )


class RateLimitedError(APIError):
    """Too many attempts for this identifier (429).

    Args:
        retry_after_seconds: Seconds until the current window closes.
    """

    def __init__(self, retry_after_seconds: int) -> None:
        self.retry_after_seconds = retry_after_seconds
        super().__init__(
            code="RATE_LIMITED",
            message=(
                f"Too many attempts. Please try again in {retry_after_seconds} seconds."
            ),
            status_code=429,
            details=[{"retry_after_seconds": retry_after_seconds}],
        )


class CredentialError(APIError):
    """Base class for credential-state outcomes of a verification (400)."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(code=code, message=message, status_code=400)


class InvalidCredentialError(CredentialError):
    """No user, or no credential matching the submitted secret."""

    def __init__(self) -> None:
        super().__init__("INVALID_CREDENTIAL", "Invalid sign-in code or link.")


class ExpiredCredentialError(CredentialError):
    """Credential matched but its deadline has passed."""

    def __init__(self) -> None:
        super().__init__(
            "EXPIRED_CREDENTIAL",
            "This sign-in code or link has expired. Please request a new one.",
        )


class AlreadyUsedError(CredentialError):
    """Credential matched but was consumed already."""

    def __init__(self) -> None:
        super().__init__(
            "CREDENTIAL_ALREADY_USED",
            "This sign-in code or link has already been used.",
        )


class ConflictError(APIError):
    """Duplicate or conflicting resource (409).

    Use for duplicate registrations, conflicting state, etc.
    """

    def __init__(
        self,
        code: str,
        message: str,
        details: list[dict] | None = None,
    ) -> None:
        super().__init__(
            code=code,
            message=message,
            status_code=409,
            details=details,
        )


class DeliveryError(APIError):
    """A secret could not be delivered out-of-band (503).

    Args:
        reason: Internal description, kept out of the client message.
    """

    def __init__(self, reason: str = "delivery failed") -> None:
        self.reason = reason
        super().__init__(
            code="REQUEST_FAILED",
            message=GENERIC_FAILURE_MESSAGE,
            status_code=503,
        )


class StorageError(APIError):
    """Transient storage failure or timeout (503). Retryable by the caller.

    Args:
        reason: Internal description, kept out of the client message.
    """

    def __init__(self, reason: str = "storage unavailable") -> None:
        self.reason = reason
        super().__init__(
            code="REQUEST_FAILED",
            message=GENERIC_FAILURE_MESSAGE,
            status_code=503,
        )


class InternalError(APIError):
    """Unexpected server error (500).

    Use for unhandled exceptions. Never expose stack traces to clients.
    """

    def __init__(self, message: str = "An unexpected error occurred") -> None:
        super().__init__(
            code="INTERNAL_ERROR",
            message=message,
            status_code=500,
        )
