"""Application configuration loaded from environment variables.

Settings for database, sessions, credential lifetimes, rate limits,
delivery channels and background workers. Uses pydantic-settings for
validation and .env file support.
"""

from typing import Literal

from pydantic import SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Known insecure default password that must not be used in production
# Security: Runtime check in check_production_security() prevents use in production
_INSECURE_DEFAULT_PASSWORD = "passwordless_dev_password"  # nosec B105

# Minimum length for AUTH_SECRET in production (256 bits = 32 bytes)
_MIN_AUTH_SECRET_LENGTH = 32


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Database
    database_host: str = "localhost"
    database_port: int = 5432
    database_name: str = "passwordless_auth"
    database_user: str = "passwordless_user"
    database_password: str = _INSECURE_DEFAULT_PASSWORD

    # CORS
    allowed_origins: list[str] = ["http://localhost:3000"]

    # Application
    environment: str = "development"
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"

    # Sessions (JWT in httpOnly cookie)
    auth_secret: SecretStr = SecretStr("")
    auth_issuer: str = "passwordless-auth"
    auth_audience: str = "passwordless-auth"
    auth_session_ttl_seconds: int = 3600
    auth_cookie_name: str = "passwordless.session-token"
    auth_cookie_secure: bool = True
    auth_cookie_samesite: Literal["lax", "strict", "none"] = "lax"
    auth_cookie_domain: str = ""

    # Credential lifetimes
    magic_link_ttl_seconds: int = 15 * 60
    otp_ttl_seconds: int = 10 * 60

    # Credential storage
    # "database": PostgreSQL via SQLAlchemy; "memory": single-process store
    credential_store_backend: Literal["database", "memory"] = "database"
    store_timeout_seconds: float = 5.0

    # Per-identifier rate limits (fixed window)
    rate_limit_backend: Literal["database", "memory"] = "memory"
    send_rate_limit_max_attempts: int = 3
    send_rate_limit_window_seconds: int = 60
    verify_rate_limit_max_attempts: int = 10
    verify_rate_limit_window_seconds: int = 60
    # Advertised to clients after a successful send
    resend_after_seconds: int = 60

    # Per-IP HTTP rate limits (slowapi)
    # Format: "count/period" (e.g., "10/minute", "100/hour")
    rate_limit_issue: str = "20/hour"
    rate_limit_verify: str = "30/minute"
    rate_limit_enabled: bool = True  # Disable for testing

    # Delivery
    # "background": issuance returns after commit, worker delivers with retries
    # "inline": issuance awaits delivery and fails if it cannot be confirmed
    dispatch_mode: Literal["background", "inline"] = "background"
    delivery_queue_size: int = 1000
    delivery_max_retries: int = 3
    delivery_retry_base_delay_ms: int = 500
    delivery_retry_max_delay_ms: int = 10_000
    delivery_drain_timeout_seconds: float = 10.0

    # Email (Resend)
    email_from: str = "noreply@example.com"
    email_product_name: str = "Passwordless Auth"
    resend_api_key: SecretStr = SecretStr("")

    # SMS gateway (HTTP API)
    sms_gateway_url: str = "https://api.sms-gateway.example.com/send"
    sms_username: str = ""
    sms_password: SecretStr = SecretStr("")
    sms_sender_id: str = "Passwordless"

    # Frontend URL (redirect target after magic link sign-in)
    frontend_url: str = "http://localhost:3000"

    # Backend URL (magic link emails hit the API directly)
    backend_url: str = "http://localhost:8000"

    # Maintenance sweep of expired credentials and counters
    sweep_interval_seconds: int = 15 * 60

    @property
    def database_url(self) -> str:
        """Async database URL for SQLAlchemy."""
        return (
            f"postgresql+asyncpg://{self.database_user}:{self.database_password}"
            f"@{self.database_host}:{self.database_port}/{self.database_name}"
        )

    @model_validator(mode="after")
    def check_production_security(self) -> "Settings":
        """Validate configuration invariants and production security.

        Checks:
        - SameSite=None requires Secure flag (browser requirement)
        - Credential lifetimes and rate limits must be positive
        - CORS must not use wildcard origin (incompatible with credentials)
        - Database password must not be the default in production
        - AUTH_SECRET must be set and >= 32 chars in production
        """
        if self.auth_cookie_samesite == "none" and not self.auth_cookie_secure:
            msg = (
                "AUTH_COOKIE_SECURE must be true when AUTH_COOKIE_SAMESITE=none. "
                "Browsers reject SameSite=None cookies without the Secure flag."
            )
            raise ValueError(msg)

        positive_fields = {
            "MAGIC_LINK_TTL_SECONDS": self.magic_link_ttl_seconds,
            "OTP_TTL_SECONDS": self.otp_ttl_seconds,
            "SEND_RATE_LIMIT_MAX_ATTEMPTS": self.send_rate_limit_max_attempts,
            "SEND_RATE_LIMIT_WINDOW_SECONDS": self.send_rate_limit_window_seconds,
            "VERIFY_RATE_LIMIT_MAX_ATTEMPTS": self.verify_rate_limit_max_attempts,
            "VERIFY_RATE_LIMIT_WINDOW_SECONDS": self.verify_rate_limit_window_seconds,
            "STORE_TIMEOUT_SECONDS": self.store_timeout_seconds,
        }
        for name, value in positive_fields.items():
            if value <= 0:
                msg = f"{name} must be positive. Got: {value}"
                raise ValueError(msg)

        if self.delivery_max_retries < 0:
            msg = (
                "DELIVERY_MAX_RETRIES cannot be negative. "
                f"Got: {self.delivery_max_retries}"
            )
            raise ValueError(msg)

        if "*" in self.allowed_origins:
            msg = (
                "ALLOWED_ORIGINS must not contain '*' (wildcard). "
                "This application uses credentials (cookies) which are "
                "incompatible with wildcard CORS origins."
            )
            raise ValueError(msg)

        if self.environment == "production":
            if self.database_password == _INSECURE_DEFAULT_PASSWORD:
                msg = (
                    "Cannot use default database password in production. "
                    "Set DATABASE_PASSWORD environment variable to a secure value."
                )
                raise ValueError(msg)

            secret_value = self.auth_secret.get_secret_value()
            if not secret_value:
                msg = (
                    "AUTH_SECRET must be set in production. "
                    'Generate with: python -c "import secrets; '
                    'print(secrets.token_hex(32))"'
                )
                raise ValueError(msg)
            if len(secret_value) < _MIN_AUTH_SECRET_LENGTH:
                msg = (
                    f"AUTH_SECRET must be at least {_MIN_AUTH_SECRET_LENGTH} "
                    "characters for adequate security."
                )
                raise ValueError(msg)

        return self


settings = Settings()
