import socket
import uuid
from collections.abc import AsyncGenerator
from datetime import UTC, datetime, timedelta

import jwt
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from pydantic import SecretStr
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from passwordless.core.config import settings
from passwordless.core.errors import DeliveryError
from passwordless.core.retry import RetryPolicy
from passwordless.models.base import Base
from passwordless.services.auth_service import PasswordlessAuthService, RateLimitRule
from passwordless.services.credential_types import CredentialKind
from passwordless.services.delivery_worker import DeliveryWorker
from passwordless.services.memory_credential_store import InMemoryCredentialStore
from passwordless.services.rate_limiter import InMemoryCounterStore, RateLimiter
from passwordless.services.token_issuer import TokenIssuer
from passwordless.services.verifier import Verifier

# Use separate test database
TEST_DATABASE_URL = settings.database_url.replace(
    settings.database_name, f"{settings.database_name}_test"
)

# Security: This is a test-only secret. Production uses a real secret from env.
TEST_AUTH_SECRET = "test-secret-key-that-is-at-least-32-characters-long"  # nosec B105  # gitleaks:allow

# Fixed start time so expiry arithmetic in tests is exact
T0 = datetime(2026, 1, 1, 12, 0, 0, tzinfo=UTC)

MAGIC_LINK_TTL_SECONDS = 900
OTP_TTL_SECONDS = 600

TEST_EMAIL = "alice@example.com"
TEST_PHONE = "+15551234567"

# No real sleeping between delivery retries
FAST_RETRY = RetryPolicy(max_retries=2, base_delay_ms=0, max_delay_ms=0)


class FakeClock:
    """Controllable time source.

    Call it like ``utc_now``; move it with ``advance``.
    """

    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> None:
        self.now += timedelta(**delta)


class RecordingDispatcher:
    """Dispatcher that records sends and can be told to fail.

    Attributes:
        sent: (identifier, secret, expires_at) per successful send.
        failures_remaining: Number of upcoming sends that raise DeliveryError.
        calls: Total send attempts, including failed ones.
    """

    def __init__(self, *, failures: int = 0) -> None:
        self.sent: list[tuple[str, str, datetime]] = []
        self.failures_remaining = failures
        self.calls = 0

    async def send(self, identifier: str, secret: str, expires_at: datetime) -> None:
        self.calls += 1
        if self.failures_remaining > 0:
            self.failures_remaining -= 1
            raise DeliveryError("gateway unavailable")
        self.sent.append((identifier, secret, expires_at))

    @property
    def last_secret(self) -> str:
        return self.sent[-1][1]


def create_test_jwt(
    user_id: uuid.UUID,
    *,
    secret: str = TEST_AUTH_SECRET,
    expires_delta: timedelta | None = None,
) -> str:
    """Create a signed session JWT matching the app's claims."""
    now = datetime.now(UTC)
    payload = {
        "sub": str(user_id),
        "aud": settings.auth_audience,
        "iss": settings.auth_issuer,
        "exp": now + (expires_delta or timedelta(hours=1)),
        "iat": now,
    }
    return jwt.encode(payload, secret, algorithm="HS256")


def _is_postgres_available() -> bool:
    """Check if PostgreSQL is accepting connections.

    Returns:
        True if PostgreSQL is reachable on port 5432, False otherwise.
    """
    try:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.settimeout(1)
        result = sock.connect_ex(("127.0.0.1", 5432))
        sock.close()
        return result == 0
    except OSError:
        return False


# Check once at module load time
_POSTGRES_AVAILABLE = _is_postgres_available()


def skip_if_no_postgres() -> None:
    """Skip test if PostgreSQL is not available."""
    if not _POSTGRES_AVAILABLE:
        pytest.skip(
            "PostgreSQL not available on port 5432. "
            "Start database with: docker compose up -d"
        )


# =============================================================================
# Credential engine fixtures (in-memory, fake clock)
# =============================================================================


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> InMemoryCredentialStore:
    return InMemoryCredentialStore(timeout_seconds=1.0)


@pytest.fixture
def email_dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def sms_dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def delivery_worker(
    store: InMemoryCredentialStore,
    email_dispatcher: RecordingDispatcher,
    sms_dispatcher: RecordingDispatcher,
    clock: FakeClock,
) -> DeliveryWorker:
    """Inline worker: deliveries complete before issuance returns."""
    return DeliveryWorker(
        store,
        {
            CredentialKind.MAGIC_LINK: email_dispatcher,
            CredentialKind.OTP: sms_dispatcher,
        },
        mode="inline",
        policy=FAST_RETRY,
        clock=clock,
    )


@pytest.fixture
def issuer(
    store: InMemoryCredentialStore,
    delivery_worker: DeliveryWorker,
    clock: FakeClock,
) -> TokenIssuer:
    return TokenIssuer(
        store,
        delivery_worker,
        ttl_seconds={
            CredentialKind.MAGIC_LINK: MAGIC_LINK_TTL_SECONDS,
            CredentialKind.OTP: OTP_TTL_SECONDS,
        },
        clock=clock,
    )


@pytest.fixture
def verifier(store: InMemoryCredentialStore, clock: FakeClock) -> Verifier:
    return Verifier(store, clock=clock)


@pytest.fixture
def rate_limiter(clock: FakeClock) -> RateLimiter:
    return RateLimiter(InMemoryCounterStore(), clock=clock)


@pytest.fixture
def auth_service(
    issuer: TokenIssuer,
    verifier: Verifier,
    rate_limiter: RateLimiter,
    store: InMemoryCredentialStore,
) -> PasswordlessAuthService:
    return PasswordlessAuthService(
        issuer=issuer,
        verifier=verifier,
        rate_limiter=rate_limiter,
        store=store,
        send_limit=RateLimitRule(max_attempts=3, window_seconds=60),
        verify_limit=RateLimitRule(max_attempts=10, window_seconds=60),
        resend_after_seconds=60,
    )


# =============================================================================
# API Test Fixtures
# =============================================================================


@pytest_asyncio.fixture
async def client(
    auth_service: PasswordlessAuthService,
) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client wired to the in-memory auth service.

    Sets up:
    - get_auth_service dependency override
    - Test JWT secret
    - Per-IP limiter disabled (per-identifier limits still apply)

    Yields:
        AsyncClient with ASGI transport.
    """
    from passwordless.api.deps import get_auth_service
    from passwordless.core.rate_limiting import limiter
    from passwordless.main import app

    app.dependency_overrides[get_auth_service] = lambda: auth_service

    original_auth_secret = settings.auth_secret
    original_limiter_enabled = limiter.enabled
    settings.auth_secret = SecretStr(TEST_AUTH_SECRET)
    limiter.enabled = False

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    settings.auth_secret = original_auth_secret
    limiter.enabled = original_limiter_enabled
    app.dependency_overrides.clear()


# =============================================================================
# Database fixtures (skipped without PostgreSQL)
# =============================================================================


@pytest_asyncio.fixture(scope="function")
async def db_engine():
    """Create test database engine.

    Skips test if PostgreSQL is not available (e.g., Docker not running).
    """
    skip_if_no_postgres()

    engine = create_async_engine(TEST_DATABASE_URL, echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the test database."""
    return async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
