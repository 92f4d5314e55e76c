"""Auth service factory functions.

Singleton wiring of the credential engine from Settings: store and
rate-limit backends, delivery worker, sweeper and the orchestrating
service. The FastAPI lifespan starts the background pieces.
"""

from collections.abc import Mapping
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from passwordless.core.clock import Clock, utc_now
from passwordless.core.config import Settings, settings
from passwordless.core.retry import RetryPolicy
from passwordless.services.auth_service import PasswordlessAuthService, RateLimitRule
from passwordless.services.credential_store import CredentialStore, SqlCredentialStore
from passwordless.services.credential_sweeper import CredentialSweeper
from passwordless.services.credential_types import CredentialKind
from passwordless.services.delivery_worker import DeliveryWorker
from passwordless.services.memory_credential_store import InMemoryCredentialStore
from passwordless.services.notification import (
    NotificationDispatcher,
    default_dispatchers,
)
from passwordless.services.rate_limiter import (
    CounterStore,
    DatabaseCounterStore,
    InMemoryCounterStore,
    RateLimiter,
)
from passwordless.services.token_issuer import TokenIssuer
from passwordless.services.verifier import Verifier


@dataclass(frozen=True)
class AuthRuntime:
    """Everything the application needs from the credential engine.

    Attributes:
        service: Entry point for the HTTP layer.
        delivery_worker: Started and stopped by the lifespan.
        sweeper: Started and stopped by the lifespan.
    """

    service: PasswordlessAuthService
    delivery_worker: DeliveryWorker
    sweeper: CredentialSweeper


_runtime: AuthRuntime | None = None


def build_auth_runtime(
    config: Settings,
    *,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    dispatchers: Mapping[CredentialKind, NotificationDispatcher] | None = None,
    clock: Clock = utc_now,
) -> AuthRuntime:
    """Wire a fresh credential engine.

    Args:
        config: Application settings.
        session_factory: Session factory for the database backends.
            Defaults to the application engine's factory.
        dispatchers: Channel per credential kind. Defaults to Resend email
            for magic links and the SMS gateway for OTPs.
        clock: Time source shared by every component.

    Returns:
        AuthRuntime with nothing started yet.
    """
    uses_database = (
        config.credential_store_backend == "database"
        or config.rate_limit_backend == "database"
    )
    if session_factory is None and uses_database:
        from passwordless.core.database import async_session_factory

        session_factory = async_session_factory

    store: CredentialStore
    if config.credential_store_backend == "database":
        store = SqlCredentialStore(
            session_factory, timeout_seconds=config.store_timeout_seconds
        )
    else:
        store = InMemoryCredentialStore(timeout_seconds=config.store_timeout_seconds)

    counters: CounterStore
    if config.rate_limit_backend == "database":
        counters = DatabaseCounterStore(
            session_factory, timeout_seconds=config.store_timeout_seconds
        )
    else:
        counters = InMemoryCounterStore()

    rate_limiter = RateLimiter(counters, clock=clock)
    delivery_worker = DeliveryWorker(
        store,
        dispatchers if dispatchers is not None else default_dispatchers(),
        mode=config.dispatch_mode,
        policy=RetryPolicy(
            max_retries=config.delivery_max_retries,
            base_delay_ms=config.delivery_retry_base_delay_ms,
            max_delay_ms=config.delivery_retry_max_delay_ms,
        ),
        queue_size=config.delivery_queue_size,
        drain_timeout_seconds=config.delivery_drain_timeout_seconds,
        clock=clock,
    )
    issuer = TokenIssuer(
        store,
        delivery_worker,
        ttl_seconds={
            CredentialKind.MAGIC_LINK: config.magic_link_ttl_seconds,
            CredentialKind.OTP: config.otp_ttl_seconds,
        },
        clock=clock,
    )
    service = PasswordlessAuthService(
        issuer=issuer,
        verifier=Verifier(store, clock=clock),
        rate_limiter=rate_limiter,
        store=store,
        send_limit=RateLimitRule(
            max_attempts=config.send_rate_limit_max_attempts,
            window_seconds=config.send_rate_limit_window_seconds,
        ),
        verify_limit=RateLimitRule(
            max_attempts=config.verify_rate_limit_max_attempts,
            window_seconds=config.verify_rate_limit_window_seconds,
        ),
        resend_after_seconds=config.resend_after_seconds,
    )
    sweeper = CredentialSweeper(
        store,
        rate_limiter,
        interval_seconds=config.sweep_interval_seconds,
        clock=clock,
    )
    return AuthRuntime(
        service=service, delivery_worker=delivery_worker, sweeper=sweeper
    )


def get_auth_runtime() -> AuthRuntime:
    """Get or create the credential engine singleton.

    WHY SINGLETON:
    - One delivery queue and one sweeper per process
    - In-memory backends must be shared by every request

    Returns:
        AuthRuntime built from the module-level settings.
    """
    global _runtime

    if _runtime is None:
        _runtime = build_auth_runtime(settings)
    return _runtime


def reset_auth_runtime() -> None:
    """Reset the singleton (for testing)."""
    global _runtime
    _runtime = None
