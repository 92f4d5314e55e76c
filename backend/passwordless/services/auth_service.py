"""Passwordless authentication orchestration.

Ties the per-identifier rate limiter to issuance and verification. This is
the only service the HTTP layer talks to.

Issuance:  send limit → TokenIssuer → DeliveryWorker
Verify:    verify limit → Verifier → (on success) reset verify counter

Every verification attempt counts toward the verify limit, successful or
not; a success clears the counter.
"""

import uuid
from dataclasses import dataclass

from passwordless.core.errors import RateLimitedError
from passwordless.services.credential_store import CredentialStore
from passwordless.services.credential_types import (
    CredentialKind,
    UserRecord,
    VerifiedUser,
)
from passwordless.services.rate_limiter import (
    MAGIC_LINK_SEND,
    MAGIC_LINK_VERIFY,
    OTP_SEND,
    OTP_VERIFY,
    RateLimiter,
    rate_limit_key,
)
from passwordless.services.token_issuer import TokenIssuer
from passwordless.services.verifier import Verifier

_SEND_ACTIONS = {
    CredentialKind.MAGIC_LINK: MAGIC_LINK_SEND,
    CredentialKind.OTP: OTP_SEND,
}
_VERIFY_ACTIONS = {
    CredentialKind.MAGIC_LINK: MAGIC_LINK_VERIFY,
    CredentialKind.OTP: OTP_VERIFY,
}


@dataclass(frozen=True)
class RateLimitRule:
    """Attempts allowed per fixed window."""

    max_attempts: int
    window_seconds: int


@dataclass(frozen=True)
class IssuanceReceipt:
    """What the client learns from an accepted issuance request.

    Identical whether or not a secret was actually sent, so responses do
    not reveal which identifiers are registered.

    Attributes:
        expires_in_seconds: Lifetime of the issued secret.
        resend_after_seconds: Suggested wait before requesting another.
    """

    expires_in_seconds: int
    resend_after_seconds: int


class PasswordlessAuthService:
    """Rate-limited issuance and verification of single-use secrets.

    Args:
        issuer: Credential issuer.
        verifier: Credential verifier.
        rate_limiter: Per-identifier limiter.
        store: Credential store (user lookups for sessions).
        send_limit: Rule for issuance and registration.
        verify_limit: Rule for verification attempts.
        resend_after_seconds: Advertised resend delay.
    """

    def __init__(
        self,
        *,
        issuer: TokenIssuer,
        verifier: Verifier,
        rate_limiter: RateLimiter,
        store: CredentialStore,
        send_limit: RateLimitRule,
        verify_limit: RateLimitRule,
        resend_after_seconds: int = 60,
    ) -> None:
        self._issuer = issuer
        self._verifier = verifier
        self._rate_limiter = rate_limiter
        self._store = store
        self._send_limit = send_limit
        self._verify_limit = verify_limit
        self._resend_after_seconds = resend_after_seconds

    async def request_credential(
        self, identifier: str, kind: CredentialKind
    ) -> IssuanceReceipt:
        """Issue and deliver a fresh secret.

        Magic links create the user on first contact. OTP sign-in requires
        prior registration; for an unknown phone nothing is sent but the
        receipt is the same.

        Raises:
            RateLimitedError: Send limit reached for this identifier.
            StorageError: Transient store failure.
            DeliveryError: Secret could not be delivered or queued.
        """
        await self._enforce(
            rate_limit_key(_SEND_ACTIONS[kind], identifier), self._send_limit
        )
        await self._issuer.issue(
            identifier,
            kind,
            create_user_if_absent=kind is CredentialKind.MAGIC_LINK,
        )
        return self._receipt(kind)

    async def register(self, identifier: str) -> IssuanceReceipt:
        """Register a phone number and send its first OTP.

        Counts toward the OTP send limit.

        Raises:
            RateLimitedError: Send limit reached for this identifier.
            ConflictError: Phone number already registered.
            StorageError: Transient store failure.
            DeliveryError: OTP could not be delivered or queued.
        """
        await self._enforce(rate_limit_key(OTP_SEND, identifier), self._send_limit)
        await self._issuer.register(identifier)
        return self._receipt(CredentialKind.OTP)

    async def verify_credential(
        self, identifier: str, kind: CredentialKind, secret: str
    ) -> VerifiedUser:
        """Exchange a submitted secret for the verified user.

        Raises:
            RateLimitedError: Verify limit reached for this identifier.
            InvalidCredentialError: Secret malformed or not recognized.
            ExpiredCredentialError: Secret expired.
            AlreadyUsedError: Secret already consumed.
            StorageError: Transient store failure.
        """
        key = rate_limit_key(_VERIFY_ACTIONS[kind], identifier)
        await self._enforce(key, self._verify_limit)
        verified = await self._verifier.verify(identifier, kind, secret)
        await self._rate_limiter.clear(key)
        return verified

    async def get_user(self, user_id: uuid.UUID) -> UserRecord | None:
        """Look up the user behind a session."""
        async with self._store.unit_of_work() as uow:
            return await uow.get_user_by_id(user_id)

    async def _enforce(self, key: str, rule: RateLimitRule) -> None:
        decision = await self._rate_limiter.check(
            key, rule.max_attempts, rule.window_seconds
        )
        if not decision.allowed:
            raise RateLimitedError(decision.retry_after_seconds)

    def _receipt(self, kind: CredentialKind) -> IssuanceReceipt:
        return IssuanceReceipt(
            expires_in_seconds=self._issuer.ttl_for(kind),
            resend_after_seconds=self._resend_after_seconds,
        )
