"""Credential verification.

Outcome priority for a submitted secret:
1. No user, or no credential of this kind with a matching hash: invalid.
2. Expired (now >= expires_at): expired.
3. Already consumed: used.
4. Otherwise a conditional consume decides. Zero affected rows means a
   concurrent call won (used) or the deadline passed in between (expired).

Only the successful path mutates state. The consume, the verified_at
stamp, and the is_new flip share one unit of work.
"""

import logging

from passwordless.core.clock import Clock, utc_now
from passwordless.core.errors import (
    AlreadyUsedError,
    ExpiredCredentialError,
    InvalidCredentialError,
)
from passwordless.services.credential_store import CredentialStore
from passwordless.services.credential_types import CredentialKind, VerifiedUser
from passwordless.services.secret_codec import hash_secret, is_well_formed

logger = logging.getLogger(__name__)


class Verifier:
    """Checks submitted secrets and consumes matching credentials.

    Args:
        store: Credential store.
        clock: Time source (injectable for tests).
    """

    def __init__(self, store: CredentialStore, *, clock: Clock = utc_now) -> None:
        self._store = store
        self._clock = clock

    async def verify(
        self, identifier: str, kind: CredentialKind, secret: str
    ) -> VerifiedUser:
        """Exchange a secret for the verified user.

        Args:
            identifier: Normalized email or E.164 phone.
            kind: Kind the secret was issued as.
            secret: Submitted plaintext.

        Returns:
            VerifiedUser; is_new_user is True only on the user's first
            successful verification.

        Raises:
            InvalidCredentialError: Malformed secret, unknown user, or no
                matching credential.
            ExpiredCredentialError: Matching credential past its deadline.
            AlreadyUsedError: Matching credential already consumed.
            StorageError: Transient store failure.
        """
        if not is_well_formed(kind, secret):
            raise InvalidCredentialError()

        secret_hash = hash_secret(secret)
        async with self._store.unit_of_work() as uow:
            user = await uow.get_user(identifier)
            if user is None:
                logger.info("Verification for unknown identifier %s", identifier)
                raise InvalidCredentialError()

            credential = await uow.find_by_hash(user.id, kind, secret_hash)
            if credential is None:
                logger.info("No matching %s for %s", kind.value, identifier)
                raise InvalidCredentialError()

            now = self._clock()
            if credential.is_expired(now):
                raise ExpiredCredentialError()
            if credential.is_used:
                raise AlreadyUsedError()

            if not await uow.try_consume(credential.id, now=now):
                current = await uow.get(credential.id)
                if current is None:
                    # Superseded by a newer issuance in between
                    raise InvalidCredentialError()
                if current.is_used:
                    raise AlreadyUsedError()
                raise ExpiredCredentialError()

            await uow.mark_verified(user.id, now=now)
            is_new_user = await uow.clear_new_flag(user.id)
            verified = await uow.get_user_by_id(user.id)

        logger.info(
            "Verified %s via %s credential %s (new_user=%s)",
            identifier,
            kind.value,
            credential.id,
            is_new_user,
        )
        return VerifiedUser(user=verified or user, is_new_user=is_new_user)
