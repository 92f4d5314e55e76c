"""Credential issuance.

Invalidate-then-create runs in one unit of work, so at most one active
credential exists per (user, kind). The plaintext secret leaves this module
only through the returned IssuedCredential and the delivery task; it is
never persisted or logged.
"""

import logging
import uuid
from collections.abc import Mapping
from datetime import datetime, timedelta

from passwordless.core.clock import Clock, utc_now
from passwordless.core.errors import ConflictError
from passwordless.services.credential_store import (
    CredentialStore,
    CredentialUnitOfWork,
)
from passwordless.services.credential_types import CredentialKind, IssuedCredential
from passwordless.services.delivery_worker import DeliveryTask, DeliveryWorker
from passwordless.services.secret_codec import generate_secret, hash_secret

logger = logging.getLogger(__name__)


class TokenIssuer:
    """Issues single-use secrets and hands them to the delivery worker.

    Args:
        store: Credential store.
        delivery: Delivery worker (background queue or inline).
        ttl_seconds: Credential lifetime per kind.
        clock: Time source (injectable for tests).
    """

    def __init__(
        self,
        store: CredentialStore,
        delivery: DeliveryWorker,
        *,
        ttl_seconds: Mapping[CredentialKind, int],
        clock: Clock = utc_now,
    ) -> None:
        self._store = store
        self._delivery = delivery
        self._ttl_seconds = dict(ttl_seconds)
        self._clock = clock

    def ttl_for(self, kind: CredentialKind) -> int:
        return self._ttl_seconds[kind]

    async def issue(
        self,
        identifier: str,
        kind: CredentialKind,
        *,
        create_user_if_absent: bool,
    ) -> IssuedCredential | None:
        """Issue a fresh credential, superseding any previous one.

        Args:
            identifier: Normalized email or E.164 phone.
            kind: Credential kind to issue.
            create_user_if_absent: Create the user on first contact
                (magic link). When False and the user does not exist,
                nothing is persisted or sent.

        Returns:
            The issued credential, or None if the user does not exist and
            may not be created.

        Raises:
            StorageError: Transient store failure (nothing committed).
            DeliveryError: Delivery failed (inline) or could not be queued
                (background); the credential has been invalidated.
        """
        now = self._clock()
        async with self._store.unit_of_work() as uow:
            if create_user_if_absent:
                user, created = await uow.create_user(identifier, now=now)
                if created:
                    logger.info("Created user for %s", identifier)
            else:
                user = await uow.get_user(identifier, for_update=True)
                if user is None:
                    logger.info(
                        "No %s issued: %s is not registered", kind.value, identifier
                    )
                    return None

            issued = await self._replace_credential(uow, user.id, identifier, kind, now)

        await self._delivery.submit(DeliveryTask.from_issued(issued))
        return issued

    async def register(self, identifier: str) -> IssuedCredential:
        """Create a user explicitly and issue its first OTP.

        Raises:
            ConflictError: If the identifier is already registered.
            StorageError: Transient store failure (nothing committed).
            DeliveryError: See issue().
        """
        now = self._clock()
        async with self._store.unit_of_work() as uow:
            user, created = await uow.create_user(identifier, now=now)
            if not created:
                raise ConflictError(
                    code="ALREADY_REGISTERED",
                    message="This phone number is already registered.",
                )
            logger.info("Registered %s", identifier)
            issued = await self._replace_credential(
                uow, user.id, identifier, CredentialKind.OTP, now
            )

        await self._delivery.submit(DeliveryTask.from_issued(issued))
        return issued

    async def _replace_credential(
        self,
        uow: CredentialUnitOfWork,
        user_id: uuid.UUID,
        identifier: str,
        kind: CredentialKind,
        now: datetime,
    ) -> IssuedCredential:
        superseded = await uow.invalidate_all(user_id, kind)
        secret = generate_secret(kind)
        credential = await uow.create(
            user_id,
            kind,
            hash_secret(secret),
            created_at=now,
            expires_at=now + timedelta(seconds=self._ttl_seconds[kind]),
        )
        logger.info(
            "Issued %s credential %s for %s (superseded %d)",
            kind.value,
            credential.id,
            identifier,
            superseded,
        )
        return IssuedCredential(credential=credential, identifier=identifier, secret=secret)
