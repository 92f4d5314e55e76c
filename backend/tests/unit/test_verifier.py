"""Tests for credential verification.

Outcome priority (invalid, expired, used, success), the expiry boundary,
exactly-once consumption under concurrency, and that no failure path
mutates state.
"""

import asyncio
from contextlib import asynccontextmanager

import pytest

from passwordless.core.errors import (
    AlreadyUsedError,
    ExpiredCredentialError,
    InvalidCredentialError,
)
from passwordless.services.credential_store import CredentialStore
from passwordless.services.credential_types import CredentialKind
from passwordless.services.secret_codec import generate_magic_link_token
from passwordless.services.verifier import Verifier
from tests.conftest import MAGIC_LINK_TTL_SECONDS, T0, TEST_EMAIL, TEST_PHONE


@pytest.fixture
async def magic_link(issuer):
    return await issuer.issue(
        TEST_EMAIL, CredentialKind.MAGIC_LINK, create_user_if_absent=True
    )


@pytest.fixture
async def otp(issuer):
    await issuer.register(TEST_PHONE)
    return await issuer.issue(TEST_PHONE, CredentialKind.OTP, create_user_if_absent=False)


class TestSuccess:
    async def test_first_verification_is_new_user(self, verifier, magic_link, store):
        verified = await verifier.verify(
            TEST_EMAIL, CredentialKind.MAGIC_LINK, magic_link.secret
        )

        assert verified.is_new_user is True
        assert verified.user.identifier == TEST_EMAIL
        assert verified.user.verified_at == T0
        assert store.credentials[magic_link.credential.id].used_at == T0
        assert store.users[TEST_EMAIL].is_new is False

    async def test_later_verification_is_not_new_user(self, issuer, verifier):
        first = await issuer.issue(
            TEST_EMAIL, CredentialKind.MAGIC_LINK, create_user_if_absent=True
        )
        await verifier.verify(TEST_EMAIL, CredentialKind.MAGIC_LINK, first.secret)

        second = await issuer.issue(
            TEST_EMAIL, CredentialKind.MAGIC_LINK, create_user_if_absent=True
        )
        verified = await verifier.verify(
            TEST_EMAIL, CredentialKind.MAGIC_LINK, second.secret
        )
        assert verified.is_new_user is False

    async def test_otp_success(self, verifier, otp):
        verified = await verifier.verify(TEST_PHONE, CredentialKind.OTP, otp.secret)
        assert verified.is_new_user is True


class TestFailures:
    async def test_wrong_secret_is_invalid_and_not_consumed(
        self, verifier, magic_link, store
    ):
        with pytest.raises(InvalidCredentialError):
            await verifier.verify(
                TEST_EMAIL, CredentialKind.MAGIC_LINK, generate_magic_link_token()
            )
        assert store.credentials[magic_link.credential.id].used_at is None
        assert store.users[TEST_EMAIL].is_new is True

    async def test_unknown_identifier_is_invalid(self, verifier, magic_link):
        with pytest.raises(InvalidCredentialError):
            await verifier.verify(
                "nobody@example.com", CredentialKind.MAGIC_LINK, magic_link.secret
            )

    async def test_secret_of_other_kind_is_invalid(self, issuer, verifier, otp):
        with pytest.raises(InvalidCredentialError):
            await verifier.verify(TEST_PHONE, CredentialKind.MAGIC_LINK, otp.secret)

    async def test_malformed_secret_never_touches_store(self, verifier, store):
        class ExplodingStore:
            def unit_of_work(self):
                raise AssertionError("store must not be touched")

        verifier._store = ExplodingStore()
        for secret in ["12345", "abcdef", "1234567", ""]:
            with pytest.raises(InvalidCredentialError):
                await verifier.verify(TEST_PHONE, CredentialKind.OTP, secret)

    async def test_reuse_is_already_used(self, verifier, magic_link, store):
        await verifier.verify(TEST_EMAIL, CredentialKind.MAGIC_LINK, magic_link.secret)
        used_at = store.credentials[magic_link.credential.id].used_at

        with pytest.raises(AlreadyUsedError):
            await verifier.verify(
                TEST_EMAIL, CredentialKind.MAGIC_LINK, magic_link.secret
            )
        assert store.credentials[magic_link.credential.id].used_at == used_at

    async def test_superseded_secret_is_invalid(self, issuer, verifier, otp):
        await issuer.issue(TEST_PHONE, CredentialKind.OTP, create_user_if_absent=False)
        with pytest.raises(InvalidCredentialError):
            await verifier.verify(TEST_PHONE, CredentialKind.OTP, otp.secret)


class TestExpiryBoundary:
    async def test_one_second_before_deadline_succeeds(
        self, verifier, magic_link, clock
    ):
        clock.advance(seconds=MAGIC_LINK_TTL_SECONDS - 1)
        verified = await verifier.verify(
            TEST_EMAIL, CredentialKind.MAGIC_LINK, magic_link.secret
        )
        assert verified.user.identifier == TEST_EMAIL

    async def test_at_deadline_is_expired(self, verifier, magic_link, clock):
        clock.advance(seconds=MAGIC_LINK_TTL_SECONDS)
        with pytest.raises(ExpiredCredentialError):
            await verifier.verify(
                TEST_EMAIL, CredentialKind.MAGIC_LINK, magic_link.secret
            )

    async def test_one_second_after_deadline_is_expired_without_mutation(
        self, verifier, magic_link, clock, store
    ):
        clock.advance(seconds=MAGIC_LINK_TTL_SECONDS + 1)
        with pytest.raises(ExpiredCredentialError):
            await verifier.verify(
                TEST_EMAIL, CredentialKind.MAGIC_LINK, magic_link.secret
            )
        assert store.credentials[magic_link.credential.id].used_at is None
        assert store.users[TEST_EMAIL].verified_at is None

    async def test_expired_takes_priority_over_used(
        self, verifier, magic_link, clock
    ):
        await verifier.verify(TEST_EMAIL, CredentialKind.MAGIC_LINK, magic_link.secret)
        clock.advance(seconds=MAGIC_LINK_TTL_SECONDS)
        with pytest.raises(ExpiredCredentialError):
            await verifier.verify(
                TEST_EMAIL, CredentialKind.MAGIC_LINK, magic_link.secret
            )


class TestConcurrency:
    @pytest.mark.parametrize("attempts", [2, 10, 50])
    async def test_exactly_one_success(self, verifier, magic_link, attempts):
        results = await asyncio.gather(
            *(
                verifier.verify(
                    TEST_EMAIL, CredentialKind.MAGIC_LINK, magic_link.secret
                )
                for _ in range(attempts)
            ),
            return_exceptions=True,
        )

        successes = [r for r in results if not isinstance(r, Exception)]
        used = [r for r in results if isinstance(r, AlreadyUsedError)]
        assert len(successes) == 1
        assert len(used) == attempts - 1
        assert successes[0].is_new_user is True


class _RivalUnitOfWork:
    """Unit of work whose consume always loses to a competing request.

    ``rival`` runs just before the conditional update would have applied,
    standing in for the request that got there first.
    """

    def __init__(self, uow, rival) -> None:
        self._uow = uow
        self._rival = rival

    def __getattr__(self, name):
        return getattr(self._uow, name)

    async def try_consume(self, credential_id, *, now):
        await self._rival(self._uow, credential_id, now)
        return False


class _RivalStore(CredentialStore):
    def __init__(self, inner: CredentialStore, rival) -> None:
        self._inner = inner
        self._rival = rival

    @asynccontextmanager
    async def unit_of_work(self):
        async with self._inner.unit_of_work() as uow:
            yield _RivalUnitOfWork(uow, self._rival)


class TestLostConsumeRace:
    async def test_rival_consumed_first_is_used(self, store, clock, magic_link):
        async def consume_first(uow, credential_id, now):
            assert await uow.try_consume(credential_id, now=now) is True

        verifier = Verifier(_RivalStore(store, consume_first), clock=clock)

        with pytest.raises(AlreadyUsedError):
            await verifier.verify(
                TEST_EMAIL, CredentialKind.MAGIC_LINK, magic_link.secret
            )
        assert store.users[TEST_EMAIL].is_new is True
        assert store.users[TEST_EMAIL].verified_at is None

    async def test_deadline_passed_in_between_is_expired(
        self, store, clock, magic_link
    ):
        async def deadline_passes(uow, credential_id, now):
            clock.advance(seconds=MAGIC_LINK_TTL_SECONDS)

        verifier = Verifier(_RivalStore(store, deadline_passes), clock=clock)

        with pytest.raises(ExpiredCredentialError):
            await verifier.verify(
                TEST_EMAIL, CredentialKind.MAGIC_LINK, magic_link.secret
            )
        assert store.credentials[magic_link.credential.id].used_at is None
        assert store.users[TEST_EMAIL].verified_at is None

    async def test_superseded_in_between_is_invalid(self, store, clock, magic_link):
        async def reissue_deletes(uow, credential_id, now):
            assert await uow.delete(credential_id) is True

        verifier = Verifier(_RivalStore(store, reissue_deletes), clock=clock)

        with pytest.raises(InvalidCredentialError):
            await verifier.verify(
                TEST_EMAIL, CredentialKind.MAGIC_LINK, magic_link.secret
            )
        assert store.users[TEST_EMAIL].is_new is True
