"""Tests for the PostgreSQL credential store and counter store.

These tests require PostgreSQL; they are skipped when it is not reachable.
"""

import asyncio
from datetime import timedelta

import pytest

from passwordless.core.errors import AlreadyUsedError, StorageError
from passwordless.services.credential_store import SqlCredentialStore
from passwordless.services.credential_types import CredentialKind
from passwordless.services.delivery_worker import DeliveryWorker
from passwordless.services.rate_limiter import DatabaseCounterStore, RateLimiter
from passwordless.services.token_issuer import TokenIssuer
from passwordless.services.verifier import Verifier
from tests.conftest import (
    FAST_RETRY,
    MAGIC_LINK_TTL_SECONDS,
    OTP_TTL_SECONDS,
    T0,
    TEST_EMAIL,
    RecordingDispatcher,
)

_TTL = timedelta(minutes=15)


@pytest.fixture
def sql_store(session_factory) -> SqlCredentialStore:
    return SqlCredentialStore(session_factory, timeout_seconds=5.0)


@pytest.fixture
def sql_dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def sql_issuer(sql_store, sql_dispatcher, clock) -> TokenIssuer:
    worker = DeliveryWorker(
        sql_store,
        {CredentialKind.MAGIC_LINK: sql_dispatcher, CredentialKind.OTP: sql_dispatcher},
        mode="inline",
        policy=FAST_RETRY,
        clock=clock,
    )
    return TokenIssuer(
        sql_store,
        worker,
        ttl_seconds={
            CredentialKind.MAGIC_LINK: MAGIC_LINK_TTL_SECONDS,
            CredentialKind.OTP: OTP_TTL_SECONDS,
        },
        clock=clock,
    )


class TestSqlUnitOfWork:
    async def test_create_user_is_idempotent(self, sql_store):
        async with sql_store.unit_of_work() as uow:
            first, created = await uow.create_user(TEST_EMAIL, now=T0)
        async with sql_store.unit_of_work() as uow:
            second, created_again = await uow.create_user(TEST_EMAIL, now=T0)

        assert created is True
        assert created_again is False
        assert first.id == second.id
        assert first.is_new is True

    async def test_try_consume_succeeds_once(self, sql_store):
        async with sql_store.unit_of_work() as uow:
            user, _ = await uow.create_user(TEST_EMAIL, now=T0)
            credential = await uow.create(
                user.id,
                CredentialKind.MAGIC_LINK,
                "hash-1",
                created_at=T0,
                expires_at=T0 + _TTL,
            )

        async with sql_store.unit_of_work() as uow:
            assert await uow.try_consume(credential.id, now=T0) is True
        async with sql_store.unit_of_work() as uow:
            assert await uow.try_consume(credential.id, now=T0) is False
            assert (await uow.get(credential.id)).used_at == T0

    async def test_try_consume_refuses_at_deadline(self, sql_store):
        async with sql_store.unit_of_work() as uow:
            user, _ = await uow.create_user(TEST_EMAIL, now=T0)
            credential = await uow.create(
                user.id,
                CredentialKind.OTP,
                "hash-2",
                created_at=T0,
                expires_at=T0 + _TTL,
            )
            assert await uow.try_consume(credential.id, now=T0 + _TTL) is False

    async def test_exception_rolls_back(self, sql_store):
        with pytest.raises(RuntimeError):
            async with sql_store.unit_of_work() as uow:
                await uow.create_user(TEST_EMAIL, now=T0)
                raise RuntimeError("boom")

        async with sql_store.unit_of_work() as uow:
            assert await uow.get_user(TEST_EMAIL) is None

    async def test_purge_expired(self, sql_store):
        async with sql_store.unit_of_work() as uow:
            user, _ = await uow.create_user(TEST_EMAIL, now=T0)
            await uow.create(
                user.id,
                CredentialKind.OTP,
                "hash-3",
                created_at=T0,
                expires_at=T0 + _TTL,
            )
        async with sql_store.unit_of_work() as uow:
            assert await uow.purge_expired(now=T0 + _TTL - timedelta(seconds=1)) == 0
            assert await uow.purge_expired(now=T0 + _TTL) == 1


class TestSqlFlows:
    async def test_reissue_leaves_one_credential(
        self, sql_issuer, sql_store, session_factory
    ):
        first = await sql_issuer.issue(
            TEST_EMAIL, CredentialKind.MAGIC_LINK, create_user_if_absent=True
        )
        second = await sql_issuer.issue(
            TEST_EMAIL, CredentialKind.MAGIC_LINK, create_user_if_absent=True
        )

        async with sql_store.unit_of_work() as uow:
            assert await uow.get(first.credential.id) is None
            assert await uow.get(second.credential.id) is not None

    async def test_concurrent_verification_consumes_once(
        self, sql_issuer, sql_store, sql_dispatcher, clock
    ):
        await sql_issuer.issue(
            TEST_EMAIL, CredentialKind.MAGIC_LINK, create_user_if_absent=True
        )
        verifier = Verifier(sql_store, clock=clock)

        results = await asyncio.gather(
            *(
                verifier.verify(
                    TEST_EMAIL, CredentialKind.MAGIC_LINK, sql_dispatcher.last_secret
                )
                for _ in range(8)
            ),
            return_exceptions=True,
        )

        successes = [r for r in results if not isinstance(r, Exception)]
        assert len(successes) == 1
        assert all(
            isinstance(r, AlreadyUsedError) for r in results if r not in successes
        )
        assert successes[0].is_new_user is True

    async def test_store_timeout_is_storage_error(self, session_factory):
        store = SqlCredentialStore(session_factory, timeout_seconds=0.01)

        with pytest.raises(StorageError):
            async with store.unit_of_work():
                await asyncio.sleep(0.1)


class TestDatabaseCounterStore:
    async def test_fixed_window(self, session_factory, clock):
        limiter = RateLimiter(DatabaseCounterStore(session_factory), clock=clock)
        key = f"otp-send:{TEST_EMAIL}"

        decisions = [await limiter.check(key, 3, 60) for _ in range(4)]

        assert [d.allowed for d in decisions] == [True, True, True, False]
        assert decisions[-1].retry_after_seconds == 60

        clock.advance(seconds=60)
        assert (await limiter.check(key, 3, 60)).allowed is True

    async def test_concurrent_hits_admit_exactly_max(self, session_factory, clock):
        limiter = RateLimiter(DatabaseCounterStore(session_factory), clock=clock)

        decisions = await asyncio.gather(
            *(limiter.check("magic-link-send:x@y.co", 3, 60) for _ in range(10))
        )

        assert sum(d.allowed for d in decisions) == 3

    async def test_clear_and_purge(self, session_factory, clock):
        limiter = RateLimiter(DatabaseCounterStore(session_factory), clock=clock)
        await limiter.check("a:1", 1, 60)
        await limiter.check("b:2", 1, 60)

        await limiter.clear("a:1")
        assert (await limiter.check("a:1", 1, 60)).allowed is True

        clock.advance(seconds=60)
        assert await limiter.purge_expired() == 2
