"""
Concurrency Tests.

Validates that races on one tenant's balance and on one order are resolved
without double spending or double crediting.

These run against a file-backed SQLite database so every session gets its
own connection, as it would against PostgreSQL.
"""

import asyncio

import pytest
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import NullPool

from quota_ledger.app.core.concurrency import KeyedLock
from quota_ledger.app.core.exceptions import InsufficientQuotaError
from quota_ledger.app.db.session import Base
from quota_ledger.app.domain.billing.ledger_service import LedgerService
from quota_ledger.app.domain.billing.order_service import OrderService, FinalizeOutcome
from quota_ledger.app.domain.billing.package_catalog import PackageCatalog
from quota_ledger.app.domain.billing.quota_service import QuotaService
from quota_ledger.app.models.billing_enums import FinalizeSource


@pytest.fixture
async def session_factory(tmp_path):
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}",
        poolclass=NullPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)
    async with factory() as session:
        await PackageCatalog.seed_defaults(session)
        await LedgerService.register_tenant(session, "Acme Seeds", tenant_id="tenant-acme")
        await LedgerService.register_tenant(session, "Bravo Agro", tenant_id="tenant-bravo")

    yield factory
    await engine.dispose()


async def _grant(factory, tenant_id, units):
    async with factory() as session:
        await QuotaService.adjust(session, tenant_id, units, "test grant", f"grant-{tenant_id}")


@pytest.mark.asyncio
async def test_concurrent_activations_never_overspend(session_factory):
    """With balance B and N concurrent debits of C, exactly floor(B / C) succeed."""
    balance, cost, attempts = 10, 3, 8
    await _grant(session_factory, "tenant-acme", balance)

    async def activate(batch_ref):
        async with session_factory() as session:
            return await QuotaService.debit_for_activation(session, "tenant-acme", cost, batch_ref)

    results = await asyncio.gather(
        *(activate(f"BATCH-{i}") for i in range(attempts)),
        return_exceptions=True,
    )

    succeeded = [r for r in results if not isinstance(r, BaseException)]
    refused = [r for r in results if isinstance(r, InsufficientQuotaError)]
    assert len(succeeded) == balance // cost
    assert len(refused) == attempts - balance // cost

    async with session_factory() as session:
        assert await LedgerService.read_balance(session, "tenant-acme") == balance % cost
        report = await LedgerService.check_consistency(session, "tenant-acme")
        assert report.consistent


@pytest.mark.asyncio
async def test_concurrent_retries_of_one_activation_debit_once(session_factory):
    await _grant(session_factory, "tenant-acme", 10)

    async def activate():
        async with session_factory() as session:
            return await QuotaService.debit_for_activation(session, "tenant-acme", 4, "BATCH-RETRY")

    results = await asyncio.gather(*(activate() for _ in range(5)))

    assert sum(1 for r in results if not r.replayed) == 1
    assert len({r.transaction.id for r in results}) == 1

    async with session_factory() as session:
        assert await LedgerService.read_balance(session, "tenant-acme") == 6


@pytest.mark.asyncio
async def test_client_and_webhook_race_credits_once(session_factory, gateway, verifier):
    async with session_factory() as session:
        checkout = await OrderService.create_order(session, gateway, "tenant-acme", "starter")
    order_id = checkout.order.gateway_order_id
    signature = verifier.expected_signature(order_id, "pay_race")

    async def settle(source):
        async with session_factory() as session:
            return await OrderService.finalize(
                session, verifier, order_id, "pay_race", signature, source=source
            )

    results = await asyncio.gather(
        settle(FinalizeSource.CLIENT),
        settle(FinalizeSource.WEBHOOK),
        settle(FinalizeSource.WEBHOOK),
    )

    outcomes = sorted(r.outcome.value for r in results)
    assert outcomes == [
        FinalizeOutcome.ALREADY_FINALIZED.value,
        FinalizeOutcome.ALREADY_FINALIZED.value,
        FinalizeOutcome.CREDITED.value,
    ]

    async with session_factory() as session:
        assert await LedgerService.read_balance(session, "tenant-acme") == 10


@pytest.mark.asyncio
async def test_tenants_do_not_block_each_other(session_factory):
    await _grant(session_factory, "tenant-acme", 5)
    await _grant(session_factory, "tenant-bravo", 5)

    async def activate(tenant_id, batch_ref):
        async with session_factory() as session:
            return await QuotaService.debit_for_activation(session, tenant_id, 1, batch_ref)

    await asyncio.gather(*(
        activate(tenant_id, f"{tenant_id}-{i}")
        for i in range(5)
        for tenant_id in ("tenant-acme", "tenant-bravo")
    ))

    async with session_factory() as session:
        assert await LedgerService.read_balance(session, "tenant-acme") == 0
        assert await LedgerService.read_balance(session, "tenant-bravo") == 0


@pytest.mark.asyncio
async def test_keyed_lock_isolates_keys():
    locks = KeyedLock()

    async with locks.hold("tenant-a"):
        assert locks.locked("tenant-a")
        assert not locks.locked("tenant-b")
        async with locks.hold("tenant-b"):
            assert locks.locked("tenant-b")

    assert not locks.locked("tenant-a")
