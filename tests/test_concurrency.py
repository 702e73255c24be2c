"""Serialization, timeouts and rollback of ledger mutations."""

import asyncio
from datetime import datetime
from decimal import Decimal

import anyio
import pytest

from collateral_domain.enums import EncumbranceStatus
from collateral_domain.models import Collateral, Encumbrance
from collateral_engine.config import Settings
from collateral_engine.errors import CollaboratorUnavailable
from collateral_engine.runtime import build_engine
from collateral_engine.stores import (InMemoryCollateralStore,
                                      InMemoryEncumbranceStore)
from integrations.valuation.mock import MockTitleRegistry, MockValuationProvider


class FlakyCollateralStore(InMemoryCollateralStore):
    """Fails the next ``fail_next`` upserts, or blocks the next one on ``gate``."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.fail_next = 0
        self.gate = None
        self.entered = asyncio.Event()

    async def upsert(self, item):
        if self.fail_next:
            self.fail_next -= 1
            raise CollaboratorUnavailable("collateral-store", "boom")
        if self.gate is not None:
            gate, self.gate = self.gate, None
            self.entered.set()
            await gate.wait()
        return await super().upsert(item)


class PickyEncumbranceStore(InMemoryEncumbranceStore):
    """Refuses to write encumbrances of the collaterals in ``broken``."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.broken = set()

    async def upsert(self, item):
        if item.collateral_id in self.broken:
            raise CollaboratorUnavailable("encumbrance-store", "write refused")
        return await super().upsert(item)


def _build(collaterals=None, encumbrances=None, timeout=2.0):
    return build_engine(
        Settings(store_timeout_sec=timeout),
        collateral_store=collaterals if collaterals is not None else InMemoryCollateralStore(),
        encumbrance_store=encumbrances if encumbrances is not None else InMemoryEncumbranceStore(),
        valuation=MockValuationProvider(),
        title_registry=MockTitleRegistry(),
    )


async def _seed(engine, market="20000", amount="10000", **enc_fields):
    col = await engine.service.create(
        Collateral(customer_id="CUST-1", account_id="ACC-1", market_value=Decimal(market))
    )
    enc = await engine.ledger.create(
        Encumbrance(collateral_id=col.collateral_id, amount=Decimal(amount), **enc_fields)
    )
    return col, enc


@pytest.mark.anyio
async def test_concurrent_partial_releases_are_serialized():
    engine = _build(
        InMemoryCollateralStore(latency=0.002), InMemoryEncumbranceStore(latency=0.002)
    )
    col, enc = await _seed(engine)

    results = await asyncio.gather(
        *(engine.ledger.partially_release(enc.encumbrance_id, 500) for _ in range(10))
    )

    amounts = sorted(r.amount for r in results)
    assert amounts == [Decimal(5000 + 500 * i) for i in range(10)]
    final = await engine.ledger.get(enc.encumbrance_id)
    assert final.amount == Decimal("5000")
    col = await engine.service.get(col.collateral_id)
    assert col.encumbered_value == Decimal("5000")
    assert col.available_value == Decimal("15000")
    assert len(engine.reconciler.locks) == 0


@pytest.mark.anyio
async def test_mixed_concurrent_mutations_keep_values_consistent():
    engine = _build(
        InMemoryCollateralStore(latency=0.001), InMemoryEncumbranceStore(latency=0.001)
    )
    col, first = await _seed(engine, market="100000", amount="10000")
    cid = col.collateral_id

    async def create(amount):
        return await engine.ledger.create(Encumbrance(collateral_id=cid, amount=Decimal(amount)))

    await asyncio.gather(
        create("3000"),
        create("4000"),
        engine.ledger.partially_release(first.encumbrance_id, 2500),
        engine.service.update_value(cid, Decimal("90000")),
        create("1000"),
    )

    rows = await engine.ledger.by_collateral(cid, active_only=True)
    col = await engine.service.get(cid)
    assert col.encumbered_value == sum((r.amount for r in rows), Decimal("0"))
    assert col.encumbered_value == Decimal("15500")
    assert col.available_value == Decimal("74500")


@pytest.mark.anyio
async def test_different_collaterals_do_not_block_each_other():
    engine = _build()
    col_a, _ = await _seed(engine)
    _, enc_b = await _seed(engine)

    async with engine.reconciler.locks.hold(col_a.collateral_id):
        released = await asyncio.wait_for(engine.ledger.release(enc_b.encumbrance_id), 1.0)
    assert released.status is EncumbranceStatus.RELEASED


@pytest.mark.anyio
async def test_lock_wait_is_bounded():
    engine = _build(timeout=0.05)
    col, enc = await _seed(engine)

    async with engine.reconciler.locks.hold(col.collateral_id):
        with pytest.raises(CollaboratorUnavailable) as err:
            await engine.ledger.partially_release(enc.encumbrance_id, 100)

    assert err.value.collaborator == "collateral-lock"
    assert err.value.retryable
    assert (await engine.ledger.get(enc.encumbrance_id)).amount == Decimal("10000")


@pytest.mark.anyio
async def test_slow_store_times_out():
    encumbrances = InMemoryEncumbranceStore()
    engine = _build(encumbrances=encumbrances, timeout=0.05)
    _, enc = await _seed(engine)

    encumbrances.latency = 0.5
    with pytest.raises(CollaboratorUnavailable) as err:
        await engine.ledger.get(enc.encumbrance_id)
    assert err.value.collaborator == "encumbrance-store"


@pytest.mark.anyio
async def test_failed_reconciliation_rolls_back_release():
    collaterals = FlakyCollateralStore()
    engine = _build(collaterals=collaterals)
    col, enc = await _seed(engine)

    collaterals.fail_next = 1
    with pytest.raises(CollaboratorUnavailable):
        await engine.ledger.partially_release(enc.encumbrance_id, 4000)

    restored = await engine.ledger.get(enc.encumbrance_id)
    assert restored.amount == Decimal("10000")
    assert restored.status is EncumbranceStatus.ACTIVE
    col = await engine.service.get(col.collateral_id)
    assert col.encumbered_value == Decimal("10000")
    assert col.available_value == Decimal("10000")


@pytest.mark.anyio
async def test_failed_create_leaves_no_record():
    collaterals = FlakyCollateralStore()
    engine = _build(collaterals=collaterals)
    col, _ = await _seed(engine)

    collaterals.fail_next = 1
    with pytest.raises(CollaboratorUnavailable):
        await engine.ledger.create(
            Encumbrance(encumbrance_id="ENC-LOST", collateral_id=col.collateral_id, amount=Decimal("1"))
        )

    assert "ENC-LOST" not in {
        e.encumbrance_id for e in await engine.ledger.by_collateral(col.collateral_id)
    }
    assert (await engine.service.get(col.collateral_id)).encumbered_value == Decimal("10000")


@pytest.mark.anyio
async def test_cancelled_release_is_rolled_back():
    collaterals = FlakyCollateralStore()
    engine = _build(collaterals=collaterals)
    col, enc = await _seed(engine)

    collaterals.gate = asyncio.Event()
    task = asyncio.create_task(engine.ledger.release(enc.encumbrance_id))
    await asyncio.wait_for(collaterals.entered.wait(), 1.0)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    restored = await engine.ledger.get(enc.encumbrance_id)
    assert restored.status is EncumbranceStatus.ACTIVE
    col = await engine.service.get(col.collateral_id)
    assert col.encumbered_value == Decimal("10000")
    assert not engine.reconciler.locks.locked(col.collateral_id)


@pytest.mark.anyio
async def test_expiry_sweep_isolates_failing_collateral():
    encumbrances = PickyEncumbranceStore()
    engine = _build(encumbrances=encumbrances)
    due = datetime(2020, 1, 1)
    good_col, good = await _seed(engine, expiry_date=due)
    bad_col, bad = await _seed(engine, expiry_date=due)
    encumbrances.broken.add(bad_col.collateral_id)

    report = await engine.ledger.expire_all(datetime(2025, 1, 1))

    assert report.expired_ids == [good.encumbrance_id]
    assert list(report.failures) == [bad_col.collateral_id]
    assert (await engine.ledger.get(bad.encumbrance_id)).status is EncumbranceStatus.ACTIVE
    assert (await engine.ledger.get(good.encumbrance_id)).status is EncumbranceStatus.EXPIRED
    assert (await engine.service.get(bad_col.collateral_id)).encumbered_value == Decimal("10000")
    assert (await engine.service.get(good_col.collateral_id)).encumbered_value == Decimal("0")


def test_build_engine_keeps_empty_injected_stores():
    collaterals, encumbrances = InMemoryCollateralStore(), InMemoryEncumbranceStore()
    engine = _build(collaterals, encumbrances)

    assert engine.reconciler.collaterals is collaterals
    assert engine.reconciler.encumbrances is encumbrances
    assert engine.ledger.store is encumbrances
    assert engine.service.store is collaterals


@pytest.mark.anyio
async def test_cancel_scope_rollback_keeps_collateral_locked():
    collaterals = FlakyCollateralStore()
    engine = _build(collaterals=collaterals)
    col, enc = await _seed(engine)
    scope = anyio.CancelScope()

    async def release():
        with scope:
            await engine.ledger.release(enc.encumbrance_id)

    collaterals.gate = asyncio.Event()
    task = asyncio.create_task(release())
    await asyncio.wait_for(collaterals.entered.wait(), 1.0)

    # hold the rollback's reconcile write until the lock has been checked
    collaterals.entered.clear()
    restore_gate = collaterals.gate = asyncio.Event()
    scope.cancel()
    await asyncio.wait_for(collaterals.entered.wait(), 1.0)

    assert engine.reconciler.locks.locked(col.collateral_id)
    assert (await engine.ledger.get(enc.encumbrance_id)).status is EncumbranceStatus.ACTIVE

    restore_gate.set()
    await asyncio.wait_for(task, 1.0)

    assert scope.cancelled_caught
    assert not engine.reconciler.locks.locked(col.collateral_id)
    col = await engine.service.get(col.collateral_id)
    assert col.encumbered_value == Decimal("10000")
    assert col.available_value == Decimal("10000")
