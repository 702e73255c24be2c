from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from collateral_domain.enums import CollateralStatus, EncumbranceStatus
from collateral_domain.models import Encumbrance
from collateral_engine.errors import NotFound, StateConflict, ValidationError
from collateral_engine.ledger import TRANSITIONS, can_transition

S = EncumbranceStatus


@pytest.mark.anyio
async def test_lifecycle_keeps_collateral_values_in_step(service, make_collateral, make_encumbrance, ledger):
    col = await make_collateral("20000")
    assert col.available_value == Decimal("20000")
    assert col.encumbered_value == 0
    assert col.status is CollateralStatus.ACTIVE

    enc = await make_encumbrance(col.collateral_id, "5000")
    col = await service.get(col.collateral_id)
    assert enc.status is S.ACTIVE
    assert col.encumbered_value == Decimal("5000")
    assert col.available_value == Decimal("15000")
    assert col.status is CollateralStatus.PARTIALLY_ENCUMBERED

    enc = await ledger.partially_release(enc.encumbrance_id, Decimal("2000"))
    col = await service.get(col.collateral_id)
    assert enc.status is S.PARTIALLY_RELEASED
    assert enc.amount == Decimal("3000")
    assert col.encumbered_value == Decimal("3000")
    assert col.available_value == Decimal("17000")

    enc = await ledger.release(enc.encumbrance_id, released_by="officer")
    col = await service.get(col.collateral_id)
    assert enc.status is S.RELEASED
    assert enc.released_at is not None
    assert enc.updated_by == "officer"
    assert col.encumbered_value == 0
    assert col.available_value == Decimal("20000")
    assert col.status is CollateralStatus.ACTIVE


@pytest.mark.anyio
async def test_encumbered_value_matches_contributing_sum_after_every_step(
    service, make_collateral, make_encumbrance, ledger
):
    col = await make_collateral("50000")
    cid = col.collateral_id
    a = await make_encumbrance(cid, "10000")
    b = await make_encumbrance(cid, "7000", priority=1)
    c = await make_encumbrance(cid, "4000", status=S.PENDING)

    steps = [
        lambda: ledger.partially_release(a.encumbrance_id, 2500),
        lambda: ledger.update(c.encumbrance_id, {"status": S.ACTIVE}),
        lambda: ledger.update(b.encumbrance_id, {"status": S.SUSPENDED}),
        lambda: ledger.release(a.encumbrance_id),
        lambda: ledger.update(b.encumbrance_id, {"status": S.ACTIVE, "amount": Decimal("6000")}),
        lambda: ledger.delete(c.encumbrance_id),
    ]
    for step in steps:
        await step()
        rows = await ledger.by_collateral(cid)
        expected = sum((r.amount for r in rows if r.status in (S.ACTIVE, S.PARTIALLY_RELEASED)), Decimal("0"))
        col = await service.get(cid)
        assert col.encumbered_value == expected
        assert col.available_value == max(Decimal("0"), col.market_value - expected)
        assert await ledger.total_encumbered(cid) == expected

    assert (await service.get(cid)).encumbered_value == Decimal("6000")


@pytest.mark.anyio
async def test_create_rejects_non_positive_amount(make_collateral, make_encumbrance):
    col = await make_collateral()
    with pytest.raises(ValidationError):
        await make_encumbrance(col.collateral_id, "0")
    with pytest.raises(ValidationError):
        await make_encumbrance(col.collateral_id, "-10")


@pytest.mark.anyio
async def test_create_rejects_unknown_collateral(make_encumbrance):
    with pytest.raises(ValidationError):
        await make_encumbrance("COL-MISSING", "100")


@pytest.mark.anyio
async def test_create_only_enters_active_or_pending(make_collateral, make_encumbrance):
    col = await make_collateral()
    pending = await make_encumbrance(col.collateral_id, "100", status=S.PENDING)
    assert pending.status is S.PENDING
    with pytest.raises(ValidationError):
        await make_encumbrance(col.collateral_id, "100", status=S.RELEASED)


@pytest.mark.anyio
async def test_pending_encumbrance_does_not_contribute(service, make_collateral, make_encumbrance):
    col = await make_collateral("10000")
    await make_encumbrance(col.collateral_id, "4000", status=S.PENDING)
    col = await service.get(col.collateral_id)
    assert col.encumbered_value == 0
    assert col.status is CollateralStatus.ACTIVE


@pytest.mark.anyio
async def test_create_rejects_duplicate_id(make_collateral, make_encumbrance):
    col = await make_collateral()
    await make_encumbrance(col.collateral_id, "100", encumbrance_id="ENC-1")
    with pytest.raises(StateConflict):
        await make_encumbrance(col.collateral_id, "200", encumbrance_id="ENC-1")


@pytest.mark.anyio
async def test_generated_ids_use_prefix(make_collateral, make_encumbrance):
    col = await make_collateral()
    enc = await make_encumbrance(col.collateral_id, "100")
    assert col.collateral_id.startswith("COL-") and len(col.collateral_id) == 12
    assert enc.encumbrance_id.startswith("ENC-") and len(enc.encumbrance_id) == 12
    assert enc.encumbrance_id[4:] == enc.encumbrance_id[4:].upper()


@pytest.mark.anyio
async def test_release_is_idempotent(ledger, make_collateral, make_encumbrance):
    col = await make_collateral()
    enc = await make_encumbrance(col.collateral_id, "1000")
    first = await ledger.release(enc.encumbrance_id)
    second = await ledger.release(enc.encumbrance_id)
    assert second.status is S.RELEASED
    assert second.released_at == first.released_at


@pytest.mark.anyio
async def test_release_unknown_id_is_not_found(ledger):
    with pytest.raises(NotFound):
        await ledger.release("ENC-NOPE")
    with pytest.raises(NotFound):
        await ledger.partially_release("ENC-NOPE", 10)


@pytest.mark.anyio
async def test_partial_release_of_whole_amount_is_full_release(service, ledger, make_collateral, make_encumbrance):
    col = await make_collateral("20000")
    enc = await make_encumbrance(col.collateral_id, "5000")
    released = await ledger.partially_release(enc.encumbrance_id, Decimal("7500"))
    assert released.status is S.RELEASED
    assert released.released_at is not None
    assert (await service.get(col.collateral_id)).encumbered_value == 0


@pytest.mark.anyio
@pytest.mark.parametrize("amount", [0, -1, "-0.01", "abc", None, float("nan"), "Infinity"])
async def test_partial_release_requires_positive_amount(ledger, make_collateral, make_encumbrance, amount):
    col = await make_collateral()
    enc = await make_encumbrance(col.collateral_id, "5000")
    with pytest.raises(ValidationError):
        await ledger.partially_release(enc.encumbrance_id, amount)


@pytest.mark.anyio
async def test_contribution_never_increases(ledger, make_collateral, make_encumbrance):
    col = await make_collateral()
    enc = await make_encumbrance(col.collateral_id, "5000")
    seen = [enc.contribution]

    enc = await ledger.partially_release(enc.encumbrance_id, 1000)
    seen.append(enc.contribution)
    with pytest.raises(StateConflict):
        await ledger.update(enc.encumbrance_id, {"amount": Decimal("4500")})
    seen.append((await ledger.get(enc.encumbrance_id)).contribution)
    enc = await ledger.update(enc.encumbrance_id, {"amount": Decimal("3500")})
    seen.append(enc.contribution)
    enc = await ledger.release(enc.encumbrance_id)
    seen.append(enc.contribution)

    assert seen == sorted(seen, reverse=True)
    assert seen[-1] == 0


@pytest.mark.anyio
@pytest.mark.parametrize("terminal", [S.EXPIRED, S.CANCELLED, S.TERMINATED])
async def test_terminal_records_are_never_resurrected(service, ledger, make_collateral, make_encumbrance, terminal):
    col = await make_collateral("20000")
    enc = await make_encumbrance(col.collateral_id, "5000")
    if terminal is S.EXPIRED:
        await ledger.update(enc.encumbrance_id, {"expiry_date": datetime(2000, 1, 1)})
        await ledger.expire_all()
    else:
        await ledger.update(enc.encumbrance_id, {"status": terminal})

    with pytest.raises(StateConflict):
        await ledger.release(enc.encumbrance_id)
    with pytest.raises(StateConflict):
        await ledger.partially_release(enc.encumbrance_id, 100)
    with pytest.raises(StateConflict):
        await ledger.update(enc.encumbrance_id, {"status": S.ACTIVE})

    current = await ledger.get(enc.encumbrance_id)
    assert current.status is terminal
    assert (await service.get(col.collateral_id)).encumbered_value == 0


@pytest.mark.anyio
async def test_released_record_ignores_further_releases(ledger, make_collateral, make_encumbrance):
    col = await make_collateral()
    enc = await make_encumbrance(col.collateral_id, "5000")
    await ledger.release(enc.encumbrance_id)
    again = await ledger.partially_release(enc.encumbrance_id, 100)
    assert again.status is S.RELEASED
    with pytest.raises(StateConflict):
        await ledger.update(enc.encumbrance_id, {"notes": "late edit"})


@pytest.mark.anyio
async def test_update_enforces_transition_graph(ledger, make_collateral, make_encumbrance):
    col = await make_collateral()
    enc = await make_encumbrance(col.collateral_id, "5000")
    with pytest.raises(StateConflict):
        await ledger.update(enc.encumbrance_id, {"status": S.PENDING})
    moved = await ledger.update(enc.encumbrance_id, {"status": S.TRANSFERRED})
    assert moved.status is S.TRANSFERRED
    with pytest.raises(StateConflict):
        await ledger.update(enc.encumbrance_id, {"status": S.ACTIVE})


@pytest.mark.anyio
async def test_update_rejects_unknown_or_protected_fields(ledger, make_collateral, make_encumbrance):
    col = await make_collateral()
    enc = await make_encumbrance(col.collateral_id, "5000")
    with pytest.raises(ValidationError):
        await ledger.update(enc.encumbrance_id, {"collateral_id": "COL-OTHER"})
    with pytest.raises(ValidationError):
        await ledger.update(enc.encumbrance_id, {"status": "NOT_A_STATUS"})
    with pytest.raises(ValidationError):
        await ledger.update(enc.encumbrance_id, {"amount": Decimal("0")})


@pytest.mark.anyio
async def test_update_status_to_released_stamps_release_time(ledger, make_collateral, make_encumbrance):
    col = await make_collateral()
    enc = await make_encumbrance(col.collateral_id, "5000")
    updated = await ledger.update(enc.encumbrance_id, {"status": "RELEASED"}, updated_by="ops")
    assert updated.status is S.RELEASED
    assert updated.released_at is not None
    assert updated.updated_by == "ops"


def test_terminal_states_have_no_exits():
    for status in (S.RELEASED, S.EXPIRED, S.CANCELLED, S.TERMINATED):
        assert TRANSITIONS[status] == frozenset()
        assert status.terminal
    assert set(TRANSITIONS) == set(EncumbranceStatus)
    assert can_transition(S.ACTIVE, S.PARTIALLY_RELEASED)
    assert not can_transition(S.PARTIALLY_RELEASED, S.ACTIVE)


@pytest.mark.anyio
async def test_delete_is_ungated_and_reconciles(service, ledger, make_collateral, make_encumbrance):
    col = await make_collateral("20000")
    live = await make_encumbrance(col.collateral_id, "5000")
    done = await make_encumbrance(col.collateral_id, "1000")
    await ledger.release(done.encumbrance_id)

    await ledger.delete(done.encumbrance_id)
    await ledger.delete(live.encumbrance_id)

    assert await ledger.by_collateral(col.collateral_id) == []
    assert (await service.get(col.collateral_id)).encumbered_value == 0
    with pytest.raises(NotFound):
        await ledger.delete(live.encumbrance_id)


@pytest.mark.anyio
async def test_active_encumbrances_sorted_by_priority_then_date_then_id(ledger, make_collateral, make_encumbrance):
    col = await make_collateral("100000")
    cid = col.collateral_id
    day = datetime(2025, 1, 1)
    await make_encumbrance(cid, "100", encumbrance_id="ENC-C", priority=2, effective_date=day)
    await make_encumbrance(cid, "100", encumbrance_id="ENC-B", priority=1, effective_date=day)
    await make_encumbrance(cid, "100", encumbrance_id="ENC-A", priority=1, effective_date=day)
    await make_encumbrance(cid, "100", encumbrance_id="ENC-0", priority=1, effective_date=day + timedelta(days=1))
    await make_encumbrance(cid, "100", encumbrance_id="ENC-P", priority=0, status=S.PENDING)

    active = await ledger.by_collateral(cid, active_only=True)
    assert [e.encumbrance_id for e in active] == ["ENC-A", "ENC-B", "ENC-0", "ENC-C"]
    everything = await ledger.by_collateral(cid)
    assert everything[0].encumbrance_id == "ENC-P"


@pytest.mark.anyio
async def test_index_queries(ledger, make_collateral, make_encumbrance):
    col = await make_collateral("100000")
    cid = col.collateral_id
    await make_encumbrance(cid, "100", loan_id="LN-1", customer_id="CUST-9")
    second = await make_encumbrance(cid, "200", loan_id="LN-1", customer_id="CUST-8")
    await make_encumbrance(cid, "300", loan_id="LN-2", customer_id="CUST-9")
    await ledger.release(second.encumbrance_id)

    assert len(await ledger.by_loan("LN-1")) == 2
    assert len(await ledger.by_customer("CUST-9")) == 2
    released = await ledger.by_status(S.RELEASED)
    assert [e.encumbrance_id for e in released] == [second.encumbrance_id]


@pytest.mark.anyio
async def test_expire_all_moves_past_due_active_records(service, ledger, make_collateral, make_encumbrance):
    now = datetime(2025, 6, 1)
    col_a = await make_collateral("20000")
    col_b = await make_collateral("30000")
    late_a = await make_encumbrance(col_a.collateral_id, "5000", expiry_date=now - timedelta(days=1))
    await make_encumbrance(col_a.collateral_id, "1000", expiry_date=now + timedelta(days=1))
    late_b = await make_encumbrance(col_b.collateral_id, "8000", expiry_date=now - timedelta(days=30))
    # only ACTIVE records expire
    partial = await make_encumbrance(col_b.collateral_id, "2000", expiry_date=now - timedelta(days=3))
    await ledger.partially_release(partial.encumbrance_id, 500)

    assert {e.encumbrance_id for e in await ledger.expired(now)} == {
        late_a.encumbrance_id,
        late_b.encumbrance_id,
    }

    report = await ledger.expire_all(now)

    assert report.expired == 2
    assert sorted(report.expired_ids) == sorted([late_a.encumbrance_id, late_b.encumbrance_id])
    assert report.failures == {}
    assert (await ledger.get(late_a.encumbrance_id)).status is S.EXPIRED
    assert (await service.get(col_a.collateral_id)).encumbered_value == Decimal("1000")
    assert (await service.get(col_b.collateral_id)).encumbered_value == Decimal("1500")

    again = await ledger.expire_all(now)
    assert again.expired == 0


@pytest.mark.anyio
async def test_expire_all_with_nothing_due(ledger):
    report = await ledger.expire_all(datetime(2025, 1, 1))
    assert report.expired == 0
    assert report.as_dict()["failures"] == {}


def test_encumbrance_expiry_check_is_strict():
    cutoff = datetime(2025, 1, 1)
    enc = Encumbrance(collateral_id="COL-1", amount=Decimal("1"), expiry_date=cutoff)
    assert not enc.is_expired(cutoff)
    assert enc.is_expired(cutoff + timedelta(seconds=1))
