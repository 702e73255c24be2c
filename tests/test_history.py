from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from collateral_domain.enums import CollateralType, TitleStatus, ValuationStatus
from collateral_domain.models import AutoValuation, TitleRecord
from collateral_engine.errors import NotFound, StateConflict, ValidationError
from integrations.valuation.base import TitleVerification


@pytest.fixture
def valuations(engine):
    return engine.valuations


@pytest.fixture
def titles(engine):
    return engine.titles


def _valuation(collateral_id, value="20000", day=1, **fields):
    fields.setdefault("status", ValuationStatus.COMPLETED)
    return AutoValuation(
        collateral_id=collateral_id,
        estimated_value=Decimal(value),
        valuation_date=datetime(2025, 3, day),
        **fields,
    )


# ---------------------------------------------------------------------------
# Auto-valuations
# ---------------------------------------------------------------------------


@pytest.mark.anyio
async def test_create_and_get_valuation(valuations, make_collateral):
    col = await make_collateral()
    created = await valuations.create(_valuation(col.collateral_id), created_by="ops")

    assert created.valuation_id.startswith("VAL-")
    assert created.created_by == created.updated_by == "ops"
    assert await valuations.get(created.valuation_id) == created


@pytest.mark.anyio
async def test_valuation_for_unknown_collateral_is_rejected(valuations):
    with pytest.raises(ValidationError):
        await valuations.create(_valuation("COL-NOPE"))


@pytest.mark.anyio
async def test_duplicate_valuation_id_conflicts(valuations, make_collateral):
    col = await make_collateral()
    await valuations.create(_valuation(col.collateral_id, valuation_id="VAL-1"))
    with pytest.raises(StateConflict):
        await valuations.create(_valuation(col.collateral_id, valuation_id="VAL-1"))


@pytest.mark.parametrize(
    "fields",
    [
        {"estimated_value": Decimal("-1")},
        {"low_range": Decimal("25000"), "high_range": Decimal("15000")},
        {"confidence_score": -0.5},
    ],
)
@pytest.mark.anyio
async def test_valuation_rejects_bad_figures(valuations, make_collateral, fields):
    col = await make_collateral()
    record = _valuation(col.collateral_id).model_copy(update=fields)
    with pytest.raises(ValidationError):
        await valuations.create(record)
    assert await valuations.by_collateral(col.collateral_id) == []


@pytest.mark.anyio
async def test_valuations_listed_newest_first(valuations, make_collateral):
    col = await make_collateral()
    other = await make_collateral()
    for day in (3, 1, 2):
        await valuations.create(_valuation(col.collateral_id, value=str(1000 * day), day=day))
    await valuations.create(_valuation(other.collateral_id, day=5))

    rows = await valuations.by_collateral(col.collateral_id)
    assert [r.valuation_date.day for r in rows] == [3, 2, 1]

    latest = await valuations.latest(col.collateral_id)
    assert latest.estimated_value == Decimal("3000")

    with pytest.raises(NotFound):
        await valuations.latest("COL-EMPTY")


@pytest.mark.anyio
async def test_valuation_lookups(valuations, make_collateral):
    col = await make_collateral()
    await valuations.create(_valuation(col.collateral_id, location="Austin, TX", day=1))
    await valuations.create(
        _valuation(col.collateral_id, location="Reno, NV", day=2, status=ValuationStatus.FAILED)
    )

    assert len(await valuations.by_type(CollateralType.VEHICLE)) == 2
    (austin,) = await valuations.by_location("Austin, TX")
    assert austin.valuation_date.day == 1
    (failed,) = await valuations.by_status(ValuationStatus.FAILED)
    assert failed.location == "Reno, NV"

    window = await valuations.between(datetime(2025, 3, 2), datetime(2025, 3, 2) + timedelta(hours=1))
    assert [r.location for r in window] == ["Reno, NV"]
    with pytest.raises(ValidationError):
        await valuations.between(datetime(2025, 3, 2), datetime(2025, 3, 1))


@pytest.mark.anyio
async def test_update_valuation(valuations, make_collateral):
    col = await make_collateral()
    created = await valuations.create(_valuation(col.collateral_id))

    updated = await valuations.update(
        created.valuation_id,
        {"status": ValuationStatus.UNDER_REVIEW, "message": "manual check"},
        updated_by="bob",
    )
    assert updated.status is ValuationStatus.UNDER_REVIEW
    assert updated.updated_by == "bob"
    assert updated.created_at == created.created_at

    with pytest.raises(ValidationError):
        await valuations.update(created.valuation_id, {"collateral_id": "COL-OTHER"})
    with pytest.raises(ValidationError):
        await valuations.update(created.valuation_id, {"high_range": Decimal("-5")})
    with pytest.raises(NotFound):
        await valuations.update("VAL-NOPE", {"message": "x"})


@pytest.mark.anyio
async def test_delete_valuation(valuations, make_collateral):
    col = await make_collateral()
    created = await valuations.create(_valuation(col.collateral_id))

    await valuations.delete(created.valuation_id)
    with pytest.raises(NotFound):
        await valuations.get(created.valuation_id)
    with pytest.raises(NotFound):
        await valuations.delete(created.valuation_id)


# ---------------------------------------------------------------------------
# Title registry
# ---------------------------------------------------------------------------


@pytest.mark.anyio
async def test_title_lookups(titles, make_collateral):
    col = await make_collateral()
    first = await titles.create(
        TitleRecord(
            collateral_id=col.collateral_id,
            title_number="T-100",
            current_owner="Jane Doe",
            status=TitleStatus.VERIFIED,
            is_valid=True,
            verification_date=datetime(2025, 1, 1),
        )
    )
    second = await titles.create(
        TitleRecord(
            collateral_id=col.collateral_id,
            title_number="T-100",
            current_owner="Jane Doe",
            status=TitleStatus.INVALID,
            verification_date=datetime(2025, 2, 1),
        )
    )

    assert first.title_id.startswith("TTL-")
    assert (await titles.by_title_number("T-100")).title_id == second.title_id
    assert [t.title_id for t in await titles.by_owner("Jane Doe")] == [
        second.title_id,
        first.title_id,
    ]
    assert [t.title_id for t in await titles.verified_by_owner("Jane Doe")] == [first.title_id]
    assert [t.title_id for t in await titles.valid_titles()] == [first.title_id]
    assert (await titles.latest(col.collateral_id)).title_id == second.title_id
    assert len(await titles.by_status(TitleStatus.INVALID)) == 1

    with pytest.raises(NotFound):
        await titles.by_title_number("T-404")


@pytest.mark.anyio
async def test_record_verification_copies_registry_answer(titles, make_collateral):
    col = await make_collateral(legal_description="VIN 123")
    verification = TitleVerification(
        collateral_id=col.collateral_id,
        status=TitleStatus.VERIFIED,
        title_number="T-9",
        is_valid=True,
        registered_owner="Jane Doe",
    )

    record = await titles.record_verification(col, verification, requested_by="ops")

    assert record.current_owner == "Jane Doe"
    assert record.legal_description == "VIN 123"
    assert record.verified
    assert record.verification_date is not None
    assert record.created_by == "ops"


@pytest.mark.anyio
async def test_update_title_keeps_identity(titles, make_collateral):
    col = await make_collateral()
    created = await titles.create(TitleRecord(collateral_id=col.collateral_id, title_number="T-1"))

    updated = await titles.update(
        created.title_id,
        {"previous_owner": "Jane Doe", "current_owner": "John Roe", "notes": "transfer"},
    )
    assert updated.current_owner == "John Roe"
    assert updated.title_number == "T-1"

    with pytest.raises(ValidationError):
        await titles.update(created.title_id, {"title_id": "TTL-OTHER"})
