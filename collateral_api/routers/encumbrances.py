"""Encumbrance endpoints."""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, Response, status
from pydantic import BaseModel, Field

from collateral_domain.enums import EncumbranceStatus, EncumbranceType
from collateral_domain.models import Encumbrance
from collateral_engine.ledger import (EncumbranceLedger, encumbrance_statuses,
                                      encumbrance_types)
from common.auth import Principal, require_token

from ..deps import audit, get_ledger

router = APIRouter(prefix="/api/v1/encumbrances", tags=["encumbrances"])

# ---------------------------------------------------------------------------
# Schemas
# ---------------------------------------------------------------------------


class EncumbranceCreate(BaseModel):
    encumbrance_id: Optional[str] = None
    collateral_id: str = Field(..., min_length=1)
    loan_id: Optional[str] = None
    customer_id: Optional[str] = None
    # sign is checked by the ledger so it answers 400 like other rule violations
    amount: Decimal
    currency: str = Field(default="USD", min_length=3, max_length=3)
    type: EncumbranceType = EncumbranceType.LIEN
    status: EncumbranceStatus = EncumbranceStatus.ACTIVE
    priority: int = 0
    effective_date: Optional[datetime] = None
    expiry_date: Optional[datetime] = None
    description: Optional[str] = None
    legal_reference: Optional[str] = None
    notes: Optional[str] = None

    def to_entity(self) -> Encumbrance:
        return Encumbrance(**self.model_dump(exclude_none=True))


class EncumbranceUpdate(BaseModel):
    loan_id: Optional[str] = None
    amount: Optional[Decimal] = None
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    type: Optional[EncumbranceType] = None
    status: Optional[EncumbranceStatus] = None
    priority: Optional[int] = None
    effective_date: Optional[datetime] = None
    expiry_date: Optional[datetime] = None
    description: Optional[str] = None
    legal_reference: Optional[str] = None
    notes: Optional[str] = None


class PartialRelease(BaseModel):
    release_amount: Decimal


class TotalAmount(BaseModel):
    collateral_id: str
    total_amount: Decimal


# ---------------------------------------------------------------------------
# Reference data / collection queries (before /{encumbrance_id})
# ---------------------------------------------------------------------------


@router.get("/types", response_model=List[EncumbranceType])
async def list_types(_: Principal = Depends(require_token)):
    return encumbrance_types()


@router.get("/statuses", response_model=List[EncumbranceStatus])
async def list_statuses(_: Principal = Depends(require_token)):
    return encumbrance_statuses()


@router.get("/expired", response_model=List[Encumbrance])
async def list_expired(
    as_of: Optional[datetime] = Query(None),
    ledger: EncumbranceLedger = Depends(get_ledger),
    _: Principal = Depends(require_token),
):
    return await ledger.expired(as_of)


@router.get("/collateral/{collateral_id}", response_model=List[Encumbrance])
async def list_by_collateral(
    collateral_id: str,
    ledger: EncumbranceLedger = Depends(get_ledger),
    _: Principal = Depends(require_token),
):
    return await ledger.by_collateral(collateral_id)


@router.get("/collateral/{collateral_id}/active", response_model=List[Encumbrance])
async def list_active_by_collateral(
    collateral_id: str,
    ledger: EncumbranceLedger = Depends(get_ledger),
    _: Principal = Depends(require_token),
):
    return await ledger.by_collateral(collateral_id, active_only=True)


@router.get("/collateral/{collateral_id}/total-amount", response_model=TotalAmount)
async def total_amount(
    collateral_id: str,
    ledger: EncumbranceLedger = Depends(get_ledger),
    _: Principal = Depends(require_token),
):
    return TotalAmount(
        collateral_id=collateral_id, total_amount=await ledger.total_encumbered(collateral_id)
    )


@router.get("/loan/{loan_id}", response_model=List[Encumbrance])
async def list_by_loan(
    loan_id: str,
    ledger: EncumbranceLedger = Depends(get_ledger),
    _: Principal = Depends(require_token),
):
    return await ledger.by_loan(loan_id)


@router.get("/customer/{customer_id}", response_model=List[Encumbrance])
async def list_by_customer(
    customer_id: str,
    ledger: EncumbranceLedger = Depends(get_ledger),
    _: Principal = Depends(require_token),
):
    return await ledger.by_customer(customer_id)


@router.get("/status/{encumbrance_status}", response_model=List[Encumbrance])
async def list_by_status(
    encumbrance_status: EncumbranceStatus,
    ledger: EncumbranceLedger = Depends(get_ledger),
    _: Principal = Depends(require_token),
):
    return await ledger.by_status(encumbrance_status)


@router.post("/expire-encumbrances", response_model=Dict[str, Any])
async def expire_encumbrances(
    as_of: Optional[datetime] = Query(None),
    ledger: EncumbranceLedger = Depends(get_ledger),
    principal: Principal = Depends(require_token),
):
    report = await ledger.expire_all(as_of)
    audit(
        "ENCUMBRANCES_EXPIRED",
        principal,
        None,
        expired=report.expired_ids,
        failures=report.failures,
    )
    return report.as_dict()


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


@router.post("", response_model=Encumbrance, status_code=status.HTTP_201_CREATED)
async def create_encumbrance(
    body: EncumbranceCreate,
    ledger: EncumbranceLedger = Depends(get_ledger),
    principal: Principal = Depends(require_token),
):
    created = await ledger.create(body.to_entity(), created_by=principal.name)
    audit(
        "ENCUMBRANCE_CREATED",
        principal,
        created.encumbrance_id,
        collateral_id=created.collateral_id,
        amount=created.amount,
    )
    return created


@router.get("/{encumbrance_id}", response_model=Encumbrance)
async def get_encumbrance(
    encumbrance_id: str,
    ledger: EncumbranceLedger = Depends(get_ledger),
    _: Principal = Depends(require_token),
):
    return await ledger.get(encumbrance_id)


@router.put("/{encumbrance_id}", response_model=Encumbrance)
async def update_encumbrance(
    encumbrance_id: str,
    body: EncumbranceUpdate,
    ledger: EncumbranceLedger = Depends(get_ledger),
    principal: Principal = Depends(require_token),
):
    changes = body.model_dump(exclude_unset=True)
    updated = await ledger.update(encumbrance_id, changes, updated_by=principal.name)
    audit("ENCUMBRANCE_UPDATED", principal, encumbrance_id, fields=sorted(changes))
    return updated


@router.patch("/{encumbrance_id}/release", response_model=Encumbrance)
async def release_encumbrance(
    encumbrance_id: str,
    ledger: EncumbranceLedger = Depends(get_ledger),
    principal: Principal = Depends(require_token),
):
    released = await ledger.release(encumbrance_id, released_by=principal.name)
    audit("ENCUMBRANCE_RELEASED", principal, encumbrance_id, collateral_id=released.collateral_id)
    return released


@router.patch("/{encumbrance_id}/partial-release", response_model=Encumbrance)
async def partially_release_encumbrance(
    encumbrance_id: str,
    body: PartialRelease,
    ledger: EncumbranceLedger = Depends(get_ledger),
    principal: Principal = Depends(require_token),
):
    record = await ledger.partially_release(
        encumbrance_id, body.release_amount, released_by=principal.name
    )
    audit(
        "ENCUMBRANCE_PARTIALLY_RELEASED",
        principal,
        encumbrance_id,
        release_amount=body.release_amount,
        remaining=record.amount,
        status=record.status,
    )
    return record


@router.delete("/{encumbrance_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_encumbrance(
    encumbrance_id: str,
    ledger: EncumbranceLedger = Depends(get_ledger),
    principal: Principal = Depends(require_token),
):
    await ledger.delete(encumbrance_id)
    audit("ENCUMBRANCE_DELETED", principal, encumbrance_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
