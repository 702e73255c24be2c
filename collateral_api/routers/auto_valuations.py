"""Auto-valuation history endpoints."""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Response, status
from pydantic import BaseModel, Field

from collateral_domain.enums import CollateralType, ValuationStatus
from collateral_domain.models import AutoValuation
from collateral_engine.history import AutoValuationHistory, valuation_statuses
from common.auth import Principal, require_token

from ..deps import audit, get_valuations

router = APIRouter(prefix="/api/v1/auto-valuations", tags=["auto-valuations"])

# ---------------------------------------------------------------------------
# Schemas
# ---------------------------------------------------------------------------


class AutoValuationCreate(BaseModel):
    valuation_id: Optional[str] = None
    collateral_id: str = Field(..., min_length=1)
    type: CollateralType = CollateralType.VEHICLE
    location: Optional[str] = None
    description: Optional[str] = None
    status: ValuationStatus = ValuationStatus.PENDING
    # ranges are checked by the history so they answer 400
    estimated_value: Optional[Decimal] = None
    low_range: Optional[Decimal] = None
    high_range: Optional[Decimal] = None
    currency: str = Field(default="USD", min_length=3, max_length=3)
    methodology: Optional[str] = None
    confidence_score: Optional[float] = None
    valuation_date: Optional[datetime] = None
    request_date: Optional[datetime] = None
    message: Optional[str] = None

    def to_entity(self) -> AutoValuation:
        return AutoValuation(**self.model_dump(exclude_none=True))


class AutoValuationUpdate(BaseModel):
    type: Optional[CollateralType] = None
    location: Optional[str] = None
    description: Optional[str] = None
    status: Optional[ValuationStatus] = None
    estimated_value: Optional[Decimal] = None
    low_range: Optional[Decimal] = None
    high_range: Optional[Decimal] = None
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    methodology: Optional[str] = None
    confidence_score: Optional[float] = None
    valuation_date: Optional[datetime] = None
    request_date: Optional[datetime] = None
    message: Optional[str] = None


# ---------------------------------------------------------------------------
# Collection queries (before /{valuation_id})
# ---------------------------------------------------------------------------


@router.get("/statuses", response_model=List[ValuationStatus])
async def list_statuses(_: Principal = Depends(require_token)):
    return valuation_statuses()


@router.get("/between", response_model=List[AutoValuation])
async def list_between(
    start: datetime = Query(...),
    end: datetime = Query(...),
    history: AutoValuationHistory = Depends(get_valuations),
    _: Principal = Depends(require_token),
):
    return await history.between(start, end)


@router.get("/collateral/{collateral_id}", response_model=List[AutoValuation])
async def list_by_collateral(
    collateral_id: str,
    history: AutoValuationHistory = Depends(get_valuations),
    _: Principal = Depends(require_token),
):
    return await history.by_collateral(collateral_id)


@router.get("/collateral/{collateral_id}/latest", response_model=AutoValuation)
async def latest_for_collateral(
    collateral_id: str,
    history: AutoValuationHistory = Depends(get_valuations),
    _: Principal = Depends(require_token),
):
    return await history.latest(collateral_id)


@router.get("/type/{collateral_type}", response_model=List[AutoValuation])
async def list_by_type(
    collateral_type: CollateralType,
    history: AutoValuationHistory = Depends(get_valuations),
    _: Principal = Depends(require_token),
):
    return await history.by_type(collateral_type)


@router.get("/location/{location}", response_model=List[AutoValuation])
async def list_by_location(
    location: str,
    history: AutoValuationHistory = Depends(get_valuations),
    _: Principal = Depends(require_token),
):
    return await history.by_location(location)


@router.get("/status/{valuation_status}", response_model=List[AutoValuation])
async def list_by_status(
    valuation_status: ValuationStatus,
    history: AutoValuationHistory = Depends(get_valuations),
    _: Principal = Depends(require_token),
):
    return await history.by_status(valuation_status)


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


@router.post("", response_model=AutoValuation, status_code=status.HTTP_201_CREATED)
async def create_valuation(
    body: AutoValuationCreate,
    history: AutoValuationHistory = Depends(get_valuations),
    principal: Principal = Depends(require_token),
):
    created = await history.create(body.to_entity(), created_by=principal.name)
    audit(
        "AUTO_VALUATION_RECORDED",
        principal,
        created.valuation_id,
        collateral_id=created.collateral_id,
        estimated_value=created.estimated_value,
    )
    return created


@router.get("/{valuation_id}", response_model=AutoValuation)
async def get_valuation(
    valuation_id: str,
    history: AutoValuationHistory = Depends(get_valuations),
    _: Principal = Depends(require_token),
):
    return await history.get(valuation_id)


@router.put("/{valuation_id}", response_model=AutoValuation)
async def update_valuation(
    valuation_id: str,
    body: AutoValuationUpdate,
    history: AutoValuationHistory = Depends(get_valuations),
    principal: Principal = Depends(require_token),
):
    changes = body.model_dump(exclude_unset=True)
    updated = await history.update(valuation_id, changes, updated_by=principal.name)
    audit("AUTO_VALUATION_UPDATED", principal, valuation_id, fields=sorted(changes))
    return updated


@router.delete("/{valuation_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_valuation(
    valuation_id: str,
    history: AutoValuationHistory = Depends(get_valuations),
    principal: Principal = Depends(require_token),
):
    await history.delete(valuation_id)
    audit("AUTO_VALUATION_DELETED", principal, valuation_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
