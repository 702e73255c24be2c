"""Collateral endpoints."""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Response, status
from pydantic import BaseModel, Field

from collateral_domain.enums import CollateralStatus, CollateralType
from collateral_domain.models import Collateral
from collateral_engine.service import (CollateralService, collateral_statuses,
                                       collateral_types)
from common.auth import Principal, require_token
from integrations.valuation.base import Comparables, MarketTrend, TitleVerification

from ..deps import audit, get_service

router = APIRouter(prefix="/api/v1/collaterals", tags=["collaterals"])

# ---------------------------------------------------------------------------
# Schemas
# ---------------------------------------------------------------------------


class CollateralCreate(BaseModel):
    collateral_id: Optional[str] = None
    customer_id: str = Field(..., min_length=1)
    account_id: str = Field(..., min_length=1)
    type: CollateralType = CollateralType.VEHICLE
    description: Optional[str] = None
    estimated_value: Optional[Decimal] = None
    market_value: Decimal = Field(..., ge=0)
    currency: str = Field(default="USD", min_length=3, max_length=3)
    status: CollateralStatus = CollateralStatus.ACTIVE
    location: Optional[str] = None
    evaluation_date: Optional[datetime] = None
    legal_description: Optional[str] = None
    ownership_documents: Optional[str] = None
    last_inspection_date: Optional[datetime] = None
    risk_rating: Optional[str] = None

    def to_entity(self) -> Collateral:
        data = self.model_dump(exclude_none=True)
        return Collateral(**data)


class CollateralUpdate(BaseModel):
    customer_id: Optional[str] = None
    account_id: Optional[str] = None
    description: Optional[str] = None
    estimated_value: Optional[Decimal] = None
    market_value: Optional[Decimal] = Field(default=None, ge=0)
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    status: Optional[CollateralStatus] = None
    location: Optional[str] = None
    evaluation_date: Optional[datetime] = None
    legal_description: Optional[str] = None
    ownership_documents: Optional[str] = None
    last_inspection_date: Optional[datetime] = None
    risk_rating: Optional[str] = None


class ValueUpdate(BaseModel):
    market_value: Decimal = Field(..., ge=0)


class RevaluationBody(BaseModel):
    reason: Optional[str] = None


class CreationResultOut(BaseModel):
    collateral: Collateral
    collateral_created: bool
    title_verified: Optional[bool] = None
    title_error: Optional[str] = None
    valuation_applied: bool
    valuation_error: Optional[str] = None


# ---------------------------------------------------------------------------
# Reference data / collection queries (before /{collateral_id})
# ---------------------------------------------------------------------------


@router.get("/types", response_model=List[CollateralType])
async def list_types(_: Principal = Depends(require_token)):
    return collateral_types()


@router.get("/statuses", response_model=List[CollateralStatus])
async def list_statuses(_: Principal = Depends(require_token)):
    return collateral_statuses()


@router.get("/encumbered", response_model=List[Collateral])
async def list_encumbered(
    svc: CollateralService = Depends(get_service),
    _: Principal = Depends(require_token),
):
    return await svc.list_encumbered()


@router.get("/customer/{customer_id}", response_model=List[Collateral])
async def list_by_customer(
    customer_id: str,
    svc: CollateralService = Depends(get_service),
    _: Principal = Depends(require_token),
):
    return await svc.list_by_customer(customer_id)


@router.get("/customer/{customer_id}/available", response_model=List[Collateral])
async def list_available(
    customer_id: str,
    min_value: Decimal = Query(Decimal("0"), ge=0),
    svc: CollateralService = Depends(get_service),
    _: Principal = Depends(require_token),
):
    return await svc.list_available(customer_id, min_value)


@router.get("/account/{account_id}", response_model=List[Collateral])
async def list_by_account(
    account_id: str,
    svc: CollateralService = Depends(get_service),
    _: Principal = Depends(require_token),
):
    return await svc.list_by_account(account_id)


@router.get("/status/{collateral_status}", response_model=List[Collateral])
async def list_by_status(
    collateral_status: CollateralStatus,
    svc: CollateralService = Depends(get_service),
    _: Principal = Depends(require_token),
):
    return await svc.list_by_status(collateral_status)


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


@router.post("", response_model=Collateral, status_code=status.HTTP_201_CREATED)
async def create_collateral(
    body: CollateralCreate,
    svc: CollateralService = Depends(get_service),
    principal: Principal = Depends(require_token),
):
    created = await svc.create(body.to_entity(), created_by=principal.name)
    audit("COLLATERAL_CREATED", principal, created.collateral_id, market_value=created.market_value)
    return created


@router.post(
    "/create-with-validation",
    response_model=CreationResultOut,
    status_code=status.HTTP_201_CREATED,
)
async def create_with_validation(
    body: CollateralCreate,
    svc: CollateralService = Depends(get_service),
    principal: Principal = Depends(require_token),
):
    result = await svc.create_with_validation(body.to_entity(), created_by=principal.name)
    audit(
        "COLLATERAL_CREATED",
        principal,
        result.collateral.collateral_id,
        title_verified=result.title_verified,
        valuation_applied=result.valuation_applied,
    )
    return CreationResultOut(
        collateral=result.collateral,
        collateral_created=result.collateral_created,
        title_verified=result.title_verified,
        title_error=result.title_error,
        valuation_applied=result.valuation_applied,
        valuation_error=result.valuation_error,
    )


@router.get("/{collateral_id}", response_model=Collateral)
async def get_collateral(
    collateral_id: str,
    svc: CollateralService = Depends(get_service),
    _: Principal = Depends(require_token),
):
    return await svc.get(collateral_id)


@router.put("/{collateral_id}", response_model=Collateral)
async def update_collateral(
    collateral_id: str,
    body: CollateralUpdate,
    svc: CollateralService = Depends(get_service),
    principal: Principal = Depends(require_token),
):
    changes = body.model_dump(exclude_unset=True)
    updated = await svc.update(collateral_id, changes, updated_by=principal.name)
    audit("COLLATERAL_UPDATED", principal, collateral_id, fields=sorted(changes))
    return updated


@router.patch("/{collateral_id}/value", response_model=Collateral)
async def update_value(
    collateral_id: str,
    body: ValueUpdate,
    svc: CollateralService = Depends(get_service),
    principal: Principal = Depends(require_token),
):
    updated = await svc.update_value(collateral_id, body.market_value, updated_by=principal.name)
    audit("COLLATERAL_VALUE_UPDATED", principal, collateral_id, market_value=body.market_value)
    return updated


@router.delete("/{collateral_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_collateral(
    collateral_id: str,
    svc: CollateralService = Depends(get_service),
    principal: Principal = Depends(require_token),
):
    removed = await svc.delete(collateral_id)
    audit("COLLATERAL_DELETED", principal, collateral_id, encumbrances_removed=removed)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ---------------------------------------------------------------------------
# Provider-backed
# ---------------------------------------------------------------------------


@router.post("/{collateral_id}/auto-valuation", response_model=Collateral)
async def request_auto_valuation(
    collateral_id: str,
    svc: CollateralService = Depends(get_service),
    principal: Principal = Depends(require_token),
):
    updated = await svc.request_auto_valuation(collateral_id, requested_by=principal.name)
    audit("COLLATERAL_VALUE_UPDATED", principal, collateral_id, market_value=updated.market_value)
    return updated


@router.post("/{collateral_id}/revaluation", response_model=Collateral)
async def request_revaluation(
    collateral_id: str,
    body: Optional[RevaluationBody] = None,
    svc: CollateralService = Depends(get_service),
    principal: Principal = Depends(require_token),
):
    reason = body.reason if body else None
    updated = await svc.request_revaluation(collateral_id, reason, requested_by=principal.name)
    audit(
        "COLLATERAL_VALUE_UPDATED",
        principal,
        collateral_id,
        market_value=updated.market_value,
        reason=reason,
    )
    return updated


@router.post("/{collateral_id}/verify-title", response_model=TitleVerification)
async def verify_title(
    collateral_id: str,
    svc: CollateralService = Depends(get_service),
    principal: Principal = Depends(require_token),
):
    return await svc.verify_title(collateral_id, requested_by=principal.name)


@router.get("/{collateral_id}/market-trends", response_model=MarketTrend)
async def market_trends(
    collateral_id: str,
    svc: CollateralService = Depends(get_service),
    _: Principal = Depends(require_token),
):
    return await svc.market_trends(collateral_id)


@router.get("/{collateral_id}/comparables", response_model=Comparables)
async def comparables(
    collateral_id: str,
    svc: CollateralService = Depends(get_service),
    _: Principal = Depends(require_token),
):
    return await svc.comparables(collateral_id)
