"""Title registry history endpoints."""
from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel, Field

from collateral_domain.enums import TitleStatus
from collateral_domain.models import TitleRecord
from collateral_engine.history import TitleHistory, title_statuses
from common.auth import Principal, require_token

from ..deps import audit, get_titles

router = APIRouter(prefix="/api/v1/title-registry", tags=["title-registry"])


class TitleRecordCreate(BaseModel):
    title_id: Optional[str] = None
    collateral_id: str = Field(..., min_length=1)
    title_number: Optional[str] = None
    legal_description: Optional[str] = None
    status: TitleStatus = TitleStatus.PENDING_VERIFICATION
    current_owner: Optional[str] = None
    previous_owner: Optional[str] = None
    registration_date: Optional[datetime] = None
    is_valid: bool = False
    verification_date: Optional[datetime] = None
    message: Optional[str] = None
    notes: Optional[str] = None

    def to_entity(self) -> TitleRecord:
        return TitleRecord(**self.model_dump(exclude_none=True))


class TitleRecordUpdate(BaseModel):
    title_number: Optional[str] = None
    legal_description: Optional[str] = None
    status: Optional[TitleStatus] = None
    current_owner: Optional[str] = None
    previous_owner: Optional[str] = None
    registration_date: Optional[datetime] = None
    is_valid: Optional[bool] = None
    verification_date: Optional[datetime] = None
    message: Optional[str] = None
    notes: Optional[str] = None


@router.get("/statuses", response_model=List[TitleStatus])
async def list_statuses(_: Principal = Depends(require_token)):
    return title_statuses()


@router.get("/valid", response_model=List[TitleRecord])
async def list_valid(
    history: TitleHistory = Depends(get_titles),
    _: Principal = Depends(require_token),
):
    return await history.valid_titles()


@router.get("/title-number/{title_number}", response_model=TitleRecord)
async def get_by_title_number(
    title_number: str,
    history: TitleHistory = Depends(get_titles),
    _: Principal = Depends(require_token),
):
    return await history.by_title_number(title_number)


@router.get("/collateral/{collateral_id}", response_model=List[TitleRecord])
async def list_by_collateral(
    collateral_id: str,
    history: TitleHistory = Depends(get_titles),
    _: Principal = Depends(require_token),
):
    return await history.by_collateral(collateral_id)


@router.get("/collateral/{collateral_id}/latest", response_model=TitleRecord)
async def latest_for_collateral(
    collateral_id: str,
    history: TitleHistory = Depends(get_titles),
    _: Principal = Depends(require_token),
):
    return await history.latest(collateral_id)


@router.get("/owner/{owner}", response_model=List[TitleRecord])
async def list_by_owner(
    owner: str,
    history: TitleHistory = Depends(get_titles),
    _: Principal = Depends(require_token),
):
    return await history.by_owner(owner)


@router.get("/owner/{owner}/verified", response_model=List[TitleRecord])
async def list_verified_by_owner(
    owner: str,
    history: TitleHistory = Depends(get_titles),
    _: Principal = Depends(require_token),
):
    return await history.verified_by_owner(owner)


@router.get("/status/{title_status}", response_model=List[TitleRecord])
async def list_by_status(
    title_status: TitleStatus,
    history: TitleHistory = Depends(get_titles),
    _: Principal = Depends(require_token),
):
    return await history.by_status(title_status)


@router.post("", response_model=TitleRecord, status_code=status.HTTP_201_CREATED)
async def create_title(
    body: TitleRecordCreate,
    history: TitleHistory = Depends(get_titles),
    principal: Principal = Depends(require_token),
):
    created = await history.create(body.to_entity(), created_by=principal.name)
    audit(
        "TITLE_RECORDED",
        principal,
        created.title_id,
        collateral_id=created.collateral_id,
        title_number=created.title_number,
    )
    return created


@router.get("/{title_id}", response_model=TitleRecord)
async def get_title(
    title_id: str,
    history: TitleHistory = Depends(get_titles),
    _: Principal = Depends(require_token),
):
    return await history.get(title_id)


@router.put("/{title_id}", response_model=TitleRecord)
async def update_title(
    title_id: str,
    body: TitleRecordUpdate,
    history: TitleHistory = Depends(get_titles),
    principal: Principal = Depends(require_token),
):
    changes = body.model_dump(exclude_unset=True)
    updated = await history.update(title_id, changes, updated_by=principal.name)
    audit("TITLE_UPDATED", principal, title_id, fields=sorted(changes))
    return updated


@router.delete("/{title_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_title(
    title_id: str,
    history: TitleHistory = Depends(get_titles),
    principal: Principal = Depends(require_token),
):
    await history.delete(title_id)
    audit("TITLE_DELETED", principal, title_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
