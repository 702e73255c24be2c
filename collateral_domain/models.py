"""Domain entities for collateral, encumbrances and their valuation / title history.

Entities are plain (non-table) SQLModel classes so they validate input and can
be deep-copied freely; persistence rows live in :mod:`collateral_domain.records`.
All timestamps are naive UTC.
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
import uuid
from typing import Optional

from pydantic import field_validator
from sqlmodel import Field, SQLModel

from common.datetime import to_naive_utc, utcnow

from .enums import (CollateralStatus, CollateralType, EncumbranceStatus,
                    EncumbranceType, TitleStatus, ValuationStatus)

ZERO = Decimal("0")


def new_id(prefix: str) -> str:
    """``PREFIX-XXXXXXXX`` built from the first 8 hex chars of a UUID4."""
    return f"{prefix}-{uuid.uuid4().hex[:8].upper()}"


def _collateral_id() -> str:
    return new_id("COL")


def _encumbrance_id() -> str:
    return new_id("ENC")


def _valuation_id() -> str:
    return new_id("VAL")


def _title_id() -> str:
    return new_id("TTL")


class Collateral(SQLModel):
    """A vehicle pledged as loan security."""

    collateral_id: str = Field(default_factory=_collateral_id)
    customer_id: str
    account_id: str
    type: CollateralType = CollateralType.VEHICLE
    description: Optional[str] = None
    estimated_value: Optional[Decimal] = None
    market_value: Decimal = Field(default=ZERO, ge=0)

    # derived by the reconciler, never set directly by callers
    encumbered_value: Decimal = ZERO
    available_value: Decimal = ZERO

    currency: str = "USD"
    status: CollateralStatus = CollateralStatus.ACTIVE
    location: Optional[str] = None
    evaluation_date: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    created_by: Optional[str] = None
    updated_by: Optional[str] = None
    legal_description: Optional[str] = None
    ownership_documents: Optional[str] = None
    last_inspection_date: Optional[datetime] = None
    risk_rating: Optional[str] = None

    @field_validator(
        "evaluation_date", "created_at", "updated_at", "last_inspection_date"
    )
    @classmethod
    def _naive_utc(cls, v):
        return to_naive_utc(v)


class Encumbrance(SQLModel):
    """A lien, pledge or other claim against one collateral."""

    encumbrance_id: str = Field(default_factory=_encumbrance_id)
    collateral_id: str
    loan_id: Optional[str] = None
    customer_id: Optional[str] = None
    amount: Decimal
    currency: str = "USD"
    type: EncumbranceType = EncumbranceType.LIEN
    status: EncumbranceStatus = EncumbranceStatus.ACTIVE
    # lower = senior; ordering only
    priority: int = 0
    effective_date: Optional[datetime] = None
    expiry_date: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    released_at: Optional[datetime] = None
    created_by: Optional[str] = None
    updated_by: Optional[str] = None
    description: Optional[str] = None
    legal_reference: Optional[str] = None
    notes: Optional[str] = None

    @field_validator(
        "effective_date", "expiry_date", "created_at", "updated_at", "released_at"
    )
    @classmethod
    def _naive_utc(cls, v):
        return to_naive_utc(v)

    @property
    def contribution(self) -> Decimal:
        """Amount this record adds to its collateral's encumbered value."""
        return self.amount if self.status.contributes else ZERO

    def is_expired(self, as_of: datetime) -> bool:
        return (
            self.status is EncumbranceStatus.ACTIVE
            and self.expiry_date is not None
            and self.expiry_date < as_of
        )


class AutoValuation(SQLModel):
    """One automated appraisal of a collateral, kept as valuation history."""

    valuation_id: str = Field(default_factory=_valuation_id)
    collateral_id: str
    type: CollateralType = CollateralType.VEHICLE
    location: Optional[str] = None
    description: Optional[str] = None
    status: ValuationStatus = ValuationStatus.PENDING
    estimated_value: Optional[Decimal] = None
    low_range: Optional[Decimal] = None
    high_range: Optional[Decimal] = None
    currency: str = "USD"
    methodology: Optional[str] = None
    confidence_score: Optional[float] = None
    valuation_date: Optional[datetime] = None
    request_date: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    created_by: Optional[str] = None
    updated_by: Optional[str] = None
    message: Optional[str] = None

    @field_validator("status", mode="before")
    @classmethod
    def _strip_prefix(cls, v):
        # provider spells statuses VALUATION_COMPLETED, VALUATION_FAILED, ...
        if isinstance(v, str) and v.startswith("VALUATION_"):
            return v[len("VALUATION_"):]
        return v

    @field_validator("valuation_date", "request_date", "created_at", "updated_at")
    @classmethod
    def _naive_utc(cls, v):
        return to_naive_utc(v)

    @property
    def recorded_at(self) -> datetime:
        return self.valuation_date or self.created_at


class TitleRecord(SQLModel):
    """A title registry entry for a collateral, kept as verification history."""

    title_id: str = Field(default_factory=_title_id)
    collateral_id: str
    title_number: Optional[str] = None
    legal_description: Optional[str] = None
    status: TitleStatus = TitleStatus.PENDING_VERIFICATION
    current_owner: Optional[str] = None
    previous_owner: Optional[str] = None
    registration_date: Optional[datetime] = None
    is_valid: bool = False
    verification_date: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    created_by: Optional[str] = None
    updated_by: Optional[str] = None
    message: Optional[str] = None
    notes: Optional[str] = None

    @field_validator("registration_date", "verification_date", "created_at", "updated_at")
    @classmethod
    def _naive_utc(cls, v):
        return to_naive_utc(v)

    @property
    def recorded_at(self) -> datetime:
        return self.verification_date or self.created_at

    @property
    def verified(self) -> bool:
        return self.status is TitleStatus.VERIFIED and self.is_valid
