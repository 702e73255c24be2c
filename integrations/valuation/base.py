"""Provider contracts and wire models for valuation / title collaborators.

Payloads are camelCase on the wire; the models accept either spelling.
Providers raise :class:`collateral_engine.errors.CollaboratorUnavailable`
instead of returning canned defaults, so callers decide what a failure means.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Protocol

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from collateral_domain.enums import TitleStatus, ValuationStatus

__all__ = [
    "ComparableSale",
    "Comparables",
    "MarketTrend",
    "RevaluationResult",
    "TitleRegistry",
    "TitleVerification",
    "UNAVAILABLE",
    "ValuationProvider",
    "ValuationResult",
]

UNAVAILABLE = "UNAVAILABLE"


class _Wire(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _valuation_status(value):
    # provider spells statuses VALUATION_COMPLETED, VALUATION_FAILED, ...
    if isinstance(value, str) and value.startswith("VALUATION_"):
        return value[len("VALUATION_"):]
    return value


class ValuationResult(_Wire):
    collateral_id: Optional[str] = None
    status: ValuationStatus
    estimated_value: Optional[Decimal] = None
    low_range: Optional[Decimal] = None
    high_range: Optional[Decimal] = None
    currency: str = "USD"
    methodology: Optional[str] = None
    valuation_date: Optional[datetime] = None
    message: Optional[str] = None
    confidence_score: Optional[float] = None

    @field_validator("status", mode="before")
    @classmethod
    def _strip_prefix(cls, v):
        return _valuation_status(v)


class MarketTrend(_Wire):
    type: Optional[str] = None
    location: Optional[str] = None
    status: str
    message: Optional[str] = None
    average_value: Optional[Decimal] = None
    price_change: Optional[float] = None
    trend_direction: Optional[str] = None
    analysis_date: Optional[datetime] = None

    @property
    def available(self) -> bool:
        return self.status != UNAVAILABLE


class ComparableSale(_Wire):
    property_id: Optional[str] = None
    address: Optional[str] = None
    type: Optional[str] = None
    value: Decimal
    sale_date: Optional[datetime] = None
    similarity_score: Optional[float] = None


class Comparables(_Wire):
    collateral_id: Optional[str] = None
    status: str
    message: Optional[str] = None
    comparables: List[ComparableSale] = Field(default_factory=list)

    @property
    def available(self) -> bool:
        return self.status != UNAVAILABLE


class RevaluationResult(_Wire):
    collateral_id: Optional[str] = None
    status: ValuationStatus
    previous_value: Optional[Decimal] = None
    new_value: Optional[Decimal] = None
    currency: str = "USD"
    reason: Optional[str] = None
    revaluation_date: Optional[datetime] = None
    message: Optional[str] = None
    value_change_percentage: Optional[float] = None

    @field_validator("status", mode="before")
    @classmethod
    def _strip_prefix(cls, v):
        return _valuation_status(v)


class TitleVerification(_Wire):
    collateral_id: Optional[str] = None
    status: TitleStatus
    title_number: Optional[str] = None
    message: Optional[str] = None
    is_valid: bool = False
    registered_owner: Optional[str] = None

    @property
    def verified(self) -> bool:
        return self.status is TitleStatus.VERIFIED and self.is_valid


class ValuationProvider(Protocol):
    """Auto-valuation provider (appraisal, trends, comparables, revaluation)."""

    async def appraise(
        self,
        collateral_id: Optional[str],
        collateral_type: str,
        location: Optional[str],
        description: Optional[str],
    ) -> ValuationResult:
        ...

    async def market_trends(self, collateral_type: str, location: Optional[str]) -> MarketTrend:
        ...

    async def comparables(
        self,
        collateral_id: Optional[str],
        collateral_type: str,
        location: Optional[str],
        estimated_value: Decimal,
    ) -> Comparables:
        ...

    async def revalue(self, collateral_id: str, reason: Optional[str]) -> RevaluationResult:
        ...


class TitleRegistry(Protocol):
    async def verify_title(
        self, collateral_id: str, legal_description: Optional[str]
    ) -> TitleVerification:
        ...
