"""Deterministic in-process providers for local runs and tests.

No network access. Failures can be injected per operation through the
``fail`` argument or the ``MOCK_VALUATION_FAIL`` env variable (comma separated
operation names, e.g. ``"appraise,revalue"``).
"""

from __future__ import annotations

import asyncio
import os
from datetime import timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional

from collateral_domain.enums import TitleStatus, ValuationStatus
from collateral_engine.errors import CollaboratorUnavailable
from common.datetime import utcnow

from . import PRODUCT_AUTO_VALUATION, PRODUCT_TITLE_REGISTRY
from .base import (ComparableSale, Comparables, MarketTrend,
                   RevaluationResult, TitleVerification, ValuationResult)

__all__ = ["MockTitleRegistry", "MockValuationProvider"]

_CENT = Decimal("0.01")


def _fail_set(fail: Optional[Iterable[str]]) -> set:
    if fail is None:
        fail = [f for f in os.getenv("MOCK_VALUATION_FAIL", "").split(",") if f]
    return {f.strip() for f in fail}


class MockValuationProvider:
    """Returns a fixed appraisal value with +/-10 % range and canned market data."""

    def __init__(
        self,
        value: Decimal = Decimal("20000.00"),
        *,
        fail: Optional[Iterable[str]] = None,
        latency: float = 0.0,
    ) -> None:
        self.value = Decimal(value)
        self.fail = _fail_set(fail)
        self.latency = latency
        self.calls: list = []

    async def _call(self, operation: str) -> None:
        self.calls.append(operation)
        if self.latency:
            await asyncio.sleep(self.latency)
        if operation in self.fail:
            raise CollaboratorUnavailable(PRODUCT_AUTO_VALUATION, f"mock failure for {operation}")

    async def appraise(self, collateral_id, collateral_type, location, description) -> ValuationResult:
        await self._call("appraise")
        return ValuationResult(
            collateral_id=collateral_id,
            status=ValuationStatus.COMPLETED,
            estimated_value=self.value,
            low_range=(self.value * Decimal("0.9")).quantize(_CENT, rounding=ROUND_HALF_UP),
            high_range=(self.value * Decimal("1.1")).quantize(_CENT, rounding=ROUND_HALF_UP),
            methodology="MOCK",
            valuation_date=utcnow(),
            message="mock valuation",
            confidence_score=0.9,
        )

    async def market_trends(self, collateral_type, location) -> MarketTrend:
        await self._call("market_trends")
        return MarketTrend(
            type=collateral_type,
            location=location,
            status="SUCCESS",
            message="mock market trends",
            average_value=self.value,
            price_change=1.5,
            trend_direction="UP",
            analysis_date=utcnow(),
        )

    async def comparables(self, collateral_id, collateral_type, location, estimated_value) -> Comparables:
        await self._call("comparables")
        now = utcnow()
        sales = [
            ComparableSale(
                property_id=f"MOCK-{i}",
                address=location,
                type=collateral_type,
                value=(Decimal(estimated_value) * factor).quantize(_CENT, rounding=ROUND_HALF_UP),
                sale_date=now - timedelta(days=30 * i),
                similarity_score=score,
            )
            for i, (factor, score) in enumerate(
                ((Decimal("0.95"), 0.92), (Decimal("1.00"), 0.97), (Decimal("1.05"), 0.90)), start=1
            )
        ]
        return Comparables(
            collateral_id=collateral_id, status="SUCCESS", message="mock comparables", comparables=sales
        )

    async def revalue(self, collateral_id, reason) -> RevaluationResult:
        await self._call("revalue")
        return RevaluationResult(
            collateral_id=collateral_id,
            status=ValuationStatus.COMPLETED,
            new_value=self.value,
            reason=reason,
            revaluation_date=utcnow(),
            message="mock revaluation",
        )


class MockTitleRegistry:
    """Verifies any collateral that carries a legal description."""

    def __init__(self, *, fail: bool = False, owner: str = "REGISTERED OWNER") -> None:
        self.fail = fail
        self.owner = owner

    async def verify_title(self, collateral_id, legal_description) -> TitleVerification:
        if self.fail:
            raise CollaboratorUnavailable(PRODUCT_TITLE_REGISTRY, "mock failure for verify_title")
        if not legal_description:
            return TitleVerification(
                collateral_id=collateral_id,
                status=TitleStatus.INVALID,
                message="legal description missing",
            )
        return TitleVerification(
            collateral_id=collateral_id,
            status=TitleStatus.VERIFIED,
            title_number=f"T-{collateral_id}",
            message="mock title verified",
            is_valid=True,
            registered_owner=self.owner,
        )
