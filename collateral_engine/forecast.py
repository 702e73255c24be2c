"""Vehicle appraisal, market analysis and depreciation forecasting.

Independent of the ledger: nothing here reads or writes collateral state.
Provider lookups are optional enrichment. Appraisal falls back to the
heuristic estimate and market / comparable lookups degrade to an UNAVAILABLE
marker when the provider is missing or fails.
"""
from __future__ import annotations

import logging
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, List, Optional

from collateral_domain.enums import (CollateralType, DemandLevel,
                                     SeasonalTrend, ValuationSource,
                                     ValuationStatus)
from collateral_domain.valuation import (ComparableSales,
                                         ComparableSalesRequest,
                                         DepreciationForecast,
                                         DepreciationForecastRequest,
                                         LoanToValue, LoanToValueRequest,
                                         MarketAnalysis, MonthlyDepreciation,
                                         VehicleAppraisal,
                                         VehicleAppraisalRequest,
                                         VehicleComparable)
from collateral_observability.metrics import (auto_loan_ltv_decisions_total,
                                              auto_loan_ltv_ratio,
                                              valuation_fallback_total)
from common.datetime import utcnow
from integrations.valuation.base import UNAVAILABLE, ValuationProvider

from . import value_math
from .errors import CollaboratorUnavailable, ValidationError
from .stores.base import bounded

__all__ = ["ValuationForecastEngine", "average_days_on_market", "seasonal_trend"]

_LOG = logging.getLogger(__name__)

LOAN_VALUE_RATIO = Decimal("0.80")
_HUNDRED = Decimal("100")

_DAYS_ON_MARKET = {DemandLevel.HIGH: 25, DemandLevel.MEDIUM: 35, DemandLevel.LOW: 50}


def seasonal_trend(month: int) -> SeasonalTrend:
    if 3 <= month <= 5:
        return SeasonalTrend.SPRING
    if 6 <= month <= 8:
        return SeasonalTrend.SUMMER_PEAK
    if 9 <= month <= 11:
        return SeasonalTrend.FALL_CLEARANCE
    return SeasonalTrend.WINTER_SLOW


def average_days_on_market(make: str) -> int:
    return _DAYS_ON_MARKET[value_math.demand_level(make)]


def _cents(value: Decimal) -> Decimal:
    return value.quantize(value_math.CENT, rounding=ROUND_HALF_UP)


class ValuationForecastEngine:
    def __init__(
        self,
        provider: Optional[ValuationProvider] = None,
        *,
        timeout: Optional[float] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.provider = provider
        self.timeout = timeout
        self.clock = clock

    async def _provider_call(self, awaitable):
        return await bounded(awaitable, self.timeout, "auto-valuation")

    # ------------------------------------------------------------------
    # Appraisal
    # ------------------------------------------------------------------

    async def appraise(self, request: VehicleAppraisalRequest) -> VehicleAppraisal:
        if request.collateral_type.strip().upper() != CollateralType.VEHICLE.value:
            raise ValidationError("only vehicle collateral is supported for auto loan appraisals")

        now = self.clock()
        market_value = value_math.estimate_market_value(
            request.year, request.make, request.model, current_year=now.year
        )
        source = ValuationSource.ESTIMATE
        message = "Estimated from vehicle age and brand demand"

        if self.provider is not None:
            try:
                result = await self._provider_call(
                    self.provider.appraise(
                        request.collateral_id,
                        CollateralType.VEHICLE.value,
                        request.zip_code,
                        request.description(),
                    )
                )
            except CollaboratorUnavailable as exc:
                valuation_fallback_total.labels(operation="appraise").inc()
                _LOG.warning(
                    "appraisal provider unavailable, using estimate: %s",
                    exc,
                    extra={"collateral_id": request.collateral_id},
                )
            else:
                if (
                    result.status is ValuationStatus.COMPLETED
                    and result.estimated_value is not None
                    and result.estimated_value > 0
                ):
                    market_value = _cents(result.estimated_value)
                    source = ValuationSource.PROVIDER
                    message = result.message or "Vehicle appraisal completed"
                else:
                    valuation_fallback_total.labels(operation="appraise").inc()
                    message = f"Provider returned {result.status.value}; estimate used"

        rate = value_math.monthly_depreciation_rate(request.year, request.make, current_year=now.year)
        return VehicleAppraisal(
            collateral_id=request.collateral_id,
            vin=request.vin,
            year=request.year,
            make=request.make,
            model=request.model,
            status=ValuationStatus.COMPLETED,
            source=source,
            market_value=market_value,
            loan_value=_cents(market_value * LOAN_VALUE_RATIO),
            demand_level=value_math.demand_level(request.make),
            seasonal_trend=seasonal_trend(now.month),
            monthly_depreciation_rate=rate,
            estimated_monthly_depreciation=_cents(market_value * rate),
            condition=request.condition,
            appraisal_date=now,
            message=message,
        )

    # ------------------------------------------------------------------
    # Market data
    # ------------------------------------------------------------------

    async def market_analysis(
        self, make: str, model: str, year: int, zip_code: Optional[str] = None
    ) -> MarketAnalysis:
        now = self.clock()
        analysis = MarketAnalysis(
            make=make,
            model=model,
            year=year,
            zip_code=zip_code,
            status=UNAVAILABLE,
            message="Market trends service unavailable",
            demand_level=value_math.demand_level(make),
            average_days_on_market=average_days_on_market(make),
            seasonal_trend=seasonal_trend(now.month),
            analysis_date=now,
        )
        if self.provider is None:
            valuation_fallback_total.labels(operation="market_trends").inc()
            return analysis
        try:
            trend = await self._provider_call(
                self.provider.market_trends(CollateralType.VEHICLE.value, zip_code)
            )
        except CollaboratorUnavailable as exc:
            valuation_fallback_total.labels(operation="market_trends").inc()
            _LOG.warning("market trends unavailable: %s", exc)
            return analysis
        if not trend.available:
            valuation_fallback_total.labels(operation="market_trends").inc()
            return analysis

        analysis.status = "SUCCESS"
        analysis.message = "Vehicle market analysis completed"
        analysis.average_market_value = trend.average_value
        analysis.price_change_percent = trend.price_change
        analysis.trend_direction = trend.trend_direction
        return analysis

    async def comparable_sales(self, request: ComparableSalesRequest) -> ComparableSales:
        estimated = value_math.estimate_market_value(
            request.year, request.make, request.model, current_year=self.clock().year
        )
        empty = ComparableSales(
            collateral_id=request.collateral_id,
            status=UNAVAILABLE,
            message="Comparable sales service unavailable",
            estimated_value=estimated,
        )
        if self.provider is None:
            valuation_fallback_total.labels(operation="comparables").inc()
            return empty
        try:
            found = await self._provider_call(
                self.provider.comparables(
                    request.collateral_id, CollateralType.VEHICLE.value, request.zip_code, estimated
                )
            )
        except CollaboratorUnavailable as exc:
            valuation_fallback_total.labels(operation="comparables").inc()
            _LOG.warning("comparable sales unavailable: %s", exc)
            return empty
        if not found.available:
            valuation_fallback_total.labels(operation="comparables").inc()
            return empty

        comparables = [
            VehicleComparable(
                vin=c.property_id,
                sale_price=c.value,
                sale_date=c.sale_date,
                location=c.address,
                similarity_score=c.similarity_score,
            )
            for c in found.comparables
        ]
        prices: List[Decimal] = [c.sale_price for c in comparables]
        return ComparableSales(
            collateral_id=request.collateral_id,
            status=found.status,
            message=found.message or "Comparable sales retrieved",
            estimated_value=estimated,
            comparables=comparables,
            average_comparable_price=_cents(sum(prices) / len(prices)) if prices else None,
            price_range_high=max(prices) if prices else None,
            price_range_low=min(prices) if prices else None,
        )

    # ------------------------------------------------------------------
    # Pure calculations
    # ------------------------------------------------------------------

    def loan_to_value(self, request: LoanToValueRequest) -> LoanToValue:
        ratio = value_math.ltv_ratio(request.loan_amount, request.vehicle_value)
        tier = value_math.risk_tier(ratio)
        approved = value_math.is_approved(ratio)

        auto_loan_ltv_decisions_total.labels(
            risk_tier=tier.value, approved=str(approved).lower()
        ).inc()
        if request.collateral_id:
            auto_loan_ltv_ratio.labels(collateral_id=request.collateral_id).set(float(ratio))

        return LoanToValue(
            collateral_id=request.collateral_id,
            loan_amount=request.loan_amount,
            vehicle_value=request.vehicle_value,
            ltv_ratio=ratio,
            ltv_percentage=ratio * _HUNDRED,
            risk_tier=tier,
            approved=approved,
            max_recommended_loan=value_math.max_recommended_loan(request.vehicle_value),
            calculation_date=self.clock(),
        )

    def depreciation_forecast(self, request: DepreciationForecastRequest) -> DepreciationForecast:
        now = self.clock()
        rate = request.monthly_rate
        if rate is None:
            rate = value_math.monthly_depreciation_rate(request.year, request.make, current_year=now.year)
        points = value_math.depreciation_forecast(request.current_value, request.forecast_months, rate)

        final_value = points[-1].projected_value
        total = request.current_value - final_value
        percentage = (total / request.current_value).quantize(
            value_math.RATIO_PLACES, rounding=ROUND_HALF_UP
        ) * _HUNDRED
        return DepreciationForecast(
            collateral_id=request.collateral_id,
            current_value=request.current_value,
            projected_value=final_value,
            total_depreciation=total,
            depreciation_percentage=percentage,
            monthly_rate=rate,
            forecast_months=request.forecast_months,
            monthly_forecast=[
                MonthlyDepreciation(
                    month=p.month,
                    projected_value=p.projected_value,
                    depreciation_amount=p.depreciation_amount,
                )
                for p in points
            ],
            forecast_date=now,
        )
