"""Auto-loan valuation endpoints: appraisal, market data, LTV, depreciation."""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query

from collateral_domain.valuation import (ComparableSales,
                                         ComparableSalesRequest,
                                         DepreciationForecast,
                                         DepreciationForecastRequest,
                                         LoanToValue, LoanToValueRequest,
                                         MarketAnalysis, VehicleAppraisal,
                                         VehicleAppraisalRequest)
from collateral_engine.forecast import ValuationForecastEngine
from common.auth import Principal, require_token

from ..deps import get_forecast

router = APIRouter(prefix="/api/v1/auto-loan/valuation", tags=["auto-loan"])


@router.post("/vehicle/appraise", response_model=VehicleAppraisal)
async def appraise_vehicle(
    body: VehicleAppraisalRequest,
    engine: ValuationForecastEngine = Depends(get_forecast),
    _: Principal = Depends(require_token),
):
    return await engine.appraise(body)


@router.get("/vehicle/market-analysis", response_model=MarketAnalysis)
async def market_analysis(
    make: str = Query(..., min_length=1),
    model: str = Query(..., min_length=1),
    year: int = Query(...),
    zip_code: Optional[str] = Query(None),
    engine: ValuationForecastEngine = Depends(get_forecast),
    _: Principal = Depends(require_token),
):
    return await engine.market_analysis(make, model, year, zip_code)


@router.post("/vehicle/comparable-sales", response_model=ComparableSales)
async def comparable_sales(
    body: ComparableSalesRequest,
    engine: ValuationForecastEngine = Depends(get_forecast),
    _: Principal = Depends(require_token),
):
    return await engine.comparable_sales(body)


@router.post("/loan-to-value/calculate", response_model=LoanToValue)
async def loan_to_value(
    body: LoanToValueRequest,
    engine: ValuationForecastEngine = Depends(get_forecast),
    _: Principal = Depends(require_token),
):
    return engine.loan_to_value(body)


@router.post("/depreciation/forecast", response_model=DepreciationForecast)
async def depreciation_forecast(
    body: DepreciationForecastRequest,
    engine: ValuationForecastEngine = Depends(get_forecast),
    _: Principal = Depends(require_token),
):
    return engine.depreciation_forecast(body)
