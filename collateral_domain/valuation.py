"""Request / response schemas for auto-loan valuation."""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field

from .enums import (DemandLevel, RiskTier, SeasonalTrend, ValuationSource,
                    ValuationStatus)


class VehicleAppraisalRequest(BaseModel):
    collateral_id: Optional[str] = None
    # free-form so unsupported asset classes reach the engine and are rejected there
    collateral_type: str = "VEHICLE"
    vin: Optional[str] = None
    year: int
    make: str = Field(..., min_length=1)
    model: str = Field(..., min_length=1)
    trim: Optional[str] = None
    mileage: Optional[int] = Field(default=None, ge=0)
    condition: Optional[str] = None
    zip_code: Optional[str] = None

    def description(self) -> str:
        return (
            f"{self.year} {self.make} {self.model} {self.trim or ''}, "
            f"VIN: {self.vin or ''}, Mileage: {self.mileage or 0}"
        )


class VehicleAppraisal(BaseModel):
    collateral_id: Optional[str] = None
    vin: Optional[str] = None
    year: int
    make: str
    model: str
    status: ValuationStatus
    source: ValuationSource
    market_value: Decimal
    loan_value: Decimal
    currency: str = "USD"
    demand_level: DemandLevel
    seasonal_trend: SeasonalTrend
    monthly_depreciation_rate: Decimal
    estimated_monthly_depreciation: Decimal
    condition: Optional[str] = None
    appraisal_date: datetime
    message: Optional[str] = None


class MarketAnalysis(BaseModel):
    make: str
    model: str
    year: int
    zip_code: Optional[str] = None
    status: str
    message: str
    average_market_value: Optional[Decimal] = None
    price_change_percent: Optional[float] = None
    trend_direction: Optional[str] = None
    demand_level: DemandLevel
    average_days_on_market: int
    seasonal_trend: SeasonalTrend
    analysis_date: datetime


class ComparableSalesRequest(BaseModel):
    collateral_id: Optional[str] = None
    year: int
    make: str = Field(..., min_length=1)
    model: str = Field(..., min_length=1)
    mileage: Optional[int] = Field(default=None, ge=0)
    zip_code: Optional[str] = None


class VehicleComparable(BaseModel):
    vin: Optional[str] = None
    sale_price: Decimal
    sale_date: Optional[datetime] = None
    location: Optional[str] = None
    similarity_score: Optional[float] = None


class ComparableSales(BaseModel):
    collateral_id: Optional[str] = None
    status: str
    message: str
    estimated_value: Decimal
    comparables: List[VehicleComparable] = Field(default_factory=list)
    average_comparable_price: Optional[Decimal] = None
    price_range_high: Optional[Decimal] = None
    price_range_low: Optional[Decimal] = None


class LoanToValueRequest(BaseModel):
    collateral_id: Optional[str] = None
    loan_amount: Decimal = Field(..., ge=0)
    vehicle_value: Decimal


class LoanToValue(BaseModel):
    collateral_id: Optional[str] = None
    loan_amount: Decimal
    vehicle_value: Decimal
    ltv_ratio: Decimal
    ltv_percentage: Decimal
    risk_tier: RiskTier
    approved: bool
    max_recommended_loan: Decimal
    calculation_date: datetime


class DepreciationForecastRequest(BaseModel):
    collateral_id: Optional[str] = None
    year: int
    make: str = Field(..., min_length=1)
    model: Optional[str] = None
    current_value: Decimal
    forecast_months: int
    # overrides the rate derived from age / demand when supplied
    monthly_rate: Optional[Decimal] = Field(default=None, ge=0, lt=1)


class MonthlyDepreciation(BaseModel):
    month: int
    projected_value: Decimal
    depreciation_amount: Decimal


class DepreciationForecast(BaseModel):
    collateral_id: Optional[str] = None
    current_value: Decimal
    projected_value: Decimal
    total_depreciation: Decimal
    depreciation_percentage: Decimal
    monthly_rate: Decimal
    forecast_months: int
    monthly_forecast: List[MonthlyDepreciation]
    forecast_date: datetime
