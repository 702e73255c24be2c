"""Auto-loan valuation arithmetic.

All helpers are pure and deterministic so they can be unit-tested without
side-effects: given identical inputs (including ``current_year``) they return
identical outputs. Money is ``Decimal`` throughout.
"""
from __future__ import annotations

from datetime import date
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import List, NamedTuple, Optional

from collateral_domain.enums import DemandLevel, RiskTier

from .errors import InvalidInput

__all__ = [
    "DepreciationPoint",
    "demand_level",
    "depreciation_forecast",
    "estimate_market_value",
    "is_approved",
    "ltv_ratio",
    "max_recommended_loan",
    "monthly_depreciation_rate",
    "risk_tier",
    "to_decimal",
]

CENT = Decimal("0.01")
RATIO_PLACES = Decimal("0.0001")

MAX_LTV = Decimal("0.85")
_TIER_BOUNDS = (
    (Decimal("0.70"), RiskTier.LOW),
    (Decimal("0.80"), RiskTier.MEDIUM),
    (MAX_LTV, RiskTier.HIGH),
)

BASE_VEHICLE_VALUE = Decimal("25000")
_MIN_AGE_MULTIPLIER = Decimal("0.2")
_AGE_STEP = Decimal("0.12")

_HIGH_DEMAND = frozenset({"TOYOTA", "HONDA", "LEXUS", "ACURA"})
_MEDIUM_DEMAND = frozenset({"FORD", "CHEVROLET", "NISSAN", "HYUNDAI"})

_BRAND_MULTIPLIER = {
    DemandLevel.HIGH: Decimal("1.2"),
    DemandLevel.MEDIUM: Decimal("1.0"),
    DemandLevel.LOW: Decimal("0.8"),
}
# popular brands hold value longer
_DEPRECIATION_MULTIPLIER = {
    DemandLevel.HIGH: Decimal("0.8"),
    DemandLevel.MEDIUM: Decimal("1.0"),
    DemandLevel.LOW: Decimal("1.2"),
}


class DepreciationPoint(NamedTuple):
    month: int
    projected_value: Decimal
    depreciation_amount: Decimal


def to_decimal(value, name: str = "value") -> Decimal:
    """Coerce *value* to a finite ``Decimal``; anything else is ``InvalidInput``."""
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value))
        except (InvalidOperation, ValueError) as exc:
            raise InvalidInput(f"{name} is not a number: {value!r}") from exc
    if not result.is_finite():
        raise InvalidInput(f"{name} must be a finite number")
    return result


def _age(year: int, current_year: Optional[int]) -> int:
    return (current_year if current_year is not None else date.today().year) - year


# ---------------------------------------------------------------------------
# Loan-to-value
# ---------------------------------------------------------------------------

def ltv_ratio(loan_amount, vehicle_value) -> Decimal:
    """``loan_amount / vehicle_value`` rounded half-up to 4 places."""
    vehicle_value = to_decimal(vehicle_value)
    if vehicle_value <= 0:
        raise InvalidInput("vehicle value must be greater than zero")
    return (to_decimal(loan_amount) / vehicle_value).quantize(RATIO_PLACES, rounding=ROUND_HALF_UP)


def risk_tier(ratio) -> RiskTier:
    """Classify an LTV ratio; each bound is inclusive."""
    ratio = to_decimal(ratio)
    for bound, tier in _TIER_BOUNDS:
        if ratio <= bound:
            return tier
    return RiskTier.EXCESSIVE


def is_approved(ratio) -> bool:
    return to_decimal(ratio) <= MAX_LTV


def max_recommended_loan(vehicle_value) -> Decimal:
    return to_decimal(vehicle_value) * MAX_LTV


# ---------------------------------------------------------------------------
# Market value heuristics
# ---------------------------------------------------------------------------

def demand_level(make: str) -> DemandLevel:
    brand = (make or "").strip().upper()
    if brand in _HIGH_DEMAND:
        return DemandLevel.HIGH
    if brand in _MEDIUM_DEMAND:
        return DemandLevel.MEDIUM
    return DemandLevel.LOW


def estimate_market_value(
    year: int, make: str, model: str | None = None, *, current_year: Optional[int] = None
) -> Decimal:
    """Base value x brand multiplier x age multiplier, rounded to cents.

    ``model`` is accepted for signature parity with provider lookups; the
    heuristic does not differentiate between models.
    """
    age = _age(year, current_year)
    age_multiplier = max(_MIN_AGE_MULTIPLIER, 1 - age * _AGE_STEP)
    value = BASE_VEHICLE_VALUE * _BRAND_MULTIPLIER[demand_level(make)] * age_multiplier
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def monthly_depreciation_rate(
    year: int, make: str, *, current_year: Optional[int] = None
) -> Decimal:
    age = _age(year, current_year)
    if age < 2:
        base = Decimal("0.015")
    elif age < 5:
        base = Decimal("0.010")
    else:
        base = Decimal("0.008")
    return base * _DEPRECIATION_MULTIPLIER[demand_level(make)]


# ---------------------------------------------------------------------------
# Forecasting
# ---------------------------------------------------------------------------

def depreciation_forecast(current_value, months: int, rate) -> List[DepreciationPoint]:
    """Monthly compounding decay schedule.

    Each month's value is the previous month's value times ``1 - rate``,
    rounded half-up to cents before the next period is computed.
    """
    current_value = to_decimal(current_value)
    if months <= 0:
        raise InvalidInput("forecast months must be greater than zero")
    if current_value <= 0:
        raise InvalidInput("current value must be greater than zero")
    factor = 1 - to_decimal(rate)

    points: List[DepreciationPoint] = []
    value = current_value
    for month in range(1, months + 1):
        value = (value * factor).quantize(CENT, rounding=ROUND_HALF_UP)
        points.append(DepreciationPoint(month, value, current_value - value))
    return points
