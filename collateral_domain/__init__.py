"""Domain types for vehicle collateral and the encumbrances held against it."""

from .enums import (CollateralStatus, CollateralType, DemandLevel,
                    EncumbranceStatus, EncumbranceType, RiskTier,
                    SeasonalTrend, TitleStatus, ValuationSource,
                    ValuationStatus)
from .models import Collateral, Encumbrance

__all__ = [
    "Collateral",
    "CollateralStatus",
    "CollateralType",
    "DemandLevel",
    "Encumbrance",
    "EncumbranceStatus",
    "EncumbranceType",
    "RiskTier",
    "SeasonalTrend",
    "TitleStatus",
    "ValuationSource",
    "ValuationStatus",
]
