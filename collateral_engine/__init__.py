"""Collateral value reconciliation engine.

Keeps each collateral's encumbered / available value consistent with its
encumbrance ledger under concurrent writers, and provides the auto-loan
valuation arithmetic (LTV, risk tier, depreciation forecasts).
"""

from .errors import (CollaboratorUnavailable, CollateralError, InvalidInput,
                     NotFound, StateConflict, ValidationError)
from .forecast import ValuationForecastEngine
from .ledger import EncumbranceLedger, ExpirySweepReport
from .reconciler import CollateralValueReconciler
from .service import CollateralCreationResult, CollateralService

__all__ = [
    "CollaboratorUnavailable",
    "CollateralCreationResult",
    "CollateralError",
    "CollateralService",
    "CollateralValueReconciler",
    "EncumbranceLedger",
    "ExpirySweepReport",
    "InvalidInput",
    "NotFound",
    "StateConflict",
    "ValidationError",
    "ValuationForecastEngine",
]
