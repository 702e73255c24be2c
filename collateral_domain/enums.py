"""Closed value sets used across the engine and the API.

Every status / type is a ``str`` enum so payloads with unknown values are
rejected by pydantic at the boundary instead of being stored verbatim.
"""
from __future__ import annotations

from enum import Enum
from typing import FrozenSet


class CollateralType(str, Enum):
    VEHICLE = "VEHICLE"


class CollateralStatus(str, Enum):
    ACTIVE = "ACTIVE"
    PENDING_EVALUATION = "PENDING_EVALUATION"
    UNDER_REVIEW = "UNDER_REVIEW"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    ENCUMBERED = "ENCUMBERED"
    PARTIALLY_ENCUMBERED = "PARTIALLY_ENCUMBERED"
    RELEASED = "RELEASED"
    LIQUIDATED = "LIQUIDATED"
    SUSPENDED = "SUSPENDED"
    EXPIRED = "EXPIRED"
    INACTIVE = "INACTIVE"


# Statuses owned by the reconciler; everything else is set by callers.
DERIVED_COLLATERAL_STATUSES: FrozenSet[CollateralStatus] = frozenset(
    {
        CollateralStatus.ACTIVE,
        CollateralStatus.PARTIALLY_ENCUMBERED,
        CollateralStatus.ENCUMBERED,
    }
)

# Collateral in these states is never offered as available for new loans.
CLOSED_COLLATERAL_STATUSES: FrozenSet[CollateralStatus] = frozenset(
    {
        CollateralStatus.REJECTED,
        CollateralStatus.RELEASED,
        CollateralStatus.LIQUIDATED,
        CollateralStatus.SUSPENDED,
        CollateralStatus.EXPIRED,
        CollateralStatus.INACTIVE,
    }
)


class EncumbranceType(str, Enum):
    MORTGAGE = "MORTGAGE"
    LIEN = "LIEN"
    PLEDGE = "PLEDGE"
    SECURITY_INTEREST = "SECURITY_INTEREST"
    CHARGE = "CHARGE"
    HYPOTHECATION = "HYPOTHECATION"
    ASSIGNMENT = "ASSIGNMENT"
    GUARANTEE = "GUARANTEE"
    FLOATING_CHARGE = "FLOATING_CHARGE"
    FIXED_CHARGE = "FIXED_CHARGE"
    DEED_OF_TRUST = "DEED_OF_TRUST"
    OTHER = "OTHER"


class EncumbranceStatus(str, Enum):
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    PARTIALLY_RELEASED = "PARTIALLY_RELEASED"
    RELEASED = "RELEASED"
    EXPIRED = "EXPIRED"
    SUSPENDED = "SUSPENDED"
    CANCELLED = "CANCELLED"
    DEFAULTED = "DEFAULTED"
    UNDER_REVIEW = "UNDER_REVIEW"
    TRANSFERRED = "TRANSFERRED"
    MODIFIED = "MODIFIED"
    TERMINATED = "TERMINATED"

    @property
    def contributes(self) -> bool:
        """True when encumbrances in this state count towards encumbered value."""
        return self in CONTRIBUTING_STATUSES

    @property
    def terminal(self) -> bool:
        return self in TERMINAL_STATUSES


CONTRIBUTING_STATUSES: FrozenSet[EncumbranceStatus] = frozenset(
    {EncumbranceStatus.ACTIVE, EncumbranceStatus.PARTIALLY_RELEASED}
)

TERMINAL_STATUSES: FrozenSet[EncumbranceStatus] = frozenset(
    {
        EncumbranceStatus.RELEASED,
        EncumbranceStatus.EXPIRED,
        EncumbranceStatus.CANCELLED,
        EncumbranceStatus.TERMINATED,
    }
)


class RiskTier(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    EXCESSIVE = "EXCESSIVE"


class DemandLevel(str, Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class SeasonalTrend(str, Enum):
    SPRING = "SPRING"
    SUMMER_PEAK = "SUMMER_PEAK"
    FALL_CLEARANCE = "FALL_CLEARANCE"
    WINTER_SLOW = "WINTER_SLOW"


class ValuationStatus(str, Enum):
    COMPLETED = "COMPLETED"
    PENDING = "PENDING"
    FAILED = "FAILED"
    INSUFFICIENT_DATA = "INSUFFICIENT_DATA"
    UNDER_REVIEW = "UNDER_REVIEW"


class ValuationSource(str, Enum):
    PROVIDER = "PROVIDER"
    ESTIMATE = "ESTIMATE"


class TitleStatus(str, Enum):
    VERIFIED = "VERIFIED"
    INVALID = "INVALID"
    PENDING_VERIFICATION = "PENDING_VERIFICATION"
    VERIFICATION_FAILED = "VERIFICATION_FAILED"
    NOT_FOUND = "NOT_FOUND"
