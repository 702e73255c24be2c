"""Typed async client for the auto-valuation provider."""
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Optional, Type, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from collateral_engine.errors import CollaboratorUnavailable
from common.datetime import utcnow

from . import AUTO_VALUATION_BASE_URL, PRODUCT_AUTO_VALUATION
from .base import Comparables, MarketTrend, RevaluationResult, ValuationResult
from .http import ProviderHTTP

__all__ = ["AutoValuationClient", "parse_payload"]

_LOG = logging.getLogger(__name__)

_M = TypeVar("_M", bound=BaseModel)


def parse_payload(model: Type[_M], payload: Any, provider: str) -> _M:
    try:
        return model.model_validate(payload)
    except PydanticValidationError as exc:
        raise CollaboratorUnavailable(provider, f"unexpected {model.__name__} payload") from exc


class AutoValuationClient:
    """Implements ``ValuationProvider`` over the provider's REST API."""

    def __init__(
        self,
        http: Optional[ProviderHTTP] = None,
        *,
        base_url: str = AUTO_VALUATION_BASE_URL,
        timeout: float = 15.0,
    ):
        self._http = http or ProviderHTTP(
            provider=PRODUCT_AUTO_VALUATION, base_url=base_url, timeout=timeout
        )

    async def appraise(
        self,
        collateral_id: Optional[str],
        collateral_type: str,
        location: Optional[str],
        description: Optional[str],
    ) -> ValuationResult:
        _LOG.info("requesting valuation", extra={"collateral_id": collateral_id})
        body = {
            "collateralId": collateral_id,
            "type": collateral_type,
            "location": location,
            "description": description,
            "requestDate": utcnow().isoformat(),
        }
        data = await self._http.post_json("/api/v1/valuation/request", body)
        return parse_payload(ValuationResult, data, PRODUCT_AUTO_VALUATION)

    async def market_trends(self, collateral_type: str, location: Optional[str]) -> MarketTrend:
        params = {"type": collateral_type}
        if location:
            params["location"] = location
        data = await self._http.get_json("/api/v1/market-trends", params=params)
        return parse_payload(MarketTrend, data, PRODUCT_AUTO_VALUATION)

    async def comparables(
        self,
        collateral_id: Optional[str],
        collateral_type: str,
        location: Optional[str],
        estimated_value: Decimal,
    ) -> Comparables:
        body = {
            "collateralId": collateral_id,
            "type": collateral_type,
            "location": location,
            "estimatedValue": str(estimated_value),
        }
        data = await self._http.post_json("/api/v1/comparables/search", body)
        return parse_payload(Comparables, data, PRODUCT_AUTO_VALUATION)

    async def revalue(self, collateral_id: str, reason: Optional[str]) -> RevaluationResult:
        _LOG.info("requesting revaluation", extra={"collateral_id": collateral_id})
        body = {
            "collateralId": collateral_id,
            "reason": reason,
            "requestDate": utcnow().isoformat(),
        }
        data = await self._http.post_json("/api/v1/valuation/revalue", body)
        return parse_payload(RevaluationResult, data, PRODUCT_AUTO_VALUATION)

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()
