"""Typed async client for the title registry."""
from __future__ import annotations

import logging
from typing import Optional

from . import PRODUCT_TITLE_REGISTRY, TITLE_REGISTRY_BASE_URL
from .auto_valuation_client import parse_payload
from .base import TitleVerification
from .http import ProviderHTTP

__all__ = ["TitleRegistryClient"]

_LOG = logging.getLogger(__name__)


class TitleRegistryClient:
    def __init__(
        self,
        http: Optional[ProviderHTTP] = None,
        *,
        base_url: str = TITLE_REGISTRY_BASE_URL,
        timeout: float = 10.0,
    ):
        self._http = http or ProviderHTTP(
            provider=PRODUCT_TITLE_REGISTRY, base_url=base_url, timeout=timeout
        )

    async def verify_title(
        self, collateral_id: str, legal_description: Optional[str]
    ) -> TitleVerification:
        data = await self._http.post_json(
            "/api/v1/title/verify",
            {"collateralId": collateral_id, "legalDescription": legal_description},
        )
        result = parse_payload(TitleVerification, data, PRODUCT_TITLE_REGISTRY)
        _LOG.info(
            "title verification %s",
            result.status.value,
            extra={"collateral_id": collateral_id},
        )
        return result

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()
