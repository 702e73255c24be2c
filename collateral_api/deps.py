"""FastAPI dependencies.

The engine is built lazily from the environment on first use. Tests swap it
with ``app.dependency_overrides[get_engine]`` or :func:`set_engine`.
"""
from __future__ import annotations

from typing import Any, Optional

from fastapi import Depends

from collateral_engine.forecast import ValuationForecastEngine
from collateral_engine.history import AutoValuationHistory, TitleHistory
from collateral_engine.ledger import EncumbranceLedger
from collateral_engine.runtime import CollateralEngine, build_engine
from collateral_engine.service import CollateralService
from common.audit import log_event
from common.auth import Principal

SERVICE_NAME = "collateral_api"

_engine: Optional[CollateralEngine] = None


def get_engine() -> CollateralEngine:
    global _engine
    if _engine is None:
        _engine = build_engine()
    return _engine


def current_engine() -> Optional[CollateralEngine]:
    return _engine


def set_engine(engine: Optional[CollateralEngine]) -> None:
    global _engine
    _engine = engine


def get_service(engine: CollateralEngine = Depends(get_engine)) -> CollateralService:
    return engine.service


def get_ledger(engine: CollateralEngine = Depends(get_engine)) -> EncumbranceLedger:
    return engine.ledger


def get_forecast(engine: CollateralEngine = Depends(get_engine)) -> ValuationForecastEngine:
    return engine.forecast


def get_valuations(engine: CollateralEngine = Depends(get_engine)) -> AutoValuationHistory:
    return engine.valuations


def get_titles(engine: CollateralEngine = Depends(get_engine)) -> TitleHistory:
    return engine.titles


def audit(action: str, principal: Principal, entity_id: Optional[str], **details: Any) -> None:
    log_event(
        service=SERVICE_NAME,
        action=action,
        actor=principal.name,
        entity_id=entity_id,
        details=details,
    )
