"""Wire stores, providers and engine components from :class:`Settings`."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, List, Optional

from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool
from sqlmodel import create_engine

from integrations.valuation.auto_valuation_client import AutoValuationClient
from integrations.valuation.base import TitleRegistry, ValuationProvider
from integrations.valuation.mock import MockTitleRegistry, MockValuationProvider
from integrations.valuation.title_registry_client import TitleRegistryClient

from .config import Settings, load_settings
from .forecast import ValuationForecastEngine
from .history import AutoValuationHistory, TitleHistory
from .ledger import EncumbranceLedger
from .reconciler import CollateralValueReconciler
from .service import CollateralService
from .stores import (AutoValuationStore, CollateralStore, EncumbranceStore,
                     InMemoryAutoValuationStore, InMemoryCollateralStore,
                     InMemoryEncumbranceStore, InMemoryTitleRecordStore,
                     SQLAutoValuationStore, SQLCollateralStore,
                     SQLEncumbranceStore, SQLTitleRecordStore,
                     TitleRecordStore, init_db)

__all__ = ["CollateralEngine", "build_engine", "sql_engine"]

_LOG = logging.getLogger(__name__)


def sql_engine(url: str) -> Engine:
    if url in ("sqlite://", "sqlite:///:memory:"):
        return create_engine(
            url, connect_args={"check_same_thread": False}, poolclass=StaticPool
        )
    return create_engine(
        url,
        connect_args={"check_same_thread": False} if url.startswith("sqlite") else {},
    )


@dataclass
class CollateralEngine:
    reconciler: CollateralValueReconciler
    ledger: EncumbranceLedger
    service: CollateralService
    forecast: ValuationForecastEngine
    valuations: AutoValuationHistory
    titles: TitleHistory
    _closers: List[Any] = field(default_factory=list, repr=False)

    async def aclose(self) -> None:
        for client in self._closers:
            await client.aclose()


def _providers(settings: Settings):
    kind = settings.valuation_provider
    if kind == "http":
        valuation = AutoValuationClient(
            base_url=settings.auto_valuation_base_url,
            timeout=settings.auto_valuation_timeout_sec,
        )
        title = TitleRegistryClient(
            base_url=settings.title_registry_base_url,
            timeout=settings.title_registry_timeout_sec,
        )
        return valuation, title, [valuation, title]
    if kind == "mock":
        return MockValuationProvider(), MockTitleRegistry(), []
    if kind == "none":
        return None, None, []
    raise ValueError(f"unknown VALUATION_PROVIDER: {kind}")


def build_engine(
    settings: Optional[Settings] = None,
    *,
    collateral_store: Optional[CollateralStore] = None,
    encumbrance_store: Optional[EncumbranceStore] = None,
    valuation_store: Optional[AutoValuationStore] = None,
    title_store: Optional[TitleRecordStore] = None,
    valuation: Optional[ValuationProvider] = None,
    title_registry: Optional[TitleRegistry] = None,
) -> CollateralEngine:
    """Build the engine; explicitly passed collaborators win over settings."""
    settings = settings or load_settings()

    stores = (collateral_store, encumbrance_store, valuation_store, title_store)
    if any(store is None for store in stores):
        if settings.db_url:
            engine = sql_engine(settings.db_url)
            init_db(engine)
            if collateral_store is None:
                collateral_store = SQLCollateralStore(engine)
            if encumbrance_store is None:
                encumbrance_store = SQLEncumbranceStore(engine)
            if valuation_store is None:
                valuation_store = SQLAutoValuationStore(engine)
            if title_store is None:
                title_store = SQLTitleRecordStore(engine)
            _LOG.info("using SQL stores at %s", engine.url.render_as_string(hide_password=True))
        else:
            if collateral_store is None:
                collateral_store = InMemoryCollateralStore()
            if encumbrance_store is None:
                encumbrance_store = InMemoryEncumbranceStore()
            if valuation_store is None:
                valuation_store = InMemoryAutoValuationStore()
            if title_store is None:
                title_store = InMemoryTitleRecordStore()

    closers: List[Any] = []
    if valuation is None and title_registry is None:
        valuation, title_registry, closers = _providers(settings)

    reconciler = CollateralValueReconciler(
        collateral_store, encumbrance_store, timeout=settings.store_timeout_sec
    )
    ledger = EncumbranceLedger(reconciler)
    valuations = AutoValuationHistory(
        valuation_store, collateral_store, timeout=settings.store_timeout_sec
    )
    titles = TitleHistory(title_store, collateral_store, timeout=settings.store_timeout_sec)
    service = CollateralService(
        reconciler,
        ledger,
        valuation=valuation,
        title_registry=title_registry,
        provider_timeout=settings.auto_valuation_timeout_sec,
        valuations=valuations,
        titles=titles,
    )
    forecast = ValuationForecastEngine(valuation, timeout=settings.auto_valuation_timeout_sec)
    return CollateralEngine(
        reconciler=reconciler,
        ledger=ledger,
        service=service,
        forecast=forecast,
        valuations=valuations,
        titles=titles,
        _closers=closers,
    )
