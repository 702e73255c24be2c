"""Recompute a collateral's derived value fields from its encumbrances.

``encumbered_value`` is always the sum of contributing (ACTIVE /
PARTIALLY_RELEASED) encumbrance amounts and ``available_value`` is
``max(0, market_value - encumbered_value)``. All work for one collateral runs
inside that collateral's keyed lock, which ledger mutations also hold, so the
read-sum-write sequence is never interleaved with another writer.
"""
from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from decimal import Decimal
from typing import AsyncIterator, Iterable, Optional

from collateral_domain.enums import DERIVED_COLLATERAL_STATUSES, CollateralStatus
from collateral_domain.models import ZERO, Collateral, Encumbrance
from collateral_observability.metrics import (
    collateral_over_encumbered_total, collateral_reconcile_latency_seconds,
    collateral_reconciliations_total)
from common.datetime import utcnow

from .errors import CollaboratorUnavailable, NotFound
from .locks import KeyedLock, LockTimeout
from .stores.base import CollateralStore, EncumbranceStore, bounded

__all__ = ["CollateralValueReconciler", "derive_status", "encumbered_total"]

_LOG = logging.getLogger(__name__)


def encumbered_total(encumbrances: Iterable[Encumbrance]) -> Decimal:
    return sum((e.contribution for e in encumbrances), ZERO)


def derive_status(
    current: CollateralStatus, market_value: Decimal, encumbered_value: Decimal
) -> CollateralStatus:
    """Coarse status for the given values.

    Externally managed statuses (APPROVED, SUSPENDED, ...) are kept unless the
    collateral is over-encumbered, which always reads as ENCUMBERED.
    """
    if encumbered_value > market_value:
        return CollateralStatus.ENCUMBERED
    if current not in DERIVED_COLLATERAL_STATUSES:
        return current
    if encumbered_value == 0:
        return CollateralStatus.ACTIVE
    if encumbered_value < market_value:
        return CollateralStatus.PARTIALLY_ENCUMBERED
    return CollateralStatus.ENCUMBERED


class CollateralValueReconciler:
    def __init__(
        self,
        collaterals: CollateralStore,
        encumbrances: EncumbranceStore,
        *,
        locks: Optional[KeyedLock] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self.collaterals = collaterals
        self.encumbrances = encumbrances
        self.locks = locks if locks is not None else KeyedLock()
        # bounds every store call and every lock wait
        self.timeout = timeout

    @asynccontextmanager
    async def serialized(self, collateral_id: str) -> AsyncIterator[None]:
        """Critical section for *collateral_id*."""
        try:
            async with self.locks.hold(collateral_id, self.timeout):
                yield
        except LockTimeout as exc:
            raise CollaboratorUnavailable("collateral-lock", str(exc)) from exc

    async def reconcile(self, collateral_id: str) -> Collateral:
        async with self.serialized(collateral_id):
            return await self.reconcile_locked(collateral_id)

    async def reconcile_locked(self, collateral_id: str) -> Collateral:
        """Reconcile while the caller already holds the collateral's lock."""
        started = time.perf_counter()
        try:
            collateral = await bounded(
                self.collaterals.get(collateral_id), self.timeout, "collateral-store"
            )
            rows = await bounded(
                self.encumbrances.query_by_collateral_id(collateral_id),
                self.timeout,
                "encumbrance-store",
            )
            self.apply(collateral, encumbered_total(rows))
            saved = await bounded(
                self.collaterals.upsert(collateral), self.timeout, "collateral-store"
            )
        except NotFound:
            collateral_reconciliations_total.labels(outcome="not_found").inc()
            raise
        except CollaboratorUnavailable:
            collateral_reconciliations_total.labels(outcome="unavailable").inc()
            raise
        finally:
            collateral_reconcile_latency_seconds.observe(time.perf_counter() - started)
        collateral_reconciliations_total.labels(outcome="ok").inc()
        return saved

    @staticmethod
    def apply(collateral: Collateral, encumbered: Decimal) -> Collateral:
        """Set the derived fields on *collateral* in place."""
        market = collateral.market_value
        if encumbered > market:
            collateral_over_encumbered_total.inc()
            _LOG.warning(
                "collateral over-encumbered; available value clamped to zero",
                extra={
                    "collateral_id": collateral.collateral_id,
                    "market_value": str(market),
                    "encumbered_value": str(encumbered),
                },
            )
        collateral.encumbered_value = encumbered
        collateral.available_value = max(ZERO, market - encumbered)
        collateral.status = derive_status(collateral.status, market, encumbered)
        collateral.updated_at = utcnow()
        return collateral
