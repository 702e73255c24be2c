"""Collateral lifecycle: CRUD, value updates and provider-backed enrichment.

Writes go through the reconciler's critical section so a market value change
and the derived fields it implies are persisted together, and a failed or
cancelled write restores the previous record.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Awaitable, List, Mapping, Optional, TypeVar

import anyio
from pydantic import ValidationError as PydanticValidationError

from collateral_domain.enums import (CLOSED_COLLATERAL_STATUSES,
                                     CollateralStatus, CollateralType,
                                     ValuationStatus)
from collateral_domain.models import ZERO, Collateral, Encumbrance
from common.datetime import utcnow
from integrations.valuation.base import (UNAVAILABLE, Comparables,
                                         MarketTrend, TitleRegistry,
                                         TitleVerification, ValuationProvider)

from .errors import (CollaboratorUnavailable, CollateralError, NotFound,
                     StateConflict, ValidationError)
from .history import AutoValuationHistory, TitleHistory
from .ledger import EncumbranceLedger
from .reconciler import CollateralValueReconciler
from .stores.base import bounded
from .value_math import to_decimal

__all__ = [
    "CollateralCreationResult",
    "CollateralService",
    "collateral_statuses",
    "collateral_types",
]

_LOG = logging.getLogger(__name__)

_T = TypeVar("_T")

_UPDATABLE = frozenset(
    {
        "customer_id",
        "account_id",
        "description",
        "estimated_value",
        "market_value",
        "currency",
        "status",
        "location",
        "evaluation_date",
        "legal_description",
        "ownership_documents",
        "last_inspection_date",
        "risk_rating",
    }
)


def collateral_types() -> List[CollateralType]:
    return list(CollateralType)


def collateral_statuses() -> List[CollateralStatus]:
    return list(CollateralStatus)


@dataclass
class CollateralCreationResult:
    """Outcome of :meth:`CollateralService.create_with_validation`.

    ``title_verified`` is ``None`` when no title check ran (no registry, or
    the registry failed, see ``title_error``).
    """

    collateral: Collateral
    collateral_created: bool = True
    title_verified: Optional[bool] = None
    title_error: Optional[str] = None
    valuation_applied: bool = False
    valuation_error: Optional[str] = None


class CollateralService:
    def __init__(
        self,
        reconciler: CollateralValueReconciler,
        ledger: EncumbranceLedger,
        *,
        valuation: Optional[ValuationProvider] = None,
        title_registry: Optional[TitleRegistry] = None,
        provider_timeout: Optional[float] = None,
        valuations: Optional[AutoValuationHistory] = None,
        titles: Optional[TitleHistory] = None,
    ) -> None:
        self.reconciler = reconciler
        self.ledger = ledger
        self.store = reconciler.collaterals
        self.valuation = valuation
        self.title_registry = title_registry
        self.provider_timeout = provider_timeout
        self.valuations = valuations
        self.titles = titles

    async def _call(self, awaitable: Awaitable[_T]) -> _T:
        return await bounded(awaitable, self.reconciler.timeout, "collateral-store")

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get(self, collateral_id: str) -> Collateral:
        return await self._call(self.store.get(collateral_id))

    async def list_by_customer(self, customer_id: str) -> List[Collateral]:
        return self._sorted(await self._call(self.store.query(customer_id=customer_id)))

    async def list_by_account(self, account_id: str) -> List[Collateral]:
        return self._sorted(await self._call(self.store.query(account_id=account_id)))

    async def list_by_status(self, status: CollateralStatus) -> List[Collateral]:
        return self._sorted(await self._call(self.store.query(status=status)))

    async def list_available(self, customer_id: str, min_value: Decimal = ZERO) -> List[Collateral]:
        """Collateral of *customer_id* with at least *min_value* unencumbered."""
        rows = await self.list_by_customer(customer_id)
        return [
            c
            for c in rows
            if c.available_value >= min_value and c.status not in CLOSED_COLLATERAL_STATUSES
        ]

    async def list_encumbered(self) -> List[Collateral]:
        rows = await self._call(self.store.query())
        return self._sorted(
            c for c in rows if c.encumbered_value > 0 or c.status is CollateralStatus.ENCUMBERED
        )

    @staticmethod
    def _sorted(rows) -> List[Collateral]:
        return sorted(rows, key=lambda c: (c.created_at, c.collateral_id))

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def _write(self, action: str, collateral_id: str, record: Collateral, restore) -> Collateral:
        """Persist *record*, reconcile it, and run *restore* if either step fails.

        The caller holds the collateral's critical section.
        """
        try:
            await self._call(self.store.upsert(record))
            return await self.reconciler.reconcile_locked(collateral_id)
        except BaseException:
            with anyio.CancelScope(shield=True):
                await self._restore(action, collateral_id, restore)
            raise

    async def _restore(self, action: str, collateral_id: str, restore) -> None:
        try:
            await restore()
        except Exception:
            _LOG.exception(
                "restoring collateral after failed %s failed", action,
                extra={"collateral_id": collateral_id},
            )
            return
        _LOG.error("collateral %s rolled back", action, extra={"collateral_id": collateral_id})

    async def create(self, collateral: Collateral, *, created_by: Optional[str] = None) -> Collateral:
        record = collateral.model_copy(deep=True)
        record.created_at = record.updated_at = utcnow()
        if created_by:
            record.created_by = record.updated_by = created_by
        CollateralValueReconciler.apply(record, ZERO)

        async with self.reconciler.serialized(record.collateral_id):
            try:
                await self.get(record.collateral_id)
            except NotFound:
                pass
            else:
                raise StateConflict(f"collateral already exists: {record.collateral_id}")

            async def _undo() -> None:
                try:
                    await self._call(self.store.delete(record.collateral_id))
                except NotFound:
                    return

            saved = await self._write("create", record.collateral_id, record, _undo)

        _LOG.info("collateral created", extra={"collateral_id": saved.collateral_id})
        return saved

    async def update(
        self,
        collateral_id: str,
        changes: Mapping[str, Any],
        *,
        updated_by: Optional[str] = None,
    ) -> Collateral:
        """Apply *changes*; derived value fields are recomputed, never taken from input."""
        unknown = set(changes) - _UPDATABLE
        if unknown:
            raise ValidationError(f"fields cannot be updated: {', '.join(sorted(unknown))}")

        async with self.reconciler.serialized(collateral_id):
            current = await self.get(collateral_id)
            data = current.model_dump()
            data.update(changes)
            try:
                record = Collateral.model_validate(data)
            except PydanticValidationError as exc:
                raise ValidationError(str(exc)) from exc
            record.updated_at = utcnow()
            if updated_by:
                record.updated_by = updated_by

            async def _undo() -> None:
                await self._call(self.store.upsert(current))

            saved = await self._write("update", collateral_id, record, _undo)

        _LOG.info("collateral updated", extra={"collateral_id": collateral_id})
        return saved

    async def update_value(
        self, collateral_id: str, market_value, *, updated_by: Optional[str] = None
    ) -> Collateral:
        value = to_decimal(market_value, "market value")
        if value < 0:
            raise ValidationError("market value cannot be negative")
        return await self.update(
            collateral_id,
            {"market_value": value, "evaluation_date": utcnow()},
            updated_by=updated_by,
        )

    async def delete(self, collateral_id: str) -> int:
        """Delete the collateral and its encumbrances; returns how many encumbrances went with it."""
        async with self.reconciler.serialized(collateral_id):
            current = await self.get(collateral_id)
            dependents: List[Encumbrance] = await self._call(
                self.ledger.store.query_by_collateral_id(collateral_id)
            )
            removed: List[Encumbrance] = []
            try:
                for encumbrance in dependents:
                    await self._call(self.ledger.store.delete(encumbrance.encumbrance_id))
                    removed.append(encumbrance)
                await self._call(self.store.delete(collateral_id))
            except BaseException:
                with anyio.CancelScope(shield=True):
                    await self._restore_deleted(current, removed)
                raise

        _LOG.info(
            "collateral deleted with %d encumbrance(s)",
            len(dependents),
            extra={"collateral_id": collateral_id},
        )
        return len(dependents)

    async def _restore_deleted(self, collateral: Collateral, removed: List[Encumbrance]) -> None:
        async def _undo() -> None:
            for encumbrance in removed:
                await self._call(self.ledger.store.upsert(encumbrance))
            await self._call(self.store.upsert(collateral))

        await self._restore("delete", collateral.collateral_id, _undo)

    # ------------------------------------------------------------------
    # Provider-backed operations
    # ------------------------------------------------------------------

    async def _provider(self, awaitable: Awaitable[_T], collaborator: str) -> _T:
        return await bounded(awaitable, self.provider_timeout, collaborator)

    async def _remember(self, awaitable: Awaitable[Any], kind: str, collateral_id: str) -> None:
        # history is best effort; the provider answer still stands
        try:
            await awaitable
        except CollateralError as exc:
            _LOG.warning(
                "%s history not recorded: %s", kind, exc, extra={"collateral_id": collateral_id}
            )

    async def verify_title(
        self, collateral_id: str, *, requested_by: Optional[str] = None
    ) -> TitleVerification:
        if self.title_registry is None:
            raise CollaboratorUnavailable("title-registry", "not configured")
        collateral = await self.get(collateral_id)
        verification = await self._provider(
            self.title_registry.verify_title(
                collateral_id, collateral.legal_description or collateral.description
            ),
            "title-registry",
        )
        if self.titles is not None:
            await self._remember(
                self.titles.record_verification(
                    collateral, verification, requested_by=requested_by
                ),
                "title",
                collateral_id,
            )
        return verification

    async def request_auto_valuation(
        self, collateral_id: str, *, requested_by: Optional[str] = None
    ) -> Collateral:
        if self.valuation is None:
            raise CollaboratorUnavailable("auto-valuation", "not configured")
        collateral = await self.get(collateral_id)
        requested_at = utcnow()
        result = await self._provider(
            self.valuation.appraise(
                collateral_id, collateral.type.value, collateral.location, collateral.description
            ),
            "auto-valuation",
        )
        if self.valuations is not None:
            await self._remember(
                self.valuations.record_appraisal(
                    collateral, result, requested_at=requested_at, requested_by=requested_by
                ),
                "valuation",
                collateral_id,
            )
        if result.status is not ValuationStatus.COMPLETED or not result.estimated_value:
            raise CollaboratorUnavailable("auto-valuation", f"valuation {result.status.value}")
        return await self.update_value(collateral_id, result.estimated_value, updated_by=requested_by)

    async def request_revaluation(
        self,
        collateral_id: str,
        reason: Optional[str] = None,
        *,
        requested_by: Optional[str] = None,
    ) -> Collateral:
        if self.valuation is None:
            raise CollaboratorUnavailable("auto-valuation", "not configured")
        collateral = await self.get(collateral_id)
        requested_at = utcnow()
        result = await self._provider(self.valuation.revalue(collateral_id, reason), "auto-valuation")
        if self.valuations is not None:
            await self._remember(
                self.valuations.record_revaluation(
                    collateral, result, requested_at=requested_at, requested_by=requested_by
                ),
                "valuation",
                collateral_id,
            )
        if result.status is not ValuationStatus.COMPLETED or result.new_value is None:
            raise CollaboratorUnavailable("auto-valuation", f"revaluation {result.status.value}")
        return await self.update_value(collateral_id, result.new_value, updated_by=requested_by)

    async def create_with_validation(
        self, collateral: Collateral, *, created_by: Optional[str] = None
    ) -> CollateralCreationResult:
        """Create, then verify title and apply an automated valuation.

        Creation failures raise. Sub-step failures are reported on the result
        and leave the created collateral in place.
        """
        created = await self.create(collateral, created_by=created_by)
        result = CollateralCreationResult(collateral=created)

        if self.title_registry is None:
            result.title_error = "title registry not configured"
        else:
            try:
                verification = await self.verify_title(
                    created.collateral_id, requested_by=created_by
                )
            except CollateralError as exc:
                result.title_error = str(exc)
            else:
                result.title_verified = verification.verified
                if not verification.verified:
                    result.title_error = verification.message or verification.status.value

        try:
            result.collateral = await self.request_auto_valuation(
                created.collateral_id, requested_by=created_by
            )
        except CollateralError as exc:
            result.valuation_error = str(exc)
        else:
            result.valuation_applied = True

        if result.title_error or result.valuation_error:
            _LOG.warning(
                "collateral created with incomplete validation: title=%s valuation=%s",
                result.title_error,
                result.valuation_error,
                extra={"collateral_id": created.collateral_id},
            )
        return result

    async def market_trends(self, collateral_id: str) -> MarketTrend:
        collateral = await self.get(collateral_id)
        unavailable = MarketTrend(
            type=collateral.type.value,
            location=collateral.location,
            status=UNAVAILABLE,
            message="Market trends service unavailable",
        )
        if self.valuation is None:
            return unavailable
        try:
            return await self._provider(
                self.valuation.market_trends(collateral.type.value, collateral.location),
                "auto-valuation",
            )
        except CollaboratorUnavailable as exc:
            _LOG.warning("market trends unavailable: %s", exc, extra={"collateral_id": collateral_id})
            return unavailable

    async def comparables(self, collateral_id: str) -> Comparables:
        collateral = await self.get(collateral_id)
        unavailable = Comparables(
            collateral_id=collateral_id,
            status=UNAVAILABLE,
            message="Comparable properties service unavailable",
        )
        if self.valuation is None:
            return unavailable
        try:
            return await self._provider(
                self.valuation.comparables(
                    collateral_id,
                    collateral.type.value,
                    collateral.location,
                    collateral.market_value,
                ),
                "auto-valuation",
            )
        except CollaboratorUnavailable as exc:
            _LOG.warning("comparables unavailable: %s", exc, extra={"collateral_id": collateral_id})
            return unavailable
