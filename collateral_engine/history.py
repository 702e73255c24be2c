"""Valuation and title history kept per collateral.

History records never move a collateral's values on their own. The collateral
service appends one every time it asks the valuation provider or the title
registry about a collateral, and operators may add or correct records through
the API. Listings are newest first by valuation / verification date (falling
back to the creation time), ties broken by id.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import (Any, Awaitable, FrozenSet, Generic, List, Mapping,
                    Optional, Type, TypeVar)

from pydantic import ValidationError as PydanticValidationError

from collateral_domain.enums import CollateralType, TitleStatus, ValuationStatus
from collateral_domain.models import (AutoValuation, Collateral, TitleRecord)
from common.datetime import to_naive_utc, utcnow
from integrations.valuation.base import (RevaluationResult, TitleVerification,
                                         ValuationResult)

from .errors import NotFound, StateConflict, ValidationError
from .locks import KeyedLock
from .stores.base import (AutoValuationStore, CollateralStore,
                          TitleRecordStore, bounded)

__all__ = [
    "AutoValuationHistory",
    "TitleHistory",
    "title_statuses",
    "valuation_statuses",
]

_LOG = logging.getLogger(__name__)

_R = TypeVar("_R", AutoValuation, TitleRecord)
_T = TypeVar("_T")

# identity and creation stamps are fixed once a record exists
_FIXED = frozenset({"collateral_id", "created_at", "created_by", "updated_at", "updated_by"})


def valuation_statuses() -> List[ValuationStatus]:
    return list(ValuationStatus)


def title_statuses() -> List[TitleStatus]:
    return list(TitleStatus)


class _History(Generic[_R]):
    entity: Type[_R]
    kind = "record"
    key_field = "id"

    def __init__(
        self,
        store: Any,
        collaterals: CollateralStore,
        *,
        timeout: Optional[float] = None,
    ) -> None:
        self.store = store
        self.collaterals = collaterals
        self.timeout = timeout
        self._locks = KeyedLock()

    @property
    def updatable(self) -> FrozenSet[str]:
        return frozenset(self.entity.model_fields) - _FIXED - {self.key_field}

    async def _call(self, awaitable: Awaitable[_T], collaborator: Optional[str] = None) -> _T:
        return await bounded(awaitable, self.timeout, collaborator or f"{self.kind}-store")

    def _key(self, record: _R) -> str:
        return getattr(record, self.key_field)

    def _newest_first(self, rows: List[_R]) -> List[_R]:
        return sorted(rows, key=lambda r: (r.recorded_at, self._key(r)), reverse=True)

    def _check(self, record: _R) -> None:
        """Raise ``ValidationError`` for records that must not be stored."""

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get(self, key: str) -> _R:
        return await self._call(self.store.get(key))

    async def _query(self, **fields: Any) -> List[_R]:
        return self._newest_first(await self._call(self.store.query(**fields)))

    async def by_collateral(self, collateral_id: str) -> List[_R]:
        return await self._query(collateral_id=collateral_id)

    async def latest(self, collateral_id: str) -> _R:
        rows = await self.by_collateral(collateral_id)
        if not rows:
            raise NotFound(self.kind, f"latest for collateral {collateral_id}")
        return rows[0]

    async def by_status(self, status) -> List[_R]:
        return await self._query(status=status)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create(self, record: _R, *, created_by: Optional[str] = None) -> _R:
        self._check(record)
        record = record.model_copy(deep=True)
        record.created_at = record.updated_at = utcnow()
        if created_by:
            record.created_by = record.updated_by = created_by

        try:
            await self._call(self.collaterals.get(record.collateral_id), "collateral-store")
        except NotFound as exc:
            raise ValidationError(f"unknown collateral: {record.collateral_id}") from exc

        key = self._key(record)
        async with self._locks.hold(key):
            try:
                await self.get(key)
            except NotFound:
                pass
            else:
                raise StateConflict(f"{self.kind} already exists: {key}")
            saved = await self._call(self.store.upsert(record))

        _LOG.info(
            "%s recorded", self.kind, extra={"collateral_id": record.collateral_id}
        )
        return saved

    async def update(
        self, key: str, changes: Mapping[str, Any], *, updated_by: Optional[str] = None
    ) -> _R:
        unknown = set(changes) - self.updatable
        if unknown:
            raise ValidationError(f"fields cannot be updated: {', '.join(sorted(unknown))}")

        async with self._locks.hold(key):
            current = await self.get(key)
            data = current.model_dump()
            data.update(changes)
            try:
                record = self.entity.model_validate(data)
            except PydanticValidationError as exc:
                raise ValidationError(str(exc)) from exc
            self._check(record)
            record.updated_at = utcnow()
            if updated_by:
                record.updated_by = updated_by
            saved = await self._call(self.store.upsert(record))

        _LOG.info("%s updated", self.kind, extra={"collateral_id": saved.collateral_id})
        return saved

    async def delete(self, key: str) -> None:
        async with self._locks.hold(key):
            await self._call(self.store.delete(key))
        _LOG.info("%s deleted: %s", self.kind, key)


class AutoValuationHistory(_History[AutoValuation]):
    entity = AutoValuation
    kind = "auto-valuation"
    key_field = "valuation_id"

    def __init__(
        self,
        store: AutoValuationStore,
        collaterals: CollateralStore,
        *,
        timeout: Optional[float] = None,
    ) -> None:
        super().__init__(store, collaterals, timeout=timeout)

    def _check(self, record: AutoValuation) -> None:
        for name in ("estimated_value", "low_range", "high_range"):
            value = getattr(record, name)
            if value is not None and value < 0:
                raise ValidationError(f"{name} cannot be negative")
        if (
            record.low_range is not None
            and record.high_range is not None
            and record.low_range > record.high_range
        ):
            raise ValidationError("low_range cannot exceed high_range")
        if record.confidence_score is not None and record.confidence_score < 0:
            raise ValidationError("confidence_score cannot be negative")

    async def by_type(self, collateral_type: CollateralType) -> List[AutoValuation]:
        return await self._query(type=collateral_type)

    async def by_location(self, location: str) -> List[AutoValuation]:
        return await self._query(location=location)

    async def between(self, start: datetime, end: datetime) -> List[AutoValuation]:
        """Valuations whose valuation date falls in ``[start, end]``."""
        start, end = to_naive_utc(start), to_naive_utc(end)
        if start > end:
            raise ValidationError("start must not be after end")
        rows = await self._call(self.store.query())
        return self._newest_first(
            [r for r in rows if r.valuation_date is not None and start <= r.valuation_date <= end]
        )

    async def record_appraisal(
        self,
        collateral: Collateral,
        result: ValuationResult,
        *,
        requested_at: Optional[datetime] = None,
        requested_by: Optional[str] = None,
    ) -> AutoValuation:
        record = AutoValuation(
            collateral_id=collateral.collateral_id,
            type=collateral.type,
            location=collateral.location,
            description=collateral.description,
            status=result.status,
            estimated_value=result.estimated_value,
            low_range=result.low_range,
            high_range=result.high_range,
            currency=result.currency,
            methodology=result.methodology,
            confidence_score=result.confidence_score,
            valuation_date=result.valuation_date or utcnow(),
            request_date=requested_at,
            message=result.message,
        )
        return await self.create(record, created_by=requested_by)

    async def record_revaluation(
        self,
        collateral: Collateral,
        result: RevaluationResult,
        *,
        requested_at: Optional[datetime] = None,
        requested_by: Optional[str] = None,
    ) -> AutoValuation:
        message = result.message
        if result.reason:
            message = f"{message} ({result.reason})" if message else result.reason
        record = AutoValuation(
            collateral_id=collateral.collateral_id,
            type=collateral.type,
            location=collateral.location,
            description=collateral.description,
            status=result.status,
            estimated_value=result.new_value,
            currency=result.currency,
            methodology="REVALUATION",
            valuation_date=result.revaluation_date or utcnow(),
            request_date=requested_at,
            message=message,
        )
        return await self.create(record, created_by=requested_by)


class TitleHistory(_History[TitleRecord]):
    entity = TitleRecord
    kind = "title-record"
    key_field = "title_id"

    def __init__(
        self,
        store: TitleRecordStore,
        collaterals: CollateralStore,
        *,
        timeout: Optional[float] = None,
    ) -> None:
        super().__init__(store, collaterals, timeout=timeout)

    async def by_title_number(self, title_number: str) -> TitleRecord:
        """Most recent record carrying *title_number*."""
        rows = await self._query(title_number=title_number)
        if not rows:
            raise NotFound(self.kind, f"title number {title_number}")
        return rows[0]

    async def by_owner(self, owner: str) -> List[TitleRecord]:
        return await self._query(current_owner=owner)

    async def verified_by_owner(self, owner: str) -> List[TitleRecord]:
        return await self._query(current_owner=owner, status=TitleStatus.VERIFIED)

    async def valid_titles(self) -> List[TitleRecord]:
        return await self._query(is_valid=True, status=TitleStatus.VERIFIED)

    async def record_verification(
        self,
        collateral: Collateral,
        verification: TitleVerification,
        *,
        requested_by: Optional[str] = None,
    ) -> TitleRecord:
        record = TitleRecord(
            collateral_id=collateral.collateral_id,
            title_number=verification.title_number,
            legal_description=collateral.legal_description or collateral.description,
            status=verification.status,
            current_owner=verification.registered_owner,
            is_valid=verification.is_valid,
            verification_date=utcnow(),
            message=verification.message,
        )
        return await self.create(record, created_by=requested_by)
