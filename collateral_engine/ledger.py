"""Encumbrance lifecycle ledger.

Every mutation runs inside the owning collateral's critical section and ends
by reconciling that collateral. If the write or the reconciliation fails, or
the calling task is cancelled half-way, the ledger change is undone and the
collateral is reconciled again, so callers never see derived values that
disagree with the stored encumbrances.

Transition graph (terminal states have no outgoing edges)::

    PENDING            -> ACTIVE, CANCELLED, UNDER_REVIEW, SUSPENDED
    ACTIVE             -> PARTIALLY_RELEASED, RELEASED, EXPIRED, SUSPENDED,
                          DEFAULTED, UNDER_REVIEW, TRANSFERRED, MODIFIED,
                          TERMINATED, CANCELLED
    PARTIALLY_RELEASED -> PARTIALLY_RELEASED, RELEASED, EXPIRED, SUSPENDED,
                          DEFAULTED, UNDER_REVIEW, TERMINATED
    SUSPENDED          -> ACTIVE, UNDER_REVIEW, TERMINATED, CANCELLED, RELEASED
    UNDER_REVIEW       -> ACTIVE, SUSPENDED, CANCELLED, TERMINATED, DEFAULTED
    DEFAULTED          -> TERMINATED, RELEASED, UNDER_REVIEW
    MODIFIED           -> ACTIVE, RELEASED, TERMINATED, SUSPENDED
    TRANSFERRED        -> RELEASED, TERMINATED
"""
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager, contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import (Any, AsyncIterator, Awaitable, Dict, FrozenSet, Iterator,
                    List, Mapping, Optional, TypeVar)

import anyio
from pydantic import ValidationError as PydanticValidationError

from collateral_domain.enums import EncumbranceStatus, EncumbranceType
from collateral_domain.models import Collateral, Encumbrance
from collateral_observability.metrics import (collateral_rollbacks_total,
                                              encumbrance_expired_total,
                                              encumbrance_transitions_total,
                                              expiry_sweep_failures_total)
from common.datetime import to_naive_utc, utcnow

from .errors import NotFound, StateConflict, ValidationError
from .reconciler import CollateralValueReconciler, encumbered_total
from .stores.base import bounded
from .value_math import to_decimal

__all__ = [
    "EncumbranceLedger",
    "ExpirySweepReport",
    "TRANSITIONS",
    "can_transition",
    "encumbrance_statuses",
    "encumbrance_types",
    "priority_key",
]

_LOG = logging.getLogger(__name__)

_T = TypeVar("_T")

S = EncumbranceStatus

TRANSITIONS: Dict[EncumbranceStatus, FrozenSet[EncumbranceStatus]] = {
    S.PENDING: frozenset({S.ACTIVE, S.CANCELLED, S.UNDER_REVIEW, S.SUSPENDED}),
    S.ACTIVE: frozenset(
        {
            S.PARTIALLY_RELEASED,
            S.RELEASED,
            S.EXPIRED,
            S.SUSPENDED,
            S.DEFAULTED,
            S.UNDER_REVIEW,
            S.TRANSFERRED,
            S.MODIFIED,
            S.TERMINATED,
            S.CANCELLED,
        }
    ),
    S.PARTIALLY_RELEASED: frozenset(
        {
            S.PARTIALLY_RELEASED,
            S.RELEASED,
            S.EXPIRED,
            S.SUSPENDED,
            S.DEFAULTED,
            S.UNDER_REVIEW,
            S.TERMINATED,
        }
    ),
    S.SUSPENDED: frozenset({S.ACTIVE, S.UNDER_REVIEW, S.TERMINATED, S.CANCELLED, S.RELEASED}),
    S.UNDER_REVIEW: frozenset({S.ACTIVE, S.SUSPENDED, S.CANCELLED, S.TERMINATED, S.DEFAULTED}),
    S.DEFAULTED: frozenset({S.TERMINATED, S.RELEASED, S.UNDER_REVIEW}),
    S.MODIFIED: frozenset({S.ACTIVE, S.RELEASED, S.TERMINATED, S.SUSPENDED}),
    S.TRANSFERRED: frozenset({S.RELEASED, S.TERMINATED}),
    S.RELEASED: frozenset(),
    S.EXPIRED: frozenset(),
    S.CANCELLED: frozenset(),
    S.TERMINATED: frozenset(),
}

_CREATABLE = frozenset({S.ACTIVE, S.PENDING})

# collateral_id, customer ownership and audit stamps are not caller-editable
_UPDATABLE = frozenset(
    {
        "amount",
        "currency",
        "type",
        "status",
        "priority",
        "effective_date",
        "expiry_date",
        "loan_id",
        "description",
        "legal_reference",
        "notes",
    }
)


def can_transition(src: EncumbranceStatus, dst: EncumbranceStatus) -> bool:
    return dst in TRANSITIONS[src]


def priority_key(encumbrance: Encumbrance):
    """Senior first; ties broken by effective date then id, never by insertion order."""
    return (
        encumbrance.priority,
        encumbrance.effective_date or datetime.min,
        encumbrance.encumbrance_id,
    )


def _chronological(encumbrance: Encumbrance):
    return (encumbrance.created_at, encumbrance.encumbrance_id)


def encumbrance_types() -> List[EncumbranceType]:
    return list(EncumbranceType)


def encumbrance_statuses() -> List[EncumbranceStatus]:
    return list(EncumbranceStatus)


@dataclass
class ExpirySweepReport:
    as_of: datetime
    expired_ids: List[str] = field(default_factory=list)
    # collateral_id -> error message for groups that were rolled back
    failures: Dict[str, str] = field(default_factory=dict)

    @property
    def expired(self) -> int:
        return len(self.expired_ids)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "as_of": self.as_of.isoformat(),
            "expired": self.expired,
            "expired_ids": list(self.expired_ids),
            "failures": dict(self.failures),
        }


@contextmanager
def _rejections(action: str) -> Iterator[None]:
    try:
        yield
    except (NotFound, ValidationError, StateConflict):
        encumbrance_transitions_total.labels(action=action, outcome="rejected").inc()
        raise


class EncumbranceLedger:
    def __init__(self, reconciler: CollateralValueReconciler) -> None:
        self.reconciler = reconciler
        self.store = reconciler.encumbrances
        self.collaterals = reconciler.collaterals

    async def _call(self, awaitable: Awaitable[_T], collaborator: str = "encumbrance-store") -> _T:
        return await bounded(awaitable, self.reconciler.timeout, collaborator)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get(self, encumbrance_id: str) -> Encumbrance:
        return await self._call(self.store.get(encumbrance_id))

    async def by_collateral(
        self, collateral_id: str, *, active_only: bool = False
    ) -> List[Encumbrance]:
        rows = await self._call(self.store.query_by_collateral_id(collateral_id))
        if active_only:
            rows = [r for r in rows if r.status.contributes]
        return sorted(rows, key=priority_key)

    async def by_loan(self, loan_id: str) -> List[Encumbrance]:
        return sorted(await self._call(self.store.query(loan_id=loan_id)), key=_chronological)

    async def by_customer(self, customer_id: str) -> List[Encumbrance]:
        rows = await self._call(self.store.query(customer_id=customer_id))
        return sorted(rows, key=_chronological)

    async def by_status(self, status: EncumbranceStatus) -> List[Encumbrance]:
        return sorted(await self._call(self.store.query(status=status)), key=_chronological)

    async def expired(self, as_of: Optional[datetime] = None) -> List[Encumbrance]:
        """ACTIVE encumbrances whose expiry date is before *as_of* (default now)."""
        as_of = to_naive_utc(as_of) or utcnow()
        rows = await self._call(self.store.query(status=S.ACTIVE))
        return sorted((r for r in rows if r.is_expired(as_of)), key=_chronological)

    async def total_encumbered(self, collateral_id: str) -> Decimal:
        return encumbered_total(await self._call(self.store.query_by_collateral_id(collateral_id)))

    # ------------------------------------------------------------------
    # Commit / rollback
    # ------------------------------------------------------------------

    async def _apply(self, state: Mapping[str, Optional[Encumbrance]]) -> None:
        for encumbrance_id, record in state.items():
            if record is None:
                try:
                    await self._call(self.store.delete(encumbrance_id))
                except NotFound:
                    # already absent
                    continue
            else:
                await self._call(self.store.upsert(record))

    async def _commit(
        self,
        action: str,
        collateral_id: str,
        before: Mapping[str, Optional[Encumbrance]],
        after: Mapping[str, Optional[Encumbrance]],
    ) -> Collateral:
        """Write *after* and reconcile; restore *before* if anything fails.

        The caller must hold the collateral's critical section.
        """
        try:
            await self._apply(after)
            collateral = await self.reconciler.reconcile_locked(collateral_id)
        except BaseException:
            encumbrance_transitions_total.labels(action=action, outcome="rolled_back").inc()
            with anyio.CancelScope(shield=True):
                await self._rollback(action, collateral_id, before)
            raise
        encumbrance_transitions_total.labels(action=action, outcome="ok").inc()
        return collateral

    async def _rollback(
        self, action: str, collateral_id: str, before: Mapping[str, Optional[Encumbrance]]
    ) -> None:
        collateral_rollbacks_total.labels(action=action).inc()
        try:
            await self._apply(before)
            await self.reconciler.reconcile_locked(collateral_id)
        except Exception:
            _LOG.exception(
                "rollback of %s failed; collateral needs reconciliation",
                action,
                extra={"collateral_id": collateral_id},
            )
            return
        _LOG.error("%s rolled back", action, extra={"collateral_id": collateral_id})

    @asynccontextmanager
    async def _locked(self, encumbrance_id: str) -> AsyncIterator[Encumbrance]:
        """Yield a fresh copy of the record while its collateral is locked."""
        current = await self.get(encumbrance_id)
        # collateral_id is immutable, so the lock taken here stays correct
        async with self.reconciler.serialized(current.collateral_id):
            yield await self.get(encumbrance_id)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def create(
        self, encumbrance: Encumbrance, *, created_by: Optional[str] = None
    ) -> Encumbrance:
        with _rejections("create"):
            if encumbrance.amount <= 0:
                raise ValidationError("encumbrance amount must be greater than zero")
            if encumbrance.status not in _CREATABLE:
                raise ValidationError(
                    f"new encumbrances start ACTIVE or PENDING, not {encumbrance.status.value}"
                )
            record = encumbrance.model_copy(deep=True)
            record.created_at = record.updated_at = utcnow()
            record.released_at = None
            if created_by:
                record.created_by = record.updated_by = created_by

            async with self.reconciler.serialized(record.collateral_id):
                try:
                    await self._call(self.collaterals.get(record.collateral_id), "collateral-store")
                except NotFound as exc:
                    raise ValidationError(f"unknown collateral: {record.collateral_id}") from exc
                try:
                    await self.get(record.encumbrance_id)
                except NotFound:
                    pass
                else:
                    raise StateConflict(f"encumbrance already exists: {record.encumbrance_id}")
                await self._commit(
                    "create",
                    record.collateral_id,
                    {record.encumbrance_id: None},
                    {record.encumbrance_id: record},
                )

        _LOG.info(
            "encumbrance created",
            extra={"encumbrance_id": record.encumbrance_id, "collateral_id": record.collateral_id},
        )
        return record

    async def update(
        self,
        encumbrance_id: str,
        changes: Mapping[str, Any],
        *,
        updated_by: Optional[str] = None,
    ) -> Encumbrance:
        """Apply *changes*; amount may only decrease and status must follow the graph."""
        with _rejections("update"):
            unknown = set(changes) - _UPDATABLE
            if unknown:
                raise ValidationError(f"fields cannot be updated: {', '.join(sorted(unknown))}")

            async with self._locked(encumbrance_id) as current:
                if current.status.terminal:
                    raise StateConflict(
                        f"encumbrance {encumbrance_id} is {current.status.value} and cannot change"
                    )
                data = current.model_dump()
                data.update(changes)
                try:
                    record = Encumbrance.model_validate(data)
                except PydanticValidationError as exc:
                    raise ValidationError(str(exc)) from exc

                if record.amount <= 0:
                    raise ValidationError("encumbrance amount must be greater than zero")
                if record.amount > current.amount:
                    raise StateConflict("encumbrance amount cannot be increased")
                if record.status != current.status:
                    if not can_transition(current.status, record.status):
                        raise StateConflict(
                            f"cannot move encumbrance from {current.status.value} "
                            f"to {record.status.value}"
                        )
                    if record.status is S.RELEASED:
                        record.released_at = utcnow()
                record.updated_at = utcnow()
                if updated_by:
                    record.updated_by = updated_by

                await self._commit(
                    "update", current.collateral_id, {encumbrance_id: current}, {encumbrance_id: record}
                )

        _LOG.info("encumbrance updated", extra={"encumbrance_id": encumbrance_id})
        return record

    @staticmethod
    def _released(current: Encumbrance, released_by: Optional[str]) -> Encumbrance:
        record = current.model_copy(deep=True)
        record.status = S.RELEASED
        record.released_at = record.updated_at = utcnow()
        if released_by:
            record.updated_by = released_by
        return record

    async def release(
        self, encumbrance_id: str, released_by: Optional[str] = None
    ) -> Encumbrance:
        """Release in full; releasing an already RELEASED record returns it unchanged."""
        with _rejections("release"):
            async with self._locked(encumbrance_id) as current:
                if current.status is S.RELEASED:
                    return current
                if not current.status.contributes:
                    raise StateConflict(
                        f"cannot release encumbrance in status {current.status.value}"
                    )
                record = self._released(current, released_by)
                await self._commit(
                    "release", current.collateral_id, {encumbrance_id: current}, {encumbrance_id: record}
                )

        _LOG.info("encumbrance released", extra={"encumbrance_id": encumbrance_id})
        return record

    async def partially_release(
        self, encumbrance_id: str, release_amount, released_by: Optional[str] = None
    ) -> Encumbrance:
        """Reduce the amount by *release_amount*; releasing the whole amount or more is a full release."""
        with _rejections("partial_release"):
            amount = to_decimal(release_amount, "release amount")
            if amount <= 0:
                raise ValidationError("release amount must be greater than zero")

            async with self._locked(encumbrance_id) as current:
                if current.status is S.RELEASED:
                    return current
                if not current.status.contributes:
                    raise StateConflict(
                        f"cannot release encumbrance in status {current.status.value}"
                    )
                if amount >= current.amount:
                    record = self._released(current, released_by)
                else:
                    record = current.model_copy(deep=True)
                    record.amount = current.amount - amount
                    record.status = S.PARTIALLY_RELEASED
                    record.updated_at = utcnow()
                    if released_by:
                        record.updated_by = released_by
                await self._commit(
                    "partial_release",
                    current.collateral_id,
                    {encumbrance_id: current},
                    {encumbrance_id: record},
                )

        _LOG.info(
            "encumbrance partially released",
            extra={"encumbrance_id": encumbrance_id, "collateral_id": record.collateral_id},
        )
        return record

    async def delete(self, encumbrance_id: str) -> None:
        """Remove the record regardless of its lifecycle state."""
        with _rejections("delete"):
            async with self._locked(encumbrance_id) as current:
                await self._commit(
                    "delete", current.collateral_id, {encumbrance_id: current}, {encumbrance_id: None}
                )
        _LOG.info("encumbrance deleted", extra={"encumbrance_id": encumbrance_id})

    # ------------------------------------------------------------------
    # Expiry sweep
    # ------------------------------------------------------------------

    async def expire_all(self, as_of: Optional[datetime] = None) -> ExpirySweepReport:
        """Expire every ACTIVE encumbrance with ``expiry_date < as_of``.

        Collaterals are swept concurrently and independently; a group that
        fails is rolled back and reported in ``failures`` without stopping the
        others. Only a failure to list the candidates raises.
        """
        as_of = to_naive_utc(as_of) or utcnow()
        due = await self.expired(as_of)

        groups: Dict[str, List[str]] = {}
        for record in due:
            groups.setdefault(record.collateral_id, []).append(record.encumbrance_id)

        report = ExpirySweepReport(as_of=as_of)
        await asyncio.gather(
            *(self._sweep(collateral_id, ids, report) for collateral_id, ids in groups.items())
        )
        report.expired_ids.sort()
        _LOG.info(
            "expiry sweep finished: %d expired, %d collateral(s) failed",
            report.expired,
            len(report.failures),
        )
        return report

    async def _sweep(self, collateral_id: str, ids: List[str], report: ExpirySweepReport) -> None:
        try:
            expired = await self._expire_group(collateral_id, ids, report.as_of)
        except Exception as exc:
            expiry_sweep_failures_total.inc()
            report.failures[collateral_id] = str(exc)
            _LOG.error(
                "expiry sweep failed for collateral",
                exc_info=True,
                extra={"collateral_id": collateral_id},
            )
            return
        report.expired_ids.extend(expired)

    async def _expire_group(self, collateral_id: str, ids: List[str], as_of: datetime) -> List[str]:
        async with self.reconciler.serialized(collateral_id):
            before: Dict[str, Optional[Encumbrance]] = {}
            after: Dict[str, Optional[Encumbrance]] = {}
            now = utcnow()
            for encumbrance_id in ids:
                try:
                    current = await self.get(encumbrance_id)
                except NotFound:
                    # deleted since the scan
                    continue
                if not current.is_expired(as_of):
                    continue
                record = current.model_copy(deep=True)
                record.status = S.EXPIRED
                record.updated_at = now
                before[encumbrance_id] = current
                after[encumbrance_id] = record
            if after:
                await self._commit("expire", collateral_id, before, after)
        encumbrance_expired_total.inc(len(after))
        return list(after)
