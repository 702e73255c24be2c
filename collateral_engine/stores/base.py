"""Storage collaborator contracts consumed by the engine.

Stores are async so slow backends can be bounded with a timeout. ``get`` and
``delete`` raise :class:`~collateral_engine.errors.NotFound` for unknown ids;
backend failures surface as
:class:`~collateral_engine.errors.CollaboratorUnavailable`.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, List, Optional, Protocol, TypeVar

from collateral_domain.models import (AutoValuation, Collateral, Encumbrance,
                                      TitleRecord)

from ..errors import CollaboratorUnavailable

__all__ = [
    "AutoValuationStore",
    "CollateralStore",
    "EncumbranceStore",
    "TitleRecordStore",
    "bounded",
]

_T = TypeVar("_T")


class CollateralStore(Protocol):
    async def get(self, collateral_id: str) -> Collateral:
        ...

    async def upsert(self, collateral: Collateral) -> Collateral:
        ...

    async def delete(self, collateral_id: str) -> None:
        ...

    async def query(self, **fields: Any) -> List[Collateral]:
        ...


class EncumbranceStore(Protocol):
    async def get(self, encumbrance_id: str) -> Encumbrance:
        ...

    async def upsert(self, encumbrance: Encumbrance) -> Encumbrance:
        ...

    async def delete(self, encumbrance_id: str) -> None:
        ...

    async def query_by_collateral_id(self, collateral_id: str) -> List[Encumbrance]:
        ...

    async def query(self, **fields: Any) -> List[Encumbrance]:
        ...


class AutoValuationStore(Protocol):
    async def get(self, valuation_id: str) -> AutoValuation:
        ...

    async def upsert(self, valuation: AutoValuation) -> AutoValuation:
        ...

    async def delete(self, valuation_id: str) -> None:
        ...

    async def query(self, **fields: Any) -> List[AutoValuation]:
        ...


class TitleRecordStore(Protocol):
    async def get(self, title_id: str) -> TitleRecord:
        ...

    async def upsert(self, record: TitleRecord) -> TitleRecord:
        ...

    async def delete(self, title_id: str) -> None:
        ...

    async def query(self, **fields: Any) -> List[TitleRecord]:
        ...


async def bounded(
    awaitable: Awaitable[_T], timeout: Optional[float], collaborator: str
) -> _T:
    """Await *awaitable*, converting a timeout into ``CollaboratorUnavailable``."""
    try:
        if timeout is None:
            return await awaitable
        return await asyncio.wait_for(awaitable, timeout)
    except asyncio.TimeoutError as exc:
        raise CollaboratorUnavailable(collaborator, f"timed out after {timeout}s") from exc
