"""Dict-backed stores for tests, demos and single-process deployments.

Records are deep-copied on the way in and out so callers never share mutable
state with the store. Writes take one of a fixed set of shard locks chosen by
key hash instead of a single store-wide lock.
"""

from __future__ import annotations

import asyncio
import threading
from typing import Any, Dict, Generic, List, TypeVar

from sqlmodel import SQLModel

from collateral_domain.models import (AutoValuation, Collateral, Encumbrance,
                                      TitleRecord)

from ..errors import NotFound

__all__ = [
    "InMemoryAutoValuationStore",
    "InMemoryCollateralStore",
    "InMemoryEncumbranceStore",
    "InMemoryTitleRecordStore",
]

_M = TypeVar("_M", bound=SQLModel)

_SHARDS = 16


class _ShardedStore(Generic[_M]):
    kind = "record"
    key_field = "id"

    def __init__(self, *, latency: float = 0.0) -> None:
        # optional artificial latency; yields to the loop on every call
        self.latency = latency
        self._items: Dict[str, _M] = {}
        self._shards = [threading.Lock() for _ in range(_SHARDS)]

    def _shard(self, key: str) -> threading.Lock:
        return self._shards[hash(key) % _SHARDS]

    async def _pause(self) -> None:
        if self.latency:
            await asyncio.sleep(self.latency)

    async def get(self, key: str) -> _M:
        await self._pause()
        with self._shard(key):
            item = self._items.get(key)
        if item is None:
            raise NotFound(self.kind, key)
        return item.model_copy(deep=True)

    async def upsert(self, item: _M) -> _M:
        await self._pause()
        key = getattr(item, self.key_field)
        stored = item.model_copy(deep=True)
        with self._shard(key):
            self._items[key] = stored
        return stored.model_copy(deep=True)

    async def delete(self, key: str) -> None:
        await self._pause()
        with self._shard(key):
            if self._items.pop(key, None) is None:
                raise NotFound(self.kind, key)

    async def query(self, **fields: Any) -> List[_M]:
        await self._pause()
        snapshot = list(self._items.values())
        return [
            item.model_copy(deep=True)
            for item in snapshot
            if all(getattr(item, k) == v for k, v in fields.items())
        ]


class InMemoryCollateralStore(_ShardedStore[Collateral]):
    kind = "collateral"
    key_field = "collateral_id"


class InMemoryEncumbranceStore(_ShardedStore[Encumbrance]):
    kind = "encumbrance"
    key_field = "encumbrance_id"

    async def query_by_collateral_id(self, collateral_id: str) -> List[Encumbrance]:
        return await self.query(collateral_id=collateral_id)


class InMemoryAutoValuationStore(_ShardedStore[AutoValuation]):
    kind = "auto-valuation"
    key_field = "valuation_id"


class InMemoryTitleRecordStore(_ShardedStore[TitleRecord]):
    kind = "title-record"
    key_field = "title_id"
