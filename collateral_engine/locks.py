"""Per-key asyncio mutual exclusion.

Writers on the same collateral id queue behind one ``asyncio.Lock``; writers
on different ids never contend. Locks are reference counted and dropped once
no task holds or waits on them, so the table stays proportional to the number
of collaterals being mutated right now.
"""
from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Hashable, Optional

__all__ = ["KeyedLock", "LockTimeout"]


class LockTimeout(Exception):
    """The lock for a key was not acquired within the requested timeout."""

    def __init__(self, key: Hashable, timeout: float):
        super().__init__(f"lock {key!r} not acquired within {timeout}s")
        self.key = key
        self.timeout = timeout


class _Entry:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = asyncio.Lock()
        self.users = 0


class KeyedLock:
    def __init__(self) -> None:
        self._entries: Dict[Hashable, _Entry] = {}

    @asynccontextmanager
    async def hold(self, key: Hashable, timeout: Optional[float] = None) -> AsyncIterator[None]:
        """Hold the lock for *key*; raises ``LockTimeout`` if not acquired in time."""
        entry = self._entries.get(key)
        if entry is None:
            entry = self._entries[key] = _Entry()
        entry.users += 1
        try:
            if timeout is None:
                await entry.lock.acquire()
            else:
                try:
                    await asyncio.wait_for(entry.lock.acquire(), timeout)
                except asyncio.TimeoutError as exc:
                    raise LockTimeout(key, timeout) from exc
            try:
                yield
            finally:
                entry.lock.release()
        finally:
            entry.users -= 1
            if entry.users == 0 and self._entries.get(key) is entry:
                del self._entries[key]

    def locked(self, key: Hashable) -> bool:
        entry = self._entries.get(key)
        return entry is not None and entry.lock.locked()

    def __len__(self) -> int:
        return len(self._entries)
