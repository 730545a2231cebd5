"""Per (subject, region) serialization for grant mutations."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Dict, Tuple
from uuid import UUID

PairKey = Tuple[UUID, str]


@dataclass
class _PairLock:
    lock: asyncio.Lock
    holders: int = 0


class PairLockRegistry:
    """Hand out one asyncio lock per ``(subject_user_id, region)`` pair.

    Entries are dropped once nobody holds or waits on them, so the registry
    stays proportional to in-flight mutations. :meth:`exclusive` takes every
    pair at once: it waits for current holders to drain and makes new
    ``hold`` calls wait until it is released.
    """

    def __init__(self) -> None:
        self._locks: Dict[PairKey, _PairLock] = {}
        self._active = 0
        self._exclusive: asyncio.Event | None = None
        self._drained: asyncio.Event | None = None

    async def _wait_for_exclusive(self) -> None:
        while self._exclusive is not None:
            await self._exclusive.wait()

    @asynccontextmanager
    async def hold(self, subject_user_id: UUID, region: str) -> AsyncIterator[None]:
        await self._wait_for_exclusive()
        key: PairKey = (subject_user_id, region)
        entry = self._locks.get(key)
        if entry is None:
            entry = _PairLock(lock=asyncio.Lock())
            self._locks[key] = entry
        entry.holders += 1
        self._active += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.holders -= 1
            if entry.holders == 0 and self._locks.get(key) is entry:
                del self._locks[key]
            self._active -= 1
            if self._active == 0 and self._drained is not None:
                self._drained.set()

    @asynccontextmanager
    async def exclusive(self) -> AsyncIterator[None]:
        await self._wait_for_exclusive()
        gate = asyncio.Event()
        self._exclusive = gate
        try:
            while self._active:
                self._drained = asyncio.Event()
                await self._drained.wait()
            self._drained = None
            yield
        finally:
            self._drained = None
            self._exclusive = None
            gate.set()

    @property
    def is_exclusive(self) -> bool:
        return self._exclusive is not None

    def is_locked(self, subject_user_id: UUID, region: str) -> bool:
        entry = self._locks.get((subject_user_id, region))
        return bool(entry and entry.lock.locked())

    def __len__(self) -> int:
        return len(self._locks)


_REGISTRY = PairLockRegistry()


def get_pair_lock_registry() -> PairLockRegistry:
    return _REGISTRY


__all__ = ["PairLockRegistry", "get_pair_lock_registry"]
