"""
Per-negotiation serialisation of state changes.

Only one coroutine in this process may mutate a given negotiation at a
time. Other processes are kept honest by the optimistic ``version``
column on ``negotiations``; this lock removes in-process contention so
the version check rarely fires.
"""
from __future__ import annotations

import asyncio
import contextlib
from collections import defaultdict
from typing import AsyncIterator, Dict


class KeyedLock:
    """A lazily created ``asyncio.Lock`` per key, dropped once unused."""

    def __init__(self) -> None:
        self._locks: Dict[str, asyncio.Lock] = {}
        self._waiters: Dict[str, int] = defaultdict(int)

    @contextlib.asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._waiters[key] += 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                del self._waiters[key]
                self._locks.pop(key, None)

    def __len__(self) -> int:
        return len(self._locks)
