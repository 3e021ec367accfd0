import asyncio
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import Hashable


class KeyedLock:
    """One asyncio.Lock per key; idle locks are dropped after use."""

    def __init__(self):
        self._locks: dict = {}
        self._waiters = defaultdict(int)

    @asynccontextmanager
    async def hold(self, key: Hashable):
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._waiters[key] += 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                self._locks.pop(key, None)
                self._waiters.pop(key, None)
