"""
Per-session locking.

Only one webhook per session may run the load -> transition -> persist
sequence at a time, so a provider retry can't advance the same state
twice. Different sessions never wait on each other.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Dict


class KeyedLocks:
    """asyncio.Lock per key, dropped once nobody holds or waits on it."""

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str):
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)
