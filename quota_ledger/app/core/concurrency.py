"""
Per-key asyncio locks.

Serializes ledger mutations for one tenant inside this process while
leaving other tenants uncontended. Cross-process safety comes from the
storage-level compare-and-append in the ledger service.
"""

import asyncio
import weakref
from contextlib import asynccontextmanager
from typing import AsyncIterator


class KeyedLock:
    """
    Lazily created lock per key.

    Locks are held in a WeakValueDictionary, so a key's lock is dropped
    once no coroutine holds or waits on it.
    """

    def __init__(self):
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def _get_lock(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._get_lock(key)
        async with lock:
            yield

    def locked(self, key: str) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()


# One lock per tenant balance
tenant_locks = KeyedLock()
