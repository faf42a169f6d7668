"""Per-partition mutual exclusion."""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from ..github_client.models import ResourceKey


class KeyLocks:
    """One asyncio.Lock per partition.

    A refresh holds its partition's lock for fetch, detect and merge; a
    mutation holds both partitions it touches, taken in slug order.
    """

    def __init__(self) -> None:
        self._locks: dict[ResourceKey, asyncio.Lock] = {}

    def get(self, key: ResourceKey) -> asyncio.Lock:
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        return self._locks[key]

    @asynccontextmanager
    async def hold(self, *keys: ResourceKey) -> AsyncIterator[None]:
        ordered = sorted(set(keys), key=lambda k: k.slug)
        acquired: list[asyncio.Lock] = []
        try:
            for key in ordered:
                lock = self.get(key)
                await lock.acquire()
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()
