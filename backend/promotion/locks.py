"""In-process serialization of promotion attempts per (creator, product)."""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from promotion.errors import ConcurrentPromotionError


class ProductLockRegistry:
    """
    One asyncio.Lock per (creator, product).

    A second attempt for a product that is already being promoted is
    refused rather than queued: the caller gets ConcurrentPromotionError
    and can retry once the first attempt is terminal. The partial unique
    index on deployment_records covers the multi-process case.
    """

    def __init__(self) -> None:
        self._locks: dict[tuple[str, str], asyncio.Lock] = {}

    def _lock_for(self, creator_id: str, product_id: str) -> asyncio.Lock:
        key = (str(creator_id), str(product_id))
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    def is_locked(self, creator_id: str, product_id: str) -> bool:
        lock = self._locks.get((str(creator_id), str(product_id)))
        return bool(lock and lock.locked())

    @asynccontextmanager
    async def hold(self, creator_id: str, product_id: str) -> AsyncIterator[None]:
        key = (str(creator_id), str(product_id))
        lock = self._lock_for(creator_id, product_id)
        if lock.locked():
            raise ConcurrentPromotionError(str(product_id))
        await lock.acquire()
        try:
            yield
        finally:
            lock.release()
            if not lock.locked() and self._locks.get(key) is lock:
                del self._locks[key]


_default_registry = ProductLockRegistry()


def get_lock_registry() -> ProductLockRegistry:
    """Process-wide registry shared by the API and in-process batch runs."""
    return _default_registry
