"""
In-memory cache store for client-held snapshots.
"""
import copy
from typing import Optional

from mechanics_sync.models import MechanicsCache
from mechanics_sync.storage.base import CacheStore


class SnapshotCacheStore(CacheStore):
    """
    Cache store backed by a plain mapping, e.g. a snapshot uploaded from a
    browser's local storage. Loads and saves copy the data so callers never
    share mutable state with the store.
    """

    def __init__(self, initial: Optional[MechanicsCache] = None):
        self._cache = initial.model_copy(deep=True) if initial else MechanicsCache()

    async def load(self) -> MechanicsCache:
        return self._cache.model_copy(deep=True)

    async def save(self, cache: MechanicsCache) -> None:
        self._cache = cache.model_copy(deep=True)

    async def clear(self) -> None:
        self._cache = MechanicsCache()

    def snapshot(self) -> dict[str, list[str]]:
        return copy.deepcopy(self._cache.mechanics)
