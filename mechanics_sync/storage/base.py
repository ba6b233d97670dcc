"""
Cache store interface shared by the server file store and client snapshots.
"""
from abc import ABC, abstractmethod

from mechanics_sync.models import MechanicsCache


class CacheStore(ABC):
    """
    Durable home of a MechanicsCache.

    ``load`` never fails: missing or unreadable state yields an empty cache.
    ``save`` failures propagate to the caller.
    """

    @abstractmethod
    async def load(self) -> MechanicsCache:
        """Read the current cache, or an empty one."""
        pass

    @abstractmethod
    async def save(self, cache: MechanicsCache) -> None:
        """Persist the full cache."""
        pass

    @abstractmethod
    async def clear(self) -> None:
        """Drop all persisted state."""
        pass
