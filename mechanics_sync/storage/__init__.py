"""
Cache store implementations.
"""
from mechanics_sync.storage.base import CacheStore
from mechanics_sync.storage.file_store import FileCacheStore
from mechanics_sync.storage.memory_store import SnapshotCacheStore

__all__ = [
    "CacheStore",
    "FileCacheStore",
    "SnapshotCacheStore",
]
