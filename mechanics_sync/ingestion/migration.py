"""
One-time migration of a client-held mechanics snapshot into the server store.

Server entries always win: an incoming id is copied only when the store has
no entry for it at all. A stale browser cache must never clobber data the
server refreshed since.
"""
import asyncio
from datetime import datetime
from typing import Any, Callable, Mapping, Optional

import structlog

from mechanics_sync.ingestion.refresh_policy import format_timestamp, utcnow
from mechanics_sync.models import MergeResult
from mechanics_sync.storage import CacheStore

logger = structlog.get_logger()


def snapshot_mechanics(payload: Mapping[str, Any]) -> dict[str, list[str]]:
    """
    Extract id -> mechanics from a client snapshot.

    Accepts the plain ``{"mechanics": {id: [...]}}`` migration body as well
    as the storefront's per-game enrichment records
    (``{id: {"mechanics": [...], "categories": [...], ...}}``).
    """
    source = payload.get("mechanics", payload)
    if not isinstance(source, Mapping):
        raise ValueError("mechanics must be an object")

    mechanics: dict[str, list[str]] = {}
    for game_id, value in source.items():
        if isinstance(value, Mapping):
            value = value.get("mechanics")
        if isinstance(value, list) and value:
            mechanics[str(game_id)] = [str(name) for name in value]
    return mechanics


class MigrationMerger:
    def __init__(
        self,
        store: CacheStore,
        lock: Optional[asyncio.Lock] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.lock = lock or asyncio.Lock()
        self._clock = clock

    async def merge(self, incoming: Mapping[str, Optional[list[str]]]) -> MergeResult:
        """Copy absent ids from ``incoming``; always stamps lastUpdated."""
        async with self.lock:
            cache = await self.store.load()

            merged = 0
            for game_id, mechanics in incoming.items():
                if game_id in cache.mechanics or not mechanics:
                    continue
                cache.mechanics[game_id] = list(mechanics)
                merged += 1

            cache.last_updated = format_timestamp(self._clock())
            await self.store.save(cache)

        logger.info(
            "Migrated client mechanics snapshot",
            merged=merged,
            incoming=len(incoming),
            total=len(cache.mechanics),
        )
        return MergeResult(merged=merged, total=len(cache.mechanics))
