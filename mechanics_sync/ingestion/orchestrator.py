"""
Enrichment orchestrator: bulk refresh of the mechanics cache.

Pipeline:
=========
1. Load the cache store
2. Skip entirely while the cache is fresh (no BGG budget spent), or in
   fill-gaps mode drop the ids that already have an entry
3. Fetch each game sequentially through the rate-limited client
4. Fill/overwrite entries only on success, never clear on failure
5. Checkpoint every N successful updates, final save at the end

Only one refresh runs per orchestrator at a time. Concurrent callers join
the refresh in flight and receive its result.
"""
import asyncio
from datetime import datetime, timedelta
from typing import Callable, Iterable, Optional, Protocol

import structlog

from mechanics_sync.config import get_settings
from mechanics_sync.ingestion.refresh_policy import (
    format_timestamp,
    needs_refresh,
    utcnow,
)
from mechanics_sync.models import EnrichmentResult, GameDetails, MechanicsCache
from mechanics_sync.storage import CacheStore

logger = structlog.get_logger()


class DetailsFetcher(Protocol):
    async def fetch_details(self, game_id: str) -> Optional[GameDetails]:
        ...


ProgressCallback = Callable[[int, int, str], None]


class EnrichmentOrchestrator:
    """
    Drives a bulk mechanics refresh against any CacheStore.

    The same loop serves the server JSON file and client-held snapshots.
    """

    def __init__(
        self,
        store: CacheStore,
        fetcher: DetailsFetcher,
        checkpoint_every: Optional[int] = None,
        error_backoff_seconds: Optional[float] = None,
        item_timeout_seconds: Optional[float] = None,
        staleness_threshold: Optional[timedelta] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        settings = get_settings()
        self.store = store
        self.fetcher = fetcher
        self.checkpoint_every = checkpoint_every or settings.checkpoint_every
        self.error_backoff_seconds = (
            settings.error_backoff_seconds if error_backoff_seconds is None else error_backoff_seconds
        )
        self.item_timeout_seconds = (
            settings.item_timeout_seconds if item_timeout_seconds is None else item_timeout_seconds
        )
        self.staleness_threshold = staleness_threshold or timedelta(
            hours=settings.cache_staleness_hours
        )
        self._clock = clock

        # Guards store read-modify-write; shared with MigrationMerger
        self.lock = asyncio.Lock()
        self._inflight: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    def is_stale(self, cache: MechanicsCache) -> bool:
        return needs_refresh(cache.last_updated, now=self._clock(), threshold=self.staleness_threshold)

    async def refresh(
        self,
        game_ids: Iterable[str],
        force: bool = False,
        only_missing: bool = False,
        on_progress: Optional[ProgressCallback] = None,
    ) -> EnrichmentResult:
        """
        Refresh mechanics for ``game_ids`` if the cache is stale.

        Args:
            game_ids: Game ids in processing order
            force: Refresh even when the cache is still fresh
            only_missing: Fetch only ids with no cached entry. Runs even while
                the cache is fresh and leaves ``lastUpdated`` untouched.
            on_progress: Called as ``(position, total, game_id)`` before each fetch

        Returns:
            EnrichmentResult (``skipped`` when the cache was fresh)
        """
        if self.is_running:
            logger.info("Refresh already in progress, joining it")
            return await asyncio.shield(self._inflight)

        task = asyncio.create_task(self._run(list(game_ids), force, only_missing, on_progress))
        task.add_done_callback(self._clear_inflight)
        self._inflight = task
        # A cancelled caller does not abort the refresh itself
        return await asyncio.shield(task)

    def _clear_inflight(self, task: asyncio.Task) -> None:
        if self._inflight is task:
            self._inflight = None

    async def _run(
        self,
        game_ids: list[str],
        force: bool,
        only_missing: bool,
        on_progress: Optional[ProgressCallback],
    ) -> EnrichmentResult:
        async with self.lock:
            cache = await self.store.load()

            if only_missing:
                game_ids = [game_id for game_id in game_ids if game_id not in cache.mechanics]
            elif not force and not self.is_stale(cache):
                logger.info("Mechanics cache is still fresh", last_updated=cache.last_updated)
                return EnrichmentResult(
                    total=len(game_ids),
                    last_updated=cache.last_updated,
                    skipped=True,
                    mechanics=cache.mechanics,
                )

            result = EnrichmentResult(total=len(game_ids))
            logger.info(
                "Updating mechanics cache",
                games=len(game_ids),
                force=force,
                only_missing=only_missing,
            )

            for index, game_id in enumerate(game_ids, start=1):
                log = logger.bind(game_id=game_id, position=index, total=len(game_ids))
                if on_progress:
                    on_progress(index, len(game_ids), game_id)

                try:
                    details = await self._fetch(game_id)
                except Exception as e:
                    result.failed += 1
                    log.warning(
                        "Failed to fetch mechanics",
                        error=str(e) or type(e).__name__,
                        error_type=type(e).__name__,
                    )
                    await self._backoff()
                    continue

                if details is None:
                    result.failed += 1
                    log.warning("No details returned for game")
                    await self._backoff()
                    continue

                if not details.mechanics:
                    result.failed += 1
                    log.info("Game has no mechanics listed")
                    continue

                cache.mechanics[game_id] = list(details.mechanics)
                result.updated += 1

                if result.updated % self.checkpoint_every == 0:
                    await self.store.save(cache)
                    log.info("Progress saved", updated=result.updated)

            # Filling gaps does not refresh existing entries, so the staleness clock stays put
            if not only_missing:
                cache.last_updated = format_timestamp(self._clock())
            await self.store.save(cache)

            result.last_updated = cache.last_updated
            logger.info(
                "Mechanics cache updated",
                updated=result.updated,
                failed=result.failed,
                total=result.total,
            )
            return result

    async def _fetch(self, game_id: str) -> Optional[GameDetails]:
        """
        Fetch one game, bounded by ``item_timeout_seconds`` when set.

        The timeout bounds this caller only: a request already handed to the
        rate limiter keeps running and the next item still queues behind it.
        """
        if self.item_timeout_seconds:
            return await asyncio.wait_for(
                self.fetcher.fetch_details(game_id),
                timeout=self.item_timeout_seconds,
            )
        return await self.fetcher.fetch_details(game_id)

    async def _backoff(self) -> None:
        if self.error_backoff_seconds > 0:
            await asyncio.sleep(self.error_backoff_seconds)
