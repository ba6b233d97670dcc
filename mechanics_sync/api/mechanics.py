"""
Mechanics cache endpoints.

GET    /api/games/mechanics          cached mechanics + staleness
POST   /api/games/mechanics          bulk refresh (no-op while fresh)
POST   /api/games/mechanics/migrate  merge a client snapshot (server wins)
DELETE /api/games/mechanics          drop the cache file
GET    /api/games/mechanics/names    sorted unique mechanic names
"""
from typing import Any

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request

from mechanics_sync.catalog import unique_mechanics
from mechanics_sync.exceptions import CacheWriteError
from mechanics_sync.ingestion import EnrichmentOrchestrator, MigrationMerger
from mechanics_sync.models import CacheStatus, MigrateRequest, RefreshRequest
from mechanics_sync.storage import CacheStore

logger = structlog.get_logger()

router = APIRouter()


def get_store(request: Request) -> CacheStore:
    return request.app.state.store


def get_orchestrator(request: Request) -> EnrichmentOrchestrator:
    return request.app.state.orchestrator


def get_merger(request: Request) -> MigrationMerger:
    return request.app.state.merger


@router.get("", response_model=CacheStatus, response_model_by_alias=True)
async def read_mechanics(
    store: CacheStore = Depends(get_store),
    orchestrator: EnrichmentOrchestrator = Depends(get_orchestrator),
):
    """Return cached mechanics and whether a refresh is due."""
    cache = await store.load()
    return CacheStatus(
        mechanics=cache.mechanics,
        last_updated=cache.last_updated,
        needs_update=orchestrator.is_stale(cache),
    )


@router.post("")
async def refresh_mechanics(
    body: RefreshRequest,
    orchestrator: EnrichmentOrchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    """
    Refresh mechanics for the given games.

    While the cache is fresh this returns the current contents and performs
    no BGG requests.
    """
    try:
        result = await orchestrator.refresh(body.game_ids)
    except CacheWriteError as e:
        logger.error("Failed to update mechanics cache", error=str(e))
        raise HTTPException(status_code=500, detail="Failed to update mechanics cache")
    return result.to_dict()


@router.post("/migrate")
async def migrate_mechanics(
    body: MigrateRequest,
    merger: MigrationMerger = Depends(get_merger),
) -> dict[str, Any]:
    """Merge a client-held snapshot; existing server entries are kept."""
    try:
        result = await merger.merge(body.mechanics)
    except CacheWriteError as e:
        logger.error("Failed to migrate mechanics cache", error=str(e))
        raise HTTPException(status_code=500, detail="Failed to migrate mechanics cache")
    return result.to_dict()


@router.delete("")
async def clear_mechanics(
    store: CacheStore = Depends(get_store),
    orchestrator: EnrichmentOrchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    """Remove the cache; the next refresh starts from scratch."""
    if orchestrator.is_running:
        raise HTTPException(status_code=409, detail="A refresh is in progress")
    try:
        async with orchestrator.lock:
            await store.clear()
    except OSError as e:
        logger.error("Failed to clear mechanics cache", error=str(e))
        raise HTTPException(status_code=500, detail="Failed to clear mechanics cache")
    return {"message": "Cache cleared"}


@router.get("/names")
async def mechanic_names(store: CacheStore = Depends(get_store)) -> dict[str, Any]:
    """Every mechanic present in the cache, for the catalog filter."""
    cache = await store.load()
    return {"mechanics": unique_mechanics(cache.mechanics)}
