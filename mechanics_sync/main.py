"""
Board Game Cafe mechanics API - FastAPI application.
"""
from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from mechanics_sync import __version__
from mechanics_sync.api import mechanics_router
from mechanics_sync.clients import BGGClient
from mechanics_sync.config import get_settings
from mechanics_sync.ingestion import EnrichmentOrchestrator, MigrationMerger
from mechanics_sync.ingestion.orchestrator import DetailsFetcher
from mechanics_sync.scheduler import RefreshScheduler
from mechanics_sync.storage import CacheStore, FileCacheStore
from mechanics_sync.utils import setup_logging

logger = structlog.get_logger()


def _describe_validation_error(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request"
    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "invalid value")
    return f"{location}: {message}" if location else message


def create_app(
    store: Optional[CacheStore] = None,
    fetcher: Optional[DetailsFetcher] = None,
    enable_scheduler: Optional[bool] = None,
) -> FastAPI:
    """
    Build the API application.

    Components are created once per process in the lifespan. ``store`` and
    ``fetcher`` may be injected; otherwise a FileCacheStore and a connected
    BGGClient are used.
    """
    settings = get_settings()
    if enable_scheduler is None:
        enable_scheduler = settings.refresh_schedule_enabled

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging(settings.log_level, settings.log_format)
        logger.info("Starting mechanics sync API", version=__version__)

        client: Optional[BGGClient] = None
        if fetcher is None:
            client = BGGClient()
            await client.connect()

        cache_store = store or FileCacheStore()
        orchestrator = EnrichmentOrchestrator(cache_store, fetcher or client)
        app.state.store = cache_store
        app.state.orchestrator = orchestrator
        app.state.merger = MigrationMerger(cache_store, lock=orchestrator.lock)

        scheduler: Optional[RefreshScheduler] = None
        if enable_scheduler:
            scheduler = RefreshScheduler(orchestrator, client)
            scheduler.start()

        yield

        if scheduler:
            scheduler.stop()
        if client:
            await client.close()
        logger.info("Shutdown complete")

    app = FastAPI(
        title=settings.app_name,
        version=__version__,
        description="Mechanics cache for the board game cafe catalog",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content={"error": _describe_validation_error(exc)})

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})

    app.include_router(mechanics_router, prefix="/api/games/mechanics", tags=["mechanics"])

    @app.get("/health", tags=["system"])
    async def health():
        return {"status": "ok"}

    return app


app = create_app()
