"""
HTTP API routers.
"""
from mechanics_sync.api.mechanics import router as mechanics_router

__all__ = ["mechanics_router"]
