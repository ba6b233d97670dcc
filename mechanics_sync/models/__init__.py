"""
Pydantic models for the mechanics cache and BoardGameGeek metadata.
Field aliases match the camelCase JSON documents shared with the storefront.
"""
from dataclasses import dataclass, field
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# =============================================================================
# CACHE DOCUMENT
# =============================================================================

class MechanicsCache(BaseModel):
    """Persisted mechanics cache: game id -> ordered mechanic names."""

    model_config = ConfigDict(populate_by_name=True)

    last_updated: Optional[str] = Field(default=None, alias="lastUpdated")
    mechanics: dict[str, list[str]] = Field(default_factory=dict)

    def to_document(self) -> dict[str, Any]:
        """Serialize to the on-disk / wire shape."""
        return {
            "lastUpdated": self.last_updated,
            "mechanics": {game_id: list(names) for game_id, names in self.mechanics.items()},
        }


# =============================================================================
# CATALOG
# =============================================================================

class CatalogItem(BaseModel):
    """A game in the cafe collection."""

    model_config = ConfigDict(str_strip_whitespace=True)

    id: str
    name: str


class GameDetails(BaseModel):
    """Normalized BoardGameGeek `thing` record."""

    id: str
    name: str = ""
    thumbnail: Optional[str] = None
    image: Optional[str] = None
    description: Optional[str] = None
    year_published: Optional[int] = None
    min_players: Optional[int] = None
    max_players: Optional[int] = None
    playing_time: Optional[int] = None
    min_play_time: Optional[int] = None
    max_play_time: Optional[int] = None
    min_age: Optional[int] = None
    rating: Optional[float] = None
    weight: Optional[float] = None
    rank: Optional[int] = None
    mechanics: Optional[list[str]] = None
    categories: Optional[list[str]] = None
    designers: Optional[list[str]] = None


# =============================================================================
# RUN RESULTS
# =============================================================================

@dataclass
class EnrichmentResult:
    """Summary of one orchestrator run."""
    total: int
    updated: int = 0
    failed: int = 0
    last_updated: Optional[str] = None
    skipped: bool = False
    mechanics: dict[str, list[str]] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        if self.skipped:
            return {
                "message": "Cache is still fresh",
                "mechanics": self.mechanics,
                "lastUpdated": self.last_updated,
            }
        return {
            "message": "Mechanics cache updated successfully",
            "updated": self.updated,
            "failed": self.failed,
            "total": self.total,
            "lastUpdated": self.last_updated,
        }


@dataclass
class MergeResult:
    """Summary of a client snapshot migration."""
    merged: int
    total: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "message": "Migration successful",
            "merged": self.merged,
            "total": self.total,
        }


# =============================================================================
# API REQUEST BODIES
# =============================================================================

class RefreshRequest(BaseModel):
    """Body of POST /api/games/mechanics."""

    game_ids: list[str] = Field(alias="gameIds")

    @field_validator("game_ids", mode="before")
    @classmethod
    def coerce_ids(cls, value: Any) -> Any:
        # BGG ids arrive as numbers from some clients
        if isinstance(value, list):
            return [str(v) if isinstance(v, int) and not isinstance(v, bool) else v for v in value]
        return value


class MigrateRequest(BaseModel):
    """Body of POST /api/games/mechanics/migrate."""

    mechanics: dict[str, Optional[list[str]]]


class CacheStatus(BaseModel):
    """Body of GET /api/games/mechanics."""

    model_config = ConfigDict(populate_by_name=True)

    mechanics: dict[str, list[str]]
    last_updated: Optional[str] = Field(default=None, alias="lastUpdated")
    needs_update: bool = Field(alias="needsUpdate")


__all__ = [
    "MechanicsCache",
    "CatalogItem",
    "GameDetails",
    "EnrichmentResult",
    "MergeResult",
    "RefreshRequest",
    "MigrateRequest",
    "CacheStatus",
]
