"""
Shared fixtures for the mechanics sync test suite.
"""
import asyncio
from datetime import datetime, timezone
from typing import Optional, Union

import pytest

from mechanics_sync.config import get_settings
from mechanics_sync.models import GameDetails, MechanicsCache
from mechanics_sync.storage import SnapshotCacheStore

NOW = datetime(2025, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch, tmp_path):
    """Fresh settings per test with fast backoff and a temp cache file."""
    monkeypatch.setenv("MECHANICS_CACHE_FILE", str(tmp_path / "data" / "mechanics-cache.json"))
    monkeypatch.setenv("ERROR_BACKOFF_SECONDS", "0")
    monkeypatch.setenv("REFRESH_SCHEDULE_ENABLED", "false")
    monkeypatch.setenv("BGG_USERNAME", "")
    get_settings.cache_clear()
    # Keep structlog on its default, uncached configuration
    monkeypatch.setattr("mechanics_sync.main.setup_logging", lambda *args, **kwargs: None)
    monkeypatch.setattr("mechanics_sync.cli.setup_logging", lambda *args, **kwargs: None)
    yield
    get_settings.cache_clear()


@pytest.fixture
def clock():
    return lambda: NOW


FetchOutcome = Union[list[str], None, Exception]


class FakeFetcher:
    """
    Stand-in for BGGClient.fetch_details.

    ``outcomes`` maps game id -> mechanics list, None (no details), or an
    exception to raise. Unknown ids get ``default``.
    """

    def __init__(self, outcomes: Optional[dict[str, FetchOutcome]] = None, default: FetchOutcome = None, delay: float = 0.0):
        self.outcomes = outcomes or {}
        self.default = default
        self.delay = delay
        self.calls: list[str] = []

    async def fetch_details(self, game_id: str) -> Optional[GameDetails]:
        self.calls.append(game_id)
        if self.delay:
            await asyncio.sleep(self.delay)
        outcome = self.outcomes.get(game_id, self.default)
        if isinstance(outcome, Exception):
            raise outcome
        if outcome is None:
            return None
        return GameDetails(id=game_id, name=f"Game {game_id}", mechanics=outcome or None)


class RecordingStore(SnapshotCacheStore):
    """Snapshot store that keeps a copy of every saved cache."""

    def __init__(self, initial: Optional[MechanicsCache] = None):
        super().__init__(initial)
        self.saves: list[MechanicsCache] = []

    async def save(self, cache: MechanicsCache) -> None:
        self.saves.append(cache.model_copy(deep=True))
        await super().save(cache)
