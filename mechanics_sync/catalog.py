"""
Catalog helpers: the game id list the mechanics cache enriches, and the
mechanics filter used by the storefront.
"""
import asyncio
import csv
from pathlib import Path
from typing import Iterable, Mapping, Optional

import structlog

from mechanics_sync.clients import BGGClient
from mechanics_sync.config import get_settings
from mechanics_sync.models import CatalogItem

logger = structlog.get_logger()


def load_catalog_csv(path: Path) -> list[CatalogItem]:
    """
    Read a BGG collection CSV export (``objectid``/``objectname`` columns).

    Rows missing an id or a name are dropped. All item types are kept,
    expansions included.
    """
    items = []
    with open(path, newline="", encoding="utf-8-sig") as handle:
        for row in csv.DictReader(handle):
            game_id = (row.get("objectid") or "").strip()
            name = (row.get("objectname") or "").strip()
            if game_id and name:
                items.append(CatalogItem(id=game_id, name=name))

    logger.info("Loaded catalog from CSV", path=str(path), games=len(items))
    return items


async def load_catalog(
    client: Optional[BGGClient] = None,
    csv_path: Optional[Path] = None,
    username: Optional[str] = None,
) -> list[CatalogItem]:
    """
    Load the catalog from the BGG collection of ``username`` when given,
    otherwise from the CSV export.

    Raises:
        OSError: CSV missing or unreadable
        ValueError: CSV not UTF-8, or a username without a client
        BGGError: collection fetch failed
    """
    settings = get_settings()
    username = username if username is not None else settings.bgg_username
    if username:
        if client is None:
            raise ValueError("A connected BGGClient is required to fetch a collection")
        return await client.fetch_collection(username)
    return await asyncio.to_thread(load_catalog_csv, Path(csv_path or settings.catalog_csv_path))


def catalog_ids(items: Iterable[CatalogItem]) -> list[str]:
    """Ids in catalog order, duplicates removed."""
    seen: set[str] = set()
    ids = []
    for item in items:
        if item.id not in seen:
            seen.add(item.id)
            ids.append(item.id)
    return ids


def unique_mechanics(mechanics: Mapping[str, list[str]]) -> list[str]:
    """Sorted set of every mechanic name in the cache."""
    names = {name for names in mechanics.values() for name in names}
    return sorted(names)


def filter_by_mechanics(
    items: Iterable[CatalogItem],
    mechanics: Mapping[str, list[str]],
    selected: Iterable[str],
) -> list[CatalogItem]:
    """
    Items carrying at least one of ``selected``.

    Games without mechanics data never match a mechanics filter; with no
    selection every item passes.
    """
    wanted = set(selected)
    if not wanted:
        return list(items)
    return [
        item for item in items
        if wanted.intersection(mechanics.get(item.id) or ())
    ]
