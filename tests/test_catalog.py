"""Tests for catalog loading and mechanics filtering."""
import pytest

from mechanics_sync.catalog import (
    catalog_ids,
    filter_by_mechanics,
    load_catalog,
    load_catalog_csv,
    unique_mechanics,
)
from mechanics_sync.models import CatalogItem

CSV_TEXT = (
    "\ufeffobjectname,objectid,rating,own\n"
    "Catan,13,7,1\n"
    "Carcassonne,822,,1\n"
    ",9999,,1\n"
    "Ticket to Ride,,,1\n"
    "Catan: Seafarers,325,,1\n"
)


@pytest.fixture
def catalog_csv(tmp_path):
    path = tmp_path / "collection.csv"
    path.write_text(CSV_TEXT, encoding="utf-8")
    return path


def test_load_catalog_csv_skips_incomplete_rows(catalog_csv):
    items = load_catalog_csv(catalog_csv)

    assert [(item.id, item.name) for item in items] == [
        ("13", "Catan"),
        ("822", "Carcassonne"),
        ("325", "Catan: Seafarers"),
    ]


async def test_load_catalog_reads_csv_without_username(catalog_csv):
    items = await load_catalog(csv_path=catalog_csv)

    assert catalog_ids(items) == ["13", "822", "325"]


async def test_load_catalog_uses_configured_csv_path(catalog_csv, monkeypatch):
    from mechanics_sync.config import get_settings

    monkeypatch.setenv("CATALOG_CSV_PATH", str(catalog_csv))
    get_settings.cache_clear()

    items = await load_catalog()

    assert len(items) == 3


async def test_load_catalog_with_username_needs_client():
    with pytest.raises(ValueError):
        await load_catalog(username="cafe")


async def test_load_catalog_with_username_fetches_collection():
    class StubClient:
        async def fetch_collection(self, username):
            return [CatalogItem(id="13", name=f"Catan ({username})")]

    items = await load_catalog(StubClient(), username="cafe")

    assert items[0].name == "Catan (cafe)"


async def test_missing_csv_raises(tmp_path):
    with pytest.raises(OSError):
        await load_catalog(csv_path=tmp_path / "nope.csv")


def test_catalog_ids_deduplicates_in_order():
    items = [CatalogItem(id=i, name="g") for i in ["3", "1", "3", "2", "1"]]

    assert catalog_ids(items) == ["3", "1", "2"]


def test_unique_mechanics_sorted():
    mechanics = {"1": ["Trading", "Dice Rolling"], "2": ["Dice Rolling", "Auction/Bidding"]}

    assert unique_mechanics(mechanics) == ["Auction/Bidding", "Dice Rolling", "Trading"]
    assert unique_mechanics({}) == []


def test_filter_by_mechanics():
    items = [CatalogItem(id=i, name=f"Game {i}") for i in ["1", "2", "3"]]
    mechanics = {"1": ["Trading"], "2": ["Worker Placement"]}

    assert [i.id for i in filter_by_mechanics(items, mechanics, ["Trading", "Bluffing"])] == ["1"]
    assert [i.id for i in filter_by_mechanics(items, mechanics, [])] == ["1", "2", "3"]
    # Games without data never match a selection
    assert [i.id for i in filter_by_mechanics(items, mechanics, ["Worker Placement"])] == ["2"]
