"""Tests for the enrichment orchestrator."""
import asyncio
import json
from datetime import timedelta

import pytest

from mechanics_sync.exceptions import CacheWriteError
from mechanics_sync.ingestion import EnrichmentOrchestrator, format_timestamp
from mechanics_sync.models import MechanicsCache
from mechanics_sync.storage import FileCacheStore, SnapshotCacheStore
from tests.conftest import NOW, FakeFetcher, RecordingStore

STALE = format_timestamp(NOW - timedelta(hours=25))


def make_orchestrator(store, fetcher, clock, **kwargs) -> EnrichmentOrchestrator:
    kwargs.setdefault("error_backoff_seconds", 0)
    kwargs.setdefault("item_timeout_seconds", 0)
    return EnrichmentOrchestrator(store, fetcher, clock=clock, **kwargs)


async def test_end_to_end_with_absent_cache_file(tmp_path, clock):
    path = tmp_path / "data" / "mechanics-cache.json"
    fetcher = FakeFetcher({"100": ["Dice Rolling"], "200": None})
    orchestrator = make_orchestrator(FileCacheStore(path), fetcher, clock)

    result = await orchestrator.refresh(["100", "200"])

    assert (result.updated, result.failed, result.total) == (1, 1, 2)
    assert result.last_updated == format_timestamp(NOW)
    assert json.loads(path.read_text(encoding="utf-8")) == {
        "lastUpdated": format_timestamp(NOW),
        "mechanics": {"100": ["Dice Rolling"]},
    }
    assert result.to_dict() == {
        "message": "Mechanics cache updated successfully",
        "updated": 1,
        "failed": 1,
        "total": 2,
        "lastUpdated": format_timestamp(NOW),
    }


async def test_fresh_cache_is_a_no_op(clock):
    fetcher = FakeFetcher(default=["Worker Placement"])
    store = RecordingStore()
    orchestrator = make_orchestrator(store, fetcher, clock)

    first = await orchestrator.refresh(["1", "2"])
    calls_after_first = len(fetcher.calls)
    saves_after_first = len(store.saves)
    second = await orchestrator.refresh(["1", "2"])

    assert calls_after_first == 2
    assert len(fetcher.calls) == calls_after_first
    assert len(store.saves) == saves_after_first
    assert second.skipped
    assert second.mechanics == store.snapshot()
    assert second.last_updated == first.last_updated
    assert second.to_dict()["message"] == "Cache is still fresh"


async def test_force_refreshes_fresh_cache(clock):
    store = SnapshotCacheStore(
        MechanicsCache(last_updated=format_timestamp(NOW), mechanics={"1": ["Old"]})
    )
    fetcher = FakeFetcher(default=["New"])

    result = await make_orchestrator(store, fetcher, clock).refresh(["1"], force=True)

    assert not result.skipped
    assert store.snapshot() == {"1": ["New"]}


@pytest.mark.parametrize(
    "failure",
    [None, [], RuntimeError("provider down"), asyncio.TimeoutError()],
    ids=["no-details", "no-mechanics", "exception", "timeout"],
)
async def test_failed_fetch_never_erases_existing_entry(tmp_path, clock, failure):
    path = tmp_path / "mechanics-cache.json"
    store = FileCacheStore(path)
    await store.save(MechanicsCache(last_updated=STALE, mechanics={"7": ["Area Majority / Influence"]}))
    before = json.loads(path.read_text(encoding="utf-8"))["mechanics"]["7"]

    result = await make_orchestrator(store, FakeFetcher({"7": failure}), clock).refresh(["7"])

    after = json.loads(path.read_text(encoding="utf-8"))["mechanics"]["7"]
    assert result.failed == 1
    assert result.updated == 0
    assert json.dumps(after) == json.dumps(before)


async def test_success_overwrites_existing_entry(clock):
    store = SnapshotCacheStore(MechanicsCache(last_updated=STALE, mechanics={"7": ["Old"]}))

    await make_orchestrator(store, FakeFetcher({"7": ["Fresh", "Data"]}), clock).refresh(["7"])

    assert store.snapshot() == {"7": ["Fresh", "Data"]}


async def test_checkpoints_every_twenty_updates(clock):
    ids = [str(n) for n in range(45)]
    store = RecordingStore()

    result = await make_orchestrator(store, FakeFetcher(default=["Set Collection"]), clock).refresh(ids)

    assert result.updated == 45
    assert [len(saved.mechanics) for saved in store.saves] == [20, 40, 45]
    assert store.saves[0].last_updated is None
    assert store.saves[1].last_updated is None
    assert store.saves[-1].last_updated == format_timestamp(NOW)


async def test_checkpoints_count_successes_not_positions(clock):
    ids = [str(n) for n in range(30)]
    outcomes = {str(n): None for n in range(0, 30, 3)}
    store = RecordingStore()

    result = await make_orchestrator(
        store, FakeFetcher(outcomes, default=["Bluffing"]), clock
    ).refresh(ids)

    assert result.updated == 20
    assert result.failed == 10
    assert [len(saved.mechanics) for saved in store.saves] == [20, 20]


async def test_ids_are_fetched_in_order_one_at_a_time(clock):
    fetcher = FakeFetcher(default=["Drafting"], delay=0.001)

    await make_orchestrator(RecordingStore(), fetcher, clock).refresh(["3", "1", "2"])

    assert fetcher.calls == ["3", "1", "2"]


async def test_error_backoff_pauses_before_next_item(clock, monkeypatch):
    sleeps = []
    real_sleep = asyncio.sleep

    async def fake_sleep(delay, *args, **kwargs):
        sleeps.append(delay)
        await real_sleep(0)

    monkeypatch.setattr("mechanics_sync.ingestion.orchestrator.asyncio.sleep", fake_sleep)
    fetcher = FakeFetcher(
        {"1": RuntimeError("boom"), "2": [], "x": None},
        default=["Dice Rolling"],
    )

    await make_orchestrator(RecordingStore(), fetcher, clock, error_backoff_seconds=2.0).refresh(
        ["1", "2", "x", "3"]
    )

    # Raised errors and missing details back off; an empty mechanics list does not
    assert sleeps == [2.0, 2.0]


async def test_slow_fetch_times_out_as_failure(clock):
    store = SnapshotCacheStore(MechanicsCache(last_updated=STALE, mechanics={"1": ["Kept"]}))
    fetcher = FakeFetcher(default=["Never"], delay=1.0)

    result = await make_orchestrator(store, fetcher, clock, item_timeout_seconds=0.01).refresh(["1"])

    assert result.failed == 1
    assert store.snapshot() == {"1": ["Kept"]}


async def test_empty_id_list_still_stamps_cache(clock):
    store = RecordingStore()

    result = await make_orchestrator(store, FakeFetcher(), clock).refresh([])

    assert (result.updated, result.failed, result.total) == (0, 0, 0)
    assert store.saves[-1].last_updated == format_timestamp(NOW)


async def test_concurrent_refreshes_share_one_run(clock):
    fetcher = FakeFetcher(default=["Hand Management"], delay=0.01)
    orchestrator = make_orchestrator(RecordingStore(), fetcher, clock)

    first, second = await asyncio.gather(
        orchestrator.refresh(["1", "2", "3"]),
        orchestrator.refresh(["1", "2", "3"]),
    )

    assert first is second
    assert fetcher.calls == ["1", "2", "3"]
    assert not orchestrator.is_running


async def test_write_failure_propagates(clock):
    class FailingStore(SnapshotCacheStore):
        async def save(self, cache):
            raise CacheWriteError("disk full")

    orchestrator = make_orchestrator(FailingStore(), FakeFetcher(default=["Voting"]), clock)

    with pytest.raises(CacheWriteError):
        await orchestrator.refresh(["1"])
    assert not orchestrator.is_running


async def test_is_stale_uses_threshold(clock):
    orchestrator = make_orchestrator(
        RecordingStore(), FakeFetcher(), clock, staleness_threshold=timedelta(hours=1)
    )

    assert orchestrator.is_stale(MechanicsCache(last_updated=format_timestamp(NOW - timedelta(hours=2))))
    assert not orchestrator.is_stale(MechanicsCache(last_updated=format_timestamp(NOW)))


async def test_only_missing_fetches_gaps_even_when_fresh(clock):
    stamp = format_timestamp(NOW)
    store = RecordingStore(MechanicsCache(last_updated=stamp, mechanics={"1": ["Kept"]}))
    fetcher = FakeFetcher(default=["Engine Building"])

    result = await make_orchestrator(store, fetcher, clock).refresh(["1", "2", "3"], only_missing=True)

    assert fetcher.calls == ["2", "3"]
    assert not result.skipped
    assert (result.updated, result.total) == (2, 2)
    assert store.snapshot() == {"1": ["Kept"], "2": ["Engine Building"], "3": ["Engine Building"]}


async def test_only_missing_keeps_staleness_clock(clock):
    store = RecordingStore(MechanicsCache(last_updated=STALE, mechanics={"1": ["Kept"]}))

    result = await make_orchestrator(store, FakeFetcher(default=["Racing"]), clock).refresh(
        ["1", "2"], only_missing=True
    )

    assert result.last_updated == STALE
    assert store.saves[-1].last_updated == STALE
    assert store.snapshot()["2"] == ["Racing"]


async def test_only_missing_with_nothing_missing_makes_no_fetches(clock):
    store = RecordingStore(MechanicsCache(last_updated=STALE, mechanics={"1": ["Kept"]}))
    fetcher = FakeFetcher(default=["Racing"])

    result = await make_orchestrator(store, fetcher, clock).refresh(["1"], only_missing=True)

    assert fetcher.calls == []
    assert result.total == 0


async def test_progress_reports_each_item_before_fetch(clock):
    events = []
    fetcher = FakeFetcher({"b": None}, default=["Push Your Luck"])

    def on_progress(position, total, game_id):
        events.append((position, total, game_id, len(fetcher.calls)))

    await make_orchestrator(RecordingStore(), fetcher, clock).refresh(["a", "b", "c"], on_progress=on_progress)

    assert events == [(1, 3, "a", 0), (2, 3, "b", 1), (3, 3, "c", 2)]


async def test_progress_total_counts_only_missing_ids(clock):
    events = []
    store = RecordingStore(MechanicsCache(mechanics={"a": ["Kept"]}))

    await make_orchestrator(store, FakeFetcher(default=["Memory"]), clock).refresh(
        ["a", "b"], only_missing=True, on_progress=lambda *args: events.append(args)
    )

    assert events == [(1, 1, "b")]
