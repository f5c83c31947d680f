"""Tests for QueryCache: dedup, staleness, invalidation, ordering, GC."""

import asyncio

import pytest
from unittest.mock import AsyncMock

from campuzon.constants import QueryState
from campuzon.query_cache import QueryCache, QueryPolicy
from campuzon.query_keys import freeze, matches, product_keys


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, secs: float) -> None:
        self.now += secs


class GatedFetcher:
    """Fetcher whose calls block until released individually, in any order."""

    def __init__(self) -> None:
        self.calls: list[asyncio.Event] = []
        self.values: list[object] = []

    async def __call__(self, key):
        gate = asyncio.Event()
        index = len(self.calls)
        self.calls.append(gate)
        self.values.append(None)
        await gate.wait()
        return self.values[index]

    def release(self, index: int, value: object) -> None:
        self.values[index] = value
        self.calls[index].set()


async def _settle() -> None:
    for _ in range(5):
        await asyncio.sleep(0)


# ---------------------------------------------------------------------------
# Query keys
# ---------------------------------------------------------------------------


class TestQueryKeys:
    def test_filters_are_order_independent(self) -> None:
        assert product_keys.list({"page": 1, "category": "books"}) == product_keys.list(
            {"category": "books", "page": 1}
        )

    def test_none_filters_dropped(self) -> None:
        assert freeze({"page": 1, "category": None}) == freeze({"page": 1})

    def test_prefix_matching(self) -> None:
        assert matches(product_keys.detail("p1"), product_keys.all)
        assert matches(product_keys.detail("p1"), product_keys.details())
        assert not matches(product_keys.by_store("s1"), product_keys.details())


# ---------------------------------------------------------------------------
# Fetch and read
# ---------------------------------------------------------------------------


class TestFetch:
    @pytest.mark.asyncio
    async def test_concurrent_fetches_share_one_request(self) -> None:
        cache = QueryCache()
        fetcher = AsyncMock(return_value=["a"])
        key = product_keys.lists()
        results = await asyncio.gather(*(cache.fetch(key, fetcher) for _ in range(5)))
        assert results == [["a"]] * 5
        fetcher.assert_called_once_with(key)

    @pytest.mark.asyncio
    async def test_fresh_value_served_from_cache(self) -> None:
        clock = FakeClock()
        cache = QueryCache(QueryPolicy(stale_after=30), clock=clock)
        fetcher = AsyncMock(return_value=1)
        await cache.fetch(("k",), fetcher)
        clock.advance(10)
        assert await cache.fetch(("k",), fetcher) == 1
        assert fetcher.call_count == 1

    @pytest.mark.asyncio
    async def test_stale_read_returns_old_value_and_refetches(self) -> None:
        clock = FakeClock()
        cache = QueryCache(QueryPolicy(stale_after=30), clock=clock)
        fetcher = AsyncMock(side_effect=[1, 2])
        await cache.fetch(("k",), fetcher)
        clock.advance(31)
        view = cache.read(("k",), fetcher)
        assert view.value == 1
        assert view.is_stale
        assert view.is_fetching
        await _settle()
        assert cache.get_data(("k",)) == 2

    @pytest.mark.asyncio
    async def test_first_read_is_loading(self) -> None:
        cache = QueryCache()
        fetcher = GatedFetcher()
        view = cache.read(("k",), fetcher)
        assert view.state is QueryState.LOADING
        assert not view.has_value
        await _settle()
        fetcher.release(0, "v")
        await _settle()
        assert cache.get(("k",)).is_success

    @pytest.mark.asyncio
    async def test_fetch_error_recorded_and_raised(self) -> None:
        cache = QueryCache()
        fetcher = AsyncMock(side_effect=RuntimeError("boom"))
        with pytest.raises(RuntimeError):
            await cache.fetch(("k",), fetcher)
        view = cache.get(("k",))
        assert view.state is QueryState.ERROR
        assert str(view.error) == "boom"

    @pytest.mark.asyncio
    async def test_error_keeps_previous_value(self) -> None:
        cache = QueryCache()
        await cache.fetch(("k",), AsyncMock(return_value="old"))
        with pytest.raises(RuntimeError):
            await cache.refetch(("k",), AsyncMock(side_effect=RuntimeError("down")))
        assert cache.get_data(("k",)) == "old"


# ---------------------------------------------------------------------------
# Ordering
# ---------------------------------------------------------------------------


class TestCompletionOrder:
    @pytest.mark.asyncio
    async def test_older_response_never_overwrites_newer(self) -> None:
        cache = QueryCache()
        fetcher = GatedFetcher()
        key = ("messages",)
        cache.subscribe(key, lambda view: None)
        cache.read(key, fetcher)
        cache.invalidate(key)  # second fetch starts
        await _settle()
        assert len(fetcher.calls) == 2
        fetcher.release(1, "new")
        await _settle()
        fetcher.release(0, "old")
        await _settle()
        assert cache.get_data(key) == "new"
        assert cache.health()["discarded_results"] == 1

    @pytest.mark.asyncio
    async def test_write_supersedes_inflight_fetch(self) -> None:
        cache = QueryCache()
        fetcher = GatedFetcher()
        cache.read(("k",), fetcher)
        await _settle()
        cache.write(("k",), "local")
        fetcher.release(0, "server")
        await _settle()
        assert cache.get_data(("k",)) == "local"

    @pytest.mark.asyncio
    async def test_cancel_discards_inflight(self) -> None:
        cache = QueryCache()
        fetcher = GatedFetcher()
        cache.read(("k",), fetcher)
        await _settle()
        cache.cancel(("k",))
        fetcher.release(0, "late")
        await _settle()
        assert cache.get_data(("k",)) is None

    @pytest.mark.asyncio
    async def test_fetch_superseded_by_write_returns_written_value(self) -> None:
        cache = QueryCache()
        fetcher = GatedFetcher()
        pending = asyncio.ensure_future(cache.fetch(("k",), fetcher))
        await _settle()
        cache.write(("k",), "new-local")
        fetcher.release(0, "old-server")
        assert await pending == "new-local"
        assert cache.get_data(("k",)) == "new-local"

    @pytest.mark.asyncio
    async def test_fetch_follows_newer_fetch_after_invalidate(self) -> None:
        cache = QueryCache()
        fetcher = GatedFetcher()
        key = ("k",)
        cache.subscribe(key, lambda view: None)
        pending = asyncio.ensure_future(cache.fetch(key, fetcher))
        await _settle()
        cache.invalidate(key)
        await _settle()
        assert len(fetcher.calls) == 2
        fetcher.release(0, "old")
        await _settle()
        assert not pending.done()
        fetcher.release(1, "new")
        assert await pending == "new"


# ---------------------------------------------------------------------------
# Invalidation
# ---------------------------------------------------------------------------


class TestInvalidate:
    @pytest.mark.asyncio
    async def test_prefix_invalidates_family(self) -> None:
        cache = QueryCache()
        cache.write(product_keys.detail("p1"), 1)
        cache.write(product_keys.detail("p2"), 2)
        cache.write(product_keys.by_store("s1"), 3)
        assert cache.invalidate(product_keys.details()) == 2
        assert cache.get(product_keys.detail("p1")).is_stale
        assert not cache.get(product_keys.by_store("s1")).is_stale

    @pytest.mark.asyncio
    async def test_observed_entry_refetched(self) -> None:
        cache = QueryCache()
        fetcher = AsyncMock(side_effect=["v1", "v2"])
        seen = []
        cache.subscribe(("k",), lambda view: seen.append(view.value))
        await cache.fetch(("k",), fetcher)
        cache.invalidate(("k",))
        await _settle()
        assert cache.get_data(("k",)) == "v2"
        assert seen[-1] == "v2"

    @pytest.mark.asyncio
    async def test_unobserved_entry_only_marked_stale(self) -> None:
        cache = QueryCache()
        fetcher = AsyncMock(return_value="v")
        await cache.fetch(("k",), fetcher)
        cache.invalidate(("k",))
        await _settle()
        assert fetcher.call_count == 1
        assert cache.get(("k",)).is_stale
        assert cache.get_data(("k",)) == "v"


# ---------------------------------------------------------------------------
# Snapshot / restore
# ---------------------------------------------------------------------------


class TestSnapshotRestore:
    def test_restore_is_exact(self) -> None:
        cache = QueryCache()
        cache.write(("k",), [1, 2])
        snap = cache.snapshot(("k",))
        cache.update(("k",), lambda v: v + [3])
        cache.restore(("k",), snap)
        assert cache.get_data(("k",)) == [1, 2]
        assert cache.snapshot(("k",)) == snap

    def test_restore_absent(self) -> None:
        cache = QueryCache()
        snap = cache.snapshot(("k",))
        assert snap is None
        cache.update(("k",), lambda v: "patched")
        cache.restore(("k",), snap)
        assert cache.get_data(("k",)) is None
        assert not cache.get(("k",)).has_value


# ---------------------------------------------------------------------------
# Garbage collection
# ---------------------------------------------------------------------------


class TestGarbageCollection:
    def test_idle_unobserved_entries_collected(self) -> None:
        clock = FakeClock()
        cache = QueryCache(QueryPolicy(gc_after=300), clock=clock)
        cache.write(("a",), 1)
        unsubscribe = cache.subscribe(("b",), lambda view: None)
        clock.advance(301)
        assert cache.gc() == 1
        assert ("a",) not in cache
        assert ("b",) in cache
        unsubscribe()
        clock.advance(301)
        assert cache.gc() == 1
        assert cache.size == 0

    def test_recent_entries_kept(self) -> None:
        clock = FakeClock()
        cache = QueryCache(QueryPolicy(gc_after=300), clock=clock)
        cache.write(("a",), 1)
        clock.advance(100)
        assert cache.gc() == 0

    @pytest.mark.asyncio
    async def test_read_piggybacks_gc(self) -> None:
        clock = FakeClock()
        cache = QueryCache(QueryPolicy(gc_after=300), clock=clock)
        cache.write(("old",), 1)
        clock.advance(301)
        cache.read(("new",), AsyncMock(return_value=2))
        assert ("old",) not in cache
        await _settle()


class TestListeners:
    def test_failing_listener_does_not_break_others(self) -> None:
        cache = QueryCache()
        seen = []

        def bad(view) -> None:
            raise RuntimeError("listener bug")

        cache.subscribe(("k",), bad)
        cache.subscribe(("k",), lambda view: seen.append(view.value))
        cache.write(("k",), 5)
        assert seen == [5]
        assert cache.observer_count(("k",)) == 2
