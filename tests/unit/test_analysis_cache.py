"""Tests for the analysis cache store and staleness tracker."""

import threading

import pytest

from pharma_insight.services.analysis_cache import AnalysisCache

KEY = "product-P1-2024-Q1"


class TestEntries:
    def test_get_missing_returns_none(self, cache):
        assert cache.get(KEY) is None

    def test_set_then_get_returns_same_object(self, cache):
        entry = {"summary": "ok"}
        cache.set(KEY, entry)
        assert cache.get(KEY) is entry

    def test_set_replaces_whole_entry(self, cache):
        cache.set(KEY, {"summary": "old", "extra": 1})
        cache.set(KEY, {"summary": "new"})
        assert cache.get(KEY) == {"summary": "new"}

    def test_delete_removes_entry(self, cache):
        cache.set(KEY, "v")
        cache.delete(KEY)
        assert cache.get(KEY) is None
        assert KEY not in cache

    def test_delete_missing_is_noop(self, cache):
        cache.delete(KEY)
        assert len(cache) == 0

    def test_clear_returns_count(self, cache):
        cache.set("a", 1)
        cache.set("b", 2)
        assert cache.clear() == 2
        assert cache.keys() == []

    def test_empty_key_rejected(self, cache):
        with pytest.raises(ValueError):
            cache.get("")
        with pytest.raises(ValueError):
            cache.set("", 1)

    def test_independent_instances(self):
        a, b = AnalysisCache(), AnalysisCache()
        a.set(KEY, 1)
        assert b.get(KEY) is None

    def test_concurrent_sets_keep_one_whole_value(self, cache):
        values = [{"writer": i} for i in range(20)]
        threads = [threading.Thread(target=cache.set, args=(KEY, v)) for v in values]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert any(cache.get(KEY) is v for v in values)


class TestStaleness:
    def test_fresh_by_default(self, cache):
        assert cache.is_stale(KEY) is False

    def test_mark_stale_keeps_entry(self, cache):
        cache.set(KEY, {"summary": "ok"})
        cache.mark_stale(KEY)
        assert cache.is_stale(KEY)
        assert cache.get(KEY) == {"summary": "ok"}

    def test_delete_keeps_stale_flag(self, cache):
        cache.set(KEY, 1)
        cache.mark_stale(KEY)
        cache.delete(KEY)
        assert cache.is_stale(KEY)

    def test_clear_keeps_stale_flags(self, cache):
        cache.set(KEY, 1)
        cache.mark_stale(KEY)
        cache.clear()
        assert cache.stale_keys() == [KEY]

    def test_mark_stale_without_entry(self, cache):
        cache.mark_stale(KEY)
        assert cache.is_stale(KEY)
        assert cache.get(KEY) is None

    def test_counter_bumps_every_mark(self, cache):
        assert cache.refresh_counter == 0
        assert cache.mark_stale(KEY) == 1
        assert cache.mark_stale(KEY) == 2
        assert cache.refresh_counter == 2

    def test_clear_stale_does_not_bump(self, cache):
        cache.mark_stale(KEY)
        cache.clear_stale(KEY)
        assert not cache.is_stale(KEY)
        assert cache.refresh_counter == 1


class TestSubscribers:
    def test_subscriber_receives_counter(self, cache):
        seen = []
        cache.subscribe(seen.append)
        cache.mark_stale("a")
        cache.mark_stale("b")
        assert seen == [1, 2]

    def test_unsubscribe(self, cache):
        seen = []
        unsubscribe = cache.subscribe(seen.append)
        unsubscribe()
        cache.mark_stale("a")
        assert seen == []

    def test_unsubscribe_twice_is_harmless(self, cache):
        unsubscribe = cache.subscribe(lambda c: None)
        unsubscribe()
        unsubscribe()

    def test_failing_subscriber_does_not_block_others(self, cache):
        seen = []

        def boom(counter):
            raise RuntimeError("subscriber broke")

        cache.subscribe(boom)
        cache.subscribe(seen.append)
        assert cache.mark_stale("a") == 1
        assert seen == [1]
        assert cache.is_stale("a")

    def test_subscriber_may_read_cache(self, cache):
        cache.set("a", "value")
        reads = []
        cache.subscribe(lambda counter: reads.append((cache.is_stale("a"), cache.get("a"))))
        cache.mark_stale("a")
        assert reads == [(True, "value")]
