"""Tests for AnalysisLoader fetch-or-compute behaviour and auto-refresh."""

import asyncio
import threading

import pytest

from pharma_insight.services.analysis_cache import AnalysisCache
from pharma_insight.services.refresh_coordinator import AnalysisLoader

KEY = "product-P1-2024-Q1"


class CountingCompute:
    """Compute stub that records calls and returns queued results."""

    def __init__(self, *results):
        self.calls = []
        self._results = list(results) or [{"summary": "ok"}]

    def __call__(self, subject):
        self.calls.append(subject)
        result = self._results[min(len(self.calls), len(self._results)) - 1]
        if isinstance(result, Exception):
            raise result
        return result


class AsyncCompute(CountingCompute):
    async def __call__(self, subject):
        await asyncio.sleep(0)
        return super().__call__(subject)


def _loader(cache, compute) -> AnalysisLoader:
    return AnalysisLoader(cache, compute, key_fn=lambda s: f"product-{s}-2024-Q1", name="test")


class TestLoad:
    def test_cache_hit_skips_compute(self, cache):
        cache.set(KEY, {"summary": "cached"})
        compute = CountingCompute()
        result = asyncio.run(_loader(cache, compute).load("P1"))
        assert result == {"summary": "cached"}
        assert compute.calls == []

    def test_cache_miss_computes_once(self, cache):
        compute = CountingCompute({"summary": "fresh"})
        loader = _loader(cache, compute)
        result = asyncio.run(loader.load("P1"))
        assert result == {"summary": "fresh"}
        assert compute.calls == ["P1"]
        assert cache.get(KEY) == {"summary": "fresh"}
        assert not cache.is_stale(KEY)
        assert loader.key == KEY
        assert loader.result == {"summary": "fresh"}

    def test_async_compute_is_awaited(self, cache):
        compute = AsyncCompute({"summary": "async"})
        assert asyncio.run(_loader(cache, compute).load("P1")) == {"summary": "async"}
        assert cache.get(KEY) == {"summary": "async"}

    def test_force_refresh_recomputes(self, cache):
        cache.set(KEY, {"summary": "cached"})
        compute = CountingCompute({"summary": "new"})
        result = asyncio.run(_loader(cache, compute).load("P1", force_refresh=True))
        assert result == {"summary": "new"}
        assert len(compute.calls) == 1
        assert cache.get(KEY) == {"summary": "new"}

    def test_stale_entry_recomputes(self, cache):
        cache.set(KEY, {"summary": "old"})
        cache.mark_stale(KEY)
        compute = CountingCompute({"summary": "new"})
        asyncio.run(_loader(cache, compute).load("P1"))
        assert len(compute.calls) == 1
        assert cache.get(KEY) == {"summary": "new"}
        assert not cache.is_stale(KEY)

    def test_stale_without_entry_computes(self, cache):
        cache.mark_stale(KEY)
        compute = CountingCompute()
        asyncio.run(_loader(cache, compute).load("P1"))
        assert len(compute.calls) == 1
        assert not cache.is_stale(KEY)

    def test_key_error_propagates_before_compute(self, cache):
        compute = CountingCompute()

        def bad_key(subject):
            raise ValueError("bad subject")

        loader = AnalysisLoader(cache, compute, key_fn=bad_key)
        with pytest.raises(ValueError):
            asyncio.run(loader.load("P1"))
        assert compute.calls == []


class TestFailures:
    def test_failure_leaves_absent_entry_absent(self, cache):
        compute = CountingCompute(RuntimeError("upstream down"))
        loader = _loader(cache, compute)
        with pytest.raises(RuntimeError):
            asyncio.run(loader.load("P1"))
        assert cache.get(KEY) is None
        assert isinstance(loader.error, RuntimeError)
        assert loader.loading is False

    def test_failure_keeps_prior_value_and_stale_flag(self, cache):
        cache.set(KEY, {"summary": "prior"})
        cache.mark_stale(KEY)
        compute = CountingCompute(RuntimeError("upstream down"))
        loader = _loader(cache, compute)
        with pytest.raises(RuntimeError):
            asyncio.run(loader.load("P1"))
        assert cache.get(KEY) == {"summary": "prior"}
        assert cache.is_stale(KEY)
        assert loader.result == {"summary": "prior"}

    def test_success_after_failure_clears_error(self, cache):
        compute = CountingCompute(RuntimeError("once"), {"summary": "ok"})
        loader = _loader(cache, compute)
        with pytest.raises(RuntimeError):
            asyncio.run(loader.load("P1"))
        asyncio.run(loader.load("P1"))
        assert loader.error is None
        assert cache.get(KEY) == {"summary": "ok"}


class TestRefresh:
    def test_refresh_deletes_then_recomputes(self, cache):
        compute = CountingCompute({"v": 1}, {"v": 2})
        loader = _loader(cache, compute)

        async def scenario():
            await loader.load("P1")
            return await loader.refresh()

        assert asyncio.run(scenario()) == {"v": 2}
        assert len(compute.calls) == 2
        assert cache.get(KEY) == {"v": 2}

    def test_refresh_without_subject_raises(self, cache):
        with pytest.raises(ValueError, match="Nothing loaded"):
            asyncio.run(_loader(cache, CountingCompute()).refresh())

    def test_failed_refresh_leaves_entry_deleted(self, cache):
        compute = CountingCompute({"v": 1}, RuntimeError("down"))
        loader = _loader(cache, compute)

        async def scenario():
            await loader.load("P1")
            await loader.refresh()

        with pytest.raises(RuntimeError):
            asyncio.run(scenario())
        assert cache.get(KEY) is None


class TestEndToEnd:
    def test_mark_stale_then_reload(self):
        cache: AnalysisCache[dict] = AnalysisCache()
        compute = CountingCompute({"summary": "ok"}, {"summary": "again"})
        loader = _loader(cache, compute)

        asyncio.run(loader.load("P1"))
        assert len(compute.calls) == 1
        assert cache.get(KEY) == {"summary": "ok"}

        cache.mark_stale(KEY)
        assert cache.is_stale(KEY)
        assert cache.get(KEY) == {"summary": "ok"}
        assert loader.needs_refresh()

        asyncio.run(loader.load("P1"))
        assert len(compute.calls) == 2
        assert cache.get(KEY) == {"summary": "again"}
        assert not cache.is_stale(KEY)


class TestWatch:
    def test_needs_refresh_only_for_own_key(self, cache):
        loader = _loader(cache, CountingCompute())
        asyncio.run(loader.load("P1"))
        cache.mark_stale("product-P2-2024-Q1")
        assert not loader.needs_refresh()

    def test_stale_mark_triggers_auto_refresh(self, cache):
        compute = AsyncCompute({"v": 1}, {"v": 2})
        loader = _loader(cache, compute)

        async def scenario():
            await loader.load("P1")
            unwatch = loader.watch()
            cache.mark_stale(KEY)
            await asyncio.sleep(0)
            await loader.wait_idle()
            unwatch()

        asyncio.run(scenario())
        assert len(compute.calls) == 2
        assert loader.result == {"v": 2}
        assert not cache.is_stale(KEY)

    def test_mark_from_other_thread(self, cache):
        compute = AsyncCompute({"v": 1}, {"v": 2})
        loader = _loader(cache, compute)

        async def scenario():
            await loader.load("P1")
            unwatch = loader.watch()
            marker = threading.Thread(target=cache.mark_stale, args=(KEY,))
            marker.start()
            await asyncio.to_thread(marker.join)
            await asyncio.sleep(0)
            await loader.wait_idle()
            unwatch()

        asyncio.run(scenario())
        assert loader.result == {"v": 2}

    def test_unrelated_mark_does_not_recompute(self, cache):
        compute = CountingCompute({"v": 1})
        loader = _loader(cache, compute)

        async def scenario():
            await loader.load("P1")
            unwatch = loader.watch()
            cache.mark_stale("province-ZJ-2024-Q1")
            await asyncio.sleep(0)
            await loader.wait_idle()
            unwatch()

        asyncio.run(scenario())
        assert len(compute.calls) == 1

    def test_failed_auto_refresh_is_contained(self, cache):
        compute = AsyncCompute({"v": 1}, RuntimeError("down"))
        loader = _loader(cache, compute)

        async def scenario():
            await loader.load("P1")
            unwatch = loader.watch()
            cache.mark_stale(KEY)
            await asyncio.sleep(0)
            await loader.wait_idle()
            unwatch()

        asyncio.run(scenario())
        assert cache.get(KEY) == {"v": 1}
        assert cache.is_stale(KEY)
        assert isinstance(loader.error, RuntimeError)


class TestOverlappingLoads:
    def test_slow_miss_and_hit_keep_their_own_keys(self, cache):
        cache.set("product-P2-2024-Q1", {"for": "P2"})

        async def scenario():
            gate = asyncio.Event()

            async def compute(subject):
                await gate.wait()
                return {"for": subject}

            loader = _loader(cache, compute)
            slow = asyncio.create_task(loader.load("P1"))
            await asyncio.sleep(0)
            assert loader.loading

            fast = await loader.load("P2")
            gate.set()
            return loader, await slow, fast

        loader, slow, fast = asyncio.run(scenario())
        assert slow == {"for": "P1"}
        assert fast == {"for": "P2"}
        assert loader.key_for("P1") == KEY
        assert cache.get(KEY) == {"for": "P1"}
        assert not cache.is_stale(KEY)
        assert loader.subject == "P2"
        assert loader.key == "product-P2-2024-Q1"
        assert loader.result == {"for": "P2"}
        assert loader.loading is False

    def test_superseded_failure_does_not_touch_current_state(self, cache):
        cache.set("product-P2-2024-Q1", {"for": "P2"})

        async def scenario():
            gate = asyncio.Event()

            async def compute(subject):
                await gate.wait()
                raise RuntimeError("down")

            loader = _loader(cache, compute)
            slow = asyncio.create_task(loader.load("P1"))
            await asyncio.sleep(0)
            await loader.load("P2")
            gate.set()
            with pytest.raises(RuntimeError):
                await slow
            return loader

        loader = asyncio.run(scenario())
        assert loader.error is None
        assert loader.result == {"for": "P2"}
