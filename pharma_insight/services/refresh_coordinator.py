"""Fetch-or-compute orchestration on top of AnalysisCache.

An ``AnalysisLoader`` plays the part of one view showing one subject at
a time (the product report, the province report, ...). It serves cached
analyses, computes on a miss or when its key was marked stale, and can
watch the cache so that a stale mark from elsewhere (the chat assistant)
makes it refresh itself.
"""

import asyncio
import inspect
from typing import Awaitable, Callable, Generic, TypeVar

from loguru import logger

from pharma_insight.services.analysis_cache import AnalysisCache

S = TypeVar("S")
T = TypeVar("T")

ComputeFn = Callable[[S], T | Awaitable[T]]


class AnalysisLoader(Generic[S, T]):
    """Read-through loader for one kind of subject.

    Args:
        cache: Shared cache the loader reads from and writes to.
        compute: Produces a fresh entry for a subject. May be sync or async.
        key_fn: Derives the cache key of a subject.
        name: Label used in log messages.
    """

    def __init__(
        self,
        cache: AnalysisCache[T],
        compute: ComputeFn,
        key_fn: Callable[[S], str],
        name: str = "analysis",
    ) -> None:
        self._cache = cache
        self._compute = compute
        self._key_fn = key_fn
        self.name = name
        self.subject: S | None = None
        self.result: T | None = None
        self.error: Exception | None = None
        self._computing = 0
        self._tasks: set[asyncio.Task] = set()

    @property
    def key(self) -> str | None:
        if self.subject is None:
            return None
        return self._key_fn(self.subject)

    @property
    def loading(self) -> bool:
        return self._computing > 0

    def key_for(self, subject: S) -> str:
        return self._key_fn(subject)

    async def load(self, subject: S, force_refresh: bool = False) -> T:
        """Return the analysis for *subject*, computing it only when needed.

        A present, non-stale entry is returned without calling ``compute``.
        Otherwise the result of ``compute`` is stored and the stale flag
        cleared. If ``compute`` raises, nothing is written, the stale flag
        is left alone, the exception propagates, and ``self.result`` keeps
        the last value that could be shown.

        When another ``load`` switches the subject while this one awaits
        ``compute``, the cache is still written but ``result``/``error``
        stay with the newer subject.
        """
        key = self._key_fn(subject)
        self.subject = subject

        if not force_refresh and not self._cache.is_stale(key):
            cached = self._cache.get(key)
            if cached is not None:
                logger.debug("[{}] Cache HIT: {}", self.name, key)
                self.result = cached
                self.error = None
                return cached

        logger.info("[{}] Computing {} (force={})", self.name, key, force_refresh)
        self._computing += 1
        try:
            result = self._compute(subject)
            if inspect.isawaitable(result):
                result = await result
        except Exception as exc:
            if self.subject is subject:
                self.error = exc
                previous = self._cache.get(key)
                if previous is not None:
                    self.result = previous
            logger.warning("[{}] Compute failed for {}: {}", self.name, key, exc)
            raise
        finally:
            self._computing -= 1

        self._cache.set(key, result)
        self._cache.clear_stale(key)
        if self.subject is subject:
            self.result = result
            self.error = None
        else:
            logger.debug("[{}] Subject changed while computing {}", self.name, key)
        return result

    async def refresh(self, subject: S | None = None) -> T:
        """Discard the cached entry and recompute unconditionally."""
        if subject is None:
            subject = self.subject
        if subject is None:
            raise ValueError(f"[{self.name}] Nothing loaded to refresh")
        self._cache.delete(self._key_fn(subject))
        return await self.load(subject, force_refresh=True)

    def needs_refresh(self) -> bool:
        """True when a shown result's key has been marked stale."""
        key = self.key
        return (
            key is not None
            and self.result is not None
            and not self.loading
            and self._cache.is_stale(key)
        )

    async def sync(self) -> T | None:
        """Recompute the current subject if it went stale; else no-op."""
        if not self.needs_refresh():
            return self.result
        assert self.subject is not None
        return await self.load(self.subject)

    def watch(self) -> Callable[[], None]:
        """Re-run ``sync`` on the running loop after every stale mark.

        Must be called from within a running event loop. Marks may come
        from any thread. Returns the unsubscribe function.
        """
        loop = asyncio.get_running_loop()

        def on_refresh(counter: int) -> None:
            loop.call_soon_threadsafe(self._schedule_sync, counter)

        return self._cache.subscribe(on_refresh)

    def _schedule_sync(self, counter: int) -> None:
        if not self.needs_refresh():
            return
        logger.info("[{}] Auto-refreshing {} (refresh #{})", self.name, self.key, counter)
        task = asyncio.ensure_future(self.sync())
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.opt(exception=task.exception()).warning(
                "[{}] Auto-refresh failed", self.name
            )

    async def wait_idle(self) -> None:
        """Wait for pending automatic refreshes to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
