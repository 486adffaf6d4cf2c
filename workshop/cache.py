"""
Memoized fetch layer for the workshop app.

``cached_compute`` is a cache-or-compute wrapper with TTL and
stale-while-revalidate windows:

- no entry, ``force_fresh`` or past ``ttl + swr``: compute now and store
- younger than ``ttl``: return the cached value
- between ``ttl`` and ``ttl + swr``: return the cached value and refresh it
  in the background

Background refreshes run as tasks owned by a :class:`BackgroundTasks`
supervisor, which logs their failures instead of leaving unhandled errors.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from .shared.logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class CacheMetadata:
    created_time: float
    ttl: float
    swr: float = 0.0


@dataclass(frozen=True)
class CacheEntry:
    value: Any
    metadata: CacheMetadata


class Cache:
    """In-memory cache store. Entries are replaced wholesale, never mutated."""

    def __init__(self, name: str):
        self.name = name
        self._entries: Dict[str, CacheEntry] = {}

    def get(self, key: str) -> Optional[CacheEntry]:
        return self._entries.get(key)

    def set(self, key: str, entry: CacheEntry) -> None:
        self._entries[key] = entry


class BackgroundTasks:
    """Owns fire-and-forget tasks so they are neither garbage collected nor
    silently failing."""

    def __init__(self):
        self._tasks: Set[asyncio.Task] = set()
        self._pending: Dict[str, asyncio.Task] = {}

    def spawn(self, key: str, factory: Callable[[], Awaitable[Any]]) -> asyncio.Task:
        """Start ``factory()`` unless a task for ``key`` is already running."""
        existing = self._pending.get(key)
        if existing is not None and not existing.done():
            return existing

        task = asyncio.ensure_future(factory())
        self._tasks.add(task)
        self._pending[key] = task

        def _done(finished: asyncio.Task) -> None:
            self._tasks.discard(finished)
            if self._pending.get(key) is finished:
                del self._pending[key]
            if finished.cancelled():
                return
            error = finished.exception()
            if error is not None:
                logger.error("Background refresh of %s failed: %s", key, error)

        task.add_done_callback(_done)
        return task

    @property
    def running(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait until every background task has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def cancel_all(self) -> None:
        for task in list(self._tasks):
            task.cancel()


default_background = BackgroundTasks()


async def cached_compute(
    key: str,
    compute: Callable[[], Awaitable[Any]],
    *,
    cache: Cache,
    ttl: float,
    swr: float = 0.0,
    force_fresh: Optional[bool] = None,
    background: Optional[BackgroundTasks] = None,
    clock: Callable[[], float] = time.time,
) -> Any:
    """Return the cached value for ``key`` or compute and store it.

    ``compute`` errors propagate when there is no usable cached value.
    """

    async def refresh() -> Any:
        # stamped before computing so changes made meanwhile still count as newer
        created_time = clock()
        value = await compute()
        cache.set(key, CacheEntry(value, CacheMetadata(created_time=created_time, ttl=ttl, swr=swr)))
        return value

    entry = cache.get(key)
    if force_fresh or entry is None:
        logger.debug("%s: computing %s (forced=%s)", cache.name, key, bool(force_fresh))
        return await refresh()

    age = clock() - entry.metadata.created_time
    if age <= entry.metadata.ttl:
        logger.debug("%s: hit %s", cache.name, key)
        return entry.value

    if age <= entry.metadata.ttl + entry.metadata.swr:
        logger.debug("%s: serving stale %s while revalidating", cache.name, key)
        (background or default_background).spawn(f"{cache.name}:{key}", refresh)
        return entry.value

    logger.debug("%s: expired %s", cache.name, key)
    return await refresh()
