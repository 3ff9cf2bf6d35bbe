"""
In-memory tagged read cache.

Listings are cached per (tag, call parameters). A mutation drops every entry
under its resource's tag at once, e.g. invalidate("courses-list") after a
course is created, so the next listing goes back to the API.

Concurrent reads for the same key share one in-flight loader. Each tag carries
a generation counter; a loader that was started before an invalidation still
returns its value to its own callers but never stores it. The loader runs in
its own task, so a caller that is cancelled leaves the load running for
everyone else waiting on it.

Each tag keeps at most max_entries entries, oldest dropped first.
"""

import asyncio
from typing import Any, Awaitable, Callable, Hashable

from loguru import logger


def make_key(value: Any) -> Hashable:
    """Hashable, order-independent form of call parameters."""
    if isinstance(value, dict):
        return tuple(sorted((str(k), make_key(v)) for k, v in value.items()))
    if isinstance(value, (list, tuple)):
        return tuple(make_key(v) for v in value)
    if isinstance(value, set):
        return tuple(sorted(make_key(v) for v in value))
    return value


def _retrieve(task: asyncio.Future) -> None:
    # A load whose callers were all cancelled still has its error retrieved
    if not task.cancelled():
        task.exception()


class TaggedCache:
    """Process-wide cache shared by every resource client that receives it."""

    def __init__(self, max_entries: int = 256):
        self.max_entries = max_entries
        self._entries: dict[str, dict[Hashable, Any]] = {}
        self._inflight: dict[str, dict[Hashable, asyncio.Future]] = {}
        self._generations: dict[str, int] = {}

    async def cached_read(
        self, tag: str, key: Any, loader: Callable[[], Awaitable[Any]]
    ) -> Any:
        """Return the stored value for (tag, key), running loader on a miss."""
        k = make_key(key)
        entries = self._entries.setdefault(tag, {})
        if k in entries:
            logger.debug("cache hit {} {}", tag, k)
            return entries[k]

        inflight = self._inflight.setdefault(tag, {})
        pending = inflight.get(k)
        if pending is not None:
            logger.debug("cache join {} {}", tag, k)
            return await asyncio.shield(pending)

        logger.debug("cache miss {} {}", tag, k)
        task = asyncio.ensure_future(self._load(tag, k, loader, self._generations.get(tag, 0)))
        task.add_done_callback(_retrieve)
        inflight[k] = task
        return await asyncio.shield(task)

    async def _load(
        self, tag: str, k: Hashable, loader: Callable[[], Awaitable[Any]], generation: int
    ) -> Any:
        try:
            value = await loader()
        finally:
            inflight = self._inflight.get(tag, {})
            if inflight.get(k) is asyncio.current_task():
                del inflight[k]
        if self._generations.get(tag, 0) == generation:
            self._store(tag, k, value)
        return value

    def _store(self, tag: str, k: Hashable, value: Any) -> None:
        entries = self._entries.setdefault(tag, {})
        entries[k] = value
        # Evict in insertion order
        while len(entries) > self.max_entries:
            del entries[next(iter(entries))]

    def invalidate(self, tag: str) -> None:
        """Drop every entry under tag. Loaders already running won't store."""
        dropped = len(self._entries.pop(tag, {}))
        self._inflight.pop(tag, None)
        self._generations[tag] = self._generations.get(tag, 0) + 1
        logger.debug("cache invalidate {} ({} entries)", tag, dropped)

    def clear(self) -> None:
        for tag in list(self._entries) + list(self._inflight):
            self.invalidate(tag)

    def size(self, tag: str | None = None) -> int:
        if tag is not None:
            return len(self._entries.get(tag, {}))
        return sum(len(e) for e in self._entries.values())
