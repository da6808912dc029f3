"""Ephemeral server-side cache with tag-based invalidation.

Entries live in any :class:`~app.db.database.CacheStoreProtocol` (an
in-memory store by default) and are indexed by tag so that a whole layer
can be invalidated at once with :meth:`TaggedCache.revalidate_tag`. Reads
honour the TTL and drop expired entries, and every write first sweeps all
expired entries so that keys which are never read again are reclaimed.

Concurrent misses for the same key share a single computation. Invalidating
a tag while a computation is in flight detaches it: later callers start a
new computation and the detached one does not write its result back.

Empty results are returned to the caller but never stored.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable

from app.db import database
from app.db import models as db_models

logger = logging.getLogger(__name__)

Compute = Callable[[], Awaitable[db_models.FeatureCollection]]


class TaggedCache:
    """Tagged key-value cache in front of upstream computations."""

    def __init__(
        self,
        store: database.CacheStoreProtocol,
        ttl_ms: int,
        clock: Callable[[], int] = db_models.now_ms,
    ) -> None:
        self._store = store
        self.ttl_ms = ttl_ms
        self._clock = clock
        self._keys_by_tag: dict[str, set[str]] = {}
        self._written: dict[str, tuple[int, tuple[str, ...]]] = {}
        self._generations: dict[str, int] = {}
        self._inflight: dict[str, asyncio.Task[db_models.CacheEntry]] = {}
        self._inflight_tags: dict[str, tuple[str, ...]] = {}

    async def get(self, key: str) -> db_models.CacheEntry | None:
        """Return the live entry for ``key``, evicting it once expired."""
        try:
            entry = await self._store.get(key)
        except database.StorageError as exc:
            logger.warning("Server cache read for %s failed: %s", key, exc)
            return None
        if entry is None:
            return None
        if entry.is_expired(self._clock(), self.ttl_ms):
            await self._forget(key, entry.tags)
            return None
        return entry

    async def set(self, key: str, entry: db_models.CacheEntry) -> None:
        """Store ``entry`` after sweeping every expired entry."""
        await self._sweep()
        try:
            await self._store.set(key, entry)
        except database.StorageError as exc:
            logger.warning("Server cache write for %s skipped: %s", key, exc)
            return
        self._written[key] = (entry.cached_at, entry.tags)
        for tag in entry.tags:
            self._keys_by_tag.setdefault(tag, set()).add(key)

    async def _sweep(self) -> None:
        now = self._clock()
        expired = [
            (key, tags)
            for key, (cached_at, tags) in self._written.items()
            if now - cached_at > self.ttl_ms
        ]
        for key, tags in expired:
            await self._forget(key, tags)
        if expired:
            logger.debug("Swept %d expired server cache entries", len(expired))

    async def revalidate_tag(self, tag: str) -> None:
        """Drop every entry and in-flight computation carrying ``tag``."""
        self._generations[tag] = self._generations.get(tag, 0) + 1
        keys = self._keys_by_tag.pop(tag, set())
        for key in keys:
            self._written.pop(key, None)
            await self._store.delete(key)
        for key, tags in list(self._inflight_tags.items()):
            if tag in tags:
                self._inflight.pop(key, None)
                self._inflight_tags.pop(key, None)
        logger.info("Revalidated tag %s (%d entries)", tag, len(keys))

    async def cached(
        self, key: str, tags: Iterable[str], compute: Compute
    ) -> db_models.CacheEntry:
        """Serve ``key`` from cache or compute it once for all waiters.

        Args:
            key: Cache key.
            tags: Invalidation tags attached to a stored entry.
            compute: Produces the collection on a miss.

        Returns:
            The cached entry, or a new one stamped with the current time.
        """
        entry = await self.get(key)
        if entry is not None:
            logger.debug("Server cache hit for %s", key)
            return entry

        task = self._inflight.get(key)
        if task is None:
            tag_tuple = tuple(tags)
            generations = {tag: self._generations.get(tag, 0) for tag in tag_tuple}
            task = asyncio.ensure_future(
                self._compute(key, tag_tuple, generations, compute)
            )
            self._inflight[key] = task
            self._inflight_tags[key] = tag_tuple
            task.add_done_callback(lambda done: self._release(key, done))
        return await asyncio.shield(task)

    async def _compute(
        self,
        key: str,
        tags: tuple[str, ...],
        generations: dict[str, int],
        compute: Compute,
    ) -> db_models.CacheEntry:
        data = await compute()
        entry = db_models.CacheEntry(
            data=data,
            cached_at=self._clock(),
            count=len(data),
            tags=tags,
        )
        if data.is_empty:
            logger.info("Not caching empty result for %s", key)
            return entry
        if any(self._generations.get(t, 0) != g for t, g in generations.items()):
            logger.debug("Discarding result for %s after revalidation", key)
            return entry
        await self.set(key, entry)
        return entry

    def _release(self, key: str, task: asyncio.Task[db_models.CacheEntry]) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
            self._inflight_tags.pop(key, None)

    async def _forget(self, key: str, tags: Iterable[str]) -> None:
        self._written.pop(key, None)
        try:
            await self._store.delete(key)
        except database.StorageError as exc:
            logger.warning("Server cache eviction of %s failed: %s", key, exc)
        for tag in tags:
            self._keys_by_tag.get(tag, set()).discard(key)
