"""Client-side durable cache for layer collections.

The manager implements the "fetch or serve cached" contract for one client
session. Each layer owns a single key, ``{prefix}{layer_id}``, in a shared
durable store. Geography-scoped layers also store the fingerprint of the
bounding box they were fetched for, and an entry only matches the same box.

Rules:
    - ``force=False`` serves a live, matching entry with ``fresh=False``
      and no upstream call;
    - on a miss or with ``force=True`` the layer source is called (and
      forwards ``force`` so the server tier drops its tag as well), and the
      result is returned with ``fresh=True``;
    - only non-empty results are written; an empty result is inconclusive
      and the next call retries upstream;
    - an entry written at ``T`` is still served at ``T + TTL`` and is
      stale one millisecond later, when it is evicted on read;
    - a write that hits the storage quota clears the whole namespace and
      is retried once; a second failure skips the write;
    - any other storage failure is logged and treated as a miss on read
      and a skipped write, so fetched data always reaches the caller.

Example:
    >>> manager = LayerCacheManager(store, source, prefix="campermap_layer_",
    ...                             ttl_ms=86_400_000, region_bbox=region)
    >>> result = await manager.fetch_layer("camping")
    >>> result.info.fresh
    True
"""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Callable
from typing import TYPE_CHECKING

from app.core import layers
from app.db import database
from app.db import models as db_models
from app.utils import geo

if TYPE_CHECKING:
    from app.core import config
    from app.services.sources import LayerSource

logger = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True)
class LayerFetchResult:
    """Outcome of :meth:`LayerCacheManager.fetch_layer`."""

    data: db_models.FeatureCollection
    info: db_models.CacheInfo


class LayerCacheManager:
    """Durable per-layer cache in front of a :class:`LayerSource`."""

    def __init__(
        self,
        store: database.CacheStoreProtocol,
        source: LayerSource,
        *,
        prefix: str,
        ttl_ms: int,
        region_bbox: db_models.BBox,
        clock: Callable[[], int] = db_models.now_ms,
    ) -> None:
        self.store = store
        self.source = source
        self.prefix = prefix
        self.ttl_ms = ttl_ms
        self.region_bbox = region_bbox
        self._clock = clock

    @classmethod
    def from_settings(
        cls,
        settings: config.Settings,
        store: database.CacheStoreProtocol,
        source: LayerSource,
    ) -> LayerCacheManager:
        return cls(
            store,
            source,
            prefix=settings.cache_prefix,
            ttl_ms=settings.cache_ttl_ms,
            region_bbox=settings.region_bbox,
        )

    def key_for(self, layer_id: str) -> str:
        return f"{self.prefix}{layer_id}"

    def _scope(
        self, layer: layers.Layer, scope: db_models.BBox | None
    ) -> tuple[db_models.BBox, str | None]:
        """Bounding box to fetch and the fingerprint it is cached under."""
        if not layer.geo_scoped:
            return self.region_bbox, None
        bbox = scope if scope is not None else self.region_bbox
        return bbox, geo.bbox_fingerprint(bbox)

    async def _read(
        self, layer_id: str, fingerprint: str | None
    ) -> db_models.CacheEntry | None:
        key = self.key_for(layer_id)
        try:
            entry = await self.store.get(key)
            if entry is None:
                return None
            if entry.is_expired(self._clock(), self.ttl_ms):
                logger.debug("Cache entry %s expired", key)
                await self.store.delete(key)
                return None
        except database.StorageError as exc:
            logger.warning("Cache read for %s failed: %s", key, exc)
            return None
        if entry.fingerprint != fingerprint:
            logger.debug("Cache entry %s is for another scope", key)
            return None
        return entry

    async def _persist(self, key: str, entry: db_models.CacheEntry) -> None:
        try:
            await self.store.set(key, entry)
            return
        except database.StorageQuotaExceeded as exc:
            logger.warning(
                "Cache quota exceeded writing %s, clearing %s*: %s",
                key,
                self.prefix,
                exc,
            )
        except database.StorageError as exc:
            logger.warning("Cache write for %s skipped: %s", key, exc)
            return
        try:
            await self.store.clear(self.prefix)
            await self.store.set(key, entry)
        except database.StorageError as exc:
            logger.warning("Cache write for %s skipped: %s", key, exc)

    async def fetch_layer(
        self,
        layer_id: str,
        scope: db_models.BBox | None = None,
        *,
        force: bool = False,
    ) -> LayerFetchResult:
        """Return the layer's data and cache metadata.

        Args:
            layer_id: Implemented layer id.
            scope: Current viewport; only used by geography-scoped layers.
            force: Skip the cache and make the server tier revalidate too.

        Raises:
            UnknownLayerError: For unknown or unimplemented layers.
        """
        layer = layers.get_layer(layer_id)
        bbox, fingerprint = self._scope(layer, scope)

        if not force:
            entry = await self._read(layer_id, fingerprint)
            if entry is not None:
                logger.debug("Cache hit for %s", layer_id)
                return LayerFetchResult(
                    data=entry.data,
                    info=db_models.CacheInfo(
                        cached_at=entry.cached_at,
                        count=entry.count,
                        fresh=False,
                    ),
                )

        data = await self.source.fetch(layer_id, bbox, force=force)
        fetched_at = self._clock()
        if data.is_empty:
            logger.info("Layer %s returned no features; not cached", layer_id)
        else:
            await self._persist(
                self.key_for(layer_id),
                db_models.CacheEntry(
                    data=data,
                    cached_at=fetched_at,
                    count=len(data),
                    fingerprint=fingerprint,
                ),
            )
        return LayerFetchResult(
            data=data,
            info=db_models.CacheInfo(
                cached_at=fetched_at, count=len(data), fresh=True
            ),
        )

    async def cache_info(
        self, layer_id: str, scope: db_models.BBox | None = None
    ) -> db_models.CacheInfo | None:
        """Metadata of the live entry without fetching.

        With ``scope`` given, a geography-scoped entry must also match it.
        """
        layer = layers.get_layer(layer_id)
        key = self.key_for(layer_id)
        entry = await self.store.get(key)
        if entry is None or entry.is_expired(self._clock(), self.ttl_ms):
            return None
        if scope is not None and entry.fingerprint != self._scope(layer, scope)[1]:
            return None
        return db_models.CacheInfo(
            cached_at=entry.cached_at, count=entry.count, fresh=False
        )

    async def clear(self) -> None:
        """Drop every cached layer of this namespace."""
        await self.store.clear(self.prefix)
