"""Server-side layer fetching behind the tagged cache.

:class:`LayerService` resolves a layer id to its adapter, picks the
geography scope (the fixed region, or the requested bounding box for
viewport layers) and serves the result through :class:`TaggedCache`.
Adapter failures are coerced to an empty collection here, and nowhere else.

Example:
    >>> service = LayerService(adapters, TaggedCache(store, ttl_ms), region)
    >>> response = await service.get_layer("camping")
    >>> response.to_json()["count"]
    412
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING

import httpx

from app.core import layers
from app.db import database
from app.db import models as db_models
from app.services import adapters, results, server_cache
from app.utils import geo

if TYPE_CHECKING:
    from app.core import config

logger = logging.getLogger(__name__)

KEY_PREFIX = "campermap-layer-"


def layer_tag(layer_id: str) -> str:
    return f"layer-{layer_id}"


def cache_key(layer_id: str, scope: db_models.BBox) -> str:
    return f"{KEY_PREFIX}{layer_id}:{geo.bbox_fingerprint(scope)}"


class LayerService:
    """Fetch-or-serve-cached access to every implemented layer."""

    def __init__(
        self,
        layer_adapters: Mapping[str, adapters.LayerAdapter],
        cache: server_cache.TaggedCache,
        region_bbox: db_models.BBox,
    ) -> None:
        self._adapters = layer_adapters
        self.cache = cache
        self.region_bbox = region_bbox

    def resolve_scope(
        self, layer_id: str, scope: db_models.BBox | None = None
    ) -> db_models.BBox:
        """Return the bounding box ``layer_id`` is fetched for.

        Raises:
            UnknownLayerError: If the layer is unknown, not implemented or
                has no adapter.
        """
        layer = layers.get_layer(layer_id)
        if layer_id not in self._adapters:
            raise layers.UnknownLayerError(layer_id)
        if layer.geo_scoped and scope is not None:
            return scope
        return self.region_bbox

    async def get_layer(
        self,
        layer_id: str,
        scope: db_models.BBox | None = None,
        *,
        force: bool = False,
    ) -> db_models.LayerResponse:
        """Return the layer's features, fetching upstream on a miss.

        Args:
            layer_id: Implemented layer id.
            scope: Viewport for geography-scoped layers; ignored otherwise.
            force: Invalidate the layer's tag before reading.

        Raises:
            UnknownLayerError: For unknown or unimplemented layers.
        """
        bbox = self.resolve_scope(layer_id, scope)
        if force:
            await self.cache.revalidate_tag(layer_tag(layer_id))

        async def compute() -> db_models.FeatureCollection:
            result = await self._adapters[layer_id].fetch(bbox)
            return results.collection_or_empty(result, layer_id)

        entry = await self.cache.cached(
            cache_key(layer_id, bbox), (layer_tag(layer_id),), compute
        )
        return db_models.LayerResponse(
            data=entry.data, cached_at=entry.cached_at, count=entry.count
        )

    async def cache_info(
        self, layer_id: str, scope: db_models.BBox | None = None
    ) -> db_models.CacheInfo | None:
        """Metadata of the live server entry, without fetching."""
        bbox = self.resolve_scope(layer_id, scope)
        entry = await self.cache.get(cache_key(layer_id, bbox))
        if entry is None:
            return None
        return db_models.CacheInfo(
            cached_at=entry.cached_at, count=entry.count, fresh=False
        )


def create_layer_service(
    settings: config.Settings, client: httpx.AsyncClient
) -> LayerService:
    """Wire adapters and an in-memory tagged cache from settings."""
    return LayerService(
        adapters.build_adapters(settings, client),
        server_cache.TaggedCache(
            database.InMemoryCacheStore(), settings.cache_ttl_ms
        ),
        settings.region_bbox,
    )
