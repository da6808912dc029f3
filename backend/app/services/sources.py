"""Where a client session gets layer and repository collections from.

A session's cache manager does not talk to upstream providers directly; it
asks a :class:`LayerSource`, which is either the in-process
:class:`~app.services.layer_service.LayerService` or the HTTP layer
endpoint of a running server. Both fail closed: transport problems yield an
empty collection. An unknown layer is a configuration error and raises
:class:`~app.core.layers.UnknownLayerError`.

Repository layers are read through a :class:`RepoSource` and never cached.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Protocol

import httpx

from app.core import layers
from app.db import models as db_models
from app.utils import geo, http_helpers

if TYPE_CHECKING:
    from app.db import database
    from app.services.layer_service import LayerService

logger = logging.getLogger(__name__)


class LayerSource(Protocol):
    async def fetch(
        self,
        layer_id: str,
        scope: db_models.BBox,
        *,
        force: bool = False,
    ) -> db_models.FeatureCollection: ...


class ServiceLayerSource:
    """Calls the layer service in the same process."""

    def __init__(self, service: LayerService) -> None:
        self._service = service

    async def fetch(
        self,
        layer_id: str,
        scope: db_models.BBox,
        *,
        force: bool = False,
    ) -> db_models.FeatureCollection:
        response = await self._service.get_layer(layer_id, scope, force=force)
        return response.data


def _parse_collection(payload: Any) -> db_models.FeatureCollection:
    data = payload.get("data") if isinstance(payload, dict) else payload
    return db_models.FeatureCollection.from_geojson(data)


class HttpLayerSource:
    """Calls ``GET {base_url}/api/layers/{layer_id}`` on a layer server."""

    def __init__(self, client: httpx.AsyncClient, base_url: str) -> None:
        self._client = client
        self._base_url = base_url.rstrip("/")

    async def fetch(
        self,
        layer_id: str,
        scope: db_models.BBox,
        *,
        force: bool = False,
    ) -> db_models.FeatureCollection:
        url = f"{self._base_url}/api/layers/{layer_id}"
        params = {"force": "1" if force else "0", "bbox": geo.format_bbox(scope)}
        try:
            payload = await http_helpers.request_json(
                self._client, "GET", url, params=params
            )
            return _parse_collection(payload)
        except http_helpers.UpstreamError as exc:
            if exc.status_code == 404:
                raise layers.UnknownLayerError(layer_id) from exc
            logger.warning("Layer %s fetch failed (%s): %s", layer_id, exc.reason, exc)
        except (AttributeError, TypeError, ValueError) as exc:
            logger.warning("Layer %s returned an invalid collection: %r", layer_id, exc)
        return db_models.EMPTY_COLLECTION


class RepoSource(Protocol):
    async def fetch(self, repo_id: str) -> db_models.FeatureCollection: ...


class StoreRepoSource:
    """Reads repository layers straight from a repository store."""

    def __init__(self, store: database.RepoStoreProtocol) -> None:
        self._store = store

    async def fetch(self, repo_id: str) -> db_models.FeatureCollection:
        collection = await asyncio.to_thread(self._store.get, repo_id)
        if collection is None:
            logger.warning("Repository %s not found", repo_id)
            return db_models.EMPTY_COLLECTION
        return collection


class HttpRepoSource:
    """Reads repository layers from ``GET {base_url}/api/repos/{repo_id}``."""

    def __init__(self, client: httpx.AsyncClient, base_url: str) -> None:
        self._client = client
        self._base_url = base_url.rstrip("/")

    async def fetch(self, repo_id: str) -> db_models.FeatureCollection:
        url = f"{self._base_url}/api/repos/{repo_id}"
        try:
            payload = await http_helpers.request_json(self._client, "GET", url)
            return _parse_collection(payload)
        except http_helpers.UpstreamError as exc:
            logger.warning("Repository %s fetch failed: %s", repo_id, exc)
        except (AttributeError, TypeError, ValueError) as exc:
            logger.warning("Repository %s is not a collection: %r", repo_id, exc)
        return db_models.EMPTY_COLLECTION
