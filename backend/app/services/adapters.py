"""Adapter contract and the registry wiring layers to upstream providers."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

import httpx

from app.services import overpass, wikidata, wikipedia

if TYPE_CHECKING:
    from app.core import config
    from app.db import models as db_models
    from app.services import results


class LayerAdapter(Protocol):
    """Translates a bounding box into one layer's FeatureCollection.

    Implementations never raise for upstream problems; they return a
    ``Failure`` instead.
    """

    layer_id: str

    async def fetch(
        self, scope: db_models.BBox
    ) -> results.Result[db_models.FeatureCollection]: ...


def create_http_client(settings: config.Settings) -> httpx.AsyncClient:
    """Shared client for every upstream provider."""
    return httpx.AsyncClient(
        timeout=httpx.Timeout(settings.http_timeout_seconds),
        headers={"User-Agent": settings.user_agent},
        follow_redirects=True,
    )


def build_adapters(
    settings: config.Settings, client: httpx.AsyncClient
) -> dict[str, LayerAdapter]:
    """Return one adapter per implemented layer, keyed by layer id."""
    registry: dict[str, LayerAdapter] = {
        layer_id: overpass.OverpassAdapter(
            client, str(settings.overpass_url), query
        )
        for layer_id, query in overpass.OVERPASS_QUERIES.items()
    }
    registry[wikipedia.LAYER_ID] = wikipedia.WikipediaAdapter(client, settings)
    registry[wikidata.LAYER_ID] = wikidata.WikidataAdapter(
        client, str(settings.wikidata_sparql_url)
    )
    return registry
