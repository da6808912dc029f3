"""Wikidata SPARQL adapter for heritage points of interest.

A single federated query selects items with coordinates inside the
bounding box (``wikibase:box``) whose ``P31`` class is in a controlled
vocabulary. An item matching several classes comes back once per class;
only the first classification is kept. Classes outside the vocabulary map
to :data:`FALLBACK_TYPE`.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Mapping
from typing import Any

import httpx

from app.db import models as db_models
from app.services import dedup, results
from app.utils import http_helpers

logger = logging.getLogger(__name__)

LAYER_ID = "wikidata"

WIKIDATA_TYPES = {
    "Q23413": "Castillo",
    "Q16970": "Iglesia",
    "Q2977": "Catedral",
    "Q33506": "Museo",
    "Q4989906": "Monumento",
    "Q839954": "Yacimiento arqueológico",
    "Q570116": "Atracción turística",
    "Q12280": "Puente",
    "Q1081138": "Ermita",
}
FALLBACK_TYPE = "Lugar de interés"
RESULT_LIMIT = 500
THUMBNAIL_WIDTH = 400


def build_query(bbox: db_models.BBox) -> str:
    """Render the SPARQL query for ``bbox``."""
    min_lon, min_lat, max_lon, max_lat = bbox
    type_values = " ".join(f"wd:{qid}" for qid in WIKIDATA_TYPES)
    return f"""
SELECT ?item ?itemLabel ?lat ?lon ?type ?image WHERE {{
  SERVICE wikibase:box {{
    ?item wdt:P625 ?coords.
    bd:serviceParam wikibase:cornerSouthWest "Point({min_lon} {min_lat})"^^geo:wktLiteral.
    bd:serviceParam wikibase:cornerNorthEast "Point({max_lon} {max_lat})"^^geo:wktLiteral.
  }}
  VALUES ?type {{ {type_values} }}
  ?item wdt:P31 ?type.
  BIND(geof:latitude(?coords) AS ?lat)
  BIND(geof:longitude(?coords) AS ?lon)
  OPTIONAL {{ ?item wdt:P18 ?image. }}
  SERVICE wikibase:label {{ bd:serviceParam wikibase:language "es,ca,en". }}
}}
LIMIT {RESULT_LIMIT}
""".strip()


def _value(binding: Mapping[str, Any], key: str) -> str:
    cell = binding.get(key)
    if isinstance(cell, Mapping):
        return str(cell.get("value") or "")
    return ""


def thumbnail_url(raw: str) -> str:
    if not raw:
        return ""
    separator = "&" if "?" in raw else "?"
    return f"{raw}{separator}width={THUMBNAIL_WIDTH}"


def bindings_to_features(
    bindings: list[Mapping[str, Any]],
) -> db_models.FeatureCollection:
    """Convert SPARQL bindings into Point features, one per item."""
    first_per_item = dedup.unique_by_key(
        (b for b in bindings if _value(b, "item")),
        lambda binding: _value(binding, "item"),
    )
    features = []
    for binding in first_per_item:
        try:
            lat = float(_value(binding, "lat"))
            lon = float(_value(binding, "lon"))
        except ValueError:
            continue
        if math.isnan(lat) or math.isnan(lon):
            continue

        item_url = _value(binding, "item")
        qid = item_url.rsplit("/", 1)[-1]
        type_qid = _value(binding, "type").rsplit("/", 1)[-1]
        features.append(
            db_models.Feature(
                id=f"{LAYER_ID}/{qid}",
                geometry=db_models.Point((lon, lat)),
                layer_id=LAYER_ID,
                source_id=qid,
                attributes=db_models.WikidataAttributes(
                    name=_value(binding, "itemLabel") or qid,
                    type=WIKIDATA_TYPES.get(type_qid, FALLBACK_TYPE),
                    image=thumbnail_url(_value(binding, "image")),
                    url=item_url,
                ),
            )
        )
    return db_models.FeatureCollection(tuple(features))


class WikidataAdapter:
    """Fetches heritage items from the Wikidata Query Service."""

    layer_id = LAYER_ID

    def __init__(self, client: httpx.AsyncClient, sparql_url: str) -> None:
        self._client = client
        self._url = sparql_url

    async def fetch(
        self, scope: db_models.BBox
    ) -> results.Result[db_models.FeatureCollection]:
        try:
            payload = await http_helpers.request_json(
                self._client,
                "GET",
                self._url,
                params={"query": build_query(scope), "format": "json"},
                headers={"Accept": "application/sparql-results+json"},
            )
        except http_helpers.UpstreamError as exc:
            return results.Failure(exc.reason, str(exc))

        envelope = payload.get("results") if isinstance(payload, dict) else None
        bindings = (
            envelope.get("bindings") if isinstance(envelope, Mapping) else None
        )
        if not isinstance(bindings, list):
            return results.Failure(
                results.FailureReason.MALFORMED, "SPARQL payload has no bindings"
            )
        collection = bindings_to_features(
            [b for b in bindings if isinstance(b, Mapping)]
        )
        logger.debug("Wikidata: %d features", len(collection))
        return results.Ok(collection)
