"""Overpass API adapter for OpenStreetMap-backed layers.

Each layer is described by an :class:`OverpassQuery`: the element selectors
to union, the output mode, the geometry to emit and a tag normaliser that
maps raw OSM tags onto the layer's attribute record. The adapter builds the
Overpass QL for the requested bounding box, posts it, and converts the
returned elements into features.

Position extraction:
    - nodes use their own ``lat``/``lon``;
    - ways and relations use the ``center`` Overpass provides with
      ``out center``;
    - anything without a resolvable position is skipped.

Line layers (trails) take the way's ``geometry`` and require at least two
points; degenerate ways are dropped.

Example:
    Fetch camping sites for the region of interest:
        >>> adapter = OverpassAdapter(client, settings.overpass_url,
        ...                           OVERPASS_QUERIES["camping"])
        >>> result = await adapter.fetch((-0.7, 39.7, 0.6, 40.9))
"""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Callable, Iterable, Mapping
from typing import Any, Literal

import httpx

from app.db import models as db_models
from app.services import results
from app.utils import geo, http_helpers

logger = logging.getLogger(__name__)

Tags = Mapping[str, str]

CAMP_SITE_TYPES = {
    "camp_site": "camping",
    "caravan_site": "area",
    "picnic_site": "picnic",
    "shelter": "refugio",
}
DEFAULT_CAMP_SITE_TYPE = "camping"


def _tag(tags: Tags, *keys: str, default: str = "") -> str:
    """First non-empty value among ``keys``."""
    for key in keys:
        value = tags.get(key)
        if value:
            return value
    return default


def _yes(tags: Tags, key: str) -> bool:
    return tags.get(key) == "yes"


def point_name(tags: Tags) -> str:
    return _tag(tags, "name", "name:es", default="Sin nombre")


def camping_attributes(tags: Tags) -> db_models.CampingAttributes:
    site = tags.get("tourism") or tags.get("amenity") or ""
    return db_models.CampingAttributes(
        name=point_name(tags),
        type=CAMP_SITE_TYPES.get(site, DEFAULT_CAMP_SITE_TYPE),
        water=_yes(tags, "drinking_water") or _yes(tags, "water"),
        electricity=_yes(tags, "electricity"),
        fee=_yes(tags, "fee"),
        capacity=_tag(tags, "capacity"),
        description=_tag(tags, "description", "description:es"),
        website=_tag(tags, "website", "url"),
    )


def water_attributes(tags: Tags) -> db_models.WaterAttributes:
    dispenser = (
        tags.get("amenity") == "drinking_water"
        and tags.get("drinking_water") != "no"
    )
    return db_models.WaterAttributes(
        name=point_name(tags),
        potable=dispenser or _yes(tags, "drinking_water"),
        permanent=not _yes(tags, "seasonal"),
        flow=_tag(tags, "flow_rate"),
    )


def trail_attributes(tags: Tags) -> db_models.TrailAttributes:
    return db_models.TrailAttributes(
        name=_tag(tags, "name", "name:es", default="Sendero"),
        highway=_tag(tags, "highway"),
        sac_scale=_tag(tags, "sac_scale"),
        surface=_tag(tags, "surface"),
        distance=_tag(tags, "distance"),
        description=_tag(tags, "description", "description:es"),
    )


def toilet_attributes(tags: Tags) -> db_models.ToiletAttributes:
    return db_models.ToiletAttributes(
        name=point_name(tags),
        fee=_yes(tags, "fee"),
        access=_tag(tags, "access", default="public"),
        opening_hours=_tag(tags, "opening_hours"),
    )


def culture_attributes(tags: Tags) -> db_models.CultureAttributes:
    cemetery = (
        tags.get("landuse") == "cemetery"
        or tags.get("amenity") == "grave_yard"
    )
    return db_models.CultureAttributes(
        name=point_name(tags),
        type="cementerio" if cemetery else "biblioteca",
        opening_hours=_tag(tags, "opening_hours"),
        website=_tag(tags, "website", "url"),
        wifi=tags.get("internet_access") in {"wlan", "yes"},
    )


def _element_position(element: Mapping[str, Any]) -> db_models.Coordinate | None:
    if element.get("type") == "node":
        lon, lat = element.get("lon"), element.get("lat")
    else:
        center = element.get("center")
        if not isinstance(center, Mapping):
            return None
        lon, lat = center.get("lon"), center.get("lat")
    if lon is None or lat is None:
        return None
    return (float(lon), float(lat))


def _element_tags(element: Mapping[str, Any]) -> Tags:
    tags = element.get("tags")
    return tags if isinstance(tags, Mapping) else {}


def _element_ids(element: Mapping[str, Any]) -> tuple[str, str]:
    source_id = f"{element.get('type')}/{element.get('id')}"
    return f"osm/{source_id}", source_id


def elements_to_points(
    elements: Iterable[Mapping[str, Any]],
    layer_id: str,
    normalize: Callable[[Tags], db_models.Attributes],
) -> db_models.FeatureCollection:
    """Convert Overpass elements into Point features."""
    features = []
    for element in elements:
        position = _element_position(element)
        if position is None:
            continue
        feature_id, source_id = _element_ids(element)
        features.append(
            db_models.Feature(
                id=feature_id,
                geometry=db_models.Point(position),
                layer_id=layer_id,
                source_id=source_id,
                attributes=normalize(_element_tags(element)),
            )
        )
    return db_models.FeatureCollection(tuple(features))


def elements_to_lines(
    elements: Iterable[Mapping[str, Any]],
    layer_id: str,
    normalize: Callable[[Tags], db_models.Attributes],
) -> db_models.FeatureCollection:
    """Convert Overpass ways with inline geometry into LineString features."""
    features = []
    for element in elements:
        points = element.get("geometry")
        if element.get("type") != "way" or not isinstance(points, list):
            continue
        coordinates = tuple(
            (float(point["lon"]), float(point["lat"]))
            for point in points
            if isinstance(point, Mapping)
        )
        if len(coordinates) < 2:
            continue
        feature_id, source_id = _element_ids(element)
        features.append(
            db_models.Feature(
                id=feature_id,
                geometry=db_models.LineString(coordinates),
                layer_id=layer_id,
                source_id=source_id,
                attributes=normalize(_element_tags(element)),
            )
        )
    return db_models.FeatureCollection(tuple(features))


@dataclasses.dataclass(frozen=True)
class OverpassQuery:
    """Declarative description of one Overpass-backed layer."""

    layer_id: str
    selectors: tuple[str, ...]
    normalize: Callable[[Tags], db_models.Attributes]
    output: str = "out body center;"
    geometry: Literal["point", "line"] = "point"
    timeout: int = 25

    def build(self, bbox: db_models.BBox) -> str:
        """Render the Overpass QL for ``bbox``."""
        box = geo.overpass_bbox(bbox)
        union = "\n".join(f"  {selector}({box});" for selector in self.selectors)
        return (
            f"[out:json][timeout:{self.timeout}];\n(\n{union}\n);\n{self.output}"
        )

    def convert(
        self, elements: Iterable[Mapping[str, Any]]
    ) -> db_models.FeatureCollection:
        valid = [element for element in elements if isinstance(element, Mapping)]
        if self.geometry == "line":
            return elements_to_lines(valid, self.layer_id, self.normalize)
        return elements_to_points(valid, self.layer_id, self.normalize)


OVERPASS_QUERIES: dict[str, OverpassQuery] = {
    "camping": OverpassQuery(
        layer_id="camping",
        selectors=(
            'node["tourism"="camp_site"]',
            'node["tourism"="caravan_site"]',
            'node["tourism"="picnic_site"]',
            'node["amenity"="shelter"]',
            'way["tourism"="camp_site"]',
            'way["tourism"="caravan_site"]',
        ),
        normalize=camping_attributes,
    ),
    "agua": OverpassQuery(
        layer_id="agua",
        selectors=(
            'node["amenity"="drinking_water"]',
            'node["natural"="spring"]',
            'node["amenity"="water_point"]',
        ),
        normalize=water_attributes,
        output="out body;",
    ),
    "rutas": OverpassQuery(
        layer_id="rutas",
        selectors=(
            'way["highway"="path"]',
            'way["highway"="footway"]["area"!="yes"]',
            'way["highway"="track"]',
            'way["highway"="bridleway"]',
        ),
        normalize=trail_attributes,
        output="out body geom;",
        geometry="line",
        timeout=30,
    ),
    "wc": OverpassQuery(
        layer_id="wc",
        selectors=('node["amenity"="toilets"]', 'way["amenity"="toilets"]'),
        normalize=toilet_attributes,
    ),
    "cultura": OverpassQuery(
        layer_id="cultura",
        selectors=(
            'node["landuse"="cemetery"]',
            'way["landuse"="cemetery"]',
            'node["amenity"="grave_yard"]',
            'way["amenity"="grave_yard"]',
            'node["amenity"="library"]',
            'way["amenity"="library"]',
        ),
        normalize=culture_attributes,
        timeout=30,
    ),
}


class OverpassAdapter:
    """Fetches one layer from the Overpass interpreter."""

    def __init__(
        self, client: httpx.AsyncClient, url: str, query: OverpassQuery
    ) -> None:
        self._client = client
        self._url = url
        self.query = query

    @property
    def layer_id(self) -> str:
        return self.query.layer_id

    async def fetch(
        self, scope: db_models.BBox
    ) -> results.Result[db_models.FeatureCollection]:
        ql = self.query.build(scope)
        try:
            payload = await http_helpers.request_json(
                self._client, "POST", self._url, data={"data": ql}
            )
        except http_helpers.UpstreamError as exc:
            return results.Failure(exc.reason, str(exc))

        elements = payload.get("elements") if isinstance(payload, dict) else None
        if not isinstance(elements, list):
            return results.Failure(
                results.FailureReason.MALFORMED, "Overpass payload has no elements"
            )
        try:
            collection = self.query.convert(elements)
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            return results.Failure(results.FailureReason.MALFORMED, repr(exc))
        logger.debug("Overpass %s: %d features", self.layer_id, len(collection))
        return results.Ok(collection)
