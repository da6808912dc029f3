"""Data models for map features, cache entries and repository layers.

This module defines the core data structures shared by the upstream
adapters, both cache tiers and the fetch orchestrator. A ``Feature`` is a
single geographic entity with a Point or LineString geometry whose
coordinates are always ordered ``(longitude, latitude)``. Its attributes
form a tagged union keyed by the feature's layer: every layer has its own
typed attribute record, and ``GenericAttributes`` is the fallback for
provider-variable fields.

Example:
    Creating a camping feature and serialising it to GeoJSON:
        >>> from app.db.models import CampingAttributes, Feature, Point
        >>> feature = Feature(
        ...     id="osm/node/42",
        ...     geometry=Point((-0.05, 40.0)),
        ...     layer_id="camping",
        ...     source_id="node/42",
        ...     attributes=CampingAttributes(name="Camping El Pinar"),
        ... )
        >>> feature.to_geojson()["properties"]["_layerId"]
        'camping'
"""

from __future__ import annotations

import dataclasses
import datetime
import time
from collections.abc import Iterator, Mapping
from typing import Any, Literal

BBox = tuple[float, float, float, float]
Coordinate = tuple[float, float]


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


@dataclasses.dataclass(frozen=True)
class Point:
    """Point geometry holding a single ``(lon, lat)`` pair."""

    coordinates: Coordinate
    type: Literal["Point"] = "Point"

    def to_geojson(self) -> dict[str, Any]:
        return {"type": "Point", "coordinates": list(self.coordinates)}


@dataclasses.dataclass(frozen=True)
class LineString:
    """LineString geometry; at least two ``(lon, lat)`` pairs."""

    coordinates: tuple[Coordinate, ...]
    type: Literal["LineString"] = "LineString"

    def __post_init__(self) -> None:
        if len(self.coordinates) < 2:
            raise ValueError("LineString requires at least 2 coordinates")

    def to_geojson(self) -> dict[str, Any]:
        return {
            "type": "LineString",
            "coordinates": [list(pair) for pair in self.coordinates],
        }


Geometry = Point | LineString


def geometry_from_geojson(payload: Mapping[str, Any]) -> Geometry:
    """Parse a GeoJSON geometry object into a Point or LineString.

    Raises:
        ValueError: If the geometry type is unsupported or malformed.
    """
    kind = payload.get("type")
    coords = payload.get("coordinates")
    if kind == "Point" and isinstance(coords, list | tuple) and len(coords) == 2:
        return Point((float(coords[0]), float(coords[1])))
    if kind == "LineString" and isinstance(coords, list | tuple):
        return LineString(
            tuple((float(pair[0]), float(pair[1])) for pair in coords)
        )
    raise ValueError(f"Unsupported geometry: {kind!r}")


# Attribute records, one per layer.


@dataclasses.dataclass(frozen=True)
class CampingAttributes:
    name: str
    type: str = "camping"
    water: bool = False
    electricity: bool = False
    fee: bool = False
    capacity: str = ""
    description: str = ""
    website: str = ""


@dataclasses.dataclass(frozen=True)
class WaterAttributes:
    name: str
    potable: bool = False
    permanent: bool = True
    flow: str = ""


@dataclasses.dataclass(frozen=True)
class TrailAttributes:
    name: str
    highway: str = ""
    sac_scale: str = ""
    surface: str = ""
    distance: str = ""
    description: str = ""


@dataclasses.dataclass(frozen=True)
class ToiletAttributes:
    name: str
    fee: bool = False
    access: str = "public"
    opening_hours: str = ""


@dataclasses.dataclass(frozen=True)
class CultureAttributes:
    name: str
    type: str = "biblioteca"
    opening_hours: str = ""
    website: str = ""
    wifi: bool = False


@dataclasses.dataclass(frozen=True)
class WikipediaAttributes:
    name: str
    summary: str = ""
    image: str = ""
    url: str = ""
    lang: str = ""


@dataclasses.dataclass(frozen=True)
class WikidataAttributes:
    name: str
    type: str = ""
    image: str = ""
    url: str = ""


@dataclasses.dataclass(frozen=True)
class RepoAttributes:
    name: str
    repo_id: str = ""
    type: str = ""
    description: str = ""
    url: str = ""
    image: str = ""
    notes: str = ""


@dataclasses.dataclass(frozen=True)
class GenericAttributes:
    """Fallback for layers without a dedicated record."""

    name: str
    extra: dict[str, Any] = dataclasses.field(default_factory=dict)


Attributes = (
    CampingAttributes
    | WaterAttributes
    | TrailAttributes
    | ToiletAttributes
    | CultureAttributes
    | WikipediaAttributes
    | WikidataAttributes
    | RepoAttributes
    | GenericAttributes
)

ATTRIBUTE_TYPES: dict[str, type[Attributes]] = {
    "camping": CampingAttributes,
    "agua": WaterAttributes,
    "rutas": TrailAttributes,
    "wc": ToiletAttributes,
    "cultura": CultureAttributes,
    "wikipedia": WikipediaAttributes,
    "wikidata": WikidataAttributes,
}

REPO_LAYER_PREFIX = "repo-"

# GeoJSON property names that differ from the attribute field names.
_PROPERTY_ALIASES = {"repo_id": "_repoId"}


def attributes_type_for(layer_id: str) -> type[Attributes]:
    """Return the attribute record class used by ``layer_id``."""
    if layer_id.startswith(REPO_LAYER_PREFIX):
        return RepoAttributes
    return ATTRIBUTE_TYPES.get(layer_id, GenericAttributes)


def _attributes_to_properties(attributes: Attributes) -> dict[str, Any]:
    if isinstance(attributes, GenericAttributes):
        return {**attributes.extra, "name": attributes.name}
    return {
        _PROPERTY_ALIASES.get(field.name, field.name): getattr(
            attributes, field.name
        )
        for field in dataclasses.fields(attributes)
    }


def _attributes_from_properties(
    layer_id: str, properties: Mapping[str, Any]
) -> Attributes:
    record = attributes_type_for(layer_id)
    name = str(properties.get("name") or "")
    if record is GenericAttributes:
        extra = {
            key: value
            for key, value in properties.items()
            if key != "name" and not key.startswith("_")
        }
        return GenericAttributes(name=name, extra=extra)

    kwargs: dict[str, Any] = {}
    for field in dataclasses.fields(record):
        key = _PROPERTY_ALIASES.get(field.name, field.name)
        if key in properties:
            kwargs[field.name] = properties[key]
    kwargs["name"] = name
    return record(**kwargs)


@dataclasses.dataclass(frozen=True)
class Feature:
    """A single normalised geographic entity.

    Attributes:
        id: Provider-qualified identifier, e.g. ``"osm/node/42"``.
        geometry: Point or LineString in ``(lon, lat)`` order.
        layer_id: Logical layer the feature belongs to (``_layerId``).
        source_id: Provider-native identifier (``_sourceId``), used for
            deduplication and deep links.
        attributes: Typed attribute record for ``layer_id``.
    """

    id: str
    geometry: Geometry
    layer_id: str
    source_id: str
    attributes: Attributes

    @property
    def name(self) -> str:
        return self.attributes.name

    def to_geojson(self) -> dict[str, Any]:
        properties = {
            "_layerId": self.layer_id,
            "_sourceId": self.source_id,
            **_attributes_to_properties(self.attributes),
        }
        return {
            "type": "Feature",
            "id": self.id,
            "geometry": self.geometry.to_geojson(),
            "properties": properties,
        }

    @classmethod
    def from_geojson(cls, payload: Mapping[str, Any]) -> Feature:
        """Build a feature from its GeoJSON representation.

        Raises:
            ValueError: If bookkeeping properties or geometry are missing.
        """
        properties = payload.get("properties") or {}
        layer_id = properties.get("_layerId")
        source_id = properties.get("_sourceId")
        if not layer_id or source_id is None:
            raise ValueError("Feature is missing _layerId/_sourceId")
        geometry = payload.get("geometry")
        if not isinstance(geometry, Mapping):
            raise ValueError("Feature has no geometry")
        return cls(
            id=str(payload.get("id") or f"{layer_id}/{source_id}"),
            geometry=geometry_from_geojson(geometry),
            layer_id=str(layer_id),
            source_id=str(source_id),
            attributes=_attributes_from_properties(str(layer_id), properties),
        )


@dataclasses.dataclass(frozen=True)
class FeatureCollection:
    """Ordered features of one layer. Empty is a valid result."""

    features: tuple[Feature, ...] = ()

    def __len__(self) -> int:
        return len(self.features)

    def __iter__(self) -> Iterator[Feature]:
        return iter(self.features)

    @property
    def is_empty(self) -> bool:
        return not self.features

    def to_geojson(self) -> dict[str, Any]:
        return {
            "type": "FeatureCollection",
            "features": [feature.to_geojson() for feature in self.features],
        }

    @classmethod
    def from_geojson(cls, payload: Mapping[str, Any]) -> FeatureCollection:
        if payload.get("type") != "FeatureCollection":
            raise ValueError("Not a FeatureCollection")
        raw_features = payload.get("features")
        if not isinstance(raw_features, list):
            raise ValueError("FeatureCollection.features must be a list")
        return cls(tuple(Feature.from_geojson(item) for item in raw_features))


EMPTY_COLLECTION = FeatureCollection()


@dataclasses.dataclass(frozen=True)
class CacheEntry:
    """Cached FeatureCollection for one (layer, geography scope) key.

    Attributes:
        data: Cached features.
        cached_at: Epoch milliseconds of the upstream fetch.
        count: Number of features in ``data``.
        fingerprint: Geography-scope fingerprint for viewport layers,
            None for fixed-region layers.
        tags: Invalidation tags (server tier only).
    """

    data: FeatureCollection
    cached_at: int
    count: int
    fingerprint: str | None = None
    tags: tuple[str, ...] = ()

    def is_expired(self, now_ms: int, ttl_ms: int) -> bool:
        """Return True once the entry is older than ``ttl_ms``."""
        return now_ms - self.cached_at > ttl_ms

    def to_json(self) -> dict[str, Any]:
        return {
            "data": self.data.to_geojson(),
            "ts": self.cached_at,
            "count": self.count,
            "fingerprint": self.fingerprint,
            "tags": list(self.tags),
        }

    @classmethod
    def from_json(cls, payload: Mapping[str, Any]) -> CacheEntry:
        data = FeatureCollection.from_geojson(payload["data"])
        return cls(
            data=data,
            cached_at=int(payload["ts"]),
            count=int(payload.get("count", len(data))),
            fingerprint=payload.get("fingerprint"),
            tags=tuple(payload.get("tags") or ()),
        )


@dataclasses.dataclass(frozen=True)
class CacheInfo:
    """Client-visible cache metadata.

    ``fresh`` is True only when the data came from a live upstream call
    during the current operation.
    """

    cached_at: int
    count: int
    fresh: bool

    def to_json(self) -> dict[str, Any]:
        return {
            "cachedAt": self.cached_at,
            "count": self.count,
            "fresh": self.fresh,
        }


@dataclasses.dataclass(frozen=True)
class LayerResponse:
    """Payload of ``GET /api/layers/{layer_id}``."""

    data: FeatureCollection
    cached_at: int
    count: int

    def to_json(self) -> dict[str, Any]:
        return {
            "data": self.data.to_geojson(),
            "cachedAt": self.cached_at,
            "count": self.count,
        }


@dataclasses.dataclass
class RepoMetadata:
    """Describes a user-uploaded repository layer."""

    id: str
    name: str
    description: str
    author: str
    count: int
    skipped: int
    uploaded_at: datetime.datetime = dataclasses.field(
        default_factory=lambda: datetime.datetime.now(tz=datetime.UTC)
    )

    def to_json(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "author": self.author,
            "uploadedAt": self.uploaded_at.isoformat(),
            "count": self.count,
            "skipped": self.skipped,
        }

    @classmethod
    def from_json(cls, payload: Mapping[str, Any]) -> RepoMetadata:
        return cls(
            id=str(payload["id"]),
            name=str(payload.get("name", "")),
            description=str(payload.get("description", "")),
            author=str(payload.get("author", "")),
            count=int(payload.get("count", 0)),
            skipped=int(payload.get("skipped", 0)),
            uploaded_at=datetime.datetime.fromisoformat(payload["uploadedAt"]),
        )
