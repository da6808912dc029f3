"""Static catalogue of map layers.

Layers are immutable configuration loaded once at import time. A layer
with ``implemented=False`` is listed for display but can never be toggled
or fetched; asking for it, or for an unknown id, raises
:class:`UnknownLayerError`.

Example:
    Look up a fetchable layer:
        >>> from app.core import layers
        >>> layers.get_layer("camping").scope
        'region'
        >>> layers.get_layer("clima")
        Traceback (most recent call last):
        ...
        app.core.layers.UnknownLayerError: 'clima'
"""

from __future__ import annotations

import dataclasses
from typing import Any, Literal

Scope = Literal["region", "viewport"]


class UnknownLayerError(KeyError):
    """Raised for unconfigured or not-yet-implemented layers."""


@dataclasses.dataclass(frozen=True)
class Layer:
    """A named, independently toggleable category of map data.

    Attributes:
        id: Stable layer identifier used in URLs and cache keys.
        label: Display name.
        description: Short display description.
        icon: Display glyph.
        color: Display colour as a hex string.
        enabled: Whether the layer is on by default.
        implemented: Whether a fetcher is wired for the layer.
        group: UI grouping tag.
        source: Upstream provider name.
        scope: ``"region"`` layers always cover the fixed region of
            interest; ``"viewport"`` layers are fetched for the current map
            bounding box and cached per bounding box.
    """

    id: str
    label: str
    description: str
    icon: str
    color: str
    enabled: bool
    implemented: bool
    group: str
    source: str
    scope: Scope = "region"

    @property
    def geo_scoped(self) -> bool:
        return self.scope == "viewport"

    def to_json(self) -> dict[str, Any]:
        return dataclasses.asdict(self)


LAYERS: tuple[Layer, ...] = (
    Layer(
        id="camping",
        label="Camping & Bivouac",
        description="Spots libres, campings y zonas de acampada",
        icon="⛺",
        color="#22c55e",
        enabled=True,
        implemented=True,
        group="outdoors",
        source="OpenStreetMap",
    ),
    Layer(
        id="rutas",
        label="Rutas & Senderos",
        description="Rutas de senderismo, ciclismo y moto",
        icon="🥾",
        color="#f97316",
        enabled=True,
        implemented=True,
        group="outdoors",
        source="OpenStreetMap",
        scope="viewport",
    ),
    Layer(
        id="agua",
        label="Fuentes de agua",
        description="Fuentes, ríos y puntos de agua potable",
        icon="💧",
        color="#38bdf8",
        enabled=False,
        implemented=True,
        group="services",
        source="OpenStreetMap",
    ),
    Layer(
        id="wc",
        label="Aseos públicos",
        description="Aseos y baños de acceso público",
        icon="🚻",
        color="#64748b",
        enabled=False,
        implemented=True,
        group="services",
        source="OpenStreetMap",
        scope="viewport",
    ),
    Layer(
        id="wikipedia",
        label="Lugares de interés",
        description="POIs geolocalizados desde Wikipedia",
        icon="📖",
        color="#a855f7",
        enabled=False,
        implemented=True,
        group="culture",
        source="Wikipedia",
    ),
    Layer(
        id="wikidata",
        label="Patrimonio",
        description="Castillos, iglesias, museos y monumentos desde Wikidata",
        icon="🏰",
        color="#eab308",
        enabled=False,
        implemented=True,
        group="culture",
        source="Wikidata",
    ),
    Layer(
        id="cultura",
        label="Cementerios & Bibliotecas",
        description="Cementerios y bibliotecas públicas",
        icon="📚",
        color="#78716c",
        enabled=False,
        implemented=True,
        group="culture",
        source="OpenStreetMap",
    ),
    Layer(
        id="clima",
        label="Clima",
        description="Mapa de temperatura y precipitación",
        icon="🌤",
        color="#facc15",
        enabled=False,
        implemented=False,
        group="weather",
        source="OpenWeatherMap",
    ),
    Layer(
        id="eventos",
        label="Eventos & Fiestas",
        description="Fiestas locales, mercados y eventos",
        icon="🎉",
        color="#f43f5e",
        enabled=False,
        implemented=False,
        group="events",
        source="Mock data",
    ),
)

_BY_ID = {layer.id: layer for layer in LAYERS}


def get_layer(layer_id: str, *, require_implemented: bool = True) -> Layer:
    """Return the configured layer for ``layer_id``.

    Raises:
        UnknownLayerError: If the id is not configured, or the layer is not
            implemented and ``require_implemented`` is True.
    """
    layer = _BY_ID.get(layer_id)
    if layer is None or (require_implemented and not layer.implemented):
        raise UnknownLayerError(layer_id)
    return layer


def implemented_layers() -> tuple[Layer, ...]:
    return tuple(layer for layer in LAYERS if layer.implemented)


def default_enabled_ids() -> frozenset[str]:
    """Ids of implemented layers that are on by default."""
    return frozenset(
        layer.id for layer in LAYERS if layer.enabled and layer.implemented
    )
