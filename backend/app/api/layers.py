"""Layer catalogue and layer data API endpoints.

This module provides REST API endpoints for listing the configured layers,
fetching one layer's features through the server-side tagged cache, and
reading the cache metadata of a layer without triggering a fetch.

Geography-scoped layers (``scope == "viewport"``) accept a ``bbox`` query
parameter as ``minLon,minLat,maxLon,maxLat``; region layers ignore it and
always cover the fixed region of interest.

Example:
    List all configured layers:
        >>> response = client.get("/api/layers")
        >>> [layer["id"] for layer in response.json()][:2]
        ['camping', 'rutas']

    Fetch camping sites, bypassing the server cache:
        >>> response = client.get("/api/layers/camping", params={"force": 1})
        >>> body = response.json()
        >>> # Returns: {"data": {"type": "FeatureCollection", ...},
        >>> #           "cachedAt": 1700000000000, "count": 412}

    Fetch trails for the current viewport:
        >>> client.get(
        ...     "/api/layers/rutas",
        ...     params={"bbox": "-0.1,40.0,0.0,40.1"},
        ... )
"""

from __future__ import annotations

from typing import Any

import fastapi

from app.core import layers
from app.db import models as db_models
from app.services import layer_service
from app.utils import geo


router = fastapi.APIRouter(prefix="/api/layers", tags=["layers"])


def get_layer_service(request: fastapi.Request) -> layer_service.LayerService:
    """Resolve the process-wide layer service created at startup.

    Args:
        request: Incoming request, whose application holds the service.

    Returns:
        LayerService shared by every request of the process.
    """
    return request.app.state.layer_service


def _parse_scope(bbox: str | None) -> db_models.BBox | None:
    """Parse the optional bbox query parameter.

    Raises:
        HTTPException: If the bbox is malformed (400 status code).
    """
    if bbox is None:
        return None
    try:
        return geo.parse_bbox(bbox)
    except ValueError as exc:
        raise fastapi.HTTPException(
            status_code=400,
            detail=f"Invalid bbox: {exc}",
        ) from exc


@router.get("")
async def list_layers() -> list[dict[str, Any]]:
    """List every configured layer, implemented or not.

    Returns:
        Layer metadata dictionaries in catalogue order, each with id,
        label, description, icon, color, enabled, implemented, group,
        source and scope.
    """
    return [layer.to_json() for layer in layers.LAYERS]


@router.get("/{layer_id}")
async def get_layer(
    layer_id: str,
    force: bool = False,
    bbox: str | None = None,
    service: layer_service.LayerService = fastapi.Depends(get_layer_service),  # noqa: B008
) -> dict[str, Any]:
    """Return a layer's features, served from the server cache when live.

    Args:
        layer_id: Implemented layer identifier.
        force: When true (``1``), invalidate the layer's cache tag and
            fetch upstream again.
        bbox: Viewport for geography-scoped layers.
        service: Layer service (injected via FastAPI Depends).

    Returns:
        Dictionary with ``data`` (GeoJSON FeatureCollection), ``cachedAt``
        (epoch milliseconds) and ``count``.

    Raises:
        UnknownLayerError: For unknown or unimplemented layers, rendered as
            404 ``{"error": "Layer not found"}``.
        HTTPException: If the bbox is malformed (400 status code).

    Example:
        Upstream failures degrade to an empty collection:
            >>> client.get("/api/layers/agua").json()["count"]
            0
    """
    response = await service.get_layer(
        layer_id, _parse_scope(bbox), force=force
    )
    return response.to_json()


@router.get("/{layer_id}/cache")
async def get_layer_cache_info(
    layer_id: str,
    bbox: str | None = None,
    service: layer_service.LayerService = fastapi.Depends(get_layer_service),  # noqa: B008
) -> dict[str, Any] | None:
    """Return the layer's server cache metadata, or null when not cached."""
    info = await service.cache_info(layer_id, _parse_scope(bbox))
    return info.to_json() if info else None
