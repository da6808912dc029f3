"""Split oversized query regions into tiles and fan out requests.

Geosearch-style APIs reject bounding boxes above roughly 0.2 degrees per
side. :func:`split_bbox` partitions a region into a regular grid whose
cells are at most ``edge_deg`` wide and tall; the last row and column are
clamped to the true boundary. :func:`fetch_tiled` issues every tile request
at once and flattens the results in tile order.

Example:
    Tile a region and query each cell:
        >>> tiles = split_bbox((-0.7, 39.7, 0.6, 40.9), 0.18)
        >>> len(tiles)
        56
        >>> items = await fetch_tiled(region, 0.18, fetch_one_tile)
"""

from __future__ import annotations

import asyncio
import logging
import math
from collections.abc import Awaitable, Callable, Sequence

from app.db.models import BBox
from app.utils import geo

logger = logging.getLogger(__name__)

# Absorbs float error so that an exact multiple of the edge does not yield
# a sliver tile.
_EPSILON = 1e-9


def _edges(start: float, stop: float, edge: float) -> list[tuple[float, float]]:
    count = max(1, math.ceil((stop - start) / edge - _EPSILON))
    spans = []
    for index in range(count):
        low = start + index * edge
        high = stop if index == count - 1 else start + (index + 1) * edge
        spans.append((low, high))
    return spans


def split_bbox(bbox: BBox, edge_deg: float) -> list[BBox]:
    """Partition ``bbox`` into a row-major grid of sub-boxes.

    Args:
        bbox: Region as ``(min_lon, min_lat, max_lon, max_lat)``.
        edge_deg: Maximum tile edge length in degrees.

    Returns:
        Tiles ordered south to north, then west to east. Adjacent tiles
        share their edges exactly, so the grid covers the region without
        gaps.

    Raises:
        ValueError: If ``edge_deg`` is not positive or the box is invalid.
    """
    if edge_deg <= 0:
        raise ValueError("edge_deg must be positive")
    min_lon, min_lat, max_lon, max_lat = geo.validate_bbox(bbox)
    return [
        (lon_low, lat_low, lon_high, lat_high)
        for lat_low, lat_high in _edges(min_lat, max_lat, edge_deg)
        for lon_low, lon_high in _edges(min_lon, max_lon, edge_deg)
    ]


async def fetch_tiled[T](
    bbox: BBox,
    edge_deg: float,
    fetch_tile: Callable[[BBox], Awaitable[Sequence[T]]],
) -> list[T]:
    """Run ``fetch_tile`` for every tile concurrently and flatten results.

    All tiles are awaited together; a tile that raises contributes nothing
    and does not cancel its siblings.

    Args:
        bbox: Region to cover.
        edge_deg: Maximum tile edge length in degrees.
        fetch_tile: Coroutine function returning the items of one tile.

    Returns:
        Items of every successful tile, in tile order.
    """
    tiles = split_bbox(bbox, edge_deg)
    outcomes = await asyncio.gather(
        *(fetch_tile(tile) for tile in tiles), return_exceptions=True
    )
    items: list[T] = []
    for tile, outcome in zip(tiles, outcomes, strict=True):
        if isinstance(outcome, BaseException):
            logger.warning("Tile %s failed: %r", tile, outcome)
            continue
        items.extend(outcome)
    logger.debug("Fetched %d items from %d tiles", len(items), len(tiles))
    return items
