"""Bounding-box helpers shared by adapters and cache tiers.

Boxes are ``(min_lon, min_lat, max_lon, max_lat)`` tuples in WGS84
degrees, matching the ``[longitude, latitude]`` ordering of every feature
geometry.
"""

from __future__ import annotations

from app.db.models import BBox

FINGERPRINT_DECIMALS = 4


def validate_bbox(bbox: BBox) -> BBox:
    """Return ``bbox`` as floats after checking ordering and ranges.

    Raises:
        ValueError: If the box is inverted or out of WGS84 range.
    """
    min_lon, min_lat, max_lon, max_lat = (float(v) for v in bbox)
    if not (-180.0 <= min_lon < max_lon <= 180.0):
        raise ValueError(f"Invalid longitude range: {min_lon}..{max_lon}")
    if not (-90.0 <= min_lat < max_lat <= 90.0):
        raise ValueError(f"Invalid latitude range: {min_lat}..{max_lat}")
    return (min_lon, min_lat, max_lon, max_lat)


def parse_bbox(raw: str) -> BBox:
    """Parse ``"minLon,minLat,maxLon,maxLat"`` into a validated box.

    Raises:
        ValueError: If the string does not hold four numbers or the box is
            invalid.
    """
    parts = [part.strip() for part in raw.split(",")]
    if len(parts) != 4:
        raise ValueError("bbox must have four comma-separated numbers")
    return validate_bbox(
        (float(parts[0]), float(parts[1]), float(parts[2]), float(parts[3]))
    )


def bbox_fingerprint(bbox: BBox) -> str:
    """Stable string identifying a geography scope for cache matching."""
    return ",".join(f"{value:.{FINGERPRINT_DECIMALS}f}" for value in bbox)


def format_bbox(bbox: BBox) -> str:
    """Inverse of :func:`parse_bbox`, used in query strings."""
    return ",".join(repr(float(value)) for value in bbox)


def overpass_bbox(bbox: BBox) -> str:
    """Overpass QL bounding box: ``south,west,north,east``."""
    min_lon, min_lat, max_lon, max_lat = bbox
    return f"{min_lat},{min_lon},{max_lat},{max_lon}"


def within_proximity(
    a: tuple[float, float], b: tuple[float, float], threshold_deg: float
) -> bool:
    """True when both axes differ by less than ``threshold_deg``.

    A per-axis degree window, not a geodesic distance.
    """
    return (
        abs(a[0] - b[0]) < threshold_deg and abs(a[1] - b[1]) < threshold_deg
    )
