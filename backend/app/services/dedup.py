"""Deduplication of overlapping entities within and across sources.

Two stages are applied when one layer aggregates several providers:

1. :func:`unique_by_key` keeps the first occurrence of each native
   identifier inside one provider's result set.
2. :func:`drop_near_duplicates` keeps every primary entry and only those
   secondary entries with no primary entry inside the proximity window.
"""

from __future__ import annotations

from collections.abc import Callable, Hashable, Iterable, Sequence

from app.utils import geo

Position = tuple[float, float]


def unique_by_key[T](
    items: Iterable[T], key: Callable[[T], Hashable]
) -> list[T]:
    """Return ``items`` without repeated keys; first occurrence wins."""
    seen: set[Hashable] = set()
    unique: list[T] = []
    for item in items:
        item_key = key(item)
        if item_key in seen:
            continue
        seen.add(item_key)
        unique.append(item)
    return unique


def drop_near_duplicates[T](
    primary: Sequence[T],
    secondary: Iterable[T],
    position: Callable[[T], Position],
    threshold_deg: float,
) -> list[T]:
    """Merge two sources, discarding secondary entries near primary ones.

    Args:
        primary: Entries that are always kept, in order.
        secondary: Candidates tested against the full primary set.
        position: Returns ``(lon, lat)`` for an entry.
        threshold_deg: Per-axis proximity window in degrees.

    Returns:
        All primary entries followed by the surviving secondary entries.
    """
    anchors = [position(item) for item in primary]
    merged = list(primary)
    for candidate in secondary:
        where = position(candidate)
        if any(
            geo.within_proximity(anchor, where, threshold_deg)
            for anchor in anchors
        ):
            continue
        merged.append(candidate)
    return merged
