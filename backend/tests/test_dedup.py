"""Tests for intra-source and cross-source deduplication."""

from __future__ import annotations

from app.services import dedup


def _position(item: dict[str, float]) -> tuple[float, float]:
    return (item["lon"], item["lat"])


def test_unique_by_key_first_wins() -> None:
    items = [{"id": 1, "v": "a"}, {"id": 2, "v": "b"}, {"id": 1, "v": "c"}]
    assert dedup.unique_by_key(items, lambda item: item["id"]) == items[:2]


def test_secondary_near_primary_is_dropped() -> None:
    """Test that an entry 0.0001 degrees from a primary one is discarded."""
    primary = [{"lat": 40.1000, "lon": -0.1000, "src": "es"}]
    secondary = [{"lat": 40.1001, "lon": -0.0999, "src": "ca"}]
    merged = dedup.drop_near_duplicates(primary, secondary, _position, 0.002)
    assert merged == primary


def test_secondary_far_from_primary_is_kept() -> None:
    """Test that an entry one degree away survives."""
    primary = [{"lat": 40.1000, "lon": -0.1000, "src": "es"}]
    secondary = [{"lat": 41.1000, "lon": 0.9000, "src": "ca"}]
    merged = dedup.drop_near_duplicates(primary, secondary, _position, 0.002)
    assert merged == primary + secondary


def test_primary_entries_are_never_dropped() -> None:
    """Test that close primary entries are all kept, in order."""
    primary = [
        {"lat": 40.0, "lon": 0.0},
        {"lat": 40.0001, "lon": 0.0001},
    ]
    merged = dedup.drop_near_duplicates(primary, [], _position, 0.002)
    assert merged == primary
