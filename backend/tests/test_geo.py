"""Tests for bounding-box parsing, fingerprints and formatting."""

import pytest

from app.utils import geo


def test_parse_bbox_valid() -> None:
    assert geo.parse_bbox(" -0.1, 40.0 ,0.0,40.1") == (-0.1, 40.0, 0.0, 40.1)


@pytest.mark.parametrize(
    "raw",
    [
        "-0.1,40.0,0.0",
        "a,b,c,d",
        "0.0,40.0,-0.1,40.1",
        "-0.1,40.1,0.0,40.0",
        "-181,40.0,0.0,40.1",
        "-0.1,40.0,0.0,91",
    ],
)
def test_parse_bbox_rejects(raw: str) -> None:
    with pytest.raises(ValueError):
        geo.parse_bbox(raw)


def test_fingerprint_rounds_to_four_decimals() -> None:
    """Test that sub-precision jitter maps to the same scope."""
    a = geo.bbox_fingerprint((-0.10001, 40.00002, 0.0, 40.1))
    b = geo.bbox_fingerprint((-0.1, 40.0, 0.00003, 40.10004))
    assert a == b == "-0.1000,40.0000,0.0000,40.1000"


def test_format_bbox_round_trips_through_parse() -> None:
    bbox = (-0.123456789, 40.0, 0.5, 40.987654321)
    assert geo.parse_bbox(geo.format_bbox(bbox)) == bbox


def test_overpass_bbox_order() -> None:
    assert geo.overpass_bbox((-0.7, 39.7, 0.6, 40.9)) == "39.7,-0.7,40.9,0.6"


def test_within_proximity_is_strict_per_axis() -> None:
    assert geo.within_proximity((0.0, 0.0), (0.0019, -0.0019), 0.002)
    assert not geo.within_proximity((0.0, 0.0), (0.0, 0.0021), 0.002)
    assert not geo.within_proximity((0.0, 0.0), (0.003, 0.0), 0.002)
