"""Tests for the JSON logging configuration."""

from __future__ import annotations

import json
import logging
import sys
from collections.abc import Iterator

import pytest

from app.core import logging_setup


@pytest.fixture
def clean_root() -> Iterator[logging.Logger]:
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    flag = getattr(root, logging_setup._CONFIGURED_FLAG, False)
    setattr(root, logging_setup._CONFIGURED_FLAG, False)
    yield root
    root.handlers = handlers
    root.setLevel(level)
    setattr(root, logging_setup._CONFIGURED_FLAG, flag)


def test_json_formatter_fields() -> None:
    """Test that records are rendered as one JSON object."""
    record = logging.LogRecord(
        "app.services.overpass", logging.WARNING, __file__, 1,
        "Layer %s failed", ("agua",), None,
    )
    payload = json.loads(logging_setup.JsonFormatter().format(record))
    assert payload["lvl"] == "WARNING"
    assert payload["name"] == "app.services.overpass"
    assert payload["msg"] == "Layer agua failed"
    assert isinstance(payload["t"], int)
    assert "exc_info" not in payload


def test_json_formatter_includes_exception() -> None:
    """Test that attached exceptions are formatted."""
    try:
        raise RuntimeError("boom")
    except RuntimeError:
        record = logging.LogRecord(
            "x", logging.ERROR, __file__, 1, "failed", (), sys.exc_info()
        )
    payload = json.loads(logging_setup.JsonFormatter().format(record))
    assert "RuntimeError: boom" in payload["exc_info"]


def test_configure_logging_is_idempotent(clean_root: logging.Logger) -> None:
    """Test that repeated calls add one handler and update the level."""
    before = len(clean_root.handlers)
    logging_setup.configure_logging("DEBUG")
    logging_setup.configure_logging("WARNING")
    assert len(clean_root.handlers) == before + 1
    assert clean_root.level == logging.WARNING


def test_configure_logging_unknown_level(clean_root: logging.Logger) -> None:
    """Test that an unknown level name falls back to INFO."""
    logging_setup.configure_logging("LOUD")
    assert clean_root.level == logging.INFO
