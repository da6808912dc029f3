"""Tests for the static layer catalogue."""

from __future__ import annotations

import pytest

from app.core import layers


def test_catalogue_ids_are_unique() -> None:
    ids = [layer.id for layer in layers.LAYERS]
    assert len(ids) == len(set(ids))


def test_get_layer_rejects_unimplemented() -> None:
    """Test that unimplemented layers cannot be fetched or toggled."""
    with pytest.raises(layers.UnknownLayerError):
        layers.get_layer("clima")
    assert layers.get_layer("clima", require_implemented=False).id == "clima"
    with pytest.raises(layers.UnknownLayerError):
        layers.get_layer("nonexistent", require_implemented=False)


def test_scopes() -> None:
    """Test which layers follow the viewport."""
    scoped = {layer.id for layer in layers.LAYERS if layer.geo_scoped}
    assert scoped == {"rutas", "wc"}


def test_default_enabled_ids() -> None:
    assert layers.default_enabled_ids() == frozenset({"camping", "rutas"})
    assert "eventos" not in {layer.id for layer in layers.implemented_layers()}


def test_layer_to_json() -> None:
    payload = layers.get_layer("wikidata").to_json()
    assert payload["source"] == "Wikidata"
    assert payload["scope"] == "region"
    assert payload["implemented"] is True
