"""Persisted set of enabled layer ids.

The enabled set is a JSON list in its own file, independent from the layer
cache namespace. Ids that are unknown or not implemented are dropped on
load; a missing or unreadable file yields the catalogue defaults.
"""

from __future__ import annotations

import json
import logging
import pathlib
from collections.abc import Iterable

from app.core import layers

logger = logging.getLogger(__name__)


class LayerPreferences:
    def __init__(self, path: pathlib.Path) -> None:
        self.path = path

    @staticmethod
    def _valid(ids: Iterable[object]) -> frozenset[str]:
        implemented = {layer.id for layer in layers.implemented_layers()}
        return frozenset(i for i in ids if isinstance(i, str) and i in implemented)

    def load(self) -> frozenset[str]:
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return layers.default_enabled_ids()
        except (OSError, ValueError) as exc:
            logger.warning("Ignoring unreadable preferences %s: %r", self.path, exc)
            return layers.default_enabled_ids()
        if not isinstance(raw, list):
            logger.warning("Ignoring preferences %s: not a list", self.path)
            return layers.default_enabled_ids()
        return self._valid(raw)

    def save(self, enabled: Iterable[str]) -> frozenset[str]:
        """Persist the valid subset of ``enabled`` and return it."""
        valid = self._valid(enabled)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(sorted(valid)), encoding="utf-8")
        return valid
