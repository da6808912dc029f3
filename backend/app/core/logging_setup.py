"""Root logger configuration with one JSON object per line.

Modules log through ``logging.getLogger(__name__)``; the application
factory calls :func:`configure_logging` once so that every record is
emitted as a compact JSON line on stdout.
"""

from __future__ import annotations

import json
import logging
import sys
import time

_CONFIGURED_FLAG = "_campermap_configured"


class JsonFormatter(logging.Formatter):
    """Minimal JSON log formatter.

    Produces ``{"t": 1700000000000, "lvl": "INFO", "name": "mod",
    "msg": "text"}`` with an ``exc_info`` key when an exception is attached.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, object] = {
            "t": int(time.time() * 1000),
            "lvl": record.levelname,
            "name": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def configure_logging(level: str = "INFO") -> None:
    """Configure the root logger once with JSON formatting.

    Repeated calls only adjust the level, so application factories invoked
    several times (tests) do not stack handlers.

    Args:
        level: Level name such as ``DEBUG`` or ``WARNING``. Unknown names
            fall back to ``INFO``.
    """
    root = logging.getLogger()
    resolved = logging.getLevelName(level.upper())
    if not isinstance(resolved, int):
        resolved = logging.INFO

    if not getattr(root, _CONFIGURED_FLAG, False):
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(JsonFormatter())
        root.addHandler(handler)
        setattr(root, _CONFIGURED_FLAG, True)

    root.setLevel(resolved)
