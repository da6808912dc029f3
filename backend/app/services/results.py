"""Typed results returned by upstream adapters.

Adapters never raise past their boundary. They return ``Ok`` with a
FeatureCollection or ``Failure`` with a reason, and the layer service
decides explicitly, through :func:`collection_or_empty`, to serve an empty
collection for a failure.
"""

from __future__ import annotations

import dataclasses
import enum
import logging

from app.db import models as db_models

logger = logging.getLogger(__name__)


class FailureReason(enum.StrEnum):
    TRANSPORT = "transport"
    HTTP_STATUS = "http_status"
    MALFORMED = "malformed"


@dataclasses.dataclass(frozen=True)
class Ok[T]:
    value: T


@dataclasses.dataclass(frozen=True)
class Failure:
    reason: FailureReason
    detail: str = ""


type Result[T] = Ok[T] | Failure


def collection_or_empty(
    result: Result[db_models.FeatureCollection], layer_id: str
) -> db_models.FeatureCollection:
    """Unwrap an adapter result, coercing failures to an empty collection.

    Args:
        result: Adapter outcome.
        layer_id: Layer the result belongs to, for diagnostics.

    Returns:
        The fetched collection, or ``EMPTY_COLLECTION`` on failure.
    """
    match result:
        case Ok(value=collection):
            return collection
        case Failure(reason=reason, detail=detail):
            logger.warning(
                "Layer %s upstream failure (%s): %s", layer_id, reason, detail
            )
            return db_models.EMPTY_COLLECTION
