"""Wikipedia geosearch adapter with tiling and cross-language dedup.

The MediaWiki geosearch API rejects bounding boxes larger than about 0.2
degrees per side, so the requested region is tiled (0.18 degree cells by
default) and every tile is queried for every configured language at once.
Results are then deduplicated in two stages:

1. within a language, repeated page ids are dropped (first wins);
2. entries from secondary languages within the proximity window of any
   primary-language entry are dropped. Primary entries are always kept.

Finally extracts and thumbnails are fetched in batches of page ids per
language. A failed batch only leaves those pages without summary and image.

Example:
    >>> adapter = WikipediaAdapter(client, settings)
    >>> result = await adapter.fetch(settings.region_bbox)
"""

from __future__ import annotations

import asyncio
import dataclasses
import itertools
import logging
from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

import httpx

from app.db import models as db_models
from app.services import dedup, results, tiling
from app.utils import http_helpers

if TYPE_CHECKING:
    from app.core import config

logger = logging.getLogger(__name__)

LAYER_ID = "wikipedia"
ARTICLE_URL_TEMPLATE = "https://{lang}.wikipedia.org/wiki/{title}"


@dataclasses.dataclass(frozen=True)
class GeoItem:
    """One geosearch hit."""

    pageid: int
    title: str
    lat: float
    lon: float
    lang: str

    @property
    def position(self) -> tuple[float, float]:
        return (self.lon, self.lat)


@dataclasses.dataclass(frozen=True)
class Summary:
    extract: str = ""
    image: str = ""


def _query_field(payload: Any, field: str) -> Any:
    """``payload["query"][field]``, or None when the envelope is malformed."""
    query = payload.get("query") if isinstance(payload, Mapping) else None
    return query.get(field) if isinstance(query, Mapping) else None


def _parse_geosearch(payload: Any, lang: str) -> list[GeoItem]:
    hits = _query_field(payload, "geosearch")
    if not isinstance(hits, list):
        raise http_helpers.UpstreamError(
            results.FailureReason.MALFORMED, f"{lang} geosearch: no results list"
        )
    items = []
    for hit in hits:
        try:
            items.append(
                GeoItem(
                    pageid=int(hit["pageid"]),
                    title=str(hit["title"]),
                    lat=float(hit["lat"]),
                    lon=float(hit["lon"]),
                    lang=lang,
                )
            )
        except (KeyError, TypeError, ValueError):
            continue
    return items


def article_url(lang: str, title: str) -> str:
    return ARTICLE_URL_TEMPLATE.format(
        lang=lang, title=quote(title.replace(" ", "_"), safe="")
    )


class WikipediaAdapter:
    """Fetches geolocated encyclopedia articles for a bounding box."""

    layer_id = LAYER_ID

    def __init__(
        self,
        client: httpx.AsyncClient,
        settings: config.Settings,
    ) -> None:
        self._client = client
        self._api_template = settings.wikipedia_api_template
        self.languages: tuple[str, ...] = tuple(settings.wikipedia_languages)
        self.tile_deg = settings.wiki_tile_deg
        self.proximity_deg = settings.wiki_proximity_deg
        self.batch_size = settings.wiki_summary_batch_size
        self.geosearch_limit = settings.wiki_geosearch_limit

    def _api_url(self, lang: str) -> str:
        return self._api_template.format(lang=lang)

    async def _search_tile(self, lang: str, tile: db_models.BBox) -> list[GeoItem]:
        min_lon, min_lat, max_lon, max_lat = tile
        payload = await http_helpers.request_json(
            self._client,
            "GET",
            self._api_url(lang),
            params={
                "action": "query",
                "list": "geosearch",
                "gsbbox": f"{max_lat}|{min_lon}|{min_lat}|{max_lon}",
                "gslimit": str(self.geosearch_limit),
                "gsnamespace": "0",
                "format": "json",
            },
        )
        return _parse_geosearch(payload, lang)

    async def _search_language(
        self, lang: str, scope: db_models.BBox, failures: list[Exception]
    ) -> list[GeoItem]:
        async def search(tile: db_models.BBox) -> list[GeoItem]:
            try:
                return await self._search_tile(lang, tile)
            except http_helpers.UpstreamError as exc:
                failures.append(exc)
                raise

        return await tiling.fetch_tiled(scope, self.tile_deg, search)

    async def _fetch_summary_batch(
        self, lang: str, pageids: Sequence[int]
    ) -> dict[tuple[str, int], Summary]:
        try:
            payload = await http_helpers.request_json(
                self._client,
                "GET",
                self._api_url(lang),
                params={
                    "action": "query",
                    "pageids": "|".join(str(pageid) for pageid in pageids),
                    "prop": "extracts|pageimages",
                    "exintro": "1",
                    "explaintext": "1",
                    "exsentences": "3",
                    "pithumbsize": "400",
                    "format": "json",
                },
            )
        except http_helpers.UpstreamError as exc:
            logger.warning("Summary batch for %s failed: %s", lang, exc)
            return {}

        pages = _query_field(payload, "pages")
        if not isinstance(pages, Mapping):
            logger.warning("Summary batch for %s returned no pages", lang)
            return {}

        summaries = {}
        for page in pages.values():
            if not isinstance(page, Mapping):
                continue
            try:
                pageid = int(page["pageid"])
            except (KeyError, TypeError, ValueError):
                continue
            thumbnail = page.get("thumbnail")
            if not isinstance(thumbnail, Mapping):
                thumbnail = {}
            summaries[(lang, pageid)] = Summary(
                extract=str(page.get("extract") or ""),
                image=str(thumbnail.get("source") or ""),
            )
        return summaries

    async def _fetch_summaries(
        self, items: Sequence[GeoItem]
    ) -> dict[tuple[str, int], Summary]:
        batches = []
        for lang in self.languages:
            pageids = [item.pageid for item in items if item.lang == lang]
            for start in range(0, len(pageids), self.batch_size):
                batches.append(
                    self._fetch_summary_batch(
                        lang, pageids[start : start + self.batch_size]
                    )
                )
        summaries: dict[tuple[str, int], Summary] = {}
        for batch in await asyncio.gather(*batches, return_exceptions=True):
            if isinstance(batch, BaseException):
                if not isinstance(batch, Exception):
                    raise batch
                logger.warning("Summary batch dropped: %r", batch)
                continue
            summaries.update(batch)
        return summaries

    def _to_feature(self, item: GeoItem, summary: Summary) -> db_models.Feature:
        source_id = f"{item.lang}:{item.pageid}"
        return db_models.Feature(
            id=f"{LAYER_ID}/{source_id}",
            geometry=db_models.Point(item.position),
            layer_id=LAYER_ID,
            source_id=source_id,
            attributes=db_models.WikipediaAttributes(
                name=item.title,
                summary=summary.extract,
                image=summary.image,
                url=article_url(item.lang, item.title),
                lang=item.lang,
            ),
        )

    def merge(self, per_language: Sequence[Sequence[GeoItem]]) -> list[GeoItem]:
        """Apply intra-language then cross-language deduplication.

        ``per_language`` is ordered like ``self.languages``; the first entry
        is the primary source.
        """
        unique = [
            dedup.unique_by_key(items, lambda item: item.pageid)
            for items in per_language
        ]
        if not unique:
            return []
        primary, *secondaries = unique
        return dedup.drop_near_duplicates(
            primary,
            itertools.chain.from_iterable(secondaries),
            lambda item: item.position,
            self.proximity_deg,
        )

    async def fetch(
        self, scope: db_models.BBox
    ) -> results.Result[db_models.FeatureCollection]:
        failures: list[Exception] = []
        per_language = await asyncio.gather(
            *(
                self._search_language(lang, scope, failures)
                for lang in self.languages
            )
        )
        tile_count = len(tiling.split_bbox(scope, self.tile_deg))
        if failures and len(failures) == tile_count * len(self.languages):
            reason = getattr(failures[-1], "reason", results.FailureReason.TRANSPORT)
            return results.Failure(reason, f"all geosearch tiles failed: {failures[-1]}")

        items = self.merge(per_language)
        if not items:
            return results.Ok(db_models.EMPTY_COLLECTION)

        summaries = await self._fetch_summaries(items)
        features = tuple(
            self._to_feature(item, summaries.get((item.lang, item.pageid), Summary()))
            for item in items
        )
        logger.debug("Wikipedia: %d features", len(features))
        return results.Ok(db_models.FeatureCollection(features))
