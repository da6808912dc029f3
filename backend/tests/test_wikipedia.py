"""Tests for the Wikipedia geosearch adapter.

A fake MediaWiki answers per language host: geosearch requests return the
canned hits of that language and page-id requests return summaries, or an
error when the language is configured to fail.
"""

from __future__ import annotations

import asyncio
from typing import Any

import httpx

from app.core import config
from app.db import models as db_models
from app.services import results, wikipedia

# Narrower than one tile edge, so each language issues a single geosearch.
SCOPE = (-0.15, 40.0, 0.0, 40.1)


def _hit(pageid: int, title: str, lat: float, lon: float) -> dict[str, Any]:
    return {"pageid": pageid, "title": title, "lat": lat, "lon": lon}


class FakeWiki:
    def __init__(
        self,
        hits: dict[str, list[dict[str, Any]]],
        *,
        failing_search: set[str] = frozenset(),
        failing_summary: set[str] = frozenset(),
        search_body: Any = None,
        summary_body: Any = None,
    ) -> None:
        self.hits = hits
        self.failing_search = failing_search
        self.failing_summary = failing_summary
        self.search_body = search_body
        self.summary_body = summary_body
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        lang = request.url.host.split(".")[0]
        params = request.url.params
        if params.get("list") == "geosearch":
            if lang in self.failing_search:
                return httpx.Response(503)
            if self.search_body is not None:
                return httpx.Response(200, json=self.search_body)
            return httpx.Response(
                200, json={"query": {"geosearch": self.hits.get(lang, [])}}
            )
        if lang in self.failing_summary:
            return httpx.Response(500)
        if self.summary_body is not None:
            return httpx.Response(200, json=self.summary_body)
        pages = {
            pageid: {
                "pageid": int(pageid),
                "extract": f"Resumen {lang} {pageid}",
                "thumbnail": {"source": f"https://img.test/{lang}/{pageid}.jpg"},
            }
            for pageid in params["pageids"].split("|")
        }
        return httpx.Response(200, json={"query": {"pages": pages}})

    def summary_requests(self) -> list[httpx.Request]:
        return [r for r in self.requests if "pageids" in r.url.params]


def _fetch(
    wiki: FakeWiki, **overrides: Any
) -> results.Result[db_models.FeatureCollection]:
    settings = config.Settings(
        wikipedia_api_template="https://{lang}.wikipedia.test/w/api.php",
        wikipedia_languages=["es", "ca"],
        **overrides,
    )

    async def call() -> results.Result[db_models.FeatureCollection]:
        async with httpx.AsyncClient(transport=httpx.MockTransport(wiki)) as client:
            return await wikipedia.WikipediaAdapter(client, settings).fetch(SCOPE)

    return asyncio.run(call())


def test_geosearch_bbox_parameter_order() -> None:
    """Test that gsbbox is sent as top|left|bottom|right."""
    wiki = FakeWiki({})
    _fetch(wiki)

    searches = [r for r in wiki.requests if r.url.params.get("list") == "geosearch"]
    assert len(searches) == 2
    assert {r.url.params["gsbbox"] for r in searches} == {"40.1|-0.15|40.0|0.0"}


def test_merge_dedups_within_and_across_languages() -> None:
    """Test pageid dedup per language and proximity dedup against primary."""
    wiki = FakeWiki(
        {
            "es": [
                _hit(1, "Castell de Morella", 40.05, -0.1),
                _hit(1, "Castell de Morella", 40.05, -0.1),
            ],
            "ca": [
                _hit(9, "Castell de Morella", 40.0501, -0.0999),
                _hit(10, "Ermita", 40.08, -0.14),
            ],
        }
    )

    result = _fetch(wiki)

    assert isinstance(result, results.Ok)
    assert [f.id for f in result.value] == ["wikipedia/es:1", "wikipedia/ca:10"]
    castle = result.value.features[0]
    assert castle.geometry == db_models.Point((-0.1, 40.05))
    assert castle.attributes == db_models.WikipediaAttributes(
        name="Castell de Morella",
        summary="Resumen es 1",
        image="https://img.test/es/1.jpg",
        url="https://es.wikipedia.org/wiki/Castell_de_Morella",
        lang="es",
    )


def test_failed_summary_batch_leaves_pages_without_summary() -> None:
    wiki = FakeWiki(
        {"es": [_hit(1, "A", 40.05, -0.1)], "ca": [_hit(2, "B", 40.02, -0.01)]},
        failing_summary={"ca"},
    )

    result = _fetch(wiki)

    assert isinstance(result, results.Ok)
    by_lang = {f.attributes.lang: f.attributes for f in result.value}
    assert by_lang["es"].summary == "Resumen es 1"
    assert by_lang["ca"].summary == ""
    assert by_lang["ca"].image == ""


def test_summaries_are_batched_by_page_ids() -> None:
    wiki = FakeWiki(
        {"es": [_hit(i, f"P{i}", 40.0 + i / 100, -0.1) for i in range(1, 6)]}
    )

    result = _fetch(wiki, wiki_summary_batch_size=2)

    assert isinstance(result, results.Ok)
    assert len(result.value) == 5
    batches = [r.url.params["pageids"] for r in wiki.summary_requests()]
    assert batches == ["1|2", "3|4", "5"]


def test_primary_language_failure_keeps_secondary() -> None:
    """Test that one language failing does not fail the layer."""
    wiki = FakeWiki({"ca": [_hit(2, "B", 40.02, -0.01)]}, failing_search={"es"})

    result = _fetch(wiki)

    assert isinstance(result, results.Ok)
    assert [f.source_id for f in result.value] == ["ca:2"]


def test_all_tiles_failing_is_failure() -> None:
    wiki = FakeWiki({}, failing_search={"es", "ca"})

    result = _fetch(wiki)

    assert isinstance(result, results.Failure)
    assert result.reason is results.FailureReason.HTTP_STATUS
    assert wiki.summary_requests() == []


def test_no_hits_is_empty_ok() -> None:
    wiki = FakeWiki({"es": [], "ca": []})
    assert _fetch(wiki) == results.Ok(db_models.EMPTY_COLLECTION)


def test_article_url_escapes_title() -> None:
    assert wikipedia.article_url("ca", "Sant Mateu (Maestrat)") == (
        "https://ca.wikipedia.org/wiki/Sant_Mateu_%28Maestrat%29"
    )


def test_badly_shaped_summary_pages_are_skipped() -> None:
    """Test that bad pages leave their articles without a summary."""
    wiki = FakeWiki(
        {"es": [_hit(1, "A", 40.05, -0.1), _hit(2, "B", 40.02, -0.01)]},
        summary_body={
            "query": {
                "pages": {
                    "1": {"pageid": 1, "extract": "Resumen", "thumbnail": "x"},
                    "2": {"pageid": "abc", "extract": "Perdido"},
                    "3": ["not", "a", "page"],
                }
            }
        },
    )

    result = _fetch(wiki)

    assert isinstance(result, results.Ok)
    by_id = {f.source_id: f.attributes for f in result.value}
    assert by_id["es:1"].summary == "Resumen"
    assert by_id["es:1"].image == ""
    assert by_id["es:2"].summary == ""


def test_summary_query_not_a_mapping_is_ignored() -> None:
    wiki = FakeWiki(
        {"es": [_hit(1, "A", 40.05, -0.1)]}, summary_body={"query": ["pages"]}
    )

    result = _fetch(wiki)

    assert isinstance(result, results.Ok)
    (article,) = result.value.features
    assert article.attributes.summary == ""


def test_malformed_geosearch_everywhere_is_failure() -> None:
    wiki = FakeWiki({}, search_body={"query": []})

    result = _fetch(wiki)

    assert isinstance(result, results.Failure)
    assert result.reason is results.FailureReason.MALFORMED
    assert wiki.summary_requests() == []
