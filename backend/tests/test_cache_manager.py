"""Tests for the client-side durable layer cache.

This module validates LayerCacheManager against an in-memory store and a
recording fake layer source:
    - a second non-forced fetch is served from cache with no upstream call,
    - ``force`` always goes upstream and rewrites the timestamp,
    - empty results are never cached,
    - TTL expiry is checked at the millisecond boundary,
    - viewport layers only match the bounding box they were cached for,
    - quota exhaustion clears the namespace and retries once.

A mutable clock makes every timestamp deterministic.
"""

from __future__ import annotations

import asyncio

import pytest

from app.core import layers
from app.db import database
from app.db import models as db_models
from app.services import cache_manager

PREFIX = "campermap_layer_"
TTL_MS = 24 * 60 * 60 * 1000
REGION = (-0.7, 39.7, 0.6, 40.9)
VIEWPORT = (-0.1, 40.0, 0.0, 40.1)


def _camping(count: int) -> db_models.FeatureCollection:
    return db_models.FeatureCollection(
        tuple(
            db_models.Feature(
                id=f"osm/node/{index}",
                geometry=db_models.Point((-0.1, 40.0 + index / 100)),
                layer_id="camping",
                source_id=f"node/{index}",
                attributes=db_models.CampingAttributes(name=f"Camping {index}"),
            )
            for index in range(count)
        )
    )


def _trails() -> db_models.FeatureCollection:
    return db_models.FeatureCollection(
        (
            db_models.Feature(
                id="osm/way/7",
                geometry=db_models.LineString(((-0.05, 40.05), (-0.04, 40.06))),
                layer_id="rutas",
                source_id="way/7",
                attributes=db_models.TrailAttributes(name="Sendero"),
            ),
        )
    )


class FakeSource:
    """Layer source returning canned data and recording every call."""

    def __init__(self, data: db_models.FeatureCollection) -> None:
        self.data = data
        self.calls: list[tuple[str, db_models.BBox, bool]] = []

    async def fetch(
        self,
        layer_id: str,
        scope: db_models.BBox,
        *,
        force: bool = False,
    ) -> db_models.FeatureCollection:
        self.calls.append((layer_id, scope, force))
        return self.data


class Clock:
    def __init__(self, now: int = 1_700_000_000_000) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now


class QuotaStore(database.InMemoryCacheStore):
    """In-memory store whose first ``failures`` writes exceed the quota."""

    def __init__(self, failures: int) -> None:
        super().__init__()
        self.failures = failures
        self.cleared: list[str] = []

    async def set(self, key: str, entry: db_models.CacheEntry) -> None:
        if self.failures > 0:
            self.failures -= 1
            raise database.StorageQuotaExceeded("quota")
        await super().set(key, entry)

    async def clear(self, prefix: str) -> None:
        self.cleared.append(prefix)
        await super().clear(prefix)


class FailingStore(database.InMemoryCacheStore):
    """In-memory store whose backend fails with a non-quota error."""

    def __init__(self) -> None:
        super().__init__()
        self.cleared: list[str] = []

    async def get(self, key: str) -> db_models.CacheEntry | None:
        raise database.StorageError("permission denied")

    async def set(self, key: str, entry: db_models.CacheEntry) -> None:
        raise database.StorageError("permission denied")

    async def clear(self, prefix: str) -> None:
        self.cleared.append(prefix)
        await super().clear(prefix)

def _manager(
    source: FakeSource,
    store: database.CacheStoreProtocol | None = None,
    clock: Clock | None = None,
) -> cache_manager.LayerCacheManager:
    return cache_manager.LayerCacheManager(
        store if store is not None else database.InMemoryCacheStore(),
        source,
        prefix=PREFIX,
        ttl_ms=TTL_MS,
        region_bbox=REGION,
        clock=clock or Clock(),
    )


def test_second_fetch_served_from_cache() -> None:
    """Test that a repeated non-forced fetch makes no upstream call."""
    source = FakeSource(_camping(3))
    manager = _manager(source)

    first = asyncio.run(manager.fetch_layer("camping"))
    second = asyncio.run(manager.fetch_layer("camping"))

    assert first.info.fresh is True
    assert second.info.fresh is False
    assert second.data == first.data
    assert second.info.cached_at == first.info.cached_at
    assert len(source.calls) == 1


def test_region_layer_fetches_region_bbox() -> None:
    """Test that region layers ignore the viewport."""
    source = FakeSource(_camping(1))
    manager = _manager(source)

    asyncio.run(manager.fetch_layer("camping", VIEWPORT))

    assert source.calls == [("camping", REGION, False)]


def test_force_bypasses_cache_and_rewrites_timestamp() -> None:
    """Test that force always goes upstream and refreshes cachedAt."""
    source = FakeSource(_camping(2))
    clock = Clock()
    store = database.InMemoryCacheStore()
    manager = _manager(source, store, clock)

    asyncio.run(manager.fetch_layer("camping"))
    clock.now += 5_000
    forced = asyncio.run(manager.fetch_layer("camping", force=True))

    assert forced.info.fresh is True
    assert forced.info.cached_at == clock.now
    assert len(source.calls) == 2
    assert source.calls[-1][2] is True
    entry = asyncio.run(store.get(f"{PREFIX}camping"))
    assert entry is not None
    assert entry.cached_at == clock.now


def test_empty_result_is_not_cached() -> None:
    """Test that an empty upstream result leaves the cache untouched."""
    source = FakeSource(db_models.EMPTY_COLLECTION)
    store = database.InMemoryCacheStore()
    manager = _manager(source, store)

    first = asyncio.run(manager.fetch_layer("agua"))
    second = asyncio.run(manager.fetch_layer("agua"))

    assert first.info.fresh is True
    assert first.info.count == 0
    assert second.info.fresh is True
    assert len(source.calls) == 2
    assert len(store) == 0


def test_entry_live_at_ttl_and_stale_one_ms_later() -> None:
    """Test the TTL boundary: T + TTL is a hit, T + TTL + 1ms is a miss."""
    source = FakeSource(_camping(1))
    clock = Clock()
    manager = _manager(source, clock=clock)
    written_at = clock.now

    asyncio.run(manager.fetch_layer("camping"))

    clock.now = written_at + TTL_MS
    at_ttl = asyncio.run(manager.fetch_layer("camping"))
    assert at_ttl.info.fresh is False
    assert len(source.calls) == 1

    clock.now = written_at + TTL_MS + 1
    expired = asyncio.run(manager.fetch_layer("camping"))
    assert expired.info.fresh is True
    assert len(source.calls) == 2


def test_viewport_layer_matches_fingerprint() -> None:
    """Test that a viewport layer cached for one bbox misses for another."""
    source = FakeSource(_trails())
    manager = _manager(source)
    other = (0.1, 40.2, 0.2, 40.3)

    asyncio.run(manager.fetch_layer("rutas", VIEWPORT))
    same = asyncio.run(manager.fetch_layer("rutas", VIEWPORT))
    moved = asyncio.run(manager.fetch_layer("rutas", other))

    assert same.info.fresh is False
    assert moved.info.fresh is True
    assert [call[1] for call in source.calls] == [VIEWPORT, other]


def test_quota_exceeded_clears_namespace_and_retries() -> None:
    """Test that a quota failure evicts the namespace and writes again."""
    source = FakeSource(_camping(1))
    store = QuotaStore(failures=0)
    other = db_models.CacheEntry(data=_camping(1), cached_at=0, count=1)
    asyncio.run(store.set("unrelated", other))
    asyncio.run(store.set(f"{PREFIX}wikidata", other))
    store.failures = 1
    manager = _manager(source, store)

    result = asyncio.run(manager.fetch_layer("camping"))

    assert result.info.fresh is True
    assert store.cleared == [PREFIX]
    assert asyncio.run(store.get(f"{PREFIX}camping")) is not None
    assert asyncio.run(store.get(f"{PREFIX}wikidata")) is None
    assert asyncio.run(store.get("unrelated")) is not None


def test_quota_exceeded_twice_skips_write() -> None:
    """Test that a second quota failure is swallowed and nothing is stored."""
    source = FakeSource(_camping(1))
    store = QuotaStore(failures=2)
    manager = _manager(source, store)

    result = asyncio.run(manager.fetch_layer("camping"))

    assert result.info.fresh is True
    assert result.info.count == 1
    assert store.cleared == [PREFIX]
    assert len(store) == 0


def test_storage_failure_still_returns_fetched_data() -> None:
    """Test that a broken store degrades to a miss and a skipped write."""
    source = FakeSource(_camping(2))
    store = FailingStore()
    manager = _manager(source, store)

    first = asyncio.run(manager.fetch_layer("camping"))
    second = asyncio.run(manager.fetch_layer("camping"))

    assert first.info.fresh is True and second.info.fresh is True
    assert len(first.data) == 2
    assert len(source.calls) == 2
    assert store.cleared == []

def test_unknown_and_unimplemented_layers_raise() -> None:
    """Test that configuration errors surface instead of being ignored."""
    manager = _manager(FakeSource(_camping(1)))

    with pytest.raises(layers.UnknownLayerError):
        asyncio.run(manager.fetch_layer("nonexistent"))
    with pytest.raises(layers.UnknownLayerError):
        asyncio.run(manager.fetch_layer("clima"))


def test_cache_info_honours_ttl() -> None:
    """Test the read-only metadata accessor."""
    source = FakeSource(_camping(4))
    clock = Clock()
    manager = _manager(source, clock=clock)

    assert asyncio.run(manager.cache_info("camping")) is None

    asyncio.run(manager.fetch_layer("camping"))
    info = asyncio.run(manager.cache_info("camping"))
    assert info == db_models.CacheInfo(cached_at=clock.now, count=4, fresh=False)

    clock.now += TTL_MS + 1
    assert asyncio.run(manager.cache_info("camping")) is None
    assert len(source.calls) == 1
