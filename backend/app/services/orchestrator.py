"""Per-session controller for layer loading state.

The orchestrator owns one :class:`LayerState` per implemented layer and per
active repository layer and moves each through
``idle -> loading -> loaded | errored``. Any state can go back to
``loading`` on refresh or viewport change.

Triggers:
    - :meth:`LayerFetchOrchestrator.mount` fetches every enabled layer that
      is not geography-scoped;
    - :meth:`LayerFetchOrchestrator.on_viewport_change` restarts a
      :class:`CancellableTimer`; when the quiet period elapses the enabled
      geography-scoped layers are fetched for the last viewport only;
    - :meth:`LayerFetchOrchestrator.refresh` forces one or all enabled
      layers past both cache tiers.

Fetches run as independent tasks. Every fetch bumps the layer's generation
and a completion whose generation is no longer current is discarded, so a
superseded or disabled fetch never overwrites newer state. Each state is a
frozen value replaced in a single assignment.

A fetch that went upstream (``fresh``) and returned no features marks the
layer ``errored``; an empty result served from cache does not.
"""

from __future__ import annotations

import asyncio
import dataclasses
import enum
import logging
from collections.abc import Awaitable, Callable, Iterable, Mapping
from typing import TYPE_CHECKING

from app.core import layers
from app.db import database
from app.db import models as db_models
from app.services import cache_manager, preferences

if TYPE_CHECKING:
    from app.core import config
    from app.services.sources import LayerSource, RepoSource

logger = logging.getLogger(__name__)


class LayerStatus(enum.StrEnum):
    IDLE = "idle"
    LOADING = "loading"
    LOADED = "loaded"
    ERRORED = "errored"


@dataclasses.dataclass(frozen=True)
class LayerState:
    """Snapshot of one layer as seen by the rendering side."""

    status: LayerStatus = LayerStatus.IDLE
    data: db_models.FeatureCollection = db_models.EMPTY_COLLECTION
    info: db_models.CacheInfo | None = None

    @property
    def loading(self) -> bool:
        return self.status is LayerStatus.LOADING

    @property
    def errored(self) -> bool:
        return self.status is LayerStatus.ERRORED


IDLE = LayerState()


class CancellableTimer:
    """Single-shot timer on the running event loop.

    Scheduling again replaces the pending call, so rapid events coalesce
    into one callback after ``delay`` seconds of quiet.
    """

    def __init__(self, delay: float) -> None:
        self.delay = delay
        self._handle: asyncio.TimerHandle | None = None

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def schedule(self, callback: Callable[[], None]) -> None:
        self.cancel()
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self.delay, self._fire, callback)

    def cancel(self) -> bool:
        """Cancel the pending call. Returns True if one was pending."""
        if self._handle is None:
            return False
        self._handle.cancel()
        self._handle = None
        return True

    def _fire(self, callback: Callable[[], None]) -> None:
        self._handle = None
        callback()


Listener = Callable[[str, LayerState], None]


class LayerFetchOrchestrator:
    """Tracks loading, data and error state for every layer of a session."""

    def __init__(
        self,
        cache: cache_manager.LayerCacheManager,
        *,
        enabled: Iterable[str] | None = None,
        prefs: preferences.LayerPreferences | None = None,
        repo_source: RepoSource | None = None,
        debounce_seconds: float = 0.6,
        listener: Listener | None = None,
    ) -> None:
        self.cache = cache
        self._prefs = prefs
        self._repo_source = repo_source
        self._listener = listener
        if enabled is None:
            enabled = prefs.load() if prefs else layers.default_enabled_ids()
        self._enabled = {layers.get_layer(layer_id).id for layer_id in enabled}
        self._states: dict[str, LayerState] = {
            layer.id: IDLE for layer in layers.implemented_layers()
        }
        self._repo_states: dict[str, LayerState] = {}
        self._generations: dict[str, int] = {}
        self._tasks: set[asyncio.Task[None]] = set()
        self._viewport: db_models.BBox | None = None
        self.timer = CancellableTimer(debounce_seconds)

    # State access

    @property
    def enabled(self) -> frozenset[str]:
        return frozenset(self._enabled)

    @property
    def viewport(self) -> db_models.BBox | None:
        return self._viewport

    @property
    def active_repos(self) -> frozenset[str]:
        return frozenset(self._repo_states)

    def state(self, layer_id: str) -> LayerState:
        return self._states.get(layer_id) or self._repo_states.get(layer_id, IDLE)

    @property
    def states(self) -> Mapping[str, LayerState]:
        return {**self._states, **self._repo_states}

    @property
    def loading(self) -> frozenset[str]:
        return frozenset(k for k, s in self.states.items() if s.loading)

    @property
    def errored(self) -> frozenset[str]:
        return frozenset(k for k, s in self.states.items() if s.errored)

    def feature_collections(self) -> dict[str, db_models.FeatureCollection]:
        """Data of every enabled layer and active repository, for rendering."""
        collections = {
            layer_id: self.state(layer_id).data for layer_id in self._enabled
        }
        collections.update(
            (repo_id, state.data) for repo_id, state in self._repo_states.items()
        )
        return collections

    def _set(self, layer_id: str, state: LayerState, *, repo: bool = False) -> None:
        (self._repo_states if repo else self._states)[layer_id] = state
        if self._listener is not None:
            self._listener(layer_id, state)

    # Fetching

    def _spawn(
        self,
        layer_id: str,
        run: Callable[[], Awaitable[LayerState]],
        *,
        repo: bool = False,
    ) -> asyncio.Task[None]:
        key = f"{db_models.REPO_LAYER_PREFIX}{layer_id}" if repo else layer_id
        generation = self._generations.get(key, 0) + 1
        self._generations[key] = generation
        previous = self.state(layer_id)
        self._set(
            layer_id,
            dataclasses.replace(previous, status=LayerStatus.LOADING),
            repo=repo,
        )

        async def complete() -> None:
            try:
                state = await run()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Fetch for %s failed", layer_id)
                state = dataclasses.replace(previous, status=LayerStatus.ERRORED)
            if self._generations.get(key) != generation:
                logger.debug("Discarding stale result for %s", layer_id)
                return
            self._set(layer_id, state, repo=repo)

        task = asyncio.get_running_loop().create_task(complete())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _fetch_layer(
        self,
        layer_id: str,
        scope: db_models.BBox | None = None,
        *,
        force: bool = False,
    ) -> asyncio.Task[None]:
        async def run() -> LayerState:
            result = await self.cache.fetch_layer(layer_id, scope, force=force)
            failed = result.info.fresh and result.info.count == 0
            return LayerState(
                status=LayerStatus.ERRORED if failed else LayerStatus.LOADED,
                data=result.data,
                info=result.info,
            )

        return self._spawn(layer_id, run)

    def _fetch_repo(self, repo_id: str) -> asyncio.Task[None]:
        source = self._repo_source
        if source is None:
            raise RuntimeError("No repository source configured")

        async def run() -> LayerState:
            data = await source.fetch(repo_id)
            return LayerState(
                status=LayerStatus.LOADED,
                data=data,
                info=db_models.CacheInfo(
                    cached_at=db_models.now_ms(), count=len(data), fresh=True
                ),
            )

        return self._spawn(repo_id, run, repo=True)

    def _invalidate(self, key: str) -> None:
        self._generations[key] = self._generations.get(key, 0) + 1

    # Triggers

    def mount(self) -> list[asyncio.Task[None]]:
        """Fetch every enabled layer that is not geography-scoped."""
        return [
            self._fetch_layer(layer_id)
            for layer_id in sorted(self._enabled)
            if not layers.get_layer(layer_id).geo_scoped
        ]

    def on_viewport_change(self, bbox: db_models.BBox) -> None:
        """Record the viewport and (re)start the debounce timer."""
        self._viewport = bbox
        self.timer.schedule(self._flush_viewport)

    def _flush_viewport(self) -> None:
        viewport = self._viewport
        for layer_id in sorted(self._enabled):
            if layers.get_layer(layer_id).geo_scoped:
                self._fetch_layer(layer_id, viewport)

    def refresh(self, layer_id: str | None = None) -> list[asyncio.Task[None]]:
        """Force-refresh one layer, or every enabled layer.

        Raises:
            UnknownLayerError: If ``layer_id`` is not an implemented layer.
        """
        if layer_id is not None:
            layers.get_layer(layer_id)
            targets = [layer_id]
        else:
            targets = sorted(self._enabled)
        logger.info("Refreshing %s", ", ".join(targets) or "nothing")
        return [
            self._fetch_layer(target, self._scope_for(target), force=True)
            for target in targets
        ]

    def _scope_for(self, layer_id: str) -> db_models.BBox | None:
        return self._viewport if layers.get_layer(layer_id).geo_scoped else None

    def toggle_layer(self, layer_id: str) -> bool:
        """Enable or disable a layer. Returns the new enabled flag.

        Enabling fetches the layer at once; disabling discards any
        in-flight result and resets the layer to idle.

        Raises:
            UnknownLayerError: For unknown or unimplemented layers.
        """
        layers.get_layer(layer_id)
        if layer_id in self._enabled:
            self._enabled.discard(layer_id)
            self._invalidate(layer_id)
            self._set(layer_id, IDLE)
            now_enabled = False
        else:
            self._enabled.add(layer_id)
            self._fetch_layer(layer_id, self._scope_for(layer_id))
            now_enabled = True
        if self._prefs is not None:
            self._prefs.save(self._enabled)
        return now_enabled

    def toggle_repo(self, repo_id: str) -> bool:
        """Show or hide a repository layer. Returns True when now active."""
        if repo_id in self._repo_states:
            self._invalidate(f"{db_models.REPO_LAYER_PREFIX}{repo_id}")
            del self._repo_states[repo_id]
            if self._listener is not None:
                self._listener(repo_id, IDLE)
            return False
        self._fetch_repo(repo_id)
        return True

    async def wait_idle(self) -> None:
        """Wait until every in-flight fetch has completed."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def aclose(self) -> None:
        self.timer.cancel()
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*list(self._tasks), return_exceptions=True)


def create_orchestrator(
    settings: config.Settings,
    source: LayerSource,
    *,
    store: database.CacheStoreProtocol | None = None,
    repo_source: RepoSource | None = None,
    listener: Listener | None = None,
) -> LayerFetchOrchestrator:
    """Wire a session from settings.

    Uses the configured durable store and preferences file unless ``store``
    is given.
    """
    cache = cache_manager.LayerCacheManager.from_settings(
        settings,
        store if store is not None else database.get_cache_store(settings),
        source,
    )
    return LayerFetchOrchestrator(
        cache,
        prefs=preferences.LayerPreferences(settings.preferences_path),
        repo_source=repo_source,
        debounce_seconds=settings.debounce_seconds,
        listener=listener,
    )
