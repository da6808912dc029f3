"""Storage backends for cached layers and uploaded repository layers.

Every layer cache tier talks to a :class:`CacheStoreProtocol`, a small
async key-value contract (``get``/``set``/``delete``/``clear(prefix)``).
Three implementations share it:

- :class:`InMemoryCacheStore` for the server-side ephemeral tier and tests;
- :class:`FileCacheStore`, a durable JSON-per-key store with a byte quota;
- :class:`PostgresCacheStore`, a durable table in PostgreSQL.

Stores report backend failures as :class:`StorageError`, and running out
of space as its subclass :class:`StorageQuotaExceeded`; callers treat
caching as best-effort.

Repository layers (user CSV uploads) are persisted through
:class:`RepoStoreProtocol`.
"""

from __future__ import annotations

import asyncio
import json
import os
import pathlib
import tempfile
from typing import TYPE_CHECKING, Any, Protocol, cast
from urllib.parse import quote, unquote

import psycopg2
import psycopg2.errors
import psycopg2.extensions
import psycopg2.extras

from app.db import models as db_models

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from app.core import config


class StorageError(RuntimeError):
    """Raised when a cache backend cannot complete an operation."""


class StorageQuotaExceeded(StorageError):
    """Raised when a write does not fit in the store's quota."""


def _cast[T](value: object, dtype: type[T]) -> T | None:  # type: ignore[misc]
    """Cast a value to a specific type, returning None if value is None."""
    if value is None:
        return None

    return cast(T, value)


def _encode(entry: db_models.CacheEntry) -> str:
    return json.dumps(entry.to_json(), ensure_ascii=False, separators=(",", ":"))


def _decode(raw: str) -> db_models.CacheEntry | None:
    try:
        return db_models.CacheEntry.from_json(json.loads(raw))
    except (KeyError, TypeError, ValueError):
        return None


class CacheStoreProtocol(Protocol):
    """Protocol interface for layer cache storage.

    Writes are last-writer-wins per key; no guarantee spans keys.
    """

    async def get(self, key: str) -> db_models.CacheEntry | None: ...

    async def set(self, key: str, entry: db_models.CacheEntry) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def clear(self, prefix: str) -> None: ...


class InMemoryCacheStore(CacheStoreProtocol):
    """Process-local store holding serialised entries.

    Entries are kept as JSON strings so that the optional ``max_bytes``
    quota measures the same payload a durable store would hold.
    """

    def __init__(self, max_bytes: int | None = None) -> None:
        """Initialize an empty store.

        Args:
            max_bytes: Optional quota over the summed payload sizes.
        """
        self._data: dict[str, str] = {}
        self.max_bytes = max_bytes

    def __len__(self) -> int:
        return len(self._data)

    def keys(self) -> list[str]:
        return list(self._data)

    async def get(self, key: str) -> db_models.CacheEntry | None:
        raw = self._data.get(key)
        if raw is None:
            return None
        entry = _decode(raw)
        if entry is None:
            del self._data[key]
        return entry

    async def set(self, key: str, entry: db_models.CacheEntry) -> None:
        raw = _encode(entry)
        if self.max_bytes is not None:
            used = sum(len(v) for k, v in self._data.items() if k != key)
            if used + len(raw) > self.max_bytes:
                raise StorageQuotaExceeded(
                    f"{key}: {used + len(raw)} > {self.max_bytes} bytes"
                )
        self._data[key] = raw

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def clear(self, prefix: str) -> None:
        for key in [k for k in self._data if k.startswith(prefix)]:
            del self._data[key]


class FileCacheStore(CacheStoreProtocol):
    """Durable store writing one JSON file per key under ``directory``.

    File names are the percent-encoded keys. Writes go through a temporary
    file and an atomic rename; a write that would push the directory past
    ``max_bytes`` raises :class:`StorageQuotaExceeded`.
    """

    def __init__(self, directory: pathlib.Path, max_bytes: int) -> None:
        self.directory = directory
        self.max_bytes = max_bytes
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> pathlib.Path:
        return self.directory / f"{quote(key, safe='')}.json"

    def _entries(self) -> Iterable[tuple[str, pathlib.Path]]:
        for path in self.directory.glob("*.json"):
            yield unquote(path.stem), path

    def _read(self, key: str) -> db_models.CacheEntry | None:
        path = self._path(key)
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise StorageError(f"{key}: {exc}") from exc
        entry = _decode(raw)
        if entry is None:
            path.unlink(missing_ok=True)
        return entry

    def _write(self, key: str, entry: db_models.CacheEntry) -> None:
        payload = _encode(entry).encode("utf-8")
        target = self._path(key)
        try:
            used = sum(
                path.stat().st_size
                for _, path in self._entries()
                if path != target
            )
        except OSError as exc:
            raise StorageError(f"{key}: {exc}") from exc
        if used + len(payload) > self.max_bytes:
            raise StorageQuotaExceeded(
                f"{key}: {used + len(payload)} > {self.max_bytes} bytes"
            )
        tmp_path: pathlib.Path | None = None
        try:
            with tempfile.NamedTemporaryFile(
                delete=False, dir=self.directory, suffix=".tmp"
            ) as tmp:
                tmp_path = pathlib.Path(tmp.name)
                tmp.write(payload)
                tmp.flush()
            os.replace(tmp_path, target)
        except OSError as exc:
            if tmp_path is not None:
                tmp_path.unlink(missing_ok=True)
            raise StorageError(f"{key}: {exc}") from exc

    def _delete(self, key: str) -> None:
        try:
            self._path(key).unlink(missing_ok=True)
        except OSError as exc:
            raise StorageError(f"{key}: {exc}") from exc

    def _clear(self, prefix: str) -> None:
        try:
            for key, path in list(self._entries()):
                if key.startswith(prefix):
                    path.unlink(missing_ok=True)
        except OSError as exc:
            raise StorageError(f"{prefix}*: {exc}") from exc

    async def get(self, key: str) -> db_models.CacheEntry | None:
        return await asyncio.to_thread(self._read, key)

    async def set(self, key: str, entry: db_models.CacheEntry) -> None:
        await asyncio.to_thread(self._write, key, entry)

    async def delete(self, key: str) -> None:
        await asyncio.to_thread(self._delete, key)

    async def clear(self, prefix: str) -> None:
        await asyncio.to_thread(self._clear, prefix)


class PostgresCacheStore(CacheStoreProtocol):
    """PostgreSQL-backed durable store for cached layers.

    Automatically creates the cache table on initialization. Blocking
    psycopg2 calls run in a worker thread so the event loop is never held.
    A full disk is reported as :class:`StorageQuotaExceeded` and any other
    driver error as :class:`StorageError`.
    """

    CREATE_TABLE_SQL = """
    CREATE TABLE IF NOT EXISTS layer_cache (
      key TEXT PRIMARY KEY,
      payload JSONB NOT NULL,
      cached_at BIGINT NOT NULL,
      count INTEGER NOT NULL,
      fingerprint TEXT
    );
    """

    def __init__(self, settings: config.Settings) -> None:
        """Initialize store with database settings.

        Args:
            settings: Application settings containing database connection URL.
        """
        self.settings = settings
        self._ensure_schema()

    def _connection(self) -> psycopg2.extensions.connection:
        return psycopg2.connect(self.settings.database_url)

    def _ensure_schema(self) -> None:
        with self._connection() as conn, conn.cursor() as cur:
            cur.execute(self.CREATE_TABLE_SQL)
            conn.commit()

    def _get(self, key: str) -> db_models.CacheEntry | None:
        with self._connection() as conn, conn.cursor(
            cursor_factory=psycopg2.extras.RealDictCursor
        ) as cur:
            cur.execute("SELECT * FROM layer_cache WHERE key = %s", (key,))
            row = cur.fetchone()
            if row is None:
                return None
            return self._from_row(cast(dict[str, object], row))

    def _set(self, key: str, entry: db_models.CacheEntry) -> None:
        try:
            with self._connection() as conn, conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO layer_cache (
                        key, payload, cached_at, count, fingerprint
                    ) VALUES (%(key)s, %(payload)s, %(cached_at)s,
                        %(count)s, %(fingerprint)s)
                    ON CONFLICT (key) DO UPDATE SET
                        payload = EXCLUDED.payload,
                        cached_at = EXCLUDED.cached_at,
                        count = EXCLUDED.count,
                        fingerprint = EXCLUDED.fingerprint;
                    """,
                    self._to_row(key, entry),
                )
                conn.commit()
        except psycopg2.errors.DiskFull as exc:
            raise StorageQuotaExceeded(str(exc)) from exc

    def _delete(self, key: str) -> None:
        with self._connection() as conn, conn.cursor() as cur:
            cur.execute("DELETE FROM layer_cache WHERE key = %s", (key,))
            conn.commit()

    def _clear(self, prefix: str) -> None:
        pattern = prefix.replace("\\", "\\\\").replace("%", "\\%").replace(
            "_", "\\_"
        )
        with self._connection() as conn, conn.cursor() as cur:
            cur.execute(
                "DELETE FROM layer_cache WHERE key LIKE %s",
                (f"{pattern}%",),
            )
            conn.commit()

    async def _run[T](self, func: Callable[..., T], *args: Any) -> T:
        try:
            return await asyncio.to_thread(func, *args)
        except psycopg2.Error as exc:
            raise StorageError(str(exc)) from exc

    async def get(self, key: str) -> db_models.CacheEntry | None:
        return await self._run(self._get, key)

    async def set(self, key: str, entry: db_models.CacheEntry) -> None:
        await self._run(self._set, key, entry)

    async def delete(self, key: str) -> None:
        await self._run(self._delete, key)

    async def clear(self, prefix: str) -> None:
        await self._run(self._clear, prefix)

    @staticmethod
    def _to_row(key: str, entry: db_models.CacheEntry) -> dict[str, object]:
        """Convert a CacheEntry to a parameter dictionary for SQL insertion."""
        return {
            "key": key,
            "payload": json.dumps(entry.data.to_geojson(), ensure_ascii=False),
            "cached_at": entry.cached_at,
            "count": entry.count,
            "fingerprint": entry.fingerprint,
        }

    @staticmethod
    def _from_row(row: dict[str, object]) -> db_models.CacheEntry | None:
        """Convert a database row to a CacheEntry, None if unreadable."""
        payload = row.get("payload")
        if isinstance(payload, str):
            payload = json.loads(payload)
        try:
            data = db_models.FeatureCollection.from_geojson(
                cast(dict[str, Any], payload)
            )
        except (AttributeError, TypeError, ValueError):
            return None
        return db_models.CacheEntry(
            data=data,
            cached_at=int(cast(int, row["cached_at"])),
            count=int(cast(int, row.get("count") or len(data))),
            fingerprint=_cast(row.get("fingerprint"), str),
        )


def get_cache_store(settings: config.Settings) -> CacheStoreProtocol:
    """Factory function for the durable client-side cache store.

    Args:
        settings: Application settings selecting the backend.

    Returns:
        FileCacheStore, PostgresCacheStore or InMemoryCacheStore according
        to ``settings.cache_backend``.
    """
    if settings.cache_backend == "postgres":
        return PostgresCacheStore(settings)
    if settings.cache_backend == "memory":
        return InMemoryCacheStore(settings.cache_quota_bytes)
    return FileCacheStore(settings.cache_dir, settings.cache_quota_bytes)


class RepoStoreProtocol(Protocol):
    """Protocol interface for storing uploaded repository layers."""

    def add(
        self,
        meta: db_models.RepoMetadata,
        data: db_models.FeatureCollection,
    ) -> db_models.RepoMetadata: ...

    def get(self, repo_id: str) -> db_models.FeatureCollection | None: ...

    def all(self) -> Iterable[db_models.RepoMetadata]: ...

    def delete(self, repo_id: str) -> bool: ...


class InMemoryRepoStore(RepoStoreProtocol):
    """Simple in-memory store for tests and local development."""

    def __init__(self) -> None:
        self._store: dict[
            str, tuple[db_models.RepoMetadata, db_models.FeatureCollection]
        ] = {}

    def add(
        self,
        meta: db_models.RepoMetadata,
        data: db_models.FeatureCollection,
    ) -> db_models.RepoMetadata:
        self._store[meta.id] = (meta, data)
        return meta

    def get(self, repo_id: str) -> db_models.FeatureCollection | None:
        stored = self._store.get(repo_id)
        return stored[1] if stored else None

    def all(self) -> Iterable[db_models.RepoMetadata]:
        return [meta for meta, _ in self._store.values()]

    def delete(self, repo_id: str) -> bool:
        return self._store.pop(repo_id, None) is not None


class FileRepoStore(RepoStoreProtocol):
    """Stores each repository as ``{"meta": ..., "data": ...}`` JSON."""

    def __init__(self, directory: pathlib.Path) -> None:
        self.directory = directory
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path(self, repo_id: str) -> pathlib.Path:
        return self.directory / f"{quote(repo_id, safe='')}.json"

    def _load(self, path: pathlib.Path) -> dict[str, Any] | None:
        try:
            return cast(dict[str, Any], json.loads(path.read_text("utf-8")))
        except (FileNotFoundError, ValueError):
            return None

    def add(
        self,
        meta: db_models.RepoMetadata,
        data: db_models.FeatureCollection,
    ) -> db_models.RepoMetadata:
        payload = {"meta": meta.to_json(), "data": data.to_geojson()}
        self._path(meta.id).write_text(
            json.dumps(payload, ensure_ascii=False), encoding="utf-8"
        )
        return meta

    def get(self, repo_id: str) -> db_models.FeatureCollection | None:
        payload = self._load(self._path(repo_id))
        if payload is None:
            return None
        return db_models.FeatureCollection.from_geojson(payload["data"])

    def all(self) -> Iterable[db_models.RepoMetadata]:
        metas = []
        for path in sorted(self.directory.glob("*.json")):
            payload = self._load(path)
            if payload is not None and "meta" in payload:
                metas.append(db_models.RepoMetadata.from_json(payload["meta"]))
        return sorted(metas, key=lambda meta: meta.uploaded_at, reverse=True)

    def delete(self, repo_id: str) -> bool:
        path = self._path(repo_id)
        if not path.exists():
            return False
        path.unlink()
        return True


def get_repo_store(settings: config.Settings) -> RepoStoreProtocol:
    """Factory function for the repository layer store."""
    return FileRepoStore(settings.repo_storage_dir)
