"""Tests for application configuration and settings.

This module contains unit tests for the Settings Pydantic model and
application configuration logic in app.core.config. It ensures that
default values, environment overrides, directory creation logic, and
get_settings caching work as expected.

All tests are safe to run in isolation. Temporary directories are used
to verify filesystem interactions where needed.
"""

from __future__ import annotations

import pathlib

import pytest

from app.core import config


def test_settings_defaults() -> None:
    """Test that Settings has expected default values."""
    settings = config.Settings()
    assert settings.region_bbox == (-0.7, 39.7, 0.6, 40.9)
    assert settings.wikipedia_languages == ["es", "ca"]
    assert settings.wiki_tile_deg == 0.18
    assert settings.wiki_proximity_deg == 0.002
    assert settings.cache_ttl_seconds == 24 * 60 * 60
    assert settings.cache_ttl_ms == 86_400_000
    assert settings.cache_prefix == "campermap_layer_"
    assert settings.cache_backend == "file"
    assert settings.max_upload_size_bytes == 5 * 1024 * 1024
    assert settings.debounce_seconds == 0.6
    assert settings.allow_origins == ["*"]


def test_settings_from_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Test that environment variables override defaults."""
    monkeypatch.setenv("CACHE_BACKEND", "memory")
    monkeypatch.setenv("CACHE_TTL_SECONDS", "60")
    monkeypatch.setenv("WIKIPEDIA_LANGUAGES", '["ca", "es"]')
    settings = config.Settings()
    assert settings.cache_backend == "memory"
    assert settings.cache_ttl_ms == 60_000
    assert settings.wikipedia_languages == ["ca", "es"]


def test_settings_rejects_unknown_backend() -> None:
    """Test that the cache backend is validated."""
    with pytest.raises(ValueError):
        config.Settings(cache_backend="redis")  # type: ignore[arg-type]


def test_settings_ensure_directories(tmp_path: pathlib.Path) -> None:
    """Test that ensure_directories creates required directories."""
    cache_dir = tmp_path / "cache"
    repo_dir = tmp_path / "repos"
    prefs = tmp_path / "prefs" / "enabled.json"
    settings = config.Settings(
        cache_dir=cache_dir,
        repo_storage_dir=repo_dir,
        preferences_path=prefs,
    )
    assert not cache_dir.exists()
    assert not repo_dir.exists()
    settings.ensure_directories()
    assert cache_dir.exists()
    assert repo_dir.exists()
    assert prefs.parent.exists()
    assert not prefs.exists()


def test_get_settings_is_process_wide(
    monkeypatch: pytest.MonkeyPatch, tmp_path: pathlib.Path
) -> None:
    """Test one Settings per process, with local directories created."""
    monkeypatch.setenv("CACHE_DIR", str(tmp_path / "cache"))
    monkeypatch.setenv("REPO_STORAGE_DIR", str(tmp_path / "repos"))
    monkeypatch.setenv("PREFERENCES_PATH", str(tmp_path / "prefs" / "on.json"))
    config.get_settings.cache_clear()
    try:
        first = config.get_settings()
        assert config.get_settings() is first
        assert first.cache_dir.is_dir()
        assert first.repo_storage_dir.is_dir()
        assert (tmp_path / "prefs").is_dir()
    finally:
        config.get_settings.cache_clear()
