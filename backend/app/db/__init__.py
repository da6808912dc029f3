"""Data models and storage backends.

``models`` holds the feature, cache and repository data structures;
``database`` holds the cache store contract with its in-memory, file and
PostgreSQL implementations, and the repository layer stores.

Example:
    Build the durable store configured for this process:
        >>> from app.db.database import get_cache_store
        >>> store = get_cache_store(settings)
"""
