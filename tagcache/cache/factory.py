"""Cache factory for creating cache backends based on configuration.

This module provides utilities for creating cache backends from
environment variables or explicit configuration.
"""

import os
from typing import Any, Optional

from tagcache.config import load_options
from tagcache.exceptions import InvalidArgumentError

from .base import CacheBackend

DEFAULT_BACKEND = "mongodb"


def get_cache_backend(backend: Optional[str] = None, **options: Any) -> CacheBackend:
    """Create a cache backend based on configuration.

    Args:
        backend: Backend type ('mongodb' or 'redis').
                If None, reads from TAGCACHE_CACHE_BACKEND environment variable,
                falling back to 'mongodb'.
        **options: Backend options (host, port, username, password,
                database_name, collection, db_index, lifetime) and an
                optional ``client``. They override TAGCACHE_* variables.

    Returns:
        Configured cache backend instance

    Raises:
        InvalidArgumentError: If the backend type is unknown
        ConfigurationError: If the backend's client library is missing

    Examples:
        # Use environment variables
        cache = get_cache_backend()

        # Explicit Redis cache
        cache = get_cache_backend('redis', host='cache.internal', db_index=2)
    """
    if backend is None:
        backend = os.getenv("TAGCACHE_CACHE_BACKEND", "") or DEFAULT_BACKEND
    backend = backend.lower()

    client = options.pop("client", None)
    backend_options = load_options(options)

    if backend == "mongodb":
        from .mongodb import MongoDBBackend

        return MongoDBBackend(backend_options, client=client)

    elif backend == "redis":
        from .redis import RedisBackend

        return RedisBackend(backend_options, client=client)

    else:
        raise InvalidArgumentError(
            f"Unknown cache backend: {backend}. Valid options: 'mongodb', 'redis'",
            details={"backend": backend},
        )


def create_default_cache() -> CacheBackend:
    """Create the default cache backend based on environment.

    Selection logic:
    1. If TAGCACHE_CACHE_BACKEND is set, use that
    2. Otherwise, use MongoDB

    Returns:
        Configured cache backend instance
    """
    return get_cache_backend()
