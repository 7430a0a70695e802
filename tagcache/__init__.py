"""
tagcache - Tag-aware cache backends for MongoDB and Redis.

Each backend stores string payloads under a cache id with an optional
expiry and a set of tags, and supports bulk invalidation by tag. Expiry is
delegated to the datastore: a TTL index in MongoDB, key expiry in Redis.

Main Exports:
    Backends:
        - CacheBackend: Backend interface
        - MongoDBBackend: MongoDB implementation
        - RedisBackend: Redis implementation
        - get_cache_backend: Backend factory

    Models:
        - CacheEntry, CacheMetadata, BackendCapabilities
        - CleaningMode, TagMatch

    Configuration:
        - BackendOptions, load_options, options_from_env

Example:
    >>> from tagcache import CleaningMode, get_cache_backend
    >>>
    >>> cache = get_cache_backend("redis")
    >>> await cache.save("hello", "x", tags=["t1"])
    >>> await cache.clean(CleaningMode.MATCHING_TAG, ["t1"])
"""

from tagcache.cache import (
    BackendCapabilities,
    CacheBackend,
    CacheEntry,
    CacheMetadata,
    CleaningMode,
    MongoDBBackend,
    RedisBackend,
    TagMatch,
    create_default_cache,
    get_cache_backend,
)
from tagcache.config import BackendOptions, load_options, options_from_env
from tagcache.exceptions import (
    CacheBackendError,
    ConfigurationError,
    InvalidArgumentError,
    TagCacheError,
)

__version__ = "0.1.0"

__all__ = [
    "CacheBackend",
    "MongoDBBackend",
    "RedisBackend",
    "get_cache_backend",
    "create_default_cache",
    "CacheEntry",
    "CacheMetadata",
    "BackendCapabilities",
    "CleaningMode",
    "TagMatch",
    "BackendOptions",
    "load_options",
    "options_from_env",
    "TagCacheError",
    "ConfigurationError",
    "InvalidArgumentError",
    "CacheBackendError",
]
