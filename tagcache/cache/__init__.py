"""tagcache cache backends.

Available backends:
- MongoDBBackend: documents in a TTL collection, tags in an indexed array
- RedisBackend: hashes with native key expiry, tags in Redis sets

Quick Start:
    # Automatic backend selection based on environment
    from tagcache.cache import get_cache_backend
    cache = get_cache_backend()

    # Explicit backend selection
    from tagcache.cache import MongoDBBackend, RedisBackend

    cache = MongoDBBackend(host='127.0.0.1', dbname='Db_Cache')
    await cache.save('hello', 'greeting', tags=['t1'])
"""

from .base import (
    BackendCapabilities,
    CacheBackend,
    CacheEntry,
    CacheMetadata,
    CleaningMode,
    TagMatch,
)
from .factory import create_default_cache, get_cache_backend
from .mongodb import MongoDBBackend
from .redis import RedisBackend

__all__ = [
    # Base classes and models
    "CacheBackend",
    "CacheEntry",
    "CacheMetadata",
    "BackendCapabilities",
    "CleaningMode",
    "TagMatch",
    # Backends
    "MongoDBBackend",
    "RedisBackend",
    # Factory functions
    "get_cache_backend",
    "create_default_cache",
]
