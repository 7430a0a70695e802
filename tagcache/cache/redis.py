"""Redis cache backend.

Key layout, with ``ns = "<database_name>:<collection>:"``:

    ns + "e:" + id      hash with content, created_at, expires_at and tags
    ns + "ids"          set of all cache ids
    ns + "tags"         set of all tags
    ns + "t:" + tag     set of the ids carrying the tag

Entry hashes expire natively through ``PEXPIREAT``, so Redis deletes an entry
the moment it expires and ``load(id, skip_validity=True)`` never returns
expired content here, unlike MongoDB whose TTL monitor runs periodically.

The index sets are not expired by Redis. They may reference ids whose hash
is already gone, or ids re-saved without a tag they used to carry. They only
narrow down candidates: reads check each candidate against the tags stored
in its hash, and ``clean(OLD)`` prunes the stale memberships.
"""

import json
import re
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple, Type

from tagcache.cache.base import CacheBackend, CacheEntry, TagMatch
from tagcache.config import BackendOptions
from tagcache.exceptions import ConfigurationError

_GLOB_SPECIAL = re.compile(r"([*?\[\]\\])")

_TAG_PREDICATES = {
    TagMatch.ALL: lambda wanted, stored: wanted <= stored,
    TagMatch.ANY: lambda wanted, stored: bool(wanted & stored),
    TagMatch.NONE: lambda wanted, stored: not wanted & stored,
}


def _escape_glob(value: str) -> str:
    """Escape the characters SCAN MATCH treats as glob syntax."""
    return _GLOB_SPECIAL.sub(r"\\\1", value)


class RedisBackend(CacheBackend):
    """Redis-backed cache using ``redis.asyncio``.

    Features:
    - Native key expiry, no background sweep required
    - Tag index kept in Redis sets
    - Writes and deletes applied in a single MULTI/EXEC transaction
    """

    name = "redis"
    DEFAULT_PORT = 6379

    def __init__(
        self,
        options: Optional[BackendOptions] = None,
        client: Any = None,
        **kwargs: Any,
    ):
        """Initialize the Redis backend.

        Args:
            options: Validated backend options
            client: Optional ready-made ``redis.asyncio.Redis`` client; it must
                decode responses to ``str``
            **kwargs: Raw options when ``options`` is omitted

        Raises:
            ConfigurationError: If the redis package is not installed
        """
        try:
            import redis.asyncio  # noqa: F401
        except ImportError as e:
            raise ConfigurationError(
                "The Redis backend requires the 'redis' package. "
                "Install with: pip install redis[hiredis]"
            ) from e

        super().__init__(options, **kwargs)
        self.url = self.options.connection_url(
            "redis", self.DEFAULT_PORT, str(self.options.db_index)
        )
        self.namespace = f"{self.options.database_name}:{self.options.collection}:"
        self._client = client

    @property
    def driver_errors(self) -> Tuple[Type[BaseException], ...]:
        from redis.exceptions import RedisError

        return (RedisError,)

    async def _connect(self) -> None:
        if self._client is None:
            import redis.asyncio

            self._client = redis.asyncio.from_url(
                self.url, encoding="utf-8", decode_responses=True
            )
        self._logger.info(
            f"Using Redis keyspace {self.namespace} on {self.options.host}"
        )

    async def _disconnect(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _ping(self) -> None:
        await self._client.ping()

    # Keys

    def _entry_key(self, id: str) -> str:
        return f"{self.namespace}e:{id}"

    def _tag_key(self, tag: str) -> str:
        return f"{self.namespace}t:{tag}"

    @property
    def _ids_key(self) -> str:
        return f"{self.namespace}ids"

    @property
    def _tags_key(self) -> str:
        return f"{self.namespace}tags"

    # Serialization

    @staticmethod
    def _to_hash(entry: CacheEntry) -> Dict[str, str]:
        return {
            "content": entry.content,
            "created_at": repr(entry.created_at.timestamp()),
            "expires_at": (
                repr(entry.expires_at.timestamp()) if entry.expires_at else ""
            ),
            "tags": json.dumps(list(entry.tags)),
        }

    @staticmethod
    def _from_hash(id: str, data: Dict[str, str]) -> CacheEntry:
        expires_at = data.get("expires_at")
        return CacheEntry(
            id=id,
            content=data.get("content", ""),
            created_at=datetime.fromtimestamp(
                float(data["created_at"]), tz=timezone.utc
            ),
            expires_at=(
                datetime.fromtimestamp(float(expires_at), tz=timezone.utc)
                if expires_at
                else None
            ),
            tags=json.loads(data.get("tags") or "[]"),
        )

    async def _stored_tags(self, id: str) -> List[str]:
        raw = await self._client.hget(self._entry_key(id), "tags")
        return json.loads(raw) if raw else []

    async def _current_tags(self, ids: Iterable[str]) -> Dict[str, List[str]]:
        """Map each id whose entry hash still exists to its stored tags."""
        candidates = sorted(ids)
        if not candidates:
            return {}
        async with self._client.pipeline(transaction=False) as pipe:
            for id in candidates:
                pipe.hget(self._entry_key(id), "tags")
            stored = await pipe.execute()
        return {
            id: json.loads(raw)
            for id, raw in zip(candidates, stored)
            if raw is not None
        }

    # Primitives

    async def _get_entry(self, id: str) -> Optional[CacheEntry]:
        data = await self._client.hgetall(self._entry_key(id))
        return self._from_hash(id, data) if data else None

    async def _put_entry(self, entry: CacheEntry) -> bool:
        key = self._entry_key(entry.id)
        stale_tags = set(await self._stored_tags(entry.id)) - set(entry.tags)

        async with self._client.pipeline(transaction=True) as pipe:
            # Replace the whole hash, which also clears a previous expiry
            pipe.delete(key)
            pipe.hset(key, mapping=self._to_hash(entry))
            if entry.expires_at is not None:
                pipe.pexpireat(key, int(entry.expires_at.timestamp() * 1000))
            pipe.sadd(self._ids_key, entry.id)
            for tag in stale_tags:
                pipe.srem(self._tag_key(tag), entry.id)
            for tag in entry.tags:
                pipe.sadd(self._tag_key(tag), entry.id)
            if entry.tags:
                pipe.sadd(self._tags_key, *entry.tags)
            await pipe.execute()
        return True

    async def _delete_entry(self, id: str) -> bool:
        tags = await self._stored_tags(id)

        async with self._client.pipeline(transaction=True) as pipe:
            pipe.delete(self._entry_key(id))
            pipe.srem(self._ids_key, id)
            for tag in tags:
                pipe.srem(self._tag_key(tag), id)
            results = await pipe.execute()
        return bool(results[0])

    async def _delete_all(self) -> None:
        prefix = _escape_glob(self.namespace)

        # Only the key families this backend writes, so a keyspace whose name
        # extends ours after a colon is left alone
        for pattern in (f"{prefix}e:*", f"{prefix}t:*"):
            cursor = 0
            while True:
                cursor, keys = await self._client.scan(
                    cursor, match=pattern, count=100
                )
                if keys:
                    await self._client.delete(*keys)
                if cursor == 0:
                    break
        await self._client.delete(self._ids_key, self._tags_key)

    async def _delete_expired(self, now: datetime) -> None:
        current: Dict[str, List[str]] = {}
        stale: List[str] = []
        for id in await self._client.smembers(self._ids_key):
            entry = await self._get_entry(id)
            if entry is None:
                stale.append(id)
            elif entry.expires_at is not None and entry.expires_at < now:
                await self._delete_entry(id)
                stale.append(id)
            else:
                current[id] = entry.tags

        if stale:
            await self._client.srem(self._ids_key, *stale)

        # Drop memberships of ids that are gone or no longer carry the tag.
        # Ids saved after the sweep started are not in ``known`` and are kept.
        known = set(current) | set(stale)
        for tag in await self._client.smembers(self._tags_key):
            key = self._tag_key(tag)
            orphans = [
                id
                for id in await self._client.smembers(key)
                if id in known and tag not in current.get(id, ())
            ]
            if orphans:
                await self._client.srem(key, *orphans)
            # Redis drops empty sets, so an unused tag has no key left
            if not await self._client.exists(key):
                await self._client.srem(self._tags_key, tag)

    async def _delete_by_tags(self, tags: List[str], match: TagMatch) -> None:
        for id in await self._ids_by_tags(tags, match):
            await self._delete_entry(id)

    async def _list_ids(self) -> List[str]:
        return list(
            await self._current_tags(await self._client.smembers(self._ids_key))
        )

    async def _list_tags(self) -> List[str]:
        current = await self._current_tags(
            await self._client.smembers(self._ids_key)
        )
        tags: Set[str] = set()
        for stored in current.values():
            tags.update(stored)
        return sorted(tags)

    async def _ids_by_tags(self, tags: List[str], match: TagMatch) -> List[str]:
        tag_keys = [self._tag_key(tag) for tag in tags]

        # The tag sets may hold stale members, so they only select candidates
        if match is TagMatch.NONE:
            candidates = await self._client.smembers(self._ids_key)
        elif not tag_keys:
            # Matching all or any of no tags selects nothing
            return []
        elif match is TagMatch.ALL:
            candidates = await self._client.sinter(tag_keys)
        else:
            candidates = await self._client.sunion(tag_keys)

        wanted = set(tags)
        predicate = _TAG_PREDICATES[match]
        return [
            id
            for id, stored in (await self._current_tags(candidates)).items()
            if predicate(wanted, set(stored))
        ]

    async def _storage_stats(self) -> Tuple[int, int]:
        info = await self._client.info("memory")
        return int(info.get("used_memory") or 0), int(info.get("maxmemory") or 0)
