"""MongoDB cache backend.

Entries are stored as one document per cache id in a single collection.
A TTL index on ``expires_at`` lets the MongoDB daemon delete expired entries
on its own (http://docs.mongodb.org/manual/tutorial/expire-data/), so the
backend never sweeps. Note that the TTL monitor runs periodically, which is
why expired entries can still be read with ``skip_validity``.
"""

from typing import Any, Dict, List, Optional, Tuple, Type

from tagcache.cache.base import CacheBackend, CacheEntry, TagMatch
from tagcache.config import BackendOptions
from tagcache.exceptions import ConfigurationError

_TAG_OPERATORS = {
    TagMatch.ALL: "$all",
    TagMatch.ANY: "$in",
    TagMatch.NONE: "$nin",
}


class MongoDBBackend(CacheBackend):
    """MongoDB-backed cache using motor.

    Uses a TTL collection so expired entries are removed by the server
    (``expireAfterSeconds=0``: entries expire as soon as ``expires_at`` is
    reached) and an index on ``tags`` for the tag queries.
    """

    name = "mongodb"
    DEFAULT_PORT = 27017

    def __init__(
        self,
        options: Optional[BackendOptions] = None,
        client: Any = None,
        **kwargs: Any,
    ):
        """Initialize the MongoDB backend.

        Args:
            options: Validated backend options
            client: Optional ready-made ``AsyncIOMotorClient``
            **kwargs: Raw options when ``options`` is omitted

        Raises:
            ConfigurationError: If motor is not installed
        """
        try:
            import motor.motor_asyncio  # noqa: F401
        except ImportError as e:
            raise ConfigurationError(
                "The MongoDB backend requires the 'motor' package. "
                "Install with: pip install motor"
            ) from e

        super().__init__(options, **kwargs)
        self.url = self.options.connection_url(
            "mongodb", self.DEFAULT_PORT, self.options.database_name
        )
        self._client = client
        self._db: Any = None
        self._collection: Any = None

    @property
    def driver_errors(self) -> Tuple[Type[BaseException], ...]:
        from pymongo.errors import PyMongoError

        return (PyMongoError,)

    async def _connect(self) -> None:
        from pymongo import ASCENDING

        if self._client is None:
            from motor.motor_asyncio import AsyncIOMotorClient

            self._client = AsyncIOMotorClient(self.url, tz_aware=True)

        self._db = self._client.get_database(self.options.database_name)
        self._collection = self._db.get_collection(self.options.collection)

        await self._collection.create_index([("tags", ASCENDING)], background=True)
        # Have entries expire directly (0 seconds) after reaching expires_at
        await self._collection.create_index(
            [("expires_at", ASCENDING)], background=True, expireAfterSeconds=0
        )
        self._logger.info(
            f"Using MongoDB collection {self.options.database_name}."
            f"{self.options.collection} at {self.options.host}"
        )

    async def _disconnect(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None
            self._db = None
            self._collection = None

    async def _ping(self) -> None:
        await self._client.admin.command("ping")

    @staticmethod
    def _to_document(entry: CacheEntry) -> Dict[str, Any]:
        return {
            "_id": entry.id,
            "content": entry.content,
            "created_at": entry.created_at,
            "expires_at": entry.expires_at,
            "tags": list(entry.tags),
        }

    @staticmethod
    def _from_document(document: Dict[str, Any]) -> CacheEntry:
        return CacheEntry(
            id=document["_id"],
            content=document["content"],
            created_at=document["created_at"],
            expires_at=document.get("expires_at"),
            tags=document.get("tags") or [],
        )

    @staticmethod
    def _tag_filter(tags: List[str], match: TagMatch) -> Dict[str, Any]:
        return {"tags": {_TAG_OPERATORS[match]: list(tags)}}

    async def _get_entry(self, id: str) -> Optional[CacheEntry]:
        document = await self._collection.find_one({"_id": id})
        return self._from_document(document) if document else None

    async def _put_entry(self, entry: CacheEntry) -> bool:
        result = await self._collection.replace_one(
            {"_id": entry.id}, self._to_document(entry), upsert=True
        )
        return bool(result.acknowledged)

    async def _delete_entry(self, id: str) -> bool:
        result = await self._collection.delete_one({"_id": id})
        return result.deleted_count > 0

    async def _delete_all(self) -> None:
        await self._collection.delete_many({})

    async def _delete_expired(self, now) -> None:
        # $lt never matches a null expires_at
        await self._collection.delete_many({"expires_at": {"$lt": now}})

    async def _delete_by_tags(self, tags: List[str], match: TagMatch) -> None:
        await self._collection.delete_many(self._tag_filter(tags, match))

    async def _list_ids(self) -> List[str]:
        cursor = self._collection.find({}, {"_id": 1})
        return [document["_id"] async for document in cursor]

    async def _list_tags(self) -> List[str]:
        return list(await self._collection.distinct("tags"))

    async def _ids_by_tags(self, tags: List[str], match: TagMatch) -> List[str]:
        cursor = self._collection.find(self._tag_filter(tags, match), {"_id": 1})
        return [document["_id"] async for document in cursor]

    async def _storage_stats(self) -> Tuple[int, int]:
        stats = await self._db.command("dbStats")
        return int(stats.get("dataSize") or 0), int(stats.get("storageSize") or 0)
