"""Shared fixtures: in-process stand-ins for the MongoDB and Redis clients."""

import copy
from types import SimpleNamespace
from typing import Any, Dict, List, Optional

import pytest

from tagcache.cache.mongodb import MongoDBBackend
from tagcache.cache.redis import RedisBackend


def _matches(document: Dict[str, Any], query: Dict[str, Any]) -> bool:
    """Evaluate the subset of MongoDB filters the backend issues."""
    for field, condition in query.items():
        value = document.get(field)
        if not isinstance(condition, dict):
            if value != condition:
                return False
            continue

        for operator, operand in condition.items():
            values = value if isinstance(value, list) else []
            if operator == "$all":
                if not operand or not all(tag in values for tag in operand):
                    return False
            elif operator == "$in":
                if not any(tag in values for tag in operand):
                    return False
            elif operator == "$nin":
                if any(tag in values for tag in operand):
                    return False
            elif operator == "$lt":
                if value is None or not value < operand:
                    return False
            else:
                raise NotImplementedError(operator)
    return True


class FakeCursor:
    def __init__(self, documents: List[Dict[str, Any]]):
        self._documents = iter(documents)

    def __aiter__(self) -> "FakeCursor":
        return self

    async def __anext__(self) -> Dict[str, Any]:
        try:
            return next(self._documents)
        except StopIteration:
            raise StopAsyncIteration from None


class FakeCollection:
    """Motor collection keeping documents in a dict keyed by ``_id``."""

    def __init__(self) -> None:
        self.documents: Dict[str, Dict[str, Any]] = {}
        self.indexes: List[SimpleNamespace] = []

    async def create_index(self, keys, **kwargs) -> str:
        self.indexes.append(SimpleNamespace(keys=keys, options=kwargs))
        return "_".join(f"{name}_{direction}" for name, direction in keys)

    async def find_one(self, query: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        for document in self.documents.values():
            if _matches(document, query):
                return copy.deepcopy(document)
        return None

    async def replace_one(self, query, replacement, upsert=False):
        self.documents[replacement["_id"]] = copy.deepcopy(replacement)
        return SimpleNamespace(acknowledged=True)

    async def delete_one(self, query):
        for key, document in list(self.documents.items()):
            if _matches(document, query):
                del self.documents[key]
                return SimpleNamespace(deleted_count=1)
        return SimpleNamespace(deleted_count=0)

    async def delete_many(self, query):
        doomed = [k for k, d in self.documents.items() if _matches(d, query)]
        for key in doomed:
            del self.documents[key]
        return SimpleNamespace(deleted_count=len(doomed))

    def find(self, query=None, projection=None) -> FakeCursor:
        return FakeCursor(
            [
                copy.deepcopy(document)
                for document in self.documents.values()
                if _matches(document, query or {})
            ]
        )

    async def distinct(self, field: str) -> List[Any]:
        values: List[Any] = []
        for document in self.documents.values():
            for value in document.get(field) or []:
                if value not in values:
                    values.append(value)
        return values


class FakeDatabase:
    def __init__(self) -> None:
        self.collections: Dict[str, FakeCollection] = {}
        self.stats: Dict[str, Any] = {"dataSize": 0, "storageSize": 0}

    def get_collection(self, name: str) -> FakeCollection:
        return self.collections.setdefault(name, FakeCollection())

    async def command(self, name: str) -> Dict[str, Any]:
        assert name == "dbStats"
        return dict(self.stats)


class FakeMotorClient:
    def __init__(self) -> None:
        self.databases: Dict[str, FakeDatabase] = {}
        self.closed = False
        self.admin = SimpleNamespace(command=self._admin_command)

    async def _admin_command(self, name: str) -> Dict[str, Any]:
        return {"ok": 1.0}

    def get_database(self, name: str) -> FakeDatabase:
        return self.databases.setdefault(name, FakeDatabase())

    def close(self) -> None:
        self.closed = True


def _fake_redis():
    import fakeredis
    from fakeredis import aioredis

    # A private server per client so tests never share keys
    return aioredis.FakeRedis(server=fakeredis.FakeServer(), decode_responses=True)


@pytest.fixture
def motor_client():
    """Fake motor client."""
    return FakeMotorClient()


@pytest.fixture
def mongo_backend(motor_client):
    """MongoDB backend wired to the fake motor client."""
    return MongoDBBackend(client=motor_client)


@pytest.fixture
def mongo_collection(motor_client):
    """The collection the default MongoDB backend writes to."""
    return motor_client.get_database("Db_Cache").get_collection("C_Cache")


@pytest.fixture
def redis_client():
    """In-process Redis server speaking the redis.asyncio API."""
    return _fake_redis()


@pytest.fixture
def redis_backend(redis_client):
    """Redis backend wired to the fake Redis client."""
    return RedisBackend(client=redis_client)


@pytest.fixture(params=["mongodb", "redis"])
def backend(request):
    """Each backend in turn, for behaviour both must share."""
    if request.param == "mongodb":
        return MongoDBBackend(client=FakeMotorClient())
    return RedisBackend(client=_fake_redis())
