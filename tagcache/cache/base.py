"""Cache backend interface and shared cache models.

A backend stores :class:`CacheEntry` records in a datastore and answers the
operations a cache frontend needs: load/test/save/remove for single entries,
tag based cleaning, id and tag enumeration, metadata, touch and a fill
percentage. Concrete drivers only implement the storage primitives; lifetime
handling, validity checks and the error policy live here.

Error policy:
    - ``load``, ``test``, ``save`` and ``remove`` never raise datastore errors.
      Failures are logged and reported as a miss (``None``) or ``False``.
    - Bulk and enumeration operations propagate failures as
      :class:`~tagcache.exceptions.CacheBackendError`.
"""

import asyncio
import contextlib
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import (
    Any,
    Dict,
    Iterable,
    Iterator,
    List,
    Optional,
    Tuple,
    Type,
    Union,
)

from pydantic import BaseModel, Field, field_validator, model_validator

from tagcache.config import BackendOptions, parse_options
from tagcache.exceptions import CacheBackendError, InvalidArgumentError

# False selects the directive lifetime, None or 0 means infinite
Lifetime = Union[int, bool, None]


class CleaningMode(str, Enum):
    """Modes accepted by :meth:`CacheBackend.clean`."""

    ALL = "all"
    OLD = "old"
    MATCHING_TAG = "matchingTag"
    NOT_MATCHING_TAG = "notMatchingTag"
    MATCHING_ANY_TAG = "matchingAnyTag"

    @classmethod
    def parse(cls, mode: Any) -> "CleaningMode":
        try:
            return cls(mode)
        except ValueError:
            raise InvalidArgumentError(
                "Invalid mode for clean() method", details={"mode": mode}
            ) from None


class TagMatch(str, Enum):
    """Tag predicates for :meth:`CacheBackend.list_ids_by_tags`.

    ALL: the entry carries every given tag.
    ANY: the entry carries at least one of the given tags.
    NONE: the entry carries none of the given tags.
    """

    ALL = "all"
    ANY = "any"
    NONE = "none"

    @classmethod
    def parse(cls, mode: Any) -> "TagMatch":
        try:
            return cls(mode)
        except ValueError:
            raise InvalidArgumentError(
                "Invalid tag match mode", details={"mode": mode}
            ) from None


_CLEAN_TAG_MATCH = {
    CleaningMode.MATCHING_TAG: TagMatch.ALL,
    CleaningMode.NOT_MATCHING_TAG: TagMatch.NONE,
    CleaningMode.MATCHING_ANY_TAG: TagMatch.ANY,
}


def _tag_list(tags: Union[str, Iterable[str]]) -> List[str]:
    # A single tag may be passed as a plain string
    if isinstance(tags, str):
        return [tags]
    return list(tags)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class CacheEntry(BaseModel):
    """A single cache record.

    Attributes:
        id: Cache id, unique within the collection or keyspace
        content: Opaque payload, serialized by the frontend
        created_at: Write time (UTC)
        expires_at: Expiry time (UTC), None for an infinite lifetime
        tags: Tags used for group invalidation
    """

    id: str
    content: str
    created_at: datetime
    expires_at: Optional[datetime] = None
    tags: List[str] = Field(default_factory=list)

    @field_validator("created_at", "expires_at")
    @classmethod
    def _ensure_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(value)

    @model_validator(mode="after")
    def _check_expiry(self) -> "CacheEntry":
        if self.expires_at is not None and self.expires_at < self.created_at:
            raise ValueError("expires_at must not be earlier than created_at")
        return self

    def is_valid_at(self, now: datetime) -> bool:
        """Whether the entry may still be served at ``now``."""
        return self.expires_at is None or self.expires_at >= now

    def to_metadata(self) -> "CacheMetadata":
        return CacheMetadata(
            expire=self.expires_at.timestamp() if self.expires_at else None,
            tags=list(self.tags),
            mtime=self.created_at.timestamp(),
        )


class CacheMetadata(BaseModel):
    """Metadata of a cache entry, timestamps in epoch seconds."""

    expire: Optional[float] = None
    tags: List[str] = Field(default_factory=list)
    mtime: float


class BackendCapabilities(BaseModel):
    """Capabilities reported to the cache frontend.

    Attributes:
        automatic_cleaning: The datastore removes expired entries on its own
        tags: Tags are supported
        expired_read: Expired entries can be read with ``skip_validity``
        priority: The backend honours a write priority
        infinite_lifetime: Entries may live forever
        get_list: Ids and tags can be enumerated
    """

    automatic_cleaning: bool = True
    tags: bool = True
    expired_read: bool = True
    priority: bool = False
    infinite_lifetime: bool = True
    get_list: bool = True


class CacheBackend(ABC):
    """Abstract base class for tag-aware cache backends.

    Subclasses implement the storage primitives (``_connect``, ``_get_entry``,
    ``_put_entry`` ...) against a concrete datastore client. The connection
    is established lazily on first use, or explicitly with :meth:`initialize`.
    """

    name: str = "base"
    DEFAULT_PORT: int = 0

    def __init__(self, options: Optional[BackendOptions] = None, **kwargs: Any):
        """Initialize the backend.

        Args:
            options: Validated options; built from ``kwargs`` when omitted
            **kwargs: Raw options (host, port, username, password, ...)
        """
        self.options = options if options is not None else parse_options(kwargs)
        self._directives: Dict[str, Any] = {
            "lifetime": self.options.lifetime,
            "logger": None,
        }
        self._logger = logging.getLogger(type(self).__module__)
        self._lock = asyncio.Lock()
        self._initialized = False

    # ------------------------------------------------------------------
    # Driver primitives
    # ------------------------------------------------------------------

    @property
    @abstractmethod
    def driver_errors(self) -> Tuple[Type[BaseException], ...]:
        """Exception types raised by the datastore client."""

    @abstractmethod
    async def _connect(self) -> None:
        """Create the client and prepare the collection or keyspace."""

    @abstractmethod
    async def _disconnect(self) -> None:
        """Release the client."""

    @abstractmethod
    async def _ping(self) -> None:
        """Round-trip to the datastore, raising on failure."""

    @abstractmethod
    async def _get_entry(self, id: str) -> Optional[CacheEntry]:
        """Fetch an entry by id regardless of its expiry."""

    @abstractmethod
    async def _put_entry(self, entry: CacheEntry) -> bool:
        """Insert or replace an entry."""

    @abstractmethod
    async def _delete_entry(self, id: str) -> bool:
        """Delete an entry, returning whether it existed."""

    @abstractmethod
    async def _delete_all(self) -> None:
        """Delete every entry."""

    @abstractmethod
    async def _delete_expired(self, now: datetime) -> None:
        """Delete entries whose expiry is set and earlier than ``now``."""

    @abstractmethod
    async def _delete_by_tags(self, tags: List[str], match: TagMatch) -> None:
        """Delete entries whose tags satisfy ``match``."""

    @abstractmethod
    async def _list_ids(self) -> List[str]:
        """Return every stored id."""

    @abstractmethod
    async def _list_tags(self) -> List[str]:
        """Return the distinct tags of all stored entries."""

    @abstractmethod
    async def _ids_by_tags(self, tags: List[str], match: TagMatch) -> List[str]:
        """Return ids whose tags satisfy ``match``."""

    @abstractmethod
    async def _storage_stats(self) -> Tuple[int, int]:
        """Return ``(used, total)`` storage sizes."""

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """Connect and prepare the datastore, once."""
        if self._initialized:
            return
        async with self._lock:
            if not self._initialized:  # Double-check locking
                await self._connect()
                self._initialized = True
                self._logger.debug(f"{type(self).__name__} initialized")

    async def close(self) -> None:
        """Close the datastore connection."""
        await self._disconnect()
        self._initialized = False

    async def ping(self) -> bool:
        """Check datastore health.

        Returns:
            True if the datastore answered, False otherwise
        """
        try:
            await self.initialize()
            await self._ping()
            return True
        except Exception as e:
            self._log_failure("ping", e)
            return False

    async def __aenter__(self) -> "CacheBackend":
        await self.initialize()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Directives and helpers
    # ------------------------------------------------------------------

    def set_directives(self, directives: Dict[str, Any]) -> None:
        """Set frontend directives.

        Args:
            directives: ``lifetime`` (seconds, None for infinite) and/or
                ``logger`` (a :class:`logging.Logger`)
        """
        for name, value in directives.items():
            if name not in self._directives:
                raise InvalidArgumentError(
                    f"Unknown directive: {name}", details={"directive": name}
                )
            self._directives[name] = value

        # A null lifetime is stored as 0, the infinite lifetime
        if self._directives["lifetime"] is None:
            self._directives["lifetime"] = 0
        if self._directives["logger"] is not None:
            self._logger = self._directives["logger"]

    def get_lifetime(self, specific_lifetime: Lifetime = False) -> Optional[int]:
        """Resolve the lifetime to use for a save.

        Args:
            specific_lifetime: False for the directive lifetime, otherwise
                the lifetime in seconds (None or 0 for infinite)

        Returns:
            Lifetime in seconds, None or 0 for infinite
        """
        if specific_lifetime is False:
            return self._directives["lifetime"]
        return specific_lifetime  # type: ignore[return-value]

    @staticmethod
    def _now() -> datetime:
        # Millisecond precision, which is what the datastores keep
        now = datetime.now(timezone.utc)
        return now.replace(microsecond=now.microsecond // 1000 * 1000)

    @staticmethod
    def _expiry(now: datetime, lifetime: Optional[int]) -> Optional[datetime]:
        if not lifetime:
            return None
        return now + timedelta(seconds=int(lifetime))

    def _log_failure(self, method: str, error: BaseException) -> None:
        self._logger.warning(f"{type(self).__name__}.{method}: {error}")

    @contextlib.contextmanager
    def _translate_errors(self, operation: str) -> Iterator[None]:
        """Re-raise datastore errors as :class:`CacheBackendError`."""
        try:
            yield
        except self.driver_errors as e:
            raise CacheBackendError(
                f"{self.name} {operation} failed: {e}",
                details={"backend": self.name, "operation": operation},
            ) from e

    # ------------------------------------------------------------------
    # Point operations (failures are logged, never raised)
    # ------------------------------------------------------------------

    async def load(self, id: str, skip_validity: bool = False) -> Optional[str]:
        """Return the cached content for ``id``.

        Args:
            id: Cache id
            skip_validity: Return the content even if the entry has expired

        Returns:
            Content string, or None on a miss
        """
        try:
            await self.initialize()
            entry = await self._get_entry(id)
        except Exception as e:
            self._log_failure("load", e)
            return None

        if entry is None:
            return None
        if skip_validity or entry.is_valid_at(self._now()):
            return entry.content
        return None

    async def test(self, id: str) -> Optional[float]:
        """Return the creation time (epoch seconds) of ``id``, or None."""
        try:
            await self.initialize()
            entry = await self._get_entry(id)
        except Exception as e:
            self._log_failure("test", e)
            return None

        return entry.created_at.timestamp() if entry is not None else None

    async def save(
        self,
        content: str,
        id: str,
        tags: Union[str, Iterable[str]] = (),
        specific_lifetime: Lifetime = False,
    ) -> bool:
        """Store ``content`` under ``id``, replacing any previous entry.

        Args:
            content: Serialized content
            id: Cache id
            tags: Tags attached to the entry
            specific_lifetime: False for the default lifetime, None or 0 for
                an infinite lifetime, otherwise seconds

        Returns:
            True if the entry was written
        """
        try:
            now = self._now()
            entry = CacheEntry(
                id=id,
                content=content,
                created_at=now,
                expires_at=self._expiry(now, self.get_lifetime(specific_lifetime)),
                tags=_tag_list(tags),
            )
            await self.initialize()
            return bool(await self._put_entry(entry))
        except Exception as e:
            self._log_failure("save", e)
            return False

    async def remove(self, id: str) -> bool:
        """Delete ``id``. Returns False if it did not exist or on failure."""
        try:
            await self.initialize()
            return bool(await self._delete_entry(id))
        except Exception as e:
            self._log_failure("remove", e)
            return False

    # ------------------------------------------------------------------
    # Bulk operations (failures propagate)
    # ------------------------------------------------------------------

    async def clean(
        self,
        mode: Union[CleaningMode, str] = CleaningMode.ALL,
        tags: Union[str, Iterable[str]] = (),
    ) -> bool:
        """Delete entries in bulk.

        Available modes:
            ALL: remove every entry (tags are not used)
            OLD: remove entries that have expired (tags are not used)
            MATCHING_TAG: remove entries carrying all given tags
            NOT_MATCHING_TAG: remove entries carrying none of the given tags
            MATCHING_ANY_TAG: remove entries carrying any of the given tags

        Args:
            mode: Cleaning mode
            tags: Tags for the tag based modes

        Returns:
            True once the datastore accepted the deletion

        Raises:
            InvalidArgumentError: If the mode is unknown
            CacheBackendError: If the datastore fails
        """
        mode = CleaningMode.parse(mode)
        tag_list = _tag_list(tags)

        with self._translate_errors("clean"):
            await self.initialize()
            if mode is CleaningMode.ALL:
                await self._delete_all()
            elif mode is CleaningMode.OLD:
                await self._delete_expired(self._now())
            else:
                await self._delete_by_tags(tag_list, _CLEAN_TAG_MATCH[mode])
        return True

    async def list_ids(self) -> List[str]:
        """Return all stored cache ids."""
        with self._translate_errors("list_ids"):
            await self.initialize()
            return await self._list_ids()

    async def list_tags(self) -> List[str]:
        """Return the distinct tags over all stored entries."""
        with self._translate_errors("list_tags"):
            await self.initialize()
            return await self._list_tags()

    async def list_ids_by_tags(
        self, tags: Iterable[str], mode: Union[TagMatch, str] = TagMatch.ALL
    ) -> List[str]:
        """Return ids whose tags satisfy ``mode``.

        Args:
            tags: Tags to match
            mode: ALL, ANY or NONE

        Returns:
            Matching cache ids
        """
        match = TagMatch.parse(mode)
        with self._translate_errors("list_ids_by_tags"):
            await self.initialize()
            return await self._ids_by_tags(_tag_list(tags), match)

    async def get_ids_matching_tags(
        self, tags: Union[str, Iterable[str]] = ()
    ) -> List[str]:
        return await self.list_ids_by_tags(tags, TagMatch.ALL)

    async def get_ids_not_matching_tags(
        self, tags: Union[str, Iterable[str]] = ()
    ) -> List[str]:
        return await self.list_ids_by_tags(tags, TagMatch.NONE)

    async def get_ids_matching_any_tags(
        self, tags: Union[str, Iterable[str]] = ()
    ) -> List[str]:
        return await self.list_ids_by_tags(tags, TagMatch.ANY)

    async def fill_percentage(self) -> int:
        """Return how full the datastore is, as an integer from 0 to 100.

        Raises:
            CacheBackendError: If the total storage size is reported as zero
        """
        with self._translate_errors("fill_percentage"):
            await self.initialize()
            used, total = await self._storage_stats()

        if total <= 0:
            raise CacheBackendError(
                "Cannot determine the total storage size",
                details={"backend": self.name, "used": used, "total": total},
            )
        if used >= total:
            return 100
        return int(100.0 * used / total)

    async def metadata(self, id: str) -> Optional[CacheMetadata]:
        """Return expire, tags and mtime of ``id``, or None if it is absent."""
        with self._translate_errors("metadata"):
            await self.initialize()
            entry = await self._get_entry(id)
        return entry.to_metadata() if entry is not None else None

    async def touch(self, id: str, extra_lifetime: int) -> bool:
        """Extend the lifetime of an entry that has a pending expiry.

        Entries without an expiry or that already expired are left alone, as
        is a negative ``extra_lifetime`` that would move the expiry into the
        past.

        Args:
            id: Cache id
            extra_lifetime: Seconds added to the current expiry

        Returns:
            True if the expiry was extended
        """
        with self._translate_errors("touch"):
            await self.initialize()
            entry = await self._get_entry(id)
            now = self._now()
            if entry is None or entry.expires_at is None or entry.expires_at <= now:
                return False

            expires_at = entry.expires_at + timedelta(seconds=extra_lifetime)
            if expires_at < now:
                return False

            extended = CacheEntry(
                id=entry.id,
                content=entry.content,
                created_at=now,
                expires_at=expires_at,
                tags=entry.tags,
            )
            return bool(await self._put_entry(extended))

    def capabilities(self) -> BackendCapabilities:
        return BackendCapabilities()

    def is_automatic_cleaning_available(self) -> bool:
        # Expiry is handled by the datastore, no frontend driven cleaning needed
        return False
