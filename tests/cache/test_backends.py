"""Behaviour every backend shares, run against MongoDB and Redis."""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from tagcache.cache.base import CacheBackend, CacheMetadata, CleaningMode, TagMatch
from tagcache.exceptions import InvalidArgumentError


def _at(seconds: float):
    """Patch the backend clock to ``now + seconds``."""
    moment = datetime.now(timezone.utc) + timedelta(seconds=seconds)
    return patch.object(CacheBackend, "_now", return_value=moment)


async def _populate(backend):
    await backend.save("A", "a", ["a"])
    await backend.save("AB", "ab", ["a", "b"])
    await backend.save("B", "b", ["b"])
    await backend.save("C", "c", ["c"])
    await backend.save("N", "none", [])


class TestLoadSave:
    """Test saving and loading entries."""

    @pytest.mark.asyncio
    async def test_save_load_clean_scenario(self, backend):
        """Test save, load, clean all, then miss."""
        assert await backend.save("hello", "x", ["t1"]) is True
        assert await backend.load("x") == "hello"

        assert await backend.clean(CleaningMode.ALL) is True
        assert await backend.load("x") is None

    @pytest.mark.asyncio
    async def test_load_missing(self, backend):
        """Test that unknown ids are a miss."""
        assert await backend.load("missing") is None
        assert await backend.test("missing") is None
        assert await backend.metadata("missing") is None

    @pytest.mark.asyncio
    async def test_save_replaces_entry(self, backend):
        """Test upsert semantics."""
        await backend.save("first", "x", ["a"])
        await backend.save("second", "x", ["b"])

        assert await backend.load("x") == "second"
        assert (await backend.metadata("x")).tags == ["b"]
        assert await backend.list_ids() == ["x"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("lifetime", [None, 0])
    async def test_infinite_lifetime(self, backend, lifetime):
        """Test that infinite entries never expire."""
        await backend.save("forever", "x", specific_lifetime=lifetime)

        with _at(10 * 365 * 24 * 3600):
            assert await backend.load("x") == "forever"
        assert (await backend.metadata("x")).expire is None

    @pytest.mark.asyncio
    async def test_lifetime_expiry(self, backend):
        """Test hits before and misses after the lifetime."""
        await backend.save("soon", "x", specific_lifetime=60)

        with _at(59):
            assert await backend.load("x") == "soon"
        with _at(61):
            assert await backend.load("x") is None
            # Validity checks can be skipped while the entry is still stored
            assert await backend.load("x", skip_validity=True) == "soon"

    @pytest.mark.asyncio
    async def test_default_lifetime(self, backend):
        """Test that the directive lifetime applies when none is given."""
        await backend.save("c", "x")
        metadata = await backend.metadata("x")
        assert metadata.expire - metadata.mtime == pytest.approx(3600)

    @pytest.mark.asyncio
    async def test_test_returns_creation_time(self, backend):
        """Test that test() reports a time no earlier than the save call."""
        before = CacheBackend._now().timestamp()
        await backend.save("c", "x")
        created = await backend.test("x")
        assert created is not None
        assert created >= before

    @pytest.mark.asyncio
    async def test_metadata_round_trip(self, backend):
        """Test that metadata reports tags, mtime and expiry."""
        before = CacheBackend._now().timestamp()
        await backend.save("c", "x", ["t1", "t2"], specific_lifetime=100)

        metadata = await backend.metadata("x")
        assert isinstance(metadata, CacheMetadata)
        assert sorted(metadata.tags) == ["t1", "t2"]
        assert metadata.mtime >= before
        assert metadata.mtime == await backend.test("x")
        assert metadata.expire == pytest.approx(metadata.mtime + 100)

    @pytest.mark.asyncio
    async def test_remove(self, backend):
        """Test removal reports whether the entry existed."""
        await backend.save("c", "x", ["t"])
        assert await backend.remove("x") is True
        assert await backend.load("x") is None
        assert await backend.remove("x") is False
        assert await backend.list_ids_by_tags(["t"], TagMatch.ANY) == []


class TestClean:
    """Test the cleaning modes."""

    @pytest.mark.asyncio
    async def test_matching_tag(self, backend):
        """Test that only entries carrying all tags are removed."""
        await _populate(backend)
        await backend.clean(CleaningMode.MATCHING_TAG, ["a", "b"])
        assert sorted(await backend.list_ids()) == ["a", "b", "c", "none"]

    @pytest.mark.asyncio
    async def test_matching_any_tag(self, backend):
        """Test that entries carrying any tag are removed."""
        await _populate(backend)
        await backend.clean(CleaningMode.MATCHING_ANY_TAG, ["a", "b"])
        assert sorted(await backend.list_ids()) == ["c", "none"]

    @pytest.mark.asyncio
    async def test_not_matching_tag(self, backend):
        """Test that entries carrying none of the tags are removed."""
        await _populate(backend)
        await backend.clean(CleaningMode.NOT_MATCHING_TAG, ["a", "b"])
        assert sorted(await backend.list_ids()) == ["a", "ab", "b"]

    @pytest.mark.asyncio
    async def test_string_modes(self, backend):
        """Test that modes may be given by value."""
        await _populate(backend)
        await backend.clean("matchingAnyTag", ["c"])
        assert "c" not in await backend.list_ids()

    @pytest.mark.asyncio
    async def test_empty_tags(self, backend):
        """Test tag modes with an empty tag list."""
        await _populate(backend)
        await backend.clean(CleaningMode.MATCHING_TAG, [])
        await backend.clean(CleaningMode.MATCHING_ANY_TAG, [])
        assert len(await backend.list_ids()) == 5

        await backend.clean(CleaningMode.NOT_MATCHING_TAG, [])
        assert await backend.list_ids() == []

    @pytest.mark.asyncio
    async def test_old(self, backend):
        """Test that only expired entries are removed."""
        await backend.save("old", "old", specific_lifetime=60)
        await backend.save("fresh", "fresh", specific_lifetime=3600)
        await backend.save("forever", "forever", specific_lifetime=None)

        with _at(120):
            await backend.clean(CleaningMode.OLD)

        assert sorted(await backend.list_ids()) == ["forever", "fresh"]

    @pytest.mark.asyncio
    async def test_single_tag_string(self, backend):
        """Test that a lone tag may be passed as a string."""
        await backend.save("c", "x", "solo")
        assert (await backend.metadata("x")).tags == ["solo"]
        await backend.clean(CleaningMode.MATCHING_TAG, "solo")
        assert await backend.load("x") is None

    @pytest.mark.asyncio
    async def test_invalid_mode(self, backend):
        """Test that unknown modes raise instead of doing nothing."""
        await backend.save("c", "x")
        with pytest.raises(InvalidArgumentError):
            await backend.clean("bogus")
        assert await backend.load("x") == "c"


class TestEnumeration:
    """Test id and tag enumeration."""

    @pytest.mark.asyncio
    async def test_list_ids_and_tags(self, backend):
        """Test listing every id and the union of tags."""
        await _populate(backend)
        assert sorted(await backend.list_ids()) == ["a", "ab", "b", "c", "none"]
        assert sorted(await backend.list_tags()) == ["a", "b", "c"]

    @pytest.mark.asyncio
    async def test_list_ids_by_tags(self, backend):
        """Test the ALL, ANY and NONE tag predicates."""
        await _populate(backend)

        assert sorted(await backend.list_ids_by_tags(["a", "b"], TagMatch.ALL)) == [
            "ab"
        ]
        assert sorted(await backend.list_ids_by_tags(["a", "b"], TagMatch.ANY)) == [
            "a",
            "ab",
            "b",
        ]
        assert sorted(await backend.list_ids_by_tags(["a", "b"], "none")) == [
            "c",
            "none",
        ]

    @pytest.mark.asyncio
    async def test_convenience_lookups(self, backend):
        """Test the matching/not matching/any helpers."""
        await _populate(backend)
        assert sorted(await backend.get_ids_matching_tags(["a"])) == ["a", "ab"]
        assert sorted(await backend.get_ids_not_matching_tags(["a"])) == [
            "b",
            "c",
            "none",
        ]
        assert sorted(await backend.get_ids_matching_any_tags(["c", "b"])) == [
            "ab",
            "b",
            "c",
        ]

    @pytest.mark.asyncio
    async def test_invalid_tag_match(self, backend):
        """Test that an unknown tag predicate is rejected."""
        with pytest.raises(InvalidArgumentError):
            await backend.list_ids_by_tags(["a"], "most")


class TestTouch:
    """Test extending lifetimes."""

    @pytest.mark.asyncio
    async def test_touch_extends_pending_expiry(self, backend):
        """Test that touch adds the extra lifetime to the expiry."""
        await backend.save("c", "x", ["t"], specific_lifetime=60)
        expire = (await backend.metadata("x")).expire

        assert await backend.touch("x", 30) is True

        metadata = await backend.metadata("x")
        assert metadata.expire == pytest.approx(expire + 30)
        assert metadata.tags == ["t"]
        assert await backend.load("x") == "c"
        with _at(75):
            assert await backend.load("x") == "c"

    @pytest.mark.asyncio
    async def test_touch_without_expiry(self, backend):
        """Test that infinite entries are left alone."""
        await backend.save("c", "x", specific_lifetime=None)
        assert await backend.touch("x", 30) is False
        assert (await backend.metadata("x")).expire is None

    @pytest.mark.asyncio
    async def test_touch_expired(self, backend):
        """Test that expired entries are not revived."""
        await backend.save("c", "x", specific_lifetime=60)
        with _at(61):
            assert await backend.touch("x", 3600) is False

    @pytest.mark.asyncio
    async def test_touch_into_the_past(self, backend):
        """Test that a negative extension past now leaves the entry as is."""
        await backend.save("c", "x", specific_lifetime=60)
        expire = (await backend.metadata("x")).expire

        assert await backend.touch("x", -100) is False

        assert (await backend.metadata("x")).expire == pytest.approx(expire)
        assert await backend.load("x") == "c"

    @pytest.mark.asyncio
    async def test_touch_shortens_pending_expiry(self, backend):
        """Test a negative extension that keeps the expiry in the future."""
        await backend.save("c", "x", specific_lifetime=60)
        expire = (await backend.metadata("x")).expire

        assert await backend.touch("x", -30) is True
        assert (await backend.metadata("x")).expire == pytest.approx(expire - 30)

    @pytest.mark.asyncio
    async def test_touch_missing(self, backend):
        """Test touching an unknown id."""
        assert await backend.touch("missing", 30) is False


class TestFailures:
    """Test that point operations swallow and log datastore failures."""

    @pytest.mark.asyncio
    async def test_point_operations_report_failure(self, backend, caplog):
        """Test load/test/save/remove never raise."""
        failing = AsyncMock(side_effect=RuntimeError("connection reset"))
        with patch.object(backend, "_get_entry", failing), patch.object(
            backend, "_put_entry", failing
        ), patch.object(backend, "_delete_entry", failing):
            assert await backend.load("x") is None
            assert await backend.test("x") is None
            assert await backend.save("c", "x") is False
            assert await backend.remove("x") is False

        name = type(backend).__name__
        messages = [record.getMessage() for record in caplog.records]
        for method in ("load", "test", "save", "remove"):
            assert f"{name}.{method}: connection reset" in messages

    @pytest.mark.asyncio
    async def test_failure_logged_to_directive_logger(self, backend):
        """Test that the logger directive receives failure messages."""
        logger = MagicMock()
        backend.set_directives({"logger": logger})
        with patch.object(
            backend, "_get_entry", AsyncMock(side_effect=RuntimeError("down"))
        ):
            assert await backend.load("x") is None
        logger.warning.assert_called_once_with(f"{type(backend).__name__}.load: down")

    @pytest.mark.asyncio
    async def test_ping(self, backend):
        """Test the health check."""
        assert await backend.ping() is True
        with patch.object(backend, "_ping", AsyncMock(side_effect=RuntimeError())):
            assert await backend.ping() is False

    @pytest.mark.asyncio
    async def test_context_manager(self, backend):
        """Test async with initializes and closes the backend."""
        async with backend as cache:
            assert cache is backend
            assert backend._initialized
        assert not backend._initialized
