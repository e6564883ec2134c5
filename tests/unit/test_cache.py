"""Unit tests for anicatalog.cache."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING
import pytest

from anicatalog.cache import MemoryCache
from anicatalog.errors import CatalogError, ErrorCode

if TYPE_CHECKING:
    from anicatalog.cache import SqliteCache


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


# ---------------------------------------------------------------------------
# Memory backend
# ---------------------------------------------------------------------------


class TestMemoryCache:
    async def test_set_and_get(self) -> None:
        cache = MemoryCache()
        await cache.set("entity:anime:1", b"payload", 60)
        assert await cache.get("entity:anime:1") == b"payload"

    async def test_missing_key(self) -> None:
        assert await MemoryCache().get("nope") is None

    async def test_expired_reads_as_absent(self) -> None:
        clock = FakeClock()
        cache = MemoryCache(clock=clock)
        await cache.set("k", b"v", 60)
        clock.now += 61
        assert await cache.get("k") is None
        assert len(cache) == 0

    async def test_overwrite_resets_ttl(self) -> None:
        clock = FakeClock()
        cache = MemoryCache(clock=clock)
        await cache.set("k", b"v1", 10)
        clock.now += 5
        await cache.set("k", b"v2", 10)
        clock.now += 8
        assert await cache.get("k") == b"v2"

    async def test_zero_ttl_removes_key(self) -> None:
        cache = MemoryCache()
        await cache.set("k", b"v", 60)
        await cache.set("k", b"v", 0)
        assert await cache.get("k") is None

    async def test_evicts_oldest_when_full(self) -> None:
        cache = MemoryCache(max_entries=2)
        await cache.set("a", b"1", 60)
        await cache.set("b", b"2", 60)
        await cache.set("c", b"3", 60)
        assert await cache.get("a") is None
        assert await cache.get("b") == b"2"
        assert await cache.get("c") == b"3"

    async def test_cleanup_purges_expired_and_respects_interval(self) -> None:
        clock = FakeClock()
        cache = MemoryCache(clock=clock)
        await cache.set("short", b"v", 10)
        await cache.set("long", b"v", 10_000)
        clock.now += 11
        await cache.cleanup_if_due(interval_hours=6)
        assert len(cache) == 1

        await cache.set("short", b"v", 10)
        clock.now += 11
        # Not due yet: the expired entry stays until the next run or read
        await cache.cleanup_if_due(interval_hours=6)
        assert len(cache) == 2


# ---------------------------------------------------------------------------
# SQLite backend
# ---------------------------------------------------------------------------


class TestSqliteCache:
    async def test_set_and_get(self, sqlite_cache: SqliteCache) -> None:
        await sqlite_cache.set("entity:anime:5114", b'{"x":1}', 3600)
        assert await sqlite_cache.get("entity:anime:5114") == b'{"x":1}'

    async def test_missing_key(self, sqlite_cache: SqliteCache) -> None:
        assert await sqlite_cache.get("nope") is None

    async def test_upsert_overwrites(self, sqlite_cache: SqliteCache) -> None:
        await sqlite_cache.set("k", b"v1", 3600)
        await sqlite_cache.set("k", b"v2", 3600)
        assert await sqlite_cache.get("k") == b"v2"

    async def test_expired_reads_as_absent(self, sqlite_cache: SqliteCache) -> None:
        await sqlite_cache.set("k", b"v", 3600)
        past = (datetime.now(UTC) - timedelta(seconds=1)).isoformat()
        await sqlite_cache._db.execute(
            "UPDATE kv_cache SET expires_at = ? WHERE key = 'k'", (past,)
        )
        await sqlite_cache._db.commit()
        assert await sqlite_cache.get("k") is None

    async def test_cleanup_expired_deletes_rows(self, sqlite_cache: SqliteCache) -> None:
        await sqlite_cache.set("old", b"v", 3600)
        await sqlite_cache.set("fresh", b"v", 3600)
        past = (datetime.now(UTC) - timedelta(hours=2)).isoformat()
        await sqlite_cache._db.execute(
            "UPDATE kv_cache SET expires_at = ? WHERE key = 'old'", (past,)
        )
        await sqlite_cache._db.commit()

        await sqlite_cache.cleanup_expired()

        cursor = await sqlite_cache._db.execute("SELECT key FROM kv_cache")
        rows = await cursor.fetchall()
        assert [row[0] for row in rows] == ["fresh"]

    async def test_cleanup_if_due_records_last_run(self, sqlite_cache: SqliteCache) -> None:
        await sqlite_cache.cleanup_if_due(interval_hours=6)
        cursor = await sqlite_cache._db.execute(
            "SELECT value FROM cache_metadata WHERE key = 'last_cleanup_at'"
        )
        row = await cursor.fetchone()
        assert row is not None
        assert datetime.now(UTC) - datetime.fromisoformat(row[0]) < timedelta(minutes=1)

    async def test_driver_error_is_infrastructure_failure(self, sqlite_cache: SqliteCache) -> None:
        await sqlite_cache._db.execute("DROP TABLE kv_cache")

        with pytest.raises(CatalogError) as exc_info:
            await sqlite_cache.get("k")
        assert exc_info.value.code == ErrorCode.INFRASTRUCTURE_FAILURE
        with pytest.raises(CatalogError) as exc_info:
            await sqlite_cache.set("k", b"v", 60)
        assert exc_info.value.code == ErrorCode.INFRASTRUCTURE_FAILURE
