"""Cache Store backends: exact-key bytes with per-key TTL.

Two implementations of CacheProtocol:

- ``MemoryCache``: process-local dict, the default hot tier.
- ``SqliteCache``: aiosqlite-backed, survives restarts and can be shared by
  several worker processes on one host.

Expired entries read exactly like absent ones. Unlike the background
maintenance path, ``get`` / ``set`` do not swallow driver errors: a cache that
cannot be reached is an infrastructure failure and is raised as
``CatalogError(INFRASTRUCTURE_FAILURE)`` so the request fails visibly.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

import aiosqlite
import structlog

from anicatalog.errors import infrastructure_error

log = structlog.get_logger()


class MemoryCache:
    """In-process cache implementing CacheProtocol."""

    def __init__(
        self,
        *,
        max_entries: int = 10_000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._entries: dict[str, tuple[bytes, float]] = {}
        self._max_entries = max_entries
        self._clock = clock
        self._last_cleanup: float | None = None

    async def get(self, key: str) -> bytes | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return value

    async def set(self, key: str, value: bytes, ttl_seconds: int) -> None:
        if ttl_seconds <= 0:
            self._entries.pop(key, None)
            return
        self._entries.pop(key, None)
        if len(self._entries) >= self._max_entries:
            self._purge_expired()
        while len(self._entries) >= self._max_entries:
            # Oldest insertion first
            del self._entries[next(iter(self._entries))]
        self._entries[key] = (value, self._clock() + ttl_seconds)

    async def cleanup_if_due(self, interval_hours: int) -> None:
        now = self._clock()
        if self._last_cleanup is not None and now - self._last_cleanup < interval_hours * 3600:
            log.debug("cache_cleanup_skipped", reason="not_due")
            return
        deleted = self._purge_expired()
        self._last_cleanup = now
        log.info("cache_cleanup_complete", backend="memory", deleted=deleted)

    def _purge_expired(self) -> int:
        now = self._clock()
        expired = [key for key, (_, expires_at) in self._entries.items() if now >= expires_at]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)


_CREATE_CACHE_TABLE = """
CREATE TABLE IF NOT EXISTS kv_cache (
    key        TEXT PRIMARY KEY,
    value      BLOB NOT NULL,
    stored_at  TEXT NOT NULL,
    expires_at TEXT NOT NULL
)
"""

_CREATE_CACHE_INDEX = "CREATE INDEX IF NOT EXISTS idx_kv_expires ON kv_cache(expires_at)"

_CREATE_METADATA_TABLE = """
CREATE TABLE IF NOT EXISTS cache_metadata (
    key   TEXT PRIMARY KEY,
    value TEXT NOT NULL
)
"""


class SqliteCache:
    """SQLite-backed cache implementing CacheProtocol."""

    def __init__(self, db: aiosqlite.Connection) -> None:
        self._db = db

    async def init_db(self) -> None:
        """Create tables and set WAL mode. Called once at startup."""
        await self._db.execute("PRAGMA journal_mode = WAL")
        await self._db.execute(_CREATE_CACHE_TABLE)
        await self._db.execute(_CREATE_CACHE_INDEX)
        await self._db.execute(_CREATE_METADATA_TABLE)
        await self._db.commit()

    async def get(self, key: str) -> bytes | None:
        """Read an entry. Returns ``None`` on miss or expiry."""
        try:
            cursor = await self._db.execute(
                "SELECT value, expires_at FROM kv_cache WHERE key = ?",
                (key,),
            )
            row = await cursor.fetchone()
        except aiosqlite.Error as exc:
            log.error("cache_read_error", key=key, exc_info=True)
            raise infrastructure_error("cache", exc) from exc
        if row is None:
            return None
        if datetime.now(UTC) >= datetime.fromisoformat(row[1]):
            return None
        return bytes(row[0])

    async def set(self, key: str, value: bytes, ttl_seconds: int) -> None:
        """Write an entry, replacing any previous value for ``key``."""
        now = datetime.now(UTC)
        expires_at = now + timedelta(seconds=ttl_seconds)
        try:
            await self._db.execute(
                "INSERT OR REPLACE INTO kv_cache (key, value, stored_at, expires_at) "
                "VALUES (?, ?, ?, ?)",
                (key, value, now.isoformat(), expires_at.isoformat()),
            )
            await self._db.commit()
        except aiosqlite.Error as exc:
            log.error("cache_write_error", key=key, exc_info=True)
            raise infrastructure_error("cache", exc) from exc

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def cleanup_if_due(self, interval_hours: int) -> None:
        """Run cleanup only if interval_hours have elapsed since the last run.

        Reads and writes ``last_cleanup_at`` from the ``cache_metadata`` table.
        Falls through to run cleanup if the metadata row is missing or unreadable.
        Non-fatal on failure: this runs in the background, not on a request.
        """
        try:
            cursor = await self._db.execute(
                "SELECT value FROM cache_metadata WHERE key = 'last_cleanup_at'"
            )
            row = await cursor.fetchone()
            if row is not None:
                last_run = datetime.fromisoformat(row[0])
                if datetime.now(UTC) - last_run < timedelta(hours=interval_hours):
                    log.debug("cache_cleanup_skipped", reason="not_due")
                    return
        except aiosqlite.Error:
            log.warning("cache_metadata_read_error", exc_info=True)

        await self.cleanup_expired()

        try:
            await self._db.execute(
                "INSERT OR REPLACE INTO cache_metadata (key, value) VALUES ('last_cleanup_at', ?)",
                (datetime.now(UTC).isoformat(),),
            )
            await self._db.commit()
        except aiosqlite.Error:
            log.warning("cache_metadata_write_error", exc_info=True)

    async def cleanup_expired(self) -> None:
        """Delete expired entries. Non-fatal on failure."""
        try:
            cursor = await self._db.execute(
                "DELETE FROM kv_cache WHERE expires_at <= ?",
                (datetime.now(UTC).isoformat(),),
            )
            deleted = cursor.rowcount
            await self._db.commit()
            log.info("cache_cleanup_complete", backend="sqlite", deleted=deleted)
        except aiosqlite.Error:
            log.warning("cache_cleanup_error", exc_info=True)
