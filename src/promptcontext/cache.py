"""SQLite context-bundle cache with TTL, size accounting and eviction.

Every ``aiosqlite.Error`` is re-raised as ``StoreUnavailable`` so callers can
tell an infrastructure failure apart from a plain miss. The assembler treats
both the same way (the store is an optimisation, never a correctness
dependency) but logs the former.

Timestamps are stored as ISO-8601 UTC strings with fixed microsecond
precision, so lexical order in SQL matches chronological order.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import aiosqlite
import structlog

from promptcontext.errors import StoreUnavailable
from promptcontext.models.cache import CacheEntry
from promptcontext.models.context import ContextBundle

log = structlog.get_logger()

_CREATE_CONTEXT_TABLE = """
CREATE TABLE IF NOT EXISTS context_cache (
    key         TEXT PRIMARY KEY,
    payload     TEXT NOT NULL,
    created_at  TEXT NOT NULL,
    expires_at  TEXT NOT NULL,
    size_bytes  INTEGER NOT NULL,
    hit_count   INTEGER NOT NULL DEFAULT 0
)
"""

_CREATE_CONTEXT_INDEX = (
    "CREATE INDEX IF NOT EXISTS idx_context_expires ON context_cache(expires_at)"
)

_CREATE_METADATA_TABLE = """
CREATE TABLE IF NOT EXISTS server_metadata (
    key   TEXT PRIMARY KEY,
    value TEXT NOT NULL
)
"""


def _iso(ts: datetime) -> str:
    return ts.isoformat(timespec="microseconds")


class CacheStore:
    """Durable key → ContextBundle store implementing CacheStoreProtocol."""

    def __init__(self, db: aiosqlite.Connection, *, max_size_bytes: int | None = None) -> None:
        self._db = db
        self._max_size_bytes = max_size_bytes

    async def init_db(self) -> None:
        """Create tables and set WAL mode. Called once at startup."""
        try:
            await self._db.execute("PRAGMA journal_mode = WAL")
            await self._db.execute(_CREATE_CONTEXT_TABLE)
            await self._db.execute(_CREATE_CONTEXT_INDEX)
            await self._db.execute(_CREATE_METADATA_TABLE)
            await self._db.commit()
        except aiosqlite.Error as exc:
            raise StoreUnavailable("Failed to initialise context cache") from exc

    # ------------------------------------------------------------------
    # Entries
    # ------------------------------------------------------------------

    async def get(self, key: str) -> CacheEntry | None:
        """Read an entry. Returns ``None`` on a miss or when the entry has expired."""
        try:
            cursor = await self._db.execute(
                "SELECT key, payload, created_at, expires_at, size_bytes, hit_count "
                "FROM context_cache WHERE key = ?",
                (key,),
            )
            row = await cursor.fetchone()
            if row is None:
                return None

            expires_at = datetime.fromisoformat(row[3])
            if datetime.now(UTC) >= expires_at:
                return None

            await self._db.execute(
                "UPDATE context_cache SET hit_count = hit_count + 1 WHERE key = ?", (key,)
            )
            await self._db.commit()

            return CacheEntry(
                key=row[0],
                bundle=ContextBundle.model_validate_json(row[1]),
                created_at=datetime.fromisoformat(row[2]),
                expires_at=expires_at,
                size_bytes=row[4],
                hit_count=row[5] + 1,
            )
        except aiosqlite.Error as exc:
            log.warning("cache_read_error", key=key, exc_info=True)
            raise StoreUnavailable(f"Context cache read failed for {key}") from exc

    async def put(
        self, key: str, bundle: ContextBundle, ttl_seconds: float
    ) -> CacheEntry | None:
        """Write (or overwrite) an entry, then evict if over the size ceiling.

        Returns None when the new entry was itself evicted to make room. It is
        then not durable and must not be promoted to the hot tier.
        """
        if ttl_seconds <= 0:
            raise ValueError(f"ttl_seconds must be positive, got {ttl_seconds}")

        payload = bundle.model_dump_json()
        now = datetime.now(UTC)
        entry = CacheEntry(
            key=key,
            bundle=bundle,
            created_at=now,
            expires_at=now + timedelta(seconds=ttl_seconds),
            size_bytes=len(payload.encode("utf-8")),
        )
        try:
            await self._db.execute(
                "INSERT OR REPLACE INTO context_cache "
                "(key, payload, created_at, expires_at, size_bytes, hit_count) "
                "VALUES (?, ?, ?, ?, ?, 0)",
                (key, payload, _iso(entry.created_at), _iso(entry.expires_at), entry.size_bytes),
            )
            await self._db.commit()
        except aiosqlite.Error as exc:
            log.warning("cache_write_error", key=key, exc_info=True)
            raise StoreUnavailable(f"Context cache write failed for {key}") from exc

        if self._max_size_bytes is not None:
            evicted = await self._evict(self._max_size_bytes)
            if key in evicted:
                log.info("cache_put_evicted", key=key, size_bytes=entry.size_bytes)
                return None
        return entry

    async def invalidate_prefix(self, prefix: str) -> int:
        """Delete every entry whose key starts with ``prefix``. Returns rows deleted."""
        try:
            cursor = await self._db.execute(
                "DELETE FROM context_cache WHERE substr(key, 1, ?) = ?",
                (len(prefix), prefix),
            )
            deleted = cursor.rowcount
            await self._db.commit()
        except aiosqlite.Error as exc:
            log.warning("cache_invalidate_error", prefix=prefix, exc_info=True)
            raise StoreUnavailable(f"Context cache invalidation failed for {prefix}") from exc
        log.info("cache_invalidated", prefix=prefix, deleted=deleted)
        return deleted

    async def size_bytes(self) -> int:
        try:
            cursor = await self._db.execute("SELECT COALESCE(SUM(size_bytes), 0) FROM context_cache")
            row = await cursor.fetchone()
        except aiosqlite.Error as exc:
            raise StoreUnavailable("Context cache size query failed") from exc
        return int(row[0]) if row is not None else 0

    async def evict_to_size(self, max_bytes: int) -> int:
        """Evict entries oldest-expiry-first until the total size fits ``max_bytes``."""
        return len(await self._evict(max_bytes))

    async def _evict(self, max_bytes: int) -> list[str]:
        total = await self.size_bytes()
        if total <= max_bytes:
            return []
        try:
            cursor = await self._db.execute(
                "SELECT key, size_bytes FROM context_cache ORDER BY expires_at ASC, key ASC"
            )
            rows = await cursor.fetchall()
            doomed: list[str] = []
            for key, size in rows:
                if total <= max_bytes:
                    break
                doomed.append(key)
                total -= size
            await self._db.executemany(
                "DELETE FROM context_cache WHERE key = ?", [(key,) for key in doomed]
            )
            await self._db.commit()
        except aiosqlite.Error as exc:
            log.warning("cache_evict_error", exc_info=True)
            raise StoreUnavailable("Context cache eviction failed") from exc
        log.info("cache_evicted", evicted=len(doomed), size_bytes=total, max_bytes=max_bytes)
        return doomed

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def cleanup_if_due(self, interval_hours: int) -> None:
        """Run cleanup only if interval_hours have elapsed since the last run.

        Reads and writes ``last_cleanup_at`` from the ``server_metadata`` table.
        Falls through to run cleanup if the metadata row is missing or unreadable.
        Non-fatal on failure: this runs from a background scheduler.
        """
        try:
            cursor = await self._db.execute(
                "SELECT value FROM server_metadata WHERE key = 'last_cleanup_at'"
            )
            row = await cursor.fetchone()
            if row is not None:
                last_run = datetime.fromisoformat(row[0])
                if datetime.now(UTC) - last_run < timedelta(hours=interval_hours):
                    log.debug("cache_cleanup_skipped", reason="not_due")
                    return
        except aiosqlite.Error:
            log.warning("cache_metadata_read_error", exc_info=True)

        try:
            await self.cleanup_expired()
        except StoreUnavailable:
            log.warning("cache_cleanup_error", exc_info=True)
            return

        try:
            await self._db.execute(
                "INSERT OR REPLACE INTO server_metadata (key, value) VALUES ('last_cleanup_at', ?)",
                (_iso(datetime.now(UTC)),),
            )
            await self._db.commit()
        except aiosqlite.Error:
            log.warning("cache_metadata_write_error", exc_info=True)

    async def cleanup_expired(self) -> int:
        """Delete every entry past its expiry. Returns rows deleted."""
        try:
            cursor = await self._db.execute(
                "DELETE FROM context_cache WHERE expires_at <= ?", (_iso(datetime.now(UTC)),)
            )
            deleted = cursor.rowcount
            await self._db.commit()
        except aiosqlite.Error as exc:
            raise StoreUnavailable("Context cache cleanup failed") from exc
        log.info("cache_cleanup_complete", deleted=deleted)
        return deleted
