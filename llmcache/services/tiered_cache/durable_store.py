"""L3 durable cache tier backed by SQLite."""

import asyncio
import os
import re
import time
from typing import Awaitable, Callable, Optional, TypeVar

import aiosqlite

from llmcache.core.errors import CacheConfigError, StorageError
from llmcache.core.logging import get_logger
from llmcache.services.tiered_cache.base import DurableRecord, ICacheTier
from llmcache.services.tiered_cache.codecs import Codec, JsonCodec
from llmcache.services.tiered_cache.types import (
    V,
    CacheAnalyticsEvent,
    CacheOperation,
    CacheStats,
    CacheTier,
    Clock,
    EventListener,
)
from llmcache.services.tiered_cache.utils import estimate_tokens_saved

logger = get_logger(__name__)

R = TypeVar("R")

_TABLE_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class DurableCacheStore(ICacheTier[V]):
    """Persistent cache tier with an explicit expiry column.

    Expired rows are deleted lazily on read and in bulk by
    ``evict_expired``. Every operation is bounded by ``timeout_seconds``;
    I/O errors, timeouts and codec failures are logged and surface as a
    miss, False or 0.

    Usage:
        store = DurableCacheStore("./cache.db", table="cache_entries")
        await store.connect()

        await store.set("key", {"answer": 42}, ttl=3600)
        record = await store.get("key")

        await store.disconnect()
    """

    def __init__(
        self,
        db_path: str,
        table: str = "cache_entries",
        codec: Optional[Codec] = None,
        default_ttl: int = 86400,
        timeout_seconds: float = 2.0,
        clock: Clock = time.time,
        event_listener: Optional[EventListener] = None,
        tier: CacheTier = CacheTier.L3
    ):
        """Initialize the durable store.

        Args:
            db_path: SQLite database path (``:memory:`` for an in-process DB).
            table: Table holding the rows.
            codec: Encode/decode pair for values (JSON by default).
            default_ttl: TTL in seconds when ``set`` gets none.
            timeout_seconds: Upper bound for each store operation.
            clock: Time source in seconds.
            event_listener: Called with every analytics event.
            tier: Tier label used in analytics events.
        """
        if not _TABLE_NAME_RE.match(table):
            raise CacheConfigError(f"Invalid table name: {table!r}", field="table")
        if default_ttl <= 0:
            raise CacheConfigError("default_ttl must be positive", field="default_ttl")
        if timeout_seconds <= 0:
            raise CacheConfigError("timeout_seconds must be positive", field="timeout_seconds")

        self.db_path = db_path
        self.table = table
        self.codec: Codec = codec or JsonCodec()
        self.default_ttl = default_ttl
        self.timeout_seconds = timeout_seconds
        self.tier = tier
        self._clock = clock
        self._event_listener = event_listener
        self._db: Optional[aiosqlite.Connection] = None
        self._stats = CacheStats()

    @property
    def enabled(self) -> bool:
        """Check if the store is connected."""
        return self._db is not None

    @property
    def stats(self) -> CacheStats:
        """Get store statistics."""
        return self._stats.copy()

    def set_event_listener(self, listener: Optional[EventListener]) -> None:
        self._event_listener = listener

    async def connect(self) -> None:
        """Open the database and create the table if needed.

        A failed connection leaves the store disabled; every operation then
        behaves as a miss.
        """
        if self._db is not None:
            return

        try:
            directory = os.path.dirname(self.db_path)
            if directory and self.db_path != ":memory:":
                os.makedirs(directory, exist_ok=True)

            db = await aiosqlite.connect(self.db_path)
            await db.execute(f"""
                CREATE TABLE IF NOT EXISTS {self.table} (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    ttl_seconds INTEGER NOT NULL,
                    expires_at REAL NOT NULL,
                    hits INTEGER NOT NULL DEFAULT 0,
                    created_at REAL NOT NULL,
                    updated_at REAL NOT NULL
                )
            """)
            await db.execute(
                f"CREATE INDEX IF NOT EXISTS idx_{self.table}_expires_at "
                f"ON {self.table}(expires_at)"
            )
            await db.commit()
            self._db = db
            logger.info(f"Durable cache connected: {self.db_path} ({self.table})")
        except Exception as e:
            logger.error(f"Failed to connect durable cache at {self.db_path}: {e}")
            self._db = None

    async def disconnect(self) -> None:
        """Close the database connection."""
        if self._db is None:
            return

        db = self._db
        self._db = None
        try:
            await db.close()
            logger.info(f"Durable cache disconnected: {self.db_path} ({self.table})")
        except Exception as e:
            logger.error(f"Error closing durable cache {self.db_path}: {e}")

    # =========================================================================
    # Public operations
    # =========================================================================

    async def get(self, key: str) -> Optional[DurableRecord[V]]:
        """Get a live record and increment its hit counter."""
        if not self.enabled:
            return None

        return await self._guard(
            "get", key, lambda: self._get(key), None,
            on_error=lambda: self._record_failed_read(key)
        )

    async def set(self, key: str, value: V, ttl: Optional[int] = None) -> bool:
        """Upsert value, TTL and expiry."""
        if not self.enabled:
            return False

        ttl_seconds = self.default_ttl if ttl is None else int(ttl)
        if ttl_seconds <= 0:
            logger.warning(f"Rejected durable set for key {key}: non-positive TTL {ttl_seconds}")
            return False

        return await self._guard("set", key, lambda: self._set(key, value, ttl_seconds), False)

    async def delete(self, key: str) -> bool:
        """Delete a row."""
        if not self.enabled:
            return False
        return await self._guard("delete", key, lambda: self._delete(key), False)

    async def peek(self, key: str) -> Optional[V]:
        """Read a live value without touching hits or statistics."""
        if not self.enabled:
            return None
        return await self._guard("peek", key, lambda: self._peek(key), None)

    async def has(self, key: str) -> bool:
        """Check if a live row exists, deleting it if expired."""
        if not self.enabled:
            return False
        return await self._guard("has", key, lambda: self._has(key), False)

    async def clear(self) -> bool:
        """Delete every row."""
        if not self.enabled:
            return True
        return await self._guard("clear", None, self._clear, False)

    async def evict_expired(self) -> int:
        """Range-delete rows whose expiry has passed."""
        if not self.enabled:
            return 0
        return await self._guard("evict_expired", None, self._evict_expired, 0)

    async def count(self) -> int:
        """Count live rows."""
        if not self.enabled:
            return 0
        return await self._guard("count", None, self._count, 0)

    def reset_stats(self) -> None:
        self._stats.reset()

    # =========================================================================
    # SQL implementations (run under _guard)
    # =========================================================================

    async def _get(self, key: str) -> Optional[DurableRecord[V]]:
        async with self._db.execute(
            f"SELECT value, ttl_seconds, expires_at, hits, created_at, updated_at "
            f"FROM {self.table} WHERE key = ?",
            (key,)
        ) as cursor:
            row = await cursor.fetchone()

        if row is None:
            self._stats.record_miss()
            self._emit(CacheOperation.MISS, key)
            return None

        raw_value, ttl_seconds, expires_at, hits, created_at, updated_at = row
        now = self._clock()

        if now >= expires_at:
            await self._db.execute(f"DELETE FROM {self.table} WHERE key = ?", (key,))
            await self._db.commit()
            self._stats.record_expiration()
            self._stats.record_miss()
            self._emit(CacheOperation.DELETE, key)
            self._emit(CacheOperation.MISS, key)
            return None

        value = self.codec.decode(raw_value)

        await self._db.execute(
            f"UPDATE {self.table} SET hits = hits + 1 WHERE key = ?", (key,)
        )
        await self._db.commit()

        tokens_saved = estimate_tokens_saved(value)
        self._stats.record_hit(tokens_saved)
        self._emit(CacheOperation.HIT, key, tokens_saved=tokens_saved or None)

        return DurableRecord(
            key=key,
            value=value,
            ttl_seconds=ttl_seconds,
            expires_at=expires_at,
            hits=hits + 1,
            created_at=created_at,
            updated_at=updated_at,
        )

    async def _set(self, key: str, value: V, ttl_seconds: int) -> bool:
        serialized = self.codec.encode(value)
        now = self._clock()

        await self._db.execute(
            f"""
            INSERT INTO {self.table}
                (key, value, ttl_seconds, expires_at, hits, created_at, updated_at)
            VALUES (?, ?, ?, ?, 0, ?, ?)
            ON CONFLICT(key) DO UPDATE SET
                value = excluded.value,
                ttl_seconds = excluded.ttl_seconds,
                expires_at = excluded.expires_at,
                created_at = excluded.created_at,
                updated_at = excluded.updated_at
            """,
            (key, serialized, ttl_seconds, now + ttl_seconds, now, now)
        )
        await self._db.commit()

        self._stats.record_set()
        self._emit(CacheOperation.SET, key, ttl=ttl_seconds, size=len(serialized))
        return True

    async def _delete(self, key: str) -> bool:
        cursor = await self._db.execute(f"DELETE FROM {self.table} WHERE key = ?", (key,))
        await self._db.commit()

        deleted = cursor.rowcount > 0
        await cursor.close()
        if deleted:
            self._stats.record_delete()
            self._emit(CacheOperation.DELETE, key)
        return deleted

    async def _peek(self, key: str) -> Optional[V]:
        async with self._db.execute(
            f"SELECT value, expires_at FROM {self.table} WHERE key = ?", (key,)
        ) as cursor:
            row = await cursor.fetchone()

        if row is None or self._clock() >= row[1]:
            return None
        return self.codec.decode(row[0])

    async def _has(self, key: str) -> bool:
        async with self._db.execute(
            f"SELECT expires_at FROM {self.table} WHERE key = ?", (key,)
        ) as cursor:
            row = await cursor.fetchone()

        if row is None:
            return False

        if self._clock() >= row[0]:
            await self._db.execute(f"DELETE FROM {self.table} WHERE key = ?", (key,))
            await self._db.commit()
            self._stats.record_expiration()
            self._emit(CacheOperation.DELETE, key)
            return False

        return True

    async def _clear(self) -> bool:
        await self._db.execute(f"DELETE FROM {self.table}")
        await self._db.commit()
        logger.info(f"Cleared durable cache table {self.table}")
        return True

    async def _evict_expired(self) -> int:
        cursor = await self._db.execute(
            f"DELETE FROM {self.table} WHERE expires_at <= ?", (self._clock(),)
        )
        await self._db.commit()

        evicted = max(cursor.rowcount, 0)
        await cursor.close()
        self._stats.expirations += evicted
        if evicted:
            logger.debug(f"Evicted {evicted} expired rows from {self.table}")
        return evicted

    async def _count(self) -> int:
        async with self._db.execute(
            f"SELECT COUNT(*) FROM {self.table} WHERE expires_at > ?", (self._clock(),)
        ) as cursor:
            row = await cursor.fetchone()
        return row[0] if row else 0

    # =========================================================================
    # Failure isolation
    # =========================================================================

    async def _guard(
        self,
        operation: str,
        key: Optional[str],
        action: Callable[[], Awaitable[R]],
        default: R,
        on_error: Optional[Callable[[], None]] = None
    ) -> R:
        """Run a store operation with a timeout, converting failures to ``default``."""
        try:
            return await asyncio.wait_for(action(), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            error = StorageError(
                f"Durable {operation} timed out after {self.timeout_seconds}s",
                operation=operation,
                key=key,
                timed_out=True
            )
        except Exception as e:
            error = StorageError(
                f"Durable {operation} failed: {e}",
                operation=operation,
                key=key
            )

        logger.error(f"{error.message} (key={key}, table={self.table})")
        self._stats.record_error()
        if on_error is not None:
            on_error()
        return default

    def _record_failed_read(self, key: str) -> None:
        self._stats.record_miss()
        self._emit(CacheOperation.MISS, key)

    def _emit(
        self,
        operation: CacheOperation,
        key: str,
        ttl: Optional[int] = None,
        size: Optional[int] = None,
        tokens_saved: Optional[int] = None
    ) -> None:
        if self._event_listener is None:
            return

        self._event_listener(CacheAnalyticsEvent(
            timestamp=self._clock(),
            tier=self.tier,
            operation=operation,
            key=key,
            ttl=ttl,
            size=size,
            tokens_saved=tokens_saved,
        ))
