"""
Tiered cache for NetAtlas.

A byte-budgeted in-memory LRU tier in front of a SQLite persistent tier,
with per-dataset-kind TTLs from the invalidation strategy, promotion of
persistent hits into memory, and stale-while-revalidate reads.
"""

import asyncio
import json
import logging
import sqlite3
import time
from collections import OrderedDict
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

from pydantic import BaseModel

from netatlas.config import CacheConfig
from netatlas.normalizer.schemas import DataResult
from netatlas.orchestrator.events import CACHE_REVALIDATED, CacheRevalidatedEvent, EventChannel
from netatlas.orchestrator.invalidation import InvalidationStrategy
from netatlas.utils.exceptions import CacheError
from netatlas.utils.logger import get_cache_logger

logger = logging.getLogger(__name__)
cache_logger = get_cache_logger()

VALUE_TYPE_RESULT = "data_result"
VALUE_TYPE_JSON = "json"


@dataclass(frozen=True)
class CacheEntry:
    """
    A cached value with its timestamps (epoch seconds).

    Entries are never mutated; an access or update replaces the entry.
    accessed_at and size_bytes are only meaningful in the memory tier.
    """

    key: str
    value: Any
    created_at: float
    expires_at: float
    accessed_at: float = 0.0
    size_bytes: int = 0

    def is_expired(self, now: float) -> bool:
        return now > self.expires_at


def _serialize(value: Any) -> tuple[str, str]:
    if isinstance(value, DataResult):
        return VALUE_TYPE_RESULT, value.model_dump_json()
    if isinstance(value, BaseModel):
        return VALUE_TYPE_JSON, value.model_dump_json()
    return VALUE_TYPE_JSON, json.dumps(value, ensure_ascii=False, default=str)


def _deserialize(value_type: str, payload: str) -> Any:
    if value_type == VALUE_TYPE_RESULT:
        return DataResult.model_validate_json(payload)
    return json.loads(payload)


# ========== Memory Tier ==========

class MemoryCache:
    """
    In-memory LRU cache bounded by an estimated byte budget.

    Size is estimated as the JSON length times two (UTF-16 code units).
    Entries larger than the whole budget are rejected rather than
    evicting everything.
    """

    def __init__(
        self,
        max_bytes: Optional[int] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.max_bytes = max_bytes or CacheConfig.MEMORY_MAX_BYTES
        self._clock = clock
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._current_bytes = 0
        self._stats = {
            "hits": 0,
            "misses": 0,
            "evictions": 0,
            "rejections": 0,
        }

    @staticmethod
    def estimate_size(value: Any) -> int:
        return len(_serialize(value)[1]) * 2

    def get_entry(self, key: str) -> Optional[CacheEntry]:
        entry = self._entries.get(key)
        if entry is None:
            self._stats["misses"] += 1
            return None

        now = self._clock()
        if entry.is_expired(now):
            self._remove(key)
            self._stats["misses"] += 1
            logger.debug(f"Memory cache expired: {key}")
            return None

        entry = replace(entry, accessed_at=now)
        self._entries[key] = entry
        self._entries.move_to_end(key)
        self._stats["hits"] += 1
        return entry

    def get(self, key: str) -> Optional[Any]:
        entry = self.get_entry(key)
        return entry.value if entry is not None else None

    def set(self, key: str, value: Any, ttl_seconds: float, created_at: Optional[float] = None) -> bool:
        """
        Store value, evicting least-recently-accessed entries to fit.

        Returns:
            False if the value alone exceeds the byte budget
        """
        size = self.estimate_size(value)
        if size > self.max_bytes:
            self._stats["rejections"] += 1
            logger.warning(
                f"Memory cache rejected oversized entry: {key}",
                extra={"size_bytes": size, "max_bytes": self.max_bytes},
            )
            return False

        if key in self._entries:
            self._remove(key)

        while self._entries and self._current_bytes + size > self.max_bytes:
            oldest_key = next(iter(self._entries))
            self._remove(oldest_key)
            self._stats["evictions"] += 1
            logger.debug(f"Memory cache evicted: {oldest_key}")

        now = self._clock()
        self._entries[key] = CacheEntry(
            key=key,
            value=value,
            created_at=created_at if created_at is not None else now,
            expires_at=now + ttl_seconds,
            accessed_at=now,
            size_bytes=size,
        )
        self._current_bytes += size
        return True

    def _remove(self, key: str) -> None:
        entry = self._entries.pop(key, None)
        if entry is not None:
            self._current_bytes -= entry.size_bytes

    def delete(self, key: str) -> bool:
        if key not in self._entries:
            return False
        self._remove(key)
        return True

    def delete_prefix(self, prefix: str) -> int:
        keys = [key for key in self._entries if key.startswith(prefix)]
        for key in keys:
            self._remove(key)
        return len(keys)

    def clear(self) -> int:
        count = len(self._entries)
        self._entries.clear()
        self._current_bytes = 0
        return count

    def clean_expired(self) -> int:
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired:
            self._remove(key)
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def get_statistics(self) -> dict[str, Any]:
        lookups = self._stats["hits"] + self._stats["misses"]
        return {
            **self._stats,
            "entries": len(self._entries),
            "size_bytes": self._current_bytes,
            "max_bytes": self.max_bytes,
            "hit_rate_pct": round(self._stats["hits"] / lookups * 100, 2) if lookups else 0.0,
            "utilization_pct": round(self._current_bytes / self.max_bytes * 100, 2),
        }


# ========== Persistent Tier ==========

class PersistentCache:
    """
    SQLite-backed cache tier with expiry index and hit statistics.

    Attributes:
        db_path: Path to SQLite database file
        _connection: Active database connection (None if closed)
    """

    def __init__(
        self,
        db_path: Optional[Path] = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the persistent tier.

        Args:
            db_path: Path to SQLite database (defaults to CacheConfig.DB_PATH)
            clock: Time source in epoch seconds
        """
        self.db_path = Path(db_path or CacheConfig.DB_PATH)
        self._clock = clock
        self._connection: Optional[sqlite3.Connection] = None

        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._initialize_database()

        logger.info(f"PersistentCache initialized: db={self.db_path}")

    def _initialize_database(self) -> None:
        try:
            conn = self._get_connection()
            cursor = conn.cursor()

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS cache (
                    cache_key TEXT PRIMARY KEY,
                    value_type TEXT NOT NULL,
                    value TEXT NOT NULL,
                    created_at REAL NOT NULL,
                    expires_at REAL NOT NULL,
                    hit_count INTEGER DEFAULT 0,
                    last_accessed REAL
                )
            """)

            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_expires_at
                ON cache(expires_at)
            """)

            logger.debug("Database schema initialized successfully")

        except sqlite3.Error as e:
            raise CacheError(
                f"Failed to initialize database: {e}",
                operation="initialize",
                db_path=str(self.db_path)
            )

    def _get_connection(self) -> sqlite3.Connection:
        if self._connection is None:
            self._connection = sqlite3.connect(
                str(self.db_path),
                check_same_thread=False,
                isolation_level=None  # Autocommit mode
            )
            self._connection.row_factory = sqlite3.Row

        return self._connection

    def get_entry(self, key: str) -> Optional[CacheEntry]:
        """
        Retrieve an entry if present and not expired.

        Expired rows are deleted on read.

        Raises:
            CacheError: If the read fails
        """
        try:
            cursor = self._get_connection().cursor()
            cursor.execute("""
                SELECT value_type, value, created_at, expires_at, hit_count
                FROM cache
                WHERE cache_key = ?
            """, (key,))
            row = cursor.fetchone()

            if row is None:
                logger.debug(f"Persistent cache miss: {key}")
                return None

            now = self._clock()
            if now > row['expires_at']:
                cursor.execute("DELETE FROM cache WHERE cache_key = ?", (key,))
                logger.debug(f"Persistent cache expired: {key}")
                return None

            cursor.execute("""
                UPDATE cache
                SET hit_count = hit_count + 1,
                    last_accessed = ?
                WHERE cache_key = ?
            """, (now, key))

            return CacheEntry(
                key=key,
                value=_deserialize(row['value_type'], row['value']),
                created_at=row['created_at'],
                expires_at=row['expires_at'],
            )

        except (sqlite3.Error, ValueError) as e:
            raise CacheError(
                f"Failed to read from cache: {e}",
                operation="read",
                cache_key=key
            ) from e

    def get(self, key: str) -> Optional[Any]:
        entry = self.get_entry(key)
        return entry.value if entry is not None else None

    def set(self, key: str, value: Any, ttl_seconds: float, created_at: Optional[float] = None) -> bool:
        """
        Store value with TTL, replacing any existing entry.

        Raises:
            CacheError: If the write fails
        """
        try:
            value_type, payload = _serialize(value)
            now = self._clock()

            self._get_connection().cursor().execute("""
                INSERT OR REPLACE INTO cache (
                    cache_key, value_type, value,
                    created_at, expires_at, hit_count, last_accessed
                ) VALUES (?, ?, ?, ?, ?, 0, NULL)
            """, (
                key,
                value_type,
                payload,
                created_at if created_at is not None else now,
                now + ttl_seconds,
            ))

            logger.debug(f"Persisted: {key} (ttl={ttl_seconds}s)")
            return True

        except (sqlite3.Error, TypeError, ValueError) as e:
            raise CacheError(
                f"Failed to write to cache: {e}",
                operation="write",
                cache_key=key
            ) from e

    def delete(self, key: str) -> bool:
        try:
            cursor = self._get_connection().cursor()
            cursor.execute("DELETE FROM cache WHERE cache_key = ?", (key,))
            return cursor.rowcount > 0
        except sqlite3.Error as e:
            raise CacheError(
                f"Failed to delete cache entry: {e}",
                operation="delete",
                cache_key=key
            ) from e

    def delete_prefix(self, prefix: str) -> int:
        """Delete every entry whose key starts with prefix."""
        escaped = prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        try:
            cursor = self._get_connection().cursor()
            cursor.execute(
                "DELETE FROM cache WHERE cache_key LIKE ? ESCAPE '\\'",
                (escaped + "%",),
            )
            return cursor.rowcount
        except sqlite3.Error as e:
            raise CacheError(
                f"Failed to delete cache entries: {e}",
                operation="delete_prefix",
                cache_key=prefix
            ) from e

    def clear(self) -> int:
        try:
            cursor = self._get_connection().cursor()
            cursor.execute("DELETE FROM cache")
            count = cursor.rowcount
            logger.warning(f"Cleared ALL {count} persistent cache entries")
            return count
        except sqlite3.Error as e:
            raise CacheError(f"Failed to clear cache: {e}", operation="clear") from e

    def clean_expired(self) -> int:
        """
        Remove all expired entries.

        Returns:
            Number of entries removed
        """
        try:
            cursor = self._get_connection().cursor()
            cursor.execute("DELETE FROM cache WHERE expires_at < ?", (self._clock(),))
            deleted_count = cursor.rowcount

            if deleted_count > 0:
                logger.info(f"Cleared {deleted_count} expired cache entries")
            return deleted_count

        except sqlite3.Error as e:
            raise CacheError(
                f"Failed to clear expired entries: {e}",
                operation="clean_expired"
            ) from e

    def get_statistics(self) -> dict[str, Any]:
        try:
            cursor = self._get_connection().cursor()
            now = self._clock()

            cursor.execute("SELECT COUNT(*) as count FROM cache")
            total_entries = cursor.fetchone()['count']

            cursor.execute("SELECT COUNT(*) as count FROM cache WHERE expires_at < ?", (now,))
            expired_entries = cursor.fetchone()['count']

            cursor.execute("SELECT SUM(hit_count) as total_hits FROM cache")
            total_hits = cursor.fetchone()['total_hits'] or 0

            cache_size_bytes = self.db_path.stat().st_size if self.db_path.exists() else 0

            return {
                'total_entries': total_entries,
                'expired_entries': expired_entries,
                'valid_entries': total_entries - expired_entries,
                'total_hits': total_hits,
                'cache_size_bytes': cache_size_bytes,
                'cache_size_mb': round(cache_size_bytes / (1024 * 1024), 2),
                'db_path': str(self.db_path)
            }

        except sqlite3.Error as e:
            raise CacheError(
                f"Failed to retrieve statistics: {e}",
                operation="statistics"
            ) from e

    def close(self) -> None:
        """Close database connection gracefully."""
        if self._connection:
            try:
                self._connection.close()
                self._connection = None
                logger.debug("Cache database connection closed")
            except sqlite3.Error as e:
                logger.error(f"Error closing database connection: {e}")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def __del__(self):
        self.close()

    def __repr__(self) -> str:
        return f"PersistentCache(db_path={self.db_path})"


# ========== Tiered Cache ==========

class TieredCache:
    """
    Memory tier in front of an optional persistent tier.

    Read path: memory, then persistent; persistent hits are promoted
    into memory. Write path: memory always, persistent when persist=True.
    The two writes are not transactional.

    Persistent-tier calls run on a single worker thread so SQLite I/O
    never blocks the event loop and the connection is used serially.
    """

    def __init__(
        self,
        memory: Optional[MemoryCache] = None,
        persistent: Optional[PersistentCache] = None,
        invalidation: Optional[InvalidationStrategy] = None,
        events: Optional[EventChannel] = None,
        clock: Callable[[], float] = time.time,
    ):
        self._clock = clock
        self.memory = memory or MemoryCache(clock=clock)
        self.persistent = persistent
        self.invalidation = invalidation or InvalidationStrategy()
        self.events = events
        self._executor: Optional[ThreadPoolExecutor] = None
        self._revalidating: dict[str, asyncio.Task] = {}
        self._stats = {
            "promotions": 0,
            "revalidations": 0,
            "revalidation_failures": 0,
        }

    async def _run_persistent(self, method: Callable[..., Any], *args: Any) -> Any:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="netatlas-sqlite")
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, lambda: method(*args))

    async def get_entry(self, key: str) -> Optional[CacheEntry]:
        entry = self.memory.get_entry(key)
        if entry is not None:
            return entry

        if self.persistent is None:
            return None

        entry = await self._run_persistent(self.persistent.get_entry, key)
        if entry is None:
            return None

        # Promote with the rule TTL, never outliving the persistent copy
        ttl = min(self.invalidation.get_ttl(key), entry.expires_at - self._clock())
        self.memory.set(key, entry.value, ttl, created_at=entry.created_at)
        self._stats["promotions"] += 1
        cache_logger.debug(f"Promoted persistent entry to memory: {key}", extra={"ttl": ttl})
        return entry

    async def get(self, key: str) -> Optional[Any]:
        entry = await self.get_entry(key)
        return entry.value if entry is not None else None

    async def set(
        self,
        key: str,
        value: Any,
        ttl_seconds: Optional[float] = None,
        persist: bool = True,
    ) -> None:
        """
        Write value to memory and, when persist is True, to the persistent tier.

        Args:
            key: Cache key ("<kind>:<options>")
            value: Value to store
            ttl_seconds: Lifetime; defaults to the retention period of the
                key's invalidation rule
            persist: Also write to the persistent tier

        Raises:
            CacheError: If the persistent write fails (the memory tier
                already holds the value)
        """
        ttl = ttl_seconds if ttl_seconds is not None else self.invalidation.get_retention(key)
        now = self._clock()
        self.memory.set(key, value, ttl, created_at=now)
        if persist and self.persistent is not None:
            await self._run_persistent(self.persistent.set, key, value, ttl, now)

    async def delete(self, key: str) -> bool:
        removed = self.memory.delete(key)
        if self.persistent is not None:
            removed = await self._run_persistent(self.persistent.delete, key) or removed
        return removed

    async def clear(self) -> int:
        count = self.memory.clear()
        if self.persistent is not None:
            count = max(count, await self._run_persistent(self.persistent.clear))
        return count

    async def invalidate_kind(self, kind: str) -> int:
        """Delete every entry of one dataset kind from both tiers."""
        prefix = f"{kind}:"
        count = self.memory.delete_prefix(prefix)
        if self.persistent is not None:
            count = max(count, await self._run_persistent(self.persistent.delete_prefix, prefix))
        cache_logger.info(f"Invalidated {count} cache entries for {kind}")
        return count

    async def clean_expired(self) -> int:
        count = self.memory.clean_expired()
        if self.persistent is not None:
            count += await self._run_persistent(self.persistent.clean_expired)
        return count

    async def stale_while_revalidate(
        self,
        key: str,
        fetcher: Callable[[], Awaitable[Any]],
        persist: bool = True,
    ) -> Any:
        """
        Return cached data immediately, refreshing it in the background
        when older than its TTL.

        On a miss the fetcher is awaited directly and its result cached;
        a failed cache write is logged and the fetched value still
        returned. Background failures are logged and never reach the caller.
        """
        entry = await self.get_entry(key)
        if entry is None:
            value = await fetcher()
            try:
                await self.set(key, value, persist=persist)
            except CacheError as e:
                cache_logger.warning(f"Cache write failed after fetch: {key}", extra={"error": str(e)})
            return value

        self.revalidate_entry(entry, fetcher, persist=persist)
        return entry.value

    def revalidate_entry(
        self,
        entry: CacheEntry,
        fetcher: Callable[[], Awaitable[Any]],
        persist: bool = True,
    ) -> bool:
        """
        Schedule a background refresh of an entry the caller already read,
        if it is older than its TTL and no refresh is running.

        Returns:
            True if a refresh task was started
        """
        key = entry.key
        age = self._clock() - entry.created_at
        if not self.invalidation.should_revalidate(key, age) or key in self._revalidating:
            return False

        task = asyncio.ensure_future(self._background_revalidate(key, fetcher, persist))
        self._revalidating[key] = task
        return True

    async def _background_revalidate(
        self,
        key: str,
        fetcher: Callable[[], Awaitable[Any]],
        persist: bool,
    ) -> None:
        try:
            value = await fetcher()
            await self.set(key, value, persist=persist)
            self._stats["revalidations"] += 1
            cache_logger.info(f"Background revalidation complete: {key}")
            if self.events is not None:
                self.events.emit(CACHE_REVALIDATED, CacheRevalidatedEvent(key=key, data=value))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._stats["revalidation_failures"] += 1
            cache_logger.error(
                f"Background revalidation failed: {key}",
                extra={"key": key, "error": str(e), "error_type": type(e).__name__},
            )
        finally:
            self._revalidating.pop(key, None)

    def is_revalidating(self, key: str) -> bool:
        return key in self._revalidating

    def cancel_revalidations(self) -> int:
        count = len(self._revalidating)
        for task in list(self._revalidating.values()):
            task.cancel()
        self._revalidating.clear()
        return count

    def get_statistics(self) -> dict[str, Any]:
        return {
            "memory": self.memory.get_statistics(),
            "persistent": self.persistent.get_statistics() if self.persistent is not None else None,
            "revalidating": len(self._revalidating),
            **self._stats,
        }

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None
        if self.persistent is not None:
            self.persistent.close()
