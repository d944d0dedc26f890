"""
CacheStore - Cache-aside store for upstream API responses.

Features:
- Deterministic cache keys from (domain, endpoint, params)
- Per-entry TTL chosen from the endpoint name
- Two-phase reads: local snapshot first, persistent store second
- Batched maintenance: expiry sweep, full clear, pattern invalidation
- Best-effort semantics: every failure degrades to a miss or a dropped write
"""

import json
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

from loguru import logger
from pydantic import TypeAdapter
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from scorehub.datastore.repositories import CacheEntryRepository
from scorehub.settings import global_settings
from scorehub.utils import now_ms

CACHE_VERSION = 1

SECOND_MS = 1000
MINUTE_MS = 60 * SECOND_MS
HOUR_MS = 60 * MINUTE_MS

# Endpoint substring -> TTL, first match wins
CACHE_DURATIONS: tuple[tuple[str, int], ...] = (
    ("live", 30 * SECOND_MS),
    ("today", 5 * MINUTE_MS),
    ("date", HOUR_MS),
    ("fixtures", HOUR_MS),
    ("standings", 30 * MINUTE_MS),
    ("scorers", 30 * MINUTE_MS),
    ("statistics", HOUR_MS),
    ("team", 24 * HOUR_MS),
)
DEFAULT_CACHE_DURATION = 5 * MINUTE_MS

_KEY_SEPARATORS = re.compile(r"[\s/\\]")


class ReadSource(str, Enum):
    """Where a cache read looks."""

    CACHE_FIRST = "CACHE_FIRST"  # local snapshot only, works offline
    SERVER_FIRST = "SERVER_FIRST"  # persistent store, refreshes the snapshot


@dataclass
class CacheEntry:
    """A single cache entry with metadata. Timestamps are epoch milliseconds."""

    key: str
    data: str
    timestamp: int
    expires_at: int
    version: int = CACHE_VERSION

    def is_expired(self, now: int) -> bool:
        """Valid only while now < expires_at."""
        return now >= self.expires_at

    @property
    def size_bytes(self) -> int:
        return len(self.data.encode("utf-8"))


@dataclass
class CacheStats:
    """Cache statistics."""

    total_entries: int = 0
    valid_entries: int = 0
    expired_entries: int = 0
    total_size_bytes: int = 0
    last_checked: int = 0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "total_entries": self.total_entries,
            "valid_entries": self.valid_entries,
            "expired_entries": self.expired_entries,
            "total_size_bytes": self.total_size_bytes,
            "last_checked": self.last_checked,
        }


def generate_cache_key(
    domain: str, endpoint: str, params: dict[str, Any] | None = None
) -> str:
    """Build an order-independent key from domain, endpoint and params."""
    parts = [domain, endpoint]
    if params:
        parts.extend(
            f"{k}={v}" for k, v in sorted(params.items(), key=lambda kv: str(kv[0]))
        )
    return _KEY_SEPARATORS.sub("_", "_".join(parts).lower())


def get_cache_duration(endpoint: str) -> int:
    """TTL in milliseconds for an endpoint name."""
    name = endpoint.lower()
    for fragment, duration in CACHE_DURATIONS:
        if fragment in name:
            return duration
    return DEFAULT_CACHE_DURATION


class CacheStore:
    """
    Cache-aside store backed by a SQL table, fronted by a local snapshot.

    Usage:
        store = CacheStore(session_factory)
        key = store.generate_cache_key("football", "live", {"league": 39})

        fixtures = await store.get_cached_data_with_fallback(key, list[Fixture])
        if fixtures is None:
            fixtures = await fetch_fixtures()
            await store.cache_data(key, fixtures, store.get_cache_duration("live"))
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Callable[[], int] = now_ms,
        batch_size: int | None = None,
        debug: bool | None = None,
    ):
        self._session_factory = session_factory
        self._clock = clock
        self._batch_size = max(1, batch_size or global_settings.cache_batch_size)
        self._debug = global_settings.cache_debug if debug is None else debug
        self._local: dict[str, CacheEntry] = {}

    generate_cache_key = staticmethod(generate_cache_key)
    get_cache_duration = staticmethod(get_cache_duration)

    async def cache_data(
        self, key: str, payload: Any, ttl: int = DEFAULT_CACHE_DURATION
    ) -> bool:
        """
        Store a payload for `ttl` milliseconds.

        Returns:
            True if the entry reached the persistent store
        """
        try:
            data = self._serialize(payload)
        except Exception as e:
            logger.warning(f"[CacheStore] Failed to serialize payload for {key}: {e}")
            return False

        now = self._clock()
        entry = CacheEntry(
            key=key,
            data=data,
            timestamp=now,
            expires_at=now + max(0, ttl),
        )
        self._local[key] = entry

        try:
            async with self._session_factory() as session:
                async with session.begin():
                    await CacheEntryRepository(session).put(
                        key=entry.key,
                        data=entry.data,
                        timestamp=entry.timestamp,
                        expires_at=entry.expires_at,
                        version=entry.version,
                    )
        except Exception as e:
            logger.warning(f"[CacheStore] Failed to cache data for {key}: {e}")
            return False

        self._log(f"SET: {key[:50]} (TTL: {ttl / 1000:.0f}s)")
        return True

    async def get_cached_data(
        self,
        key: str,
        type_: Any = None,
        source: ReadSource = ReadSource.CACHE_FIRST,
    ) -> Any:
        """
        Read a valid entry.

        Args:
            key: Cache key
            type_: Type to validate the payload into, raw JSON value if None
            source: Local snapshot or persistent store

        Returns:
            The payload, or None on miss, expiry, or any read error
        """
        try:
            if source == ReadSource.SERVER_FIRST:
                entry = await self._read_store(key)
            else:
                entry = self._local.get(key)
        except Exception as e:
            logger.warning(f"[CacheStore] Failed to read {key}: {e}")
            return None

        if entry is None:
            self._log(f"MISS ({source.value}): {key[:50]}")
            return None

        now = self._clock()
        if entry.is_expired(now):
            self._log(f"EXPIRED: {key[:50]}")
            await self._purge_expired(key, now)
            return None

        try:
            value = self._deserialize(entry.data, type_)
        except Exception as e:
            logger.warning(f"[CacheStore] Invalid cache entry for {key}: {e}")
            return None

        self._log(f"HIT ({source.value}): {key[:50]}")
        return value

    async def get_cached_data_with_fallback(self, key: str, type_: Any = None) -> Any:
        """Local snapshot first, then the persistent store."""
        value = await self.get_cached_data(key, type_, ReadSource.CACHE_FIRST)
        if value is not None:
            return value
        return await self.get_cached_data(key, type_, ReadSource.SERVER_FIRST)

    async def delete_cached_data(self, key: str) -> bool:
        """Delete one entry. Returns True if the persistent store had it."""
        self._local.pop(key, None)
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    deleted = await CacheEntryRepository(session).delete(key)
        except Exception as e:
            logger.warning(f"[CacheStore] Failed to delete {key}: {e}")
            return False

        if deleted:
            self._log(f"DELETE: {key[:50]}")
        return deleted

    async def clear_expired_cache(self) -> int:
        """Delete every expired entry. Returns the number removed."""
        now = self._clock()
        local_expired = [k for k, e in self._local.items() if e.is_expired(now)]
        for key in local_expired:
            self._local.pop(key, None)

        try:
            async with self._session_factory() as session:
                keys = await CacheEntryRepository(session).expired_keys(now)
            deleted = await self._delete_batched(keys, expired_at=now)
        except Exception as e:
            logger.error(f"[CacheStore] Failed to clear expired cache: {e}")
            return len(local_expired)

        if deleted:
            logger.info(f"Cache sweep removed {deleted} expired entries")
        return deleted

    async def clear_all_cache(self) -> int:
        """Delete every entry. Returns the number removed."""
        local_count = len(self._local)
        self._local.clear()

        try:
            async with self._session_factory() as session:
                keys = await CacheEntryRepository(session).all_keys()
            deleted = await self._delete_batched(keys)
        except Exception as e:
            logger.error(f"[CacheStore] Failed to clear cache: {e}")
            return local_count

        logger.info(f"Cache cleared: {deleted} entries removed")
        return deleted

    async def invalidate_cache_pattern(self, pattern: str) -> int:
        """
        Delete every entry whose key contains `pattern`, case-insensitive.

        Returns:
            Number of entries invalidated
        """
        needle = pattern.lower()
        local_matches = [k for k in self._local if needle in k.lower()]
        for key in local_matches:
            self._local.pop(key, None)

        try:
            async with self._session_factory() as session:
                keys = await CacheEntryRepository(session).keys_matching(pattern)
            deleted = await self._delete_batched(keys)
        except Exception as e:
            logger.error(f"[CacheStore] Failed to invalidate '{pattern}': {e}")
            return len(local_matches)

        if deleted:
            self._log(f"INVALIDATE: {deleted} entries matching '{pattern}'")
        return deleted

    def get_cache_stats(self) -> CacheStats:
        """Snapshot statistics from local state, no store round trip."""
        now = self._clock()
        entries = list(self._local.values())
        expired = sum(1 for e in entries if e.is_expired(now))
        return CacheStats(
            total_entries=len(entries),
            valid_entries=len(entries) - expired,
            expired_entries=expired,
            total_size_bytes=sum(e.size_bytes for e in entries),
            last_checked=now,
        )

    async def _read_store(self, key: str) -> CacheEntry | None:
        """Read from the persistent store and refresh the local snapshot."""
        async with self._session_factory() as session:
            row = await CacheEntryRepository(session).get(key)

        if row is None:
            self._local.pop(key, None)
            return None

        entry = CacheEntry(
            key=row.key,
            data=row.data,
            timestamp=row.timestamp,
            expires_at=row.expires_at,
            version=row.version,
        )
        self._local[key] = entry
        return entry

    async def _purge_expired(self, key: str, now: int) -> None:
        """Drop an expired entry, leaving any fresher copy in the store alone."""
        self._local.pop(key, None)
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    await CacheEntryRepository(session).delete_keys(
                        [key], expired_at=now
                    )
        except Exception as e:
            logger.warning(f"[CacheStore] Failed to purge expired {key}: {e}")

    async def _delete_batched(
        self, keys: list[str], expired_at: int | None = None
    ) -> int:
        """Delete keys in batches of at most `batch_size`."""
        deleted = 0
        for start in range(0, len(keys), self._batch_size):
            batch = keys[start : start + self._batch_size]
            async with self._session_factory() as session:
                async with session.begin():
                    deleted += await CacheEntryRepository(session).delete_keys(
                        batch, expired_at=expired_at
                    )
        return deleted

    @staticmethod
    def _serialize(payload: Any) -> str:
        return TypeAdapter(Any).dump_json(payload).decode("utf-8")

    @staticmethod
    def _deserialize(data: str, type_: Any) -> Any:
        if not data:
            raise ValueError("empty payload")
        if type_ is None:
            return json.loads(data)
        return TypeAdapter(type_).validate_json(data)

    def _log(self, message: str) -> None:
        """Log debug message if debug mode is enabled."""
        if self._debug:
            logger.debug(f"[CacheStore] {message}")
