"""
TTL cache backends.

Both stores honour the same contract: a read at or after expiry behaves
exactly like a key that was never set. There is no fail-open path that
returns stale data.
"""
import json
import logging
import threading
import time
from collections import OrderedDict
from typing import Any, Callable, Optional, Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from minefolio.db import upsert
from minefolio.models import ApiCache
from minefolio.utils.helpers import utcnow
from .core import CacheEntry

logger = logging.getLogger("cache.stores")


class _Miss:
    """Sentinel returned by CacheStore.get for absent or expired keys."""

    def __repr__(self):
        return "MISS"

    def __bool__(self):
        return False


MISS = _Miss()


class CacheStore(Protocol):
    """
    Interface for cache backends.

    Implementations:
    - MemoryCacheStore: process-local dict, fastest, lost on restart
    - DatabaseCacheStore: api_cache table, survives restarts
    """

    def get_entry(self, key: str) -> Optional[CacheEntry]:
        """Get the live entry for key, or None on miss."""
        ...

    def get(self, key: str) -> Any:
        """Get the value for key, or MISS."""
        ...

    def set(self, key: str, value: Any, ttl_seconds: float) -> None:
        """Store value under key until now + ttl_seconds."""
        ...

    def delete(self, key: str) -> bool:
        """Remove key. Returns True if something was removed."""
        ...


class MemoryCacheStore:
    """
    Process-local TTL cache with an LRU size bound.

    Expired entries are dropped when read and purged in bulk every
    cleanup_interval seconds. When the store grows past max_entries the
    least recently used entries are evicted.
    """

    def __init__(
        self,
        max_entries: int = 1000,
        cleanup_interval: float = 300,
        clock: Callable[[], float] = time.time,
    ):
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._lock = threading.RLock()
        self._max_entries = max_entries
        self._cleanup_interval = cleanup_interval
        self._clock = clock
        self._last_cleanup = clock()

    def get_entry(self, key: str) -> Optional[CacheEntry]:
        now = self._clock()
        with self._lock:
            self._maybe_cleanup(now)
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.is_expired(now):
                del self._entries[key]
                return None
            self._entries.move_to_end(key)
            return entry

    def get(self, key: str) -> Any:
        entry = self.get_entry(key)
        return MISS if entry is None else entry.value

    def set(self, key: str, value: Any, ttl_seconds: float) -> None:
        now = self._clock()
        with self._lock:
            self._maybe_cleanup(now)
            self._entries[key] = CacheEntry(
                key=key,
                value=value,
                stored_at=now,
                expires_at=now + ttl_seconds,
            )
            self._entries.move_to_end(key)
            while len(self._entries) > self._max_entries:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug(f"Evicted {evicted} (LRU)")

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> int:
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
            return count

    def purge_expired(self) -> int:
        """Drop every expired entry now."""
        now = self._clock()
        with self._lock:
            expired = [k for k, e in self._entries.items() if e.is_expired(now)]
            for key in expired:
                del self._entries[key]
            self._last_cleanup = now
        return len(expired)

    def _maybe_cleanup(self, now: float) -> None:
        if now - self._last_cleanup >= self._cleanup_interval:
            purged = self.purge_expired()
            if purged:
                logger.debug(f"Purged {purged} expired entries")

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class DatabaseCacheStore:
    """
    TTL cache persisted in the api_cache table.

    Values are stored as JSON, so callers must store JSON-compatible data.
    Each write is one upsert statement in its own transaction: concurrent
    writers to a key resolve last-write-wins and a row is never half
    written. Rows with corrupt JSON are treated as misses and removed.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        clock: Callable[[], float] = time.time,
    ):
        self._session_factory = session_factory
        self._clock = clock

    def get_entry(self, key: str) -> Optional[CacheEntry]:
        now = self._clock()
        with self._session_factory() as session:
            row = session.get(ApiCache, key)
            if row is None:
                return None

            if row.expires_at <= now:
                session.delete(row)
                session.commit()
                return None

            try:
                value = json.loads(row.data)
            except (TypeError, ValueError) as e:
                logger.warning(f"Corrupt cached payload for {key}, dropping row: {e}")
                session.delete(row)
                session.commit()
                return None

            return CacheEntry(key=key, value=value, stored_at=row.stored_at, expires_at=row.expires_at)

    def get(self, key: str) -> Any:
        entry = self.get_entry(key)
        return MISS if entry is None else entry.value

    def set(self, key: str, value: Any, ttl_seconds: float) -> None:
        now = self._clock()
        values = {
            "cache_key": key,
            "cache_type": key.split(":", 1)[0],
            "data": json.dumps(value),
            "stored_at": now,
            "expires_at": now + ttl_seconds,
            "updated_at": utcnow(),
        }
        with self._session_factory() as session:
            try:
                upsert(session, ApiCache, values, index_elements=["cache_key"])
                session.commit()
            except SQLAlchemyError:
                session.rollback()
                raise

    def delete(self, key: str) -> bool:
        with self._session_factory() as session:
            deleted = session.query(ApiCache).filter(ApiCache.cache_key == key).delete()
            session.commit()
            return deleted > 0

    def cleanup_expired(self) -> int:
        """Delete expired rows. Returns the number removed."""
        now = self._clock()
        with self._session_factory() as session:
            deleted = session.query(ApiCache).filter(ApiCache.expires_at <= now).delete()
            session.commit()
        return deleted
