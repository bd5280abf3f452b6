"""
Main cache orchestration over the memory and database tiers.
"""
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, Optional, Tuple

from minefolio.errors import MalformedCachedPayload
from .coalescer import RequestCoalescer
from .core import CacheMeta, CacheSource, CacheTier
from .stores import CacheStore

logger = logging.getLogger("cache.manager")


class PayloadCodec:
    """
    Converts values to and from the JSON shape a store can hold.

    decode must raise MalformedCachedPayload (or KeyError/TypeError/
    ValueError, which are wrapped) when a stored value has the wrong shape.
    """

    def __init__(
        self,
        encode: Callable[[Any], Any],
        decode: Callable[[Any], Any],
    ):
        self.encode = encode
        self.decode = decode


def list_codec(record_cls) -> PayloadCodec:
    """Codec for a list of records exposing to_dict()/from_dict()."""
    return PayloadCodec(
        encode=lambda items: [item.to_dict() for item in items],
        decode=lambda data: [record_cls.from_dict(item) for item in data],
    )


class CacheManager:
    """
    Main cache orchestration with:
    - Two interchangeable tiers behind one get_or_fetch call
    - Request coalescing for concurrent misses on a key
    - Detached background tasks whose errors are only logged
    - Hit/miss statistics
    """

    def __init__(
        self,
        memory_store: CacheStore,
        database_store: Optional[CacheStore] = None,
        max_background_workers: int = 4,
        coalesce_timeout: float = 30.0,
        clock: Callable[[], float] = time.time,
    ):
        """
        Args:
            memory_store: Process-local tier
            database_store: Persistent tier (falls back to memory when absent)
            max_background_workers: Thread pool size for detached refreshes
            coalesce_timeout: Timeout for waiting on coalesced requests
            clock: Time source shared with the stores
        """
        self._clock = clock
        self._stores: Dict[CacheTier, CacheStore] = {
            CacheTier.MEMORY: memory_store,
            CacheTier.DATABASE: database_store or memory_store,
        }
        self._coalescer = RequestCoalescer(timeout=coalesce_timeout)

        # Background refresh
        self._background_pool = ThreadPoolExecutor(
            max_workers=max_background_workers,
            thread_name_prefix="cache-refresh",
        )
        self._running: set = set()
        self._running_lock = threading.Lock()

        # Stats tracking
        self._stats_lock = threading.Lock()
        self._stats = {
            "hits": 0,
            "misses": 0,
            "malformed": 0,
            "background_runs": 0,
            "background_failures": 0,
        }

    def store_for(self, tier: CacheTier) -> CacheStore:
        return self._stores[tier]

    def get_or_fetch(
        self,
        cache_key: str,
        fetch_fn: Callable[[], Any],
        ttl_seconds: float,
        tier: CacheTier = CacheTier.MEMORY,
        codec: Optional[PayloadCodec] = None,
        should_store: Optional[Callable[[Any], bool]] = None,
    ) -> Tuple[Any, CacheMeta]:
        """
        Get data from cache or fetch from upstream.

        A hit never calls fetch_fn. On a miss, concurrent callers for the
        same key share one fetch_fn call; the result is written back with
        ttl_seconds. Errors from fetch_fn propagate and nothing is stored.

        Args:
            cache_key: Key shared by every caller wanting this data
            fetch_fn: Function to fetch data on a miss
            ttl_seconds: Lifetime of the stored value
            tier: Which store holds the key
            codec: Encoder/decoder when the store needs JSON data
            should_store: Predicate; values it rejects are returned but not cached

        Returns:
            (data, cache_meta) tuple
        """
        store = self._stores[tier]
        entry = store.get_entry(cache_key)

        if entry is not None:
            try:
                data = self._decode(cache_key, entry.value, codec)
            except MalformedCachedPayload as e:
                logger.warning(f"{e}; refetching")
                self._bump("malformed")
                store.delete(cache_key)
            else:
                logger.debug(f"CACHE HIT: {cache_key}")
                self._bump("hits")
                return data, CacheMeta(
                    cache_source=CacheSource.FRESH.value,
                    tier=tier.value,
                    ttl_seconds=int(ttl_seconds),
                    age_seconds=entry.age(self._clock()),
                )

        logger.info(f"CACHE MISS: {cache_key}")
        self._bump("misses")

        def fetch_and_store():
            data = fetch_fn()
            if should_store is None or should_store(data):
                try:
                    self._write(store, cache_key, data, ttl_seconds, codec)
                except Exception as e:
                    logger.warning(f"Cache write failed for {cache_key}: {e}")
            return data

        data = self._coalescer.run(cache_key, fetch_and_store)
        return data, CacheMeta(
            cache_source=CacheSource.UPSTREAM.value,
            tier=tier.value,
            ttl_seconds=int(ttl_seconds),
            age_seconds=0,
        )

    def put(
        self,
        cache_key: str,
        data: Any,
        ttl_seconds: float,
        tier: CacheTier = CacheTier.MEMORY,
        codec: Optional[PayloadCodec] = None,
    ) -> None:
        """Write a value directly, e.g. after a scheduled refresh."""
        self._write(self._stores[tier], cache_key, data, ttl_seconds, codec)

    def invalidate(self, cache_key: str, tier: CacheTier = CacheTier.MEMORY) -> bool:
        """
        Invalidate a specific cache entry.

        Returns:
            True if entry was found and removed
        """
        removed = self._stores[tier].delete(cache_key)
        if removed:
            logger.info(f"Invalidated cache: {cache_key}")
        return removed

    def run_in_background(self, task_key: str, task: Callable[[], Any]) -> bool:
        """
        Start task on the background pool without waiting for it.

        At most one task per task_key runs at a time. Failures are logged
        and never reach the caller that triggered the task.

        Returns:
            False if a task with this key is already running
        """
        with self._running_lock:
            if task_key in self._running:
                logger.debug(f"Already running in background: {task_key}")
                return False
            self._running.add(task_key)

        def detached():
            try:
                logger.debug(f"Background task started: {task_key}")
                task()
                self._bump("background_runs")
            except Exception as e:
                self._bump("background_failures")
                logger.warning(f"Background task failed: {task_key} - {e}")
            finally:
                with self._running_lock:
                    self._running.discard(task_key)

        self._background_pool.submit(detached)
        return True

    @staticmethod
    def _decode(cache_key: str, value: Any, codec: Optional[PayloadCodec]) -> Any:
        if codec is None:
            return value
        try:
            return codec.decode(value)
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise MalformedCachedPayload(cache_key, repr(e)) from e

    def _write(self, store, cache_key, data, ttl_seconds, codec) -> None:
        value = codec.encode(data) if codec else data
        store.set(cache_key, value, ttl_seconds)

    def _bump(self, stat: str) -> None:
        with self._stats_lock:
            self._stats[stat] += 1

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        with self._stats_lock:
            stats = dict(self._stats)
        total = stats["hits"] + stats["misses"]
        stats["hit_rate_percent"] = round(stats["hits"] / total * 100, 1) if total else 0
        stats["coalescer"] = self._coalescer.get_stats()
        with self._running_lock:
            stats["background_running"] = sorted(self._running)
        return stats
