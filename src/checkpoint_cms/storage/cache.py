"""
Snapshot caching for the checkpoint engine.

This module provides:
- A generic async LRU cache bounded by entry count and memory
- Cache statistics
- ``SnapshotCache``, the (context, number) keyed layer used by restores
"""

import asyncio
from typing import Optional, Any, Callable, Awaitable, Generic, Hashable, Iterable, List, Tuple, TypeVar
from dataclasses import dataclass, field
from datetime import datetime
from collections import OrderedDict
import pickle

from ..models import Snapshot, canonical_json
from ..utils.logging import get_logger
from ..utils.errors import CacheError

logger = get_logger("checkpoint-cms.storage.cache")

T = TypeVar('T')


@dataclass
class CacheEntry(Generic[T]):
    """Single cache entry with metadata."""
    key: Hashable
    value: T
    created_at: datetime = field(default_factory=datetime.utcnow)
    accessed_at: datetime = field(default_factory=datetime.utcnow)
    access_count: int = 0
    size_bytes: int = 0

    def touch(self) -> None:
        """Update access time and count."""
        self.accessed_at = datetime.utcnow()
        self.access_count += 1


@dataclass
class CacheStats:
    """Cache statistics."""
    hits: int = 0
    misses: int = 0
    evictions: int = 0
    invalidations: int = 0
    total_size_bytes: int = 0
    entry_count: int = 0

    @property
    def hit_rate(self) -> float:
        """Calculate cache hit rate."""
        total = self.hits + self.misses
        return self.hits / total if total > 0 else 0.0

    def to_dict(self) -> dict:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
            "invalidations": self.invalidations,
            "total_size_bytes": self.total_size_bytes,
            "entry_count": self.entry_count,
            "hit_rate": self.hit_rate,
        }


class LRUCache(Generic[T]):
    """LRU cache bounded by entry count and estimated memory."""

    def __init__(
        self,
        max_size: int = 1000,
        max_memory_mb: int = 100,
        eviction_callback: Optional[Callable[[Hashable, T], None]] = None
    ):
        """
        Initialize LRU cache.

        Args:
            max_size: Maximum number of entries
            max_memory_mb: Maximum memory usage in MB
            eviction_callback: Callback when entry is evicted
        """
        self.max_size = max_size
        self.max_memory_bytes = max_memory_mb * 1024 * 1024
        self.eviction_callback = eviction_callback

        self._cache: 'OrderedDict[Hashable, CacheEntry[T]]' = OrderedDict()
        self._stats = CacheStats()
        self._lock = asyncio.Lock()

    async def get(self, key: Hashable) -> Optional[T]:
        """
        Get value from cache.

        Args:
            key: Cache key

        Returns:
            Cached value or None
        """
        async with self._lock:
            entry = self._cache.get(key)

            if entry is None:
                self._stats.misses += 1
                return None

            self._cache.move_to_end(key)
            entry.touch()

            self._stats.hits += 1
            return entry.value

    async def put(self, key: Hashable, value: T, size_bytes: Optional[int] = None) -> None:
        """
        Put value in cache.

        Args:
            key: Cache key
            value: Value to cache
            size_bytes: Size of value in bytes
        """
        async with self._lock:
            if size_bytes is None:
                size_bytes = self._estimate_size(value)

            if size_bytes > self.max_memory_bytes:
                raise CacheError(f"Cannot fit entry of {size_bytes} bytes in cache")

            if key in self._cache:
                self._remove_entry(key)

            self._ensure_space(size_bytes)

            self._cache[key] = CacheEntry(key=key, value=value, size_bytes=size_bytes)
            self._stats.entry_count += 1
            self._stats.total_size_bytes += size_bytes

    async def remove(self, key: Hashable) -> bool:
        """
        Remove entry from cache.

        Returns:
            True if removed, False if not found
        """
        async with self._lock:
            removed = self._remove_entry(key)
            if removed:
                self._stats.invalidations += 1
            return removed

    async def remove_where(self, predicate: Callable[[Hashable], bool]) -> int:
        """Remove every entry whose key matches ``predicate``."""
        async with self._lock:
            keys = [key for key in self._cache if predicate(key)]
            for key in keys:
                self._remove_entry(key)
            self._stats.invalidations += len(keys)
            return len(keys)

    async def clear(self) -> None:
        """Clear all cache entries."""
        async with self._lock:
            self._cache.clear()
            self._stats = CacheStats()

    def __contains__(self, key: Hashable) -> bool:
        return key in self._cache

    def __len__(self) -> int:
        return len(self._cache)

    def keys(self) -> List[Hashable]:
        return list(self._cache.keys())

    def _remove_entry(self, key: Hashable, evicted: bool = False) -> bool:
        """Remove single entry."""
        if key not in self._cache:
            return False

        entry = self._cache.pop(key)
        self._stats.total_size_bytes -= entry.size_bytes
        self._stats.entry_count -= 1

        if evicted:
            self._stats.evictions += 1
            if self.eviction_callback:
                try:
                    self.eviction_callback(key, entry.value)
                except Exception as e:
                    logger.error("eviction_callback_error", key=str(key), error=str(e))

        return True

    def _ensure_space(self, needed_bytes: int) -> None:
        """Ensure space for new entry by evicting if needed."""
        while len(self._cache) >= self.max_size:
            self._remove_entry(next(iter(self._cache)), evicted=True)

        while self._cache and self._stats.total_size_bytes + needed_bytes > self.max_memory_bytes:
            self._remove_entry(next(iter(self._cache)), evicted=True)

    def _estimate_size(self, value: Any) -> int:
        """Estimate size of value in bytes."""
        try:
            return len(pickle.dumps(value))
        except (pickle.PicklingError, TypeError, AttributeError):
            return len(str(value))

    def get_stats(self) -> CacheStats:
        """Get cache statistics."""
        return self._stats


SnapshotLoader = Callable[[str, int], Awaitable[Snapshot]]


class SnapshotCache:
    """
    Bounded cache of version snapshots keyed by ``(context, number)``.

    History is immutable, so entries stay valid until their version is
    deleted. Concurrent loads of the same key may both hit the loader; the
    last ``put`` wins with an identical value.
    """

    def __init__(self, max_entries: int = 64, max_size_mb: int = 64, enabled: bool = True):
        self.enabled = enabled
        self._lru: LRUCache[Snapshot] = LRUCache(max_size=max_entries, max_memory_mb=max_size_mb)

    async def get(self, context: str, number: int) -> Optional[Snapshot]:
        if not self.enabled:
            return None
        return await self._lru.get((context, number))

    async def put(self, context: str, number: int, snapshot: Snapshot) -> None:
        if not self.enabled:
            return
        size = len(canonical_json(snapshot.canonical_payload()).encode("utf-8"))
        try:
            await self._lru.put((context, number), snapshot, size_bytes=size)
        except CacheError as e:
            logger.warning(
                "snapshot_not_cached",
                context=context,
                number=number,
                size_bytes=size,
                error=str(e)
            )

    async def fetch(self, context: str, number: int, loader: SnapshotLoader) -> Tuple[Snapshot, bool]:
        """
        Return ``(snapshot, from_cache)``, loading and caching on a miss.

        Loader errors propagate and nothing is cached.
        """
        cached = await self.get(context, number)
        if cached is not None:
            return cached, True

        snapshot = await loader(context, number)
        await self.put(context, number, snapshot)
        return snapshot, False

    async def get_or_load(self, context: str, number: int, loader: SnapshotLoader) -> Snapshot:
        snapshot, _ = await self.fetch(context, number, loader)
        return snapshot

    async def invalidate(self, context: str, numbers: Iterable[int]) -> int:
        """Drop specific versions of a context."""
        wanted = {(context, n) for n in numbers}
        count = await self._lru.remove_where(lambda key: key in wanted)
        if count:
            logger.debug("snapshot_cache_invalidated", context=context, count=count)
        return count

    async def invalidate_context(self, context: str) -> int:
        """Drop every cached version of a context."""
        count = await self._lru.remove_where(lambda key: key[0] == context)
        logger.debug("snapshot_cache_context_cleared", context=context, count=count)
        return count

    def contains(self, context: str, number: int) -> bool:
        return (context, number) in self._lru

    def cached_numbers(self, context: str) -> List[int]:
        return sorted(key[1] for key in self._lru.keys() if key[0] == context)

    def get_stats(self) -> CacheStats:
        return self._lru.get_stats()
