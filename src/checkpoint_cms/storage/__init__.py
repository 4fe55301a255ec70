"""
Storage components for the checkpoint engine.

This package provides:
- The aiosqlite database wrapper
- The live content store boundary and its SQLite implementation
- Snapshot caching
- Snapshot blob encoding
"""

from .database import Database
from .content_store import ContentStore, SQLiteContentStore, TOMBSTONE
from .cache import LRUCache, SnapshotCache, CacheStats, CacheEntry
from .codec import SnapshotCodec

__all__ = [
    'Database',
    'ContentStore',
    'SQLiteContentStore',
    'TOMBSTONE',
    'LRUCache',
    'SnapshotCache',
    'CacheStats',
    'CacheEntry',
    'SnapshotCodec',
]
