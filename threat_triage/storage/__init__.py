"""Storage package initialization."""

from .cache import CacheGateway, MemoryStore, SQLiteStore, build_cache
from .sources import SourceRegistry
from .trends import TrendTracker

__all__ = ['CacheGateway', 'MemoryStore', 'SQLiteStore', 'SourceRegistry', 'TrendTracker', 'build_cache']
