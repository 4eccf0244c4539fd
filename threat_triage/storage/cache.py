"""TTL key-value cache with last-known-good fallback."""

import json
import logging
import sqlite3
import time
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from threat_triage.errors import CacheMiss, CacheReadError, CacheWriteError

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 1800

Entry = Tuple[str, Optional[float]]


class MemoryStore:
    """In-process backing store, mainly for tests and single-run CLI use."""

    def __init__(self):
        self._entries: Dict[str, Entry] = {}

    def read(self, key: str) -> Optional[Entry]:
        return self._entries.get(key)

    def write(self, key: str, value: str, expires_at: Optional[float]):
        self._entries[key] = (value, expires_at)

    def delete(self, key: str):
        self._entries.pop(key, None)

    def keys(self, prefix: str = '') -> List[str]:
        return sorted(k for k in self._entries if k.startswith(prefix))


class SQLiteStore:
    """SQLite backing store holding one row per cache key."""

    def __init__(self, db_path: str):
        """
        Initialize store.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _init_db(self):
        """Initialize database schema."""
        conn = sqlite3.connect(self.db_path)
        try:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS cache_entries (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    expires_at REAL,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_cache_expires ON cache_entries(expires_at)")
            conn.commit()
        finally:
            conn.close()

    def read(self, key: str) -> Optional[Entry]:
        try:
            conn = sqlite3.connect(self.db_path)
            try:
                row = conn.execute(
                    "SELECT value, expires_at FROM cache_entries WHERE key = ?", (key,)
                ).fetchone()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise CacheReadError(f"Could not read '{key}' from {self.db_path}: {e}") from e
        return (row[0], row[1]) if row else None

    def write(self, key: str, value: str, expires_at: Optional[float]):
        try:
            conn = sqlite3.connect(self.db_path)
            try:
                conn.execute("""
                    INSERT INTO cache_entries (key, value, expires_at)
                    VALUES (?, ?, ?)
                    ON CONFLICT(key) DO UPDATE SET
                        value = excluded.value,
                        expires_at = excluded.expires_at,
                        updated_at = CURRENT_TIMESTAMP
                """, (key, value, expires_at))
                conn.commit()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise CacheWriteError(f"Could not write '{key}' to {self.db_path}: {e}") from e

    def delete(self, key: str):
        try:
            conn = sqlite3.connect(self.db_path)
            try:
                conn.execute("DELETE FROM cache_entries WHERE key = ?", (key,))
                conn.commit()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise CacheWriteError(f"Could not delete '{key}': {e}") from e

    def keys(self, prefix: str = '') -> List[str]:
        try:
            conn = sqlite3.connect(self.db_path)
            try:
                rows = conn.execute(
                    "SELECT key FROM cache_entries WHERE key LIKE ? ESCAPE '\\' ORDER BY key",
                    (prefix.replace('%', r'\%').replace('_', r'\_') + '%',),
                ).fetchall()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise CacheReadError(f"Could not list keys: {e}") from e
        return [row[0] for row in rows]


class CacheGateway:
    """
    JSON cache client over a backing store.

    Values expire after their TTL and then read as a miss. When the store
    itself fails, the last value successfully read or written for that key
    is returned even if stale; only a key never seen raises.
    """

    def __init__(self, store, default_ttl: int = DEFAULT_TTL_SECONDS,
                 clock: Callable[[], float] = time.time):
        """
        Initialize gateway.

        Args:
            store: Backing store (MemoryStore or SQLiteStore)
            default_ttl: TTL in seconds used when ``put`` is given none
            clock: Source of the current epoch time
        """
        self.store = store
        self.default_ttl = default_ttl
        self.clock = clock
        self._last_good: Dict[str, Any] = {}

    def put(self, key: str, value: Any, ttl_seconds: Optional[int] = None):
        """
        Store a value.

        Args:
            key: Cache key
            value: JSON-serializable value
            ttl_seconds: Lifetime in seconds; 0 means no expiry

        Raises:
            CacheWriteError: If the backing store rejects the write
        """
        ttl = self.default_ttl if ttl_seconds is None else ttl_seconds
        expires_at = self.clock() + ttl if ttl > 0 else None
        self.store.write(key, json.dumps(value, default=str), expires_at)
        self._last_good[key] = value

    def get(self, key: str) -> Any:
        """
        Read a value.

        Args:
            key: Cache key

        Returns:
            Decoded value

        Raises:
            CacheMiss: If the key is absent or expired
            CacheReadError: If the store fails and no earlier value exists
        """
        try:
            entry = self.store.read(key)
        except CacheReadError as e:
            return self._fallback(key, e)

        if entry is None:
            raise CacheMiss(key)
        encoded, expires_at = entry
        if expires_at is not None and expires_at <= self.clock():
            raise CacheMiss(key)

        try:
            value = json.loads(encoded)
        except ValueError as e:
            return self._fallback(key, CacheReadError(f"Corrupt value for '{key}': {e}"))

        self._last_good[key] = value
        return value

    def get_or_default(self, key: str, default: Any = None) -> Any:
        """Read a value, returning ``default`` on a miss."""
        try:
            return self.get(key)
        except CacheMiss:
            return default

    def delete(self, key: str):
        self.store.delete(key)
        self._last_good.pop(key, None)

    def keys(self, prefix: str = '') -> List[str]:
        return self.store.keys(prefix)

    def ping(self) -> bool:
        """True if the backing store answers a read."""
        try:
            self.store.read('__health__')
        except CacheReadError as e:
            logger.warning(f"Cache health check failed: {e}")
            return False
        return True

    def _fallback(self, key: str, error: CacheReadError) -> Any:
        if key in self._last_good:
            logger.warning(f"{error}; serving last known good value for '{key}'")
            return self._last_good[key]
        raise error


def build_cache(config=None) -> CacheGateway:
    """Construct the cache gateway described by config."""
    if config is None:
        return CacheGateway(MemoryStore())
    backend = config.get('cache.backend', 'sqlite')
    ttl = config.get('cache.ttl_seconds', DEFAULT_TTL_SECONDS)
    if backend == 'memory':
        store = MemoryStore()
    elif backend == 'sqlite':
        store = SQLiteStore(config.get_cache_path())
    else:
        raise ValueError(f"Unknown cache backend '{backend}'")
    logger.info(f"Using {backend} cache backend")
    return CacheGateway(store, default_ttl=ttl)
