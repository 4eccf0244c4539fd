import pytest

from threat_triage.config import Config
from threat_triage.errors import CacheMiss, CacheReadError, CacheWriteError
from threat_triage.storage import CacheGateway, MemoryStore, SQLiteStore, build_cache


class FlakyStore(MemoryStore):
    """Memory store whose reads and writes can be switched off."""

    def __init__(self):
        super().__init__()
        self.readable = True
        self.writable = True

    def read(self, key):
        if not self.readable:
            raise CacheReadError('store unavailable')
        return super().read(key)

    def write(self, key, value, expires_at):
        if not self.writable:
            raise CacheWriteError('store is read-only')
        super().write(key, value, expires_at)


def test_put_then_get_round_trips_json(cache):
    cache.put('k', {'items': [1, 2], 'name': 'x'})
    assert cache.get('k') == {'items': [1, 2], 'name': 'x'}


def test_missing_key_is_a_miss(cache):
    with pytest.raises(CacheMiss):
        cache.get('absent')
    assert cache.get_or_default('absent', 'fallback') == 'fallback'


def test_values_expire_after_ttl(cache, clock):
    cache.put('k', 'v', ttl_seconds=60)
    clock.advance(59)
    assert cache.get('k') == 'v'
    clock.advance(1)
    with pytest.raises(CacheMiss):
        cache.get('k')


def test_zero_ttl_never_expires(cache, clock):
    cache.put('k', 'v', ttl_seconds=0)
    clock.advance(10 ** 9)
    assert cache.get('k') == 'v'


def test_default_ttl_applies(clock):
    cache = CacheGateway(MemoryStore(), default_ttl=10, clock=clock)
    cache.put('k', 'v')
    clock.advance(11)
    with pytest.raises(CacheMiss):
        cache.get('k')


def test_read_failure_serves_last_known_good(clock):
    store = FlakyStore()
    cache = CacheGateway(store, clock=clock)
    cache.put('k', {'v': 1})
    store.readable = False
    assert cache.get('k') == {'v': 1}
    assert cache.ping() is False


def test_read_failure_without_history_raises(clock):
    store = FlakyStore()
    store.write('k', '"v"', None)
    store.readable = False
    with pytest.raises(CacheReadError):
        CacheGateway(store, clock=clock).get('k')


def test_corrupt_value_is_a_read_error(clock):
    store = MemoryStore()
    store.write('k', '{not json', None)
    with pytest.raises(CacheReadError):
        CacheGateway(store, clock=clock).get('k')


def test_write_failure_propagates(clock):
    store = FlakyStore()
    store.writable = False
    with pytest.raises(CacheWriteError):
        CacheGateway(store, clock=clock).put('k', 'v')


def test_delete_and_keys(cache):
    cache.put('trends:a', 1)
    cache.put('trends:b', 2)
    cache.put('other', 3)
    assert cache.keys('trends:') == ['trends:a', 'trends:b']
    cache.delete('trends:a')
    assert cache.keys('trends:') == ['trends:b']
    assert cache.ping() is True


def test_sqlite_store_persists_between_gateways(tmp_path, clock):
    path = str(tmp_path / 'nested' / 'cache.db')
    CacheGateway(SQLiteStore(path), clock=clock).put('unified-threats', {'count': 2}, 0)
    assert CacheGateway(SQLiteStore(path), clock=clock).get('unified-threats') == {'count': 2}


def test_sqlite_store_overwrites_and_escapes_prefixes(tmp_path, clock):
    cache = CacheGateway(SQLiteStore(str(tmp_path / 'cache.db')), clock=clock)
    cache.put('a_b', 1)
    cache.put('a_b', 2)
    cache.put('axb', 3)
    assert cache.get('a_b') == 2
    assert cache.keys('a_') == ['a_b']


def test_sqlite_store_expiry(tmp_path, clock):
    cache = CacheGateway(SQLiteStore(str(tmp_path / 'cache.db')), clock=clock)
    cache.put('k', 'v', ttl_seconds=5)
    clock.advance(5)
    with pytest.raises(CacheMiss):
        cache.get('k')


def test_build_cache_from_config(tmp_path):
    override = tmp_path / 'override.yaml'
    override.write_text(f'cache:\n  backend: sqlite\n  path: {tmp_path / "c.db"}\n  ttl_seconds: 60\n')
    cache = build_cache(Config(str(override)))
    assert isinstance(cache.store, SQLiteStore)
    assert cache.default_ttl == 60
    assert isinstance(build_cache().store, MemoryStore)


def test_build_cache_rejects_unknown_backend(tmp_path):
    override = tmp_path / 'override.yaml'
    override.write_text('cache:\n  backend: redis\n')
    with pytest.raises(ValueError):
        build_cache(Config(str(override)))
