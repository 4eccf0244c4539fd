from datetime import timedelta

from threat_triage.errors import CacheReadError, CacheWriteError
from threat_triage.storage import CacheGateway, MemoryStore, SourceRegistry, TrendTracker
from threat_triage.storage.trends import bucket_key, get_top_n


class DownStore(MemoryStore):
    def read(self, key):
        raise CacheReadError('connection refused')

    def write(self, key, value, expires_at):
        raise CacheWriteError('connection refused')


def test_candidate_then_approve(cache, now):
    registry = SourceRegistry(cache)
    assert registry.add_candidate_source('https://blog.example/feed', now=now) is True
    assert registry.add_candidate_source('https://blog.example/feed', now=now) is False
    assert registry.get_sources()['candidates'][0]['title'] == 'blog.example'

    registry.add_approved_source('https://blog.example/feed', now=now)
    sources = registry.get_sources()
    assert sources['candidates'] == []
    assert sources['approved'] == [{'url': 'https://blog.example/feed', 'approvedAt': '2024-05-12T12:00:00Z'}]


def test_blocking_a_domain_removes_its_sources(cache, now):
    registry = SourceRegistry(cache)
    registry.add_approved_source('https://spam.example/rss', now=now)
    registry.add_candidate_source('https://news.spam.example/rss', now=now)
    registry.add_candidate_source('https://good.example/rss', now=now)

    registry.block_domain('Spam.Example ')

    sources = registry.get_sources()
    assert sources['approved'] == []
    assert [c['url'] for c in sources['candidates']] == ['https://news.spam.example/rss', 'https://good.example/rss']
    assert registry.blocked_domains() == ['spam.example']
    assert registry.is_link_blocked('https://news.spam.example/post')
    assert not registry.is_link_blocked('https://notspam.example/post')
    assert registry.add_candidate_source('https://spam.example/other') is False


def test_static_blocklist_is_merged(cache):
    registry = SourceRegistry(cache, ['Ads.Example', ''])
    registry.block_domain('tracker.example')
    assert registry.blocked_domains() == ['ads.example', 'tracker.example']
    assert not registry.is_blocked('')


def test_malformed_links_have_no_hostname(cache, now):
    registry = SourceRegistry(cache, ['spam.example'])
    assert not registry.is_link_blocked('http://[not-an-ip/path')
    assert registry.is_link_blocked('https://spam.example/x', blocked=['spam.example'])
    assert not registry.is_link_blocked('https://spam.example/x', blocked=[])
    assert registry.add_candidate_source('http://[not-an-ip/feed', now=now) is True
    assert registry.get_sources()['candidates'][0]['title'] == ''


def test_bucket_key_truncates_to_the_hour(now):
    assert bucket_key(now + timedelta(minutes=59)) == '2024-05-12T12:00:00Z'


def test_update_bucket_accumulates(cache, make_record, now):
    tracker = TrendTracker(cache)
    tracker.update_bucket([make_record(source='CISA KEV', tags=['KEV', 'CVE-2024-1111'])], now)
    bucket = tracker.update_bucket([make_record(source='CISA KEV', tags=['KEV'])], now + timedelta(minutes=5))
    assert bucket['bucket'] == '2024-05-12T12:00:00Z'
    assert bucket['data']['sources'] == {'CISA KEV': 2}
    assert bucket['data']['tags'] == {'KEV': 2, 'CVE-2024-1111': 1}


def test_update_bucket_starts_empty_when_the_store_is_down(make_record, now, clock):
    cache = CacheGateway(DownStore(), clock=clock)
    bucket = TrendTracker(cache).update_bucket([make_record(source='CISA KEV', tags=['KEV'])], now)
    assert bucket['data'] == {'sources': {'CISA KEV': 1}, 'tags': {'KEV': 1}}


def test_get_buckets_are_chronological_and_filled(cache, make_record, now):
    tracker = TrendTracker(cache)
    tracker.update_bucket([make_record(source='A')], now - timedelta(hours=2))
    buckets = tracker.get_buckets(now, hours=3)
    assert [b['bucket'] for b in buckets] == [
        '2024-05-12T10:00:00Z', '2024-05-12T11:00:00Z', '2024-05-12T12:00:00Z']
    assert buckets[0]['data']['sources'] == {'A': 1}
    assert buckets[1]['data'] == {'sources': {}, 'tags': {}}


def test_summarize_top_sources_and_tags(cache, make_record, now):
    tracker = TrendTracker(cache)
    tracker.update_bucket([make_record(source='A', tags=['X']), make_record(source='B', tags=['X', 'Y'])],
                          now - timedelta(hours=1))
    tracker.update_bucket([make_record(source='A', tags=['Y'])], now)
    summary = tracker.summarize(now, hours=2, n=1)
    assert summary['hours'] == 2
    assert len(summary['buckets']) == 2
    assert summary['topSources'] == {'A': 2}
    assert list(summary['topTags'].values()) == [2]


def test_get_top_n():
    assert get_top_n({'a': 1, 'b': 3, 'c': 2}, 2) == {'b': 3, 'c': 2}
