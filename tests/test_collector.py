import json
import threading

import pytest

from threat_triage.config import get_config
from threat_triage.errors import ParseError
from threat_triage.ingestion import FeedCollector, FeedSource, JsonFeedFile, StaticFeed, build_collector, parse_json_feed


class FailingFeed(FeedSource):
    name = 'broken'

    def fetch(self):
        raise ConnectionError('connection reset')


class BlockingFeed(FeedSource):
    name = 'slow'

    def __init__(self):
        self.release = threading.Event()

    def fetch(self):
        self.release.wait(5)
        return [{'title': 'too late'}]


def test_parse_kev_catalogue():
    document = json.dumps({'vulnerabilities': [{
        'cveID': 'CVE-2024-3400',
        'vulnerabilityName': 'PAN-OS Command Injection',
        'dateAdded': '2024-04-12',
        'shortDescription': 'Command injection in GlobalProtect.',
    }]})
    [item] = parse_json_feed(document, source_url='https://cisa.example/kev.json')
    assert item['title'] == 'CVE-2024-3400: PAN-OS Command Injection'
    assert item['link'] == 'https://nvd.nist.gov/vuln/detail/CVE-2024-3400'
    assert item['source'] == 'CISA KEV'
    assert item['tags'] == ['CVE-2024-3400', 'KEV', 'HIGH-PRIORITY']


def test_parse_generic_items_fill_missing_source():
    document = json.dumps({'items': [{'title': 'a'}, {'title': 'b', 'source': 'Own'}]})
    items = parse_json_feed(document, source_url='file:///feed.json', default_source='Feed')
    assert [i['source'] for i in items] == ['Feed', 'Own']
    assert items[0]['sourceUrl'] == 'file:///feed.json'


def test_parse_bare_list():
    assert parse_json_feed('[{"title": "a"}]') == [{'title': 'a', 'source': None, 'sourceUrl': ''}]


@pytest.mark.parametrize('text', ['{not json', '{"unexpected": 1}', '42'])
def test_parse_rejects_bad_documents(text):
    with pytest.raises(ParseError):
        parse_json_feed(text)


def test_json_feed_file(tmp_path):
    path = tmp_path / 'feed.json'
    path.write_text(json.dumps([{'title': 'From disk'}]))
    [item] = JsonFeedFile('Disk', path).fetch()
    assert item['source'] == 'Disk'
    assert item['sourceUrl'].startswith('file://')


def test_collect_keeps_feed_order_and_isolates_failures():
    collector = FeedCollector([
        StaticFeed('one', [{'title': 'a'}, {'title': 'b'}]),
        FailingFeed(),
        StaticFeed('two', [{'title': 'c'}]),
    ], timeout=5, max_concurrent=2)

    items = collector.collect()

    assert [i['title'] for i in items] == ['a', 'b', 'c']
    assert [f.feed_name for f in collector.last_failures] == ['broken']
    assert 'connection reset' in str(collector.last_failures[0])
    assert collector.last_run['succeeded'] == 2
    assert collector.last_run['failed'] == ['broken']
    assert collector.last_run['items'] == 3


def test_slow_feed_times_out():
    slow = BlockingFeed()
    collector = FeedCollector([StaticFeed('fast', [{'title': 'ok'}]), slow], timeout=0.2)
    try:
        items = collector.collect()
    finally:
        slow.release.set()
    assert items == [{'title': 'ok'}]
    assert collector.last_failures[0].feed_name == 'slow'
    assert 'timed out' in str(collector.last_failures[0])


def test_no_feeds_collects_nothing():
    collector = FeedCollector([])
    assert collector.collect() == []
    assert collector.last_run['feeds'] == 0


def test_build_collector_uses_enabled_feeds():
    collector = build_collector(get_config())
    assert [feed.name for feed in collector.feeds] == ['Sample Feed']
    items = collector.collect()
    assert items
    assert all(item.get('source') for item in items if isinstance(item, dict))
