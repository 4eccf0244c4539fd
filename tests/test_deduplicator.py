import pytest

from threat_triage.deduplication import (
    are_duplicates, deduplicate, levenshtein_distance, normalize_url_for_comparison, similarity_ratio,
)
from threat_triage.normalization import normalize_items


def test_levenshtein_distance_known_values():
    assert levenshtein_distance('kitten', 'sitting') == 3
    assert levenshtein_distance('', 'abc') == 3
    assert levenshtein_distance('same', 'same') == 0


def test_levenshtein_distance_is_symmetric():
    pairs = [('flaw', 'lawn'), ('ProductX', 'ProductY'), ('', 'x')]
    for a, b in pairs:
        assert levenshtein_distance(a, b) == levenshtein_distance(b, a)


def test_similarity_ratio_bounds():
    assert similarity_ratio('', '') == 1.0
    assert similarity_ratio('ABC', 'abc') == 1.0
    assert similarity_ratio('abc', 'xyz') == 0.0
    assert similarity_ratio('Critical RCE in ProductX', 'Critical RCE found in ProductX') == pytest.approx(0.8)


def test_url_comparison_ignores_query_fragment_and_trailing_slash():
    assert normalize_url_for_comparison('HTTPS://News.Example/a/?x=1#top') == 'https://news.example/a'
    assert normalize_url_for_comparison('') == ''


def test_url_comparison_falls_back_on_malformed_links(make_item):
    assert normalize_url_for_comparison(' http://[Not-An-IP/path ') == 'http://[not-an-ip/path'
    a = make_item(title='One', link='http://[not-an-ip/path')
    b = make_item(title='Completely different', link='HTTP://[NOT-AN-IP/path')
    assert are_duplicates(a, b).match_type == 'url'


def test_same_url_is_duplicate(make_item):
    a = make_item(title='One', link='https://x.example/post/')
    b = make_item(title='Completely different', link='https://x.example/post?ref=feed')
    match = are_duplicates(a, b)
    assert match.is_duplicate
    assert match.match_type == 'url'
    assert match.confidence == 1.0


def test_shared_cve_with_similar_titles_is_duplicate(make_item):
    a = make_item(title='Critical RCE in ProductX', link='https://a.example/1', tags=['CVE-2024-1234'])
    b = make_item(title='Critical RCE found in ProductX', link='https://b.example/2', tags=['CVE-2024-1234'])
    match = are_duplicates(a, b)
    assert (match.match_type, match.confidence) == ('cve', 0.95)


def test_shared_cve_with_unrelated_titles_is_not_duplicate(make_item):
    a = make_item(title='Critical RCE in ProductX', link='https://a.example/1', tags=['CVE-2024-1234'])
    b = make_item(title='Weekly digest of patches', link='https://b.example/2', tags=['CVE-2024-1234'])
    assert not are_duplicates(a, b).is_duplicate


def test_near_identical_titles_are_duplicates(make_item):
    a = make_item(title='Weekly advisory roundup', link='https://a.example/1')
    b = make_item(title='weekly advisory roundup', link='https://b.example/2')
    match = are_duplicates(a, b)
    assert match.match_type == 'title'
    assert match.confidence == 1.0


def test_indicator_overlap_with_similar_titles_is_duplicate(make_item):
    a = make_item(title='New loader campaign observed', link='https://a.example/1',
                  description='C2 at 203.0.113.5')
    b = make_item(title='New loader campaign spotted', link='https://b.example/2',
                  description='Beacons to 203.0.113.5')
    match = are_duplicates(a, b)
    assert (match.match_type, match.confidence) == ('ioc', 0.75)


def test_are_duplicates_is_symmetric(make_item):
    items = [
        make_item(title='Critical RCE in ProductX', link='https://a.example/1', tags=['CVE-2024-1234']),
        make_item(title='Critical RCE found in ProductX', link='https://b.example/2', tags=['CVE-2024-1234']),
        make_item(title='New loader campaign observed', description='C2 at 203.0.113.5'),
        make_item(title='New loader campaign spotted', description='Beacons to 203.0.113.5'),
        make_item(title='Unrelated', link='https://a.example/1/'),
    ]
    for a in items:
        for b in items:
            assert are_duplicates(a, b) == are_duplicates(b, a)


def test_deduplicate_merges_cve_duplicates(raw_items, now):
    records = deduplicate(normalize_items(raw_items, now))
    merged = [r for r in records if r.source_count > 1]
    assert len(merged) == 1
    record = merged[0]
    assert record.sources == ('Mandiant', 'BleepingComputer')
    assert record.source_count == 2
    assert record.group.match_type == 'cve'
    assert record.group.match_confidence == 0.95
    # The latest member becomes the primary
    assert record.title == 'Critical RCE found in ProductX'
    assert record.alternate_links == ('https://vendor.example/advisories/productx',)


def test_deduplicate_keeps_first_member_order(make_item):
    items = [
        make_item(title='Alpha story', link='https://a.example/1'),
        make_item(title='Beta story about something else', link='https://b.example/2'),
        make_item(title='Alpha story', link='https://c.example/3', source='Other'),
    ]
    records = deduplicate(items)
    assert [r.group.members[0].link for r in records] == ['https://a.example/1', 'https://b.example/2']
    assert records[0].source_count == 2


def test_greedy_and_transitive_differ_on_chains(make_item):
    a = make_item(title='First headline', link='https://x.example/shared', source='A')
    c = make_item(title='Totally separate wording here', link='https://z.example/3', source='C')
    b = make_item(title='Totally separate wording here', link='https://x.example/shared', source='B')

    greedy = deduplicate([a, c, b], 'greedy')
    transitive = deduplicate([a, c, b], 'transitive')

    assert len(greedy) == 2
    assert len(transitive) == 1
    assert transitive[0].sources == ('A', 'C', 'B')


@pytest.mark.parametrize('strategy', ['greedy', 'transitive'])
def test_deduplicate_is_idempotent_when_merged_tags_would_match(make_item, strategy):
    # The merged record's primary (b2) carries the group's CVE tag and a title
    # close to a1's, but neither member matched a1 on its own.
    a1 = make_item(title='Critical RCE in ProductX gateway', link='https://a.example/gateway',
                   source='S1', tags=['CVE-2024-1111'], hours_ago=5)
    b1 = make_item(title='Vendor bulletin roundup', link='https://b.example/bulletin',
                   source='S2', tags=['CVE-2024-1111'], hours_ago=4)
    b2 = make_item(title='Critical RCE found in ProductX portal', link='https://b.example/bulletin',
                   source='S3', hours_ago=1)

    once = deduplicate([a1, b1, b2], strategy)
    twice = deduplicate(once, strategy)

    assert [r.sources for r in once] == [('S1',), ('S2', 'S3')]
    assert [r.sources for r in twice] == [r.sources for r in once]
    assert [r.title for r in twice] == [r.title for r in once]


def test_deduplicate_rejects_unknown_strategy(make_item):
    with pytest.raises(ValueError):
        deduplicate([make_item()], 'fuzzy')


def test_deduplicate_empty():
    assert deduplicate([]) == []
