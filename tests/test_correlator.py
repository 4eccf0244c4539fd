from threat_triage.correlation import (
    add_correlation_data, find_related_threats, generate_correlation_id, get_correlation_stats,
    summarize_correlations,
)


def test_correlation_id_prefers_sorted_cves(make_record):
    record = make_record(title='x', link='https://a.example/p', tags=['CVE-2024-0009', 'CVE-2023-0001'])
    assert generate_correlation_id(record) == 'cve:CVE-2023-0001,CVE-2024-0009'


def test_correlation_id_falls_back_to_url_then_title(make_record):
    assert generate_correlation_id(make_record(link='https://a.example/p?q=1')) == 'url:a.example/p'
    title_id = generate_correlation_id(make_record(title='Some title'))
    assert title_id.startswith('title:')
    assert len(title_id) == len('title:') + 12
    assert title_id == generate_correlation_id(make_record(title='Some title'))


def test_correlation_id_uses_title_for_malformed_link(make_record):
    record = make_record(title='Broken link advisory', link='http://[not-an-ip/path')
    assert generate_correlation_id(record) == generate_correlation_id(make_record(title='Broken link advisory'))


def test_shared_cve_within_a_day(make_record):
    a = make_record(title='A', source='Mandiant', tags=['CVE-2024-1111'], hours_ago=1)
    b = make_record(title='B', source='CISA KEV', tags=['CVE-2024-1111'], hours_ago=5)
    related = find_related_threats(a, [a, b])
    assert len(related) == 1
    assert related[0].relation_score == 60
    assert related[0].reasons == ('Shared CVE: CVE-2024-1111', 'Published within 24 hours')


def test_same_source_records_are_not_related(make_record):
    a = make_record(title='A', source='Mandiant', tags=['CVE-2024-1111'])
    b = make_record(title='B', source='Mandiant', tags=['CVE-2024-1111'])
    assert find_related_threats(a, [a, b]) == ()


def test_shared_actor_and_tags(make_record):
    a = make_record(title='A', source='S1', tags=['APT28', 'PHISHING', 'MALWARE', 'EXPLOIT'], hours_ago=1)
    b = make_record(title='B', source='S2', tags=['APT28', 'PHISHING', 'MALWARE', 'EXPLOIT'], hours_ago=100)
    related = find_related_threats(a, [a, b])
    # Shared tags (20) plus shared actor (30); too far apart for the temporal bonus
    assert related[0].relation_score == 50


def test_weak_relations_are_dropped(make_record):
    a = make_record(title='A', source='S1', tags=['PHISHING', 'MALWARE', 'EXPLOIT'], hours_ago=1)
    b = make_record(title='B', source='S2', tags=['PHISHING', 'MALWARE', 'EXPLOIT'], hours_ago=48)
    assert find_related_threats(a, [a, b]) == ()


def test_related_list_is_capped_and_sorted(make_record):
    anchor = make_record(title='anchor', source='S0', tags=['CVE-2024-1111', 'CVE-2024-2222'])
    others = [make_record(title=f'o{i}', source=f'S{i + 1}', tags=['CVE-2024-1111'], hours_ago=48)
              for i in range(6)]
    best = make_record(title='best', source='S9', tags=['CVE-2024-1111', 'CVE-2024-2222'])
    related = find_related_threats(anchor, [anchor] + others + [best], max_related=5)
    assert len(related) == 5
    assert related[0].title == 'best'
    assert related[0].relation_score == 110


def test_add_correlation_data_sets_every_record(make_record):
    records = [
        make_record(title='A', source='S1', tags=['CVE-2024-1111']),
        make_record(title='B', source='S2', tags=['CVE-2024-1111']),
        make_record(title='C', source='S3'),
    ]
    correlated = add_correlation_data(records)
    assert all(r.correlation is not None for r in correlated)
    assert [r.related_count for r in correlated] == [1, 1, 0]
    assert records[0].correlation is None


def test_correlation_stats(make_record):
    records = add_correlation_data([
        make_record(title='A', source='S1', tags=['CVE-2024-1111']),
        make_record(title='B', source='S2', tags=['CVE-2024-1111']),
        make_record(title='C', source='S3'),
        make_record(title='D', source='S4'),
    ])
    stats = get_correlation_stats(records)
    assert stats['totalItems'] == 4
    assert stats['itemsWithRelated'] == 2
    assert stats['itemsWithRelatedPercent'] == 50.0
    assert stats['avgRelatedCount'] == 0.5
    assert stats['mostCorrelated'] == {'title': 'A', 'relatedCount': 1}


def test_empty_correlation_stats():
    stats = summarize_correlations([])
    assert stats['totalItems'] == 0
    assert stats['itemsWithRelatedPercent'] == 0.0
    assert stats['mostCorrelated'] == {'title': None, 'relatedCount': 0}
