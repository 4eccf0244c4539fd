from dataclasses import replace

from threat_triage.deduplication import deduplicate
from threat_triage.models import CorrelationRecord, RelatedThreatRef
from threat_triage.scoring import RiskScorer, add_risk_scores, get_enhanced_severity, get_severity

OLD = 24 * 40


def test_kev_item_from_government_source(make_item, now):
    item = make_item(title='Vendor appliance vulnerability', source='CISA KEV',
                     tags=['KEV', 'CVE-2024-1111', 'T1566'], hours_ago=1)
    risk = RiskScorer().calculate_risk_score(item, now)
    assert risk.score == 84
    assert risk.severity == 'HIGH'
    assert risk.evidence == (
        'Listed in CISA KEV (actively exploited)',
        'Mapped to MITRE ATT&CK technique',
        'Published in last 24 hours',
        'High-credibility source (CISA KEV)',
    )


def test_corroboration_bonuses_and_badges(make_item, now):
    items = [
        make_item(title='Weekly advisory roundup', link='https://a.example/1', source='CISA KEV', hours_ago=OLD + 2),
        make_item(title='Weekly advisory roundup', link='https://b.example/2', source='CISA News', hours_ago=OLD + 1),
        make_item(title='Weekly advisory roundup', link='https://c.example/3', source='BleepingComputer',
                  hours_ago=OLD),
    ]
    [record] = deduplicate(items)
    scorer = RiskScorer()
    base = scorer.calculate_risk_score(record, now)
    risk = scorer.calculate_enhanced_risk_score(record, now, base)

    assert base.score == 5
    assert risk.score == 30
    assert risk.severity == 'INFO'
    assert risk.badges == ('MULTI-SOURCE', 'GOV-CONFIRMED')
    assert 'Reported by 3 sources (high confidence)' in risk.evidence
    assert 'Confirmed by 2 government sources' in risk.evidence


def test_rounding_is_half_up(make_item, now):
    scorer = RiskScorer()
    kit = make_item(title='Campaign uses the Rig kit', hours_ago=OLD)
    assert scorer.calculate_risk_score(kit, now).score == 23
    plain = make_item(title='Bug can trigger crash', hours_ago=OLD)
    assert scorer.calculate_risk_score(plain, now).score == 5


def test_exploit_kit_names_are_whole_words(make_item, now):
    risk = RiskScorer().calculate_risk_score(make_item(title='Bug can trigger crash', hours_ago=OLD), now)
    assert 'Integrated into exploit kit' not in risk.evidence


def test_recency_buckets(make_item, now):
    scorer = RiskScorer({'Feed': 1.0})
    scores = [scorer.calculate_risk_score(make_item(title='x', source='Feed', hours_ago=hours), now).score
              for hours in (2, 48, 24 * 20, OLD)]
    assert scores == [20, 15, 10, 5]


def test_active_exploitation_and_threat_type(make_item, now):
    item = make_item(title='Ransomware gang: flaw actively exploited', tags=['RANSOMWARE'], hours_ago=1)
    risk = RiskScorer().calculate_risk_score(item, now)
    assert risk.score == 54
    assert risk.severity == 'MEDIUM'
    assert 'Ransomware threat' in risk.evidence


def test_scores_are_capped_and_combo_detected(make_record, now):
    record = make_record(title='Zero-day actively exploited', source='CISA KEV', hours_ago=1,
                         tags=['KEV', 'ZERO-DAY', 'EXPLOITED', 'T1190', 'RANSOMWARE'])
    scorer = RiskScorer()
    base = scorer.calculate_risk_score(record, now)
    risk = scorer.calculate_enhanced_risk_score(record, now, base)
    assert base.score == 100
    assert base.severity == 'CRITICAL'
    assert risk.score == 100
    assert risk.severity == 'CRITICAL'
    assert 'CRITICAL-COMBO' in risk.badges


def test_trending_and_apt_badges(make_record, now):
    refs = tuple(RelatedThreatRef(link=f'l{i}', title=f't{i}', source='s', relation_score=60) for i in range(3))
    record = make_record(title='x', tags=['APT28'], hours_ago=OLD)
    record = replace(record, correlation=CorrelationRecord('url:x', refs))
    scorer = RiskScorer()
    base = scorer.calculate_risk_score(record, now)
    risk = scorer.calculate_enhanced_risk_score(record, now, base)
    assert risk.score == base.score + 5
    assert risk.badges == ('TRENDING', 'APT-TARGETED')


def test_custom_source_tiers():
    scorer = RiskScorer({'My Vendor Blog': 1.1, 'Mandiant': 1.0})
    assert scorer.source_multiplier('My Vendor Blog') == 1.1
    assert scorer.source_multiplier('Mandiant') == 1.0
    assert scorer.source_multiplier('Nobody') == 0.9


def test_severity_thresholds():
    assert [get_severity(s) for s in (90, 70, 40, 39)] == ['CRITICAL', 'HIGH', 'MEDIUM', 'LOW']
    assert [get_enhanced_severity(s) for s in (95, 85, 70, 40, 39)] == [
        'CRITICAL', 'HIGH', 'MEDIUM', 'LOW', 'INFO']


def test_add_risk_scores_sets_both_assessments(make_record, now):
    [record] = add_risk_scores([make_record(title='x')], now)
    assert record.base_risk is not None
    assert record.risk is not None
    assert 0 <= record.score <= 100
    assert record.to_dict()['baseRiskScore'] == record.base_risk.score
