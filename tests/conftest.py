import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from threat_triage.enrichment.profiles import (
    ProfileSets, parse_actor_profiles, parse_apt_profiles, parse_country_risks,
    parse_dark_web_intel, parse_detection_rules,
)
from threat_triage.models import NormalizedItem, ThreatRecord
from threat_triage.storage import CacheGateway, MemoryStore

NOW = datetime(2024, 5, 12, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Epoch clock the tests can move forward."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.current = start

    def __call__(self) -> float:
        return self.current

    def advance(self, seconds: float):
        self.current += seconds


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return CacheGateway(MemoryStore(), default_ttl=1800, clock=clock)


@pytest.fixture
def make_item():
    def _make(title='Untitled', link='', source='Unknown', description='', tags=(),
              hours_ago=1.0, published_at=None):
        return NormalizedItem(
            title=title,
            link=link,
            published_at=published_at or NOW - timedelta(hours=hours_ago),
            source=source,
            description=description,
            tags=tuple(tags),
        )
    return _make


@pytest.fixture
def make_record(make_item):
    def _make(**kwargs):
        return ThreatRecord.from_item(make_item(**kwargs))
    return _make


APT_DOCUMENT = {
    'groups': [
        {
            'id': 'apt28',
            'name': 'APT28',
            'aliases': ['Fancy Bear', 'Sofacy'],
            'country': 'Russia',
            'mitreAttackId': 'G0007',
            'malware': [{'name': 'X-Agent'}, {'name': 'Zebrocy'}],
            'techniques': [{'id': 'T1566.001'}, {'id': 'T1190'}],
            'tools': ['mimikatz'],
            'targetedSectors': ['Government', 'Defense'],
            'targetedCountries': ['Ukraine', 'Germany'],
        },
        {
            'id': 'lazarus',
            'name': 'Lazarus Group',
            'aliases': ['Hidden Cobra'],
            'country': 'North Korea',
            'mitreAttackId': 'G0032',
            'malware': [{'name': 'WannaCry'}, {'name': 'AppleJeus'}],
            'techniques': [{'id': 'T1486'}],
            'tools': ['powershell'],
            'targetedSectors': ['Financial'],
            'targetedCountries': ['South Korea'],
        },
    ]
}

ACTOR_DOCUMENT = {
    'threatActors': [
        {
            'id': 'ta-apt28',
            'name': 'APT28',
            'aliases': ['Fancy Bear'],
            'type': 'nation-state',
            'country': 'Russia',
            'sophistication': 'advanced',
            'status': 'active',
            'motivation': ['espionage'],
            'ttps': [{'id': 'T1566.001'}, {'id': 'T1190'}],
            'malwareFamilies': ['X-Agent', 'Zebrocy'],
            'infrastructure': {'ips': ['185.86.148.227'], 'domains': ['account-verify-login.com']},
            'targets': {'industries': ['government', 'defense'], 'countries': ['ukraine']},
            'campaigns': [{'name': 'Pawn Storm', 'date': '2023-03-01'}],
        },
        {
            'id': 'ta-lazarus',
            'name': 'Lazarus Group',
            'aliases': ['Hidden Cobra'],
            'type': 'nation-state',
            'country': 'North Korea',
            'sophistication': 'advanced',
            'status': 'active',
            'motivation': ['financial'],
            'ttps': [{'id': 'T1566.001'}, {'id': 'T1486'}],
            'malwareFamilies': ['WannaCry', 'AppleJeus'],
            'infrastructure': {'ips': [], 'domains': []},
            'targets': {'industries': ['financial'], 'countries': ['japan']},
            'campaigns': [],
        },
        {
            'id': 'ta-spider',
            'name': 'Scattered Spider',
            'type': 'cybercrime',
            'country': 'United States',
            'status': 'active',
            'ttps': [{'id': 'T1078'}],
            'malwareFamilies': ['BlackCat'],
            'campaigns': [],
        },
    ]
}

DARK_WEB_DOCUMENT = {
    'ransomwareVictims': [
        {'id': 'victim-001', 'victimName': 'Meridian Health Systems', 'ransomwareGroup': 'LockBit',
         'industry': 'Healthcare', 'severity': 'CRITICAL', 'status': 'leaked'},
        {'id': 'victim-002', 'victimName': 'Northwind Logistics Group', 'ransomwareGroup': 'BlackCat',
         'industry': 'Transportation', 'severity': 'HIGH', 'status': 'negotiating'},
        {'id': 'victim-003', 'victimName': 'Bayview Credit Union', 'ransomwareGroup': 'LockBit',
         'industry': 'Financial', 'severity': 'CRITICAL', 'status': 'active'},
    ],
    'pasteFindings': [
        {'id': 'paste-001', 'title': 'C2 infrastructure dump', 'pasteSite': 'pastebin',
         'category': 'infrastructure', 'severity': 'HIGH',
         'iocs': {'ips': ['185.86.148.227'], 'domains': ['account-verify-login.com']}},
        {'id': 'paste-002', 'title': 'Exploit chatter', 'pasteSite': 'ghostbin',
         'category': 'exploit', 'severity': 'CRITICAL',
         'iocs': {'cves': ['CVE-2024-3400']}},
    ],
}

DETECTION_DOCUMENT = {
    'detections': [
        {'id': 'det-001', 'name': 'Suspicious Office Child Process', 'severity': 'HIGH',
         'status': 'stable', 'platform': 'windows', 'techniques': [{'id': 'T1566.001'}, {'id': 'T1204.002'}]},
        {'id': 'det-002', 'name': 'Exploitation of Public-Facing Application', 'severity': 'CRITICAL',
         'status': 'stable', 'platform': 'network', 'techniques': [{'id': 'T1190'}]},
        {'id': 'det-003', 'name': 'Mass File Encryption', 'severity': 'CRITICAL',
         'status': 'preview', 'platform': 'windows', 'techniques': [{'id': 'T1486'}]},
    ]
}

COUNTRY_DOCUMENT = {
    'countries': [
        {'name': 'Russia', 'riskScore': 92, 'riskLevel': 'critical', 'region': 'Europe'},
        {'name': 'North Korea', 'riskScore': 90, 'region': 'Asia'},
        {'name': 'Ukraine', 'riskScore': 75, 'riskLevel': 'high', 'region': 'Europe'},
        {'name': 'Germany', 'riskScore': 35, 'riskLevel': 'low', 'region': 'Europe'},
    ]
}


@pytest.fixture
def profiles():
    victims, pastes = parse_dark_web_intel(DARK_WEB_DOCUMENT)
    return ProfileSets(
        apt_groups=parse_apt_profiles(APT_DOCUMENT),
        actors=parse_actor_profiles(ACTOR_DOCUMENT),
        victims=victims,
        pastes=pastes,
        detections=parse_detection_rules(DETECTION_DOCUMENT),
        countries=parse_country_risks(COUNTRY_DOCUMENT),
    )


@pytest.fixture
def raw_items():
    """Feed dictionaries covering duplicates, attribution and malformed entries."""
    return [
        {
            'title': 'Critical RCE in ProductX',
            'link': 'https://vendor.example/advisories/productx',
            'pubDate': '2024-05-12T09:00:00Z',
            'source': 'Mandiant',
            'description': 'Remote code execution flaw actively exploited.',
            'tags': ['CVE-2024-1234'],
        },
        {
            'title': 'Critical RCE found in ProductX',
            'link': 'https://news.example/productx-rce?utm_source=rss',
            'pubDate': '2024-05-12T11:00:00Z',
            'source': 'BleepingComputer',
            'description': 'Researchers confirm the ProductX flaw.',
            'tags': ['CVE-2024-1234'],
        },
        {
            'title': 'APT28 phishing delivers X-Agent to government agencies',
            'link': 'https://research.example/apt28',
            'pubDate': '2024-05-11T12:00:00Z',
            'source': 'Threat Intelligence',
            'description': 'Spearphishing (T1566.001) targeting Ukraine.',
            'tags': ['APT28'],
        },
        {
            'title': 'LockBit claims attack on Meridian Health Systems',
            'link': 'https://therecord.example/lockbit-meridian',
            'pubDate': 'Sun, 12 May 2024 08:00:00 GMT',
            'source': 'The Record from Recorded Future News',
            'description': 'The healthcare provider confirmed encryption.',
            'tags': ['ransomware'],
        },
        'not a feed entry',
    ]


@pytest.fixture
def service(profiles, cache, raw_items):
    """A service over the in-memory cache whose collector replays the fixture feed."""
    from threat_triage.enrichment import build_enrichers
    from threat_triage.ingestion import FeedCollector, StaticFeed
    from threat_triage.pipeline import ThreatPipeline, ThreatService

    return ThreatService(
        ThreatPipeline(build_enrichers(profiles)),
        cache,
        collector=FeedCollector([StaticFeed('fixture', raw_items)]),
        clock=lambda: NOW,
    )
