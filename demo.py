#!/usr/bin/env python3
"""
Demo script to showcase the threat triage pipeline functionality.
This script feeds a handful of mock feed items through every stage.
"""

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

# Add the package to path
sys.path.insert(0, str(Path(__file__).parent))

from threat_triage.config import get_config
from threat_triage.correlation import add_correlation_data
from threat_triage.deduplication import deduplicate
from threat_triage.enrichment import ProfileLoader, build_enrichers, enrich_records
from threat_triage.normalization import normalize_items
from threat_triage.pipeline import ThreatPipeline, ThreatService
from threat_triage.scoring import add_risk_scores, bubble_up_sort
from threat_triage.storage import CacheGateway, MemoryStore

NOW = datetime.now(timezone.utc)

# Mock feed items (simulating what the fetch layer would deliver)
MOCK_ITEMS = [
    {
        'title': 'Critical RCE in ProductX',
        'link': 'https://vendor.example/advisories/productx-rce',
        'pubDate': (NOW - timedelta(hours=3)).isoformat(),
        'source': 'Vendor Blog',
        'description': 'A remote code execution flaw is being actively exploited in the wild.',
        'tags': ['CVE-2024-1234'],
    },
    {
        'title': 'Critical RCE found in ProductX',
        'link': 'https://news.example/productx-rce?utm_source=rss',
        'pubDate': (NOW - timedelta(hours=1)).isoformat(),
        'source': 'BleepingComputer',
        'description': 'Researchers published a PoC for the ProductX flaw.',
        'tags': ['CVE-2024-1234'],
    },
    {
        'title': 'ProductX flaw added to Known Exploited Vulnerabilities catalog',
        'link': 'https://nvd.nist.gov/vuln/detail/CVE-2024-1234',
        'pubDate': (NOW - timedelta(hours=2)).isoformat(),
        'source': 'CISA KEV',
        'description': 'Federal agencies must patch by the due date.',
        'tags': ['CVE-2024-1234', 'KEV', 'HIGH-PRIORITY'],
    },
    {
        'title': 'APT28 spearphishing delivers X-Agent to government agencies in Ukraine',
        'link': 'https://research.example/apt28-x-agent',
        'pubDate': (NOW - timedelta(days=2)).isoformat(),
        'source': 'Mandiant',
        'description': 'Fancy Bear emails (T1566.001) drop X-Agent; C2 at 185.86.148.227.',
        'tags': ['APT28'],
    },
    {
        'title': 'LockBit lists Meridian Health Systems on leak site',
        'link': 'https://therecord.media/lockbit-meridian',
        'pubDate': (NOW - timedelta(days=1)).isoformat(),
        'source': 'The Record',
        'description': 'Healthcare provider confirms ransomware encryption (T1486).',
        'tags': ['ransomware'],
    },
    {
        'title': '<b>Weekly</b> security roundup',
        'link': 'https://blog.example/roundup',
        'pubDate': 'not a date',
        'source': None,
        'description': 'Phishing trends &amp; patch notes.',
    },
]


def main():
    print("=" * 70)
    print("THREAT TRIAGE PIPELINE DEMO")
    print("=" * 70)
    print()

    # Get configuration
    config = get_config()
    profiles = ProfileLoader(config).load()

    print(f"📊 Mock items to process: {len(MOCK_ITEMS)}")
    print(f"📚 Reference sets: {len(profiles.apt_groups)} APT groups, {len(profiles.actors)} actors, "
          f"{len(profiles.detections)} detections")
    print()

    # Step 1: Normalization
    print("🔧 Step 1: NORMALIZING items...")
    print("-" * 70)
    items = normalize_items(MOCK_ITEMS, NOW)
    print(f"✓ Normalized {len(items)} items")
    sample = items[-1]
    print(f"  Sample normalized item:")
    print(f"    - Title: {sample.title}")
    print(f"    - Source: {sample.source}")
    print(f"    - Tags: {', '.join(sample.tags)}")
    print()

    # Step 2: Deduplication
    print("🧬 Step 2: DEDUPLICATING items...")
    print("-" * 70)
    records = deduplicate(items)
    print(f"✓ {len(items)} items collapsed to {len(records)} records")
    for record in records:
        if record.source_count > 1:
            match = record.group.matches[0]
            print(f"  • {record.title} <- {record.source_count} sources "
                  f"({match.match_type}, confidence {match.confidence})")
    print()

    # Step 3: Correlation and attribution
    print("✨ Step 3: CORRELATING and ENRICHING records...")
    print("-" * 70)
    records = add_correlation_data(records)
    records = enrich_records(records, build_enrichers(profiles, config))
    for record in records:
        actors = ', '.join(m.profile_name for m in record.actor_attribution or ())
        apt = ', '.join(m.profile_name for m in record.apt_attribution or ())
        print(f"\n  📌 {record.title}")
        print(f"     Correlation ID: {record.correlation.correlation_id}")
        print(f"     Related: {record.related_count}")
        if apt:
            print(f"     APT correlation: {apt}")
        if actors:
            print(f"     Actor attribution: {actors}")
        if record.recommended_detections:
            print(f"     Detections: {', '.join(m.profile_name for m in record.recommended_detections)}")
    print()

    # Step 4: Scoring and ranking
    print("🎯 Step 4: SCORING and RANKING records...")
    print("-" * 70)
    ranked = bubble_up_sort(add_risk_scores(records, NOW))
    for record in ranked:
        badges = f" [{', '.join(record.risk.badges)}]" if record.risk.badges else ''
        print(f"  {record.score:3d} {record.severity:<8} {record.title[:50]}{badges}")
    print()

    # Step 5: Full cycle through the service and cache
    print("💾 Step 5: RUNNING a cached processing cycle...")
    print("-" * 70)
    service = ThreatService(ThreatPipeline.from_config(config), CacheGateway(MemoryStore()))
    batch = service.run_cycle(MOCK_ITEMS, NOW)
    top = service.get_top_payload()
    print(f"✓ Cached {batch.count} threats, top slice holds {top['count']}")
    print(f"  Severity counts: {batch.statistics['severityCounts']}")
    print(f"  Items with related threats: {batch.correlation_stats['itemsWithRelated']}")
    print()

    print("=" * 70)
    print("✅ DEMO COMPLETE!")
    print("=" * 70)
    print()
    print("Try these CLI commands:")
    print("  threat-triage process")
    print("  threat-triage threats --severity HIGH")
    print("  threat-triage top --limit 5")
    print("  threat-triage export --output demo_export.json --format json")
    print("  threat-triage serve")
    print()


if __name__ == '__main__':
    main()
