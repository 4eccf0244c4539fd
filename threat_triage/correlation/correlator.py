"""Cross-source correlation of threat records."""

import hashlib
import logging
from dataclasses import replace
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple
from urllib.parse import urlsplit

from threat_triage import extraction
from threat_triage.models import CorrelationRecord, RelatedThreatRef, ThreatRecord

logger = logging.getLogger(__name__)

MAX_RELATED = 5
MIN_RELATION_SCORE = 30
SHARED_CVE_WEIGHT = 50
SHARED_TAGS_WEIGHT = 20
SHARED_TAGS_MINIMUM = 3
SHARED_ACTOR_WEIGHT = 30
TEMPORAL_WEIGHT = 10
TEMPORAL_WINDOW_HOURS = 24


def generate_correlation_id(record: Any) -> str:
    """
    Build a stable correlation id for an item.

    Args:
        record: Item or record with tags, link and title

    Returns:
        'cve:<sorted ids>', 'url:<host><path>' or 'title:<hash>'
    """
    cves = extraction.cve_tags(record.tags)
    if cves:
        return 'cve:' + ','.join(sorted(cves))

    if record.link:
        try:
            parts = urlsplit(record.link)
            hostname = parts.hostname
        except ValueError:
            hostname = None
        if hostname and parts.scheme:
            return f"url:{hostname}{parts.path}"

    digest = hashlib.md5((record.title or '').encode('utf-8')).hexdigest()
    return f"title:{digest[:12]}"


def _hours_apart(a: datetime, b: datetime) -> float:
    return abs((a - b).total_seconds()) / 3600


def find_related_threats(record: ThreatRecord, all_records: Sequence[ThreatRecord],
                         max_related: int = MAX_RELATED,
                         min_score: int = MIN_RELATION_SCORE) -> Tuple[RelatedThreatRef, ...]:
    """
    Score every other record's relation to this one.

    Records whose sources all overlap with this record's sources are skipped.
    The relation is not symmetric.

    Args:
        record: Record to find relations for
        all_records: Batch to search
        max_related: Maximum relations to keep
        min_score: Minimum relation score to keep

    Returns:
        Related references, descending by relation score
    """
    record_cves = extraction.cve_tags(record.tags)
    record_apts = extraction.apt_tags(record.tags)
    record_sources = set(record.sources)

    related = []
    for other in all_records:
        if other is record:
            continue
        if record_sources and record_sources.issubset(other.sources):
            continue

        score = 0
        reasons = []

        other_cves = set(extraction.cve_tags(other.tags))
        common_cves = [cve for cve in record_cves if cve in other_cves]
        if common_cves:
            score += SHARED_CVE_WEIGHT * len(common_cves)
            reasons.append(f"Shared CVE: {', '.join(common_cves)}")

        other_tags = set(other.tags)
        common_tags = [tag for tag in record.tags
                       if tag in other_tags and not tag.upper().startswith('CVE-')]
        if len(common_tags) >= SHARED_TAGS_MINIMUM:
            score += SHARED_TAGS_WEIGHT
            reasons.append(f"Shared tags: {', '.join(common_tags[:3])}")

        other_apts = set(extraction.apt_tags(other.tags))
        common_apts = [apt for apt in record_apts if apt in other_apts]
        if common_apts:
            score += SHARED_ACTOR_WEIGHT
            reasons.append(f"Same threat actor: {', '.join(common_apts)}")

        if score > 0 and _hours_apart(record.published_at, other.published_at) <= TEMPORAL_WINDOW_HOURS:
            score += TEMPORAL_WEIGHT
            reasons.append('Published within 24 hours')

        if score >= min_score:
            related.append(RelatedThreatRef(
                link=other.link,
                title=other.title,
                source=other.source,
                relation_score=score,
                reasons=tuple(reasons),
            ))

    related.sort(key=lambda ref: ref.relation_score, reverse=True)
    return tuple(related[:max_related])


def add_correlation_data(records: Sequence[ThreatRecord], max_related: int = MAX_RELATED,
                         min_score: int = MIN_RELATION_SCORE) -> List[ThreatRecord]:
    """Attach a correlation id and related threats to every record."""
    correlated = []
    for record in records:
        correlation = CorrelationRecord(
            correlation_id=generate_correlation_id(record),
            related=find_related_threats(record, records, max_related, min_score),
        )
        correlated.append(replace(record, correlation=correlation))

    linked = sum(1 for record in correlated if record.related_count)
    logger.info(f"Correlated {len(correlated)} records ({linked} with related threats)")
    return correlated


def summarize_correlations(rows: Iterable[Tuple[Optional[str], int, int]]) -> Dict[str, Any]:
    """
    Summarize correlation coverage.

    Args:
        rows: (title, related count, source count) per item

    Returns:
        Correlation statistics; zeros for an empty batch
    """
    rows = list(rows)
    total = len(rows)
    with_related = sum(1 for _, related, _ in rows if related > 0)
    multi_source = sum(1 for _, _, sources in rows if sources > 1)

    most_title, most_count = None, 0
    for title, related, _ in rows:
        if related > most_count:
            most_title, most_count = title, related

    def percent(count: int) -> float:
        return round(count / total * 100, 1) if total else 0.0

    return {
        'totalItems': total,
        'itemsWithRelated': with_related,
        'itemsWithRelatedPercent': percent(with_related),
        'avgRelatedCount': round(sum(related for _, related, _ in rows) / total, 2) if total else 0.0,
        'multiSourceItems': multi_source,
        'multiSourcePercent': percent(multi_source),
        'mostCorrelated': {'title': most_title, 'relatedCount': most_count},
    }


def get_correlation_stats(records: Sequence[ThreatRecord]) -> Dict[str, Any]:
    """Correlation statistics for a batch of records."""
    return summarize_correlations(
        (record.title, record.related_count, record.source_count) for record in records
    )
