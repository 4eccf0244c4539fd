"""Deterministic ranking and severity filters."""

from typing import List, Optional, Sequence

from threat_triage.models import ThreatRecord

SEVERITY_ORDER = ('INFO', 'LOW', 'MEDIUM', 'HIGH', 'CRITICAL')


def _rank_key(record: ThreatRecord):
    return (-record.score, -record.source_count, -record.published_at.timestamp())


def bubble_up_sort(records: Sequence[ThreatRecord]) -> List[ThreatRecord]:
    """
    Stable sort by score, then source count, then publish time, all descending.

    Args:
        records: Scored records

    Returns:
        New sorted list; records tied on all three keys keep their input order
    """
    return sorted(records, key=_rank_key)


def get_top_threats(records: Sequence[ThreatRecord], n: int = 10) -> List[ThreatRecord]:
    """The first ``n`` records in bubble-up order."""
    return bubble_up_sort(records)[:max(n, 0)]


def filter_by_severity(records: Sequence[ThreatRecord], severity: Optional[str]) -> List[ThreatRecord]:
    """Keep records with exactly this severity; 'ALL' or empty keeps everything."""
    if not severity or severity.upper() == 'ALL':
        return list(records)
    return [record for record in records if record.severity == severity.upper()]


def filter_by_min_severity(records: Sequence[ThreatRecord], min_severity: str) -> List[ThreatRecord]:
    """Keep records at or above a severity; an unknown severity keeps everything."""
    minimum = (min_severity or '').upper()
    if minimum not in SEVERITY_ORDER:
        return list(records)
    floor = SEVERITY_ORDER.index(minimum)
    return [
        record for record in records
        if record.severity in SEVERITY_ORDER and SEVERITY_ORDER.index(record.severity) >= floor
    ]
