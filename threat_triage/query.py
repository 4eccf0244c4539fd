"""Post-hoc filters over a cached batch payload."""

from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from threat_triage.correlation import summarize_correlations


def parse_timestamp(value: str) -> datetime:
    """
    Parse an ISO-8601 timestamp, treating naive values as UTC.

    Raises:
        ValueError: If the value is not ISO-8601
    """
    value = value.strip()
    if value.endswith('Z'):
        value = value[:-1] + '+00:00'
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _published_after(item: Dict[str, Any], after: datetime) -> bool:
    try:
        return parse_timestamp(item.get('pubDate') or '') >= after
    except ValueError:
        return False


def filter_items(items: Iterable[Dict[str, Any]], after: Optional[datetime] = None,
                 tag: Optional[str] = None, q: Optional[str] = None,
                 severity: Optional[str] = None) -> List[Dict[str, Any]]:
    """
    Filter serialized threat records.

    Args:
        items: Records as produced by ``ThreatRecord.to_dict``
        after: Keep items published at or after this time
        tag: Keep items carrying this tag (case-insensitive)
        q: Keep items whose title or description contains this text
        severity: Keep items with this severity; 'ALL' keeps everything

    Returns:
        Matching items in their original order
    """
    tag = tag.upper() if tag else None
    q = q.lower() if q else None
    severity = severity.upper() if severity and severity.upper() != 'ALL' else None

    matched = []
    for item in items:
        if after is not None and not _published_after(item, after):
            continue
        if tag and tag not in (t.upper() for t in item.get('tags', [])):
            continue
        if q and q not in f"{item.get('title', '')} {item.get('description', '')}".lower():
            continue
        if severity and (item.get('severity') or '').upper() != severity:
            continue
        matched.append(item)
    return matched


def correlation_stats(items: Iterable[Dict[str, Any]]) -> Dict[str, Any]:
    """Correlation statistics over serialized records."""
    return summarize_correlations(
        (item.get('title'), item.get('relatedCount', 0), item.get('sourceCount', 1)) for item in items
    )
