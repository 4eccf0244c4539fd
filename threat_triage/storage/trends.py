"""Hourly trend buckets of source and tag counts."""

import logging
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List

from threat_triage.errors import CacheReadError, CacheWriteError

logger = logging.getLogger(__name__)

BUCKET_PREFIX = 'trends:'
BUCKET_TTL_SECONDS = 7 * 24 * 60 * 60


def bucket_key(moment: datetime) -> str:
    """ISO hour bucket for a time, e.g. ``2024-05-01T13:00:00Z``."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).strftime('%Y-%m-%dT%H:00:00Z')


def empty_bucket(key: str) -> Dict[str, Any]:
    return {'bucket': key, 'data': {'sources': {}, 'tags': {}}}


def get_top_n(counts: Dict[str, int], n: int = 5) -> Dict[str, int]:
    """The ``n`` largest counts, largest first."""
    return dict(Counter(counts).most_common(n))


class TrendTracker:
    """Maintains ``trends:<hour>`` buckets in the cache."""

    def __init__(self, cache, ttl_seconds: int = BUCKET_TTL_SECONDS):
        self.cache = cache
        self.ttl_seconds = ttl_seconds

    def update_bucket(self, records: Iterable[Any], now: datetime) -> Dict[str, Any]:
        """
        Add a batch's source and tag counts to the current hour's bucket.

        Args:
            records: Items or records with ``source`` and ``tags``
            now: Current time, selects the bucket

        Returns:
            The updated bucket
        """
        key = bucket_key(now)
        try:
            bucket = self.cache.get_or_default(BUCKET_PREFIX + key) or empty_bucket(key)
        except CacheReadError as e:
            logger.error(f"Failed to read trends bucket {key}, starting it empty: {e}")
            bucket = empty_bucket(key)
        sources = bucket['data'].setdefault('sources', {})
        tags = bucket['data'].setdefault('tags', {})

        for record in records:
            source = record.source or 'Unknown'
            sources[source] = sources.get(source, 0) + 1
            for tag in record.tags:
                tags[tag] = tags.get(tag, 0) + 1

        try:
            self.cache.put(BUCKET_PREFIX + key, bucket, self.ttl_seconds)
        except CacheWriteError as e:
            logger.error(f"Failed to update trends bucket {key}: {e}")
        return bucket

    def get_buckets(self, now: datetime, hours: int = 24) -> List[Dict[str, Any]]:
        """The last ``hours`` buckets in chronological order; missing hours are empty."""
        buckets = []
        for offset in range(hours - 1, -1, -1):
            key = bucket_key(now - timedelta(hours=offset))
            try:
                bucket = self.cache.get_or_default(BUCKET_PREFIX + key)
            except CacheReadError as e:
                logger.error(f"Failed to read trends bucket {key}: {e}")
                bucket = None
            buckets.append(bucket or empty_bucket(key))
        return buckets

    def summarize(self, now: datetime, hours: int = 24, n: int = 5) -> Dict[str, Any]:
        """Top sources and tags over the window."""
        sources: Counter = Counter()
        tags: Counter = Counter()
        buckets = self.get_buckets(now, hours)
        for bucket in buckets:
            sources.update(bucket['data'].get('sources', {}))
            tags.update(bucket['data'].get('tags', {}))
        return {
            'hours': hours,
            'buckets': buckets,
            'topSources': get_top_n(sources, n),
            'topTags': get_top_n(tags, n),
        }
