"""Parallel collection of already-fetched feed documents.

Each feed runs on a worker thread under a shared per-batch timeout. A feed
that raises or times out is logged and dropped; it never aborts the batch.
There is no retry.
"""

import json
import logging
from concurrent.futures import ThreadPoolExecutor, wait
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from threat_triage.errors import FetchError, ParseError
from threat_triage.models import isoformat

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10
DEFAULT_MAX_CONCURRENT = 5


def parse_json_feed(text: str, source_url: str = '', default_source: Optional[str] = None) -> List[Dict[str, Any]]:
    """
    Parse a JSON feed document into raw item dictionaries.

    Supports the CISA KEV catalogue (``vulnerabilities``), generic feeds
    (``items``) and bare lists of items.

    Args:
        text: JSON document
        source_url: Where the document came from
        default_source: Source name for items that carry none

    Returns:
        Raw item dictionaries

    Raises:
        ParseError: If the document is not JSON or has no recognised shape
    """
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise ParseError(f"Invalid JSON feed {source_url}: {e}") from e

    if isinstance(data, dict) and isinstance(data.get('vulnerabilities'), list):
        items = []
        for vuln in data['vulnerabilities']:
            cve_id = vuln.get('cveID', '')
            items.append({
                'title': f"{cve_id}: {vuln.get('vulnerabilityName', '')}",
                'link': f"https://nvd.nist.gov/vuln/detail/{cve_id}",
                'pubDate': vuln.get('dateAdded'),
                'description': vuln.get('shortDescription', ''),
                'source': 'CISA KEV',
                'sourceUrl': source_url,
                'tags': [cve_id, 'KEV', 'HIGH-PRIORITY'],
            })
        return items

    if isinstance(data, dict) and isinstance(data.get('items'), list):
        entries = data['items']
    elif isinstance(data, list):
        entries = data
    else:
        raise ParseError(f"Unrecognised feed document shape in {source_url}")

    items = []
    for entry in entries:
        if isinstance(entry, dict):
            entry = dict(entry)
            entry.setdefault('source', default_source)
            entry.setdefault('sourceUrl', source_url)
        items.append(entry)
    return items


class FeedSource:
    """A named source of raw items."""

    name = 'feed'

    def fetch(self) -> List[Any]:
        raise NotImplementedError


class StaticFeed(FeedSource):
    """Raw items already held in memory."""

    def __init__(self, name: str, items: Sequence[Any]):
        self.name = name
        self.items = list(items)

    def fetch(self) -> List[Any]:
        return list(self.items)


class JsonFeedFile(FeedSource):
    """A JSON feed document previously downloaded to disk."""

    def __init__(self, name: str, path: Path):
        self.name = name
        self.path = Path(path)

    def fetch(self) -> List[Any]:
        text = self.path.read_text(encoding='utf-8')
        return parse_json_feed(text, source_url=self.path.as_uri() if self.path.is_absolute() else str(self.path),
                               default_source=self.name)


class FeedCollector:
    """Runs feed sources in parallel batches with isolated failures."""

    def __init__(self, feeds: Sequence[FeedSource], timeout: float = DEFAULT_TIMEOUT_SECONDS,
                 max_concurrent: int = DEFAULT_MAX_CONCURRENT):
        """
        Initialize collector.

        Args:
            feeds: Feed sources to run
            timeout: Seconds each batch of feeds may take
            max_concurrent: Feeds run at once
        """
        self.feeds = list(feeds)
        self.timeout = timeout
        self.max_concurrent = max(1, max_concurrent)
        self.last_failures: List[FetchError] = []
        self.last_run: Optional[Dict[str, Any]] = None

    def collect(self) -> List[Any]:
        """
        Run every feed and combine their items.

        Returns:
            Raw items from the feeds that succeeded, in feed order
        """
        self.last_failures = []
        raw_items: List[Any] = []
        succeeded = 0

        for start in range(0, len(self.feeds), self.max_concurrent):
            batch = self.feeds[start:start + self.max_concurrent]
            executor = ThreadPoolExecutor(max_workers=len(batch), thread_name_prefix='feed')
            try:
                futures = [(feed, executor.submit(feed.fetch)) for feed in batch]
                _, pending = wait([future for _, future in futures], timeout=self.timeout)

                for feed, future in futures:
                    if future in pending:
                        self._record_failure(FetchError(feed.name, f"timed out after {self.timeout}s"))
                        continue
                    try:
                        items = future.result()
                    except Exception as e:
                        self._record_failure(FetchError(feed.name, str(e)))
                        continue
                    logger.info(f"Fetched {len(items)} items from {feed.name}")
                    raw_items.extend(items)
                    succeeded += 1
            finally:
                executor.shutdown(wait=False, cancel_futures=True)

        self.last_run = {
            'at': isoformat(datetime.now(timezone.utc)),
            'feeds': len(self.feeds),
            'succeeded': succeeded,
            'failed': [failure.feed_name for failure in self.last_failures],
            'items': len(raw_items),
        }
        logger.info(f"Collected {len(raw_items)} raw items from {succeeded}/{len(self.feeds)} feeds")
        return raw_items

    def _record_failure(self, error: FetchError):
        logger.error(str(error))
        self.last_failures.append(error)


def build_collector(config) -> FeedCollector:
    """Construct a collector over the enabled feed files in config."""
    feeds = [
        JsonFeedFile(feed.get('name', feed['path']), config.resolve_path(feed['path']))
        for feed in config.get_feeds()
        if feed.get('path')
    ]
    return FeedCollector(
        feeds,
        timeout=config.get('ingestion.timeout_seconds', DEFAULT_TIMEOUT_SECONDS),
        max_concurrent=config.get('ingestion.max_concurrent', DEFAULT_MAX_CONCURRENT),
    )
