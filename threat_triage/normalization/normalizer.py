"""Normalization module for turning raw feed entries into uniform items."""

import html
import logging
import re
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Iterable, List, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from threat_triage import extraction
from threat_triage.errors import ParseError
from threat_triage.models import NormalizedItem, RawItem

logger = logging.getLogger(__name__)

DEFAULT_TITLE = 'Untitled'
DEFAULT_SOURCE = 'Unknown'


class ItemNormalizer:
    """Normalizes raw feed entries to a standard item shape."""

    SCRIPT_PATTERN = re.compile(r'<(script|style)[^>]*>.*?</\1>', re.IGNORECASE | re.DOTALL)
    TAG_PATTERN = re.compile(r'<[^>]+>')
    WHITESPACE_PATTERN = re.compile(r'\s+')

    def __init__(self, now: Optional[datetime] = None):
        """
        Initialize normalizer.

        Args:
            now: Reference time used when a publish time cannot be parsed
        """
        self.now = now or datetime.now(timezone.utc)

    def normalize(self, raw: RawItem) -> NormalizedItem:
        """
        Normalize a raw item to standard format.

        Malformed fields are defaulted rather than rejected.

        Args:
            raw: Raw feed item

        Returns:
            Normalized item
        """
        title = self._sanitize_html(raw.title) or DEFAULT_TITLE
        description = self._sanitize_html(raw.description)
        link = self._normalize_link(raw.link)
        source = self._sanitize_html(raw.source) or DEFAULT_SOURCE

        return NormalizedItem(
            title=title,
            link=link,
            published_at=self._normalize_timestamp(raw.pub_date),
            source=source,
            description=description,
            tags=self._canonical_tags(raw.tags, f"{title} {description}"),
            source_url=str(raw.source_url or '').strip(),
        )

    def _sanitize_html(self, value: Any) -> str:
        """Strip markup and decode entities."""
        if value is None:
            return ''
        text = str(value)
        text = self.SCRIPT_PATTERN.sub('', text)
        text = self.TAG_PATTERN.sub(' ', text)
        text = html.unescape(text)
        return self.WHITESPACE_PATTERN.sub(' ', text).strip()

    def _normalize_link(self, value: Any) -> str:
        """Trim a link and drop utm_* tracking parameters."""
        if not value:
            return ''
        link = str(value).strip()
        try:
            parts = urlsplit(link)
        except ValueError:
            return link
        if not parts.query:
            return link
        query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True)
                 if not k.lower().startswith('utm_')]
        return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(query), parts.fragment))

    def _normalize_timestamp(self, timestamp: Any) -> datetime:
        """Parse a publish time into an aware UTC datetime, defaulting to now."""
        parsed = None
        if isinstance(timestamp, datetime):
            parsed = timestamp
        elif isinstance(timestamp, (int, float)) and not isinstance(timestamp, bool):
            seconds = timestamp / 1000 if timestamp > 1e12 else timestamp
            try:
                parsed = datetime.fromtimestamp(seconds, tz=timezone.utc)
            except (OverflowError, OSError, ValueError):
                parsed = None
        elif isinstance(timestamp, str) and timestamp.strip():
            parsed = self._parse_timestamp_string(timestamp.strip())

        if parsed is None:
            if timestamp not in (None, ''):
                logger.debug(f"Unparseable publish time {timestamp!r}, using now")
            return self.now
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed.astimezone(timezone.utc)

    @staticmethod
    def _parse_timestamp_string(value: str) -> Optional[datetime]:
        iso_value = value[:-1] + '+00:00' if value.endswith(('Z', 'z')) else value
        try:
            return datetime.fromisoformat(iso_value)
        except ValueError:
            pass
        try:
            return parsedate_to_datetime(value)
        except (TypeError, ValueError, IndexError):
            return None

    def _canonical_tags(self, raw_tags: Iterable[Any], text: str) -> tuple:
        """Union of raw tags and identifiers found in text and tags."""
        tags = [str(tag).strip().upper() for tag in raw_tags if str(tag).strip()]
        tag_text = ' '.join(tags)
        combined = f"{text} {tag_text}"

        tags.extend(extraction.extract_cves(combined))
        tags.extend(extraction.extract_techniques(combined))
        tags.extend(extraction.extract_cwes(combined))
        tags.extend(extraction.extract_apt_groups(combined))
        tags.extend(extraction.extract_keyword_tags(text))
        return extraction.unique(tags)


def normalize_items(raw_items: Iterable[Any], now: Optional[datetime] = None) -> List[NormalizedItem]:
    """
    Normalize a list of raw items.

    Entries that cannot be read as a raw item at all are logged and skipped.

    Args:
        raw_items: RawItem instances or feed dictionaries
        now: Reference time for unparseable publish times

    Returns:
        List of normalized items
    """
    normalizer = ItemNormalizer(now)

    normalized = []
    skipped = 0
    for entry in raw_items:
        try:
            normalized.append(normalizer.normalize(RawItem.from_dict(entry)))
        except ParseError as e:
            skipped += 1
            logger.warning(f"Skipping raw item: {e}")

    logger.info(f"Normalized {len(normalized)} items ({skipped} skipped)")
    return normalized
