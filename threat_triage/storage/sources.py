"""Feed source registry: approved sources, candidates and blocked domains."""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import urlsplit

from threat_triage.models import isoformat

logger = logging.getLogger(__name__)

APPROVED_KEY = 'sources:approved'
CANDIDATES_KEY = 'sources:candidates'
BLOCKED_KEY = 'settings:blocked_domains'


def _url_of(entry: Any) -> str:
    return entry if isinstance(entry, str) else (entry or {}).get('url', '')


def _hostname(url: str) -> str:
    if not url:
        return ''
    try:
        return (urlsplit(url).hostname or '').lower()
    except ValueError:
        return ''


class SourceRegistry:
    """Approved and candidate feed sources plus a domain blocklist, kept in the cache."""

    def __init__(self, cache, static_blocklist: Iterable[str] = ()):
        """
        Initialize registry.

        Args:
            cache: CacheGateway holding the source lists
            static_blocklist: Domains blocked by configuration
        """
        self.cache = cache
        self.static_blocklist = tuple(d.strip().lower() for d in static_blocklist if d and d.strip())

    def get_sources(self) -> Dict[str, List[Any]]:
        return {
            'approved': self.cache.get_or_default(APPROVED_KEY, []) or [],
            'candidates': self.cache.get_or_default(CANDIDATES_KEY, []) or [],
        }

    def add_approved_source(self, url: str, now: Optional[datetime] = None):
        """Approve a source URL, removing it from the candidates."""
        sources = self.get_sources()
        candidates = [c for c in sources['candidates'] if _url_of(c) != url]
        approved = sources['approved']
        if not any(_url_of(s) == url for s in approved):
            approved.append({'url': url, 'approvedAt': isoformat(now or datetime.now(timezone.utc))})

        self.cache.put(APPROVED_KEY, approved, 0)
        self.cache.put(CANDIDATES_KEY, candidates, 0)
        logger.info(f"Approved source {url}")

    def add_candidate_source(self, url: str, title: Optional[str] = None,
                             now: Optional[datetime] = None) -> bool:
        """
        Record a newly discovered source for review.

        Returns:
            True if the URL was added, False if already known or blocked
        """
        sources = self.get_sources()
        known = any(_url_of(s) == url for s in sources['approved'] + sources['candidates'])
        if known or self.is_blocked(_hostname(url)):
            return False

        sources['candidates'].append({
            'url': url,
            'title': title or _hostname(url),
            'discoveredAt': isoformat(now or datetime.now(timezone.utc)),
        })
        self.cache.put(CANDIDATES_KEY, sources['candidates'], 0)
        logger.info(f"Added candidate source {url}")
        return True

    def block_domain(self, domain: str):
        """Block a domain and drop every approved or candidate source on it."""
        domain = domain.strip().lower()
        blocked = self.cache.get_or_default(BLOCKED_KEY, []) or []
        if domain not in blocked:
            blocked.append(domain)
            self.cache.put(BLOCKED_KEY, blocked, 0)

        sources = self.get_sources()
        approved = [s for s in sources['approved'] if _hostname(_url_of(s)) != domain]
        candidates = [c for c in sources['candidates'] if _hostname(_url_of(c)) != domain]
        self.cache.put(APPROVED_KEY, approved, 0)
        self.cache.put(CANDIDATES_KEY, candidates, 0)
        logger.info(f"Blocked domain {domain}")

    def blocked_domains(self) -> List[str]:
        stored = self.cache.get_or_default(BLOCKED_KEY, []) or []
        return sorted(set(stored) | set(self.static_blocklist))

    def is_blocked(self, domain: str, blocked: Optional[Iterable[str]] = None) -> bool:
        """
        True if the domain or one of its parent domains is blocked.

        Args:
            domain: Hostname to check
            blocked: Blocklist to check against; read from the cache if omitted
        """
        domain = (domain or '').lower()
        if not domain:
            return False
        if blocked is None:
            blocked = self.blocked_domains()
        return any(domain == b or domain.endswith('.' + b) for b in blocked)

    def is_link_blocked(self, link: str, blocked: Optional[Iterable[str]] = None) -> bool:
        return self.is_blocked(_hostname(link), blocked)
