"""Data models shared by every pipeline stage.

Stages never mutate a model in place. Later stages extend a record with
``dataclasses.replace`` so each stage's contribution stays an explicit field.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple

from threat_triage.errors import ParseError


def isoformat(value: datetime) -> str:
    """Render a datetime as an ISO-8601 UTC string with a ``Z`` suffix."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace('+00:00', 'Z')


def _first_present(entry: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        value = entry.get(key)
        if value not in (None, ''):
            return value
    return None


@dataclass(frozen=True)
class RawItem:
    """A feed entry exactly as the fetch layer delivered it."""

    title: Any = None
    link: Any = None
    pub_date: Any = None
    source: Any = None
    description: Any = None
    tags: Tuple[Any, ...] = ()
    source_url: Any = None

    @classmethod
    def from_dict(cls, entry: Any) -> 'RawItem':
        """
        Build a raw item from a feed dictionary.

        Args:
            entry: Mapping produced by a feed parser

        Returns:
            RawItem

        Raises:
            ParseError: If the entry is not a mapping or has neither title nor link
        """
        if isinstance(entry, RawItem):
            return entry
        if not isinstance(entry, Mapping):
            raise ParseError(f"Raw item must be a mapping, got {type(entry).__name__}")

        title = _first_present(entry, 'title', 'name')
        link = _first_present(entry, 'link', 'url', 'guid')
        if title is None and link is None:
            raise ParseError("Raw item has neither a title nor a link")

        tags = entry.get('tags') or ()
        if isinstance(tags, str):
            tags = (tags,)
        elif not isinstance(tags, (list, tuple, set, frozenset)):
            tags = ()

        return cls(
            title=title,
            link=link,
            pub_date=_first_present(entry, 'pubDate', 'pub_date', 'published', 'date', 'updated'),
            source=entry.get('source'),
            description=_first_present(entry, 'description', 'summary', 'content'),
            tags=tuple(tags),
            source_url=_first_present(entry, 'sourceUrl', 'source_url'),
        )


@dataclass(frozen=True)
class NormalizedItem:
    """A raw item with sanitized text, canonical tags and explicit defaults."""

    title: str
    link: str
    published_at: datetime
    source: str
    description: str = ''
    tags: Tuple[str, ...] = ()
    source_url: str = ''

    def to_dict(self) -> Dict[str, Any]:
        return {
            'title': self.title,
            'link': self.link,
            'pubDate': isoformat(self.published_at),
            'description': self.description,
            'source': self.source,
            'sourceUrl': self.source_url,
            'tags': list(self.tags),
        }


@dataclass(frozen=True)
class DuplicateMatch:
    """Outcome of comparing two items for duplication."""

    is_duplicate: bool
    match_type: str
    confidence: float

    def to_dict(self) -> Dict[str, Any]:
        return {'matchType': self.match_type, 'confidence': self.confidence}


NO_MATCH = DuplicateMatch(is_duplicate=False, match_type='none', confidence=0.0)


@dataclass(frozen=True)
class DuplicateGroup:
    """Items judged equivalent, merged around the most recent member."""

    primary: NormalizedItem
    members: Tuple[NormalizedItem, ...]
    sources: Tuple[str, ...]
    tags: Tuple[str, ...]
    alternate_links: Tuple[str, ...]
    matches: Tuple[DuplicateMatch, ...] = ()

    @property
    def source_count(self) -> int:
        return len(self.sources)

    @property
    def match_type(self) -> Optional[str]:
        return self.matches[0].match_type if self.matches else None

    @property
    def match_confidence(self) -> Optional[float]:
        return self.matches[0].confidence if self.matches else None

    @classmethod
    def from_members(cls, members: Sequence[NormalizedItem],
                     matches: Sequence[DuplicateMatch] = ()) -> 'DuplicateGroup':
        """
        Merge a group of equivalent items.

        The primary is the member with the latest publish time; on a tie the
        earliest member in input order wins.

        Args:
            members: Items in the group, in input order
            matches: Matches that pulled non-first members into the group

        Returns:
            DuplicateGroup
        """
        if not members:
            raise ValueError("A duplicate group needs at least one member")

        primary = members[0]
        for member in members[1:]:
            if member.published_at > primary.published_at:
                primary = member

        sources = []
        tags = []
        alternate_links = []
        for member in members:
            if member.source not in sources:
                sources.append(member.source)
            for tag in member.tags:
                if tag not in tags:
                    tags.append(tag)
            if member.link and member.link != primary.link and member.link not in alternate_links:
                alternate_links.append(member.link)

        return cls(
            primary=primary,
            members=tuple(members),
            sources=tuple(sources),
            tags=tuple(tags),
            alternate_links=tuple(alternate_links),
            matches=tuple(matches),
        )


@dataclass(frozen=True)
class RelatedThreatRef:
    link: str
    title: str
    source: str
    relation_score: int
    reasons: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            'link': self.link,
            'title': self.title,
            'source': self.source,
            'relationScore': self.relation_score,
            'reasons': list(self.reasons),
        }


@dataclass(frozen=True)
class CorrelationRecord:
    correlation_id: str
    related: Tuple[RelatedThreatRef, ...] = ()

    @property
    def related_count(self) -> int:
        return len(self.related)


@dataclass(frozen=True)
class AttributionMatch:
    """A reference profile that cleared an enricher's confidence threshold."""

    profile_id: str
    profile_name: str
    confidence: int
    matched_indicators: Tuple[str, ...] = ()
    attributes: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'profileId': self.profile_id,
            'profileName': self.profile_name,
            'confidence': self.confidence,
            'matchedIndicators': list(self.matched_indicators),
        }
        data.update(self.attributes)
        return data


@dataclass(frozen=True)
class DarkWebIntel:
    ransomware_victims: Tuple[AttributionMatch, ...] = ()
    paste_findings: Tuple[AttributionMatch, ...] = ()

    @property
    def has_matches(self) -> bool:
        return bool(self.ransomware_victims or self.paste_findings)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'ransomwareVictims': [m.to_dict() for m in self.ransomware_victims],
            'pasteFindings': [m.to_dict() for m in self.paste_findings],
        }


@dataclass(frozen=True)
class RiskAssessment:
    score: int
    severity: str
    evidence: Tuple[str, ...] = ()
    badges: Tuple[str, ...] = ()


def _matches_to_list(matches: Optional[Tuple[AttributionMatch, ...]]) -> Optional[list]:
    if matches is None:
        return None
    return [m.to_dict() for m in matches]


@dataclass(frozen=True)
class ThreatRecord:
    """
    A deduplicated item plus every later stage's contribution.

    Enrichment fields are ``None`` until their enricher runs; an empty tuple
    means the enricher ran and found nothing.
    """

    item: NormalizedItem
    group: DuplicateGroup
    correlation: Optional[CorrelationRecord] = None
    apt_attribution: Optional[Tuple[AttributionMatch, ...]] = None
    actor_attribution: Optional[Tuple[AttributionMatch, ...]] = None
    dark_web_intel: Optional[DarkWebIntel] = None
    recommended_detections: Optional[Tuple[AttributionMatch, ...]] = None
    geopolitical_context: Optional[Tuple[AttributionMatch, ...]] = None
    base_risk: Optional[RiskAssessment] = None
    risk: Optional[RiskAssessment] = None

    @classmethod
    def from_group(cls, group: DuplicateGroup) -> 'ThreatRecord':
        return cls(item=replace(group.primary, tags=group.tags), group=group)

    @classmethod
    def from_item(cls, item: NormalizedItem) -> 'ThreatRecord':
        return cls.from_group(DuplicateGroup.from_members((item,)))

    @property
    def title(self) -> str:
        return self.item.title

    @property
    def link(self) -> str:
        return self.item.link

    @property
    def description(self) -> str:
        return self.item.description

    @property
    def published_at(self) -> datetime:
        return self.item.published_at

    @property
    def source(self) -> str:
        return self.item.source

    @property
    def tags(self) -> Tuple[str, ...]:
        return self.item.tags

    @property
    def sources(self) -> Tuple[str, ...]:
        return self.group.sources

    @property
    def source_count(self) -> int:
        return self.group.source_count

    @property
    def alternate_links(self) -> Tuple[str, ...]:
        return self.group.alternate_links

    @property
    def related_count(self) -> int:
        return self.correlation.related_count if self.correlation else 0

    @property
    def score(self) -> int:
        return self.risk.score if self.risk else 0

    @property
    def severity(self) -> Optional[str]:
        return self.risk.severity if self.risk else None

    @property
    def detection_coverage(self) -> int:
        if not self.recommended_detections:
            return 0
        return self.recommended_detections[0].attributes.get('coverage', 0)

    def to_dict(self) -> Dict[str, Any]:
        data = self.item.to_dict()
        data.update({
            'sources': list(self.sources),
            'sourceCount': self.source_count,
            'alternateLinks': list(self.alternate_links),
        })
        if self.group.matches:
            data['duplicateMatches'] = [m.to_dict() for m in self.group.matches]
        if self.correlation is not None:
            data['correlationId'] = self.correlation.correlation_id
            data['relatedThreats'] = [r.to_dict() for r in self.correlation.related]
            data['relatedCount'] = self.correlation.related_count

        optional_matches = {
            'aptAttribution': self.apt_attribution,
            'actorAttribution': self.actor_attribution,
            'geopoliticalContext': self.geopolitical_context,
        }
        for key, matches in optional_matches.items():
            if matches is not None:
                data[key] = _matches_to_list(matches)
        if self.dark_web_intel is not None:
            data['darkWebIntel'] = self.dark_web_intel.to_dict()
        if self.recommended_detections is not None:
            data['recommendedDetections'] = _matches_to_list(self.recommended_detections)
            data['detectionCoverage'] = self.detection_coverage

        if self.base_risk is not None:
            data['baseRiskScore'] = self.base_risk.score
        if self.risk is not None:
            data['riskScore'] = self.risk.score
            data['severity'] = self.risk.severity
            data['riskEvidence'] = list(self.risk.evidence)
            data['badges'] = list(self.risk.badges)
        return data


@dataclass(frozen=True)
class RankedBatch:
    """One processing cycle's output, written wholesale to the cache."""

    updated: datetime
    version: str
    items: Tuple[ThreatRecord, ...]
    correlation_stats: Dict[str, Any] = field(default_factory=dict)
    statistics: Dict[str, Any] = field(default_factory=dict)
    processing_time_ms: int = 0

    @property
    def count(self) -> int:
        return len(self.items)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'updated': isoformat(self.updated),
            'version': self.version,
            'count': self.count,
            'items': [record.to_dict() for record in self.items],
            'correlationStats': self.correlation_stats,
            'statistics': self.statistics,
            'processingTimeMs': self.processing_time_ms,
        }
