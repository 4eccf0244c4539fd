"""Shared behaviour for the attribution enrichers."""

import logging
from dataclasses import replace
from typing import Any, Iterable, List, Optional, Sequence, Tuple

from threat_triage.models import AttributionMatch, ThreatRecord

logger = logging.getLogger(__name__)


def clamp_confidence(value: float) -> int:
    """Clamp a raw score to an integer confidence in [0, 100]."""
    return int(max(0, min(100, value)))


def record_text(record: Any, include_tags: bool = False) -> str:
    """Title and description (and optionally tags) as one string."""
    text = f"{record.title} {record.description or ''}"
    if include_tags:
        text = f"{text} {' '.join(record.tags)}"
    return text


def mentions(text: str, term: str) -> bool:
    """Case-insensitive substring check used for profile names."""
    return bool(term) and term.lower() in text.lower()


def overlaps(a: str, b: str) -> bool:
    """True when either lowercased string contains the other."""
    a, b = a.lower(), b.lower()
    return bool(a and b) and (a in b or b in a)


class BaseEnricher:
    """
    Matches records against one reference profile set.

    Subclasses implement ``match`` for a single record; ``enrich`` applies it
    to a batch and stores the result in the record field named by
    ``field_name``.
    """

    name = 'base'
    field_name = ''
    min_confidence = 0
    top_n = 5

    def __init__(self, top_n: Optional[int] = None):
        if top_n is not None:
            self.top_n = top_n

    def match(self, record: ThreatRecord) -> Any:
        raise NotImplementedError

    def enrich(self, records: Sequence[ThreatRecord]) -> List[ThreatRecord]:
        """
        Annotate every record in a batch.

        Args:
            records: Records to annotate

        Returns:
            New records with this enricher's field set
        """
        enriched = []
        for record in records:
            try:
                enriched.append(replace(record, **{self.field_name: self.match(record)}))
            except Exception as e:
                logger.error(f"Error in {self.name} enrichment for '{record.title}': {e}")
                # Still add the record, just without this annotation
                enriched.append(record)

        annotated = sum(1 for record in enriched if self.has_annotation(getattr(record, self.field_name)))
        logger.info(f"{self.name} enrichment matched {annotated}/{len(enriched)} records")
        return enriched

    def has_annotation(self, value: Any) -> bool:
        return bool(value)

    def _rank(self, matches: Iterable[AttributionMatch], minimum: Optional[int] = None,
              top_n: Optional[int] = None, strict: bool = False) -> Tuple[AttributionMatch, ...]:
        """Filter by minimum confidence, sort descending and truncate."""
        minimum = self.min_confidence if minimum is None else minimum
        top_n = self.top_n if top_n is None else top_n
        if strict:
            kept = [m for m in matches if m.confidence > minimum]
        else:
            kept = [m for m in matches if m.confidence >= minimum]
        kept.sort(key=lambda m: m.confidence, reverse=True)
        return tuple(kept[:top_n])
