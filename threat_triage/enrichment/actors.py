"""Threat actor attribution."""

from typing import Any, Dict, List, Sequence, Tuple

from threat_triage import extraction
from threat_triage.enrichment.base import BaseEnricher, clamp_confidence, overlaps, record_text
from threat_triage.enrichment.profiles import ActorProfile
from threat_triage.models import AttributionMatch, ThreatRecord

TTP_WEIGHT = 30
MALWARE_WEIGHT = 40
INFRASTRUCTURE_WEIGHT = 25
TARGET_WEIGHT = 15
MIN_CONFIDENCE = 40
TOP_N = 3


def get_confidence_level(score: int) -> str:
    """Map a confidence score to a qualitative level."""
    if score >= 91:
        return 'very-high'
    if score >= 71:
        return 'high'
    if score >= 41:
        return 'medium'
    return 'low'


def score_actor(record: Any, actor: ActorProfile) -> Tuple[int, Tuple[str, ...]]:
    """
    Score how strongly a record points at one actor.

    Args:
        record: Record or item with title, description and tags
        actor: Actor profile

    Returns:
        (confidence in [0, 100], matched indicator descriptions)
    """
    text = record_text(record)
    tagged_text = record_text(record, include_tags=True)
    score = 0
    indicators = []

    techniques = extraction.unique(extraction.technique_tags(record.tags) + extraction.extract_techniques(text))
    for ttp in techniques:
        if ttp in actor.ttps:
            score += TTP_WEIGHT
            indicators.append(f"TTP: {ttp}")

    for malware in extraction.extract_malware(tagged_text):
        if any(overlaps(malware, family) for family in actor.malware_families):
            score += MALWARE_WEIGHT
            indicators.append(f"Malware: {malware}")

    for ip in extraction.extract_ips(text):
        if ip in actor.ips:
            score += INFRASTRUCTURE_WEIGHT
            indicators.append(f"IP: {ip}")
    for domain in extraction.extract_domains(text):
        if any(overlaps(domain, known) for known in actor.domains):
            score += INFRASTRUCTURE_WEIGHT
            indicators.append(f"Domain: {domain}")

    for industry in extraction.extract_industries(text):
        if any(overlaps(industry, target) for target in actor.target_industries):
            score += TARGET_WEIGHT
            indicators.append(f"Industry: {industry}")
    for country in extraction.extract_countries(text):
        if any(overlaps(country, target) for target in actor.target_countries):
            score += TARGET_WEIGHT
            indicators.append(f"Country: {country}")

    return clamp_confidence(score), tuple(indicators)


def attribute_actors(record: Any, actors: Sequence[ActorProfile],
                     min_confidence: int = MIN_CONFIDENCE) -> List[AttributionMatch]:
    """Every actor whose score clears the minimum, unsorted."""
    matches = []
    for actor in actors:
        confidence, indicators = score_actor(record, actor)
        if confidence >= min_confidence:
            matches.append(AttributionMatch(
                profile_id=actor.id,
                profile_name=actor.name,
                confidence=confidence,
                matched_indicators=indicators,
                attributes={
                    'aliases': list(actor.aliases),
                    'type': actor.type,
                    'country': actor.country,
                    'confidenceLevel': get_confidence_level(confidence),
                    'sophistication': actor.sophistication,
                    'motivation': list(actor.motivation),
                },
            ))
    return matches


class ActorAttributionEnricher(BaseEnricher):
    """Attributes records to known threat actors."""

    name = 'actor attribution'
    field_name = 'actor_attribution'
    min_confidence = MIN_CONFIDENCE
    top_n = TOP_N

    def __init__(self, actors: Sequence[ActorProfile], top_n=None):
        super().__init__(top_n)
        self.actors = tuple(actors)

    def match(self, record: ThreatRecord) -> Tuple[AttributionMatch, ...]:
        return self._rank(attribute_actors(record, self.actors, self.min_confidence))


def get_actor_stats(actors: Sequence[ActorProfile]) -> Dict[str, int]:
    """Summary counts for an actor reference set."""
    return {
        'totalActors': len(actors),
        'activeActors': sum(1 for a in actors if a.status == 'active'),
        'nationStateCount': sum(1 for a in actors if a.type == 'nation-state'),
        'cybercrimeCount': sum(1 for a in actors if a.type == 'cybercrime'),
        'totalCampaigns': sum(len(a.campaigns) for a in actors),
    }


def get_top_actors(actors: Sequence[ActorProfile], limit: int = 10) -> List[Dict[str, Any]]:
    """Actors with the most recorded campaigns."""
    rows = [
        {
            'name': actor.name,
            'type': actor.type,
            'country': actor.country,
            'campaignCount': len(actor.campaigns),
            'sophistication': actor.sophistication,
        }
        for actor in actors
    ]
    rows.sort(key=lambda row: row['campaignCount'], reverse=True)
    return rows[:limit]
