"""Geopolitical context for records that mention or implicate a country."""

from typing import Any, Dict, List, Sequence, Tuple

from threat_triage import extraction
from threat_triage.enrichment.actors import attribute_actors
from threat_triage.enrichment.base import BaseEnricher, clamp_confidence, record_text
from threat_triage.enrichment.profiles import ActorProfile, CountryRisk
from threat_triage.models import AttributionMatch, ThreatRecord

TEXT_MENTION_CONFIDENCE = 100


def get_risk_level(score: int) -> str:
    """Map a country risk score to a risk level."""
    if score >= 90:
        return 'critical'
    if score >= 70:
        return 'high'
    if score >= 40:
        return 'medium'
    return 'low'


class GeopoliticalEnricher(BaseEnricher):
    """
    Adds country risk context.

    Countries named in the text come first; home countries of attributed
    actors follow with the actor's confidence. Actor attribution is computed
    here rather than read from the record, so this enricher does not depend
    on the actor enricher having run.
    """

    name = 'geopolitical context'
    field_name = 'geopolitical_context'
    min_confidence = 0
    top_n = 3

    def __init__(self, countries: Sequence[CountryRisk], actors: Sequence[ActorProfile] = (), top_n=None):
        super().__init__(top_n)
        self.countries = tuple(countries)
        self.actors = tuple(actors)

    def match(self, record: ThreatRecord) -> Tuple[AttributionMatch, ...]:
        if not self.countries:
            return ()
        text = record_text(record)
        by_name = {country.name: country for country in self.countries}

        context: Dict[str, AttributionMatch] = {}
        for country in self.countries:
            if extraction.contains_term(text, country.name):
                context[country.name] = self._context(country, TEXT_MENTION_CONFIDENCE, 'text-mention',
                                                      (f"Country mentioned: {country.name}",))

        attributions = sorted(attribute_actors(record, self.actors), key=lambda m: m.confidence, reverse=True)
        for attribution in attributions:
            country = by_name.get(attribution.attributes.get('country'))
            if country is not None and country.name not in context:
                context[country.name] = self._context(country, attribution.confidence, 'actor-attribution',
                                                      (f"Actor: {attribution.profile_name}",))

        return self._rank(context.values())

    @staticmethod
    def _context(country: CountryRisk, confidence: int, basis: str, indicators) -> AttributionMatch:
        return AttributionMatch(
            profile_id=country.name.lower().replace(' ', '-'),
            profile_name=country.name,
            confidence=clamp_confidence(confidence),
            matched_indicators=tuple(indicators),
            attributes={
                'country': country.name,
                'riskScore': country.risk_score,
                'riskLevel': country.risk_level or get_risk_level(country.risk_score),
                'region': country.region,
                'basis': basis,
            },
        )


def get_global_risk_stats(countries: Sequence[CountryRisk]) -> Dict[str, Any]:
    """Risk level counts and average score over the country table."""
    if not countries:
        return {
            'totalCountries': 0,
            'criticalRisk': 0,
            'highRisk': 0,
            'mediumRisk': 0,
            'lowRisk': 0,
            'averageRiskScore': 0,
        }
    levels = [c.risk_level or get_risk_level(c.risk_score) for c in countries]
    return {
        'totalCountries': len(countries),
        'criticalRisk': levels.count('critical'),
        'highRisk': levels.count('high'),
        'mediumRisk': levels.count('medium'),
        'lowRisk': levels.count('low'),
        'averageRiskScore': int(sum(c.risk_score for c in countries) / len(countries) + 0.5),
    }


def get_top_risk_countries(countries: Sequence[CountryRisk], limit: int = 10) -> List[CountryRisk]:
    return sorted(countries, key=lambda c: c.risk_score, reverse=True)[:limit]
