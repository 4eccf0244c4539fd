"""APT group correlation."""

from typing import Sequence, Tuple

from threat_triage import extraction
from threat_triage.enrichment.base import (
    BaseEnricher, clamp_confidence, mentions, overlaps, record_text,
)
from threat_triage.enrichment.profiles import AptProfile
from threat_triage.models import AttributionMatch, ThreatRecord

MALWARE_WEIGHT = 30
TECHNIQUE_WEIGHT = 20
TOOL_WEIGHT = 20
SECTOR_WEIGHT = 20
COUNTRY_WEIGHT = 5
NAME_WEIGHT = 40


class AptCorrelationEnricher(BaseEnricher):
    """Scores each APT profile against a record's malware, TTPs, tools and targets."""

    name = 'APT correlation'
    field_name = 'apt_attribution'
    min_confidence = 20
    top_n = 5

    def __init__(self, profiles: Sequence[AptProfile], top_n=None):
        super().__init__(top_n)
        self.profiles = tuple(profiles)

    def match(self, record: ThreatRecord) -> Tuple[AttributionMatch, ...]:
        text = record_text(record)
        tagged_text = record_text(record, include_tags=True)

        malware = extraction.extract_malware(tagged_text)
        techniques = extraction.technique_tags(record.tags)
        tools = extraction.extract_tools(text)
        sectors = extraction.extract_sectors(tagged_text)
        countries = extraction.extract_countries(text)

        return self._rank(self.score(profile, text, malware, techniques, tools, sectors, countries)
                          for profile in self.profiles)

    @staticmethod
    def score(profile: AptProfile, text: str, malware, techniques, tools,
              sectors, countries) -> AttributionMatch:
        """
        Score one profile against extracted indicators.

        Args:
            profile: APT profile
            text: Record title and description
            malware: Malware names found in the record
            techniques: MITRE technique ids on the record
            tools: Tool names found in the record
            sectors: Targeted sectors found in the record
            countries: Country keywords found in the record

        Returns:
            AttributionMatch (confidence may be below the threshold)
        """
        confidence = 0
        indicators = []

        profile_malware = {name.lower() for name in profile.malware}
        for name in malware:
            if name in profile_malware:
                confidence += MALWARE_WEIGHT
                indicators.append(f"Malware: {name}")

        matching_techniques = [t for t in techniques if t in profile.techniques]
        if matching_techniques:
            confidence += TECHNIQUE_WEIGHT * len(matching_techniques)
            indicators.append(f"{len(matching_techniques)} MITRE technique(s)")

        profile_tools = {tool.lower() for tool in profile.tools}
        for tool in tools:
            if tool in profile_tools:
                confidence += TOOL_WEIGHT
                indicators.append(f"Tool: {tool}")

        matching_sectors = [s for s in sectors
                            if any(overlaps(s, target) for target in profile.targeted_sectors)]
        if matching_sectors:
            confidence += SECTOR_WEIGHT * len(matching_sectors)
            indicators.append(f"Targeted sector: {', '.join(matching_sectors)}")

        matching_countries = [c for c in countries
                              if any(c in target.lower() for target in profile.targeted_countries)]
        if matching_countries:
            confidence += COUNTRY_WEIGHT * len(matching_countries)
            indicators.append(f"Targeted country: {', '.join(matching_countries)}")

        for name in (profile.name,) + profile.aliases:
            if mentions(text, name):
                confidence += NAME_WEIGHT
                indicators.append(f"APT name mentioned: {name.lower()}")
                break

        return AttributionMatch(
            profile_id=profile.id,
            profile_name=profile.name,
            confidence=clamp_confidence(confidence),
            matched_indicators=tuple(indicators),
            attributes={'country': profile.country, 'mitreAttackId': profile.mitre_attack_id},
        )
