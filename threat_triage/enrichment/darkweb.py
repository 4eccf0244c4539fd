"""Dark-web correlation: ransomware leak-site victims and paste-site IOCs."""

from collections import Counter
from typing import Any, Dict, List, Sequence

from threat_triage import extraction
from threat_triage.enrichment.base import BaseEnricher, clamp_confidence, mentions, record_text
from threat_triage.enrichment.profiles import PasteFinding, RansomwareVictim
from threat_triage.models import AttributionMatch, DarkWebIntel, ThreatRecord

VICTIM_NAME_WEIGHT = 50
GROUP_WEIGHT = 30
INDUSTRY_WEIGHT = 10
ORGANIZATION_WEIGHT = 20
VICTIM_MIN_CONFIDENCE = 20
VICTIM_TOP_N = 10

PASTE_WEIGHTS = {
    'ips': 15,
    'domains': 20,
    'emails': 10,
    'hashes': 25,
    'cves': 30,
}
PASTE_TOP_N = 5


class DarkWebEnricher(BaseEnricher):
    """Correlates records with ransomware victims and paste findings."""

    name = 'dark-web correlation'
    field_name = 'dark_web_intel'
    min_confidence = VICTIM_MIN_CONFIDENCE
    top_n = VICTIM_TOP_N

    def __init__(self, victims: Sequence[RansomwareVictim], pastes: Sequence[PasteFinding],
                 top_n=None, pastes_top_n: int = PASTE_TOP_N):
        super().__init__(top_n)
        self.victims = tuple(victims)
        self.pastes = tuple(pastes)
        self.pastes_top_n = pastes_top_n

    def match(self, record: ThreatRecord) -> DarkWebIntel:
        return DarkWebIntel(
            ransomware_victims=self._rank(self.match_victims(record)),
            paste_findings=self._rank(self.match_pastes(record), minimum=0,
                                      top_n=self.pastes_top_n, strict=True),
        )

    def has_annotation(self, value: Any) -> bool:
        return value is not None and value.has_matches

    def match_victims(self, record: ThreatRecord) -> List[AttributionMatch]:
        """Score every known victim against the record text."""
        text = record_text(record)
        organizations = extraction.extract_organizations(text)

        matches = []
        for victim in self.victims:
            confidence = 0
            indicators = []

            if mentions(text, victim.victim_name):
                confidence += VICTIM_NAME_WEIGHT
                indicators.append(f"Victim name: {victim.victim_name}")
            if mentions(text, victim.ransomware_group):
                confidence += GROUP_WEIGHT
                indicators.append(f"Ransomware group: {victim.ransomware_group}")
            if mentions(text, victim.industry):
                confidence += INDUSTRY_WEIGHT
                indicators.append(f"Industry: {victim.industry}")
            for organization in organizations:
                if organization.lower() in victim.victim_name.lower():
                    confidence += ORGANIZATION_WEIGHT
                    indicators.append(f"Organization match: {organization}")

            matches.append(AttributionMatch(
                profile_id=victim.id,
                profile_name=victim.victim_name,
                confidence=clamp_confidence(confidence),
                matched_indicators=tuple(indicators),
                attributes={
                    'ransomwareGroup': victim.ransomware_group,
                    'industry': victim.industry,
                    'severity': victim.severity,
                    'status': victim.status,
                    'discoveredDate': victim.discovered_date,
                },
            ))
        return matches

    def match_pastes(self, record: ThreatRecord) -> List[AttributionMatch]:
        """Score every paste finding by shared indicators of compromise."""
        iocs = extraction.extract_iocs(record_text(record, include_tags=True))
        found = {
            'ips': set(iocs.ips),
            'domains': set(iocs.domains),
            'emails': set(iocs.emails),
            'hashes': set(iocs.hashes),
            'cves': set(iocs.cves),
        }

        matches = []
        for paste in self.pastes:
            score = 0
            matched = {}
            indicators = []
            for kind, weight in PASTE_WEIGHTS.items():
                hits = [value for value in paste.iocs.get(kind, ())
                        if _canonical(kind, value) in found[kind]]
                matched[kind] = hits
                if hits:
                    score += weight * len(hits)
                    indicators.extend(hits)

            matches.append(AttributionMatch(
                profile_id=paste.id,
                profile_name=paste.title,
                confidence=clamp_confidence(score),
                matched_indicators=tuple(indicators),
                attributes={
                    'pasteSite': paste.paste_site,
                    'category': paste.category,
                    'severity': paste.severity,
                    'discoveredDate': paste.discovered_date,
                    'matchScore': score,
                    'matchedIOCs': matched,
                },
            ))
        return matches


def _canonical(kind: str, value: str) -> str:
    return value.upper() if kind == 'cves' else value.lower()


def get_dark_web_stats(victims: Sequence[RansomwareVictim],
                       pastes: Sequence[PasteFinding]) -> Dict[str, int]:
    """Summary counts for the dark-web reference set."""
    return {
        'totalVictims': len(victims),
        'totalPastes': len(pastes),
        'criticalVictims': sum(1 for v in victims if v.severity.upper() == 'CRITICAL'),
        'criticalPastes': sum(1 for p in pastes if p.severity.upper() == 'CRITICAL'),
        'activeIncidents': sum(1 for v in victims if v.status in ('active', 'negotiating')),
        'leakedIncidents': sum(1 for v in victims if v.status == 'leaked'),
    }


def get_top_ransomware_groups(victims: Sequence[RansomwareVictim], limit: int = 10) -> List[Dict[str, Any]]:
    """Ransomware groups ranked by victim count."""
    counts = Counter(victim.ransomware_group for victim in victims)
    return [{'group': group, 'count': count} for group, count in counts.most_common(limit)]
