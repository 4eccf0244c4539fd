"""Evidence-weighted risk scoring.

The base score sums four capped buckets (indicators, exploitability, recency,
threat type) and applies a source credibility multiplier. The enhanced score
adds corroboration bonuses and badges on top of it.
"""

import logging
import math
import re
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from threat_triage import extraction
from threat_triage.models import RiskAssessment, ThreatRecord

logger = logging.getLogger(__name__)

SOURCE_TIERS = {
    # Government and official sources
    'CISA KEV': 1.2,
    'CISA News': 1.2,
    'Alerts': 1.2,
    'NCSC UK': 1.2,
    # Vendor research
    'Microsoft Security Blog': 1.1,
    'Threat Intelligence': 1.1,
    'Cisco Talos Blog': 1.1,
    'Mandiant': 1.1,
    # Reputable news
    'BleepingComputer': 1.0,
    'The Record from Recorded Future News': 1.0,
    'Krebs on Security': 1.0,
}
DEFAULT_SOURCE_MULTIPLIER = 0.9

GOV_SOURCES = (
    'CISA KEV', 'CISA News', 'Alerts', 'NCSC UK', 'US-CERT', 'CERT', 'NSA', 'FBI', 'DHS',
)

EXPLOIT_KITS = (
    'angler', 'neutrino', 'rig', 'magnitude', 'fallout', 'spelevo', 'sundown',
    'terror', 'underminer', 'greenflash', 'kaixin',
)

ACTIVE_EXPLOITATION_PATTERN = re.compile(r'exploit.*wild|actively exploited|under attack', re.IGNORECASE)
POC_PATTERN = re.compile(r'proof[- ]of[- ]concept|\bpoc\b|exploit.*code|exploit.*available', re.IGNORECASE)

EXPLOITED_TAGS = ('EXPLOITED', 'ACTIVE-EXPLOITATION', 'IN-THE-WILD')

# Threat-type bucket, first match wins
THREAT_TYPE_POINTS = (
    ('RANSOMWARE', 10, 'Ransomware threat'),
    ('APT', 8, 'Advanced Persistent Threat'),
    ('MALWARE', 6, 'Malware threat'),
    ('EXPLOIT', 6, 'Exploit available'),
    ('PHISHING', 4, 'Phishing campaign'),
)

BASE_SEVERITIES = ((90, 'CRITICAL'), (70, 'HIGH'), (40, 'MEDIUM'))
ENHANCED_SEVERITIES = ((95, 'CRITICAL'), (85, 'HIGH'), (70, 'MEDIUM'), (40, 'LOW'))


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def get_severity(score: int) -> str:
    """Base severity: >=90 CRITICAL, >=70 HIGH, >=40 MEDIUM, else LOW."""
    for threshold, severity in BASE_SEVERITIES:
        if score >= threshold:
            return severity
    return 'LOW'


def get_enhanced_severity(score: int) -> str:
    """Enhanced severity: >=95 CRITICAL, >=85 HIGH, >=70 MEDIUM, >=40 LOW, else INFO."""
    for threshold, severity in ENHANCED_SEVERITIES:
        if score >= threshold:
            return severity
    return 'INFO'


class RiskScorer:
    """Computes base and enhanced risk assessments for records."""

    def __init__(self, source_tiers: Optional[Dict[str, float]] = None):
        """
        Initialize scorer.

        Args:
            source_tiers: Extra or overriding source credibility multipliers
        """
        self.source_tiers = dict(SOURCE_TIERS)
        if source_tiers:
            self.source_tiers.update(source_tiers)

    def source_multiplier(self, source: str) -> float:
        return self.source_tiers.get(source, DEFAULT_SOURCE_MULTIPLIER)

    def calculate_risk_score(self, record: Any, now: datetime) -> RiskAssessment:
        """
        Calculate the base risk score.

        Args:
            record: Record or item with tags, title, description, source and publish time
            now: Reference time for the recency bucket

        Returns:
            RiskAssessment with score in [0, 100] and base severity
        """
        tags = set(record.tags)
        score = 0
        evidence = []

        # Indicator bucket
        if 'KEV' in tags:
            score += 40
            evidence.append('Listed in CISA KEV (actively exploited)')
        elif 'ZERO-DAY' in tags:
            score += 30
            evidence.append('Zero-day vulnerability (no patch available)')
        elif extraction.cve_tags(record.tags):
            score += 20
            evidence.append('Has CVE identifier')

        if extraction.technique_tags(record.tags):
            score += 10
            evidence.append('Mapped to MITRE ATT&CK technique')

        # Exploitability bucket
        text = f"{record.title} {record.description or ''}"
        if ACTIVE_EXPLOITATION_PATTERN.search(text):
            score += 30
            evidence.append('Active exploitation reported')
        elif any(extraction.contains_term(text, kit) for kit in EXPLOIT_KITS):
            score += 20
            evidence.append('Integrated into exploit kit')
        elif POC_PATTERN.search(text):
            score += 15
            evidence.append('Proof of concept available')

        # Temporal bucket
        age_hours = self._age_in_hours(record.published_at, now)
        if age_hours <= 24:
            score += 20
            evidence.append('Published in last 24 hours')
        elif age_hours <= 24 * 7:
            score += 15
            evidence.append('Published in last 7 days')
        elif age_hours <= 24 * 30:
            score += 10
            evidence.append('Published in last 30 days')
        else:
            score += 5
            evidence.append('Older threat intelligence')

        # Threat-type bucket
        for tag, points, reason in THREAT_TYPE_POINTS:
            if tag in tags:
                score += points
                evidence.append(reason)
                break

        multiplier = self.source_multiplier(record.source)
        score = min(round_half_up(score * multiplier), 100)
        if multiplier > 1.0:
            evidence.append(f"High-credibility source ({record.source})")

        return RiskAssessment(score=score, severity=get_severity(score), evidence=tuple(evidence))

    def calculate_enhanced_risk_score(self, record: ThreatRecord, now: datetime,
                                      base: Optional[RiskAssessment] = None) -> RiskAssessment:
        """
        Calculate the enhanced score from the base score plus corroboration bonuses.

        Args:
            record: Deduplicated, correlated record
            now: Reference time for the recency bucket
            base: Precomputed base assessment, computed if omitted

        Returns:
            RiskAssessment with enhanced severity and badges
        """
        base = base or self.calculate_risk_score(record, now)
        tags = set(record.tags)
        score = base.score
        evidence = list(base.evidence)
        badges = []

        if record.source_count >= 3:
            score += 10
            evidence.append(f"Reported by {record.source_count} sources (high confidence)")
            badges.append('MULTI-SOURCE')

        gov_count = sum(1 for source in record.sources if source in GOV_SOURCES)
        if gov_count >= 2:
            score += 15
            evidence.append(f"Confirmed by {gov_count} government sources")
            badges.append('GOV-CONFIRMED')

        if 'KEV' in tags and 'ZERO-DAY' in tags and tags.intersection(EXPLOITED_TAGS):
            score += 20
            evidence.append('CRITICAL COMBO: KEV + Zero-day + Active exploitation')
            badges.append('CRITICAL-COMBO')

        if 'RANSOMWARE' in tags and 'POC' in tags and score >= 90:
            score += 15
            evidence.append('CRITICAL COMBO: Ransomware + POC available + Critical severity')
            badges.append('RANSOMWARE-CRITICAL')

        if record.related_count >= 3:
            score += 5
            evidence.append(f"Trending: {record.related_count} related threats")
            badges.append('TRENDING')

        if extraction.apt_tags(record.tags):
            badges.append('APT-TARGETED')

        score = min(score, 100)
        return RiskAssessment(
            score=score,
            severity=get_enhanced_severity(score),
            evidence=tuple(evidence),
            badges=tuple(badges),
        )

    @staticmethod
    def _age_in_hours(published_at: datetime, now: datetime) -> float:
        if published_at.tzinfo is None:
            published_at = published_at.replace(tzinfo=timezone.utc)
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        return (now - published_at).total_seconds() / 3600


def add_risk_scores(records: Sequence[ThreatRecord], now: datetime,
                    scorer: Optional[RiskScorer] = None) -> List[ThreatRecord]:
    """
    Attach base and enhanced risk assessments to every record.

    Args:
        records: Records to score
        now: Reference time for recency
        scorer: Scorer to use; a default one is built if omitted

    Returns:
        Scored records
    """
    scorer = scorer or RiskScorer()
    scored = []
    for record in records:
        base = scorer.calculate_risk_score(record, now)
        risk = scorer.calculate_enhanced_risk_score(record, now, base)
        scored.append(replace(record, base_risk=base, risk=risk))

    logger.info(f"Scored {len(scored)} records")
    return scored
