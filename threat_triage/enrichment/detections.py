"""Detection-rule recommendations from MITRE technique overlap."""

import math
from typing import Any, Dict, List, Sequence, Tuple

from threat_triage import extraction
from threat_triage.enrichment.base import BaseEnricher, clamp_confidence, record_text
from threat_triage.enrichment.profiles import DetectionRule
from threat_triage.models import AttributionMatch, ThreatRecord

SEVERITY_WEIGHTS = {'CRITICAL': 10, 'HIGH': 7, 'MEDIUM': 5}
DEFAULT_SEVERITY_WEIGHT = 3
STATUS_BONUS = {'stable': 5, 'preview': 3}
SEVERITY_RANK = {'CRITICAL': 4, 'HIGH': 3, 'MEDIUM': 2, 'LOW': 1, 'INFO': 0}


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def record_techniques(record: Any) -> Tuple[str, ...]:
    """MITRE technique ids in the record's text and tags."""
    return extraction.unique(
        extraction.extract_techniques(record_text(record)) + extraction.technique_tags(record.tags)
    )


class DetectionEnricher(BaseEnricher):
    """Recommends detection rules that cover a record's techniques."""

    name = 'detection recommendation'
    field_name = 'recommended_detections'
    min_confidence = 0
    top_n = 5

    def __init__(self, rules: Sequence[DetectionRule], top_n=None):
        super().__init__(top_n)
        self.rules = tuple(rules)

    def match(self, record: ThreatRecord) -> Tuple[AttributionMatch, ...]:
        """
        Score every rule by the techniques it shares with the record.

        Each matched technique adds the rule's severity weight plus a status
        bonus. Ties on score go to the more severe rule.

        Args:
            record: Record to recommend detections for

        Returns:
            Up to ``top_n`` recommendations, best first
        """
        techniques = record_techniques(record)
        if not techniques or not self.rules:
            return ()

        recommendations = []
        for rule in self.rules:
            matched = [t for t in rule.techniques if t in techniques]
            if not matched:
                continue
            per_technique = SEVERITY_WEIGHTS.get(rule.severity, DEFAULT_SEVERITY_WEIGHT)
            per_technique += STATUS_BONUS.get(rule.status, 0)
            score = per_technique * len(matched)
            recommendations.append(AttributionMatch(
                profile_id=rule.id,
                profile_name=rule.name,
                confidence=clamp_confidence(score),
                matched_indicators=tuple(matched),
                attributes={
                    'severity': rule.severity,
                    'status': rule.status,
                    'platform': rule.platform,
                    'matchScore': score,
                    'coverage': round_half_up(len(matched) / len(techniques) * 100),
                },
            ))

        recommendations.sort(key=lambda m: (m.attributes['matchScore'],
                                            SEVERITY_RANK.get(m.attributes['severity'], 0)),
                             reverse=True)
        return tuple(recommendations[:self.top_n])


def get_detection_coverage_stats(records: Sequence[ThreatRecord]) -> Dict[str, int]:
    """How much of a batch has at least one recommended detection."""
    if not records:
        return {
            'totalThreats': 0,
            'threatsWithDetections': 0,
            'coveragePercentage': 0,
            'avgCoverage': 0,
            'criticalWithDetections': 0,
            'highWithDetections': 0,
        }

    covered = [r for r in records if r.recommended_detections]
    average = sum(r.detection_coverage for r in covered) / len(covered) if covered else 0
    return {
        'totalThreats': len(records),
        'threatsWithDetections': len(covered),
        'coveragePercentage': round_half_up(len(covered) / len(records) * 100),
        'avgCoverage': round_half_up(average),
        'criticalWithDetections': sum(1 for r in covered if r.severity == 'CRITICAL'),
        'highWithDetections': sum(1 for r in covered if r.severity == 'HIGH'),
    }


def get_top_recommended_detections(records: Sequence[ThreatRecord], limit: int = 10) -> List[Dict[str, Any]]:
    """Detection rules recommended for the most records."""
    counts: Dict[str, Dict[str, Any]] = {}
    for record in records:
        for match in record.recommended_detections or ():
            entry = counts.setdefault(match.profile_id, {
                'detectionId': match.profile_id,
                'detectionName': match.profile_name,
                'severity': match.attributes.get('severity'),
                'recommendedCount': 0,
            })
            entry['recommendedCount'] += 1
    rows = sorted(counts.values(), key=lambda row: row['recommendedCount'], reverse=True)
    return rows[:limit]
