"""Assembly of the attribution enrichers."""

import logging
from typing import List, Optional, Sequence

from threat_triage.enrichment.actors import ActorAttributionEnricher
from threat_triage.enrichment.apt import AptCorrelationEnricher
from threat_triage.enrichment.base import BaseEnricher
from threat_triage.enrichment.darkweb import PASTE_TOP_N, DarkWebEnricher
from threat_triage.enrichment.detections import DetectionEnricher
from threat_triage.enrichment.geopolitical import GeopoliticalEnricher
from threat_triage.enrichment.profiles import ProfileSets
from threat_triage.models import ThreatRecord

logger = logging.getLogger(__name__)


def build_enrichers(profiles: ProfileSets, config=None) -> List[BaseEnricher]:
    """
    Build every enabled enricher over the loaded reference sets.

    Args:
        profiles: Validated reference profile sets
        config: Optional Config with ``enrichment.<name>.enabled`` and ``top_n``

    Returns:
        Enrichers in a fixed order (the order does not affect results)
    """
    def setting(section: str, key: str, default=None):
        if config is None:
            return default
        return config.get(f'enrichment.{section}.{key}', default)

    enrichers: List[BaseEnricher] = []
    if setting('apt', 'enabled', True):
        enrichers.append(AptCorrelationEnricher(profiles.apt_groups, setting('apt', 'top_n')))
    if setting('actors', 'enabled', True):
        enrichers.append(ActorAttributionEnricher(profiles.actors, setting('actors', 'top_n')))
    if setting('dark_web', 'enabled', True):
        enrichers.append(DarkWebEnricher(
            profiles.victims, profiles.pastes,
            top_n=setting('dark_web', 'victims_top_n'),
            pastes_top_n=setting('dark_web', 'pastes_top_n', PASTE_TOP_N),
        ))
    if setting('detections', 'enabled', True):
        enrichers.append(DetectionEnricher(profiles.detections, setting('detections', 'top_n')))
    if setting('geopolitical', 'enabled', True):
        enrichers.append(GeopoliticalEnricher(profiles.countries, profiles.actors,
                                              setting('geopolitical', 'top_n')))
    return enrichers


def enrich_records(records: Sequence[ThreatRecord],
                   enrichers: Optional[Sequence[BaseEnricher]] = None) -> List[ThreatRecord]:
    """
    Run each enricher over a batch.

    Args:
        records: Deduplicated, correlated records
        enrichers: Enrichers to apply; none means records pass through

    Returns:
        Records carrying every enricher's annotation
    """
    enriched = list(records)
    for enricher in enrichers or ():
        enriched = enricher.enrich(enriched)

    logger.info(f"Enriched {len(enriched)} records with {len(enrichers or ())} enrichers")
    return enriched
