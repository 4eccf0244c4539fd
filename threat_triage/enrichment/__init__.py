"""Enrichment package initialization."""

from .actors import ActorAttributionEnricher, get_actor_stats, get_top_actors
from .apt import AptCorrelationEnricher
from .darkweb import DarkWebEnricher, get_dark_web_stats, get_top_ransomware_groups
from .detections import DetectionEnricher, get_detection_coverage_stats, get_top_recommended_detections
from .enricher import build_enrichers, enrich_records
from .geopolitical import GeopoliticalEnricher, get_global_risk_stats, get_risk_level, get_top_risk_countries
from .profiles import ProfileLoader, ProfileSets

__all__ = [
    'ActorAttributionEnricher', 'AptCorrelationEnricher', 'DarkWebEnricher',
    'DetectionEnricher', 'GeopoliticalEnricher', 'ProfileLoader', 'ProfileSets',
    'build_enrichers', 'enrich_records', 'get_actor_stats', 'get_top_actors',
    'get_dark_web_stats', 'get_top_ransomware_groups', 'get_detection_coverage_stats',
    'get_top_recommended_detections', 'get_global_risk_stats', 'get_risk_level', 'get_top_risk_countries',
]
