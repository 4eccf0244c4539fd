"""End-to-end processing: raw items in, ranked batch out, cached for readers."""

import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence

from threat_triage import __version__
from threat_triage.correlation import add_correlation_data, get_correlation_stats
from threat_triage.deduplication import deduplicate
from threat_triage.enrichment import (
    ProfileLoader, build_enrichers, enrich_records, get_detection_coverage_stats, get_top_recommended_detections,
)
from threat_triage.errors import CacheMiss, CacheReadError, CacheWriteError
from threat_triage.ingestion import build_collector
from threat_triage.models import RankedBatch, ThreatRecord, isoformat
from threat_triage.normalization import normalize_items
from threat_triage.scoring import RiskScorer, SEVERITY_ORDER, add_risk_scores, bubble_up_sort, get_top_threats
from threat_triage.storage import SourceRegistry, TrendTracker, build_cache

logger = logging.getLogger(__name__)

THREATS_KEY = 'unified-threats'
TOP_THREATS_KEY = 'top-threats'
BATCH_TTL_SECONDS = 1800
DEFAULT_TOP_N = 20


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def build_statistics(records: Sequence[ThreatRecord]) -> Dict[str, Any]:
    """
    Batch-level statistics for a scored batch.

    Args:
        records: Scored records

    Returns:
        Severity counts, average score, multi-source count, attribution
        counts, detection coverage and the most recommended detections
    """
    severity_counts = {severity: 0 for severity in reversed(SEVERITY_ORDER)}
    for record in records:
        if record.severity in severity_counts:
            severity_counts[record.severity] += 1

    total = len(records)
    return {
        'totalThreats': total,
        'severityCounts': severity_counts,
        'averageScore': round(sum(r.score for r in records) / total, 1) if total else 0.0,
        'multiSourceThreats': sum(1 for r in records if r.source_count > 1),
        'aptAttributed': sum(1 for r in records if r.apt_attribution),
        'actorAttributed': sum(1 for r in records if r.actor_attribution),
        'darkWebMatches': sum(1 for r in records if r.dark_web_intel and r.dark_web_intel.has_matches),
        'detectionCoverage': get_detection_coverage_stats(records),
        'topRecommendedDetections': get_top_recommended_detections(records, 5),
        'withGeopoliticalContext': sum(1 for r in records if r.geopolitical_context),
    }


def top_payload(batch: RankedBatch, n: int) -> Dict[str, Any]:
    """The precomputed top-N slice as written to the cache."""
    items = get_top_threats(batch.items, n)
    return {
        'updated': isoformat(batch.updated),
        'count': len(items),
        'items': [record.to_dict() for record in items],
    }


class ThreatPipeline:
    """Runs normalization through ranking over one immutable batch."""

    def __init__(self, enrichers: Sequence[Any] = (), scorer: Optional[RiskScorer] = None,
                 dedup_strategy: str = 'greedy', max_related: int = 5, min_relation_score: int = 30):
        """
        Initialize pipeline.

        Args:
            enrichers: Attribution enrichers to apply
            scorer: Risk scorer; a default one is built if omitted
            dedup_strategy: 'greedy' or 'transitive'
            max_related: Related threats kept per record
            min_relation_score: Minimum relation score to count as related
        """
        self.enrichers = list(enrichers)
        self.scorer = scorer or RiskScorer()
        self.dedup_strategy = dedup_strategy
        self.max_related = max_related
        self.min_relation_score = min_relation_score

    @classmethod
    def from_config(cls, config, cache=None) -> 'ThreatPipeline':
        """Build a pipeline with the reference sets and settings in config."""
        profiles = ProfileLoader(config, cache).load()
        return cls(
            enrichers=build_enrichers(profiles, config),
            scorer=RiskScorer(config.get('scoring.source_tiers') or {}),
            dedup_strategy=config.get('deduplication.strategy', 'greedy'),
            max_related=config.get('correlation.max_related', 5),
            min_relation_score=config.get('correlation.min_relation_score', 30),
        )

    def process(self, raw_items: Sequence[Any], now: Optional[datetime] = None) -> RankedBatch:
        """
        Process one batch of raw items.

        Args:
            raw_items: RawItem instances or feed dictionaries
            now: Reference time for recency and defaults

        Returns:
            RankedBatch with every record ranked
        """
        now = now or _utcnow()
        started = time.perf_counter()

        items = normalize_items(raw_items, now)
        records = deduplicate(items, self.dedup_strategy)
        records = add_correlation_data(records, self.max_related, self.min_relation_score)
        records = enrich_records(records, self.enrichers)
        records = add_risk_scores(records, now, self.scorer)
        ranked = bubble_up_sort(records)

        elapsed_ms = int((time.perf_counter() - started) * 1000)
        logger.info(f"Processed {len(raw_items)} raw items into {len(ranked)} ranked threats in {elapsed_ms}ms")
        return RankedBatch(
            updated=now,
            version=__version__,
            items=tuple(ranked),
            correlation_stats=get_correlation_stats(ranked),
            statistics=build_statistics(ranked),
            processing_time_ms=elapsed_ms,
        )


class ThreatService:
    """
    Processing cycles and cached reads.

    A cycle collects raw items, drops blocked domains, runs the pipeline and
    replaces the cached batch and top slice wholesale. Reads go to the cache
    first and recompute synchronously on a miss.
    """

    def __init__(self, pipeline: ThreatPipeline, cache, collector=None,
                 sources: Optional[SourceRegistry] = None, trends: Optional[TrendTracker] = None,
                 top_n: int = DEFAULT_TOP_N, ttl_seconds: int = BATCH_TTL_SECONDS,
                 clock: Callable[[], datetime] = _utcnow):
        self.pipeline = pipeline
        self.cache = cache
        self.collector = collector
        self.sources = sources or SourceRegistry(cache)
        self.trends = trends or TrendTracker(cache)
        self.top_n = top_n
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self.last_cycle: Optional[Dict[str, Any]] = None

    def run_cycle(self, raw_items: Optional[Sequence[Any]] = None,
                  now: Optional[datetime] = None) -> RankedBatch:
        """
        Run one processing cycle and cache its output.

        Args:
            raw_items: Items to process; collected from the feeds if omitted
            now: Reference time; the service clock if omitted

        Returns:
            The new batch
        """
        now = now or self.clock()
        if raw_items is None:
            raw_items = self.collector.collect() if self.collector else []
        raw_items = self._drop_blocked(raw_items)

        batch = self.pipeline.process(raw_items, now)
        try:
            self.cache.put(THREATS_KEY, batch.to_dict(), self.ttl_seconds)
            self.cache.put(TOP_THREATS_KEY, top_payload(batch, self.top_n), self.ttl_seconds)
        except CacheWriteError as e:
            logger.error(f"Failed to cache processed batch: {e}")
        self.trends.update_bucket(batch.items, now)

        self.last_cycle = {
            'at': isoformat(now),
            'count': batch.count,
            'processingTimeMs': batch.processing_time_ms,
        }
        return batch

    def get_threats_payload(self) -> Dict[str, Any]:
        """The cached batch, recomputed if missing or expired."""
        try:
            return self.cache.get(THREATS_KEY)
        except CacheMiss:
            logger.info(f"Cache miss for {THREATS_KEY}, recomputing")
            return self.run_cycle().to_dict()

    def get_top_payload(self) -> Dict[str, Any]:
        """The cached top slice, recomputed if missing or expired."""
        try:
            return self.cache.get(TOP_THREATS_KEY)
        except CacheMiss:
            logger.info(f"Cache miss for {TOP_THREATS_KEY}, recomputing")
            return top_payload(self.run_cycle(), self.top_n)

    def _drop_blocked(self, raw_items: Sequence[Any]) -> List[Any]:
        try:
            blocked = self.sources.blocked_domains()
        except CacheReadError as e:
            logger.error(f"Failed to read blocked domains, using configured blocklist only: {e}")
            blocked = list(self.sources.static_blocklist)
        if not blocked:
            return list(raw_items)

        kept = [entry for entry in raw_items if not self.sources.is_link_blocked(_raw_link(entry), blocked)]
        dropped = len(raw_items) - len(kept)
        if dropped:
            logger.info(f"Dropped {dropped} items from blocked domains")
        return kept


def _raw_link(entry: Any) -> str:
    if isinstance(entry, dict):
        link = entry.get('link') or entry.get('url') or ''
    else:
        link = getattr(entry, 'link', None) or ''
    return link if isinstance(link, str) else ''


def build_service(config, cache=None) -> ThreatService:
    """Wire a service from config: cache, reference sets, collector, sources and trends."""
    cache = cache or build_cache(config)
    return ThreatService(
        pipeline=ThreatPipeline.from_config(config, cache),
        cache=cache,
        collector=build_collector(config),
        sources=SourceRegistry(cache, config.get('sources.blocklist') or []),
        trends=TrendTracker(cache, config.get('trends.ttl_seconds', 7 * 24 * 60 * 60)),
        top_n=config.get('ranking.top_n', DEFAULT_TOP_N),
        ttl_seconds=config.get('cache.ttl_seconds', BATCH_TTL_SECONDS),
    )
