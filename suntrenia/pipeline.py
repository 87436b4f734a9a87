"""
SUNTRENIA INCIDENT PIPELINE
collect -> keyword filter -> dedupe -> aggregate, memoized in a TTLCache

Entry points used by the API and report builders:
- get_news()              {"items": [...], "metadata": {...}}
- get_aggregate_stats()   AggregateStats
- get_affected_states()   list of state names
- get_enriched_news()     items with AI enrichment attached
- get_weekly_briefing()   executive briefing text plus stats
- get_state_risk(state)   StateRiskAssessment
- get_analysis()          overall AI analysis with a risk level
- get_patterns()          this week against the week before
- get_alerts()            alert texts for critical enriched incidents
- build_report()          payload for the report renderer

A refresh never raises: when every source fails or a stage blows up the
result is an empty item list with zero-valued stats.
"""

import asyncio
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import List, Dict, Any, Optional

from .aggregator import NewsAggregator, KeywordFilter
from .cache import (
    TTLCache,
    NEWS_KEY,
    ENRICHED_NEWS_KEY,
    WEEKLY_BRIEFING_KEY,
    ANALYSIS_KEY,
    PATTERNS_KEY,
    ALERTS_KEY,
)
from .config import Settings, get_settings
from .dedup import CanonicalItem, canonicalize, dedupe
from .processor import IncidentEnricher, StateRiskAssessment
from .stats import (
    AggregateStats,
    aggregate,
    canonical_state,
    split_by_week,
    state_to_iso_code,
    week_label,
)

logger = logging.getLogger(__name__)

ALERT_SEVERITIES = ("Critical",)
MAX_ALERTS = 5


@dataclass
class PipelineResult:
    items: List[CanonicalItem] = field(default_factory=list)
    stats: AggregateStats = field(default_factory=AggregateStats.empty)
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def empty(cls, error: Optional[str] = None) -> "PipelineResult":
        metadata = {
            "fetched_at": datetime.now(timezone.utc).isoformat(),
            "total_raw": 0,
            "total_relevant": 0,
            "total_unique": 0,
        }
        if error:
            metadata["error"] = error
        return cls(metadata=metadata)

    @property
    def affected_states(self) -> List[str]:
        return self.stats.affected_states

    def to_news_payload(self) -> dict:
        return {
            "items": [item.to_dict() for item in self.items],
            "metadata": dict(self.metadata),
        }


def build_report_payload(
    items: List[CanonicalItem],
    stats: AggregateStats,
    narrative: Optional[str] = None,
    top_n: int = 10,
    generated_at: Optional[datetime] = None,
) -> dict:
    """Stable payload handed to the report renderer"""
    generated_at = generated_at or datetime.now(timezone.utc)
    affected = stats.affected_states
    return {
        "incidents": [item.to_dict() for item in items[:top_n]],
        "stats": stats.to_dict(),
        "affected_states": affected,
        "narrative": narrative,
        "generated_at": generated_at.isoformat(),
        "metadata": {
            "week": week_label(generated_at),
            "total_incidents": stats.total_incidents,
            "map_ids": [state_to_iso_code(state) for state in affected],
        },
    }


class IncidentPipeline:
    """Owns the refresh cycle and the cache slots for its outputs"""

    def __init__(
        self,
        aggregator: Optional[NewsAggregator] = None,
        cache: Optional[TTLCache] = None,
        enricher: Optional[IncidentEnricher] = None,
        settings: Optional[Settings] = None,
        keyword_filter: Optional[KeywordFilter] = None,
    ):
        self.settings = settings or get_settings()
        self.aggregator = aggregator or NewsAggregator(settings=self.settings)
        self.cache = cache if cache is not None else TTLCache()
        self.enricher = enricher or IncidentEnricher.from_settings(self.settings)
        self.keyword_filter = keyword_filter or KeywordFilter()

    # -------------------------------------------------------------------------
    # refresh
    # -------------------------------------------------------------------------

    async def run(self) -> PipelineResult:
        """One uncached refresh cycle"""
        try:
            collection = await self.aggregator.collect_all()
            relevant = self.keyword_filter.apply(collection.items)
            unique = dedupe(relevant, threshold=self.settings.similarity_threshold)
            items = canonicalize(unique)
            stats = aggregate(items, fatality_multiplier=self.settings.fatality_multiplier)
        except Exception as e:
            logger.error(f"Pipeline refresh failed, serving empty result: {e}")
            return PipelineResult.empty(error=str(e))

        if not collection.items and collection.failed_sources:
            logger.error(f"All sources failed this cycle: {', '.join(collection.failed_sources)}")

        metadata = {
            "fetched_at": datetime.now(timezone.utc).isoformat(),
            "total_raw": len(collection.items),
            "total_relevant": len(relevant),
            "total_unique": len(items),
            "by_source": dict(collection.by_source),
            "failed_sources": collection.failed_sources,
        }
        logger.info(
            f"Pipeline: {metadata['total_raw']} raw -> {metadata['total_relevant']} relevant "
            f"-> {metadata['total_unique']} unique"
        )
        return PipelineResult(items=items, stats=stats, metadata=metadata)

    async def refresh(self) -> PipelineResult:
        return await self.cache.aget_or_compute(NEWS_KEY, self.settings.news_ttl, self.run)

    # -------------------------------------------------------------------------
    # entry points
    # -------------------------------------------------------------------------

    async def get_news(self) -> dict:
        result = await self.refresh()
        return result.to_news_payload()

    async def get_aggregate_stats(self) -> AggregateStats:
        result = await self.refresh()
        return result.stats.copy()

    async def get_affected_states(self) -> List[str]:
        result = await self.refresh()
        return result.affected_states

    async def _enrich(self) -> PipelineResult:
        result = await self.refresh()
        items = await asyncio.to_thread(self.enricher.enrich_batch, result.items)
        metadata = dict(result.metadata)
        metadata["enriched_count"] = sum(1 for item in items if item.enrichment is not None)
        return replace(result, items=items, metadata=metadata)

    async def _enriched_result(self) -> PipelineResult:
        return await self.cache.aget_or_compute(
            ENRICHED_NEWS_KEY, self.settings.enriched_ttl, self._enrich
        )

    async def get_enriched_news(self) -> dict:
        result = await self._enriched_result()
        return result.to_news_payload()

    async def _briefing(self) -> dict:
        result = await self.refresh()
        affected = result.affected_states
        briefing = await asyncio.to_thread(
            self.enricher.generate_briefing, result.stats, result.items, affected
        )
        return {
            "briefing": briefing,
            "week": week_label(),
            "stats": result.stats.to_dict(),
            "affected_states": affected,
            "generated_at": datetime.now(timezone.utc).isoformat(),
        }

    async def get_weekly_briefing(self) -> dict:
        return await self._cached_unless_empty(WEEKLY_BRIEFING_KEY, "briefing", self._briefing)

    async def get_state_risk(self, state: str) -> Optional[StateRiskAssessment]:
        """Risk assessment for one state, None when the name is not a Nigerian state"""
        name = canonical_state(state)
        if name is None:
            return None

        async def assess():
            result = await self.refresh()
            return await asyncio.to_thread(self.enricher.assess_state_risk, name, result.items)

        return await self.cache.aget_or_compute(f"risk:{name}", self.settings.enriched_ttl, assess)

    async def _cached_unless_empty(self, key: str, field_name: str, compute) -> dict:
        """Cache an AI payload, dropping it again when the model produced nothing"""
        payload = await self.cache.aget_or_compute(key, self.settings.enriched_ttl, compute)
        if payload[field_name] is None:
            self.cache.invalidate(key)
        return payload

    async def get_analysis(self) -> dict:
        async def analyze():
            result = await self.refresh()
            analysis = await asyncio.to_thread(self.enricher.analyze_incidents, result.items)
            return {
                "analysis": analysis.to_dict() if analysis is not None else None,
                "generated_at": datetime.now(timezone.utc).isoformat(),
            }

        return await self._cached_unless_empty(ANALYSIS_KEY, "analysis", analyze)

    async def get_patterns(self) -> dict:
        async def compare():
            result = await self.refresh()
            current, previous = split_by_week(result.items)
            patterns = await asyncio.to_thread(self.enricher.detect_patterns, current, previous)
            return {
                "patterns": patterns,
                "week": week_label(),
                "current_week_count": len(current),
                "previous_week_count": len(previous),
                "generated_at": datetime.now(timezone.utc).isoformat(),
            }

        return await self._cached_unless_empty(PATTERNS_KEY, "patterns", compare)

    async def get_alerts(self) -> dict:
        """Alert texts for enriched incidents rated Critical, at most MAX_ALERTS"""
        async def build():
            result = await self._enriched_result()
            critical = [
                item for item in result.items
                if item.enrichment is not None and item.enrichment.severity in ALERT_SEVERITIES
            ][:MAX_ALERTS]

            alerts = []
            for item in critical:
                text = await asyncio.to_thread(self.enricher.generate_alert, item)
                if text is not None:
                    alerts.append({
                        "title": item.title,
                        "link": item.item.link,
                        "severity": item.enrichment.severity,
                        "alert": text,
                    })
            return {
                "alerts": alerts,
                "count": len(alerts),
                "generated_at": datetime.now(timezone.utc).isoformat(),
            }

        return await self.cache.aget_or_compute(ALERTS_KEY, self.settings.enriched_ttl, build)

    async def build_report(self, top_n: int = 10) -> dict:
        result = await self.refresh()
        briefing = await self.get_weekly_briefing()
        return build_report_payload(result.items, result.stats, narrative=briefing["briefing"], top_n=top_n)
