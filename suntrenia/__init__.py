"""
Suntrenia Security Intelligence
Open-source news monitoring for security incidents across Nigeria

Modules:
- aggregator: Multi-source collection (RSS feeds, news-search API, headline scraping)
- dedup: Near-duplicate removal on normalized titles
- stats: State attribution, incident categories, casualty estimates
- cache: TTL cache for pipeline output
- processor: Claude classification, weekly briefings, state risk assessments
- pipeline: Refresh cycle tying the above together
- api: FastAPI endpoints

Quick Start:
    import asyncio
    from suntrenia import IncidentPipeline

    pipeline = IncidentPipeline()
    news = asyncio.run(pipeline.get_news())
    stats = asyncio.run(pipeline.get_aggregate_stats())

Environment Variables:
    SUNTRENIA_FEED_URLS  - Comma-separated RSS/Atom feeds (defaults to six Nigerian dailies)
    GNEWS_API_KEY        - News-search API key (optional, API source skipped without it)
    ANTHROPIC_API_KEY    - Claude API key (optional, enrichment skipped without it)
    SUNTRENIA_NEWS_TTL   - Seconds raw news stays cached (default 900)
"""

__version__ = "1.0.0"
__author__ = "Suntrenia"

from .aggregator import (
    RawItem,
    KeywordFilter,
    SourceAdapter,
    FeedAdapter,
    NewsSearchAdapter,
    ScraperAdapter,
    NewsAggregator,
    CollectionResult,
    SECURITY_KEYWORDS,
)

from .dedup import (
    CanonicalItem,
    normalize_title,
    levenshtein_distance,
    similarity,
    dedupe,
)

from .stats import (
    AggregateStats,
    STATE_KEYWORDS,
    STATE_ISO_CODES,
    CATEGORY_RULES,
    aggregate,
    classify_incident,
    attribute_states,
    split_by_week,
    state_to_iso_code,
)

from .cache import TTLCache, CacheEntry

from .processor import (
    Enrichment,
    IncidentEnricher,
    IncidentAnalysis,
    StateRiskAssessment,
    extract_risk_level,
)

from .pipeline import (
    IncidentPipeline,
    PipelineResult,
    build_report_payload,
)

from .config import Settings, get_settings

__all__ = [
    # Collection
    "RawItem",
    "KeywordFilter",
    "SourceAdapter",
    "FeedAdapter",
    "NewsSearchAdapter",
    "ScraperAdapter",
    "NewsAggregator",
    "CollectionResult",
    "SECURITY_KEYWORDS",

    # Dedup
    "CanonicalItem",
    "normalize_title",
    "levenshtein_distance",
    "similarity",
    "dedupe",

    # Stats
    "AggregateStats",
    "STATE_KEYWORDS",
    "STATE_ISO_CODES",
    "CATEGORY_RULES",
    "aggregate",
    "classify_incident",
    "attribute_states",
    "split_by_week",
    "state_to_iso_code",

    # Cache
    "TTLCache",
    "CacheEntry",

    # Processor
    "Enrichment",
    "IncidentEnricher",
    "IncidentAnalysis",
    "StateRiskAssessment",
    "extract_risk_level",

    # Pipeline
    "IncidentPipeline",
    "PipelineResult",
    "build_report_payload",

    # Config
    "Settings",
    "get_settings",
]
