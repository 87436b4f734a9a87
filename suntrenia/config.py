"""
Runtime configuration, read from the environment (.env supported).
"""

import os
import logging
from dataclasses import dataclass, field
from typing import List

from dotenv import load_dotenv

load_dotenv()
logger = logging.getLogger(__name__)


DEFAULT_FEED_URLS = [
    "https://punchng.com/feed/",
    "https://www.vanguardngr.com/feed/",
    "https://www.premiumtimesng.com/feed",
    "https://www.channelstv.com/feed/",
    "https://dailypost.ng/feed/",
    "https://saharareporters.com/feeds/latest/feed",
]

DEFAULT_NEWS_QUERY = "Nigeria AND (attack OR kidnapping OR bandits OR gunmen OR killed)"


def _env_list(name: str, default: List[str]) -> List[str]:
    raw = os.getenv(name)
    if not raw:
        return list(default)
    return [part.strip() for part in raw.split(",") if part.strip()]


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Ignoring {name}={raw!r}: not an integer, using {default}")
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning(f"Ignoring {name}={raw!r}: not a number, using {default}")
        return default


@dataclass
class Settings:
    feed_urls: List[str] = field(default_factory=lambda: list(DEFAULT_FEED_URLS))

    news_api_url: str = "https://gnews.io/api/v4/search"
    news_api_key: str = ""
    news_query: str = DEFAULT_NEWS_QUERY
    news_country: str = "ng"
    news_language: str = "en"
    news_max_results: int = 20

    fetch_timeout: float = 10.0

    news_ttl: int = 900
    enriched_ttl: int = 1800

    similarity_threshold: float = 0.8
    fatality_multiplier: int = 2

    anthropic_api_key: str = ""
    ai_model: str = "claude-sonnet-4-20250514"
    enrich_limit: int = 50

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            feed_urls=_env_list("SUNTRENIA_FEED_URLS", DEFAULT_FEED_URLS),
            news_api_url=os.getenv("GNEWS_API_URL", "https://gnews.io/api/v4/search"),
            news_api_key=os.getenv("GNEWS_API_KEY", ""),
            news_query=os.getenv("SUNTRENIA_NEWS_QUERY", DEFAULT_NEWS_QUERY),
            news_country=os.getenv("SUNTRENIA_NEWS_COUNTRY", "ng"),
            news_language=os.getenv("SUNTRENIA_NEWS_LANGUAGE", "en"),
            news_max_results=_env_int("SUNTRENIA_NEWS_MAX", 20),
            fetch_timeout=_env_float("SUNTRENIA_FETCH_TIMEOUT", 10.0),
            news_ttl=_env_int("SUNTRENIA_NEWS_TTL", 900),
            enriched_ttl=_env_int("SUNTRENIA_ENRICHED_TTL", 1800),
            similarity_threshold=_env_float("SUNTRENIA_SIMILARITY_THRESHOLD", 0.8),
            fatality_multiplier=_env_int("SUNTRENIA_FATALITY_MULTIPLIER", 2),
            anthropic_api_key=os.getenv("ANTHROPIC_API_KEY", ""),
            ai_model=os.getenv("SUNTRENIA_AI_MODEL", "claude-sonnet-4-20250514"),
            enrich_limit=_env_int("SUNTRENIA_ENRICH_LIMIT", 50),
        )


def get_settings() -> Settings:
    return Settings.from_env()
