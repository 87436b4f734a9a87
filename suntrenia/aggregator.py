"""
SUNTRENIA NEWS COLLECTION LAYER
Pulls Nigerian security-incident reports from heterogeneous sources

Sources:
- RSS/Atom feeds of national newspapers (feedparser)
- GNews-style news-search API (requests)
- Headline pages of sites without usable feeds (BeautifulSoup)

Every adapter returns RawItems and never raises: a failing source logs a
warning and contributes nothing to the cycle.
"""

import re
import time
import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, asdict, field
from datetime import datetime, timezone
from typing import Any, List, Optional, Dict, Iterable
from urllib.parse import urljoin, urlparse

import requests
import feedparser
from bs4 import BeautifulSoup

from .config import Settings, get_settings
from .shared.resilience import (
    CircuitOpenError,
    SourceUnavailableError,
    get_http_session,
    guard_for,
)
from .shared.validation import validate_article_batch

logger = logging.getLogger(__name__)


# =============================================================================
# DATA MODEL
# =============================================================================

ITEM_CATEGORIES = ("feed", "api", "scraped")
LINK_PLACEHOLDER = "#"
RAW_CONTENT_LIMIT = 1000


def _as_text(value: Any) -> str:
    """Upstream field as stripped text; numbers are kept, containers and None become ''"""
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return ""


@dataclass(frozen=True)
class RawItem:
    """One incident report as read from a single source"""
    title: str
    link: str
    summary: str
    source: str
    timestamp: str           # ISO-8601 or whatever the source emits
    category: str            # feed, api, scraped
    raw_content: str = ""    # truncated original text, used for keyword matching

    @classmethod
    def build(
        cls,
        title: Any,
        link: Any,
        summary: Any,
        source: Any,
        timestamp: Any,
        category: str,
        raw_content: Any = None,
    ) -> "RawItem":
        """
        Create an item, substituting safe defaults for missing or
        wrongly typed fields.
        """
        if category not in ITEM_CATEGORIES:
            raise ValueError(f"Unknown item category: {category}")
        summary = _as_text(summary)
        content = _as_text(raw_content) if raw_content is not None else summary
        return cls(
            title=_as_text(title),
            link=_as_text(link) or LINK_PLACEHOLDER,
            summary=summary,
            source=_as_text(source) or "Unknown",
            timestamp=_as_text(timestamp),
            category=category,
            raw_content=content[:RAW_CONTENT_LIMIT],
        )

    @property
    def text(self) -> str:
        return f"{self.title} {self.summary}"

    def to_dict(self) -> dict:
        return asdict(self)


# =============================================================================
# KEYWORD FILTER
# =============================================================================

SECURITY_KEYWORDS = [
    "attack", "kill", "dead", "death", "gunmen", "gunman",
    "bandit", "kidnap", "abduct", "hostage", "ransom",
    "terror", "boko haram", "iswap", "ipob", "insurgen",
    "militant", "herdsmen", "herders", "clash", "bomb",
    "explosion", "shooting", "massacre", "raid", "violence",
    "cult", "unknown gunmen",
]


def matches(text: str, vocabulary: Iterable[str] = SECURITY_KEYWORDS) -> bool:
    """Case-insensitive substring match of any vocabulary term"""
    if not text:
        return False
    lowered = text.lower()
    return any(term.lower() in lowered for term in vocabulary)


class KeywordFilter:
    """Keeps only items whose title, summary or raw content mention a security term"""

    def __init__(self, vocabulary: Optional[Iterable[str]] = None):
        self.vocabulary = list(vocabulary) if vocabulary is not None else list(SECURITY_KEYWORDS)

    def is_relevant(self, item: RawItem) -> bool:
        return matches(f"{item.title} {item.summary} {item.raw_content}", self.vocabulary)

    def apply(self, items: List[RawItem]) -> List[RawItem]:
        kept = [item for item in items if self.is_relevant(item)]
        logger.info(f"Keyword filter: {len(kept)}/{len(items)} items mention a security term")
        return kept


# =============================================================================
# FEED SANITIZING
# =============================================================================

_BARE_AMPERSAND = re.compile(r"&(?!(?:[A-Za-z][A-Za-z0-9]*|#[0-9]+|#[xX][0-9A-Fa-f]+);)")


def sanitize_feed_xml(text: str) -> str:
    """Escape '&' characters that do not start a named or numeric entity"""
    return _BARE_AMPERSAND.sub("&amp;", text or "")


def strip_html(fragment: str) -> str:
    if not fragment:
        return ""
    return BeautifulSoup(fragment, "html.parser").get_text(" ", strip=True)


# =============================================================================
# SOURCE ADAPTERS
# =============================================================================

class SourceAdapter(ABC):
    """
    Base class for all news source adapters.

    Subclasses implement _collect(); fetch() wraps it so that no exception
    escapes. Per-source problems are recorded in last_errors.
    """

    category: str = ""

    def __init__(self, session: Optional[requests.Session] = None, timeout: float = 10.0):
        self._session = session or get_http_session()
        self.timeout = timeout
        self.last_errors: List[str] = []

    @property
    @abstractmethod
    def source_id(self) -> str:
        """Unique identifier for this source"""
        pass

    @abstractmethod
    def _collect(self) -> List[RawItem]:
        pass

    def fetch(self) -> List[RawItem]:
        self.last_errors = []

        try:
            items = self._collect()
        except Exception as e:
            self._record_error(self.source_id, e)
            return []

        logger.info(f"{self.source_id} adapter: {len(items)} items")
        return items

    def _get(self, url: str, **kwargs) -> requests.Response:
        """
        GET with the adapter timeout behind the guard for this URL.

        Raises CircuitOpenError without touching the network while the
        URL's guard is open, SourceUnavailableError on any request failure.
        """
        guard = guard_for(url)
        if not guard.allow():
            raise CircuitOpenError(url, guard.retry_in())

        started = time.monotonic()
        try:
            response = self._session.get(url, timeout=self.timeout, **kwargs)
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            guard.failed(e, (time.monotonic() - started) * 1000)
            raise SourceUnavailableError(url, str(e)) from e

        guard.succeeded((time.monotonic() - started) * 1000)
        return response

    def _record_error(self, name: str, error: Exception):
        logger.warning(f"{self.source_id}: {name} failed: {error}")
        self.last_errors.append(f"{name}: {error}")


class FeedAdapter(SourceAdapter):
    """RSS/Atom adapter for the configured newspaper feeds"""

    category = "feed"

    def __init__(
        self,
        feed_urls: List[str],
        session: Optional[requests.Session] = None,
        timeout: float = 10.0,
        max_entries_per_feed: int = 30,
    ):
        super().__init__(session=session, timeout=timeout)
        self.feed_urls = list(feed_urls)
        self.max_entries_per_feed = max_entries_per_feed

    @property
    def source_id(self) -> str:
        return "feeds"

    def _collect(self) -> List[RawItem]:
        items = []
        for url in self.feed_urls:
            try:
                items.extend(self._fetch_feed(url))
            except Exception as e:
                self._record_error(url, e)
        logger.info(f"Feed adapter: {len(items)} items from {len(self.feed_urls)} feeds")
        return items

    def _fetch_feed(self, url: str) -> List[RawItem]:
        response = self._get(url)
        parsed = feedparser.parse(sanitize_feed_xml(response.text))

        if parsed.bozo and not parsed.entries:
            raise SourceUnavailableError(url, f"malformed feed: {parsed.get('bozo_exception')}")

        feed_title = parsed.feed.get("title") or urlparse(url).netloc
        items = []

        for entry in parsed.entries[:self.max_entries_per_feed]:
            summary_html = entry.get("summary", entry.get("description", ""))
            content_html = ""
            if entry.get("content"):
                content_html = entry.content[0].get("value", "")

            items.append(RawItem.build(
                title=strip_html(entry.get("title", "")),
                link=entry.get("link"),
                summary=strip_html(summary_html),
                source=feed_title,
                timestamp=entry.get("published") or entry.get("updated"),
                category=self.category,
                raw_content=strip_html(content_html or summary_html),
            ))

        return items


class NewsSearchAdapter(SourceAdapter):
    """GNews-style search API: one query per cycle, filtered by country and language"""

    category = "api"

    def __init__(
        self,
        base_url: str,
        api_key: str,
        query: str,
        country: str = "ng",
        language: str = "en",
        max_results: int = 20,
        session: Optional[requests.Session] = None,
        timeout: float = 10.0,
    ):
        super().__init__(session=session, timeout=timeout)
        self.base_url = base_url
        self.api_key = api_key
        self.query = query
        self.country = country
        self.language = language
        self.max_results = max_results

    @property
    def source_id(self) -> str:
        return "news_search"

    def _collect(self) -> List[RawItem]:
        if not self.api_key:
            logger.warning("News-search API key not set, skipping")
            self.last_errors.append("api key not set")
            return []

        response = self._get(
            self.base_url,
            params={
                "q": self.query,
                "country": self.country,
                "lang": self.language,
                "max": self.max_results,
                "apikey": self.api_key,
            },
        )

        payload = response.json()
        if not isinstance(payload, dict):
            raise SourceUnavailableError(self.base_url, f"unexpected payload type {type(payload).__name__}")
        if payload.get("errors"):
            raise SourceUnavailableError(self.base_url, str(payload["errors"]))

        articles, validation = validate_article_batch(payload.get("articles", []))
        validation.log_issues(prefix="news-search ")

        items = []
        for article in articles:
            source = article.get("source")
            source_name = source.get("name") if isinstance(source, dict) else None
            items.append(RawItem.build(
                title=article.get("title"),
                link=article.get("url"),
                summary=article.get("description"),
                source=source_name or "News Search",
                timestamp=article.get("publishedAt"),
                category=self.category,
                raw_content=article.get("content") or article.get("description"),
            ))
        return items


SCRAPE_TARGETS = [
    {
        "name": "Punch",
        "url": "https://punchng.com/topics/news/",
        "selector": "h1.post-title a, h2.post-title a",
    },
    {
        "name": "Premium Times",
        "url": "https://www.premiumtimesng.com/category/news/top-news",
        "selector": "h3.jeg_post_title a",
    },
    {
        "name": "The Guardian Nigeria",
        "url": "https://guardian.ng/category/news/nigeria/",
        "selector": "h3.title a, span.title a",
    },
]


class ScraperAdapter(SourceAdapter):
    """Headline scraper for sites whose feeds are missing or unreliable"""

    category = "scraped"

    def __init__(
        self,
        targets: Optional[List[Dict[str, str]]] = None,
        session: Optional[requests.Session] = None,
        timeout: float = 10.0,
        max_headlines_per_site: int = 25,
    ):
        super().__init__(session=session, timeout=timeout)
        self.targets = targets if targets is not None else list(SCRAPE_TARGETS)
        self.max_headlines_per_site = max_headlines_per_site

    @property
    def source_id(self) -> str:
        return "scraper"

    def _collect(self) -> List[RawItem]:
        items = []
        for target in self.targets:
            try:
                items.extend(self._scrape(target))
            except Exception as e:
                self._record_error(target.get("name", target.get("url", "?")), e)
        return items

    def _scrape(self, target: Dict[str, str]) -> List[RawItem]:
        response = self._get(target["url"])
        soup = BeautifulSoup(response.text, "html.parser")
        fetched_at = datetime.now(timezone.utc).isoformat()

        items = []
        seen_links = set()
        for anchor in soup.select(target["selector"]):
            title = anchor.get_text(" ", strip=True)
            href = anchor.get("href")
            if not title:
                continue
            link = urljoin(target["url"], href) if href else LINK_PLACEHOLDER
            if link in seen_links:
                continue
            seen_links.add(link)

            items.append(RawItem.build(
                title=title,
                link=link,
                summary="",
                source=target["name"],
                timestamp=fetched_at,
                category=self.category,
                raw_content=title,
            ))
            if len(items) >= self.max_headlines_per_site:
                break

        return items


# =============================================================================
# COLLECTION ORCHESTRATOR
# =============================================================================

@dataclass
class CollectionResult:
    """Concatenated adapter output plus per-source bookkeeping"""
    items: List[RawItem] = field(default_factory=list)
    by_source: Dict[str, int] = field(default_factory=dict)
    errors: Dict[str, List[str]] = field(default_factory=dict)

    @property
    def failed_sources(self) -> List[str]:
        return [source for source, errs in self.errors.items() if errs and not self.by_source.get(source)]


def _category_rank(adapter: SourceAdapter) -> int:
    if adapter.category in ITEM_CATEGORIES:
        return ITEM_CATEGORIES.index(adapter.category)
    return len(ITEM_CATEGORIES)


class NewsAggregator:
    """
    Runs all adapters concurrently and concatenates their output.

    Concatenation follows ITEM_CATEGORIES (feed, api, scraped), never the
    order in which fetches finish, so first-occurrence dedup is stable.
    """

    def __init__(self, adapters: Optional[List[SourceAdapter]] = None, settings: Optional[Settings] = None):
        if adapters is None:
            settings = settings or get_settings()
            adapters = [
                FeedAdapter(settings.feed_urls, timeout=settings.fetch_timeout),
                NewsSearchAdapter(
                    base_url=settings.news_api_url,
                    api_key=settings.news_api_key,
                    query=settings.news_query,
                    country=settings.news_country,
                    language=settings.news_language,
                    max_results=settings.news_max_results,
                    timeout=settings.fetch_timeout,
                ),
                ScraperAdapter(timeout=settings.fetch_timeout),
            ]
        self.adapters = sorted(adapters, key=_category_rank)

    async def collect_all(self) -> CollectionResult:
        outcomes = await asyncio.gather(
            *(asyncio.to_thread(adapter.fetch) for adapter in self.adapters),
            return_exceptions=True,
        )

        result = CollectionResult()
        for adapter, outcome in zip(self.adapters, outcomes):
            if isinstance(outcome, BaseException):
                logger.warning(f"Adapter {adapter.source_id} raised: {outcome}")
                items = []
                errors = [str(outcome)]
            else:
                items = list(outcome or [])
                errors = list(adapter.last_errors)

            result.items.extend(items)
            result.by_source[adapter.source_id] = len(items)
            result.errors[adapter.source_id] = errors

        logger.info(
            f"Collected {len(result.items)} raw items "
            f"({', '.join(f'{k}={v}' for k, v in result.by_source.items())})"
        )
        return result


# =============================================================================
# COMMAND LINE INTERFACE
# =============================================================================

if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)

    collection = asyncio.run(NewsAggregator().collect_all())
    relevant = KeywordFilter().apply(collection.items)

    print(f"\n{'='*60}")
    print("Suntrenia Collection Complete")
    print(f"{'='*60}")
    print(f"Raw items: {len(collection.items)}  relevant: {len(relevant)}")
    for source, count in collection.by_source.items():
        print(f"  {source}: {count}")
    for item in relevant[:10]:
        print(f"  - [{item.category}] {item.title[:80]}")
