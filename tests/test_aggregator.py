"""
Unit Tests for News Collection

Tests cover:
- RawItem defaults and keyword filtering
- Feed sanitizing and parsing
- News-search API mapping and failure handling
- Headline scraping
- Concurrent collection order and partial failures
"""

import asyncio

import pytest
import requests
from unittest.mock import Mock

from suntrenia.aggregator import (
    RawItem,
    KeywordFilter,
    FeedAdapter,
    NewsSearchAdapter,
    ScraperAdapter,
    NewsAggregator,
    LINK_PLACEHOLDER,
    RAW_CONTENT_LIMIT,
    matches,
    sanitize_feed_xml,
)
from suntrenia.shared.resilience import OPEN, guard_for


def make_response(text="", json_data=None, status_error=None):
    response = Mock()
    response.text = text
    response.json.return_value = json_data
    if status_error is not None:
        response.raise_for_status.side_effect = status_error
    return response


SAMPLE_RSS = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0">
  <channel>
    <title>Punch Newspapers</title>
    <link>https://punchng.com</link>
    <item>
      <title>Gunmen abduct 12 in Zamfara village</title>
      <link>https://punchng.com/gunmen-abduct-12</link>
      <description><![CDATA[<p>Residents said the <b>gunmen</b> arrived at night.</p>]]></description>
      <pubDate>Wed, 15 Jan 2025 10:00:00 +0000</pubDate>
    </item>
    <item>
      <title>Police & Army launch joint patrol in Kaduna</title>
      <link>https://punchng.com/joint-patrol</link>
      <description>Security beefed up &amp; roads reopened</description>
      <pubDate>Wed, 15 Jan 2025 12:00:00 +0000</pubDate>
    </item>
  </channel>
</rss>"""


# =============================================================================
# RAW ITEM AND KEYWORD FILTER
# =============================================================================

class TestRawItem:
    """Test RawItem construction"""

    def test_defaults_for_missing_fields(self):
        item = RawItem.build(title=None, link=None, summary=None, source=None, timestamp=None, category="api")

        assert item.title == ""
        assert item.link == LINK_PLACEHOLDER
        assert item.summary == ""
        assert item.source == "Unknown"
        assert item.timestamp == ""

    def test_raw_content_truncated(self):
        item = RawItem.build("t", "l", "s", "src", "", "feed", raw_content="x" * 5000)

        assert len(item.raw_content) == RAW_CONTENT_LIMIT

    def test_unknown_category_rejected(self):
        with pytest.raises(ValueError):
            RawItem.build("t", "l", "s", "src", "", "twitter")

    def test_immutable(self):
        item = RawItem.build("t", "l", "s", "src", "", "feed")

        with pytest.raises(Exception):
            item.title = "changed"


class TestKeywordFilter:
    """Test security vocabulary matching"""

    def test_case_insensitive_substring(self):
        assert matches("BANDITS storm village")
        assert matches("Two KILLED in clash")

    def test_no_match(self):
        assert not matches("Super Eagles win friendly in Lagos")
        assert not matches("")

    def test_raw_content_is_searched(self):
        item = RawItem.build("Community mourns", "l", "", "src", "", "feed",
                             raw_content="Gunmen stormed the village at dawn")

        assert KeywordFilter().is_relevant(item)

    def test_apply_keeps_order(self, make_item):
        items = [
            make_item("Gunmen attack Kaduna church"),
            make_item("Naira gains against dollar"),
            make_item("Kidnappers demand ransom"),
        ]

        kept = KeywordFilter().apply(items)

        assert [i.title for i in kept] == ["Gunmen attack Kaduna church", "Kidnappers demand ransom"]

    def test_custom_vocabulary(self, make_item):
        only_floods = KeywordFilter(["flood"])

        assert only_floods.apply([make_item("Gunmen attack"), make_item("Flood in Kogi")])[0].title == "Flood in Kogi"


# =============================================================================
# FEED ADAPTER
# =============================================================================

class TestSanitizeFeedXml:
    """Test bare ampersand escaping"""

    def test_bare_ampersand_escaped(self):
        assert sanitize_feed_xml("Police & Army") == "Police &amp; Army"

    def test_entities_preserved(self):
        text = "a &amp; b &lt; c &#8217; d &#x2019; e &nbsp;"

        assert sanitize_feed_xml(text) == text

    def test_none(self):
        assert sanitize_feed_xml(None) == ""


class TestFeedAdapter:
    """Test RSS/Atom collection"""

    def test_parses_entries(self):
        session = Mock()
        session.get.return_value = make_response(SAMPLE_RSS)
        adapter = FeedAdapter(["https://punchng.com/feed/"], session=session)

        items = adapter.fetch()

        assert len(items) == 2
        first = items[0]
        assert first.title == "Gunmen abduct 12 in Zamfara village"
        assert first.link == "https://punchng.com/gunmen-abduct-12"
        assert first.summary == "Residents said the gunmen arrived at night."
        assert first.source == "Punch Newspapers"
        assert first.category == "feed"
        assert "2025" in first.timestamp
        assert items[1].title == "Police & Army launch joint patrol in Kaduna"

    def test_request_carries_timeout(self):
        session = Mock()
        session.get.return_value = make_response(SAMPLE_RSS)
        adapter = FeedAdapter(["https://punchng.com/feed/"], session=session, timeout=10.0)

        adapter.fetch()

        assert session.get.call_args.kwargs["timeout"] == 10.0

    def test_one_failing_feed_does_not_block_others(self):
        session = Mock()
        session.get.side_effect = [
            requests.exceptions.ConnectionError("connection refused"),
            make_response(SAMPLE_RSS),
        ]
        adapter = FeedAdapter(["https://down.example/feed", "https://punchng.com/feed/"], session=session)

        items = adapter.fetch()

        assert len(items) == 2
        assert len(adapter.last_errors) == 1
        assert "down.example" in adapter.last_errors[0]

    def test_http_error_status(self):
        session = Mock()
        session.get.return_value = make_response(
            status_error=requests.exceptions.HTTPError("503 Server Error")
        )
        adapter = FeedAdapter(["https://punchng.com/feed/"], session=session)

        assert adapter.fetch() == []
        assert guard_for("https://punchng.com/feed/").failures == 1

    def test_malformed_feed_yields_nothing(self):
        session = Mock()
        session.get.return_value = make_response("this is not xml at all <<<")
        adapter = FeedAdapter(["https://punchng.com/feed/"], session=session)

        assert adapter.fetch() == []

    def test_max_entries_per_feed(self):
        session = Mock()
        session.get.return_value = make_response(SAMPLE_RSS)
        adapter = FeedAdapter(["https://punchng.com/feed/"], session=session, max_entries_per_feed=1)

        assert len(adapter.fetch()) == 1

    def test_open_guard_skips_only_that_feed(self):
        session = Mock()
        session.get.return_value = make_response(SAMPLE_RSS)
        adapter = FeedAdapter(["https://down.example/feed", "https://punchng.com/feed/"], session=session)
        guard = guard_for("https://down.example/feed")
        for _ in range(guard.max_failures):
            guard.failed("timeout")

        items = adapter.fetch()

        assert len(items) == 2
        session.get.assert_called_once()
        assert session.get.call_args.args[0] == "https://punchng.com/feed/"
        assert len(adapter.last_errors) == 1
        assert "Circuit open for https://down.example/feed" in adapter.last_errors[0]

    def test_failures_open_the_guard_for_that_feed(self):
        session = Mock()
        session.get.side_effect = requests.exceptions.ConnectionError("connection refused")
        adapter = FeedAdapter(["https://down.example/feed"], session=session)

        for _ in range(3):
            adapter.fetch()

        assert guard_for("https://down.example/feed").state == OPEN
        assert guard_for("https://punchng.com/feed/").calls == 0


# =============================================================================
# NEWS SEARCH ADAPTER
# =============================================================================

class TestNewsSearchAdapter:
    """Test GNews-style API collection"""

    def make_adapter(self, session, api_key="test-key"):
        return NewsSearchAdapter(
            base_url="https://gnews.io/api/v4/search",
            api_key=api_key,
            query="Nigeria attack",
            session=session,
        )

    def test_missing_key_returns_empty(self):
        session = Mock()
        adapter = self.make_adapter(session, api_key="")

        assert adapter.fetch() == []
        session.get.assert_not_called()

    def test_maps_articles(self):
        session = Mock()
        session.get.return_value = make_response(json_data={
            "totalArticles": 1,
            "articles": [{
                "title": "Bandits attack farmers in Benue",
                "description": "Several farmers were injured.",
                "content": "Several farmers were injured in the attack on Monday...",
                "url": "https://gnews.example/benue",
                "publishedAt": "2025-01-15T09:00:00Z",
                "source": {"name": "Channels TV", "url": "https://channelstv.com"},
            }],
        })
        adapter = self.make_adapter(session)

        [item] = adapter.fetch()

        assert item.title == "Bandits attack farmers in Benue"
        assert item.link == "https://gnews.example/benue"
        assert item.source == "Channels TV"
        assert item.category == "api"
        assert item.timestamp == "2025-01-15T09:00:00Z"
        params = session.get.call_args.kwargs["params"]
        assert params["country"] == "ng"
        assert params["lang"] == "en"
        assert params["apikey"] == "test-key"

    def test_malformed_articles_get_defaults(self):
        session = Mock()
        session.get.return_value = make_response(json_data={
            "articles": [
                "not an article",
                {"description": "no title or url"},
            ],
        })
        adapter = self.make_adapter(session)

        [item] = adapter.fetch()

        assert item.title == ""
        assert item.link == LINK_PLACEHOLDER
        assert item.source == "News Search"

    def test_wrongly_typed_fields_are_coerced(self):
        """One article with a numeric title must not drop the whole batch"""
        session = Mock()
        session.get.return_value = make_response(json_data={
            "articles": [
                {"title": "Bandits attack farmers in Benue", "url": "https://gnews.example/benue"},
                {"title": 12345, "description": {"text": "nested"}, "url": "https://gnews.example/numeric"},
            ],
        })
        adapter = self.make_adapter(session)

        items = adapter.fetch()

        assert len(items) == 2
        assert items[1].title == "12345"
        assert items[1].summary == ""
        assert items[1].link == "https://gnews.example/numeric"
        assert adapter.last_errors == []

    def test_invalid_json(self):
        session = Mock()
        response = make_response()
        response.json.side_effect = ValueError("Expecting value")
        session.get.return_value = response
        adapter = self.make_adapter(session)

        assert adapter.fetch() == []
        assert adapter.last_errors

    def test_api_error_payload(self):
        session = Mock()
        session.get.return_value = make_response(json_data={"errors": ["Invalid API key"]})
        adapter = self.make_adapter(session)

        assert adapter.fetch() == []

    def test_timeout_is_ordinary_failure(self):
        session = Mock()
        session.get.side_effect = requests.exceptions.Timeout("read timed out")
        adapter = self.make_adapter(session)

        assert adapter.fetch() == []


# =============================================================================
# SCRAPER ADAPTER
# =============================================================================

SAMPLE_HTML = """
<html><body>
  <h2 class="post-title"><a href="/gunmen-kill-five">Gunmen kill five in Zamfara village</a></h2>
  <h2 class="post-title"><a href="https://punchng.com/bandits-benue">Bandits attack farmers in Benue</a></h2>
  <h2 class="post-title"><a href="/gunmen-kill-five">Gunmen kill five in Zamfara village</a></h2>
  <h2 class="post-title"><a href="/empty"></a></h2>
  <h2 class="other"><a href="/ignored">Not a headline</a></h2>
</body></html>
"""


class TestScraperAdapter:
    """Test headline scraping"""

    TARGET = {"name": "Punch", "url": "https://punchng.com/topics/news/", "selector": "h2.post-title a"}

    def test_extracts_headlines(self):
        session = Mock()
        session.get.return_value = make_response(SAMPLE_HTML)
        adapter = ScraperAdapter(targets=[self.TARGET], session=session)

        items = adapter.fetch()

        assert [i.title for i in items] == [
            "Gunmen kill five in Zamfara village",
            "Bandits attack farmers in Benue",
        ]
        assert items[0].link == "https://punchng.com/gunmen-kill-five"
        assert items[0].summary == ""
        assert items[0].source == "Punch"
        assert items[0].category == "scraped"
        assert items[0].timestamp

    def test_failing_site_isolated(self):
        session = Mock()
        session.get.side_effect = [
            requests.exceptions.ConnectionError("reset"),
            make_response(SAMPLE_HTML),
        ]
        broken = {"name": "Broken", "url": "https://broken.example/", "selector": "a"}
        adapter = ScraperAdapter(targets=[broken, self.TARGET], session=session)

        items = adapter.fetch()

        assert len(items) == 2
        assert adapter.last_errors[0].startswith("Broken")


# =============================================================================
# AGGREGATOR
# =============================================================================

class TestNewsAggregator:
    """Test concurrent collection"""

    def test_concatenates_in_fixed_category_order(self, static_adapter, make_item):
        scraped = static_adapter("scraped", [make_item("S1", category="scraped")])
        feed = static_adapter("feed", [make_item("F1"), make_item("F2")])
        api = static_adapter("api", [make_item("A1", category="api")])

        result = asyncio.run(NewsAggregator(adapters=[scraped, api, feed]).collect_all())

        assert [i.title for i in result.items] == ["F1", "F2", "A1", "S1"]
        assert result.by_source == {"static_feed": 2, "static_api": 1, "static_scraped": 1}

    def test_failing_adapters_contribute_nothing(self, static_adapter, make_item):
        feed = static_adapter("feed", error=RuntimeError("feed down"))
        api = static_adapter("api", [make_item("A1", category="api")])
        scraped = static_adapter("scraped", error=requests.exceptions.Timeout("slow"))

        result = asyncio.run(NewsAggregator(adapters=[feed, api, scraped]).collect_all())

        assert [i.title for i in result.items] == ["A1"]
        assert set(result.failed_sources) == {"static_feed", "static_scraped"}

    def test_adapter_raising_past_fetch_is_tolerated(self, static_adapter, make_item):
        broken = static_adapter("feed")
        broken.fetch = Mock(side_effect=RuntimeError("unexpected"))
        api = static_adapter("api", [make_item("A1", category="api")])

        result = asyncio.run(NewsAggregator(adapters=[broken, api]).collect_all())

        assert [i.title for i in result.items] == ["A1"]
        assert result.errors["static_feed"] == ["unexpected"]

    def test_all_adapters_failing(self, static_adapter):
        adapters = [static_adapter(c, error=RuntimeError("down")) for c in ("feed", "api", "scraped")]

        result = asyncio.run(NewsAggregator(adapters=adapters).collect_all())

        assert result.items == []
        assert len(result.failed_sources) == 3

    def test_default_adapters_from_settings(self, settings):
        aggregator = NewsAggregator(settings=settings)

        assert [a.category for a in aggregator.adapters] == ["feed", "api", "scraped"]
        assert aggregator.adapters[0].feed_urls == settings.feed_urls


