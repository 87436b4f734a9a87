"""
Pytest Configuration and Fixtures

Provides shared fixtures and configuration for all tests.
"""

import pytest
from unittest.mock import Mock

from suntrenia.aggregator import RawItem, SourceAdapter
from suntrenia.config import Settings


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture(autouse=True)
def reset_resilience_state():
    """Reset all resilience state before each test"""
    from suntrenia.shared.resilience import reset_all
    reset_all()
    yield
    reset_all()


@pytest.fixture
def settings():
    """Settings with no API keys and default thresholds"""
    return Settings(
        feed_urls=["https://example.ng/feed/"],
        news_api_key="",
        anthropic_api_key="",
    )


@pytest.fixture
def make_item():
    """Factory for RawItems with sensible defaults"""
    def _make(title, summary="", category="feed", timestamp="2025-01-15T10:00:00Z",
              source="Punch", link=None):
        return RawItem.build(
            title=title,
            link=link or f"https://example.ng/{abs(hash(title))}",
            summary=summary,
            source=source,
            timestamp=timestamp,
            category=category,
        )
    return _make


@pytest.fixture
def zamfara_benue_items(make_item):
    """The three-report scenario: a duplicated Zamfara abduction and a Benue attack"""
    return [
        make_item("Gunmen abduct 12 in Zamfara village", category="feed"),
        make_item("Gunmen abduct twelve in Zamfara village", category="api", source="GNews"),
        make_item("Bandits attack farmers in Benue", category="scraped", source="Premium Times"),
    ]


class StaticAdapter(SourceAdapter):
    """Adapter returning canned items, or failing with a canned error"""

    def __init__(self, category, items=None, error=None, name=None):
        super().__init__(session=Mock())
        self.category = category
        self._items = items or []
        self._error = error
        self._name = name or f"static_{category}"
        self.calls = 0

    @property
    def source_id(self):
        return self._name

    def _collect(self):
        self.calls += 1
        if self._error is not None:
            raise self._error
        return list(self._items)


@pytest.fixture
def static_adapter():
    """The StaticAdapter class, for building aggregators without network access"""
    return StaticAdapter


@pytest.fixture
def mock_claude_response():
    """Mock Claude classification reply"""
    return '''```json
{
    "category": "Kidnapping",
    "severity": "High",
    "casualties": {"deaths": 0, "injuries": 2, "abducted": 12},
    "perpetrators": "Armed bandits",
    "locations": ["Zamfara", "Tsafe"],
    "extracted_facts": [
        "12 villagers abducted",
        "Attack happened overnight"
    ]
}
```'''


@pytest.fixture
def mock_anthropic_client(mock_claude_response):
    """Anthropic client whose messages.create returns mock_claude_response"""
    client = Mock()
    client.messages.create.return_value = Mock(content=[Mock(text=mock_claude_response)])
    return client


# =============================================================================
# MARKERS
# =============================================================================

def pytest_configure(config):
    """Configure custom markers"""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests"
    )


# =============================================================================
# HOOKS
# =============================================================================

def pytest_collection_modifyitems(config, items):
    """Automatically add markers based on test location"""
    for item in items:
        if "integration" in item.nodeid:
            item.add_marker(pytest.mark.integration)
        else:
            item.add_marker(pytest.mark.unit)
