"""
Unit Tests for the TTL Cache

Tests cover:
- Lazy expiry at exactly expires_at
- get_or_compute recompute semantics
- Independent keys
- Async single-flight
"""

import asyncio

import pytest
from unittest.mock import Mock

from suntrenia.cache import TTLCache, CacheEntry, NEWS_KEY, ENRICHED_NEWS_KEY, NEWS_TTL, ENRICHED_TTL


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return TTLCache(clock=clock)


# =============================================================================
# BASIC OPERATIONS
# =============================================================================

class TestTTLCacheBasics:
    """Test get/set/has"""

    def test_default_ttls(self):
        assert NEWS_TTL == 900
        assert ENRICHED_TTL == 1800

    def test_miss_on_empty_cache(self, cache):
        assert cache.get("news") is None
        assert not cache.has("news")

    def test_set_then_get(self, cache, clock):
        entry = cache.set("news", [1, 2, 3], 900)

        assert isinstance(entry, CacheEntry)
        assert entry.expires_at == clock.now + 900
        assert cache.get("news") == [1, 2, 3]
        assert cache.has("news")

    def test_entry_served_until_just_before_expiry(self, cache, clock):
        cache.set("news", "value", 900)
        clock.advance(899.999)

        assert cache.get("news") == "value"

    def test_entry_expired_at_exactly_expires_at(self, cache, clock):
        cache.set("news", "value", 900)
        clock.advance(900)

        assert not cache.has("news")
        assert cache.get("news") is None

    def test_invalidate(self, cache):
        cache.set("news", "value", 900)
        cache.invalidate("news")

        assert cache.get("news") is None

    def test_clear(self, cache):
        cache.set("a", 1, 10)
        cache.set("b", 2, 10)
        cache.clear()

        assert not cache.has("a")
        assert not cache.has("b")


# =============================================================================
# GET OR COMPUTE
# =============================================================================

class TestGetOrCompute:
    """Test memoization window"""

    def test_no_recompute_inside_window(self, cache, clock):
        compute = Mock(return_value="fresh")

        for _ in range(5):
            assert cache.get_or_compute(NEWS_KEY, 900, compute) == "fresh"
            clock.advance(100)

        assert compute.call_count == 1

    def test_exactly_one_recompute_after_expiry(self, cache, clock):
        compute = Mock(side_effect=["first", "second"])

        assert cache.get_or_compute(NEWS_KEY, 900, compute) == "first"
        clock.advance(900)
        assert cache.get_or_compute(NEWS_KEY, 900, compute) == "second"
        clock.advance(10)
        assert cache.get_or_compute(NEWS_KEY, 900, compute) == "second"

        assert compute.call_count == 2

    def test_keys_are_independent(self, cache, clock):
        news = Mock(side_effect=["n1", "n2"])
        enriched = Mock(side_effect=["e1", "e2"])

        cache.get_or_compute(NEWS_KEY, 900, news)
        cache.get_or_compute(ENRICHED_NEWS_KEY, 1800, enriched)
        clock.advance(1000)

        assert cache.get_or_compute(NEWS_KEY, 900, news) == "n2"
        assert cache.get_or_compute(ENRICHED_NEWS_KEY, 1800, enriched) == "e1"

    def test_compute_failure_is_not_cached(self, cache):
        compute = Mock(side_effect=[RuntimeError("boom"), "ok"])

        with pytest.raises(RuntimeError):
            cache.get_or_compute(NEWS_KEY, 900, compute)

        assert cache.get_or_compute(NEWS_KEY, 900, compute) == "ok"

    def test_cached_empty_value_is_a_hit(self, cache):
        compute = Mock(return_value=[])

        cache.get_or_compute(NEWS_KEY, 900, compute)
        cache.get_or_compute(NEWS_KEY, 900, compute)

        assert compute.call_count == 1


class TestAsyncGetOrCompute:
    """Test the async variant"""

    def test_concurrent_misses_share_one_computation(self, cache):
        calls = []

        async def compute():
            calls.append(1)
            await asyncio.sleep(0.01)
            return "value"

        async def main():
            return await asyncio.gather(*(cache.aget_or_compute("news", 900, compute) for _ in range(5)))

        results = asyncio.run(main())

        assert results == ["value"] * 5
        assert len(calls) == 1

    def test_recomputes_after_expiry(self, cache, clock):
        values = iter(["first", "second"])

        async def compute():
            return next(values)

        assert asyncio.run(cache.aget_or_compute("news", 900, compute)) == "first"
        clock.advance(900)
        assert asyncio.run(cache.aget_or_compute("news", 900, compute)) == "second"
