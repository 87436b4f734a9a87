"""
TTL cache for pipeline output.

Entries expire lazily: a lookup at or after expires_at is a miss. The
cache is created once and injected; nothing here is module-level state.
"""

import time
import asyncio
import logging
from dataclasses import dataclass
from threading import Lock
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

logger = logging.getLogger(__name__)

NEWS_KEY = "news"
ENRICHED_NEWS_KEY = "news:enriched"
WEEKLY_BRIEFING_KEY = "briefing:weekly"
ANALYSIS_KEY = "analysis:overall"
PATTERNS_KEY = "analysis:patterns"
ALERTS_KEY = "alerts:critical"

NEWS_TTL = 900
ENRICHED_TTL = 1800


@dataclass
class CacheEntry:
    value: Any
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class TTLCache:
    """
    Key -> value store with per-entry time-to-live.

    clock defaults to time.monotonic and can be replaced in tests.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = Lock()
        self._key_locks: Dict[str, Tuple[asyncio.AbstractEventLoop, asyncio.Lock]] = {}

    def _lookup(self, key: str) -> Tuple[bool, Any]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return False, None
            if entry.is_expired(self._clock()):
                del self._entries[key]
                return False, None
            return True, entry.value

    def get(self, key: str) -> Optional[Any]:
        return self._lookup(key)[1]

    def has(self, key: str) -> bool:
        with self._lock:
            entry = self._entries.get(key)
            return entry is not None and not entry.is_expired(self._clock())

    def set(self, key: str, value: Any, ttl_seconds: float) -> CacheEntry:
        entry = CacheEntry(value=value, expires_at=self._clock() + ttl_seconds)
        with self._lock:
            self._entries[key] = entry
        return entry

    def invalidate(self, key: str):
        with self._lock:
            self._entries.pop(key, None)

    def clear(self):
        with self._lock:
            self._entries.clear()

    def get_or_compute(self, key: str, ttl_seconds: float, compute_fn: Callable[[], Any]) -> Any:
        hit, value = self._lookup(key)
        if hit:
            logger.debug(f"Cache hit: {key}")
            return value

        logger.info(f"Cache miss: {key}, recomputing")
        value = compute_fn()
        self.set(key, value, ttl_seconds)
        return value

    def _key_lock(self, key: str) -> asyncio.Lock:
        # asyncio locks belong to one event loop
        loop = asyncio.get_running_loop()
        held = self._key_locks.get(key)
        if held is None or held[0] is not loop:
            held = (loop, asyncio.Lock())
            self._key_locks[key] = held
        return held[1]

    async def aget_or_compute(
        self,
        key: str,
        ttl_seconds: float,
        compute_fn: Callable[[], Awaitable[Any]],
    ) -> Any:
        """Async variant; concurrent misses on one key share a single computation"""
        hit, value = self._lookup(key)
        if hit:
            logger.debug(f"Cache hit: {key}")
            return value

        async with self._key_lock(key):
            hit, value = self._lookup(key)
            if hit:
                return value

            logger.info(f"Cache miss: {key}, recomputing")
            value = await compute_fn()
            self.set(key, value, ttl_seconds)
            return value

    def expires_at(self, key: str) -> Optional[float]:
        with self._lock:
            entry = self._entries.get(key)
            return entry.expires_at if entry else None
