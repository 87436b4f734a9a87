"""
SUNTRENIA RESILIENCE MODULE
Failure isolation for every upstream one refresh cycle talks to

Upstreams are tracked individually by key:
- each feed URL and each scraped headline page
- the news-search endpoint
- "anthropic" for enrichment, briefings and risk assessments

A SourceGuard per key counts consecutive failures and, past a threshold,
refuses calls for a cooldown period. One dead newspaper feed therefore
never blocks its neighbours, and a Claude outage stops costing a timeout
per incident.
"""

import time
import random
import logging
import functools
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import Lock
from typing import Any, Callable, Deque, Dict, Optional, Tuple

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

logger = logging.getLogger(__name__)


# =============================================================================
# EXCEPTIONS
# =============================================================================

class ResilienceError(Exception):
    """Base exception for upstream failures"""
    pass


class SourceUnavailableError(ResilienceError):
    """A news source could not be fetched or parsed this cycle"""
    def __init__(self, source_name: str, reason: str = ""):
        self.source_name = source_name
        self.reason = reason
        super().__init__(f"Source {source_name} unavailable" + (f": {reason}" if reason else ""))


class CircuitOpenError(ResilienceError):
    """The guard for this upstream is refusing calls"""
    def __init__(self, key: str, retry_in: Optional[float] = None):
        self.key = key
        self.retry_in = retry_in
        suffix = f", retry in {retry_in:.0f}s" if retry_in is not None else ""
        super().__init__(f"Circuit open for {key}{suffix}")


class RateLimitError(ResilienceError):
    """Call budget exhausted, locally or as reported by the upstream"""
    def __init__(self, key: str, retry_after: Optional[int] = None):
        self.key = key
        self.retry_after = retry_after
        super().__init__(f"Rate limit hit for {key}" + (f", retry after {retry_after}s" if retry_after else ""))


class RetryExhaustedError(ResilienceError):
    """Every attempt of a guarded call failed with a retryable error"""
    def __init__(self, key: str, attempts: int, last_exception: Optional[Exception] = None):
        self.key = key
        self.attempts = attempts
        self.last_exception = last_exception
        super().__init__(f"[{key}] all {attempts} attempts failed: {last_exception}")


# =============================================================================
# SOURCE GUARD
# =============================================================================

CLOSED = "closed"
OPEN = "open"
TRIAL = "trial"


@dataclass
class SourceGuard:
    """
    Circuit breaker and call statistics for one upstream.

    After max_failures consecutive failures the guard opens and refuses
    calls for cooldown seconds. The first call after the cooldown is a
    trial: success closes the guard, failure reopens it for another
    cooldown. Only one trial call is let through at a time.
    """
    key: str
    max_failures: int = 3
    cooldown: float = 300.0
    clock: Callable[[], float] = time.monotonic

    consecutive_failures: int = 0
    opened_at: Optional[float] = None
    trial_running: bool = False
    calls: int = 0
    failures: int = 0
    last_error: Optional[str] = None
    last_success: Optional[str] = None
    latencies_ms: Deque[float] = field(default_factory=lambda: deque(maxlen=50))
    _lock: Lock = field(default_factory=Lock, repr=False)

    @property
    def state(self) -> str:
        if self.opened_at is None:
            return CLOSED
        if self.trial_running or self.clock() - self.opened_at >= self.cooldown:
            return TRIAL
        return OPEN

    def retry_in(self) -> Optional[float]:
        """Seconds until a trial call is allowed, None when not open"""
        if self.opened_at is None:
            return None
        return max(0.0, self.opened_at + self.cooldown - self.clock())

    def allow(self) -> bool:
        with self._lock:
            if self.opened_at is None:
                return True
            if self.trial_running or self.clock() - self.opened_at < self.cooldown:
                return False
            self.trial_running = True
            logger.info(f"Guard {self.key}: cooldown over, letting a trial call through")
            return True

    def succeeded(self, elapsed_ms: float = 0.0):
        with self._lock:
            self.calls += 1
            self.latencies_ms.append(elapsed_ms)
            self.last_success = datetime.now(timezone.utc).isoformat()
            self.consecutive_failures = 0
            if self.opened_at is not None:
                logger.info(f"Guard {self.key}: recovered, closing")
            self.opened_at = None
            self.trial_running = False

    def failed(self, error: Any = None, elapsed_ms: float = 0.0):
        with self._lock:
            self.calls += 1
            self.failures += 1
            self.latencies_ms.append(elapsed_ms)
            self.last_error = str(error)[:200] if error is not None else None
            self.consecutive_failures += 1

            if self.trial_running:
                self.trial_running = False
                self.opened_at = self.clock()
                logger.warning(f"Guard {self.key}: trial call failed, open for another {self.cooldown:.0f}s")
            elif self.opened_at is None and self.consecutive_failures >= self.max_failures:
                self.opened_at = self.clock()
                logger.warning(
                    f"Guard {self.key}: {self.consecutive_failures} failures in a row, "
                    f"open for {self.cooldown:.0f}s (last error: {self.last_error})"
                )

    @property
    def success_rate(self) -> float:
        if self.calls == 0:
            return 100.0
        return 100.0 * (self.calls - self.failures) / self.calls

    @property
    def healthy(self) -> bool:
        return self.state == CLOSED and self.success_rate >= 80

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            latencies = list(self.latencies_ms)
        return {
            "state": self.state,
            "consecutive_failures": self.consecutive_failures,
            "calls": self.calls,
            "failures": self.failures,
            "success_rate": round(self.success_rate, 1),
            "avg_response_ms": round(sum(latencies) / len(latencies), 1) if latencies else 0.0,
            "last_success": self.last_success,
            "last_error": self.last_error,
            "retry_in": self.retry_in(),
            "healthy": self.healthy,
        }


# per-key overrides of the SourceGuard defaults
GUARD_SETTINGS: Dict[str, Dict[str, Any]] = {
    "anthropic": {"max_failures": 5, "cooldown": 120.0},
}

_guards: Dict[str, SourceGuard] = {}
_guards_lock = Lock()


def guard_for(key: str) -> SourceGuard:
    """The process-wide guard for one upstream key"""
    with _guards_lock:
        guard = _guards.get(key)
        if guard is None:
            guard = _guards[key] = SourceGuard(key=key, **GUARD_SETTINGS.get(key, {}))
        return guard


# =============================================================================
# CALL BUDGET
# =============================================================================

@dataclass
class CallBudget:
    """
    Token bucket for an upstream with a request quota.

    Up to burst calls go out at once; afterwards one call per
    1/per_second seconds.
    """
    burst: int
    per_second: float
    clock: Callable[[], float] = time.monotonic
    sleep: Callable[[float], None] = time.sleep

    _tokens: Optional[float] = None
    _refilled_at: Optional[float] = None
    _lock: Lock = field(default_factory=Lock, repr=False)

    def _refill(self, now: float):
        if self._tokens is None:
            self._tokens, self._refilled_at = float(self.burst), now
            return
        self._tokens = min(float(self.burst), self._tokens + (now - self._refilled_at) * self.per_second)
        self._refilled_at = now

    def take(self, timeout: float = 30.0) -> bool:
        """Spend one call, waiting up to timeout seconds for a token"""
        deadline = self.clock() + timeout
        while True:
            with self._lock:
                now = self.clock()
                self._refill(now)
                if self._tokens >= 1:
                    self._tokens -= 1
                    return True
                wait = (1 - self._tokens) / self.per_second
            if now + wait > deadline:
                return False
            self.sleep(min(wait, 1.0))


# ~30 requests/minute, released in groups matching the enrichment batch size
BUDGET_SETTINGS: Dict[str, Tuple[int, float]] = {
    "anthropic": (5, 0.5),
}

_budgets: Dict[str, CallBudget] = {}
_budgets_lock = Lock()


def budget_for(key: str) -> Optional[CallBudget]:
    """The shared call budget for key, None for upstreams without a quota"""
    if key not in BUDGET_SETTINGS:
        return None
    with _budgets_lock:
        if key not in _budgets:
            burst, per_second = BUDGET_SETTINGS[key]
            _budgets[key] = CallBudget(burst=burst, per_second=per_second)
        return _budgets[key]


# =============================================================================
# DECORATORS
# =============================================================================

def _elapsed_ms(started: float) -> float:
    return (time.monotonic() - started) * 1000


def guarded(
    key: str,
    retries: int = 2,
    backoff: float = 1.0,
    retry_on: Tuple[type, ...] = (requests.exceptions.ConnectionError, requests.exceptions.Timeout),
):
    """
    Run the wrapped call behind the guard and call budget for key.

    Exceptions listed in retry_on are retried with jittered exponential
    backoff and end in RetryExhaustedError; anything else propagates at
    once. The guard records one outcome per call, not per attempt.

    Usage:
        @guarded("anthropic", retry_on=(anthropic.APIConnectionError,))
        def _complete(self, prompt):
            ...
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            budget = budget_for(key)
            if budget is not None and not budget.take():
                raise RateLimitError(key)

            guard = guard_for(key)
            if not guard.allow():
                raise CircuitOpenError(key, guard.retry_in())

            started = time.monotonic()
            for attempt in range(retries + 1):
                try:
                    result = func(*args, **kwargs)
                except retry_on as e:
                    if attempt == retries:
                        guard.failed(e, _elapsed_ms(started))
                        raise RetryExhaustedError(key, retries + 1, e) from e
                    delay = backoff * (2 ** attempt) * random.uniform(0.5, 1.5)
                    logger.warning(f"[{key}] attempt {attempt + 1}/{retries + 1} failed: {e}; retrying in {delay:.1f}s")
                    time.sleep(delay)
                except Exception as e:
                    guard.failed(e, _elapsed_ms(started))
                    raise
                else:
                    guard.succeeded(_elapsed_ms(started))
                    return result

        return wrapper
    return decorator


def with_fallback(fallback_value: Any):
    """Log and return fallback_value when the wrapped call raises"""
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except Exception as e:
                logger.warning(f"{func.__name__} failed, returning fallback: {e}")
                return fallback_value
        return wrapper
    return decorator


# =============================================================================
# HTTP SESSION
# =============================================================================

USER_AGENT = "SuntreniaBot/1.0 (+https://www.suntrenia.com)"


def create_robust_session(total_retries: int = 2, backoff_factor: float = 0.5) -> requests.Session:
    """
    Pooled session that retries GETs on 429 and 5xx answers.

    Timeouts are passed per request by the adapters.
    """
    retry = Retry(
        total=total_retries,
        backoff_factor=backoff_factor,
        status_forcelist=(429, 500, 502, 503, 504),
        allowed_methods=["GET"],
    )
    session = requests.Session()
    adapter = HTTPAdapter(max_retries=retry, pool_connections=10, pool_maxsize=10)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    session.headers.update({"User-Agent": USER_AGENT})
    return session


_http_session: Optional[requests.Session] = None
_session_lock = Lock()


def get_http_session() -> requests.Session:
    global _http_session
    with _session_lock:
        if _http_session is None:
            _http_session = create_robust_session()
        return _http_session


# =============================================================================
# STATUS
# =============================================================================

def guard_status() -> Dict[str, Dict[str, Any]]:
    """Snapshot of every guard, keyed by upstream"""
    with _guards_lock:
        guards = list(_guards.values())
    return {guard.key: guard.snapshot() for guard in guards}


def reset_all():
    """Forget all guards and budgets (for testing)"""
    with _guards_lock:
        _guards.clear()
    with _budgets_lock:
        _budgets.clear()
