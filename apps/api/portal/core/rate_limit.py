"""Rate limiting for the portal API.

Two limiters live here:

- ``limiter``: slowapi decorator limiter for the session API (per client IP).
- ``plugin_rate_limiter``: keyed limiter for the WordPress plugin endpoints.
  Keys are built by the caller (``license:{site}``, ``payments:{site}``, ...)
  and a limited call is answered with ``{"error": "Rate limit exceeded"}``.

Both use Redis when REDIS_URL is set so limits hold across workers. Without
Redis the counters are in-memory and per-process: each worker enforces its
own budget.
"""

import logging
import os
import time
from dataclasses import dataclass

import redis
from limits import RateLimitItemPerSecond
from limits.storage import MemoryStorage, Storage, storage_from_string
from limits.strategies import MovingWindowRateLimiter
from slowapi import Limiter
from slowapi.util import get_remote_address

from portal.core.config import settings
from portal.core.errors import PluginAPIError

logger = logging.getLogger(__name__)

MEMORY_STORAGE_URI = "memory://"
PLUGIN_WINDOW_SECONDS = 60
IS_TESTING = os.getenv("TESTING", "").lower() in ("1", "true", "yes")
REDIS_ERROR_TYPES: tuple[type[BaseException], ...] = (
    redis.exceptions.RedisError,
    ConnectionError,
    TimeoutError,
)
DEFAULT_LIMITS = (
    []
    if IS_TESTING or settings.RATE_LIMIT_API <= 0
    else [f"{settings.RATE_LIMIT_API}/minute"]
)


def get_redis_url() -> str | None:
    url = settings.REDIS_URL
    if not url or url.strip().lower() == MEMORY_STORAGE_URI:
        return None
    return url.strip()


def _resolve_storage_uri() -> str:
    """Pick Redis when reachable, otherwise in-memory storage."""
    url = get_redis_url()
    if IS_TESTING or not url:
        return MEMORY_STORAGE_URI
    try:
        client = redis.from_url(url, socket_connect_timeout=1)
        client.ping()
        return url
    except REDIS_ERROR_TYPES as e:
        logger.warning("Redis unavailable for rate limiting, using in-memory: %s", e)
        return MEMORY_STORAGE_URI


STORAGE_URI = _resolve_storage_uri()

limiter = Limiter(
    key_func=get_remote_address,
    storage_uri=STORAGE_URI,
    default_limits=DEFAULT_LIMITS,
)


# =============================================================================
# Plugin limiter (explicit keys, explicit 429 body)
# =============================================================================

@dataclass(frozen=True)
class RateLimitResult:
    is_rate_limited: bool
    retry_after: int
    remaining: int


class PluginRateLimiter:
    """Moving-window limiter keyed by caller-built strings."""

    def __init__(self, storage_uri: str = MEMORY_STORAGE_URI):
        self._storage: Storage = storage_from_string(storage_uri)
        self._fallback: Storage | None = None
        self._strategy = MovingWindowRateLimiter(self._storage)

    def _fail_open(self, error: BaseException) -> None:
        logger.warning("Plugin rate limit storage failed, falling back to memory: %s", error)
        self._fallback = MemoryStorage()
        self._strategy = MovingWindowRateLimiter(self._fallback)

    def check(self, limit: int, key: str, window_seconds: int = 60) -> RateLimitResult:
        """Count one hit against ``key``; report whether the caller is over ``limit``."""
        if limit <= 0:
            return RateLimitResult(is_rate_limited=False, retry_after=0, remaining=0)

        item = RateLimitItemPerSecond(limit, window_seconds)
        try:
            allowed = self._strategy.hit(item, "plugin", key)
            stats = self._strategy.get_window_stats(item, "plugin", key)
        except REDIS_ERROR_TYPES as e:
            self._fail_open(e)
            allowed = self._strategy.hit(item, "plugin", key)
            stats = self._strategy.get_window_stats(item, "plugin", key)

        if allowed:
            return RateLimitResult(is_rate_limited=False, retry_after=0, remaining=stats.remaining)

        retry_after = max(1, int(stats.reset_time - time.time()))
        return RateLimitResult(is_rate_limited=True, retry_after=retry_after, remaining=0)

    def reset(self) -> None:
        """Clear all counters (used by tests)."""
        (self._fallback or self._storage).reset()


plugin_rate_limiter = PluginRateLimiter(STORAGE_URI)


def get_plugin_rate_limiter() -> PluginRateLimiter:
    """Dependency hook so tests can swap the limiter instance."""
    return plugin_rate_limiter


def enforce_plugin_rate_limit(limiter: PluginRateLimiter, limit: int, key: str) -> None:
    """Count a plugin call against ``key``; 429 with ``retry_after`` when over."""
    result = limiter.check(limit, key, window_seconds=PLUGIN_WINDOW_SECONDS)
    if result.is_rate_limited:
        logger.info("Plugin rate limit hit for %s", key)
        raise PluginAPIError(429, "Rate limit exceeded", retry_after=PLUGIN_WINDOW_SECONDS)
