"""
Redis cache client for market data.

Implements:
- Bar series cache (TTL: 5 minutes by default)
- Pattern invalidation per symbol
- Cache warming for tracked symbols

Falls back to an in-memory dict with the same TTL semantics when Redis
is unreachable.
"""

import fnmatch
import json
import logging
import threading
import time
from typing import Any, Callable

import redis

from crypto_prediction.market.bars import MarketBar

logger = logging.getLogger(__name__)


class CacheClient:
    """Redis-backed cache for fetched bar series."""

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379/0",
        bars_ttl: int = 300,
        connect: bool = True,
    ) -> None:
        self._bars_ttl = bars_ttl
        self._redis: "redis.Redis | None" = None
        self._memory_cache: dict[str, tuple[float, Any]] = {}
        self._memory_lock = threading.Lock()

        if connect:
            try:
                self._redis = redis.from_url(
                    redis_url,
                    decode_responses=True,
                    socket_timeout=5,
                )
                self._redis.ping()
                logger.info("Connected to Redis at %s", redis_url)
            except redis.RedisError:
                logger.warning("Cannot connect to Redis. Using in-memory cache.")
                self._redis = None

    @property
    def backend(self) -> str:
        return "redis" if self._redis is not None else "memory"

    # ------------------------------------------------------------------
    # Bar cache
    # ------------------------------------------------------------------

    @staticmethod
    def bars_key(symbol: str, timespan: str, start: str, end: str) -> str:
        return f"bars:{symbol}:{timespan}:{start}:{end}"

    def get_bars(
        self, symbol: str, timespan: str, start: str, end: str
    ) -> list[MarketBar] | None:
        """Retrieve a cached bar series.

        Key pattern: bars:{symbol}:{timespan}:{start}:{end}
        """
        cached = self._get(self.bars_key(symbol, timespan, start, end))
        if cached is None:
            return None
        return [MarketBar.from_dict(item) for item in cached]

    def set_bars(
        self,
        symbol: str,
        timespan: str,
        start: str,
        end: str,
        bars: list[MarketBar],
    ) -> None:
        """Cache a bar series for ``bars_ttl`` seconds."""
        payload = [bar.to_dict() for bar in bars]
        self._set(self.bars_key(symbol, timespan, start, end), payload, self._bars_ttl)

    def invalidate_bars(self, symbol: str | None = None) -> int:
        """Invalidate cached bars.

        Args:
            symbol: Specific symbol to invalidate, or None for all.

        Returns:
            Number of keys invalidated.
        """
        pattern = f"bars:{symbol}:*" if symbol else "bars:*"
        return self._delete_pattern(pattern)

    # ------------------------------------------------------------------
    # Cache warming
    # ------------------------------------------------------------------

    def warm_cache(self, symbols: list[str], fetch_fn: Callable[[str], Any]) -> int:
        """Fetch bars for each symbol so later requests hit the cache.

        Args:
            symbols: Symbols to warm.
            fetch_fn: Callable that fetches (and thereby caches) bars for a symbol.

        Returns:
            Number of symbols warmed.
        """
        warmed = 0
        for symbol in symbols:
            try:
                fetch_fn(symbol)
                warmed += 1
            except Exception:
                logger.warning("Failed to warm cache for %s", symbol)
        logger.info("Cache warmed for %d/%d symbols.", warmed, len(symbols))
        return warmed

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _get(self, key: str) -> Any | None:
        if self._redis is not None:
            try:
                val = self._redis.get(key)
                if val is not None:
                    return json.loads(val)
            except redis.RedisError:
                logger.warning("Redis GET failed for key %s", key)

        with self._memory_lock:
            entry = self._memory_cache.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if time.monotonic() >= expires_at:
                del self._memory_cache[key]
                return None
            return value

    def _set(self, key: str, value: Any, ttl: int) -> None:
        serialized = json.dumps(value, default=str)
        if self._redis is not None:
            try:
                self._redis.setex(key, ttl, serialized)
                return
            except redis.RedisError:
                logger.warning("Redis SET failed for key %s", key)
        with self._memory_lock:
            now = time.monotonic()
            self._prune_expired(now)
            self._memory_cache[key] = (now + ttl, json.loads(serialized))

    def _prune_expired(self, now: float) -> None:
        # Caller holds _memory_lock
        expired = [k for k, (expires_at, _) in self._memory_cache.items() if now >= expires_at]
        for k in expired:
            del self._memory_cache[k]

    def _delete_pattern(self, pattern: str) -> int:
        if self._redis is not None:
            try:
                keys = list(self._redis.scan_iter(match=pattern))
                if keys:
                    self._redis.delete(*keys)
                return len(keys)
            except redis.RedisError:
                logger.warning("Redis DELETE failed for pattern %s", pattern)

        with self._memory_lock:
            to_delete = [k for k in self._memory_cache if fnmatch.fnmatch(k, pattern)]
            for k in to_delete:
                del self._memory_cache[k]
        return len(to_delete)
