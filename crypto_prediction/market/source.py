"""
Market data sources.

``MarketDataSource`` is the interface the engine consumes. Any object with
a matching ``get_bars`` works (tests use an in-memory source).

``PolygonMarketDataSource`` fetches aggregates from the Polygon REST API:

    GET /v2/aggs/ticker/{symbol}/range/1/{timespan}/{from}/{to}

Results are deduplicated, sorted ascending, annotated with technical
indicators and cached in Redis for a few minutes.
"""

import logging
from datetime import date, datetime, timedelta, timezone
from typing import Protocol, runtime_checkable

import httpx
import pandas as pd

from crypto_prediction.config import MarketDataConfig, RedisConfig
from crypto_prediction.errors import MarketDataError
from crypto_prediction.features.technical import add_technical_indicators
from crypto_prediction.market.bars import MarketBar, validate_bars
from crypto_prediction.utils.cache import CacheClient

logger = logging.getLogger(__name__)

_REQUIRED_COLUMNS = ("t", "o", "h", "l", "c")


@runtime_checkable
class MarketDataSource(Protocol):
    """Supplies ascending, deduplicated, indicator-annotated bars."""

    def get_bars(
        self, symbol: str, timespan: str = "day", lookback_days: int = 730
    ) -> list[MarketBar]:
        ...


class PolygonMarketDataSource:
    """Polygon aggregates client with a Redis bar cache.

    Usage:
        source = PolygonMarketDataSource()
        bars = source.get_bars("X:BTCUSD", "day", 730)
    """

    def __init__(
        self,
        config: MarketDataConfig | None = None,
        cache: CacheClient | None = None,
        client: httpx.Client | None = None,
    ) -> None:
        self._cfg = config or MarketDataConfig()
        if cache is None:
            redis_cfg = RedisConfig()
            cache = CacheClient(redis_cfg.url, bars_ttl=redis_cfg.bars_ttl_seconds)
        self._cache = cache
        self._client = client or httpx.Client(
            base_url=self._cfg.base_url,
            timeout=self._cfg.timeout,
            headers={"Content-Type": "application/json"},
        )
        if not self._cfg.api_key:
            logger.warning("POLYGON_API_KEY not set. Live market data unavailable.")

    def close(self) -> None:
        self._client.close()

    def get_bars(
        self,
        symbol: str,
        timespan: str = "day",
        lookback_days: int = 730,
        end_date: date | None = None,
    ) -> list[MarketBar]:
        """Fetch ``lookback_days`` of bars ending at ``end_date`` (today, UTC).

        Raises:
            MarketDataError: on missing API key, HTTP failure or no results.
        """
        end = end_date or datetime.now(timezone.utc).date()
        start = end - timedelta(days=lookback_days)
        start_str, end_str = start.isoformat(), end.isoformat()

        cached = self._cache.get_bars(symbol, timespan, start_str, end_str)
        if cached is not None:
            logger.debug("Cache hit for %s %s %s..%s", symbol, timespan, start_str, end_str)
            return cached

        results = self._fetch_aggregates(symbol, timespan, start_str, end_str)
        bars = add_technical_indicators(self._to_bars(results))
        logger.info(
            "Fetched %d %s bars for %s (%s..%s)",
            len(bars),
            timespan,
            symbol,
            start_str,
            end_str,
        )
        self._cache.set_bars(symbol, timespan, start_str, end_str, bars)
        return bars

    def _fetch_aggregates(
        self, symbol: str, timespan: str, start: str, end: str
    ) -> list[dict]:
        if not self._cfg.api_key:
            raise MarketDataError(symbol, "POLYGON_API_KEY is required")

        endpoint = f"/v2/aggs/ticker/{symbol}/range/1/{timespan}/{start}/{end}"
        params = {
            "adjusted": "true",
            "sort": "asc",
            "limit": self._cfg.limit,
            "apiKey": self._cfg.api_key,
        }
        try:
            response = self._client.get(endpoint, params=params)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            if status == 429:
                logger.warning("Polygon rate limit reached for %s.", symbol)
            if status == 404:
                raise MarketDataError(symbol, "symbol not found") from exc
            raise MarketDataError(symbol, f"HTTP {status}") from exc
        except httpx.HTTPError as exc:
            raise MarketDataError(symbol, f"network error: {exc}") from exc

        try:
            payload = response.json()
        except ValueError as exc:
            raise MarketDataError(symbol, "invalid JSON response") from exc

        results = payload.get("results") or []
        if not results:
            raise MarketDataError(symbol, "no data available for the requested period")
        return results

    @staticmethod
    def _to_bars(results: list[dict]) -> list[MarketBar]:
        frame = pd.DataFrame(results)
        missing = [c for c in _REQUIRED_COLUMNS if c not in frame.columns]
        if missing:
            raise MarketDataError("unknown", f"aggregates missing columns {missing}")

        frame = (
            frame.dropna(subset=list(_REQUIRED_COLUMNS))
            .drop_duplicates(subset="t", keep="first")
            .sort_values("t")
        )
        frame = frame.astype(object).where(frame.notna(), None)
        bars = [MarketBar.from_polygon(row) for row in frame.to_dict("records")]
        return validate_bars(bars)
