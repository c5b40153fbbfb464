"""
Market bar data model.

A MarketBar is one OHLCV time step as returned by the Polygon aggregates
endpoint, optionally annotated with an IndicatorBundle. Bars are immutable
once fetched.
"""

from dataclasses import asdict, dataclass, replace
from datetime import datetime, timezone


@dataclass(frozen=True)
class IndicatorBundle:
    """Technical indicators computed at a single bar.

    Values are None where the series is too short for the indicator.
    """

    sma10: float | None = None
    sma20: float | None = None
    ema10: float | None = None
    ema20: float | None = None
    rsi: float | None = None
    macd: float | None = None
    macd_signal: float | None = None
    macd_histogram: float | None = None
    bb_upper: float | None = None
    bb_middle: float | None = None
    bb_lower: float | None = None

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "IndicatorBundle":
        return cls(**{k: data.get(k) for k in cls.__dataclass_fields__})


@dataclass(frozen=True)
class MarketBar:
    """One OHLCV bar. ``timestamp`` is epoch milliseconds."""

    timestamp: int
    open: float
    high: float
    low: float
    close: float
    volume: float
    vwap: float | None = None
    transactions: int | None = None
    price_change_percent: float | None = None
    volatility: float | None = None
    indicators: IndicatorBundle | None = None

    @property
    def date(self) -> str:
        """ISO date of the bar (UTC)."""
        return datetime.fromtimestamp(
            self.timestamp / 1000, tz=timezone.utc
        ).date().isoformat()

    def with_indicators(self, indicators: IndicatorBundle) -> "MarketBar":
        return replace(self, indicators=indicators)

    @classmethod
    def from_polygon(cls, result: dict) -> "MarketBar":
        """Build a bar from one entry of a Polygon aggregates response.

        Derives price change and intrabar volatility as percentages of the
        open price.
        """
        o = float(result["o"])
        h = float(result["h"])
        low = float(result["l"])
        c = float(result["c"])
        return cls(
            timestamp=int(result["t"]),
            open=o,
            high=h,
            low=low,
            close=c,
            volume=float(result.get("v") or 0.0),
            vwap=float(result["vw"]) if result.get("vw") is not None else None,
            transactions=int(result["n"]) if result.get("n") is not None else None,
            price_change_percent=((c - o) / o) * 100 if o else None,
            volatility=((h - low) / o) * 100 if o else None,
        )

    def to_dict(self) -> dict:
        data = asdict(self)
        data["date"] = self.date
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "MarketBar":
        indicators = data.get("indicators")
        return cls(
            timestamp=int(data["timestamp"]),
            open=float(data["open"]),
            high=float(data["high"]),
            low=float(data["low"]),
            close=float(data["close"]),
            volume=float(data["volume"]),
            vwap=data.get("vwap"),
            transactions=data.get("transactions"),
            price_change_percent=data.get("price_change_percent"),
            volatility=data.get("volatility"),
            indicators=IndicatorBundle.from_dict(indicators) if indicators else None,
        )


def validate_bars(bars: list[MarketBar]) -> list[MarketBar]:
    """Sort bars ascending by timestamp and drop duplicate timestamps.

    The first occurrence of a timestamp wins.
    """
    seen: set[int] = set()
    unique = []
    for bar in sorted(bars, key=lambda b: b.timestamp):
        if bar.timestamp in seen:
            continue
        seen.add(bar.timestamp)
        unique.append(bar)
    return unique
