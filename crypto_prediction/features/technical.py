"""
Technical indicator annotation for market bars.

Computes, per bar, from closes up to and including that bar:
- Simple moving averages (10, 20)
- Exponential moving averages (10, 20), seeded at the start of each window
- RSI (14) from simple average gains and losses
- MACD (12/26) with a 9-period signal line
- Bollinger Bands (20, 2 population standard deviations)

Series shorter than ``min_history`` bars are returned unannotated, and
indicators are left as None until enough history exists at a bar.
"""

import logging

import numpy as np

from crypto_prediction.market.bars import IndicatorBundle, MarketBar

logger = logging.getLogger(__name__)


class TechnicalIndicators:
    """Annotates a bar series with an IndicatorBundle per bar."""

    def __init__(
        self,
        sma_windows: tuple[int, int] = (10, 20),
        ema_windows: tuple[int, int] = (10, 20),
        rsi_window: int = 14,
        macd_fast: int = 12,
        macd_slow: int = 26,
        macd_signal: int = 9,
        bollinger_window: int = 20,
        bollinger_std: float = 2.0,
        min_history: int = 20,
    ) -> None:
        self._sma_windows = sma_windows
        self._ema_windows = ema_windows
        self._rsi_window = rsi_window
        self._macd_fast = macd_fast
        self._macd_slow = macd_slow
        self._macd_signal = macd_signal
        self._boll_window = bollinger_window
        self._boll_std = bollinger_std
        self._min_history = min_history

    def compute(self, bars: list[MarketBar]) -> list[MarketBar]:
        """Return a new list of bars carrying indicator bundles.

        Args:
            bars: Bars sorted ascending by timestamp.
        """
        if len(bars) < self._min_history:
            logger.debug(
                "[Indicators] Only %d bars, skipping indicators.", len(bars)
            )
            return list(bars)

        closes = np.array([b.close for b in bars], dtype=float)
        return [
            bar.with_indicators(self._bundle_at(closes, i))
            for i, bar in enumerate(bars)
        ]

    def _bundle_at(self, closes: np.ndarray, index: int) -> IndicatorBundle:
        short_sma, long_sma = self._sma_windows
        short_ema, long_ema = self._ema_windows
        values: dict[str, float | None] = {}

        if index >= short_sma - 1:
            values["sma10"] = sma(closes, index, short_sma)
            values["ema10"] = ema(closes, index, short_ema)
        if index >= long_sma - 1:
            values["sma20"] = sma(closes, index, long_sma)
            values["ema20"] = ema(closes, index, long_ema)

        if index >= self._rsi_window:
            values["rsi"] = rsi(closes, index, self._rsi_window)

        if index >= self._macd_slow:
            macd_value = (
                ema(closes, index, self._macd_fast)
                - ema(closes, index, self._macd_slow)
            )
            # Signal is an EMA of closes, not of the MACD line. Kept so that
            # features match models trained on earlier data.
            signal = ema(closes, index, self._macd_signal)
            values["macd"] = macd_value
            values["macd_signal"] = signal
            values["macd_histogram"] = macd_value - signal

        if index >= self._boll_window - 1:
            upper, middle, lower = bollinger(
                closes, index, self._boll_window, self._boll_std
            )
            values["bb_upper"] = upper
            values["bb_middle"] = middle
            values["bb_lower"] = lower

        return IndicatorBundle(**values)


def sma(closes: np.ndarray, index: int, period: int) -> float:
    """Mean of the ``period`` closes ending at ``index``."""
    return float(np.mean(closes[index - period + 1 : index + 1]))


def ema(closes: np.ndarray, index: int, period: int) -> float:
    """EMA over the ``period`` closes ending at ``index``.

    Seeded with the first close of the window, multiplier 2 / (period + 1).
    """
    multiplier = 2.0 / (period + 1)
    start = index - period + 1
    value = float(closes[start])
    for price in closes[start + 1 : index + 1]:
        value = float(price) * multiplier + value * (1 - multiplier)
    return value


def rsi(closes: np.ndarray, index: int, period: int) -> float | None:
    """RSI from simple averages of the last ``period`` close-to-close changes.

    Returns None when the window has no movement at all.
    """
    changes = np.diff(closes[index - period : index + 1])
    avg_gain = float(changes[changes > 0].sum()) / period
    avg_loss = float(-changes[changes < 0].sum()) / period
    if avg_loss == 0:
        return 100.0 if avg_gain > 0 else None
    rs = avg_gain / avg_loss
    return 100.0 - 100.0 / (1.0 + rs)


def bollinger(
    closes: np.ndarray, index: int, period: int, num_std: float = 2.0
) -> tuple[float, float, float]:
    """(upper, middle, lower) bands with population standard deviation."""
    window = closes[index - period + 1 : index + 1]
    middle = float(np.mean(window))
    std = float(np.std(window))
    return middle + num_std * std, middle, middle - num_std * std


def add_technical_indicators(bars: list[MarketBar]) -> list[MarketBar]:
    """Annotate bars using the default indicator settings."""
    return TechnicalIndicators().compute(bars)
