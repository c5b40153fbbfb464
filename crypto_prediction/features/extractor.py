"""
Feature extraction from market bars.

Each feature vector describes one bar ``i`` and is built from:
- a price block over the ``lookback_period`` bars before ``i``
  (close, volume, high, low, open, vwap, transactions per bar)
- the 11 indicators of bar ``i``
- 4 derived values of bar ``i`` (price change %, volatility,
  volume change %, 5-bar momentum %)

Its target is the ``prediction_horizon`` closes that follow ``i``.

Missing indicator values are encoded as 0, which is indistinguishable
from a genuine zero. This matches the encoding models were trained with.
"""

import logging
import math

import numpy as np

from crypto_prediction.errors import InsufficientDataError, ShapeMismatchError
from crypto_prediction.market.bars import MarketBar

logger = logging.getLogger(__name__)

PRICE_FIELDS = ("close", "volume", "high", "low", "open", "vwap", "transactions")
INDICATOR_FIELDS = (
    "sma10",
    "sma20",
    "ema10",
    "ema20",
    "rsi",
    "macd",
    "macd_signal",
    "bb_upper",
    "bb_lower",
    "bb_middle",
    "macd_histogram",
)
DERIVED_FIELDS = (
    "price_change_percent",
    "volatility",
    "volume_change_percent",
    "momentum_percent",
)
MOMENTUM_PERIOD = 5


def expected_feature_length(lookback_period: int) -> int:
    """Length of every feature vector for a given lookback period."""
    return (
        len(PRICE_FIELDS) * lookback_period
        + len(INDICATOR_FIELDS)
        + len(DERIVED_FIELDS)
    )


def feature_names(lookback_period: int) -> list[str]:
    """Column names in feature-vector order, oldest window bar first."""
    names = [
        f"{name}_t-{lookback_period - j}"
        for j in range(lookback_period)
        for name in PRICE_FIELDS
    ]
    return names + list(INDICATOR_FIELDS) + list(DERIVED_FIELDS)


def _value(value: float | None) -> float:
    """Missing, NaN and infinite values become 0."""
    if value is None:
        return 0.0
    value = float(value)
    return value if math.isfinite(value) else 0.0


class FeatureExtractor:
    """Builds fixed-length feature vectors and multi-step targets."""

    def __init__(self, lookback_period: int = 60, prediction_horizon: int = 5) -> None:
        if lookback_period < 1 or prediction_horizon < 1:
            raise ValueError("lookback_period and prediction_horizon must be >= 1")
        self._lookback = lookback_period
        self._horizon = prediction_horizon

    @property
    def lookback_period(self) -> int:
        return self._lookback

    @property
    def prediction_horizon(self) -> int:
        return self._horizon

    @property
    def feature_length(self) -> int:
        return expected_feature_length(self._lookback)

    def extract(self, bars: list[MarketBar]) -> tuple[np.ndarray, np.ndarray]:
        """Extract all (feature vector, target) pairs from a bar series.

        Args:
            bars: Bars sorted ascending, no duplicate timestamps.

        Returns:
            ``X`` of shape (n, feature_length) and ``y`` of shape
            (n, prediction_horizon), where n = len(bars) - lookback - horizon.

        Raises:
            InsufficientDataError: if len(bars) <= lookback + horizon.
        """
        required = self._lookback + self._horizon
        if len(bars) <= required:
            raise InsufficientDataError(len(bars), required)

        features = []
        targets = []
        for i in range(self._lookback, len(bars) - self._horizon):
            features.append(self._vector_at(bars, i))
            targets.append(self._target_at(bars, i))

        X = np.asarray(features, dtype=np.float64)
        y = np.asarray(targets, dtype=np.float64)
        logger.debug(
            "[Features] Extracted %d samples x %d features.", X.shape[0], X.shape[1]
        )
        return X, y

    def latest_vector(self, bars: list[MarketBar]) -> np.ndarray:
        """Feature vector for the newest bar, which has no target yet.

        Raises:
            InsufficientDataError: if len(bars) <= lookback.
        """
        if len(bars) <= self._lookback:
            raise InsufficientDataError(len(bars), self._lookback)
        return np.asarray(self._vector_at(bars, len(bars) - 1), dtype=np.float64)

    def _vector_at(self, bars: list[MarketBar], i: int) -> list[float]:
        vector: list[float] = []

        for bar in bars[i - self._lookback : i]:
            vector.extend((
                _value(bar.close),
                _value(bar.volume),
                _value(bar.high),
                _value(bar.low),
                _value(bar.open),
                _value(bar.vwap or bar.close),
                _value(bar.transactions),
            ))

        current = bars[i]
        indicators = current.indicators
        for name in INDICATOR_FIELDS:
            vector.append(_value(getattr(indicators, name) if indicators else None))

        vector.extend((
            _value(current.price_change_percent),
            _value(current.volatility),
            _volume_change(bars, i),
            _momentum(bars, i),
        ))

        if len(vector) != self.feature_length:
            raise ShapeMismatchError(self.feature_length, len(vector))
        return vector

    def _target_at(self, bars: list[MarketBar], i: int) -> list[float]:
        current_close = bars[i].close
        return [
            _value(bars[i + k].close) if i + k < len(bars) else current_close
            for k in range(1, self._horizon + 1)
        ]


def _volume_change(bars: list[MarketBar], i: int) -> float:
    """Volume change % versus the previous bar."""
    if i < 1:
        return 0.0
    previous = bars[i - 1].volume
    if not previous or previous <= 0:
        return 0.0
    return _value((bars[i].volume - previous) / previous * 100)


def _momentum(bars: list[MarketBar], i: int) -> float:
    """Close change % over the last MOMENTUM_PERIOD bars."""
    if i < MOMENTUM_PERIOD:
        return 0.0
    base = bars[i - MOMENTUM_PERIOD].close
    if not base or base <= 0:
        return 0.0
    return _value((bars[i].close - base) / base * 100)
