"""
Shared fixtures: synthetic bar series, an in-memory market data source
and a small engine configuration that trains in well under a second.
"""

from dataclasses import replace

import numpy as np
import pytest

DAY_MS = 86_400_000
START_MS = 1_672_531_200_000  # 2023-01-01 UTC


class FakeSource:
    """MarketDataSource returning a fixed bar series."""

    def __init__(self, bars, error: Exception | None = None):
        self.bars = list(bars)
        self.error = error
        self.calls = 0

    def get_bars(self, symbol, timespan="day", lookback_days=730):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return list(self.bars)


def _build_bars(n: int, seed: int = 42, with_indicators: bool = True):
    from crypto_prediction.features.technical import add_technical_indicators
    from crypto_prediction.market.bars import MarketBar

    np.random.seed(seed)
    closes = 100.0 + np.cumsum(np.random.randn(n))
    closes = np.maximum(closes, 5.0)
    opens = closes + np.random.randn(n) * 0.3
    highs = np.maximum(opens, closes) + np.abs(np.random.randn(n) * 0.5)
    lows = np.minimum(opens, closes) - np.abs(np.random.randn(n) * 0.5)
    volumes = np.random.randint(1_000, 50_000, n).astype(float)

    bars = [
        MarketBar(
            timestamp=START_MS + i * DAY_MS,
            open=float(opens[i]),
            high=float(highs[i]),
            low=float(lows[i]),
            close=float(closes[i]),
            volume=float(volumes[i]),
            vwap=float((highs[i] + lows[i] + closes[i]) / 3),
            transactions=int(volumes[i] // 10),
            price_change_percent=float((closes[i] - opens[i]) / opens[i] * 100),
            volatility=float((highs[i] - lows[i]) / opens[i] * 100),
        )
        for i in range(n)
    ]
    return add_technical_indicators(bars) if with_indicators else bars


@pytest.fixture
def make_bars():
    """Factory for deterministic random-walk bar series."""
    return _build_bars


@pytest.fixture
def bars():
    """200 annotated daily bars."""
    return _build_bars(200)


@pytest.fixture
def make_source():
    return FakeSource


@pytest.fixture
def tiny_config(tmp_path):
    """Engine config with small models and an isolated model directory."""
    from crypto_prediction.config import (
        EngineConfig,
        FeatureConfig,
        MLflowConfig,
        NeuralNetConfig,
        PathsConfig,
        RandomForestConfig,
    )

    return replace(
        EngineConfig(),
        symbol="X:TESTUSD",
        paths=PathsConfig(models_dir=tmp_path / "models"),
        features=FeatureConfig(lookback_period=10, prediction_horizon=3),
        neural_net=NeuralNetConfig(
            hidden_units=(16, 8),
            head_units=(8, 4),
            epochs=3,
            batch_size=16,
            patience=2,
        ),
        random_forest=RandomForestConfig(
            n_estimators=5, max_depth=4, oob_score=False, n_jobs=1
        ),
        mlflow=MLflowConfig(enabled=False),
    )
