"""
Feature engineering sub-package.

- `TechnicalIndicators`: SMA, EMA, RSI, MACD, Bollinger annotations per bar
- `FeatureExtractor`: fixed-length lookback vectors and horizon targets
- `Normalizer`: per-column min-max scaling with a persisted `Scaler`
"""

from crypto_prediction.features.extractor import (
    FeatureExtractor,
    expected_feature_length,
    feature_names,
)
from crypto_prediction.features.normalizer import Normalizer, Scaler
from crypto_prediction.features.technical import (
    TechnicalIndicators,
    add_technical_indicators,
)

__all__ = [
    "FeatureExtractor",
    "expected_feature_length",
    "feature_names",
    "Normalizer",
    "Scaler",
    "TechnicalIndicators",
    "add_technical_indicators",
]
