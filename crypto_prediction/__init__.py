"""
Crypto Prediction Engine
========================

Self-learning price prediction for crypto pairs.

Architecture
------------
- **Market data**: Polygon aggregates (httpx) with a Redis-backed bar cache
- **Features**: fixed-length vectors of price history, technical indicators
  and derived signals, min-max normalized with a persisted scaler
- **Models**: feed-forward network (PyTorch) · random forest (scikit-learn)
  → weighted ensemble with agreement-based confidence
- **Self-learning**: directional accuracy tracking and a retrain trigger
- **Scheduling**: APScheduler prediction cycles per symbol

Quick start (CLI)
-----------------
    crypto-prediction train --symbol X:BTCUSD
    crypto-prediction predict --symbol X:BTCUSD
    crypto-prediction scheduler --interval 60

Public API
----------
    from crypto_prediction import PredictionEngine, EngineRegistry
    from crypto_prediction.realtime import RetrainScheduler
    from crypto_prediction.config import config
"""

from crypto_prediction.config import EngineConfig, config
from crypto_prediction.engine import (
    CycleResult,
    EnginePrediction,
    EngineRegistry,
    PredictionEngine,
)
from crypto_prediction.errors import PredictionEngineError

__all__ = [
    "EngineConfig",
    "config",
    "PredictionEngine",
    "EngineRegistry",
    "EnginePrediction",
    "CycleResult",
    "PredictionEngineError",
]
