"""
Engine sub-package.

- `PredictionEngine`: per-symbol orchestrator (train, predict, self-retrain)
- `EngineRegistry`: explicit owner of one locked engine per symbol
- `ModelStore`: atomic on-disk persistence of trained engines
"""

from crypto_prediction.engine.state import (
    CycleResult,
    EnginePrediction,
    EngineState,
    EngineStatus,
)
from crypto_prediction.engine.persistence import ModelStore, normalize_symbol
from crypto_prediction.engine.engine import PredictionEngine
from crypto_prediction.engine.registry import EngineHandle, EngineRegistry

__all__ = [
    "CycleResult",
    "EnginePrediction",
    "EngineState",
    "EngineStatus",
    "ModelStore",
    "normalize_symbol",
    "PredictionEngine",
    "EngineHandle",
    "EngineRegistry",
]
