"""
Engine state and result containers.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class EngineStatus(Enum):
    UNINITIALIZED = "uninitialized"
    MODELS_INITIALIZED = "models_initialized"
    TRAINED = "trained"


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _parse(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


@dataclass
class EngineState:
    """Mutable state owned by one PredictionEngine and persisted with it."""

    is_trained: bool = False
    last_training: datetime | None = None
    last_retrain: datetime | None = None
    feature_column_count: int | None = None
    performance_metrics: dict[str, dict] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "is_trained": self.is_trained,
            "last_training": _iso(self.last_training),
            "last_retrain": _iso(self.last_retrain),
            "feature_column_count": self.feature_column_count,
            "performance_metrics": self.performance_metrics,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "EngineState":
        return cls(
            is_trained=bool(data.get("is_trained", False)),
            last_training=_parse(data.get("last_training")),
            last_retrain=_parse(data.get("last_retrain")),
            feature_column_count=data.get("feature_column_count"),
            performance_metrics=dict(data.get("performance_metrics") or {}),
        )


@dataclass
class EnginePrediction:
    """Output of PredictionEngine.predict()."""

    predictions: dict[str, float]
    ensemble: float
    confidence: float
    weights: dict[str, float] = field(default_factory=dict)
    horizon: dict[str, list[float]] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        """True when no model produced a prediction."""
        return not self.predictions

    def to_dict(self) -> dict:
        return {
            "predictions": dict(self.predictions),
            "ensemble": self.ensemble,
            "confidence": self.confidence,
            "weights": dict(self.weights),
            "horizon": {k: list(v) for k, v in self.horizon.items()},
        }


@dataclass
class CycleResult:
    """Output of PredictionEngine.run_prediction_cycle()."""

    symbol: str
    timestamp: datetime
    current_price: float
    prediction: EnginePrediction
    market_data: dict[str, Any]
    model_info: dict[str, Any]

    def to_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "timestamp": self.timestamp.isoformat(),
            "current_price": self.current_price,
            "prediction": self.prediction.to_dict(),
            "market_data": dict(self.market_data),
            "model_info": dict(self.model_info),
        }
