"""
Model evaluation metrics and self-learning performance tracking.

Provides:
- Standard regression metrics (MAE, RMSE, MAPE, R²)
- Directional accuracy
- Prediction history with outcomes filled in as new bars arrive
- Rolling directional accuracy per model
- The retrain trigger
"""

import bisect
import logging
from collections import deque
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING

import numpy as np

from crypto_prediction.config import SelfLearningConfig

if TYPE_CHECKING:
    from crypto_prediction.engine.state import EngineState
    from crypto_prediction.market.bars import MarketBar

logger = logging.getLogger(__name__)

ENSEMBLE = "ensemble"
NEUTRAL_ACCURACY = 0.5


@dataclass
class ModelMetrics:
    """Container for model evaluation metrics."""

    mae: float = 0.0
    rmse: float = 0.0
    mape: float = 0.0
    directional_accuracy: float = 0.0
    r_squared: float = 0.0

    def to_dict(self) -> dict:
        return {
            "mae": self.mae,
            "rmse": self.rmse,
            "mape": self.mape,
            "directional_accuracy": self.directional_accuracy,
            "r_squared": self.r_squared,
        }

    def __str__(self) -> str:
        return (
            f"MAE={self.mae:.4f} | RMSE={self.rmse:.4f} | "
            f"MAPE={self.mape:.2%} | DirAcc={self.directional_accuracy:.2%} | "
            f"R²={self.r_squared:.4f}"
        )


def compute_metrics(y_true: np.ndarray, y_pred: np.ndarray) -> ModelMetrics:
    """Compute standard regression + directional accuracy metrics."""
    y_true = np.asarray(y_true, dtype=np.float64)
    y_pred = np.asarray(y_pred, dtype=np.float64)
    valid = ~(np.isnan(y_true) | np.isnan(y_pred))
    y_true = y_true[valid]
    y_pred = y_pred[valid]

    if len(y_true) == 0:
        return ModelMetrics()

    residuals = y_true - y_pred
    mae = np.mean(np.abs(residuals))
    rmse = np.sqrt(np.mean(residuals ** 2))

    # MAPE (avoid division by zero)
    mask = y_true != 0
    mape = np.mean(np.abs(residuals[mask] / y_true[mask])) if mask.any() else 0.0

    if len(y_true) > 1:
        actual_dir = np.sign(np.diff(y_true))
        pred_dir = np.sign(np.diff(y_pred))
        dir_acc = np.mean(actual_dir == pred_dir)
    else:
        dir_acc = 0.0

    ss_res = np.sum(residuals ** 2)
    ss_tot = np.sum((y_true - np.mean(y_true)) ** 2)
    r2 = 1 - (ss_res / ss_tot) if ss_tot > 0 else 0.0

    return ModelMetrics(
        mae=float(mae),
        rmse=float(rmse),
        mape=float(mape),
        directional_accuracy=float(dir_acc),
        r_squared=float(r2),
    )


@dataclass
class PredictionRecord:
    """One served prediction and, once known, its outcome.

    ``bar_timestamp`` is the epoch-ms timestamp of the bar the prediction
    was made at. The outcome is the close of the first later bar.
    """

    timestamp: datetime
    current_price: float
    predicted_price: float
    confidence: float
    actual_price: float | None = None
    bar_timestamp: int | None = None
    model_predictions: dict[str, float] = field(default_factory=dict)

    @property
    def has_outcome(self) -> bool:
        return self.actual_price is not None

    def prediction_for(self, model_type: str) -> float | None:
        if model_type == ENSEMBLE:
            return self.predicted_price
        return self.model_predictions.get(model_type)

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp.isoformat(),
            "current_price": self.current_price,
            "predicted_price": self.predicted_price,
            "actual_price": self.actual_price,
            "confidence": self.confidence,
            "bar_timestamp": self.bar_timestamp,
            "model_predictions": dict(self.model_predictions),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PredictionRecord":
        return cls(
            timestamp=datetime.fromisoformat(data["timestamp"]),
            current_price=float(data["current_price"]),
            predicted_price=float(data["predicted_price"]),
            confidence=float(data["confidence"]),
            actual_price=data.get("actual_price"),
            bar_timestamp=data.get("bar_timestamp"),
            model_predictions=dict(data.get("model_predictions") or {}),
        )


class PerformanceTracker:
    """Records prediction history and decides when to retrain.

    History is a ring buffer: once ``history_size`` records are held, the
    oldest is evicted first.
    """

    def __init__(
        self,
        history_size: int = 1000,
        min_known_outcomes: int = 10,
        accuracy_window: int = 100,
    ) -> None:
        self._history: deque[PredictionRecord] = deque(maxlen=history_size)
        self._min_known = min_known_outcomes
        self._window = accuracy_window

    @classmethod
    def from_config(cls, cfg: SelfLearningConfig) -> "PerformanceTracker":
        return cls(
            history_size=cfg.history_size,
            min_known_outcomes=cfg.min_known_outcomes,
            accuracy_window=cfg.accuracy_window,
        )

    def __len__(self) -> int:
        return len(self._history)

    @property
    def history(self) -> list[PredictionRecord]:
        return list(self._history)

    def record(self, record: PredictionRecord) -> None:
        self._history.append(record)

    def reset(self, records: Iterable[PredictionRecord] = ()) -> None:
        """Replace the history with ``records`` (oldest first)."""
        self._history.clear()
        self._history.extend(records)

    def pending(self) -> list[PredictionRecord]:
        return [r for r in self._history if not r.has_outcome]

    def record_actual(self, bar_timestamp: int, price: float) -> int:
        """Fill the outcome of pending records made before ``bar_timestamp``.

        Returns:
            Number of records updated.
        """
        filled = 0
        for record in self._history:
            if record.has_outcome or record.bar_timestamp is None:
                continue
            if record.bar_timestamp < bar_timestamp:
                record.actual_price = float(price)
                filled += 1
        return filled

    def resolve_outcomes(self, bars: list["MarketBar"]) -> int:
        """Fill outcomes from a bar series sorted ascending.

        Each pending record takes the close of the first bar after the bar
        it was made at.

        Returns:
            Number of records updated.
        """
        if not bars:
            return 0
        timestamps = [b.timestamp for b in bars]
        filled = 0
        for record in self._history:
            if record.has_outcome or record.bar_timestamp is None:
                continue
            idx = bisect.bisect_right(timestamps, record.bar_timestamp)
            if idx < len(bars):
                record.actual_price = float(bars[idx].close)
                filled += 1
        if filled:
            logger.info("[Tracker] Resolved %d prediction outcomes.", filled)
        return filled

    def accuracy(self, model_type: str = ENSEMBLE, window_size: int | None = None) -> float:
        """Directional accuracy over recent records with known outcomes.

        A record is correct when sign(predicted - current) equals
        sign(actual - current). Returns 0.5 when fewer than
        ``min_known_outcomes`` outcomes are known.
        """
        window = window_size or self._window
        known = [
            (r.prediction_for(model_type), r.current_price, r.actual_price)
            for r in self._history
            if r.has_outcome and r.prediction_for(model_type) is not None
        ][-window:]
        if len(known) < self._min_known:
            return NEUTRAL_ACCURACY

        predicted, current, actual = (np.array(col, dtype=np.float64) for col in zip(*known))
        hits = np.sign(predicted - current) == np.sign(actual - current)
        return float(np.mean(hits))

    def known_outcomes(self, model_type: str = ENSEMBLE) -> int:
        return sum(
            1
            for r in self._history
            if r.has_outcome and r.prediction_for(model_type) is not None
        )

    def update_performance_metrics(self, model_names: list[str]) -> dict[str, dict]:
        """Accuracy per model, for models with at least one known outcome."""
        metrics = {}
        for name in model_names:
            samples = self.known_outcomes(name)
            if samples == 0:
                continue
            metrics[name] = {"accuracy": self.accuracy(name), "samples": samples}
        logger.info("[Tracker] Performance metrics: %s", metrics)
        return metrics

    @staticmethod
    def overall_performance(metrics: dict[str, dict] | None) -> float:
        """Mean accuracy across tracked models, 0.5 when none are tracked."""
        if not metrics:
            return NEUTRAL_ACCURACY
        accuracies = [m.get("accuracy") or 0.0 for m in metrics.values()]
        return float(np.mean(accuracies))

    def should_retrain(
        self,
        cfg: SelfLearningConfig,
        state: "EngineState",
        now: datetime | None = None,
    ) -> bool:
        """Decide whether a retrain is due.

        True when the engine was never retrained, when the retrain interval
        has elapsed, or when enough history exists and overall accuracy is
        below the performance threshold.
        """
        if state.last_retrain is None:
            return True

        now = now or datetime.now(timezone.utc)
        elapsed = (now - state.last_retrain).total_seconds()
        if elapsed > cfg.retrain_interval_seconds:
            logger.info("[Tracker] Retrain interval elapsed (%.0fs).", elapsed)
            return True

        performance = self.overall_performance(state.performance_metrics)
        if (
            len(self._history) >= cfg.min_data_points_for_retrain
            and performance < cfg.performance_threshold
        ):
            logger.warning(
                "[Tracker] Performance %.2f below threshold %.2f.",
                performance,
                cfg.performance_threshold,
            )
            return True

        return False
