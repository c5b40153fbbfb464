"""
Ensemble combination of per-model predictions.

Each model has a base weight, nudged by its recent directional accuracy:

    weight = base + (accuracy - 0.5) * performance_adjustment

The ensemble value is the weighted mean over models that produced a
prediction and have a positive weight. Weights do not need to sum to 1.

Confidence averages two agreement scores, clamped to [0, 1]:
- dispersion: max(0, 1 - std / mean)
- agreement:  max(0, 1 - (max - min) / mean)

With fewer than two usable predictions confidence is a neutral 0.5.
"""

import logging
import math
from dataclasses import dataclass, field

import numpy as np

from crypto_prediction.config import EnsembleConfig

logger = logging.getLogger(__name__)

NEUTRAL_CONFIDENCE = 0.5


@dataclass
class EnsemblePrediction:
    """Container for an ensemble prediction result."""

    value: float
    confidence: float
    model_predictions: dict[str, float] = field(default_factory=dict)
    model_weights: dict[str, float] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        """True when no model contributed, so ``value`` carries no signal."""
        return not self.model_weights

    def to_dict(self) -> dict:
        return {
            "ensemble": self.value,
            "confidence": self.confidence,
            "predictions": dict(self.model_predictions),
            "weights": dict(self.model_weights),
        }


class EnsembleCombiner:
    """Merges per-model point predictions into one value and a confidence."""

    def __init__(
        self,
        base_weights: dict[str, float] | None = None,
        performance_adjustment: float = 0.1,
        default_weight: float = 0.5,
    ) -> None:
        self._base_weights = dict(base_weights or EnsembleConfig().base_weights)
        self._adjustment = performance_adjustment
        self._default_weight = default_weight

    @classmethod
    def from_config(cls, cfg: EnsembleConfig) -> "EnsembleCombiner":
        return cls(
            base_weights=cfg.base_weights,
            performance_adjustment=cfg.performance_adjustment,
            default_weight=cfg.default_weight,
        )

    def weights_for(
        self,
        names,
        performance_metrics: dict[str, dict] | None = None,
    ) -> dict[str, float]:
        """Dynamic weight per model name."""
        metrics = performance_metrics or {}
        weights = {}
        for name in names:
            weight = self._base_weights.get(name, self._default_weight)
            accuracy = (metrics.get(name) or {}).get("accuracy")
            if accuracy is not None:
                weight += (accuracy - 0.5) * self._adjustment
            weights[name] = weight
        return weights

    def combine(
        self,
        predictions: dict[str, float],
        performance_metrics: dict[str, dict] | None = None,
    ) -> EnsemblePrediction:
        """Combine per-model predictions.

        Args:
            predictions: Scalar prediction per model name. Models that
                failed are simply absent.
            performance_metrics: Optional ``{name: {"accuracy": float}}``.

        Returns:
            EnsemblePrediction. Its value is 0 when nothing contributed;
            check ``is_empty`` rather than the value.
        """
        finite = {
            name: float(value)
            for name, value in predictions.items()
            if value is not None and math.isfinite(value)
        }
        weights = self.weights_for(finite, performance_metrics)

        weighted_sum = 0.0
        total_weight = 0.0
        used_weights = {}
        for name, value in finite.items():
            weight = weights[name]
            if weight <= 0:
                continue
            weighted_sum += value * weight
            total_weight += weight
            used_weights[name] = weight

        value = weighted_sum / total_weight if total_weight > 0 else 0.0
        if total_weight == 0:
            logger.warning("[Ensemble] No model produced a usable prediction.")

        return EnsemblePrediction(
            value=value,
            confidence=self.confidence(finite.values()),
            model_predictions=finite,
            model_weights=used_weights,
        )

    @staticmethod
    def confidence(values) -> float:
        """Agreement-based confidence in [0, 1].

        Zero predictions are treated as missing.
        """
        usable = np.array([v for v in values if v], dtype=np.float64)
        if len(usable) < 2:
            return NEUTRAL_CONFIDENCE

        mean = float(np.mean(usable))
        if mean == 0:
            return 0.0
        std = float(np.std(usable))
        spread = float(np.max(usable) - np.min(usable))

        dispersion_score = max(0.0, 1.0 - std / mean)
        agreement_score = max(0.0, 1.0 - spread / mean)
        return max(0.0, min(1.0, (dispersion_score + agreement_score) / 2))
