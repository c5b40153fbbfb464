"""
Model bank: the set of regressors an engine trains and queries.

Models are held as a list of variants built from MODEL_FACTORIES and
iterated polymorphically, so adding a model kind means registering one
factory.

Training is an aggregate failure point: if any model fails, every model
is rolled back to its pre-training snapshot and TrainingFailedError is
raised. Prediction isolates failures: a model that fails is logged and
left out of the result.
"""

import logging
from typing import Callable

import numpy as np

from crypto_prediction.config import NEURAL_NET, RANDOM_FOREST, EngineConfig
from crypto_prediction.errors import (
    ModelNotInitializedError,
    PredictionEngineError,
    TrainingFailedError,
    UnsupportedModelError,
)
from crypto_prediction.features.extractor import expected_feature_length, feature_names
from crypto_prediction.models.base import BasePredictionModel, ModelSnapshot
from crypto_prediction.models.neural_net import NeuralNetPredictor
from crypto_prediction.models.random_forest import RandomForestPredictor
from crypto_prediction.utils.metrics import ModelMetrics

logger = logging.getLogger(__name__)


def _build_neural_net(cfg: EngineConfig) -> BasePredictionModel:
    return NeuralNetPredictor(
        input_size=expected_feature_length(cfg.features.lookback_period),
        prediction_horizon=cfg.features.prediction_horizon,
        config=cfg.neural_net,
    )


def _build_random_forest(cfg: EngineConfig) -> BasePredictionModel:
    return RandomForestPredictor(
        config=cfg.random_forest,
        feature_names=feature_names(cfg.features.lookback_period),
    )


MODEL_FACTORIES: dict[str, Callable[[EngineConfig], BasePredictionModel]] = {
    NEURAL_NET: _build_neural_net,
    RANDOM_FOREST: _build_random_forest,
}


class ModelBank:
    """Ordered collection of prediction models for one engine."""

    def __init__(self, cfg: EngineConfig) -> None:
        self._cfg = cfg
        self._models: list[BasePredictionModel] = []

    @property
    def models(self) -> list[BasePredictionModel]:
        return list(self._models)

    @property
    def names(self) -> list[str]:
        return [m.kind for m in self._models]

    @property
    def is_initialized(self) -> bool:
        return bool(self._models)

    @property
    def is_trained(self) -> bool:
        return bool(self._models) and all(m.is_trained for m in self._models)

    def get(self, name: str) -> BasePredictionModel | None:
        for model in self._models:
            if model.kind == name:
                return model
        return None

    def initialize(self) -> "ModelBank":
        """Build every configured model.

        Raises:
            UnsupportedModelError: if a configured name has no factory.
        """
        models = []
        for kind in self._cfg.model_kinds:
            factory = MODEL_FACTORIES.get(kind)
            if factory is None:
                raise UnsupportedModelError(kind, sorted(MODEL_FACTORIES))
            models.append(factory(self._cfg).initialize())
        self._models = models
        logger.info("[ModelBank] Initialized models: %s", self.names)
        return self

    def snapshot(self) -> dict[int, ModelSnapshot]:
        """Capture every model so a failed pass can be rolled back."""
        return {id(model): model.snapshot() for model in self._models}

    def restore(self, snapshots: dict[int, ModelSnapshot]) -> None:
        for model in self._models:
            if id(model) in snapshots:
                model.restore(snapshots[id(model)])

    def train(
        self,
        X: np.ndarray,
        y: np.ndarray,
        X_val: np.ndarray | None = None,
        y_val: np.ndarray | None = None,
    ) -> None:
        """Train every model, or none of them.

        Raises:
            ModelNotInitializedError: if initialize() was never called.
            TrainingFailedError: if any model fails. All models keep
                their previous weights.
        """
        if not self._models:
            raise ModelNotInitializedError("model_bank")

        snapshots = self.snapshot()
        trained: list[BasePredictionModel] = []
        for model in self._models:
            logger.info("[ModelBank] Training %s...", model.kind)
            try:
                model.train(X, y, X_val, y_val)
            except PredictionEngineError as exc:
                # The failing model restores itself; roll back the others
                for done in trained:
                    done.restore(snapshots[id(done)])
                logger.error(
                    "[ModelBank] Training aborted: %s failed (%s).",
                    model.kind,
                    exc.message,
                )
                if isinstance(exc, TrainingFailedError):
                    raise
                raise TrainingFailedError(model.kind, exc.message) from exc
            trained.append(model)

    def predict(self, X: np.ndarray) -> dict[str, np.ndarray]:
        """Predict with every trained model.

        Models that fail are logged and omitted from the result.
        """
        predictions = {}
        for model in self._models:
            try:
                predictions[model.kind] = model.predict(X)
            except Exception as exc:
                logger.warning(
                    "[ModelBank] %s prediction failed: %s", model.kind, exc
                )
        return predictions

    def predict_horizons(self, X: np.ndarray) -> dict[str, list[float]]:
        """Full horizon for models that forecast more than one step."""
        horizons = {}
        for model in self._models:
            if not hasattr(model, "predict_horizon"):
                continue
            try:
                horizons[model.kind] = model.predict_horizon(X)[0].tolist()
            except Exception as exc:
                logger.warning(
                    "[ModelBank] %s horizon prediction failed: %s", model.kind, exc
                )
        return horizons

    def evaluate(self, X: np.ndarray, y: np.ndarray) -> dict[str, ModelMetrics]:
        """Evaluate every trained model on held-out data."""
        return {
            model.kind: model.evaluate(X, y)
            for model in self._models
            if model.is_trained
        }

    def get_params(self) -> dict[str, dict]:
        return {model.kind: model.get_params() for model in self._models}
