"""
Abstract base class for all prediction models.

Defines the Strategy Pattern interface that concrete models
(NeuralNetPredictor, RandomForestPredictor) implement, plus the
lifecycle shared by all of them:

    UNINITIALIZED -> INITIALIZED -> TRAINED

``train()`` is all-or-nothing. A failed training pass restores the
previous weights and state and raises TrainingFailedError.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any

import numpy as np

from crypto_prediction.errors import (
    ModelNotInitializedError,
    ModelNotTrainedError,
    PredictionEngineError,
    ShapeMismatchError,
    TrainingFailedError,
)
from crypto_prediction.utils.metrics import ModelMetrics, compute_metrics

logger = logging.getLogger(__name__)


class ModelState(Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZED = "initialized"
    TRAINED = "trained"


@dataclass
class ModelSnapshot:
    """Captured model state used to roll back a failed training pass."""

    state: ModelState
    n_features: int | None
    payload: Any


class BasePredictionModel(ABC):
    """Abstract interface for all prediction models.

    Subclasses implement the ``_build``, ``_fit``, ``_predict``,
    ``_capture``/``_restore`` and ``save_model``/``load_model`` hooks.
    The public methods here enforce lifecycle and shape checks.

    Methods:
        initialize:  Build the underlying regressor from configuration.
        train:       Fit on normalized features (all-or-nothing).
        predict:     One scalar per input row (first horizon step).
        evaluate:    Compute metrics against known targets.
        save_model:  Persist model artifacts to a directory.
        load_model:  Load model artifacts from a directory.
    """

    kind: str = "base"

    def __init__(self) -> None:
        self._state = ModelState.UNINITIALIZED
        self._n_features: int | None = None
        self._metrics = ModelMetrics()

    @property
    def name(self) -> str:
        return self.kind

    @property
    def state(self) -> ModelState:
        return self._state

    @property
    def is_trained(self) -> bool:
        return self._state is ModelState.TRAINED

    @property
    def n_features(self) -> int | None:
        """Row length seen at training time."""
        return self._n_features

    def initialize(self) -> "BasePredictionModel":
        """Build a fresh, untrained regressor. Drops any trained weights."""
        self._build()
        self._state = ModelState.INITIALIZED
        self._n_features = None
        logger.info("[%s] Initialized: %s", self.kind, self.get_params())
        return self

    def train(
        self,
        X: np.ndarray,
        y: np.ndarray,
        X_val: np.ndarray | None = None,
        y_val: np.ndarray | None = None,
    ) -> "BasePredictionModel":
        """Train on normalized features.

        Args:
            X: Features, shape (n, n_features).
            y: Targets, shape (n, horizon).
            X_val: Optional validation features (early stopping).
            y_val: Optional validation targets.

        Raises:
            ModelNotInitializedError: if initialize() was never called.
            TrainingFailedError: if the underlying library fails. The
                model keeps its previous weights and state.
        """
        if self._state is ModelState.UNINITIALIZED:
            raise ModelNotInitializedError(self.kind)

        X = np.asarray(X, dtype=np.float64)
        y = np.asarray(y, dtype=np.float64)
        if y.ndim == 1:
            y = y.reshape(-1, 1)
        if X.ndim != 2 or X.shape[0] == 0 or X.shape[0] != y.shape[0]:
            raise TrainingFailedError(
                self.kind, f"invalid training shapes X={X.shape} y={y.shape}"
            )

        snapshot = self.snapshot()
        try:
            self._fit(X, y, X_val, y_val)
        except PredictionEngineError as exc:
            self.restore(snapshot)
            if isinstance(exc, TrainingFailedError):
                raise
            raise TrainingFailedError(self.kind, exc.message) from exc
        except Exception as exc:
            self.restore(snapshot)
            raise TrainingFailedError(self.kind, str(exc)) from exc

        self._n_features = int(X.shape[1])
        self._state = ModelState.TRAINED
        logger.info(
            "[%s] Training complete on %d samples x %d features.",
            self.kind,
            X.shape[0],
            X.shape[1],
        )
        return self

    def predict(self, X: np.ndarray) -> np.ndarray:
        """Predict the next-step value for each row.

        Raises:
            ModelNotTrainedError: if the model is not trained.
            ShapeMismatchError: if rows differ from the training width.
        """
        X = self._check_input(X)
        return np.asarray(self._predict(X), dtype=np.float64).reshape(-1)

    def evaluate(self, X: np.ndarray, y: np.ndarray) -> ModelMetrics:
        """Evaluate first-step predictions against ``y[:, 0]``."""
        y = np.asarray(y, dtype=np.float64)
        y_true = y[:, 0] if y.ndim == 2 else y
        self._metrics = compute_metrics(y_true, self.predict(X))
        logger.info("[%s] Evaluation: %s", self.kind, self._metrics)
        return self._metrics

    def get_metrics(self) -> ModelMetrics:
        return self._metrics

    def snapshot(self) -> ModelSnapshot:
        return ModelSnapshot(
            state=self._state, n_features=self._n_features, payload=self._capture()
        )

    def restore(self, snapshot: ModelSnapshot) -> None:
        self._restore(snapshot.payload)
        self._state = snapshot.state
        self._n_features = snapshot.n_features
        logger.warning("[%s] Restored previous model state (%s).", self.kind, self._state.value)

    def _check_input(self, X: np.ndarray) -> np.ndarray:
        if not self.is_trained:
            raise ModelNotTrainedError(self.kind)
        X = np.asarray(X, dtype=np.float64)
        if X.ndim == 1:
            X = X.reshape(1, -1)
        if X.shape[1] != self._n_features:
            raise ShapeMismatchError(self._n_features, X.shape[1])
        return X

    def _mark_loaded(self, n_features: int) -> None:
        self._n_features = int(n_features)
        self._state = ModelState.TRAINED

    @abstractmethod
    def get_params(self) -> dict:
        """Hyperparameters, persisted alongside the weights."""
        ...

    @abstractmethod
    def _build(self) -> None:
        ...

    @abstractmethod
    def _fit(
        self,
        X: np.ndarray,
        y: np.ndarray,
        X_val: np.ndarray | None,
        y_val: np.ndarray | None,
    ) -> None:
        ...

    @abstractmethod
    def _predict(self, X: np.ndarray) -> np.ndarray:
        ...

    @abstractmethod
    def _capture(self) -> Any:
        ...

    @abstractmethod
    def _restore(self, payload: Any) -> None:
        ...

    @abstractmethod
    def save_model(self, path: Path) -> None:
        """Persist model artifacts to disk."""
        ...

    @abstractmethod
    def load_model(self, path: Path) -> None:
        """Load model artifacts from disk."""
        ...
