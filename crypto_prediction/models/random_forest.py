"""
Random forest price model.

Bagged regression trees via scikit-learn with:
- Feature importance extraction
- Out-of-bag score as a free validation estimate
- Single-output training on the first horizon step

Best for: tabular feature interactions, robust to unscaled outliers.
"""

import logging
import pickle
from pathlib import Path

import numpy as np
from sklearn.ensemble import RandomForestRegressor

from crypto_prediction.config import RANDOM_FOREST, RandomForestConfig
from crypto_prediction.models.base import BasePredictionModel

logger = logging.getLogger(__name__)


class RandomForestPredictor(BasePredictionModel):
    """Random forest trained on the next-step close.

    Tree ensembles here support one output per fit, so the model learns
    ``y[:, 0]`` only.
    """

    kind = RANDOM_FOREST

    def __init__(
        self,
        config: RandomForestConfig | None = None,
        feature_names: list[str] | None = None,
    ) -> None:
        super().__init__()
        cfg = config or RandomForestConfig()
        self._n_estimators = cfg.n_estimators
        self._max_depth = cfg.max_depth
        self._min_samples_split = cfg.min_samples_split
        self._min_samples_leaf = cfg.min_samples_leaf
        self._max_features = cfg.max_features
        self._bootstrap = cfg.bootstrap
        self._oob_score = cfg.oob_score and cfg.bootstrap
        self._random_state = cfg.random_state
        self._n_jobs = cfg.n_jobs
        self._feature_names = list(feature_names or [])
        self._model: RandomForestRegressor | None = None

    def get_params(self) -> dict:
        return {
            "n_estimators": self._n_estimators,
            "max_depth": self._max_depth,
            "min_samples_split": self._min_samples_split,
            "min_samples_leaf": self._min_samples_leaf,
            "max_features": self._max_features,
            "bootstrap": self._bootstrap,
            "oob_score": self._oob_score,
        }

    @property
    def oob_score(self) -> float | None:
        if self._model is None or not self._oob_score:
            return None
        return getattr(self._model, "oob_score_", None)

    @property
    def feature_importances(self) -> dict[str, float]:
        """Importance per feature, keyed by name when names are known."""
        if self._model is None or not hasattr(self._model, "feature_importances_"):
            return {}
        importances = self._model.feature_importances_
        names = (
            self._feature_names
            if len(self._feature_names) == len(importances)
            else [f"f{i}" for i in range(len(importances))]
        )
        return {name: float(v) for name, v in zip(names, importances)}

    def top_features(self, n: int = 20) -> list[tuple[str, float]]:
        ranked = sorted(
            self.feature_importances.items(), key=lambda kv: kv[1], reverse=True
        )
        return ranked[:n]

    def _new_estimator(self) -> RandomForestRegressor:
        return RandomForestRegressor(
            n_estimators=self._n_estimators,
            max_depth=self._max_depth,
            min_samples_split=self._min_samples_split,
            min_samples_leaf=self._min_samples_leaf,
            max_features=self._max_features,
            bootstrap=self._bootstrap,
            oob_score=self._oob_score,
            random_state=self._random_state,
            n_jobs=self._n_jobs,
        )

    def _build(self) -> None:
        self._model = self._new_estimator()

    def _fit(
        self,
        X: np.ndarray,
        y: np.ndarray,
        X_val: np.ndarray | None,
        y_val: np.ndarray | None,
    ) -> None:
        # Fit a fresh estimator and swap it in only once fitting succeeds
        estimator = self._new_estimator()
        estimator.fit(X, y[:, 0])
        self._model = estimator

        if self.oob_score is not None:
            logger.info("[RandomForest] OOB R²=%.4f", self.oob_score)
        if X_val is not None and y_val is not None and len(X_val) > 0:
            y_val = np.asarray(y_val, dtype=np.float64)
            target = y_val[:, 0] if y_val.ndim == 2 else y_val
            logger.info(
                "[RandomForest] Validation R²=%.4f",
                estimator.score(np.asarray(X_val), target),
            )

    def _predict(self, X: np.ndarray) -> np.ndarray:
        return self._model.predict(X)

    def _capture(self):
        return self._model

    def _restore(self, payload) -> None:
        self._model = payload

    def save_model(self, path: Path) -> None:
        """Save the fitted forest and its params."""
        path.mkdir(parents=True, exist_ok=True)
        with open(path / "random_forest.pkl", "wb") as f:
            pickle.dump(self._model, f)
        params = self.get_params()
        params["n_features"] = self._n_features
        params["feature_names"] = self._feature_names
        with open(path / "random_forest_params.pkl", "wb") as f:
            pickle.dump(params, f)
        logger.info("[RandomForest] Model saved to %s", path)

    def load_model(self, path: Path) -> None:
        """Load the fitted forest and its params."""
        with open(path / "random_forest_params.pkl", "rb") as f:
            params = pickle.load(f)
        with open(path / "random_forest.pkl", "rb") as f:
            self._model = pickle.load(f)

        self._n_estimators = params["n_estimators"]
        self._max_depth = params["max_depth"]
        self._min_samples_split = params["min_samples_split"]
        self._min_samples_leaf = params["min_samples_leaf"]
        self._max_features = params["max_features"]
        self._bootstrap = params["bootstrap"]
        self._oob_score = params["oob_score"]
        self._feature_names = params.get("feature_names", [])
        self._mark_loaded(params["n_features"])
        logger.info("[RandomForest] Model loaded from %s", path)
