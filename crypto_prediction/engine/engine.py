"""
Prediction engine: the per-symbol orchestrator.

Wires market data, feature extraction, normalization, the model bank,
the ensemble combiner and the performance tracker into:

    initialize_models() -> train_models() -> predict() / run_prediction_cycle()

States: UNINITIALIZED -> MODELS_INITIALIZED -> TRAINED. Staleness (a
retrain is due) is computed on demand and never stored.

An engine is not reentrant. Callers that share one engine across threads
must serialize calls (see EngineRegistry).
"""

import logging
import time
from datetime import datetime, timezone

import numpy as np

from crypto_prediction.config import EngineConfig
from crypto_prediction.engine.persistence import ModelStore
from crypto_prediction.engine.state import (
    CycleResult,
    EnginePrediction,
    EngineState,
    EngineStatus,
)
from crypto_prediction.errors import (
    ModelNotInitializedError,
    ModelNotTrainedError,
    PersistenceError,
    ShapeMismatchError,
    TrainingFailedError,
)
from crypto_prediction.features.extractor import FeatureExtractor, expected_feature_length
from crypto_prediction.features.normalizer import Normalizer, Scaler
from crypto_prediction.market.bars import MarketBar
from crypto_prediction.market.source import MarketDataSource, PolygonMarketDataSource
from crypto_prediction.models.bank import ModelBank
from crypto_prediction.models.ensemble import EnsembleCombiner
from crypto_prediction.models.random_forest import RandomForestPredictor
from crypto_prediction.tracking import TrainingTracker
from crypto_prediction.utils.metrics import PerformanceTracker, PredictionRecord

logger = logging.getLogger(__name__)

TOP_FEATURES = 20


class PredictionEngine:
    """Trains, serves and self-retrains the models for one symbol.

    Usage:
        engine = PredictionEngine(config.for_symbol("X:ETHUSD"))
        engine.initialize_models()
        engine.train_models()
        engine.save()
        result = engine.run_prediction_cycle()
    """

    def __init__(
        self,
        config: EngineConfig | None = None,
        source: MarketDataSource | None = None,
        store: ModelStore | None = None,
        tracker: PerformanceTracker | None = None,
        training_tracker: TrainingTracker | None = None,
        autosave: bool = False,
    ) -> None:
        self._cfg = config or EngineConfig()
        self._source = source
        self._store = store or ModelStore(self._cfg.paths.models_dir)
        self._tracker = tracker or PerformanceTracker.from_config(self._cfg.self_learning)
        self._training_tracker = training_tracker
        self._autosave = autosave

        self._extractor = FeatureExtractor(
            self._cfg.features.lookback_period,
            self._cfg.features.prediction_horizon,
        )
        self._combiner = EnsembleCombiner.from_config(self._cfg.ensemble)
        self._bank: ModelBank | None = None
        self._scaler: Scaler | None = None
        self._state = EngineState()
        self._feature_importance: dict[str, float] = {}
        self._evaluation_metrics: dict[str, dict] = {}

    # ------------------------------------------------------------------
    # Read-only state
    # ------------------------------------------------------------------

    @property
    def symbol(self) -> str:
        return self._cfg.symbol

    @property
    def config(self) -> EngineConfig:
        return self._cfg

    @property
    def status(self) -> EngineStatus:
        if self._bank is None:
            return EngineStatus.UNINITIALIZED
        if self._state.is_trained:
            return EngineStatus.TRAINED
        return EngineStatus.MODELS_INITIALIZED

    @property
    def is_trained(self) -> bool:
        return self._state.is_trained

    @property
    def last_training(self) -> datetime | None:
        return self._state.last_training

    @property
    def last_retrain(self) -> datetime | None:
        return self._state.last_retrain

    @property
    def performance_metrics(self) -> dict[str, dict]:
        return dict(self._state.performance_metrics)

    @property
    def state(self) -> EngineState:
        return EngineState.from_dict(self._state.to_dict())

    @property
    def history(self) -> list[PredictionRecord]:
        return self._tracker.history

    @property
    def scaler(self) -> Scaler | None:
        return self._scaler

    @property
    def feature_importance(self) -> dict[str, float]:
        return dict(self._feature_importance)

    @property
    def evaluation_metrics(self) -> dict[str, dict]:
        """Held-out metrics per model from the last successful training."""
        return dict(self._evaluation_metrics)

    @property
    def model_names(self) -> list[str]:
        return self._bank.names if self._bank else []

    @property
    def expected_feature_length(self) -> int:
        return expected_feature_length(self._cfg.features.lookback_period)

    @property
    def is_stale(self) -> bool:
        """True when a retrain is due."""
        return self._tracker.should_retrain(self._cfg.self_learning, self._state)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def initialize_models(self) -> None:
        """Build every configured model. Drops any trained state.

        Raises:
            UnsupportedModelError: if a configured model type is unknown.
        """
        self._bank = ModelBank(self._cfg).initialize()
        self._scaler = None
        self._state.is_trained = False
        self._state.feature_column_count = None
        logger.info("[Engine] %s models initialized: %s", self.symbol, self._bank.names)

    def train_models(self, bars: list[MarketBar] | None = None) -> dict[str, dict]:
        """Fetch data, fit a fresh scaler and train every model.

        The engine state only changes when every model trained. On failure
        the previous scaler, models and flags stay in place.

        Args:
            bars: Optional bar series; fetched from the source when omitted.

        Returns:
            Held-out metrics per model.

        Raises:
            ModelNotInitializedError: if initialize_models() was not called.
            InsufficientDataError: if there are too few bars.
            TrainingFailedError: if any model fails to train.
        """
        if self._bank is None:
            raise ModelNotInitializedError("engine")

        bars = bars if bars is not None else self._fetch_bars()
        X, y = self._extractor.extract(bars)
        scaler = Normalizer.fit(X)
        X_scaled = Normalizer.transform(X, scaler)

        n = len(X_scaled)
        train_end = int(n * self._cfg.training.training_ratio)
        val_end = int(n * (self._cfg.training.training_ratio + self._cfg.training.validation_ratio))
        X_train, y_train = X_scaled[:train_end], y[:train_end]
        X_val, y_val = X_scaled[train_end:val_end], y[train_end:val_end]
        X_test, y_test = X_scaled[val_end:], y[val_end:]

        logger.info(
            "[Engine] Training %s on %d samples (train=%d, val=%d, test=%d, features=%d)",
            self.symbol,
            n,
            len(X_train),
            len(X_val),
            len(X_test),
            X.shape[1],
        )

        tracking = self._tracking()
        snapshots = self._bank.snapshot()
        started = time.monotonic()
        try:
            with tracking.run(
                run_name=f"train-{self.symbol}", tags={"symbol": self.symbol}
            ):
                tracking.log_params(self._cfg.to_dict())
                tracking.log_params({
                    "train_rows": len(X_train),
                    "val_rows": len(X_val),
                    "test_rows": len(X_test),
                    "n_features": X.shape[1],
                })

                self._bank.train(X_train, y_train, X_val, y_val)

                if len(X_test):
                    held_out = self._bank.evaluate(X_test, y_test)
                elif len(X_val):
                    held_out = self._bank.evaluate(X_val, y_val)
                else:
                    held_out = {}
                for name, metrics in held_out.items():
                    logger.info("[Engine] %s %s: %s", self.symbol, name, metrics)
                    tracking.log_model_metrics(name, metrics)

                duration = time.monotonic() - started
                tracking.log_metrics({"training_seconds": duration})
        except TrainingFailedError:
            raise
        except Exception as exc:
            # Models trained but the pass did not complete; keep the old ones
            self._bank.restore(snapshots)
            raise TrainingFailedError("engine", str(exc)) from exc

        now = datetime.now(timezone.utc)
        self._scaler = scaler
        self._state.is_trained = True
        self._state.last_training = now
        if self._state.last_retrain is None:
            self._state.last_retrain = now
        self._state.feature_column_count = int(X.shape[1])
        self._feature_importance = self._collect_feature_importance()
        self._evaluation_metrics = {name: m.to_dict() for name, m in held_out.items()}

        logger.info("[Engine] %s trained in %.1fs.", self.symbol, duration)
        return dict(self._evaluation_metrics)

    def predict(self, feature_vector) -> EnginePrediction:
        """Predict from one raw (unnormalized) feature vector.

        Raises:
            ModelNotTrainedError: if the engine is not trained.
            ShapeMismatchError: if the vector length is wrong.
        """
        if not self._state.is_trained or self._bank is None or self._scaler is None:
            raise ModelNotTrainedError("engine")

        vector = np.asarray(feature_vector, dtype=np.float64).reshape(-1)
        expected = self.expected_feature_length
        if vector.shape[0] != expected:
            raise ShapeMismatchError(expected, vector.shape[0])

        X = Normalizer.transform(vector.reshape(1, -1), self._scaler)
        raw = self._bank.predict(X)
        predictions = {name: float(values[0]) for name, values in raw.items()}
        combined = self._combiner.combine(predictions, self._state.performance_metrics)

        return EnginePrediction(
            predictions=combined.model_predictions,
            ensemble=combined.value,
            confidence=combined.confidence,
            weights=combined.model_weights,
            horizon=self._bank.predict_horizons(X),
        )

    def retrain_models(self, bars: list[MarketBar] | None = None) -> bool:
        """Refresh performance metrics and retrain.

        Failures are logged and swallowed so serving can continue from the
        previously trained models.

        Returns:
            True when the retrain succeeded.
        """
        logger.info("[Engine] Self-learning retrain for %s...", self.symbol)
        try:
            if self._bank is None:
                raise ModelNotInitializedError("engine")
            self._state.performance_metrics = self._tracker.update_performance_metrics(
                self._bank.names
            )
            self.train_models(bars)
            self._state.last_retrain = datetime.now(timezone.utc)
            if self._autosave:
                self.save()
        except Exception:
            logger.exception("[Engine] Self-learning retrain failed for %s.", self.symbol)
            return False
        logger.info("[Engine] Self-learning retrain completed for %s.", self.symbol)
        return True

    def run_prediction_cycle(self) -> CycleResult:
        """Resolve past outcomes, retrain if due, predict and record.

        Raises:
            ModelNotInitializedError: if initialize_models() was not called.
            ModelNotTrainedError: if no trained model is available.
            MarketDataError / InsufficientDataError: on data problems.
        """
        if self._bank is None:
            raise ModelNotInitializedError("engine")

        bars = self._fetch_bars()
        self._tracker.resolve_outcomes(bars)

        if self._cfg.self_learning.enabled and self.is_stale:
            self.retrain_models(bars)

        latest = bars[-1]
        prediction = self.predict(self._extractor.latest_vector(bars))
        now = datetime.now(timezone.utc)

        if prediction.is_empty:
            logger.warning("[Engine] %s: no model produced a prediction.", self.symbol)
        else:
            self._tracker.record(PredictionRecord(
                timestamp=now,
                current_price=latest.close,
                predicted_price=prediction.ensemble,
                confidence=prediction.confidence,
                actual_price=None,
                bar_timestamp=latest.timestamp,
                model_predictions=dict(prediction.predictions),
            ))

        return CycleResult(
            symbol=self.symbol,
            timestamp=now,
            current_price=latest.close,
            prediction=prediction,
            market_data={
                "last_update": latest.date,
                "bar_timestamp": latest.timestamp,
                "data_points": len(bars),
            },
            model_info=self.model_info(),
        )

    def record_actual(self, bar_timestamp: int, price: float) -> int:
        """Fill outcomes of pending predictions made before ``bar_timestamp``."""
        return self._tracker.record_actual(bar_timestamp, price)

    def model_info(self) -> dict:
        return {
            "status": self.status.value,
            "is_trained": self._state.is_trained,
            "last_training": self._iso(self._state.last_training),
            "last_retrain": self._iso(self._state.last_retrain),
            "prediction_count": len(self._tracker),
            "performance_metrics": self.performance_metrics,
            "models": self.model_names,
        }

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save(self) -> None:
        """Persist models, scaler, config and state for this symbol.

        Raises:
            PersistenceError: if the engine is untrained or I/O fails.
        """
        if not self._state.is_trained or self._bank is None or self._scaler is None:
            raise PersistenceError(self.symbol, "engine is not trained")

        metadata = {
            "symbol": self.symbol,
            "config": self._cfg.to_dict(),
            "state": self._state.to_dict(),
            "feature_columns": self.expected_feature_length,
            "scaler": self._scaler.to_dict(),
            "scaler_checksum": self._scaler.checksum(),
            "feature_importance": self._top_features(),
            "evaluation_metrics": self._evaluation_metrics,
            "history": [r.to_dict() for r in self._tracker.history],
        }
        self._store.save(self.symbol, self._bank, metadata)

    def load(self) -> None:
        """Restore a saved engine for this symbol.

        Nothing is changed unless the saved engine is complete and
        consistent with the current configuration.

        Raises:
            PersistenceError: if nothing is saved, artifacts are missing,
                or the feature count, scaler or horizon do not match.
        """
        bank = ModelBank(self._cfg).initialize()
        metadata = self._store.load(self.symbol, bank)
        expected = self.expected_feature_length

        try:
            state = EngineState.from_dict(metadata["state"])
            scaler = Scaler.from_dict(metadata["scaler"])
            checksum = metadata["scaler_checksum"]
            saved_cfg = metadata.get("config") or {}
            history = [
                PredictionRecord.from_dict(item) for item in metadata.get("history") or []
            ]
        except (KeyError, TypeError, ValueError) as exc:
            raise PersistenceError(self.symbol, f"malformed metadata: {exc}") from exc

        if state.feature_column_count != expected:
            raise PersistenceError(
                self.symbol,
                f"feature count {state.feature_column_count} != expected {expected}",
            )
        if scaler.width != expected:
            raise PersistenceError(
                self.symbol, f"scaler width {scaler.width} != expected {expected}"
            )
        if scaler.checksum() != checksum:
            raise PersistenceError(self.symbol, "scaler checksum mismatch")
        horizon = saved_cfg.get("prediction_horizon", self._cfg.features.prediction_horizon)
        if horizon != self._cfg.features.prediction_horizon:
            raise PersistenceError(
                self.symbol,
                f"prediction horizon {horizon} != configured "
                f"{self._cfg.features.prediction_horizon}",
            )
        for model in bank.models:
            if model.n_features != expected:
                raise PersistenceError(
                    self.symbol,
                    f"model '{model.kind}' expects {model.n_features} features",
                )
        if not state.is_trained:
            raise PersistenceError(self.symbol, "saved engine is not trained")

        self._bank = bank
        self._scaler = scaler
        self._state = state
        self._feature_importance = dict(metadata.get("feature_importance") or {})
        self._evaluation_metrics = dict(metadata.get("evaluation_metrics") or {})
        self._tracker.reset(history)
        logger.info(
            "[Engine] Loaded %s (trained %s).", self.symbol, self._iso(state.last_training)
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _fetch_bars(self) -> list[MarketBar]:
        if self._source is None:
            self._source = PolygonMarketDataSource(self._cfg.market_data)
        return self._source.get_bars(
            self.symbol,
            self._cfg.training.timespan,
            self._cfg.training.lookback_days,
        )

    def _tracking(self) -> TrainingTracker:
        if self._training_tracker is None:
            self._training_tracker = TrainingTracker(self._cfg.mlflow)
        return self._training_tracker

    def _collect_feature_importance(self) -> dict[str, float]:
        forest = next(
            (m for m in self._bank.models if isinstance(m, RandomForestPredictor)),
            None,
        )
        return forest.feature_importances if forest else {}

    def _top_features(self) -> dict[str, float]:
        ranked = sorted(
            self._feature_importance.items(), key=lambda kv: kv[1], reverse=True
        )
        return dict(ranked[:TOP_FEATURES])

    @staticmethod
    def _iso(value: datetime | None) -> str | None:
        return value.isoformat() if value else None
