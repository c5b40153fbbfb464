"""
Tests for the prediction engine.

Covers:
- Lifecycle errors (predict before train, train before initialize)
- Training, prediction and shape checks
- Atomic training: failures keep the previous state
- Save/load round trip and consistency checks
- Prediction cycles with self-learning retrains
- MLflow tracking hooks
- EngineRegistry
"""

import json
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import numpy as np
import pytest


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def engine(tiny_config, bars, make_source):
    from crypto_prediction.engine.engine import PredictionEngine

    return PredictionEngine(tiny_config, source=make_source(bars))


@pytest.fixture
def trained_engine(engine):
    engine.initialize_models()
    engine.train_models()
    return engine


def _latest(engine, bars):
    from crypto_prediction.features.extractor import FeatureExtractor

    cfg = engine.config.features
    return FeatureExtractor(cfg.lookback_period, cfg.prediction_horizon).latest_vector(bars)


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


class TestEngineLifecycle:
    def test_initial_state(self, engine):
        from crypto_prediction.engine.state import EngineStatus

        assert engine.status is EngineStatus.UNINITIALIZED
        assert not engine.is_trained
        assert engine.expected_feature_length == 85

    def test_predict_before_train(self, engine, bars):
        from crypto_prediction.errors import ModelNotTrainedError

        with pytest.raises(ModelNotTrainedError):
            engine.predict(_latest(engine, bars))

        engine.initialize_models()
        with pytest.raises(ModelNotTrainedError):
            engine.predict(_latest(engine, bars))

    def test_train_before_initialize(self, engine):
        from crypto_prediction.errors import ModelNotInitializedError

        with pytest.raises(ModelNotInitializedError):
            engine.train_models()

    def test_unknown_model_type(self, tiny_config, bars, make_source):
        from dataclasses import replace

        from crypto_prediction.engine.engine import PredictionEngine
        from crypto_prediction.errors import UnsupportedModelError

        cfg = replace(tiny_config, models=("neural_net", "prophet"))
        with pytest.raises(UnsupportedModelError):
            PredictionEngine(cfg, source=make_source(bars)).initialize_models()

    def test_insufficient_data(self, tiny_config, make_bars, make_source):
        from crypto_prediction.engine.engine import PredictionEngine
        from crypto_prediction.errors import InsufficientDataError

        engine = PredictionEngine(tiny_config, source=make_source(make_bars(13)))
        engine.initialize_models()
        with pytest.raises(InsufficientDataError):
            engine.train_models()
        assert not engine.is_trained


# ---------------------------------------------------------------------------
# Training and prediction
# ---------------------------------------------------------------------------


class TestTrainingAndPrediction:
    def test_train_sets_state(self, trained_engine):
        from crypto_prediction.engine.state import EngineStatus

        assert trained_engine.status is EngineStatus.TRAINED
        assert trained_engine.last_training is not None
        assert trained_engine.last_retrain == trained_engine.last_training
        assert trained_engine.state.feature_column_count == 85
        assert trained_engine.scaler.width == 85
        assert not trained_engine.is_stale

    def test_train_returns_held_out_metrics(self, engine):
        engine.initialize_models()
        metrics = engine.train_models()
        assert set(metrics) == {"neural_net", "random_forest"}
        assert "rmse" in metrics["random_forest"]

    def test_feature_importance_is_named(self, trained_engine):
        importance = trained_engine.feature_importance
        assert len(importance) == 85
        assert "sma10" in importance

    def test_predict(self, trained_engine, bars):
        result = trained_engine.predict(_latest(trained_engine, bars))

        assert set(result.predictions) == {"neural_net", "random_forest"}
        assert np.isfinite(result.ensemble)
        assert 0.0 <= result.confidence <= 1.0
        assert set(result.weights) == {"neural_net", "random_forest"}
        assert len(result.horizon["neural_net"]) == 3

    def test_predict_accepts_lists(self, trained_engine, bars):
        vector = _latest(trained_engine, bars)
        a = trained_engine.predict(vector)
        b = trained_engine.predict(vector.tolist())
        assert a.ensemble == pytest.approx(b.ensemble)

    def test_predict_wrong_length(self, trained_engine):
        from crypto_prediction.errors import ShapeMismatchError

        with pytest.raises(ShapeMismatchError) as exc_info:
            trained_engine.predict(np.zeros(84))
        assert exc_info.value.expected == 85
        assert exc_info.value.actual == 84

    def test_predict_reuses_stored_scaler(self, trained_engine, bars):
        scaler = trained_engine.scaler
        trained_engine.predict(_latest(trained_engine, bars))
        assert trained_engine.scaler is scaler

    def test_failed_first_training_leaves_engine_untrained(self, engine):
        from crypto_prediction.errors import TrainingFailedError

        engine.initialize_models()
        with patch(
            "crypto_prediction.models.random_forest.RandomForestPredictor._fit",
            side_effect=ValueError("bad data"),
        ):
            with pytest.raises(TrainingFailedError):
                engine.train_models()

        assert not engine.is_trained
        assert engine.scaler is None

    def test_failed_retraining_keeps_previous_models(self, trained_engine, bars, make_bars):
        from crypto_prediction.errors import TrainingFailedError

        vector = _latest(trained_engine, bars)
        before = trained_engine.predict(vector)
        scaler = trained_engine.scaler
        last_training = trained_engine.last_training

        with patch(
            "crypto_prediction.models.random_forest.RandomForestPredictor._fit",
            side_effect=ValueError("bad data"),
        ):
            with pytest.raises(TrainingFailedError):
                trained_engine.train_models(make_bars(150, seed=7))

        assert trained_engine.is_trained
        assert trained_engine.scaler is scaler
        assert trained_engine.last_training == last_training
        after = trained_engine.predict(vector)
        assert after.predictions == pytest.approx(before.predictions)

    def test_train_with_explicit_bars(self, engine, make_bars):
        engine.initialize_models()
        engine.train_models(make_bars(120, seed=3))
        assert engine.is_trained
        assert engine._source.calls == 0


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------


class TestPersistence:
    def test_save_untrained_raises(self, engine):
        from crypto_prediction.errors import PersistenceError

        with pytest.raises(PersistenceError):
            engine.save()

    def test_round_trip_predicts_identically(self, trained_engine, tiny_config, bars, make_source):
        from crypto_prediction.engine.engine import PredictionEngine
        from crypto_prediction.engine.state import EngineStatus

        vector = _latest(trained_engine, bars)
        expected = trained_engine.predict(vector)
        trained_engine.save()

        restored = PredictionEngine(tiny_config, source=make_source(bars))
        restored.load()

        assert restored.status is EngineStatus.TRAINED
        assert restored.scaler == trained_engine.scaler
        assert restored.last_training == trained_engine.last_training
        result = restored.predict(vector)
        assert result.predictions == pytest.approx(expected.predictions)
        assert result.ensemble == pytest.approx(expected.ensemble)

    def test_history_is_persisted(self, trained_engine, tiny_config, bars, make_source):
        from crypto_prediction.engine.engine import PredictionEngine

        trained_engine.run_prediction_cycle()
        trained_engine.save()

        restored = PredictionEngine(tiny_config, source=make_source(bars))
        restored.load()
        assert len(restored.history) == 1
        assert restored.history[0].bar_timestamp == bars[-1].timestamp

    def test_load_replaces_existing_history(self, trained_engine):
        trained_engine.run_prediction_cycle()
        trained_engine.save()

        trained_engine.load()
        trained_engine.load()
        assert len(trained_engine.history) == 1

    def test_evaluation_metrics_are_persisted(self, trained_engine, tiny_config, bars, make_source):
        from crypto_prediction.engine.engine import PredictionEngine
        from crypto_prediction.engine.persistence import METADATA_FILE, ModelStore

        trained_engine.save()
        path = ModelStore(tiny_config.paths.models_dir).path_for(tiny_config.symbol) / METADATA_FILE
        metadata = json.loads(path.read_text())
        assert set(metadata["evaluation_metrics"]) == {"neural_net", "random_forest"}

        restored = PredictionEngine(tiny_config, source=make_source(bars))
        restored.load()
        assert set(restored.evaluation_metrics) == {"neural_net", "random_forest"}
        assert restored.evaluation_metrics["random_forest"]["mae"] == pytest.approx(
            trained_engine.evaluation_metrics["random_forest"]["mae"]
        )

    def test_load_without_save(self, engine):
        from crypto_prediction.errors import PersistenceError

        with pytest.raises(PersistenceError):
            engine.load()

    def test_load_with_different_lookback(self, trained_engine, tiny_config, bars, make_source):
        from dataclasses import replace

        from crypto_prediction.config import FeatureConfig
        from crypto_prediction.engine.engine import PredictionEngine
        from crypto_prediction.engine.state import EngineStatus
        from crypto_prediction.errors import PersistenceError

        trained_engine.save()
        cfg = replace(tiny_config, features=FeatureConfig(lookback_period=12, prediction_horizon=3))
        other = PredictionEngine(cfg, source=make_source(bars))
        with pytest.raises(PersistenceError):
            other.load()
        assert other.status is EngineStatus.UNINITIALIZED

    def test_load_with_tampered_scaler(self, trained_engine, tiny_config, bars, make_source):
        from crypto_prediction.engine.engine import PredictionEngine
        from crypto_prediction.engine.persistence import METADATA_FILE, ModelStore
        from crypto_prediction.errors import PersistenceError

        trained_engine.save()
        path = ModelStore(tiny_config.paths.models_dir).path_for(tiny_config.symbol) / METADATA_FILE
        metadata = json.loads(path.read_text())
        metadata["scaler"]["max"][0] += 1.0
        path.write_text(json.dumps(metadata))

        with pytest.raises(PersistenceError, match="checksum"):
            PredictionEngine(tiny_config, source=make_source(bars)).load()

    def test_load_with_missing_model(self, trained_engine, tiny_config, bars, make_source):
        import shutil

        from crypto_prediction.engine.engine import PredictionEngine
        from crypto_prediction.engine.persistence import ModelStore
        from crypto_prediction.errors import PersistenceError

        trained_engine.save()
        store = ModelStore(tiny_config.paths.models_dir)
        shutil.rmtree(store.path_for(tiny_config.symbol) / "random_forest")

        with pytest.raises(PersistenceError, match="random_forest"):
            PredictionEngine(tiny_config, source=make_source(bars)).load()

    def test_store_layout(self, trained_engine, tiny_config):
        from crypto_prediction.engine.persistence import ModelStore, normalize_symbol

        trained_engine.save()
        store = ModelStore(tiny_config.paths.models_dir)
        target = store.path_for("X:TESTUSD")

        assert normalize_symbol("x:testusd") == "X_TESTUSD"
        assert target.name == "X_TESTUSD"
        assert (target / "neural_net" / "neural_net_weights.pt").is_file()
        assert (target / "random_forest" / "random_forest.pkl").is_file()
        assert not target.with_name("X_TESTUSD.tmp").exists()

        entries = store.list_symbols()
        assert entries[0]["symbol"] == "X:TESTUSD"
        assert entries[0]["complete"]
        assert store.delete("X:TESTUSD")
        assert not store.exists("X:TESTUSD")


# ---------------------------------------------------------------------------
# Prediction cycle
# ---------------------------------------------------------------------------


class TestPredictionCycle:
    def test_cycle_requires_models(self, engine):
        from crypto_prediction.errors import ModelNotInitializedError

        with pytest.raises(ModelNotInitializedError):
            engine.run_prediction_cycle()

    def test_cycle_result(self, trained_engine, bars):
        result = trained_engine.run_prediction_cycle()

        assert result.symbol == "X:TESTUSD"
        assert result.current_price == pytest.approx(bars[-1].close)
        assert result.market_data["data_points"] == 200
        assert result.market_data["bar_timestamp"] == bars[-1].timestamp
        assert result.model_info["is_trained"]
        assert len(trained_engine.history) == 1
        assert result.to_dict()["prediction"]["ensemble"] == result.prediction.ensemble

    def test_next_cycle_resolves_outcome(self, trained_engine, bars):
        trained_engine._source.bars = bars[:199]
        trained_engine.run_prediction_cycle()
        trained_engine._source.bars = bars
        trained_engine.run_prediction_cycle()

        first, second = trained_engine.history
        assert first.actual_price == pytest.approx(bars[199].close)
        assert second.actual_price is None

    def test_fresh_engine_does_not_retrain(self, trained_engine):
        with patch.object(trained_engine, "retrain_models") as mock_retrain:
            trained_engine.run_prediction_cycle()
        mock_retrain.assert_not_called()

    def test_stale_engine_retrains(self, trained_engine):
        old = datetime.now(timezone.utc) - timedelta(days=2)
        trained_engine._state.last_retrain = old
        assert trained_engine.is_stale

        trained_engine.run_prediction_cycle()
        assert trained_engine.last_retrain > old
        assert not trained_engine.is_stale

    def test_retrain_failure_is_swallowed(self, trained_engine):
        from crypto_prediction.errors import TrainingFailedError

        old = datetime.now(timezone.utc) - timedelta(days=2)
        trained_engine._state.last_retrain = old

        with patch.object(
            trained_engine,
            "train_models",
            side_effect=TrainingFailedError("engine", "boom"),
        ):
            result = trained_engine.run_prediction_cycle()

        assert trained_engine.last_retrain == old
        assert trained_engine.is_trained
        assert np.isfinite(result.prediction.ensemble)

    def test_retrain_disabled(self, tiny_config, bars, make_source):
        from dataclasses import replace

        from crypto_prediction.config import SelfLearningConfig
        from crypto_prediction.engine.engine import PredictionEngine

        cfg = replace(tiny_config, self_learning=SelfLearningConfig(enabled=False))
        engine = PredictionEngine(cfg, source=make_source(bars))
        engine.initialize_models()
        engine.train_models()
        engine._state.last_retrain = None

        with patch.object(engine, "retrain_models") as mock_retrain:
            engine.run_prediction_cycle()
        mock_retrain.assert_not_called()

    def test_autosave_after_retrain(self, tiny_config, bars, make_source):
        from crypto_prediction.engine.engine import PredictionEngine
        from crypto_prediction.engine.persistence import ModelStore

        engine = PredictionEngine(tiny_config, source=make_source(bars), autosave=True)
        engine.initialize_models()
        engine.train_models()
        assert engine.retrain_models()
        assert ModelStore(tiny_config.paths.models_dir).exists(tiny_config.symbol)

    def test_market_data_error_propagates(self, trained_engine):
        from crypto_prediction.errors import MarketDataError

        trained_engine._source.error = MarketDataError("X:TESTUSD", "HTTP 500")
        with pytest.raises(MarketDataError):
            trained_engine.run_prediction_cycle()


# ---------------------------------------------------------------------------
# MLflow tracking
# ---------------------------------------------------------------------------


class TestTrainingTracker:
    def test_disabled_tracker_is_noop(self):
        from crypto_prediction.config import MLflowConfig
        from crypto_prediction.tracking import TrainingTracker

        with patch("crypto_prediction.tracking.mlflow") as mock_mlflow:
            tracker = TrainingTracker(MLflowConfig(enabled=False))
            with tracker.run("train-x"):
                tracker.log_params({"a": 1})
                tracker.log_metrics({"m": 1.0})
        assert not tracker.enabled
        mock_mlflow.log_params.assert_not_called()
        mock_mlflow.start_run.assert_not_called()

    def test_enabled_tracker_logs_flattened_params(self):
        from crypto_prediction.config import MLflowConfig
        from crypto_prediction.tracking import TrainingTracker
        from crypto_prediction.utils.metrics import ModelMetrics

        cfg = MLflowConfig(enabled=True, tracking_uri="file:./mlruns", experiment_name="test")
        with patch("crypto_prediction.tracking.mlflow") as mock_mlflow:
            tracker = TrainingTracker(cfg)
            tracker.log_params({"neural_net": {"epochs": 3}, "symbol": "X:BTCUSD"})
            tracker.log_model_metrics("random_forest", ModelMetrics(mae=1.5))

        assert tracker.enabled
        mock_mlflow.set_experiment.assert_called_once_with("test")
        mock_mlflow.log_params.assert_called_once_with(
            {"neural_net.epochs": 3, "symbol": "X:BTCUSD"}
        )
        logged = mock_mlflow.log_metrics.call_args[0][0]
        assert logged["test_random_forest_mae"] == 1.5

    def test_setup_failure_disables_tracking(self):
        from crypto_prediction.config import MLflowConfig
        from crypto_prediction.tracking import TrainingTracker

        with patch("crypto_prediction.tracking.mlflow") as mock_mlflow:
            mock_mlflow.set_tracking_uri.side_effect = RuntimeError("unreachable")
            tracker = TrainingTracker(MLflowConfig(enabled=True))
        assert not tracker.enabled

    def test_engine_logs_training_run(self, tiny_config, bars, make_source):
        from crypto_prediction.engine.engine import PredictionEngine

        tracker = MagicMock()
        tracker.run.return_value.__exit__.return_value = False
        engine = PredictionEngine(tiny_config, source=make_source(bars), training_tracker=tracker)
        engine.initialize_models()
        engine.train_models()

        tracker.run.assert_called_once()
        assert tracker.log_params.call_count == 2
        logged_models = {c.args[0] for c in tracker.log_model_metrics.call_args_list}
        assert logged_models == {"neural_net", "random_forest"}


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class TestEngineRegistry:
    def test_get_or_create_reuses_engine(self, tiny_config, bars, make_source):
        from crypto_prediction.engine.registry import EngineRegistry

        registry = EngineRegistry(tiny_config, source=make_source(bars))
        a = registry.get_or_create("X:BTCUSD")
        b = registry.get_or_create("x:btcusd")
        assert a is b
        assert a.engine.symbol == "X:BTCUSD"
        assert registry.symbols() == ["X:BTCUSD"]
        registry.shutdown()

    def test_run_cycle_trains_and_saves(self, tiny_config, bars, make_source):
        from crypto_prediction.engine.persistence import ModelStore
        from crypto_prediction.engine.registry import EngineRegistry

        registry = EngineRegistry(tiny_config, source=make_source(bars))
        result = registry.run_cycle("X:BTCUSD")
        registry.shutdown()

        assert result.symbol == "X:BTCUSD"
        assert ModelStore(tiny_config.paths.models_dir).exists("X:BTCUSD")

    def test_run_cycle_loads_saved_engine(self, tiny_config, bars, make_source):
        from crypto_prediction.engine.engine import PredictionEngine
        from crypto_prediction.engine.registry import EngineRegistry

        first = EngineRegistry(tiny_config, source=make_source(bars))
        first.train("X:BTCUSD")
        first.shutdown()

        second = EngineRegistry(tiny_config, source=make_source(bars))
        with patch.object(PredictionEngine, "train_models") as mock_train:
            result = second.run_cycle("X:BTCUSD")
        second.shutdown()

        mock_train.assert_not_called()
        assert result.model_info["is_trained"]

    def test_submit_training(self, tiny_config, bars, make_source):
        from crypto_prediction.engine.registry import EngineRegistry

        registry = EngineRegistry(tiny_config, source=make_source(bars))
        futures = [registry.submit_training(s) for s in ("X:BTCUSD", "X:ETHUSD")]
        results = [f.result(timeout=120) for f in futures]
        status = registry.status()
        registry.shutdown()

        assert all(set(r) == {"neural_net", "random_forest"} for r in results)
        assert status["total_engines"] == 2
        assert all(e["is_trained"] for e in status["engines"])

    def test_remove(self, tiny_config, bars, make_source):
        from crypto_prediction.engine.registry import EngineRegistry

        registry = EngineRegistry(tiny_config, source=make_source(bars))
        registry.get_or_create("X:BTCUSD")
        assert registry.remove("X:BTCUSD")
        assert registry.get("X:BTCUSD") is None
        assert not registry.remove("X:BTCUSD")
        registry.shutdown()

    def test_run_cycle_retrains_incompatible_saved_engine(self, tiny_config, bars, make_source):
        from dataclasses import replace

        from crypto_prediction.config import FeatureConfig
        from crypto_prediction.engine.persistence import ModelStore
        from crypto_prediction.engine.registry import EngineRegistry
        from crypto_prediction.features.extractor import expected_feature_length

        first = EngineRegistry(tiny_config, source=make_source(bars))
        first.train("X:BTCUSD")
        first.shutdown()

        cfg = replace(tiny_config, features=FeatureConfig(lookback_period=12, prediction_horizon=3))
        second = EngineRegistry(cfg, source=make_source(bars))
        result = second.run_cycle("X:BTCUSD")
        second.shutdown()

        assert result.model_info["is_trained"]
        metadata = ModelStore(tiny_config.paths.models_dir).load_metadata("X:BTCUSD")
        assert metadata["feature_columns"] == expected_feature_length(12)
