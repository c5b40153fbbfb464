"""
Prediction engine configuration.

Deployment values (API keys, Redis, model directory) come from the
pydantic Settings object (crypto_prediction.settings), which loads .env.

ML-specific constants (network widths, forest size, retrain cadence,
feature windows) are defined here. They are tuned by experimentation,
not by deployment.
"""

from dataclasses import dataclass, field, replace
from pathlib import Path

from crypto_prediction.settings import settings

NEURAL_NET = "neural_net"
RANDOM_FOREST = "random_forest"

# Names accepted in configuration for each model kind
MODEL_ALIASES = {
    "neural_net": NEURAL_NET,
    "lstm": NEURAL_NET,
    "random_forest": RANDOM_FOREST,
    "randomForest": RANDOM_FOREST,
}


@dataclass(frozen=True)
class PathsConfig:
    """Where trained engines are stored."""

    models_dir: Path = field(default_factory=lambda: Path(settings.model_dir))


@dataclass(frozen=True)
class FeatureConfig:
    """Feature window settings."""

    lookback_period: int = 60
    prediction_horizon: int = 5


@dataclass(frozen=True)
class NeuralNetConfig:
    """Feed-forward network hyperparameters."""

    hidden_units: tuple[int, ...] = (256, 128, 64, 32)
    head_units: tuple[int, ...] = (64, 32)
    dropout: float = 0.3
    learning_rate: float = 0.001
    epochs: int = 200
    batch_size: int = 32
    patience: int = 15
    shuffle: bool = True
    grad_clip: float = 1.0
    seed: int | None = 42


@dataclass(frozen=True)
class RandomForestConfig:
    """Random forest hyperparameters."""

    n_estimators: int = 200
    max_depth: int | None = 15
    min_samples_split: int = 5
    min_samples_leaf: int = 2
    max_features: float = 0.5
    bootstrap: bool = True
    oob_score: bool = True
    random_state: int | None = 42
    n_jobs: int = -1


@dataclass(frozen=True)
class EnsembleConfig:
    """Ensemble weighting."""

    base_weights: dict[str, float] = field(default_factory=lambda: {
        NEURAL_NET: 0.6,
        RANDOM_FOREST: 0.4,
    })
    performance_adjustment: float = 0.1
    default_weight: float = 0.5


@dataclass(frozen=True)
class SelfLearningConfig:
    """Retrain cadence and performance tracking."""

    enabled: bool = True
    retrain_interval_seconds: int = 24 * 60 * 60
    min_data_points_for_retrain: int = 100
    performance_threshold: float = 0.6
    history_size: int = 1000
    accuracy_window: int = 100
    min_known_outcomes: int = 10


@dataclass(frozen=True)
class TrainingConfig:
    """Training data window and splits."""

    training_ratio: float = 0.8
    validation_ratio: float = 0.1
    lookback_days: int = 730
    timespan: str = "day"


@dataclass(frozen=True)
class MarketDataConfig:
    """Polygon aggregates endpoint settings."""

    api_key: str = field(default_factory=lambda: settings.polygon_api_key)
    base_url: str = field(default_factory=lambda: settings.polygon_base_url)
    timeout: float = field(default_factory=lambda: settings.polygon_timeout)
    limit: int = 50000


@dataclass(frozen=True)
class RedisConfig:
    """Redis cache settings."""

    url: str = field(default_factory=lambda: settings.redis_url)
    bars_ttl_seconds: int = field(default_factory=lambda: settings.bars_cache_ttl)


@dataclass(frozen=True)
class MLflowConfig:
    """MLflow experiment tracking."""

    enabled: bool = field(default_factory=lambda: settings.mlflow_enabled)
    tracking_uri: str = field(default_factory=lambda: settings.mlflow_tracking_uri)
    experiment_name: str = field(
        default_factory=lambda: settings.mlflow_experiment_name
    )


@dataclass(frozen=True)
class EngineConfig:
    """Top-level configuration aggregating all sub-configs."""

    symbol: str = field(default_factory=lambda: settings.default_symbol)
    models: tuple[str, ...] = (NEURAL_NET, RANDOM_FOREST)

    paths: PathsConfig = field(default_factory=PathsConfig)
    features: FeatureConfig = field(default_factory=FeatureConfig)
    neural_net: NeuralNetConfig = field(default_factory=NeuralNetConfig)
    random_forest: RandomForestConfig = field(default_factory=RandomForestConfig)
    ensemble: EnsembleConfig = field(default_factory=EnsembleConfig)
    self_learning: SelfLearningConfig = field(default_factory=SelfLearningConfig)
    training: TrainingConfig = field(default_factory=TrainingConfig)
    market_data: MarketDataConfig = field(default_factory=MarketDataConfig)
    redis: RedisConfig = field(default_factory=RedisConfig)
    mlflow: MLflowConfig = field(default_factory=MLflowConfig)

    @property
    def model_kinds(self) -> list[str]:
        """Configured model names resolved through MODEL_ALIASES.

        Unknown names pass through unchanged so the model bank can reject them.
        """
        return [MODEL_ALIASES.get(name, name) for name in self.models]

    def for_symbol(self, symbol: str) -> "EngineConfig":
        """Return a copy of this config bound to another symbol."""
        return replace(self, symbol=symbol)

    def to_dict(self) -> dict:
        """Hyperparameters persisted alongside trained models."""
        return {
            "symbol": self.symbol,
            "models": list(self.models),
            "lookback_period": self.features.lookback_period,
            "prediction_horizon": self.features.prediction_horizon,
            "neural_net": {
                "hidden_units": list(self.neural_net.hidden_units),
                "head_units": list(self.neural_net.head_units),
                "dropout": self.neural_net.dropout,
                "learning_rate": self.neural_net.learning_rate,
                "epochs": self.neural_net.epochs,
                "batch_size": self.neural_net.batch_size,
                "patience": self.neural_net.patience,
            },
            "random_forest": {
                "n_estimators": self.random_forest.n_estimators,
                "max_depth": self.random_forest.max_depth,
                "min_samples_split": self.random_forest.min_samples_split,
                "min_samples_leaf": self.random_forest.min_samples_leaf,
                "max_features": self.random_forest.max_features,
                "bootstrap": self.random_forest.bootstrap,
            },
            "training_ratio": self.training.training_ratio,
            "validation_ratio": self.training.validation_ratio,
            "retrain_interval_seconds": self.self_learning.retrain_interval_seconds,
            "performance_threshold": self.self_learning.performance_threshold,
        }


# Singleton instance
config = EngineConfig()
