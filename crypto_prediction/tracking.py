"""
MLflow experiment tracking for training runs.

Each engine training pass becomes one MLflow run holding the engine and
model hyperparameters, sample counts, held-out metrics per model and the
training duration. When tracking is disabled, or the tracking server
cannot be set up, every call is a no-op.
"""

import contextlib
import logging

import mlflow

from crypto_prediction.config import MLflowConfig
from crypto_prediction.utils.metrics import ModelMetrics

logger = logging.getLogger(__name__)


def _flatten(data: dict, prefix: str = "") -> dict:
    flat = {}
    for key, value in data.items():
        name = f"{prefix}{key}"
        if isinstance(value, dict):
            flat.update(_flatten(value, f"{name}."))
        else:
            flat[name] = value
    return flat


class TrainingTracker:
    """Thin wrapper over the MLflow fluent API."""

    def __init__(self, config: MLflowConfig | None = None) -> None:
        self._cfg = config or MLflowConfig()
        self._enabled = self._cfg.enabled and self._setup()

    @property
    def enabled(self) -> bool:
        return self._enabled

    def _setup(self) -> bool:
        """Initialise MLflow tracking. Returns True if available."""
        try:
            mlflow.set_tracking_uri(self._cfg.tracking_uri)
            mlflow.set_experiment(self._cfg.experiment_name)
        except Exception:
            logger.warning("MLflow setup failed. Tracking disabled.")
            return False
        logger.info(
            "MLflow tracking: uri=%s  experiment=%s",
            self._cfg.tracking_uri,
            self._cfg.experiment_name,
        )
        return True

    def run(self, run_name: str, tags: dict | None = None):
        """Context manager wrapping one training run."""
        if not self._enabled:
            return contextlib.nullcontext()
        return mlflow.start_run(run_name=run_name, tags=tags)

    def log_params(self, params: dict) -> None:
        if self._enabled:
            mlflow.log_params(_flatten(params))

    def log_metrics(self, metrics: dict[str, float]) -> None:
        if self._enabled:
            mlflow.log_metrics({k: float(v) for k, v in metrics.items()})

    def log_model_metrics(self, model_name: str, metrics: ModelMetrics, prefix: str = "test") -> None:
        """Log evaluation metrics of one model to the active run."""
        self.log_metrics({
            f"{prefix}_{model_name}_{key}": value
            for key, value in metrics.to_dict().items()
        })
