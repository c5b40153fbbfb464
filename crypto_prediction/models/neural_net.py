"""
Feed-forward neural network price model.

Multi-step forecasting from a flat feature vector using a dense network:
- Hidden blocks of Linear -> ReLU -> BatchNorm -> Dropout
- A dense head (64 -> 32 by default) and a linear output of width horizon
- Adamax optimizer, MSE loss, shuffled mini-batches
- Early stopping on validation loss, restoring the best weights

Targets are min/max scaled internally and inverted at prediction time.
The scalar prediction of the model is the first horizon step.
"""

import copy
import logging
import pickle
from pathlib import Path

import numpy as np
import torch
import torch.nn as nn
from torch.utils.data import DataLoader, TensorDataset

from crypto_prediction.config import NEURAL_NET, NeuralNetConfig
from crypto_prediction.errors import ShapeMismatchError, TrainingFailedError
from crypto_prediction.features.normalizer import Normalizer, Scaler
from crypto_prediction.models.base import BasePredictionModel

logger = logging.getLogger(__name__)


class _FeedForwardNetwork(nn.Module):
    """Dense regression network with batch norm and dropout."""

    def __init__(
        self,
        input_size: int,
        output_size: int,
        hidden_units: tuple[int, ...] = (256, 128, 64, 32),
        head_units: tuple[int, ...] = (64, 32),
        dropout: float = 0.3,
    ) -> None:
        super().__init__()
        if not hidden_units:
            raise ValueError("hidden_units must not be empty")

        layers: list[nn.Module] = []
        in_features = input_size
        # The last hidden width is not a block of its own; the head follows
        # the second-to-last block directly.
        blocks = (hidden_units[0],) + tuple(hidden_units[1:-1])
        for units in blocks:
            layers += [
                nn.Linear(in_features, units),
                nn.ReLU(),
                nn.BatchNorm1d(units),
                nn.Dropout(dropout),
            ]
            in_features = units

        for i, units in enumerate(head_units):
            layers += [nn.Linear(in_features, units), nn.ReLU()]
            if i < len(head_units) - 1:
                layers.append(nn.Dropout(dropout))
            in_features = units

        layers.append(nn.Linear(in_features, output_size))
        self.layers = nn.Sequential(*layers)

    def forward(self, x):
        return self.layers(x)


class NeuralNetPredictor(BasePredictionModel):
    """Dense network with a torch training loop and a numpy interface.

    The input width is fixed at initialization from the configured lookback
    period, so the network can be built before any data is seen.
    """

    kind = NEURAL_NET

    def __init__(
        self,
        input_size: int,
        prediction_horizon: int = 5,
        config: NeuralNetConfig | None = None,
    ) -> None:
        super().__init__()
        cfg = config or NeuralNetConfig()
        self._input_size = input_size
        self._horizon = prediction_horizon
        self._hidden_units = tuple(cfg.hidden_units)
        self._head_units = tuple(cfg.head_units)
        self._dropout = cfg.dropout
        self._lr = cfg.learning_rate
        self._epochs = cfg.epochs
        self._batch_size = cfg.batch_size
        self._patience = cfg.patience
        self._shuffle = cfg.shuffle
        self._grad_clip = cfg.grad_clip
        self._seed = cfg.seed

        self._model: _FeedForwardNetwork | None = None
        self._target_scaler: Scaler | None = None
        self._history: dict[str, list[float]] = {"loss": [], "val_loss": []}

    @property
    def history(self) -> dict[str, list[float]]:
        return self._history

    def get_params(self) -> dict:
        return {
            "input_size": self._input_size,
            "prediction_horizon": self._horizon,
            "hidden_units": list(self._hidden_units),
            "head_units": list(self._head_units),
            "dropout": self._dropout,
            "learning_rate": self._lr,
            "epochs": self._epochs,
            "batch_size": self._batch_size,
            "patience": self._patience,
        }

    def _new_network(self) -> _FeedForwardNetwork:
        return _FeedForwardNetwork(
            input_size=self._input_size,
            output_size=self._horizon,
            hidden_units=self._hidden_units,
            head_units=self._head_units,
            dropout=self._dropout,
        )

    def _build(self) -> None:
        if self._seed is not None:
            torch.manual_seed(self._seed)
        self._model = self._new_network()
        self._target_scaler = None
        self._history = {"loss": [], "val_loss": []}

    def _fit(
        self,
        X: np.ndarray,
        y: np.ndarray,
        X_val: np.ndarray | None,
        y_val: np.ndarray | None,
    ) -> None:
        if X.shape[1] != self._input_size:
            raise ShapeMismatchError(self._input_size, X.shape[1])
        if y.shape[1] != self._horizon:
            raise TrainingFailedError(
                self.kind,
                f"target width {y.shape[1]} != prediction horizon {self._horizon}",
            )
        if X.shape[0] < 2:
            raise TrainingFailedError(self.kind, "at least 2 samples are required")

        if self._seed is not None:
            torch.manual_seed(self._seed)

        target_scaler = Normalizer.fit(y)
        y_scaled = Normalizer.transform(y, target_scaler)

        model = self._model
        optimizer = torch.optim.Adamax(model.parameters(), lr=self._lr)
        criterion = nn.MSELoss()

        loader = DataLoader(
            TensorDataset(
                torch.as_tensor(X, dtype=torch.float32),
                torch.as_tensor(y_scaled, dtype=torch.float32),
            ),
            batch_size=self._batch_size,
            shuffle=self._shuffle,
        )

        val_tensors = None
        if X_val is not None and y_val is not None and len(X_val) > 0:
            y_val = np.asarray(y_val, dtype=np.float64).reshape(len(X_val), -1)
            val_tensors = (
                torch.as_tensor(np.asarray(X_val), dtype=torch.float32),
                torch.as_tensor(
                    Normalizer.transform(y_val, target_scaler), dtype=torch.float32
                ),
            )

        history: dict[str, list[float]] = {"loss": [], "val_loss": []}
        best_val_loss = float("inf")
        patience_counter = 0
        best_state = None

        for epoch in range(self._epochs):
            model.train()
            train_loss = 0.0
            n_batches = 0
            for X_batch, y_batch in loader:
                # BatchNorm cannot normalize a single sample
                if X_batch.shape[0] < 2:
                    continue
                optimizer.zero_grad()
                loss = criterion(model(X_batch), y_batch)
                loss.backward()
                torch.nn.utils.clip_grad_norm_(model.parameters(), self._grad_clip)
                optimizer.step()
                train_loss += loss.item()
                n_batches += 1

            if n_batches == 0:
                raise TrainingFailedError(
                    self.kind,
                    f"no trainable batch in epoch {epoch + 1} "
                    f"(batch_size={self._batch_size}, BatchNorm needs 2+ samples)",
                )
            train_loss /= n_batches
            if not np.isfinite(train_loss):
                raise TrainingFailedError(self.kind, f"loss diverged at epoch {epoch + 1}")
            history["loss"].append(train_loss)

            if val_tensors is None:
                if (epoch + 1) % 10 == 0:
                    logger.info(
                        "[NeuralNet] Epoch %d/%d: loss=%.6f",
                        epoch + 1,
                        self._epochs,
                        train_loss,
                    )
                continue

            model.eval()
            with torch.no_grad():
                val_loss = criterion(model(val_tensors[0]), val_tensors[1]).item()
            history["val_loss"].append(val_loss)

            if val_loss < best_val_loss:
                best_val_loss = val_loss
                patience_counter = 0
                best_state = {
                    k: v.detach().clone() for k, v in model.state_dict().items()
                }
            else:
                patience_counter += 1

            if (epoch + 1) % 10 == 0:
                logger.info(
                    "[NeuralNet] Epoch %d/%d: loss=%.6f, val_loss=%.6f",
                    epoch + 1,
                    self._epochs,
                    train_loss,
                    val_loss,
                )

            if patience_counter >= self._patience:
                logger.info(
                    "[NeuralNet] Early stopping at epoch %d (best val_loss=%.6f)",
                    epoch + 1,
                    best_val_loss,
                )
                break

        if best_state is not None:
            model.load_state_dict(best_state)
        model.eval()

        self._target_scaler = target_scaler
        self._history = history

    def predict_horizon(self, X: np.ndarray) -> np.ndarray:
        """Predict all horizon steps, shape (n, prediction_horizon)."""
        X = self._check_input(X)
        self._model.eval()
        with torch.no_grad():
            scaled = self._model(torch.as_tensor(X, dtype=torch.float32)).numpy()
        return self._inverse_targets(scaled.astype(np.float64))

    def _predict(self, X: np.ndarray) -> np.ndarray:
        return self.predict_horizon(X)[:, 0]

    def _inverse_targets(self, scaled: np.ndarray) -> np.ndarray:
        scaler = self._target_scaler
        span = scaler.range
        return np.where(span == 0, scaler.min, scaled * span + scaler.min)

    def _capture(self):
        return (
            copy.deepcopy(self._model),
            copy.deepcopy(self._target_scaler),
            copy.deepcopy(self._history),
        )

    def _restore(self, payload) -> None:
        self._model, self._target_scaler, self._history = payload

    def save_model(self, path: Path) -> None:
        """Save network weights, target scaler and architecture params."""
        path.mkdir(parents=True, exist_ok=True)
        torch.save(self._model.state_dict(), path / "neural_net_weights.pt")
        params = self.get_params()
        params["n_features"] = self._n_features
        params["target_scaler"] = (
            self._target_scaler.to_dict() if self._target_scaler else None
        )
        params["history"] = self._history
        with open(path / "neural_net_params.pkl", "wb") as f:
            pickle.dump(params, f)
        logger.info("[NeuralNet] Model saved to %s", path)

    def load_model(self, path: Path) -> None:
        """Load network weights, target scaler and architecture params."""
        with open(path / "neural_net_params.pkl", "rb") as f:
            params = pickle.load(f)

        self._input_size = params["input_size"]
        self._horizon = params["prediction_horizon"]
        self._hidden_units = tuple(params["hidden_units"])
        self._head_units = tuple(params["head_units"])
        self._dropout = params["dropout"]
        self._history = params.get("history", {"loss": [], "val_loss": []})

        self._model = self._new_network()
        self._model.load_state_dict(
            torch.load(path / "neural_net_weights.pt", map_location="cpu")
        )
        self._model.eval()

        scaler = params.get("target_scaler")
        if scaler is None:
            raise ValueError("saved model has no target scaler")
        self._target_scaler = Scaler.from_dict(scaler)
        self._mark_loaded(params["n_features"] or self._input_size)
        logger.info("[NeuralNet] Model loaded from %s", path)
