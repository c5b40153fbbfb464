"""
Errors raised by the prediction engine.

Every error carries a human-readable ``message`` and a ``kind`` string so
callers (an API layer, the CLI, the scheduler) can map failures to status
codes without matching on class names.
"""


class PredictionEngineError(Exception):
    """Base error for all prediction engine errors."""

    kind = "prediction_engine_error"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"kind": self.kind, "message": self.message}


class InsufficientDataError(PredictionEngineError):
    """Raised when there are not enough bars for the lookback and horizon."""

    kind = "insufficient_data"

    def __init__(self, available: int, required: int) -> None:
        super().__init__(
            f"Insufficient data: {available} bars available, "
            f"more than {required} required"
        )
        self.available = available
        self.required = required


class ShapeMismatchError(PredictionEngineError):
    """Raised when a feature vector length differs from the expected length."""

    kind = "shape_mismatch"

    def __init__(self, expected: int, actual: int) -> None:
        super().__init__(
            f"Feature length mismatch: expected {expected}, got {actual}"
        )
        self.expected = expected
        self.actual = actual


class LengthMismatchError(PredictionEngineError):
    """Raised when rows of a feature matrix have different lengths."""

    kind = "length_mismatch"

    def __init__(self, row: int, expected: int, actual: int) -> None:
        super().__init__(
            f"Row {row} has {actual} columns, expected {expected}"
        )
        self.row = row
        self.expected = expected
        self.actual = actual


class ModelNotInitializedError(PredictionEngineError):
    """Raised when a model is trained before being initialized."""

    kind = "model_not_initialized"

    def __init__(self, model: str) -> None:
        super().__init__(f"Model '{model}' is not initialized")
        self.model = model


class ModelNotTrainedError(PredictionEngineError):
    """Raised when predictions are requested before training."""

    kind = "model_not_trained"

    def __init__(self, model: str) -> None:
        super().__init__(f"Model '{model}' is not trained")
        self.model = model


class TrainingFailedError(PredictionEngineError):
    """Raised when a training pass fails. Wraps the underlying library error."""

    kind = "training_failed"

    def __init__(self, model: str, reason: str) -> None:
        super().__init__(f"Training failed for '{model}': {reason}")
        self.model = model
        self.reason = reason


class PersistenceError(PredictionEngineError):
    """Raised on save/load I/O failures or inconsistent persisted state."""

    kind = "persistence_error"

    def __init__(self, symbol: str, reason: str) -> None:
        super().__init__(f"Persistence failed for {symbol}: {reason}")
        self.symbol = symbol
        self.reason = reason


class UnsupportedModelError(PredictionEngineError):
    """Raised when the configuration names an unknown model type."""

    kind = "unsupported_model"

    def __init__(self, model: str, available: list[str]) -> None:
        super().__init__(
            f"Unsupported model type: {model}. Available: {available}"
        )
        self.model = model


class MarketDataError(PredictionEngineError):
    """Raised when market data cannot be fetched or is empty."""

    kind = "market_data_error"

    def __init__(self, symbol: str, reason: str) -> None:
        super().__init__(f"Market data unavailable for {symbol}: {reason}")
        self.symbol = symbol
        self.reason = reason
