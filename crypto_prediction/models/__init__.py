"""
ML models sub-package.

Strategy Pattern. Every model implements `BasePredictionModel`:
    initialize() → train(X, y) → predict(X) → evaluate(X, y) → save/load

Concrete models
---------------
- `NeuralNetPredictor`: feed-forward network (PyTorch), multi-step horizon
- `RandomForestPredictor`: bagged regression trees on the next-step target

Ensemble
--------
- `EnsembleCombiner`: accuracy-adjusted weighted mean plus agreement confidence
- `ModelBank`: all-or-nothing training over the configured models
"""

from crypto_prediction.models.base import BasePredictionModel, ModelState
from crypto_prediction.models.neural_net import NeuralNetPredictor
from crypto_prediction.models.random_forest import RandomForestPredictor
from crypto_prediction.models.ensemble import EnsembleCombiner, EnsemblePrediction
from crypto_prediction.models.bank import MODEL_FACTORIES, ModelBank

__all__ = [
    "BasePredictionModel",
    "ModelState",
    "NeuralNetPredictor",
    "RandomForestPredictor",
    "EnsembleCombiner",
    "EnsemblePrediction",
    "MODEL_FACTORIES",
    "ModelBank",
]
