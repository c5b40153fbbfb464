"""
Utilities sub-package.

- `CacheClient`: Redis + in-memory fallback, TTL-aware bar cache
- `PerformanceTracker`: prediction history, rolling accuracy, retrain trigger
"""

from crypto_prediction.utils.cache import CacheClient
from crypto_prediction.utils.metrics import (
    ModelMetrics,
    PerformanceTracker,
    PredictionRecord,
    compute_metrics,
)

__all__ = [
    "CacheClient",
    "ModelMetrics",
    "PerformanceTracker",
    "PredictionRecord",
    "compute_metrics",
]
