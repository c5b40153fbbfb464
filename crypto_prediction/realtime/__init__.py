"""
Real-time prediction cycles.

- **RetrainScheduler**: APScheduler-based runner of periodic prediction
  cycles per symbol; each cycle retrains first when a retrain is due.
"""

from crypto_prediction.realtime.scheduler import RetrainScheduler, TaskResult, TaskStatus

__all__ = [
    "RetrainScheduler",
    "TaskResult",
    "TaskStatus",
]
