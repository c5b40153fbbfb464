"""
Scheduler for periodic prediction cycles.

Uses APScheduler to run one prediction cycle per tracked symbol at a
fixed interval. Each cycle performs the engine's own retrain check, so
self-learning cadence stays in-process and keyed on the engine's
``last_retrain`` timestamp rather than on a durable job queue.

Tasks:
- **cycle**: run a prediction cycle (load/train on first use, retrain if due)
- **train**: force a full retrain and save
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from crypto_prediction.engine.registry import EngineRegistry

logger = logging.getLogger(__name__)


class TaskStatus(Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class TaskResult:
    """Result of a scheduled task execution."""

    task_name: str
    status: TaskStatus
    started_at: str
    symbol: str | None = None
    finished_at: str | None = None
    duration_seconds: float = 0.0
    details: dict = field(default_factory=dict)
    error: str | None = None


class RetrainScheduler:
    """Runs prediction cycles for tracked symbols in background threads.

    Usage:
        scheduler = RetrainScheduler(registry, ["X:BTCUSD"], interval_minutes=60)
        scheduler.start()
        scheduler.run_now("cycle", "X:BTCUSD")
        scheduler.stop()
    """

    def __init__(
        self,
        registry: EngineRegistry,
        symbols: list[str],
        interval_minutes: int = 60,
        max_history: int = 200,
    ) -> None:
        self._registry = registry
        self._symbols = list(symbols)
        self._interval = interval_minutes
        self._running = False
        self._task_history: list[TaskResult] = []
        self._max_history = max_history
        self._lock = threading.Lock()
        self._scheduler: BackgroundScheduler | None = None

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def task_history(self) -> list[TaskResult]:
        with self._lock:
            return list(self._task_history)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the scheduler with one cycle job per symbol."""
        if self._running:
            logger.warning("Scheduler already running.")
            return

        self._scheduler = BackgroundScheduler(
            timezone="UTC",
            job_defaults={"coalesce": True, "max_instances": 1},
        )
        for symbol in self._symbols:
            self._scheduler.add_job(
                self._task_cycle,
                IntervalTrigger(minutes=self._interval),
                args=[symbol],
                id=f"cycle:{symbol}",
                name=f"Prediction cycle {symbol}",
                next_run_time=datetime.now(timezone.utc),
            )
        self._scheduler.start()
        self._running = True
        logger.info(
            "RetrainScheduler started with %d jobs (every %d min).",
            len(self._scheduler.get_jobs()),
            self._interval,
        )

    def stop(self) -> None:
        """Gracefully stop the scheduler."""
        self._running = False
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
        logger.info("RetrainScheduler stopped.")

    def run_now(self, task_name: str, symbol: str) -> TaskResult:
        """Execute a named task immediately (blocking).

        Args:
            task_name: 'cycle' or 'train'.
            symbol: Symbol to run the task for.
        """
        task_map: dict[str, Callable[[str], TaskResult]] = {
            "cycle": self._task_cycle,
            "train": self._task_train,
        }
        fn = task_map.get(task_name)
        if fn is None:
            return TaskResult(
                task_name=task_name,
                status=TaskStatus.FAILED,
                started_at=datetime.now(timezone.utc).isoformat(),
                symbol=symbol,
                error=f"Unknown task: {task_name}. "
                      f"Available: {list(task_map.keys())}",
            )
        return fn(symbol)

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    def _task_cycle(self, symbol: str) -> TaskResult:
        """Run one prediction cycle, retraining first when due."""

        def _cycle() -> dict:
            result = self._registry.run_cycle(symbol)
            return {
                "current_price": result.current_price,
                "ensemble": result.prediction.ensemble,
                "confidence": result.prediction.confidence,
                "last_retrain": result.model_info.get("last_retrain"),
            }

        return self._execute("cycle", symbol, _cycle)

    def _task_train(self, symbol: str) -> TaskResult:
        """Retrain and save the engine for ``symbol``."""
        return self._execute(
            "train", symbol, lambda: {"metrics": self._registry.train(symbol)}
        )

    def _execute(
        self, task_name: str, symbol: str, fn: Callable[[], dict[str, Any]]
    ) -> TaskResult:
        start = time.monotonic()
        started_at = datetime.now(timezone.utc).isoformat()
        try:
            details = fn()
            task_result = TaskResult(
                task_name=task_name,
                status=TaskStatus.COMPLETED,
                started_at=started_at,
                symbol=symbol,
                finished_at=datetime.now(timezone.utc).isoformat(),
                duration_seconds=round(time.monotonic() - start, 2),
                details=details,
            )
        except Exception as exc:
            task_result = TaskResult(
                task_name=task_name,
                status=TaskStatus.FAILED,
                started_at=started_at,
                symbol=symbol,
                finished_at=datetime.now(timezone.utc).isoformat(),
                duration_seconds=round(time.monotonic() - start, 2),
                error=str(exc),
            )
            logger.exception("Scheduled %s for %s failed.", task_name, symbol)

        self._record_result(task_result)
        return task_result

    def _record_result(self, result: TaskResult) -> None:
        with self._lock:
            self._task_history.append(result)
            if len(self._task_history) > self._max_history:
                self._task_history = self._task_history[-self._max_history:]

    # ------------------------------------------------------------------
    # Status & introspection
    # ------------------------------------------------------------------

    def get_scheduled_jobs(self) -> list[dict]:
        """Return info about all scheduled jobs."""
        if self._scheduler is None:
            return []
        return [
            {
                "id": job.id,
                "name": job.name,
                "next_run": str(job.next_run_time),
                "trigger": str(job.trigger),
            }
            for job in self._scheduler.get_jobs()
        ]

    def get_status(self) -> dict:
        """Return the scheduler status summary."""
        recent = self.task_history[-10:]
        return {
            "running": self._running,
            "symbols": list(self._symbols),
            "interval_minutes": self._interval,
            "jobs": self.get_scheduled_jobs(),
            "recent_tasks": [
                {
                    "task": r.task_name,
                    "symbol": r.symbol,
                    "status": r.status.value,
                    "duration": r.duration_seconds,
                    "started_at": r.started_at,
                    "error": r.error,
                }
                for r in recent
            ],
        }
