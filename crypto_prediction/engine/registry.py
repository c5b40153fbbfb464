"""
Registry of prediction engines keyed by symbol.

Owns one engine per symbol together with a lock that serializes every
mutating call on that engine. Engines for different symbols share no
state and run in parallel. Training is CPU bound, so it can be offloaded
to a worker pool with ``submit_training``.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable

from crypto_prediction.config import EngineConfig, config
from crypto_prediction.engine.engine import PredictionEngine
from crypto_prediction.engine.persistence import ModelStore, normalize_symbol
from crypto_prediction.engine.state import CycleResult, EngineStatus
from crypto_prediction.errors import PersistenceError
from crypto_prediction.market.source import MarketDataSource

logger = logging.getLogger(__name__)


@dataclass
class EngineHandle:
    """An engine and the lock guarding it."""

    engine: PredictionEngine
    lock: threading.Lock = field(default_factory=threading.Lock)


class EngineRegistry:
    """Explicit owner of per-symbol engines.

    Usage:
        registry = EngineRegistry()
        result = registry.run_cycle("X:BTCUSD")
        future = registry.submit_training("X:ETHUSD")
        registry.shutdown()
    """

    def __init__(
        self,
        base_config: EngineConfig | None = None,
        source: MarketDataSource | None = None,
        store: ModelStore | None = None,
        engine_factory: Callable[[EngineConfig], PredictionEngine] | None = None,
        max_workers: int = 2,
    ) -> None:
        self._base_config = base_config or config
        self._source = source
        self._store = store or ModelStore(self._base_config.paths.models_dir)
        self._engine_factory = engine_factory or self._default_factory
        self._handles: dict[str, EngineHandle] = {}
        self._registry_lock = threading.Lock()
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="engine-train"
        )

    def _default_factory(self, cfg: EngineConfig) -> PredictionEngine:
        return PredictionEngine(
            cfg, source=self._source, store=self._store, autosave=True
        )

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get_or_create(self, symbol: str) -> EngineHandle:
        key = normalize_symbol(symbol)
        with self._registry_lock:
            handle = self._handles.get(key)
            if handle is None:
                engine = self._engine_factory(self._base_config.for_symbol(symbol))
                handle = EngineHandle(engine=engine)
                self._handles[key] = handle
                logger.info("[Registry] Created engine for %s", symbol)
            return handle

    def get(self, symbol: str) -> PredictionEngine | None:
        with self._registry_lock:
            handle = self._handles.get(normalize_symbol(symbol))
        return handle.engine if handle else None

    def remove(self, symbol: str) -> bool:
        """Drop an engine from memory. Saved models are kept on disk."""
        key = normalize_symbol(symbol)
        with self._registry_lock:
            handle = self._handles.pop(key, None)
        if handle is None:
            return False
        # Wait for any in-flight call on this engine to finish
        with handle.lock:
            pass
        logger.info("[Registry] Removed engine for %s", symbol)
        return True

    def symbols(self) -> list[str]:
        with self._registry_lock:
            return [h.engine.symbol for h in self._handles.values()]

    def status(self) -> dict:
        with self._registry_lock:
            handles = list(self._handles.values())
        return {
            "total_engines": len(handles),
            "engines": [
                {
                    "symbol": h.engine.symbol,
                    "busy": h.lock.locked(),
                    **h.engine.model_info(),
                }
                for h in handles
            ],
        }

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def train(self, symbol: str) -> dict[str, dict]:
        """Initialize, train and save the engine for ``symbol`` (blocking)."""
        handle = self.get_or_create(symbol)
        with handle.lock:
            return self._train_locked(handle.engine)

    def submit_training(self, symbol: str) -> Future:
        """Train on the worker pool. The future resolves to held-out metrics."""
        logger.info("[Registry] Queued training for %s", symbol)
        return self._executor.submit(self.train, symbol)

    def run_cycle(self, symbol: str) -> CycleResult:
        """Run a prediction cycle, loading or training the engine first.

        A saved engine is loaded from disk when available. When nothing is
        saved, or the saved engine does not match the current configuration,
        the engine is trained and saved.
        """
        handle = self.get_or_create(symbol)
        with handle.lock:
            engine = handle.engine
            if engine.status is not EngineStatus.TRAINED:
                if self._store.exists(symbol):
                    logger.info("[Registry] Loading saved models for %s", symbol)
                    try:
                        engine.load()
                    except PersistenceError as exc:
                        logger.warning(
                            "[Registry] Saved models for %s are unusable (%s); retraining",
                            symbol,
                            exc.message,
                        )
                        self._train_locked(engine)
                else:
                    self._train_locked(engine)
            return engine.run_prediction_cycle()

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
        logger.info("[Registry] Shut down.")

    @staticmethod
    def _train_locked(engine: PredictionEngine) -> dict[str, dict]:
        if engine.status is EngineStatus.UNINITIALIZED:
            engine.initialize_models()
        metrics = engine.train_models()
        engine.save()
        return metrics
