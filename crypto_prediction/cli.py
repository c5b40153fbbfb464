"""
CLI entry point for the crypto prediction engine.

Usage:
    # Train and save the engine for one symbol
    crypto-prediction train --symbol X:BTCUSD --epochs 100

    # Train several symbols in parallel
    crypto-prediction batch-train --symbols X:BTCUSD X:ETHUSD

    # Run one prediction cycle (loads or trains first)
    crypto-prediction predict --symbol X:BTCUSD

    # List saved engines
    crypto-prediction models

    # Start the periodic prediction scheduler
    crypto-prediction scheduler --interval 60
"""

import argparse
import logging
import sys
import time
from dataclasses import replace

from crypto_prediction.config import EngineConfig, config
from crypto_prediction.settings import settings
from crypto_prediction.utils.logging import configure_logging

logger = logging.getLogger(__name__)


def build_config(args: argparse.Namespace) -> EngineConfig:
    """Apply neural-network overrides from the command line."""
    overrides = {}
    if getattr(args, "epochs", None) is not None:
        overrides["epochs"] = args.epochs
    if getattr(args, "batch_size", None) is not None:
        overrides["batch_size"] = args.batch_size
    if getattr(args, "learning_rate", None) is not None:
        overrides["learning_rate"] = args.learning_rate
    if getattr(args, "hidden_units", None):
        overrides["hidden_units"] = tuple(args.hidden_units)
    if getattr(args, "dropout", None) is not None:
        overrides["dropout"] = args.dropout
    if not overrides:
        return config
    return replace(config, neural_net=replace(config.neural_net, **overrides))


def cmd_train(args: argparse.Namespace) -> None:
    """Train and save the engine for a single symbol."""
    from crypto_prediction.engine.registry import EngineRegistry

    registry = EngineRegistry(base_config=build_config(args))
    try:
        metrics = registry.train(args.symbol)
    finally:
        registry.shutdown()

    for name, m in metrics.items():
        logger.info(
            "[%s] MAE=%.4f  RMSE=%.4f  R2=%.4f  DirAcc=%.2f",
            name, m["mae"], m["rmse"], m["r_squared"], m["directional_accuracy"],
        )
    logger.info("Engine for %s trained and saved.", args.symbol)


def cmd_batch_train(args: argparse.Namespace) -> None:
    """Train several symbols on the worker pool."""
    from crypto_prediction.engine.registry import EngineRegistry

    registry = EngineRegistry(base_config=build_config(args), max_workers=args.workers)
    futures = {symbol: registry.submit_training(symbol) for symbol in args.symbols}

    failed = []
    try:
        for symbol, future in futures.items():
            try:
                metrics = future.result()
            except Exception as exc:
                logger.error("%s: training failed: %s", symbol, exc)
                failed.append(symbol)
                continue
            logger.info("%s: trained %s", symbol, sorted(metrics))
    finally:
        registry.shutdown()

    logger.info(
        "Batch training done: %d succeeded, %d failed.",
        len(futures) - len(failed), len(failed),
    )
    if failed:
        sys.exit(1)


def cmd_predict(args: argparse.Namespace) -> None:
    """Run one prediction cycle."""
    from crypto_prediction.engine.registry import EngineRegistry

    registry = EngineRegistry()
    try:
        result = registry.run_cycle(args.symbol)
    finally:
        registry.shutdown()

    prediction = result.prediction
    logger.info(
        "%s | Close=%.4f | Predicted=%.4f | Confidence=%.2f",
        result.symbol,
        result.current_price,
        prediction.ensemble,
        prediction.confidence,
    )
    for name, value in prediction.predictions.items():
        logger.info("  %-14s %.4f (weight %.3f)", name, value, prediction.weights.get(name, 0.0))


def cmd_models(args: argparse.Namespace) -> None:
    """List symbols with saved engines."""
    from crypto_prediction.engine.persistence import ModelStore

    store = ModelStore(config.paths.models_dir)
    entries = store.list_symbols()
    if not entries:
        logger.info("No saved models in %s.", config.paths.models_dir)
        return
    for entry in entries:
        logger.info(
            "%s | models=%s | last_training=%s | complete=%s",
            entry.get("symbol", entry["key"]),
            entry.get("models", []),
            entry.get("last_training"),
            entry["complete"],
        )


def cmd_scheduler(args: argparse.Namespace) -> None:
    """Start the prediction scheduler (runs in foreground)."""
    from crypto_prediction.engine.registry import EngineRegistry
    from crypto_prediction.realtime.scheduler import RetrainScheduler

    symbols = args.symbols or settings.get_tracked_symbols()
    registry = EngineRegistry()
    scheduler = RetrainScheduler(registry, symbols, interval_minutes=args.interval)

    if args.run:
        # Execute a single cycle immediately and exit
        result = scheduler.run_now("cycle", args.run)
        logger.info(
            "Task '%s' for %s %s (%.1fs)",
            result.task_name, result.symbol, result.status.value, result.duration_seconds,
        )
        if result.error:
            logger.error("Error: %s", result.error)
        registry.shutdown()
        return

    scheduler.start()
    logger.info("Scheduler running for %s. Press Ctrl+C to stop.", symbols)
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        logger.info("Shutting down scheduler...")
    finally:
        scheduler.stop()
        registry.shutdown()


def _add_training_overrides(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--epochs", type=int, default=None, help="Training epochs")
    parser.add_argument("--batch-size", type=int, default=None, dest="batch_size")
    parser.add_argument("--learning-rate", type=float, default=None, dest="learning_rate")
    parser.add_argument(
        "--hidden-units", type=int, nargs="+", default=None, dest="hidden_units",
        help="Hidden layer widths, e.g. 256 128 64 32",
    )
    parser.add_argument("--dropout", type=float, default=None)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Crypto price prediction engine CLI"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    # Train
    train_parser = subparsers.add_parser("train", help="Train and save one symbol")
    train_parser.add_argument(
        "--symbol", default=settings.default_symbol,
        help="Polygon ticker (default from settings)",
    )
    _add_training_overrides(train_parser)
    train_parser.set_defaults(func=cmd_train)

    # Batch train
    batch_parser = subparsers.add_parser("batch-train", help="Train several symbols")
    batch_parser.add_argument(
        "--symbols", nargs="+", default=settings.get_tracked_symbols(),
        help="Polygon tickers (default: tracked symbols)",
    )
    batch_parser.add_argument("--workers", type=int, default=2, help="Parallel trainings")
    _add_training_overrides(batch_parser)
    batch_parser.set_defaults(func=cmd_batch_train)

    # Predict
    predict_parser = subparsers.add_parser("predict", help="Run one prediction cycle")
    predict_parser.add_argument("--symbol", default=settings.default_symbol)
    predict_parser.set_defaults(func=cmd_predict)

    # Models
    models_parser = subparsers.add_parser("models", help="List saved engines")
    models_parser.set_defaults(func=cmd_models)

    # Scheduler
    sched_parser = subparsers.add_parser(
        "scheduler", help="Start the periodic prediction scheduler"
    )
    sched_parser.add_argument(
        "--symbols", nargs="+", default=None,
        help="Symbols to manage (default: tracked symbols)",
    )
    sched_parser.add_argument(
        "--interval", type=int, default=settings.cycle_interval_minutes,
        help="Minutes between cycles",
    )
    sched_parser.add_argument(
        "--run", type=str, default=None, metavar="SYMBOL",
        help="Run a single cycle for SYMBOL and exit",
    )
    sched_parser.set_defaults(func=cmd_scheduler)

    return parser


def main(argv: list[str] | None = None) -> None:
    configure_logging(settings.log_level, settings.log_file)
    args = build_parser().parse_args(argv)
    args.func(args)


if __name__ == "__main__":
    main()
