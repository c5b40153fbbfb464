"""
On-disk store for trained engines.

Layout, keyed by normalized symbol (``X:BTCUSD`` -> ``X_BTCUSD``):

    <models_dir>/<KEY>/
        metadata.json         engine state, scaler, config, checksum
        neural_net/           one directory per model kind
        random_forest/

A save is written to a staging directory first and then swapped in, so a
crash mid-save never leaves a half-written engine behind.
"""

import json
import logging
import shutil
from datetime import datetime, timezone
from pathlib import Path

from crypto_prediction.errors import PersistenceError
from crypto_prediction.models.bank import ModelBank

logger = logging.getLogger(__name__)

METADATA_FILE = "metadata.json"


def normalize_symbol(symbol: str) -> str:
    """Storage key for a symbol."""
    return symbol.strip().upper().replace(":", "_").replace("/", "_")


class ModelStore:
    """Saves and loads model artifacts plus engine metadata."""

    def __init__(self, base_dir: Path | str) -> None:
        self._base_dir = Path(base_dir)

    @property
    def base_dir(self) -> Path:
        return self._base_dir

    def path_for(self, symbol: str) -> Path:
        return self._base_dir / normalize_symbol(symbol)

    def exists(self, symbol: str) -> bool:
        return (self.path_for(symbol) / METADATA_FILE).is_file()

    def save(self, symbol: str, bank: ModelBank, metadata: dict) -> Path:
        """Persist every model in ``bank`` and the engine metadata.

        Raises:
            PersistenceError: on any I/O or serialization failure.
        """
        target = self.path_for(symbol)
        staging = target.with_name(target.name + ".tmp")
        try:
            if staging.exists():
                shutil.rmtree(staging)
            staging.mkdir(parents=True)

            for model in bank.models:
                model.save_model(staging / model.kind)

            payload = dict(metadata)
            payload["models"] = bank.names
            payload["saved_at"] = datetime.now(timezone.utc).isoformat()
            with open(staging / METADATA_FILE, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2)

            if target.exists():
                shutil.rmtree(target)
            staging.rename(target)
        except PersistenceError:
            raise
        except Exception as exc:
            raise PersistenceError(symbol, str(exc)) from exc

        logger.info("[Store] Saved %s models to %s", symbol, target)
        return target

    def load_metadata(self, symbol: str) -> dict:
        path = self.path_for(symbol) / METADATA_FILE
        if not path.is_file():
            raise PersistenceError(symbol, f"no saved engine at {path.parent}")
        try:
            with open(path, encoding="utf-8") as f:
                return json.load(f)
        except (OSError, ValueError) as exc:
            raise PersistenceError(symbol, f"unreadable metadata: {exc}") from exc

    def load(self, symbol: str, bank: ModelBank) -> dict:
        """Load artifacts into the models of ``bank``.

        Every model in the bank must have been saved.

        Returns:
            The stored metadata.

        Raises:
            PersistenceError: if metadata or any model artifact is missing
                or unreadable.
        """
        metadata = self.load_metadata(symbol)
        base = self.path_for(symbol)
        saved = set(metadata.get("models") or [])

        for model in bank.models:
            model_dir = base / model.kind
            if model.kind not in saved or not model_dir.is_dir():
                raise PersistenceError(symbol, f"model '{model.kind}' was not saved")
            try:
                model.load_model(model_dir)
            except Exception as exc:
                raise PersistenceError(
                    symbol, f"cannot load '{model.kind}': {exc}"
                ) from exc

        logger.info("[Store] Loaded %s models from %s", symbol, base)
        return metadata

    def delete(self, symbol: str) -> bool:
        target = self.path_for(symbol)
        if not target.exists():
            return False
        shutil.rmtree(target)
        logger.info("[Store] Deleted %s", target)
        return True

    def list_symbols(self) -> list[dict]:
        """Saved engines with basic completeness info."""
        if not self._base_dir.is_dir():
            return []
        entries = []
        for path in sorted(self._base_dir.iterdir()):
            if not path.is_dir() or path.name.endswith(".tmp"):
                continue
            meta_path = path / METADATA_FILE
            entry = {"key": path.name, "path": str(path), "complete": False}
            if meta_path.is_file():
                try:
                    with open(meta_path, encoding="utf-8") as f:
                        meta = json.load(f)
                except (OSError, ValueError):
                    logger.warning("[Store] Unreadable metadata in %s", path)
                else:
                    models = meta.get("models") or []
                    entry.update(
                        symbol=meta.get("symbol", path.name),
                        models=models,
                        last_training=(meta.get("state") or {}).get("last_training"),
                        complete=all((path / m).is_dir() for m in models),
                    )
            entries.append(entry)
        return entries
