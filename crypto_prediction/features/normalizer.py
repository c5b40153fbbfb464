"""
Per-column min/max normalization.

A Scaler is fit once on the training matrix and reused verbatim for
every later transform. Inference never refits: refitting per call would
make predictions made at different times incomparable.
"""

import hashlib
import json
import logging
from dataclasses import dataclass

import numpy as np

from crypto_prediction.errors import (
    InsufficientDataError,
    LengthMismatchError,
    ShapeMismatchError,
)

logger = logging.getLogger(__name__)


@dataclass
class Scaler:
    """Per-column minimum and maximum of a training matrix."""

    min: np.ndarray
    max: np.ndarray

    @property
    def width(self) -> int:
        return int(self.min.shape[0])

    @property
    def range(self) -> np.ndarray:
        return self.max - self.min

    def to_dict(self) -> dict:
        return {"min": self.min.tolist(), "max": self.max.tolist()}

    @classmethod
    def from_dict(cls, data: dict) -> "Scaler":
        return cls(
            min=np.asarray(data["min"], dtype=np.float64),
            max=np.asarray(data["max"], dtype=np.float64),
        )

    def checksum(self) -> str:
        """SHA-256 of the canonical JSON form.

        Used to verify a persisted scaler is restored exactly.
        """
        payload = json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Scaler):
            return NotImplemented
        return np.array_equal(self.min, other.min) and np.array_equal(
            self.max, other.max
        )


class Normalizer:
    """Fits and applies min/max scalers."""

    @staticmethod
    def fit(matrix) -> Scaler:
        """Compute per-column min and max.

        Raises:
            InsufficientDataError: if the matrix has no rows.
            LengthMismatchError: if rows have different lengths.
        """
        rows = _as_matrix(matrix)
        values = np.asarray(rows, dtype=np.float64)
        scaler = Scaler(min=values.min(axis=0), max=values.max(axis=0))
        degenerate = int(np.sum(scaler.range == 0))
        logger.debug(
            "[Normalizer] Fit %d columns on %d rows (%d constant).",
            scaler.width,
            values.shape[0],
            degenerate,
        )
        return scaler

    @staticmethod
    def transform(matrix, scaler: Scaler) -> np.ndarray:
        """Map each column to (x - min) / (max - min).

        Constant columns map to 0. Values outside the fitted range are not
        clipped.

        Raises:
            ShapeMismatchError: if the row width differs from the scaler.
        """
        values = np.asarray(_as_matrix(matrix), dtype=np.float64)
        if values.shape[1] != scaler.width:
            raise ShapeMismatchError(scaler.width, values.shape[1])

        span = scaler.range
        degenerate = span == 0
        safe_span = np.where(degenerate, 1.0, span)
        scaled = (values - scaler.min) / safe_span
        scaled[:, degenerate] = 0.0
        return scaled

    @staticmethod
    def inverse_transform(value: float, scaler: Scaler, column: int) -> float:
        """Map a normalized value in ``column`` back to its original scale."""
        span = scaler.max[column] - scaler.min[column]
        if span == 0:
            return float(scaler.min[column])
        return float(value * span + scaler.min[column])


def _as_matrix(matrix) -> list | np.ndarray:
    """Validate a 2-D matrix given as an ndarray or a list of rows."""
    if isinstance(matrix, np.ndarray):
        if matrix.ndim == 1:
            matrix = matrix.reshape(1, -1)
        if matrix.shape[0] == 0:
            raise InsufficientDataError(0, 0)
        return matrix

    rows = list(matrix)
    if not rows:
        raise InsufficientDataError(0, 0)
    width = len(rows[0])
    for i, row in enumerate(rows):
        if len(row) != width:
            raise LengthMismatchError(i, width, len(row))
    return rows
