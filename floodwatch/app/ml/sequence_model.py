"""
sequence_model.py — Learned sequence-to-value rainfall regressor.

Responsibilities:
    • Normalise (rainfall, humidity, temperature) sequences to fixed
      operating ranges
    • Build supervised (window → next rainfall) pairs from a history
    • Generate synthetic sequences for pre-training before real data exists
    • Build, incrementally fit and query the regressor

Architecture:
    Input  → (batch, seq_len, 3), flattened to (batch, seq_len · 3)
    Hidden → Dense(32, relu) → Dense(16, relu)
    Output → scalar, normalised rainfall (÷ 100 mm)

The regressor is scikit-learn's MLPRegressor driven through `partial_fit`,
so a retrain continues from the previous weights instead of starting over.
Each call to `fit_regressor` runs `epochs` full passes over the data.

Normalisation
=============
Features are scaled by fixed physical ranges, not by statistics of the
window, so a padded (constant) sequence still maps to meaningful inputs:

    rainfall     0 – 100 mm/h   → 0 – 1
    humidity     0 – 100 %      → 0 – 1
    temperature  0 – 40 °C      → 0 – 1
"""

from __future__ import annotations

import logging
import time
import warnings
from dataclasses import dataclass, field
from typing import Any, Dict, List, Sequence, Tuple

import numpy as np
from sklearn.exceptions import ConvergenceWarning
from sklearn.metrics import mean_absolute_error
from sklearn.neural_network import MLPRegressor

from floodwatch.app.core.errors import ModelTrainingError
from floodwatch.app.ml.models import Observation

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

SEQUENCE_FEATURES: List[str] = [
    "rainfall_mm_hr",
    "humidity_pct",
    "temperature_c",
]

N_FEATURES = len(SEQUENCE_FEATURES)

# (low, high) operating range per feature, same order as SEQUENCE_FEATURES
FEATURE_RANGES: Tuple[Tuple[float, float], ...] = (
    (0.0, 100.0),
    (0.0, 100.0),
    (0.0, 40.0),
)
RAINFALL_SCALE_MM = FEATURE_RANGES[0][1] - FEATURE_RANGES[0][0]

DEFAULT_SEQ_LEN = 10
DEFAULT_HIDDEN_UNITS = (32, 16)
DEFAULT_LR = 0.001
DEFAULT_BATCH_SIZE = 16


# ---------------------------------------------------------------------------
# Normalisation
# ---------------------------------------------------------------------------

_LOW = np.array([lo for lo, _ in FEATURE_RANGES], dtype=np.float64)
_SPAN = np.array([hi - lo for lo, hi in FEATURE_RANGES], dtype=np.float64)


def observation_vector(obs: Observation) -> np.ndarray:
    return np.array(
        [obs.rainfall_mm_hr, obs.humidity_pct, obs.temperature_c],
        dtype=np.float64,
    )


def normalise_sequence(observations: Sequence[Observation]) -> np.ndarray:
    """
    Convert observations to a normalised (len, N_FEATURES) matrix.

    Each feature is scaled independently by its operating range.
    """
    if not observations:
        return np.zeros((0, N_FEATURES), dtype=np.float64)
    raw = np.vstack([observation_vector(o) for o in observations])
    return (raw - _LOW) / _SPAN


def denormalise_rainfall(value: float) -> float:
    """Model output → rainfall in mm."""
    return float(value) * RAINFALL_SCALE_MM + FEATURE_RANGES[0][0]


# ---------------------------------------------------------------------------
# Data preparation
# ---------------------------------------------------------------------------


def build_training_pairs(
    observations: Sequence[Observation],
    seq_len: int = DEFAULT_SEQ_LEN,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Build sliding-window supervised pairs from a chronological history.

    For each start index i, the input is observations[i : i + seq_len]
    and the label is the normalised rainfall of observations[i + seq_len].
    Windows slide by one step.

    Returns
    -------
    X : np.ndarray, shape (n_samples, seq_len, N_FEATURES)
    y : np.ndarray, shape (n_samples,)

    Raises
    ------
    ModelTrainingError
        If the history cannot yield a single pair.
    """
    n = len(observations)
    if n < seq_len + 1:
        raise ModelTrainingError(
            "sequence_regressor",
            f"need at least {seq_len + 1} observations, have {n}",
            observations=n,
        )

    data = normalise_sequence(observations)
    X_seq, y_seq = [], []
    for i in range(n - seq_len):
        X_seq.append(data[i : i + seq_len])
        y_seq.append(data[i + seq_len, 0])
    return np.array(X_seq), np.array(y_seq)


def generate_synthetic_sequences(
    n_samples: int = 100,
    seq_len: int = DEFAULT_SEQ_LEN,
    seed: int = 42,
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Generate drifting rainfall sequences for pre-training.

    Each sequence starts from a random base rainfall (0–30 mm/h) that
    random-walks step to step; humidity and temperature are drawn from
    typical monsoon ranges.  The label is the base rainfall after the
    window plus a noisy, slightly upward-biased shift.

    Returns (X, y) already normalised.
    """
    rng = np.random.RandomState(seed)

    X = np.zeros((n_samples, seq_len, N_FEATURES), dtype=np.float64)
    y = np.zeros(n_samples, dtype=np.float64)

    for i in range(n_samples):
        base = rng.rand() * 30.0
        for j in range(seq_len):
            rainfall = base + (rng.rand() - 0.5) * 10.0
            humidity = 60.0 + rng.rand() * 30.0
            temperature = 20.0 + rng.rand() * 10.0
            X[i, j] = (np.array([rainfall, humidity, temperature]) - _LOW) / _SPAN
            base += (rng.rand() - 0.5) * 5.0

        future = (base + (rng.rand() - 0.3) * 15.0) / RAINFALL_SCALE_MM
        y[i] = max(0.0, future)

    return X, y


def _flatten(X: np.ndarray) -> np.ndarray:
    return X.reshape(X.shape[0], -1)


# ---------------------------------------------------------------------------
# Result container
# ---------------------------------------------------------------------------


@dataclass
class SequenceTrainResult:
    """Container for regressor training results."""

    model: Any
    loss: float = 0.0
    mae_mm: float = 0.0
    val_mae_mm: float = 0.0
    epochs_trained: int = 0
    n_samples: int = 0
    duration_ms: int = 0
    loss_curve: List[float] = field(default_factory=list)

    def summary(self) -> Dict[str, Any]:
        return {
            "loss": round(self.loss, 6),
            "mae_mm": round(self.mae_mm, 3),
            "val_mae_mm": round(self.val_mae_mm, 3),
            "epochs_trained": self.epochs_trained,
            "n_samples": self.n_samples,
            "duration_ms": self.duration_ms,
        }


# ---------------------------------------------------------------------------
# Model
# ---------------------------------------------------------------------------


def build_regressor(
    hidden_units: Tuple[int, ...] = DEFAULT_HIDDEN_UNITS,
    learning_rate: float = DEFAULT_LR,
    batch_size: int = DEFAULT_BATCH_SIZE,
    seed: int = 42,
) -> MLPRegressor:
    """Build an unfitted MLP regressor for flattened sequences."""
    return MLPRegressor(
        hidden_layer_sizes=hidden_units,
        activation="relu",
        solver="adam",
        learning_rate_init=learning_rate,
        batch_size=batch_size,
        alpha=1e-4,
        shuffle=True,
        random_state=seed,
    )


def fit_regressor(
    model: MLPRegressor,
    X: np.ndarray,
    y: np.ndarray,
    *,
    epochs: int = 10,
    validation_split: float = 0.0,
) -> SequenceTrainResult:
    """
    Run `epochs` incremental passes of `model` over (X, y).

    The model object is mutated; callers that need the previous weights
    intact must pass a copy.

    Parameters
    ----------
    model : MLPRegressor
    X : shape (n_samples, seq_len, n_features)
    y : shape (n_samples,), normalised rainfall
    epochs : int
        Number of passes.
    validation_split : float
        Fraction of trailing samples held out for the reported val MAE.

    Raises
    ------
    ModelTrainingError
        On empty data or non-finite loss.
    """
    if len(X) == 0:
        raise ModelTrainingError("sequence_regressor", "no training samples")

    start = time.perf_counter()
    X_flat = _flatten(X)

    split = len(X_flat)
    if validation_split > 0.0:
        split = max(1, int(len(X_flat) * (1.0 - validation_split)))
    X_train, y_train = X_flat[:split], y[:split]
    X_val, y_val = X_flat[split:], y[split:]

    losses: List[float] = []
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", ConvergenceWarning)
        for _ in range(max(1, epochs)):
            model.partial_fit(X_train, y_train)
            losses.append(float(model.loss_))

    if not np.isfinite(losses[-1]):
        raise ModelTrainingError("sequence_regressor", "loss diverged", loss=losses[-1])

    mae = mean_absolute_error(y_train, model.predict(X_train)) * RAINFALL_SCALE_MM
    val_mae = 0.0
    if len(X_val):
        val_mae = mean_absolute_error(y_val, model.predict(X_val)) * RAINFALL_SCALE_MM

    duration_ms = int((time.perf_counter() - start) * 1000)
    logger.info(
        "Sequence regressor trained — loss=%.5f  mae=%.2fmm  val_mae=%.2fmm  epochs=%d  samples=%d",
        losses[-1], mae, val_mae, len(losses), len(X_flat),
    )

    return SequenceTrainResult(
        model=model,
        loss=losses[-1],
        mae_mm=float(mae),
        val_mae_mm=float(val_mae),
        epochs_trained=len(losses),
        n_samples=len(X_flat),
        duration_ms=duration_ms,
        loss_curve=losses,
    )


# ---------------------------------------------------------------------------
# Inference
# ---------------------------------------------------------------------------


def predict_rainfall(model: MLPRegressor, window: np.ndarray) -> float:
    """
    Predict rainfall (mm) from one normalised window.

    Parameters
    ----------
    model : fitted MLPRegressor
    window : np.ndarray, shape (seq_len, N_FEATURES)

    Returns
    -------
    float
        Denormalised prediction, clamped to ≥ 0.
    """
    pred = model.predict(window.reshape(1, -1))
    return max(0.0, denormalise_rainfall(float(pred[0])))
