"""
forecast_engine.py — 6-hour rainfall forecast with a managed model lifecycle.

Provides, for every tick:
    • rainfall_6h        predicted rainfall (mm), ≥ 0
    • confidence_pct     data-sufficiency proxy, 0–100
    • trend              INCREASING / DECREASING / STABLE
    • level              ForecastLevel (LOW / MODERATE / HIGH / CRITICAL)
    • source             TRAINED or FALLBACK (tagged variant)

Model lifecycle:

    ┌────────────┐  start() / retrain   ┌──────────┐  success   ┌────────┐
    │ UNTRAINED  │ ───────────────────▶ │ TRAINING │ ─────────▶ │ READY  │
    └────────────┘                      └──────────┘            └────────┘
          ▲              failure, nothing ever trained │            │
          └────────────────────────────────────────────┘            │
                                  READY ──(retrain trigger)──▶ TRAINING
                                  failure keeps the previous parameters

Retraining policy (count based):
    Every observation appended while the history already holds at least
    `min_history` samples increments `observations_seen_since_last_train`.
    When the counter reaches `retrain_every` it resets and a retrain is
    submitted.  With the defaults (50 / 20) and 50 samples present, the
    first retrain fires exactly on the 70th observation.  A trigger that
    arrives while a retrain is running is skipped.

Concurrency:
    Training runs on a single worker thread and fits a *copy* of the
    current regressor.  The finished parameter set is swapped in with one
    reference assignment, so `predict` sees either the old or the new
    `ModelParams`, never a partially updated one, and never waits.

Fallback estimator (used until any training has completed):

    rain_6h = 0.6·rain + 0.2·(humidity/100 · 30) + 0.1·(30 − temp) + 0.1·(5·trend)
"""

from __future__ import annotations

import copy
import logging
import math
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Optional, Sequence

import numpy as np

from floodwatch.app.core.config import settings
from floodwatch.app.ml.history_window import HistoryWindow
from floodwatch.app.ml.models import (
    FallbackForecast,
    Forecast,
    Observation,
    TrainedForecast,
    Trend,
)
from floodwatch.app.ml.risk_classifier import forecast_level
from floodwatch.app.ml.sequence_model import (
    SequenceTrainResult,
    build_regressor,
    build_training_pairs,
    fit_regressor,
    generate_synthetic_sequences,
    normalise_sequence,
    predict_rainfall,
)

logger = logging.getLogger(__name__)


# ===================================================================
#  CONSTANTS
# ===================================================================

TREND_WINDOW = 10

# confidence = min(100, history_size × k)
CONFIDENCE_PER_OBS_TRAINED = 3.0
CONFIDENCE_PER_OBS_FALLBACK = 5.0

# Fallback estimator weights
FALLBACK_W_RAIN = 0.6
FALLBACK_W_HUMIDITY = 0.2
FALLBACK_W_TEMP_DEFICIT = 0.1
FALLBACK_W_TREND = 0.1
FALLBACK_REFERENCE_TEMP_C = 30.0


# ===================================================================
#  DATA STRUCTURES
# ===================================================================


class ModelReadiness(str, Enum):
    UNTRAINED = "untrained"
    TRAINING = "training"
    READY = "ready"


@dataclass(frozen=True)
class ModelParams:
    """One complete, immutable parameter set."""
    regressor: Any
    version: int
    n_samples: int
    trained_at: datetime
    mae_mm: float = 0.0
    origin: str = "retrain"  # "pretrain" | "retrain"


@dataclass
class EngineStatus:
    readiness: ModelReadiness
    history_size: int
    model_version: int
    observations_seen_since_last_train: int
    retrains_triggered: int
    retrains_skipped: int
    last_trained_at: Optional[datetime] = None
    last_error: Optional[str] = None
    last_training: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "readiness": self.readiness.value,
            "history_size": self.history_size,
            "model_version": self.model_version,
            "observations_seen_since_last_train": self.observations_seen_since_last_train,
            "retrains_triggered": self.retrains_triggered,
            "retrains_skipped": self.retrains_skipped,
            "last_trained_at": self.last_trained_at.isoformat() if self.last_trained_at else None,
            "last_error": self.last_error,
            "last_training": self.last_training,
        }


# ===================================================================
#  TREND
# ===================================================================


def rainfall_trend(observations: Sequence[Observation]) -> float:
    """Average first difference of rainfall (mm/h per step); 0 for < 2 samples."""
    if len(observations) < 2:
        return 0.0
    rain = np.array([o.rainfall_mm_hr for o in observations], dtype=np.float64)
    return float(np.diff(rain).mean())


def classify_trend(value: float) -> Trend:
    if value > 0:
        return Trend.INCREASING
    if value < 0:
        return Trend.DECREASING
    return Trend.STABLE


def _confidence(history_size: int, per_obs: float) -> int:
    return int(round(min(100.0, max(0.0, history_size * per_obs))))


# ===================================================================
#  ENGINE
# ===================================================================


class ForecastEngine:
    """
    Owns the HistoryWindow and the forecast model.

    Usage:
        engine = ForecastEngine()
        engine.start()                      # pre-train in the background
        engine.observe(obs)                 # append + maybe retrain
        forecast = engine.predict(obs)      # never blocks, never raises
        engine.shutdown()

    Pass `background=False` to run every training job inline on the
    calling thread.
    """

    def __init__(
        self,
        history: Optional[HistoryWindow] = None,
        *,
        seq_len: int = settings.FORECAST_SEQUENCE_LENGTH,
        min_history: int = settings.FORECAST_MIN_HISTORY,
        retrain_every: int = settings.FORECAST_RETRAIN_EVERY,
        retrain_min_interval_s: float = settings.FORECAST_RETRAIN_MIN_INTERVAL_S,
        pretrain_samples: int = settings.FORECAST_PRETRAIN_SAMPLES,
        pretrain_epochs: int = settings.FORECAST_PRETRAIN_EPOCHS,
        retrain_epochs: int = settings.FORECAST_RETRAIN_EPOCHS,
        seed: int = settings.FORECAST_SEED,
        background: bool = True,
    ):
        self.history = history if history is not None else HistoryWindow()
        self.seq_len = seq_len
        self.min_history = min_history
        self.retrain_every = retrain_every
        self.retrain_min_interval_s = retrain_min_interval_s
        self.pretrain_samples = pretrain_samples
        self.pretrain_epochs = pretrain_epochs
        self.retrain_epochs = retrain_epochs
        self.seed = seed
        self.background = background

        self._params: Optional[ModelParams] = None
        self._readiness = ModelReadiness.UNTRAINED
        self._seen_since_train = 0
        self._retrains_triggered = 0
        self._retrains_skipped = 0
        self._last_error: Optional[str] = None
        self._last_training: Optional[Dict[str, Any]] = None
        self._last_train_finished: Optional[float] = None  # monotonic seconds
        self._training_future: Optional[Future] = None

        self._lock = threading.Lock()
        self._executor: Optional[ThreadPoolExecutor] = None
        if background:
            self._executor = ThreadPoolExecutor(
                max_workers=1, thread_name_prefix="forecast-train",
            )

    # ---- State accessors ----

    @property
    def readiness(self) -> ModelReadiness:
        return self._readiness

    @property
    def params(self) -> Optional[ModelParams]:
        return self._params

    @property
    def observations_seen_since_last_train(self) -> int:
        return self._seen_since_train

    @property
    def retrains_triggered(self) -> int:
        return self._retrains_triggered

    def status(self) -> EngineStatus:
        params = self._params
        return EngineStatus(
            readiness=self._readiness,
            history_size=len(self.history),
            model_version=params.version if params else 0,
            observations_seen_since_last_train=self._seen_since_train,
            retrains_triggered=self._retrains_triggered,
            retrains_skipped=self._retrains_skipped,
            last_trained_at=params.trained_at if params else None,
            last_error=self._last_error,
            last_training=self._last_training,
        )

    # ---- Lifecycle ----

    def start(self) -> Optional[Future]:
        """Submit initial pre-training on synthetic sequences."""
        with self._lock:
            if self._params is not None or self._readiness == ModelReadiness.TRAINING:
                return None
            self._readiness = ModelReadiness.TRAINING
        logger.info("Forecast model pre-training submitted (%d synthetic sequences)",
                    self.pretrain_samples)
        return self._submit(self._run_pretrain)

    def wait_for_training(self, timeout: Optional[float] = None) -> None:
        """Block until the in-flight training job (if any) has finished."""
        future = self._training_future
        if future is not None:
            future.result(timeout=timeout)

    def shutdown(self, wait: bool = True) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=wait)

    # ---- Ingestion ----

    def observe(self, obs: Observation) -> Optional[Future]:
        """
        Append an observation and apply the retraining policy.

        Returns the training Future when this observation triggered a
        retrain, otherwise None.  An observation already outside the
        retention horizon is dropped by the history and not counted.
        """
        size_before = len(self.history)
        kept = self.history.append(obs)

        with self._lock:
            if not kept or size_before < self.min_history:
                return None
            self._seen_since_train += 1
            if self._seen_since_train < self.retrain_every:
                return None
            self._seen_since_train = 0

        return self._trigger_retrain()

    def _trigger_retrain(self) -> Optional[Future]:
        with self._lock:
            if self._readiness == ModelReadiness.TRAINING:
                self._retrains_skipped += 1
                logger.info("Retrain skipped — previous training still running")
                return None

            if (
                self.retrain_min_interval_s > 0
                and self._last_train_finished is not None
                and time.monotonic() - self._last_train_finished < self.retrain_min_interval_s
            ):
                self._retrains_skipped += 1
                logger.info("Retrain skipped — last training finished under %.0fs ago",
                            self.retrain_min_interval_s)
                return None

            self._readiness = ModelReadiness.TRAINING
            self._retrains_triggered += 1

        # Only observations inside the retention horizon are ever in the window.
        window = self.history.snapshot()
        logger.info("Retrain #%d submitted on %d observations",
                    self._retrains_triggered, len(window))
        return self._submit(lambda: self._run_retrain(window))

    def _submit(self, job: Callable[[], Optional[SequenceTrainResult]]) -> Future:
        if self._executor is not None:
            future = self._executor.submit(job)
        else:
            future = Future()
            future.set_result(job())
        self._training_future = future
        return future

    # ---- Training jobs (run on the worker thread) ----

    def _run_pretrain(self) -> Optional[SequenceTrainResult]:
        try:
            X, y = generate_synthetic_sequences(
                n_samples=self.pretrain_samples, seq_len=self.seq_len, seed=self.seed,
            )
            model = build_regressor(seed=self.seed)
            result = fit_regressor(
                model, X, y, epochs=self.pretrain_epochs, validation_split=0.2,
            )
        except Exception as exc:
            logger.exception("Forecast model pre-training failed")
            self._on_training_failed(exc)
            return None

        self._install(result, origin="pretrain")
        return result

    def _run_retrain(self, window: Sequence[Observation]) -> Optional[SequenceTrainResult]:
        try:
            X, y = build_training_pairs(window, seq_len=self.seq_len)
            current = self._params
            if current is not None:
                model = copy.deepcopy(current.regressor)
            else:
                model = build_regressor(seed=self.seed)
            result = fit_regressor(model, X, y, epochs=self.retrain_epochs)
        except Exception as exc:
            logger.exception("Forecast model retrain failed; keeping previous parameters")
            self._on_training_failed(exc)
            return None

        self._install(result, origin="retrain")
        return result

    def _install(self, result: SequenceTrainResult, origin: str) -> None:
        with self._lock:
            previous = self._params
            new_params = ModelParams(
                regressor=result.model,
                version=(previous.version if previous else 0) + 1,
                n_samples=result.n_samples,
                trained_at=datetime.now(timezone.utc),
                mae_mm=result.mae_mm,
                origin=origin,
            )
            self._params = new_params
            self._readiness = ModelReadiness.READY
            self._last_error = None
            self._last_training = result.summary()
            self._last_train_finished = time.monotonic()
        logger.info(
            "Forecast model v%d ready (%s, %d samples)",
            new_params.version, origin, new_params.n_samples,
            extra={"model_version": new_params.version, "duration_ms": result.duration_ms},
        )

    def _on_training_failed(self, exc: BaseException) -> None:
        with self._lock:
            self._last_error = f"{type(exc).__name__}: {exc}"
            self._readiness = (
                ModelReadiness.READY if self._params is not None
                else ModelReadiness.UNTRAINED
            )
            self._last_train_finished = time.monotonic()

    # ---- Prediction ----

    def trend(self) -> float:
        return rainfall_trend(self.history.recent(TREND_WINDOW))

    def predict(self, current: Observation) -> Forecast:
        """
        Forecast rainfall 6 hours ahead.

        Uses the last completed parameter set; falls back to the linear
        estimator only when no training has ever completed (or inference
        fails).  Never raises.
        """
        params = self._params
        history_size = len(self.history)
        trend_value = self.trend()

        if params is None:
            return self._fallback(current, trend_value, history_size)

        recent = self.history.recent(self.seq_len)
        padded = len(recent) < self.seq_len
        if padded:
            recent = [current] * self.seq_len

        try:
            rainfall = predict_rainfall(params.regressor, normalise_sequence(recent))
        except Exception:
            logger.exception("Model v%d inference failed; using fallback estimator",
                             params.version)
            return self._fallback(current, trend_value, history_size)

        if not math.isfinite(rainfall):
            logger.warning("Model v%d produced a non-finite forecast; using fallback",
                           params.version)
            return self._fallback(current, trend_value, history_size)

        rainfall_6h = round(max(0.0, rainfall), 1)
        return TrainedForecast(
            rainfall_6h=rainfall_6h,
            confidence_pct=_confidence(history_size, CONFIDENCE_PER_OBS_TRAINED),
            trend=classify_trend(trend_value),
            level=forecast_level(rainfall_6h),
            model_version=params.version,
            padded=padded,
        )

    def _fallback(
        self,
        current: Observation,
        trend_value: float,
        history_size: int,
    ) -> FallbackForecast:
        estimate = (
            current.rainfall_mm_hr * FALLBACK_W_RAIN
            + (current.humidity_pct / 100.0) * 30.0 * FALLBACK_W_HUMIDITY
            + (FALLBACK_REFERENCE_TEMP_C - current.temperature_c) * FALLBACK_W_TEMP_DEFICIT
            + trend_value * 5.0 * FALLBACK_W_TREND
        )
        rainfall_6h = round(max(0.0, estimate), 1)
        return FallbackForecast(
            rainfall_6h=rainfall_6h,
            confidence_pct=_confidence(history_size, CONFIDENCE_PER_OBS_FALLBACK),
            trend=classify_trend(trend_value),
            level=forecast_level(rainfall_6h),
        )
