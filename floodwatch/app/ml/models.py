"""
models.py — Shared data structures for the environmental risk pipeline.

Defines:
    • Observation      — one immutable weather sample
    • RiskLevel        — ordered hazard scale for current conditions
    • ForecastLevel    — separate 4-level scale for the 6-hour forecast
    • Trend            — short-term rainfall direction
    • TrainedForecast / FallbackForecast — tagged forecast variant
    • Snapshot         — the per-tick output consumed by the rendering layer

═══════════════════════════════════════════════════════════════════════════
TWO SEVERITY SCALES
═══════════════════════════════════════════════════════════════════════════

    RiskLevel (current + forecast)      ForecastLevel (forecast only)
    ──────────────────────────────      ─────────────────────────────
    SAFE < WATCH < WARNING < CRITICAL   LOW < MODERATE < HIGH < CRITICAL

The two are labelled independently in every payload.  A CRITICAL forecast
level does not imply a CRITICAL risk level (the risk thresholds on the
forecast value are 30 / 60 / 100 mm, the forecast-level ones 10 / 30 / 50).
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Union


# ═══════════════════════════════════════════════════════════════════════════
# Enums
# ═══════════════════════════════════════════════════════════════════════════

class RiskLevel(int, Enum):
    """Hazard level for current conditions, totally ordered."""
    SAFE = 0
    WATCH = 1
    WARNING = 2
    CRITICAL = 3


class ForecastLevel(int, Enum):
    """Severity of the predicted 6-hour rainfall."""
    LOW = 0
    MODERATE = 1
    HIGH = 2
    CRITICAL = 3


class Trend(str, Enum):
    INCREASING = "increasing"
    DECREASING = "decreasing"
    STABLE = "stable"


class ForecastSource(str, Enum):
    TRAINED = "trained"
    FALLBACK = "fallback"


class ObservationSource(str, Enum):
    """Who produced an observation.  Informational only."""
    API = "api"
    SYNTHETIC = "synthetic"
    MANUAL = "manual"


class FloodSource(str, Enum):
    AUTO = "auto"      # derived from observed rainfall
    MANUAL = "manual"  # slider override


# ═══════════════════════════════════════════════════════════════════════════
# Observation
# ═══════════════════════════════════════════════════════════════════════════

def _finite(value: float, default: float = 0.0) -> float:
    value = float(value)
    return value if math.isfinite(value) else default


@dataclass(frozen=True)
class Observation:
    """Single weather sample.  Build with `Observation.create` to get clamping."""
    rainfall_mm_hr: float
    humidity_pct: float
    temperature_c: float
    captured_at: datetime
    source: ObservationSource = ObservationSource.API

    @classmethod
    def create(
        cls,
        rainfall_mm_hr: float,
        humidity_pct: float,
        temperature_c: float,
        captured_at: Optional[datetime] = None,
        source: ObservationSource = ObservationSource.API,
    ) -> "Observation":
        """
        Construct an observation with out-of-range values clamped.

        Rainfall below 0 becomes 0, humidity is clamped to [0, 100],
        non-finite numbers fall back to neutral defaults.  Naive
        timestamps are taken to be UTC.
        """
        if captured_at is None:
            captured_at = datetime.now(timezone.utc)
        elif captured_at.tzinfo is None:
            captured_at = captured_at.replace(tzinfo=timezone.utc)

        return cls(
            rainfall_mm_hr=max(0.0, _finite(rainfall_mm_hr)),
            humidity_pct=min(100.0, max(0.0, _finite(humidity_pct))),
            temperature_c=_finite(temperature_c, 20.0),
            captured_at=captured_at,
            source=source,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rainfall_mm_hr": round(self.rainfall_mm_hr, 2),
            "humidity_pct": round(self.humidity_pct, 1),
            "temperature_c": round(self.temperature_c, 1),
            "captured_at": self.captured_at.isoformat(),
            "source": self.source.value,
        }


# ═══════════════════════════════════════════════════════════════════════════
# Forecast (tagged variant)
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class _ForecastBase:
    rainfall_6h: float
    confidence_pct: int
    trend: Trend
    level: ForecastLevel

    def _base_dict(self) -> Dict[str, Any]:
        return {
            "rainfall_6h": self.rainfall_6h,
            "confidence_pct": self.confidence_pct,
            "trend": self.trend.value,
            "level": self.level.name,
        }


@dataclass(frozen=True)
class TrainedForecast(_ForecastBase):
    """Forecast produced by a completed model parameter set."""
    model_version: int = 0
    padded: bool = False  # input was the current observation repeated

    @property
    def source(self) -> ForecastSource:
        return ForecastSource.TRAINED

    def to_dict(self) -> Dict[str, Any]:
        return {
            **self._base_dict(),
            "source": self.source.value,
            "model_version": self.model_version,
            "padded": self.padded,
        }


@dataclass(frozen=True)
class FallbackForecast(_ForecastBase):
    """Forecast from the linear estimator used before any model exists."""

    @property
    def source(self) -> ForecastSource:
        return ForecastSource.FALLBACK

    def to_dict(self) -> Dict[str, Any]:
        return {**self._base_dict(), "source": self.source.value}


Forecast = Union[TrainedForecast, FallbackForecast]


# ═══════════════════════════════════════════════════════════════════════════
# Snapshot
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Snapshot:
    """
    The sole externally visible output of one tick.

    Attributes
    ----------
    observation : Observation
        The sample that drove this tick.
    flood_percent : float
        Overlay elevation relative to terrain vertical extent, 0–100.
    risk_level : RiskLevel
        Classification of current rainfall and forecast rainfall.
    forecast : Forecast
        6-hour outlook (trained or fallback).
    forecast_flood_percent : float
        Flood percent implied by `forecast.rainfall_6h`, for the
        prediction marker on the flood slider.
    flood_source : FloodSource
        AUTO when `flood_percent` came from rainfall, MANUAL for a
        slider override.
    """
    observation: Observation
    flood_percent: float
    risk_level: RiskLevel
    forecast: Forecast
    forecast_flood_percent: float = 0.0
    flood_source: FloodSource = FloodSource.AUTO

    def to_dict(self) -> Dict[str, Any]:
        return {
            "observation": self.observation.to_dict(),
            "flood_percent": round(self.flood_percent, 2),
            "flood_source": self.flood_source.value,
            "risk_level": self.risk_level.name,
            "forecast": self.forecast.to_dict(),
            "forecast_flood_percent": round(self.forecast_flood_percent, 2),
        }
