"""
risk_classifier.py — Threshold classification of rainfall into hazard levels.

═══════════════════════════════════════════════════════════════════════════
CURRENT-CONDITION RISK (RiskLevel)
═══════════════════════════════════════════════════════════════════════════

    Level       current rainfall (mm/h)     OR   6h forecast (mm)
    ─────────   ───────────────────────          ────────────────
    CRITICAL    ≥ 50                              ≥ 100
    WARNING     ≥ 30                              ≥ 60
    WATCH       ≥ 10                              ≥ 30
    SAFE        otherwise

Thresholds are evaluated in descending severity and the first match wins.
Either signal alone can escalate: a high current reading is never
down-graded by a low forecast, and vice versa.

═══════════════════════════════════════════════════════════════════════════
FORECAST LEVEL (ForecastLevel)
═══════════════════════════════════════════════════════════════════════════

    ≥ 50 CRITICAL · ≥ 30 HIGH · ≥ 10 MODERATE · else LOW

═══════════════════════════════════════════════════════════════════════════
FLOOD SLIDER STATUS
═══════════════════════════════════════════════════════════════════════════

    < 30 % SAFE · < 50 % WATCH · < 70 % WARNING · else CRITICAL

All functions are pure.  Negative or non-finite inputs are clamped to 0.
"""

from __future__ import annotations

import math
from typing import Dict, Tuple

from floodwatch.app.ml.models import ForecastLevel, RiskLevel

# ═══════════════════════════════════════════════════════════════════════════
# Thresholds: (level, current mm/h, forecast mm), most severe first
# ═══════════════════════════════════════════════════════════════════════════

RISK_THRESHOLDS: Tuple[Tuple[RiskLevel, float, float], ...] = (
    (RiskLevel.CRITICAL, 50.0, 100.0),
    (RiskLevel.WARNING, 30.0, 60.0),
    (RiskLevel.WATCH, 10.0, 30.0),
)

FORECAST_THRESHOLDS: Tuple[Tuple[ForecastLevel, float], ...] = (
    (ForecastLevel.CRITICAL, 50.0),
    (ForecastLevel.HIGH, 30.0),
    (ForecastLevel.MODERATE, 10.0),
)

FLOOD_PERCENT_THRESHOLDS: Tuple[Tuple[RiskLevel, float], ...] = (
    (RiskLevel.SAFE, 30.0),
    (RiskLevel.WATCH, 50.0),
    (RiskLevel.WARNING, 70.0),
)

# Presentation hints for the rendering layer (colour, message).
RISK_PRESENTATION: Dict[RiskLevel, Dict[str, str]] = {
    RiskLevel.SAFE: {"color": "#44ff44", "message": "Safe"},
    RiskLevel.WATCH: {"color": "#ffff44", "message": "Watch: monitor conditions"},
    RiskLevel.WARNING: {"color": "#ff8844", "message": "Heavy rain advisory in effect"},
    RiskLevel.CRITICAL: {"color": "#ff4444", "message": "Heavy rain warning: prepare to evacuate"},
}


def _non_negative(value: float) -> float:
    value = float(value)
    if not math.isfinite(value):
        return 0.0
    return max(0.0, value)


# ═══════════════════════════════════════════════════════════════════════════
# Classification
# ═══════════════════════════════════════════════════════════════════════════

def classify(current_rainfall: float, forecast_6h: float = 0.0) -> RiskLevel:
    """
    Classify current rainfall (mm/h) and 6-hour forecast (mm) into a RiskLevel.

    Monotone in each argument with the other held fixed.
    """
    current = _non_negative(current_rainfall)
    forecast = _non_negative(forecast_6h)

    for level, current_min, forecast_min in RISK_THRESHOLDS:
        if current >= current_min or forecast >= forecast_min:
            return level
    return RiskLevel.SAFE


def forecast_level(rainfall_6h: float) -> ForecastLevel:
    """Severity of a 6-hour rainfall forecast on the forecast-only scale."""
    rainfall = _non_negative(rainfall_6h)
    for level, minimum in FORECAST_THRESHOLDS:
        if rainfall >= minimum:
            return level
    return ForecastLevel.LOW


def classify_flood_percent(percent: float) -> RiskLevel:
    """Status shown beside the manual flood slider."""
    p = min(100.0, _non_negative(percent))
    for level, upper in FLOOD_PERCENT_THRESHOLDS:
        if p < upper:
            return level
    return RiskLevel.CRITICAL


def presentation_for(level: RiskLevel) -> Dict[str, str]:
    return dict(RISK_PRESENTATION[level])
