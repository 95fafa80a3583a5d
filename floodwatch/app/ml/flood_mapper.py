"""
flood_mapper.py — Rainfall ↔ flood-extent percentage mapping.

Flood percent is the elevation of the translucent flood plane relative to the
terrain's vertical extent (0 = dry, 100 = fully submerged).  It is a display
quantity, not a physical flood volume.

Two independent calibration curves are used:

    ACCUMULATION CURVE (flood slider, forecast marker)
    ──────────────────────────────────────────────────
        flood %   0     30     50     70     100
        rain mm   0    100    200    350     500

        flood_to_rainfall()          flood % → accumulated mm
        rainfall_to_flood_percent()  accumulated mm → flood %

    INTENSITY CURVE (auto mode, driven by live mm/h readings)
    ─────────────────────────────────────────────────────────
        rain mm/h  0     10     30     50     70
        flood %    0     30     70     90    100

        flood_level_from_rainfall()  mm/h → flood %

Because the curves were tuned separately, composing the intensity curve with
the accumulation curve does not round-trip.  The two accumulation functions
are exact inverses only at their shared breakpoints.

Every function is piecewise-linear: locate the enclosing breakpoint interval,
interpolate, clamp to the codomain.  Inputs outside the table clamp to the
boundary output; nothing is extrapolated.
"""

from __future__ import annotations

import math
from typing import Tuple

import numpy as np

# ---------------------------------------------------------------------------
# Calibration tables
# ---------------------------------------------------------------------------

FLOOD_BREAKPOINTS_PCT: Tuple[float, ...] = (0.0, 30.0, 50.0, 70.0, 100.0)
RAINFALL_BREAKPOINTS_MM: Tuple[float, ...] = (0.0, 100.0, 200.0, 350.0, 500.0)

# Above 50 mm/h the curve rises at 0.5 %/(mm/h) until it saturates at 70 mm/h.
INTENSITY_BREAKPOINTS_MM_HR: Tuple[float, ...] = (0.0, 10.0, 30.0, 50.0, 70.0)
INTENSITY_FLOOD_PCT: Tuple[float, ...] = (0.0, 30.0, 70.0, 90.0, 100.0)

MAX_RAINFALL_MM = RAINFALL_BREAKPOINTS_MM[-1]


def _clean(value: float) -> float:
    """Non-finite → 0, negatives → 0."""
    value = float(value)
    if not math.isfinite(value):
        return 0.0
    return max(0.0, value)


def _clamp_pct(value: float) -> float:
    return min(100.0, max(0.0, value))


# ---------------------------------------------------------------------------
# Accumulation curve
# ---------------------------------------------------------------------------

def flood_to_rainfall(percent: float) -> float:
    """
    Map a flood percentage to accumulated rainfall (mm).

    e.g. 72 % lies on the 70–100 segment: 350 + (2/30)·150 ≈ 360 mm.
    """
    p = _clamp_pct(_clean(percent))
    mm = float(np.interp(p, FLOOD_BREAKPOINTS_PCT, RAINFALL_BREAKPOINTS_MM))
    return min(MAX_RAINFALL_MM, max(0.0, mm))


def rainfall_to_flood_percent(rainfall_mm: float) -> float:
    """Map accumulated rainfall (mm) to a flood percentage in [0, 100]."""
    r = _clean(rainfall_mm)
    pct = float(np.interp(r, RAINFALL_BREAKPOINTS_MM, FLOOD_BREAKPOINTS_PCT))
    return _clamp_pct(pct)


def slider_rainfall_mm(percent: float) -> int:
    """Whole-mm rainfall label shown next to the flood slider."""
    return int(round(flood_to_rainfall(percent)))


# ---------------------------------------------------------------------------
# Intensity curve (auto mode)
# ---------------------------------------------------------------------------

def flood_level_from_rainfall(rainfall_mm_hr: float) -> float:
    """
    Flood percentage for a live rainfall intensity reading (mm/h).

    Monotone non-decreasing; saturates at 100 % from 70 mm/h.
    """
    r = _clean(rainfall_mm_hr)
    pct = float(np.interp(r, INTENSITY_BREAKPOINTS_MM_HR, INTENSITY_FLOOD_PCT))
    return _clamp_pct(pct)
