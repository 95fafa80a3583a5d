"""
Request schemas for the pipeline API.

Responses are plain dicts built from the domain dataclasses' `to_dict()`.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from floodwatch.app.ml.models import Observation, ObservationSource


class ObservationInput(BaseModel):
    """
    Manually supplied weather sample.

    Rainfall and humidity are not range-checked here: `Observation.create`
    clamps them the same way it does for API and synthetic samples.
    """
    rainfall_mm_hr: float = Field(..., description="Rainfall intensity (mm/h), negatives read as 0")
    humidity_pct: float = Field(70.0, description="Relative humidity (%), clamped to 0-100")
    temperature_c: float = Field(25.0, ge=-50, le=60, description="Air temperature (°C)")
    captured_at: Optional[datetime] = Field(
        None, description="Observation time; defaults to now (UTC)",
    )

    def to_observation(self) -> Observation:
        return Observation.create(
            rainfall_mm_hr=self.rainfall_mm_hr,
            humidity_pct=self.humidity_pct,
            temperature_c=self.temperature_c,
            captured_at=self.captured_at,
            source=ObservationSource.MANUAL,
        )


class FloodLevelInput(BaseModel):
    percent: float = Field(..., ge=0, le=100, description="Flood slider value (%)")
