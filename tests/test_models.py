"""Tests for the shared observation / forecast / snapshot types."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from floodwatch.app.ml.models import (
    FallbackForecast,
    FloodSource,
    ForecastLevel,
    Observation,
    ObservationSource,
    RiskLevel,
    Snapshot,
    TrainedForecast,
    Trend,
)

T0 = datetime(2024, 7, 15, 12, 0, tzinfo=timezone.utc)


class TestObservation:

    def test_clamps_out_of_range_values(self):
        obs = Observation.create(-3.0, 120.0, 25.0, captured_at=T0)
        assert obs.rainfall_mm_hr == 0.0
        assert obs.humidity_pct == 100.0

    def test_non_finite_values_use_defaults(self):
        obs = Observation.create(float("nan"), float("inf"), float("nan"), captured_at=T0)
        assert obs.rainfall_mm_hr == 0.0
        assert obs.humidity_pct == 0.0
        assert obs.temperature_c == 20.0

    def test_naive_timestamp_is_utc(self):
        obs = Observation.create(1, 50, 20, captured_at=datetime(2024, 7, 15, 12, 0))
        assert obs.captured_at == T0

    def test_default_timestamp_is_aware(self):
        assert Observation.create(1, 50, 20).captured_at.tzinfo is not None

    def test_immutable(self):
        obs = Observation.create(1, 50, 20, captured_at=T0)
        with pytest.raises(AttributeError):
            obs.rainfall_mm_hr = 5

    def test_to_dict(self):
        d = Observation.create(1.234, 50, 20, captured_at=T0,
                               source=ObservationSource.MANUAL).to_dict()
        assert d["rainfall_mm_hr"] == 1.23
        assert d["source"] == "manual"
        assert d["captured_at"] == T0.isoformat()


class TestForecastVariants:

    def test_trained_dict(self):
        f = TrainedForecast(12.3, 45, Trend.INCREASING, ForecastLevel.MODERATE,
                            model_version=2, padded=True)
        d = f.to_dict()
        assert d["source"] == "trained"
        assert d["level"] == "MODERATE"
        assert d["trend"] == "increasing"
        assert d["model_version"] == 2
        assert d["padded"] is True

    def test_fallback_dict_has_no_model_fields(self):
        d = FallbackForecast(1.0, 5, Trend.STABLE, ForecastLevel.LOW).to_dict()
        assert d["source"] == "fallback"
        assert "model_version" not in d


class TestSnapshot:

    def test_to_dict(self):
        snapshot = Snapshot(
            observation=Observation.create(20, 80, 25, captured_at=T0),
            flood_percent=50.0,
            risk_level=RiskLevel.WATCH,
            forecast=FallbackForecast(16.5, 10, Trend.STABLE, ForecastLevel.MODERATE),
            forecast_flood_percent=4.95,
        )
        d = snapshot.to_dict()
        assert d["risk_level"] == "WATCH"
        assert d["flood_source"] == FloodSource.AUTO.value
        assert d["forecast"]["rainfall_6h"] == 16.5
        assert d["forecast_flood_percent"] == 4.95
