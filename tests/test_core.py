"""Tests for settings, the error hierarchy and log formatting."""

from __future__ import annotations

import json
import logging

from floodwatch.app.core.config import Settings
from floodwatch.app.core.errors import (
    ExternalServiceError,
    ModelTrainingError,
    NotReadyError,
    PipelineError,
    ValidationError,
)
from floodwatch.app.core.logging_config import (
    JSONFormatter,
    PrettyFormatter,
    get_tick_context,
    set_tick_context,
    tick_context,
)


class TestSettings:

    def test_pipeline_defaults(self):
        s = Settings(_env_file=None)
        assert s.FORECAST_SEQUENCE_LENGTH == 10
        assert s.FORECAST_MIN_HISTORY == 50
        assert s.FORECAST_RETRAIN_EVERY == 20
        assert s.HISTORY_RETENTION_HOURS == 24
        assert s.KMA_NX == 89 and s.KMA_NY == 90

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("FORECAST_RETRAIN_EVERY", "5")
        monkeypatch.setenv("ENVIRONMENT", "production")
        s = Settings(_env_file=None)
        assert s.FORECAST_RETRAIN_EVERY == 5
        assert s.is_production


class TestErrors:

    def test_hierarchy(self):
        for exc in (
            ValidationError("bad", field="percent"),
            NotReadyError("snapshot"),
            ExternalServiceError("kma", "timeout"),
            ModelTrainingError("sequence_regressor", "diverged"),
        ):
            assert isinstance(exc, PipelineError)

    def test_codes(self):
        assert NotReadyError("snapshot").status_code == 409
        assert ValidationError("bad", field="x").details == {"field": "x"}
        err = ExternalServiceError("kma", "HTTP 500", status=500)
        assert err.status_code == 502
        assert err.details == {"service": "kma", "status": 500}
        assert ModelTrainingError("m", "x").error_code == "MODEL_TRAINING_ERROR"


def _record(msg="tick done", **extra) -> logging.LogRecord:
    record = logging.LogRecord("floodwatch.test", logging.INFO, __file__, 1, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestLogFormatting:

    def test_json_includes_extras_and_context(self):
        set_tick_context(tick_id=7)
        try:
            out = json.loads(JSONFormatter().format(_record(risk_level="WATCH", flood_percent=30.0)))
        finally:
            set_tick_context()
        assert out["message"] == "tick done"
        assert out["risk_level"] == "WATCH"
        assert out["flood_percent"] == 30.0
        assert out["context"] == {"tick_id": 7}

    def test_pretty_shows_tick(self):
        set_tick_context(tick_id=3)
        try:
            line = PrettyFormatter().format(_record())
        finally:
            set_tick_context()
        assert "[tick 3]" in line
        assert get_tick_context() == {}

    def test_tick_context_is_scoped(self):
        with tick_context(tick_id=11):
            assert get_tick_context() == {"tick_id": 11}
        assert get_tick_context() == {}

    def test_pretty_appends_pipeline_fields(self):
        line = PrettyFormatter().format(_record(risk_level="CRITICAL", history_size=12))
        assert "risk=CRITICAL" in line
        assert "history_size" not in line
