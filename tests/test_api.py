"""
API tests for the pipeline router.

Run with:
    pytest tests/test_api.py -v
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import logging

import pytest
from fastapi.testclient import TestClient

from floodwatch.app.api.v1.pipeline import configure_pipeline
from floodwatch.app.jobs.tick_scheduler import TickScheduler
from floodwatch.app.main import app
from floodwatch.app.ml.forecast_engine import ForecastEngine
from floodwatch.app.ml.history_window import HistoryWindow
from floodwatch.app.ml.models import Observation, ObservationSource
from floodwatch.app.ml.state_aggregator import StateAggregator

T0 = datetime(2024, 7, 15, 0, 0, tzinfo=timezone.utc)


class _FakeWeatherService:

    def __init__(self):
        self.calls = 0
        self.closed = False

    async def fetch_observation(self):
        self.calls += 1
        return Observation.create(
            2.0, 65.0, 26.0,
            captured_at=T0 + timedelta(minutes=10 * self.calls),
            source=ObservationSource.SYNTHETIC,
        )

    async def close(self):
        self.closed = True


@pytest.fixture
def scheduler():
    engine = ForecastEngine(
        HistoryWindow(retention=timedelta(hours=24)),
        pretrain_samples=60,
        pretrain_epochs=3,
        background=False,
    )
    sched = TickScheduler(StateAggregator(engine), _FakeWeatherService(), interval_s=60)
    configure_pipeline(sched)
    yield sched
    engine.shutdown()


@pytest.fixture
def client(scheduler):
    return TestClient(app)


class TestHealth:

    def test_liveness(self, client):
        resp = client.get("/health/live")
        assert resp.status_code == 200
        assert resp.json() == {"status": "alive"}

    def test_request_id_header(self, client):
        resp = client.get("/health/live", headers={"X-Request-ID": "abc123"})
        assert resp.headers["X-Request-ID"] == "abc123"

    def test_readiness_degraded_until_trained(self, client):
        body = client.get("/health/ready").json()
        assert body["status"] == "degraded"
        assert body["forecast_model"] == "untrained"
        assert body["scheduler_running"] is False


class TestSnapshotEndpoints:

    def test_snapshot_before_first_tick(self, client):
        resp = client.get("/api/v1/pipeline/snapshot")
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "NOT_READY"

    def test_manual_tick(self, client):
        resp = client.post(
            "/api/v1/pipeline/tick",
            json={"rainfall_mm_hr": 55, "humidity_pct": 90, "temperature_c": 24},
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["risk_level"] == "CRITICAL"
        assert body["flood_source"] == "auto"
        assert body["observation"]["source"] == "manual"
        assert body["forecast"]["source"] == "fallback"

        latest = client.get("/api/v1/pipeline/snapshot").json()
        assert latest == body

    def test_fetched_tick(self, client, scheduler):
        resp = client.post("/api/v1/pipeline/tick")
        assert resp.status_code == 200
        assert resp.json()["observation"]["source"] == "synthetic"
        assert scheduler.weather_service.calls == 1

    def test_out_of_range_observation_is_clamped(self, client):
        resp = client.post(
            "/api/v1/pipeline/tick",
            json={"rainfall_mm_hr": -3, "humidity_pct": 120},
        )
        assert resp.status_code == 200
        observation = resp.json()["observation"]
        assert observation["rainfall_mm_hr"] == 0
        assert observation["humidity_pct"] == 100

    def test_invalid_observation_rejected(self, client):
        resp = client.post(
            "/api/v1/pipeline/tick",
            json={"rainfall_mm_hr": 5, "temperature_c": 200},
        )
        assert resp.status_code == 422
        error = resp.json()["error"]
        assert error["code"] == "VALIDATION_ERROR"
        assert "temperature_c" in error["details"]["fields"]

    def test_request_log_duration_is_whole_ms(self, client, caplog):
        caplog.set_level(logging.INFO, logger="floodwatch.app.core.middleware")
        client.post("/api/v1/pipeline/tick", json={"rainfall_mm_hr": 1})
        records = [r for r in caplog.records if r.name == "floodwatch.app.core.middleware"]
        assert records
        assert all(isinstance(r.duration_ms, int) for r in records)

    def test_error_body_carries_request_id(self, client):
        resp = client.get("/api/v1/pipeline/snapshot", headers={"X-Request-ID": "tick-probe"})
        assert resp.json()["error"]["request_id"] == "tick-probe"


class TestFloodLevel:

    def test_slider_before_tick(self, client):
        resp = client.post("/api/v1/pipeline/flood-level", json={"percent": 72})
        assert resp.status_code == 200
        body = resp.json()
        assert body["rainfall_mm"] == 360
        assert body["status"] == "CRITICAL"
        assert body["snapshot"] is None

    def test_slider_overrides_latest(self, client):
        client.post("/api/v1/pipeline/tick", json={"rainfall_mm_hr": 5})
        body = client.post("/api/v1/pipeline/flood-level", json={"percent": 40}).json()
        assert body["status"] == "WATCH"
        assert body["snapshot"]["flood_percent"] == 40
        assert body["snapshot"]["flood_source"] == "manual"

    def test_out_of_range_rejected(self, client):
        resp = client.post("/api/v1/pipeline/flood-level", json={"percent": 150})
        assert resp.status_code == 422


class TestModelAndScheduler:

    def test_model_status(self, client):
        body = client.get("/api/v1/pipeline/model").json()
        assert body["readiness"] == "untrained"
        assert body["history_size"] == 0

    def test_lifespan_and_auto_update(self, scheduler):
        with TestClient(app) as client:
            # lifespan pre-trains inline and starts the loop
            assert client.get("/api/v1/pipeline/model").json()["readiness"] == "ready"
            assert scheduler.is_running

            resp = client.post("/api/v1/pipeline/auto-update/stop")
            assert resp.json() == {"auto_update": False}
            assert not scheduler.is_running
            assert scheduler.aggregator.state.auto_mode is False

            resp = client.post("/api/v1/pipeline/auto-update/start")
            assert resp.json()["auto_update"] is True
            assert scheduler.is_running

        assert not scheduler.is_running
        assert scheduler.weather_service.closed
