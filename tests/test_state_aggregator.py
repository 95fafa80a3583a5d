"""
Tests for per-tick snapshot composition and the subscriber bus.

Run with:
    pytest tests/test_state_aggregator.py -v
"""

from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone

import pytest

from floodwatch.app.ml.forecast_engine import ForecastEngine
from floodwatch.app.ml.history_window import HistoryWindow
from floodwatch.app.ml.models import (
    FloodSource,
    ForecastSource,
    Observation,
    RiskLevel,
    Snapshot,
)
from floodwatch.app.ml.state_aggregator import SnapshotBus, StateAggregator

T0 = datetime(2024, 7, 15, 0, 0, tzinfo=timezone.utc)


def _obs(i: int, rain: float = 5.0) -> Observation:
    return Observation.create(rain, 75.0, 25.0, captured_at=T0 + timedelta(minutes=10 * i))


def _engine() -> ForecastEngine:
    return ForecastEngine(
        HistoryWindow(retention=timedelta(hours=24)),
        min_history=50,
        retrain_every=20,
        pretrain_samples=60,
        pretrain_epochs=3,
        retrain_epochs=2,
        background=False,
    )


@pytest.fixture
def aggregator():
    agg = StateAggregator(_engine())
    yield agg
    agg.engine.shutdown()


class TestTick:

    def test_snapshot_composition(self, aggregator):
        snapshot = aggregator.tick(_obs(0, rain=55))
        assert isinstance(snapshot, Snapshot)
        assert snapshot.flood_percent == pytest.approx(92.5)
        assert snapshot.flood_source == FloodSource.AUTO
        assert snapshot.risk_level == RiskLevel.CRITICAL
        assert snapshot.forecast.source == ForecastSource.FALLBACK
        assert aggregator.latest is snapshot
        assert aggregator.state.tick_count == 1

    def test_dry_tick_is_safe(self, aggregator):
        snapshot = aggregator.tick(Observation.create(0, 90, 30, captured_at=T0))
        assert snapshot.flood_percent == 0
        assert snapshot.risk_level == RiskLevel.SAFE

    def test_tick_appends_to_history(self, aggregator):
        for i in range(5):
            aggregator.tick(_obs(i))
        assert len(aggregator.engine.history) == 5
        assert aggregator.state.tick_count == 5

    def test_forecast_flood_percent_follows_forecast(self, aggregator):
        snapshot = aggregator.tick(_obs(0, rain=20))
        # fallback forecast is well under 100 mm, so the marker sits on the first segment
        assert snapshot.forecast_flood_percent == pytest.approx(
            snapshot.forecast.rainfall_6h * 0.3
        )

    def test_deterministic_for_same_history_and_model(self):
        observations = [_obs(i, rain=(i * 7) % 40) for i in range(15)]
        results = []
        for _ in range(2):
            agg = StateAggregator(_engine())
            agg.engine.start()
            for obs in observations:
                snapshot = agg.tick(obs)
            results.append(snapshot.to_dict())
            agg.engine.shutdown()
        assert results[0] == results[1]

    def test_concurrent_ticks_serialise(self, aggregator):
        threads = [
            threading.Thread(target=aggregator.tick, args=(_obs(i),))
            for i in range(8)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert aggregator.state.tick_count == 8
        assert len(aggregator.engine.history) == 8


class TestManualFloodLevel:

    def test_before_first_tick_returns_none(self, aggregator):
        assert aggregator.set_manual_flood_level(40) is None
        assert aggregator.state.manual_flood_percent == 40

    def test_override_supersedes_latest(self, aggregator):
        auto = aggregator.tick(_obs(0, rain=10))
        manual = aggregator.set_manual_flood_level(65)
        assert manual.flood_percent == 65
        assert manual.flood_source == FloodSource.MANUAL
        assert manual.observation == auto.observation
        assert manual.forecast == auto.forecast
        assert manual.risk_level == auto.risk_level
        assert aggregator.latest is manual

    def test_value_is_clamped(self, aggregator):
        aggregator.tick(_obs(0))
        assert aggregator.set_manual_flood_level(140).flood_percent == 100

    def test_auto_mode_overwrites_manual_value(self, aggregator):
        aggregator.tick(_obs(0, rain=10))
        aggregator.set_manual_flood_level(80)
        snapshot = aggregator.tick(_obs(1, rain=10))
        assert snapshot.flood_source == FloodSource.AUTO
        assert snapshot.flood_percent == pytest.approx(30)

    def test_manual_mode_keeps_slider_value(self, aggregator):
        aggregator.tick(_obs(0, rain=10))
        aggregator.set_auto_mode(False)
        aggregator.set_manual_flood_level(80)
        snapshot = aggregator.tick(_obs(1, rain=10))
        assert snapshot.flood_source == FloodSource.MANUAL
        assert snapshot.flood_percent == 80


class TestSnapshotBus:

    def test_subscribers_receive_snapshots(self, aggregator):
        received = []
        aggregator.bus.subscribe(received.append)
        snapshot = aggregator.tick(_obs(0))
        assert received == [snapshot]

    def test_unsubscribe(self, aggregator):
        received = []
        unsubscribe = aggregator.bus.subscribe(received.append)
        unsubscribe()
        aggregator.tick(_obs(0))
        assert received == []
        assert len(aggregator.bus) == 0

    def test_failing_subscriber_is_isolated(self, aggregator):
        received = []

        def _broken(snapshot):
            raise ValueError("render failed")

        aggregator.bus.subscribe(_broken)
        aggregator.bus.subscribe(received.append)
        snapshot = aggregator.tick(_obs(0))
        assert received == [snapshot]
        assert aggregator.latest is snapshot

    def test_publish_counts_deliveries(self):
        bus = SnapshotBus()
        bus.subscribe(lambda s: None)
        bus.subscribe(lambda s: 1 / 0)
        assert bus.publish(object()) == 1
