"""
Tests for the retention-bounded observation history.

Run with:
    pytest tests/test_history_window.py -v
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from floodwatch.app.ml.history_window import HistoryWindow
from floodwatch.app.ml.models import Observation

T0 = datetime(2024, 7, 15, 0, 0, tzinfo=timezone.utc)


def _obs(minutes: float, rain: float = 1.0) -> Observation:
    return Observation.create(rain, 70.0, 25.0, captured_at=T0 + timedelta(minutes=minutes))


@pytest.fixture
def window():
    return HistoryWindow(retention=timedelta(hours=24))


class TestRecent:

    def test_empty_window(self, window):
        assert len(window) == 0
        assert window.recent(10) == []
        assert window.latest is None

    def test_returns_at_most_n(self, window):
        for i in range(15):
            window.append(_obs(i * 10, rain=i))
        recent = window.recent(10)
        assert len(recent) == 10
        assert [o.rainfall_mm_hr for o in recent] == list(range(5, 15))

    def test_short_window_returns_everything(self, window):
        for i in range(3):
            window.append(_obs(i * 10))
        assert len(window.recent(10)) == 3

    def test_non_positive_n(self, window):
        window.append(_obs(0))
        assert window.recent(0) == []
        assert window.recent(-1) == []


class TestRetention:

    def test_evicts_older_than_24h(self, window):
        # 30 hours of 10-minute samples
        for i in range(180):
            window.append(_obs(i * 10))

        newest = window.latest.captured_at
        items = window.snapshot()
        assert all(newest - o.captured_at <= timedelta(hours=24) for o in items)
        assert len(items) == 24 * 6 + 1

    def test_recent_never_older_than_horizon(self, window):
        window.append(_obs(0))
        window.append(_obs(25 * 60))
        assert len(window) == 1
        assert window.recent(10)[0].captured_at == T0 + timedelta(hours=25)

    def test_append_reports_immediate_eviction(self, window):
        assert window.append(_obs(25 * 60)) is True
        assert window.append(_obs(0)) is False
        assert len(window) == 1

    def test_explicit_eviction(self, window):
        for i in range(6):
            window.append(_obs(i * 60))
        dropped = window.evict_older_than(T0 + timedelta(hours=3))
        assert dropped == 3
        assert len(window) == 3


class TestOrdering:

    def test_late_observation_inserted_in_order(self, window):
        window.append(_obs(0, rain=0))
        window.append(_obs(20, rain=2))
        window.append(_obs(10, rain=1))
        assert [o.rainfall_mm_hr for o in window.recent(3)] == [0, 1, 2]
        assert window.latest.rainfall_mm_hr == 2

    def test_snapshot_is_immutable_copy(self, window):
        window.append(_obs(0))
        snap = window.snapshot()
        window.append(_obs(10))
        assert len(snap) == 1
        assert len(window) == 2

    def test_clear(self, window):
        window.append(_obs(0))
        window.clear()
        assert len(window) == 0
