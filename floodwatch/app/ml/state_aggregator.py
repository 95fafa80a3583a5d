"""
state_aggregator.py — Composes one Snapshot per tick.

═══════════════════════════════════════════════════════════════════════════
TICK FLOW
═══════════════════════════════════════════════════════════════════════════

    Observation
         │
         ▼
    ┌──────────────────────┐
    │ 1. engine.observe    │  append to history, maybe submit a retrain
    └─────────┬────────────┘
              ▼
    ┌──────────────────────┐
    │ 2. flood percent     │  intensity curve (auto) or slider value (manual)
    └─────────┬────────────┘
              ▼
    ┌──────────────────────┐
    │ 3. engine.predict    │  trained or fallback, never blocks
    └─────────┬────────────┘
              ▼
    ┌──────────────────────┐
    │ 4. classify          │  current rainfall + forecast rainfall
    └─────────┬────────────┘
              ▼
    ┌──────────────────────┐
    │ 5. store + publish   │  PipelineState.latest, SnapshotBus subscribers
    └──────────────────────┘

Ticks are serialised by a single lock: a manual tick issued while a
scheduled one is in flight waits for it.  The rendering layer never mutates
pipeline state; it reads `PipelineState.latest` or subscribes to the bus.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, replace
from typing import Callable, List, Optional

from floodwatch.app.core.logging_config import tick_context
from floodwatch.app.ml.flood_mapper import (
    flood_level_from_rainfall,
    rainfall_to_flood_percent,
)
from floodwatch.app.ml.forecast_engine import ForecastEngine
from floodwatch.app.ml.models import FloodSource, Observation, Snapshot
from floodwatch.app.ml.risk_classifier import classify

logger = logging.getLogger(__name__)

SnapshotCallback = Callable[[Snapshot], None]


# ═══════════════════════════════════════════════════════════════════════════
# State + subscribers
# ═══════════════════════════════════════════════════════════════════════════

@dataclass
class PipelineState:
    latest: Optional[Snapshot] = None
    auto_mode: bool = True
    manual_flood_percent: Optional[float] = None
    tick_count: int = 0


class SnapshotBus:
    """Fan-out of published snapshots to presentation callbacks."""

    def __init__(self):
        self._subscribers: List[SnapshotCallback] = []
        self._lock = threading.Lock()

    def subscribe(self, callback: SnapshotCallback) -> Callable[[], None]:
        """Register a callback.  Returns a function that unsubscribes it."""
        with self._lock:
            self._subscribers.append(callback)

        def _unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return _unsubscribe

    def publish(self, snapshot: Snapshot) -> int:
        """Deliver to every subscriber.  Returns the number that succeeded."""
        with self._lock:
            subscribers = list(self._subscribers)

        delivered = 0
        for callback in subscribers:
            try:
                callback(snapshot)
                delivered += 1
            except Exception:
                logger.exception("Snapshot subscriber %r failed", callback)
        return delivered

    def __len__(self) -> int:
        with self._lock:
            return len(self._subscribers)


# ═══════════════════════════════════════════════════════════════════════════
# Aggregator
# ═══════════════════════════════════════════════════════════════════════════

class StateAggregator:
    """
    Usage:
        aggregator = StateAggregator(engine)
        aggregator.bus.subscribe(render)
        snapshot = aggregator.tick(obs)
    """

    def __init__(
        self,
        engine: Optional[ForecastEngine] = None,
        bus: Optional[SnapshotBus] = None,
    ):
        self.engine = engine if engine is not None else ForecastEngine()
        self.bus = bus if bus is not None else SnapshotBus()
        self.state = PipelineState()
        self._lock = threading.Lock()

    @property
    def latest(self) -> Optional[Snapshot]:
        return self.state.latest

    def tick(self, obs: Observation) -> Snapshot:
        with self._lock, tick_context(tick_id=self.state.tick_count + 1):
            start = time.perf_counter()
            tick_no = self.state.tick_count + 1

            self.engine.observe(obs)

            if self.state.auto_mode or self.state.manual_flood_percent is None:
                flood_percent = flood_level_from_rainfall(obs.rainfall_mm_hr)
                flood_source = FloodSource.AUTO
            else:
                flood_percent = self.state.manual_flood_percent
                flood_source = FloodSource.MANUAL

            forecast = self.engine.predict(obs)
            risk = classify(obs.rainfall_mm_hr, forecast.rainfall_6h)

            snapshot = Snapshot(
                observation=obs,
                flood_percent=flood_percent,
                risk_level=risk,
                forecast=forecast,
                forecast_flood_percent=rainfall_to_flood_percent(forecast.rainfall_6h),
                flood_source=flood_source,
            )
            self.state.latest = snapshot
            self.state.tick_count = tick_no

            logger.info(
                "Tick complete — rain=%.1fmm/h flood=%.0f%% risk=%s forecast=%.1fmm (%s)",
                obs.rainfall_mm_hr, flood_percent, risk.name,
                forecast.rainfall_6h, forecast.source.value,
                extra={
                    "rainfall_mm_hr": obs.rainfall_mm_hr,
                    "flood_percent": flood_percent,
                    "risk_level": risk.name,
                    "forecast_source": forecast.source.value,
                    "history_size": len(self.engine.history),
                    "duration_ms": int((time.perf_counter() - start) * 1000),
                },
            )

        self.bus.publish(snapshot)
        return snapshot

    def set_manual_flood_level(self, percent: float) -> Optional[Snapshot]:
        """
        Override the displayed flood percent from the slider.

        Produces a superseding snapshot identical to the latest except for
        `flood_percent` and `flood_source`.  Returns None before the first
        tick, though the value is kept for later manual-mode ticks.
        """
        percent = min(100.0, max(0.0, float(percent)))
        with self._lock:
            self.state.manual_flood_percent = percent
            current = self.state.latest
            if current is None:
                return None
            snapshot = replace(
                current, flood_percent=percent, flood_source=FloodSource.MANUAL,
            )
            self.state.latest = snapshot

        logger.info("Manual flood level set to %.0f%%", percent)
        self.bus.publish(snapshot)
        return snapshot

    def set_auto_mode(self, enabled: bool) -> None:
        """In auto mode ticks derive flood percent from rainfall; otherwise the slider value holds."""
        with self._lock:
            self.state.auto_mode = enabled


# ═══════════════════════════════════════════════════════════════════════════
# Global Instance
# ═══════════════════════════════════════════════════════════════════════════

_aggregator_instance: Optional[StateAggregator] = None


def get_aggregator() -> StateAggregator:
    """Get or create the global pipeline aggregator."""
    global _aggregator_instance
    if _aggregator_instance is None:
        _aggregator_instance = StateAggregator()
    return _aggregator_instance
