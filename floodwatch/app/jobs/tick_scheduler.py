"""
tick_scheduler.py — Periodic ingestion loop driving the pipeline.

Each cycle:
    1. fetch an observation (real API or synthetic fallback)
    2. run `aggregator.tick` on a worker thread so model inference and
       history bookkeeping never block the event loop
    3. sleep `interval_s`

The first cycle runs immediately on start.  A failing cycle is logged and
the loop carries on at the next interval.

History and model parameters live in the aggregator's ForecastEngine, so
stopping and restarting the scheduler neither loses nor duplicates data.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional, Set

from floodwatch.app.core.config import settings
from floodwatch.app.ingestion.weather_service import WeatherService
from floodwatch.app.ml.models import Snapshot
from floodwatch.app.ml.state_aggregator import StateAggregator

logger = logging.getLogger(__name__)


class TickScheduler:
    """
    Usage:
        scheduler = TickScheduler(aggregator, weather_service)
        await scheduler.start()
        ...
        await scheduler.stop()
    """

    def __init__(
        self,
        aggregator: StateAggregator,
        weather_service: WeatherService,
        interval_s: float = settings.TICK_INTERVAL_S,
    ):
        self.aggregator = aggregator
        self.weather_service = weather_service
        self.interval_s = interval_s
        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._inflight: Set[asyncio.Future] = set()
        self.cycles_completed = 0
        self.cycles_failed = 0

    @property
    def is_running(self) -> bool:
        return self._running and self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Start the loop.  Calling it while running is a no-op."""
        if self.is_running:
            return

        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info("Tick scheduler started (every %.0fs)", self.interval_s)

    async def stop(self) -> None:
        """Stop the loop; no tick fires after this returns."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        # Ticks already handed to the worker thread, from the loop or from
        # run_once callers, are allowed to finish.
        pending = list(self._inflight)
        if pending:
            results = await asyncio.gather(*pending, return_exceptions=True)
            for result in results:
                if isinstance(result, Exception):
                    logger.error("In-flight tick failed during shutdown: %s", result)
        logger.info("Tick scheduler stopped")

    async def restart(self) -> None:
        await self.stop()
        await self.start()

    async def run_once(self) -> Snapshot:
        """Fetch one observation and push it through the pipeline."""
        obs = await self.weather_service.fetch_observation()
        tick = asyncio.ensure_future(asyncio.to_thread(self.aggregator.tick, obs))
        self._inflight.add(tick)
        tick.add_done_callback(self._inflight.discard)
        return await asyncio.shield(tick)

    async def _run_loop(self) -> None:
        while self._running:
            try:
                await self.run_once()
                self.cycles_completed += 1
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.cycles_failed += 1
                logger.exception("Tick cycle failed: %s", e)

            await asyncio.sleep(self.interval_s)
