"""
FastAPI endpoints for the flood-risk pipeline.

Routes:
    GET  /api/v1/pipeline/snapshot             — Latest snapshot
    POST /api/v1/pipeline/tick                 — Run one tick (manual or fetched observation)
    POST /api/v1/pipeline/flood-level          — Manual flood slider override
    POST /api/v1/pipeline/auto-update/start    — Start periodic ingestion
    POST /api/v1/pipeline/auto-update/stop     — Stop periodic ingestion
    GET  /api/v1/pipeline/model                — Forecast model status
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter

from floodwatch.app.api.schemas import FloodLevelInput, ObservationInput
from floodwatch.app.core.errors import NotReadyError
from floodwatch.app.ingestion.weather_service import WeatherService
from floodwatch.app.jobs.tick_scheduler import TickScheduler
from floodwatch.app.ml.flood_mapper import slider_rainfall_mm
from floodwatch.app.ml.risk_classifier import classify_flood_percent, presentation_for
from floodwatch.app.ml.state_aggregator import StateAggregator, get_aggregator

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/v1/pipeline",
    tags=["pipeline"],
)


# ── State ──────────────────────────────────────────────────────────

_scheduler: Optional[TickScheduler] = None


def get_scheduler() -> TickScheduler:
    """Get or create the scheduler bound to the global aggregator."""
    global _scheduler
    if _scheduler is None:
        _scheduler = TickScheduler(get_aggregator(), WeatherService())
    return _scheduler


def configure_pipeline(scheduler: TickScheduler) -> None:
    """Bind the router to an explicit scheduler (and its aggregator)."""
    global _scheduler
    _scheduler = scheduler


def _aggregator() -> StateAggregator:
    return get_scheduler().aggregator


# ── Routes ─────────────────────────────────────────────────────────


@router.get("/snapshot")
async def get_snapshot() -> Dict[str, Any]:
    snapshot = _aggregator().latest
    if snapshot is None:
        raise NotReadyError("snapshot", "No tick has completed yet")
    return snapshot.to_dict()


@router.post("/tick")
async def run_tick(payload: Optional[ObservationInput] = None) -> Dict[str, Any]:
    """
    Run one pipeline tick.

    With a body, the supplied observation is used as-is; without one, the
    configured weather service is queried (falling back to synthetic data).
    """
    scheduler = get_scheduler()
    if payload is not None:
        snapshot = await asyncio.to_thread(
            scheduler.aggregator.tick, payload.to_observation(),
        )
    else:
        snapshot = await scheduler.run_once()
    return snapshot.to_dict()


@router.post("/flood-level")
async def set_flood_level(payload: FloodLevelInput) -> Dict[str, Any]:
    aggregator = _aggregator()
    snapshot = await asyncio.to_thread(aggregator.set_manual_flood_level, payload.percent)
    status = classify_flood_percent(payload.percent)
    return {
        "flood_percent": payload.percent,
        "rainfall_mm": slider_rainfall_mm(payload.percent),
        "status": status.name,
        "presentation": presentation_for(status),
        "snapshot": snapshot.to_dict() if snapshot else None,
    }


@router.post("/auto-update/start")
async def start_auto_update() -> Dict[str, Any]:
    scheduler = get_scheduler()
    scheduler.aggregator.set_auto_mode(True)
    await scheduler.start()
    return {"auto_update": True, "interval_s": scheduler.interval_s}


@router.post("/auto-update/stop")
async def stop_auto_update() -> Dict[str, Any]:
    scheduler = get_scheduler()
    await scheduler.stop()
    scheduler.aggregator.set_auto_mode(False)
    return {"auto_update": False}


@router.get("/model")
async def model_status() -> Dict[str, Any]:
    return _aggregator().engine.status().to_dict()
