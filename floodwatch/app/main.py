"""
Floodwatch API entry point.

The app owns one pipeline (aggregator, forecast engine, weather client and
tick scheduler).  Startup kicks off forecast pre-training in the background
and, unless AUTO_START_SCHEDULER is off, starts the tick loop.  Ticks served
before pre-training finishes use the fallback estimator.

Run with:
    uvicorn floodwatch.app.main:app --reload --port 8000
or:
    python -m floodwatch.app.main
"""

from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from floodwatch.app.api.v1.pipeline import get_scheduler, router as pipeline_router
from floodwatch.app.core.config import settings
from floodwatch.app.core.errors import register_error_handlers
from floodwatch.app.core.logging_config import get_logger, setup_logging
from floodwatch.app.core.middleware import RequestLoggingMiddleware
from floodwatch.app.ml.forecast_engine import ModelReadiness

setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    scheduler = get_scheduler()
    engine = scheduler.aggregator.engine
    logger.info(
        "%s v%s starting [%s], tick every %.0fs",
        settings.APP_NAME, settings.APP_VERSION, settings.ENVIRONMENT,
        settings.TICK_INTERVAL_S,
    )

    engine.start()
    if settings.AUTO_START_SCHEDULER:
        await scheduler.start()

    try:
        yield
    finally:
        await scheduler.stop()
        await scheduler.weather_service.close()
        engine.shutdown(wait=False)
        logger.info(
            "%s stopped after %d ticks",
            settings.APP_NAME, scheduler.aggregator.state.tick_count,
        )


def create_app() -> FastAPI:
    application = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description=(
            "Environmental flood-risk pipeline: KMA observations in, "
            "flood extent, 6-hour rainfall forecast and risk level out."
        ),
        lifespan=lifespan,
    )

    origins = ["*"] if settings.CORS_ALLOW_ALL else settings.CORS_ORIGINS
    application.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )
    application.add_middleware(RequestLoggingMiddleware)
    register_error_handlers(application)

    application.include_router(pipeline_router)

    @application.get("/", tags=["root"])
    async def root():
        return {
            "service": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "environment": settings.ENVIRONMENT,
            "snapshot": f"{pipeline_router.prefix}/snapshot",
        }

    @application.get("/health/live", tags=["health"])
    async def liveness():
        return {"status": "alive"}

    @application.get("/health/ready", tags=["health"])
    async def readiness():
        """Always 200: the fallback estimator serves until the model is trained."""
        scheduler = get_scheduler()
        model = scheduler.aggregator.engine.status()
        return {
            "status": "ready" if model.readiness == ModelReadiness.READY else "degraded",
            "forecast_model": model.readiness.value,
            "model_version": model.model_version,
            "scheduler_running": scheduler.is_running,
            "ticks": scheduler.aggregator.state.tick_count,
        }

    return application


app = create_app()


if __name__ == "__main__":
    uvicorn.run(app, host=settings.HOST, port=settings.PORT, log_config=None)
