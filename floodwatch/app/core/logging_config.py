"""
Structured logging configuration.

Provides:
    • JSON-formatted logs for production (one object per line)
    • Pretty console logs for development
    • Tick-scoped context (tick_id) attached to every record emitted on
      the thread processing a tick

Pipeline fields passed through `extra=` are promoted to top-level JSON keys
and appended to the pretty line, so a tick reads at a glance:

    14:02:11 INFO     [tick 42] floodwatch.app.ml.state_aggregator: Tick complete ... risk=WATCH flood=31.0

Usage:
    from floodwatch.app.core.logging_config import setup_logging, get_logger

    setup_logging()
    logger = get_logger(__name__)
    logger.info("Tick complete", extra={"risk_level": "WATCH"})
"""

from __future__ import annotations

import json
import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Iterator

from floodwatch.app.core.config import settings

_tick_context: ContextVar[Dict[str, Any]] = ContextVar("tick_context", default={})

# extra= keys understood by both formatters
PIPELINE_FIELDS = (
    "rainfall_mm_hr",
    "flood_percent",
    "risk_level",
    "forecast_source",
    "model_version",
    "history_size",
    "duration_ms",
)

# Short labels for the pretty formatter's trailing key=value list
_PRETTY_LABELS = {
    "risk_level": "risk",
    "flood_percent": "flood",
    "forecast_source": "forecast",
    "model_version": "model",
    "duration_ms": "took",
}


def set_tick_context(**kwargs: Any) -> None:
    """Replace the tick context.  Call with no arguments to clear it."""
    _tick_context.set(kwargs)


def get_tick_context() -> Dict[str, Any]:
    return _tick_context.get()


@contextmanager
def tick_context(**kwargs: Any) -> Iterator[None]:
    """Scope a tick context to a block, restoring the previous one afterwards."""
    token = _tick_context.set(kwargs)
    try:
        yield
    finally:
        _tick_context.reset(token)


def _pipeline_fields(record: logging.LogRecord) -> Dict[str, Any]:
    return {key: getattr(record, key) for key in PIPELINE_FIELDS if hasattr(record, key)}


# ── JSON Formatter (Production) ──

class JSONFormatter(logging.Formatter):

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "thread": record.threadName,
        }

        ctx = get_tick_context()
        if ctx:
            entry["context"] = ctx
        entry.update(_pipeline_fields(record))

        if record.exc_info and record.exc_info[1]:
            entry["exception"] = {
                "type": type(record.exc_info[1]).__name__,
                "message": str(record.exc_info[1]),
                "traceback": self.formatException(record.exc_info),
            }

        return json.dumps(entry, default=str)


# ── Pretty Formatter (Development) ──

class PrettyFormatter(logging.Formatter):

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, self.RESET)
        ts = self.formatTime(record, "%H:%M:%S")

        ctx = get_tick_context()
        tick = f" [tick {ctx['tick_id']}]" if "tick_id" in ctx else ""

        line = f"{color}{ts} {record.levelname:8s}{self.RESET}{tick} {record.name}: {record.getMessage()}"

        fields = _pipeline_fields(record)
        if fields:
            line += "  " + " ".join(
                f"{_PRETTY_LABELS.get(k, k)}={v}" for k, v in fields.items()
                if k in _PRETTY_LABELS
            )

        if record.exc_info and record.exc_info[1]:
            line += f"\n  {type(record.exc_info[1]).__name__}: {record.exc_info[1]}"
        return line.rstrip()


# ── Setup ──

def setup_logging() -> None:
    """Install one stdout handler on the root logger, formatter chosen by environment."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
    root.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter() if settings.is_production else PrettyFormatter())
    root.addHandler(handler)

    for noisy in ("uvicorn.access", "httpx", "httpcore"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
