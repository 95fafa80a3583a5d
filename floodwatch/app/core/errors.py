"""
Error taxonomy and its HTTP rendering.

Inside the pipeline nothing here is fatal:

    ExternalServiceError   raised by the KMA client, caught by it, replaced
                           by a synthetic observation
    ModelTrainingError     raised by training helpers, caught by the
                           forecast engine, previous parameters kept

At the HTTP boundary every PipelineError, request-validation failure and
unhandled exception is rendered as one body shape:

    {"error": {"code": "NOT_READY", "message": "...", "status": 409,
               "details": {...}, "request_id": "..."}}
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from floodwatch.app.core.config import settings

logger = logging.getLogger(__name__)


class PipelineError(Exception):
    """Base for every error the API knows how to render."""

    status_code = 500
    error_code = "INTERNAL_ERROR"

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(PipelineError):
    status_code = 422
    error_code = "VALIDATION_ERROR"

    def __init__(self, message: str, *, field: Optional[str] = None, **details: Any):
        if field:
            details["field"] = field
        super().__init__(message, **details)


class NotReadyError(PipelineError):
    """Requested state does not exist yet, e.g. a snapshot before the first tick."""

    status_code = 409
    error_code = "NOT_READY"

    def __init__(self, resource: str, message: str = ""):
        super().__init__(message or f"{resource} is not available yet", resource=resource)


class ExternalServiceError(PipelineError):
    status_code = 502
    error_code = "EXTERNAL_SERVICE_ERROR"

    def __init__(self, service: str, message: str = "", **details: Any):
        super().__init__(f"{service}: {message}" if message else service,
                         service=service, **details)


class ModelTrainingError(PipelineError):
    status_code = 500
    error_code = "MODEL_TRAINING_ERROR"

    def __init__(self, model: str, message: str = "", **details: Any):
        super().__init__(f"{model} training failed: {message}", model=model, **details)


def _error_body(
    request: Request,
    status_code: int,
    error_code: str,
    message: str,
    details: Optional[Dict[str, Any]] = None,
) -> JSONResponse:
    error: Dict[str, Any] = {"code": error_code, "message": message, "status": status_code}
    if details:
        error["details"] = details
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        error["request_id"] = request_id
    if not settings.is_production:
        error["path"] = request.url.path
    return JSONResponse(status_code=status_code, content={"error": error})


def register_error_handlers(app: FastAPI) -> None:

    @app.exception_handler(PipelineError)
    async def handle_pipeline_error(request: Request, exc: PipelineError):
        log = logger.error if exc.status_code >= 500 else logger.warning
        log("%s [%s]: %s", request.url.path, exc.error_code, exc.message)
        return _error_body(request, exc.status_code, exc.error_code, exc.message, exc.details)

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        fields = {
            ".".join(str(p) for p in err["loc"] if p != "body"): err["msg"]
            for err in exc.errors()
        }
        return _error_body(
            request, 422, ValidationError.error_code, "Invalid request", {"fields": fields},
        )

    @app.exception_handler(Exception)
    async def handle_unhandled(request: Request, exc: Exception):
        logger.exception("Unhandled exception on %s", request.url.path)
        message = "Internal server error" if settings.is_production else str(exc)
        return _error_body(request, 500, PipelineError.error_code, message)
