"""
Request middleware: timing and correlation IDs for the API.

Every response carries X-Request-ID (echoed if the client sent one) and
X-Process-Time.  Pipeline endpoints are logged; docs and health probes are
not, since the scheduler already logs each tick.
"""

from __future__ import annotations

import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger(__name__)

QUIET_PREFIXES = ("/docs", "/redoc", "/openapi", "/favicon", "/health")


class RequestLoggingMiddleware(BaseHTTPMiddleware):

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get("X-Request-ID", uuid.uuid4().hex[:16])
        request.state.request_id = request_id
        path = request.url.path
        start = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception:
            logger.error(
                "%s %s → 500 (%.1fms) [%s]",
                request.method, path, (time.perf_counter() - start) * 1000, request_id,
            )
            raise

        duration_ms = (time.perf_counter() - start) * 1000
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = f"{duration_ms:.1f}ms"

        if not path.startswith(QUIET_PREFIXES):
            level = logging.WARNING if response.status_code >= 400 else logging.INFO
            logger.log(
                level, "%s %s → %d (%.1fms) [%s]",
                request.method, path, response.status_code, duration_ms, request_id,
                extra={"duration_ms": int(duration_ms)},
            )
        return response
