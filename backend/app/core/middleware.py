"""
Request middleware — logging, timing, correlation IDs.

Provides:
    • X-Request-ID header injection (correlation ID)
    • Request/response timing (X-Process-Time header)
    • Structured log entry per request
    • Request context for downstream log enrichment, so a dispatch pass
      triggered over HTTP logs under the request that started it
"""

from __future__ import annotations

import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from backend.app.core.logging_config import log_context

logger = logging.getLogger(__name__)

# Paths not worth a log line per hit
_QUIET_PREFIXES = ("/docs", "/redoc", "/openapi", "/favicon", "/health/live")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log every request with timing, inject correlation ID."""

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get("X-Request-ID", uuid.uuid4().hex[:16])
        client_ip = request.client.host if request.client else "unknown"
        path = request.url.path

        with log_context(request_id=request_id, method=request.method, endpoint=path):
            start = time.perf_counter()
            try:
                response = await call_next(request)
            except Exception:
                duration_ms = (time.perf_counter() - start) * 1000
                logger.error(
                    "%s %s → 500 (%.1fms) [%s]",
                    request.method, path, duration_ms, client_ip,
                    extra={"duration_ms": duration_ms, "status_code": 500},
                )
                raise

            duration_ms = (time.perf_counter() - start) * 1000
            response.headers["X-Request-ID"] = request_id
            response.headers["X-Process-Time"] = f"{duration_ms:.1f}ms"

            if not path.startswith(_QUIET_PREFIXES):
                log_level = logging.WARNING if response.status_code >= 400 else logging.INFO
                logger.log(
                    log_level,
                    "%s %s → %d (%.1fms) [%s]",
                    request.method, path, response.status_code,
                    duration_ms, client_ip,
                    extra={
                        "duration_ms": round(duration_ms, 1),
                        "status_code": response.status_code,
                    },
                )

        return response
