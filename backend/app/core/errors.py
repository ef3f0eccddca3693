"""
Centralised error handling — exception hierarchy + FastAPI handlers.

Error taxonomy of the dispatch engine:

    ConfigurationGap   no exception at all — a channel without usable
                       credentials is built as a simulated provider
    ProviderError      a live transport call failed; caught per delivery,
                       recorded as a failed DeliveryRecord
    DataAccessError    the alert/device store is unreachable; aborts the
                       whole dispatch pass and reaches the caller
    ValidationError    malformed alert/device/preference input; rejected
                       before any provider call

Usage:
    from backend.app.core.errors import DataAccessError, register_error_handlers

    raise DataAccessError("get_devices", "connection refused")
"""

from __future__ import annotations

import logging
import traceback
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from backend.app.core.config import Settings, get_settings

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# Exception Hierarchy
# ═══════════════════════════════════════════════════════════════════════════

class RockfallAlertError(Exception):
    """Base exception for all application errors."""

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        *,
        status_code: int = 500,
        error_code: str = "INTERNAL_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details or {}


class NotFoundError(RockfallAlertError):
    """Resource not found (404)."""

    def __init__(self, resource: str, **identifiers: Any):
        details = {"resource": resource, **identifiers}
        super().__init__(
            message=f"{resource} not found",
            status_code=404,
            error_code="NOT_FOUND",
            details=details,
        )


class ValidationError(RockfallAlertError):
    """Input validation failed (422)."""

    def __init__(self, message: str, *, field: Optional[str] = None, **details: Any):
        d = {**details}
        if field:
            d["field"] = field
        super().__init__(
            message=message,
            status_code=422,
            error_code="VALIDATION_ERROR",
            details=d,
        )


class DataAccessError(RockfallAlertError):
    """Alert/device store unreachable or failing (503)."""

    def __init__(self, operation: str, message: str = "", **details: Any):
        super().__init__(
            message=f"Data access '{operation}' failed: {message}",
            status_code=503,
            error_code="DATA_ACCESS_ERROR",
            details={"operation": operation, **details},
        )


class ProviderError(RockfallAlertError):
    """A channel provider's transport rejected or failed a send (502)."""

    def __init__(self, provider: str, message: str = "", **details: Any):
        super().__init__(
            message=f"Provider '{provider}' failed: {message}",
            status_code=502,
            error_code="PROVIDER_ERROR",
            details={"provider": provider, **details},
        )


@contextmanager
def data_access(operation: str, **details: Any) -> Iterator[None]:
    """
    Surface any exception raised by a store call as ``DataAccessError``.

    Usage:
        with data_access("create_alert", alert_id=alert.id):
            await store.create_alert(alert)
    """
    try:
        yield
    except DataAccessError:
        raise
    except Exception as e:
        raise DataAccessError(operation, str(e), **details) from e


# ═══════════════════════════════════════════════════════════════════════════
# Error Response Builder
# ═══════════════════════════════════════════════════════════════════════════

def _build_error_response(
    status_code: int,
    error_code: str,
    message: str,
    details: Optional[Dict[str, Any]] = None,
    request: Optional[Request] = None,
    include_request: bool = False,
) -> JSONResponse:
    """Build a consistent JSON error response."""
    body: Dict[str, Any] = {
        "error": {
            "code": error_code,
            "message": message,
            "status": status_code,
        }
    }

    if details:
        body["error"]["details"] = details

    if request is not None and include_request:
        body["error"]["path"] = str(request.url.path)
        body["error"]["method"] = request.method

    return JSONResponse(status_code=status_code, content=body)


# ═══════════════════════════════════════════════════════════════════════════
# FastAPI Exception Handlers
# ═══════════════════════════════════════════════════════════════════════════

def register_error_handlers(app: FastAPI, settings: Optional[Settings] = None) -> None:
    """Register all exception handlers on the FastAPI app."""
    settings = settings or get_settings()
    include_request = not settings.is_production

    @app.exception_handler(RockfallAlertError)
    async def handle_rockfall_error(request: Request, exc: RockfallAlertError):
        log = logger.warning if exc.status_code < 500 else logger.error
        log(
            "API Error [%s]: %s | details=%s",
            exc.error_code, exc.message, exc.details,
        )
        return _build_error_response(
            exc.status_code, exc.error_code, exc.message,
            exc.details, request, include_request,
        )

    @app.exception_handler(ValueError)
    async def handle_value_error(request: Request, exc: ValueError):
        logger.warning("ValueError: %s", exc)
        return _build_error_response(
            422, "VALIDATION_ERROR", str(exc),
            request=request, include_request=include_request,
        )

    @app.exception_handler(Exception)
    async def handle_unhandled(request: Request, exc: Exception):
        logger.critical(
            "Unhandled exception: %s\n%s",
            exc, traceback.format_exc(),
        )
        message = str(exc) if settings.DEBUG else "Internal server error"
        return _build_error_response(
            500, "INTERNAL_ERROR", message,
            request=request, include_request=include_request,
        )
