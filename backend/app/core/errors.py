"""
Centralised error handling — exception hierarchy + FastAPI handlers.

The scoring core is total: it never raises for a missing or malformed
input field. Exceptions are reserved for:
    • invalid engine configuration (weights not summing to 1, bad bands)
    • whole-batch upstream failure (no rainfall obtainable at all)
    • request validation at the transport layer

Usage:
    from backend.app.core.errors import (
        RiskEngineError,
        BatchFetchError,
        ConfigurationError,
        register_error_handlers,
    )

    raise BatchFetchError("rainfall", "all chunks failed")
"""

from __future__ import annotations

import logging
import traceback
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from backend.app.core.config import settings

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# Exception Hierarchy
# ═══════════════════════════════════════════════════════════════════════════

class RiskEngineError(Exception):
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


class NotFoundError(RiskEngineError):
    """Resource not found (404)."""

    def __init__(self, resource: str, **identifiers: Any):
        details = {"resource": resource, **identifiers}
        super().__init__(
            message=f"{resource} not found",
            status_code=404,
            error_code="NOT_FOUND",
            details=details,
        )


class ConfigurationError(RiskEngineError):
    """Engine configuration is internally inconsistent (500)."""

    def __init__(self, message: str, **details: Any):
        super().__init__(
            message=message,
            status_code=500,
            error_code="CONFIGURATION_ERROR",
            details=details,
        )


class SourceFetchError(RiskEngineError):
    """A single upstream source failed (502)."""

    def __init__(self, source: str, message: str = "", **details: Any):
        super().__init__(
            message=f"Source '{source}' failed: {message}",
            status_code=502,
            error_code="SOURCE_FETCH_ERROR",
            details={"source": source, **details},
        )
        self.source = source


class BatchFetchError(SourceFetchError):
    """No usable data could be obtained for the whole batch (502)."""

    def __init__(self, source: str, message: str = "", **details: Any):
        super().__init__(source, message, **details)
        self.error_code = "BATCH_FETCH_ERROR"


# ═══════════════════════════════════════════════════════════════════════════
# Error Response Builder
# ═══════════════════════════════════════════════════════════════════════════

def _build_error_response(
    status_code: int,
    error_code: str,
    message: str,
    details: Optional[Dict[str, Any]] = None,
    request: Optional[Request] = None,
) -> JSONResponse:
    """Build a consistent JSON error response."""
    body: Dict[str, Any] = {
        "success": False,
        "error": {
            "code": error_code,
            "message": message,
            "status": status_code,
        },
    }

    if details:
        body["error"]["details"] = details

    if request and not settings.is_production:
        body["error"]["path"] = str(request.url.path)
        body["error"]["method"] = request.method

    return JSONResponse(status_code=status_code, content=body)


# ═══════════════════════════════════════════════════════════════════════════
# FastAPI Exception Handlers
# ═══════════════════════════════════════════════════════════════════════════

def register_error_handlers(app: FastAPI) -> None:
    """Register all exception handlers on the FastAPI app."""

    @app.exception_handler(RiskEngineError)
    async def handle_engine_error(request: Request, exc: RiskEngineError):
        logger.error(
            "API Error [%s]: %s | details=%s",
            exc.error_code, exc.message, exc.details,
        )
        return _build_error_response(
            exc.status_code, exc.error_code, exc.message,
            exc.details, request,
        )

    @app.exception_handler(ValueError)
    async def handle_value_error(request: Request, exc: ValueError):
        logger.warning("ValueError: %s", exc)
        return _build_error_response(
            422, "VALIDATION_ERROR", str(exc), request=request,
        )

    @app.exception_handler(Exception)
    async def handle_unhandled(request: Request, exc: Exception):
        logger.critical(
            "Unhandled exception: %s\n%s",
            exc, traceback.format_exc(),
        )
        message = str(exc) if settings.DEBUG else "Internal server error"
        details = (
            {"traceback": traceback.format_exc().split("\n")}
            if settings.DEBUG else None
        )
        return _build_error_response(
            500, "INTERNAL_ERROR", message, details, request,
        )
