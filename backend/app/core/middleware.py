"""
Request middleware — per-request run context and timing.

Every HTTP request becomes a "run" for logging purposes: the incoming
``X-Request-ID`` (or a fresh id) is bound as ``run_id`` so log lines from
the scoring engine during that request can be correlated, and the request
is logged once with its status and duration.
"""

from __future__ import annotations

import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from backend.app.core.logging_config import set_run_context

logger = logging.getLogger(__name__)

QUIET_PREFIXES = ("/docs", "/redoc", "/openapi", "/favicon", "/health/live")


class RunContextMiddleware(BaseHTTPMiddleware):
    """Bind request id → run context; add X-Request-ID / X-Process-Time."""

    async def dispatch(self, request: Request, call_next) -> Response:
        run_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:12]
        path = request.url.path
        set_run_context(run_id=run_id, run_kind="request", endpoint=path)

        start = time.perf_counter()
        try:
            response = await call_next(request)
        finally:
            elapsed_ms = round((time.perf_counter() - start) * 1000, 1)

        response.headers["X-Request-ID"] = run_id
        response.headers["X-Process-Time"] = f"{elapsed_ms:.1f}ms"

        if not path.startswith(QUIET_PREFIXES):
            level = logging.WARNING if response.status_code >= 400 else logging.INFO
            logger.log(
                level,
                "%s %s → %d (%.1fms)",
                request.method, path, response.status_code, elapsed_ms,
                extra={
                    "duration_ms": elapsed_ms,
                    "status_code": response.status_code,
                    "endpoint": path,
                },
            )

        set_run_context()
        return response
