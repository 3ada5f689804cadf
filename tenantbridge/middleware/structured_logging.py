# tenantbridge/middleware/structured_logging.py
from __future__ import annotations

import logging
import time
from typing import Any, Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

log = logging.getLogger("tenantbridge.access")


def _principal_fields(request: Request) -> dict[str, Any]:
    # set by the principal dependency; anonymous routes have none
    ctx = getattr(request.state, "context", None)
    if ctx is None:
        return {}
    return ctx.log_extra()


class StructuredLoggingMiddleware(BaseHTTPMiddleware):
    """Access log: one record per request, rendered as a JSON line by the root handler."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        started = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            extra = {
                "operation": f"{request.method} {request.url.path}",
                "status_code": status_code,
                "duration_ms": int((time.perf_counter() - started) * 1000),
                **_principal_fields(request),
            }
            level = logging.ERROR if status_code >= 500 else logging.INFO
            log.log(level, "%s %s -> %s", request.method, request.url.path, status_code, extra=extra)
